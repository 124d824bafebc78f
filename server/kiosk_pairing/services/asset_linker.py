"""Link paired kiosks to inventory assets by asset tag or serial number."""

import logging
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.orm import Session

from kiosk_pairing.core.errors import AssetNotFound, InvalidArgument, NotFoundError
from kiosk_pairing.core.time import utcnow
from kiosk_pairing.models.asset_link import AssetLink
from kiosk_pairing.models.inventory_asset import InventoryAsset
from kiosk_pairing.models.kiosk import Kiosk
from kiosk_pairing.services.activity_log import log_activity

logger = logging.getLogger(__name__)


@dataclass
class LinkResult:
    link: AssetLink
    changed: bool


def _describe(asset: InventoryAsset) -> str:
    return asset.asset_tag or asset.serial_number or f"#{asset.id}"


def find_inventory_asset(
    db: Session, asset_tag: str | None = None, serial_number: str | None = None
) -> InventoryAsset | None:
    """
    Resolve an inventory asset. Lookup order:
    1. asset tag, exact
    2. asset tag, case-insensitive
    3. serial number, exact
    4. serial number, case-insensitive
    """
    if asset_tag:
        asset = db.query(InventoryAsset).filter(InventoryAsset.asset_tag == asset_tag).first()
        if asset is None:
            asset = (
                db.query(InventoryAsset)
                .filter(func.lower(InventoryAsset.asset_tag) == asset_tag.lower())
                .first()
            )
        if asset is not None:
            return asset

    if serial_number:
        asset = (
            db.query(InventoryAsset)
            .filter(InventoryAsset.serial_number == serial_number)
            .first()
        )
        if asset is None:
            asset = (
                db.query(InventoryAsset)
                .filter(func.lower(InventoryAsset.serial_number) == serial_number.lower())
                .first()
            )
        return asset

    return None


def get_link(db: Session, kiosk_id: str) -> AssetLink | None:
    return db.query(AssetLink).filter(AssetLink.kiosk_id == kiosk_id).first()


def link(
    db: Session,
    kiosk_id: str,
    asset_tag: str | None = None,
    serial_number: str | None = None,
    user_id: int | None = None,
) -> LinkResult:
    """Link a kiosk to the asset identified by tag and/or serial.

    Linking to the asset already linked is a no-op success
    (``changed=False``). Linking to a different asset replaces the old link
    and writes an audit entry naming both.

    Raises:
        InvalidArgument: Neither asset_tag nor serial_number given.
        NotFoundError: The kiosk has never been paired.
        AssetNotFound: No inventory asset matches.
    """
    asset_tag = (asset_tag or "").strip() or None
    serial_number = (serial_number or "").strip() or None
    if asset_tag is None and serial_number is None:
        raise InvalidArgument("asset_tag or serial_number is required")

    if db.query(Kiosk.id).filter(Kiosk.kiosk_id == kiosk_id).first() is None:
        raise NotFoundError("Kiosk not found")

    asset = find_inventory_asset(db, asset_tag, serial_number)
    if asset is None:
        raise AssetNotFound()

    existing = get_link(db, kiosk_id)
    if existing is not None and existing.asset_id == asset.id:
        return LinkResult(link=existing, changed=False)

    if existing is None:
        existing = AssetLink(kiosk_id=kiosk_id, asset=asset)
        db.add(existing)
        message = f"Linked kiosk {kiosk_id} to asset {_describe(asset)}"
    else:
        previous = _describe(existing.asset)
        existing.asset = asset
        message = f"Re-linked kiosk {kiosk_id} from asset {previous} to {_describe(asset)}"
    existing.linked_at = utcnow()
    existing.linked_by_user_id = user_id

    log_activity(
        db, "info", "asset_link", message, kiosk_id=kiosk_id, user_id=user_id, commit=False
    )
    db.commit()
    db.refresh(existing)
    logger.info(message)
    return LinkResult(link=existing, changed=True)


def unlink(db: Session, kiosk_id: str, user_id: int | None = None) -> bool:
    """Remove a kiosk's asset link. Returns False if there was none."""
    existing = get_link(db, kiosk_id)
    if existing is None:
        return False
    message = f"Unlinked kiosk {kiosk_id} from asset {_describe(existing.asset)}"
    db.delete(existing)
    log_activity(
        db, "info", "asset_link", message, kiosk_id=kiosk_id, user_id=user_id, commit=False
    )
    db.commit()
    logger.info(message)
    return True

from kiosk_pairing.models.activation_code import ActivationCode, CodeState
from kiosk_pairing.models.activity_log import ActivityLog
from kiosk_pairing.models.asset_link import AssetLink
from kiosk_pairing.models.base import Base
from kiosk_pairing.models.code_transition import CodeTransition
from kiosk_pairing.models.inventory_asset import InventoryAsset
from kiosk_pairing.models.kiosk import Kiosk
from kiosk_pairing.models.pairing_outbox import PairingOutbox
from kiosk_pairing.models.user import User

__all__ = [
    "Base",
    "User",
    "ActivationCode",
    "CodeState",
    "CodeTransition",
    "Kiosk",
    "PairingOutbox",
    "InventoryAsset",
    "AssetLink",
    "ActivityLog",
]

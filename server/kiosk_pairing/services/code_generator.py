"""Activation code generation.

Codes are RFC 4648 base32 (A-Z, 2-7): no 0/1/8/9, so they survive being read
off a screen and typed on a kiosk keypad. The default 5 random bytes give
40 bits of entropy in 8 characters.
"""

import base64
import secrets
from datetime import datetime, timedelta
from urllib.parse import urlencode

import segno

DEFAULT_CODE_BYTES = 5
KIOSK_ID_PREFIX = "kiosk-"


def generate_activation_code(num_bytes: int = DEFAULT_CODE_BYTES) -> str:
    """Generate a random base32 activation code (padding stripped)."""
    return base64.b32encode(secrets.token_bytes(num_bytes)).decode("ascii").rstrip("=")


def generate_kiosk_id() -> str:
    """Generate a logical kiosk id for callers that did not supply one."""
    return f"{KIOSK_ID_PREFIX}{secrets.token_hex(4)}"


def generate_session_token(num_bytes: int = 32) -> str:
    """Generate the bearer token a paired kiosk uses for check-ins."""
    return secrets.token_hex(num_bytes)


def compute_expiry(now: datetime, ttl_minutes: int) -> datetime:
    """Expiry is fixed at issuance: ``now + ttl``."""
    return now + timedelta(minutes=ttl_minutes)


def build_activation_url(base_url: str, kiosk_id: str, code: str) -> str:
    """URL the kiosk opens after scanning the QR code."""
    query = urlencode({"kioskId": kiosk_id, "code": code})
    return f"{base_url.rstrip('/')}/kiosk/activate?{query}"


def render_qr_data_uri(payload: str) -> str:
    """Render a payload as an SVG QR code data URI for an ``<img src>``."""
    qr = segno.make(payload, micro=False, error="M")
    return qr.svg_data_uri(scale=4, border=2)

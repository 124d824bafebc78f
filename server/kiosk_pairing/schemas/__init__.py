from kiosk_pairing.schemas.activation_code import (
    IssueCodeRequest,
    IssuedCodeResponse,
    RedeemRequest,
    RedeemResponse,
)
from kiosk_pairing.schemas.auth import Token, TokenData
from kiosk_pairing.schemas.event import PairingEventPayload
from kiosk_pairing.schemas.kiosk import KioskStatusResponse
from kiosk_pairing.schemas.user import UserOut

__all__ = [
    "Token",
    "TokenData",
    "UserOut",
    "IssueCodeRequest",
    "IssuedCodeResponse",
    "RedeemRequest",
    "RedeemResponse",
    "KioskStatusResponse",
    "PairingEventPayload",
]

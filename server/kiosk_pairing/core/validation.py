"""Input normalisation for activation codes, kiosk ids and device fingerprints."""

import re
import unicodedata

# Control characters to remove
CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x1f\x7f]")

# Separators people type or that QR payloads carry between code groups
CODE_SEPARATOR_PATTERN = re.compile(r"[\s\-_]+")

ACTIVATION_CODE_PATTERN = re.compile(r"^[A-Z2-7]{6,32}$")
KIOSK_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")

MAX_FINGERPRINT_LENGTH = 128


def normalize_activation_code(code: str | None) -> str:
    """
    Normalize a typed or scanned activation code:
    - NFKC-fold (full-width characters from some keyboards)
    - drop whitespace, dashes and underscores
    - upper-case

    Returns an empty string for None.
    """
    if code is None:
        return ""
    code = unicodedata.normalize("NFKC", code)
    code = CODE_SEPARATOR_PATTERN.sub("", code)
    return code.upper()


def is_valid_activation_code(code: str) -> bool:
    """Check a *normalized* code against the base32 alphabet."""
    return bool(ACTIVATION_CODE_PATTERN.match(code))


def validate_kiosk_id(kiosk_id: str | None) -> bool:
    """Kiosk ids are 1-64 chars of letters, digits, dot, dash or underscore."""
    if not kiosk_id:
        return False
    return bool(KIOSK_ID_PATTERN.match(kiosk_id))


def normalize_fingerprint(fingerprint: str | None) -> str:
    """Strip control characters and surrounding whitespace, truncate to column size."""
    if fingerprint is None:
        return ""
    fingerprint = CONTROL_CHAR_PATTERN.sub("", fingerprint).strip()
    return fingerprint[:MAX_FINGERPRINT_LENGTH]


def normalize_optional_text(text: str | None, max_len: int) -> str | None:
    """Trim a free-text field; empty strings become None."""
    if text is None:
        return None
    text = CONTROL_CHAR_PATTERN.sub("", unicodedata.normalize("NFC", text)).strip()
    return text[:max_len] or None

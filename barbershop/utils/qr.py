"""
QR payload codec shared by both loyalty programs.

Wire format: ``BC|v1|<type>|<token>``. Raw tokens are never stored; only
``hash_token(raw, pepper)`` is persisted and used for lookups.
"""

import hashlib
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Optional

QR_PREFIX = "BC"
QR_VERSION = "v1"
MIN_TOKEN_LENGTH = 8


class QRType(str, Enum):
    POINT = "P"  # legacy point card / stamp redemption
    COUPON = "C"  # legacy coupon
    EARN = "E"  # v2 earn
    VOUCHER = "V"  # v2 reward voucher


@dataclass(frozen=True)
class QRPayload:
    type: QRType
    token: str


def encode_qr_payload(qr_type: QRType, raw_token: str) -> str:
    return f"{QR_PREFIX}|{QR_VERSION}|{QRType(qr_type).value}|{raw_token}"


def decode_qr_payload(payload) -> Optional[QRPayload]:
    """Parse a scanned payload. Returns None for anything malformed."""
    if not isinstance(payload, str):
        return None

    parts = payload.strip().split("|")
    if len(parts) != 4:
        return None

    prefix, version, type_tag, token = parts
    if prefix != QR_PREFIX or version != QR_VERSION:
        return None

    try:
        qr_type = QRType(type_tag)
    except ValueError:
        return None

    if len(token) < MIN_TOKEN_LENGTH:
        return None

    return QRPayload(type=qr_type, token=token)


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(raw_token: str, pepper: str) -> str:
    return hashlib.sha256(f"{raw_token}{pepper}".encode("utf-8")).hexdigest()

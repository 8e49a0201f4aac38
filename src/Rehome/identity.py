"""Identity helpers owned by the target instance.

- 24-char hex object ids (4-byte big-endian seconds + 8 random bytes) for new rows
- owner / external sentinel checks for imported user ids
- random opaque credentials for locked placeholder accounts
"""

from __future__ import annotations

import os
import secrets
import string
import time
from typing import Any, Final

from Rehome.config import Settings, load_settings

EXTERNAL_USER_ID: Final[str] = "5951f5fca366002ebd5dbef7"
_CREDENTIAL_ALPHABET: Final[str] = string.ascii_letters + string.digits


def new_object_id(ts: int | None = None) -> str:
    """Generate a 24-char lowercase hex id, sortable by creation second.

    Args:
        ts: Optional timestamp in seconds; defaults to current time
    """
    if ts is None:
        ts = int(time.time())
    head = (ts & 0xFFFFFFFF).to_bytes(4, "big")
    return (head + os.urandom(8)).hex()


def is_object_id(value: str) -> bool:
    if len(value) != 24:
        return False
    return all(ch in string.hexdigits for ch in value)


def _settings(settings: Settings | None) -> Settings:
    return settings if settings is not None else load_settings()


def is_owner_user(user_id: Any, settings: Settings | None = None) -> bool:
    """True when an imported id designates the exporting instance's owner."""
    if user_id is None:
        return False
    return str(user_id) == _settings(settings).import_owner_sentinel_id


def is_external_user(user_id: Any, settings: Settings | None = None) -> bool:
    """True when an imported id designates the external/anonymous author."""
    if user_id is None:
        return False
    return str(user_id) == external_user_id(settings)


def external_user_id(settings: Settings | None = None) -> str:
    return _settings(settings).import_external_user_id or EXTERNAL_USER_ID


def generate_credential(length: int = 50) -> str:
    """Random opaque credential; nobody knows it, so the account stays unusable."""
    if length < 16:
        raise ValueError("credential length must be at least 16")
    return "".join(secrets.choice(_CREDENTIAL_ALPHABET) for _ in range(length))

import secrets
import string
from typing import Optional

ID_ALPHABET = string.digits + string.ascii_letters
ID_SIZE = 16
LINK_CODE_ALPHABET = string.digits + string.ascii_uppercase
LINK_CODE_SIZE = 8


def nanoid(prefix: Optional[str] = None, size: int = ID_SIZE) -> str:
    body = "".join(secrets.choice(ID_ALPHABET) for _ in range(size))
    return f"{prefix}_{body}" if prefix else body


def link_code() -> str:
    """Short code a user types into the messenger bot to link their account."""
    return "".join(secrets.choice(LINK_CODE_ALPHABET) for _ in range(LINK_CODE_SIZE))

"""
Input validation for machine registration.

Runs before any storage access; every failure raises ValidationError
with a reason the caller can act on.
"""

import re

from bastion_registry.common.exceptions import ValidationError

NAME_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]{0,63}")
MAX_PUBLIC_KEY_BYTES = 2048

VALID_KEY_TYPES: frozenset[str] = frozenset({
    "ssh-rsa",
    "ssh-ed25519",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "ssh-dss",
})


def is_valid_name(value: str) -> bool:
    return isinstance(value, str) and NAME_PATTERN.fullmatch(value) is not None


def validate_identifier(value: str, field: str = "name") -> str:
    """Check a name, owner or local user against the identifier rule."""
    if not is_valid_name(value):
        label = "machine name" if field == "name" else field
        raise ValidationError(
            f"invalid {label}: must be alphanumeric with optional dots, "
            "hyphens, underscores (max 64 chars)"
        )
    return value


def validate_public_key(key: str) -> str:
    """
    Validate a single-line SSH public key.

    Checks:
    - One line after trimming
    - At most 2048 bytes
    - At least algorithm and key-data fields
    - Recognized algorithm token

    Returns:
        The trimmed key
    """
    if not isinstance(key, str):
        raise ValidationError("invalid SSH public key format")

    key = key.strip()
    if "\n" in key or "\r" in key:
        raise ValidationError("public key must be a single line")
    if len(key.encode("utf-8")) > MAX_PUBLIC_KEY_BYTES:
        raise ValidationError("public key too large")

    parts = key.split()
    if len(parts) < 2:
        raise ValidationError("invalid SSH public key format")
    if parts[0] not in VALID_KEY_TYPES:
        raise ValidationError(f"unsupported key type: {parts[0]}")
    return key


def validate_registration(
    name: str, owner: str, local_user: str, public_key: str
) -> str:
    """Validate all registration fields; returns the trimmed public key."""
    validate_identifier(name, "name")
    validate_identifier(owner, "owner")
    validate_identifier(local_user, "local_user")
    return validate_public_key(public_key)

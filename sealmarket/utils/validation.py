"""
Input Validation - Sanitization of externally supplied values.

Provides validation for request inputs before they reach the codec or the
ledger:
- Market and participant identifiers
- Stored encryption keys
- Side selections and binding secrets
- Ticket counts and amounts
"""

import re
from typing import Any, Optional, Tuple

# =============================================================================
# Constants
# =============================================================================

MAX_IDENTIFIER_LENGTH = 128
# A 256-byte sealed choice leaves about 100 bytes for secret plus market id;
# encode_choice checks the final size against max_encoded_choice_len
MAX_SECRET_LENGTH = 96
ENCRYPTION_KEY_BYTES = 32

# Identifiers are opaque but printable: base58 pubkeys, hex, slugs
IDENTIFIER_PATTERN = r"^[A-Za-z0-9_\-.:]+$"

MIN_AMOUNT = 0
MAX_AMOUNT = 2**64 - 1


# =============================================================================
# Validation Functions
# =============================================================================


def validate_integer(
    value: Any,
    name: str,
    min_val: int = MIN_AMOUNT,
    max_val: int = MAX_AMOUNT,
) -> Tuple[bool, str]:
    """
    Validate integer within bounds.

    Args:
        value: Value to validate
        name: Field name for errors
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        (is_valid, error_message)
    """
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"{name} must be int, got {type(value).__name__}"

    if value < min_val:
        return False, f"{name} must be >= {min_val}, got {value}"

    if value > max_val:
        return False, f"{name} must be <= {max_val}, got {value}"

    return True, ""


def validate_amount(amount: Any, name: str = "amount") -> Tuple[bool, str]:
    """Validate a unit amount (u64 range)."""
    return validate_integer(amount, name, MIN_AMOUNT, MAX_AMOUNT)


def validate_ticket_count(count: Any) -> Tuple[bool, str]:
    """Ticket counts are strictly positive."""
    return validate_integer(count, "ticket_count", 1, MAX_AMOUNT)


def validate_string(
    value: Any,
    name: str,
    max_length: int,
    pattern: Optional[str] = None,
    allow_empty: bool = False,
) -> Tuple[bool, str]:
    """
    Validate string input.

    Args:
        value: Value to validate
        name: Field name for errors
        max_length: Maximum string length
        pattern: Optional regex pattern
        allow_empty: Whether "" is acceptable

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    if not value and not allow_empty:
        return False, f"{name} must not be empty"

    if len(value) > max_length:
        return False, f"{name} exceeds max length {max_length}"

    if value and pattern and not re.match(pattern, value):
        return False, f"{name} does not match required pattern"

    return True, ""


def validate_identifier(value: Any, name: str = "identifier") -> Tuple[bool, str]:
    """Validate a market or participant identifier."""
    return validate_string(value, name, MAX_IDENTIFIER_LENGTH, IDENTIFIER_PATTERN)


def validate_binding_secret(value: Any) -> Tuple[bool, str]:
    """Binding secrets are free text, bounded so the sealed choice fits on the ledger."""
    return validate_string(value, "binding_secret", MAX_SECRET_LENGTH)


def validate_hex_string(value: Any, name: str, expected_bytes: Optional[int] = None) -> Tuple[bool, str]:
    """
    Validate a hex string (with or without 0x prefix).

    Args:
        value: Value to validate
        name: Field name
        expected_bytes: Expected byte length when decoded

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    hex_str = value[2:] if value.startswith("0x") else value

    if len(hex_str) % 2 != 0:
        return False, f"{name} has odd length, invalid hex"

    try:
        bytes.fromhex(hex_str)
    except ValueError:
        return False, f"{name} contains invalid hex characters"

    if expected_bytes is not None:
        actual_bytes = len(hex_str) // 2
        if actual_bytes != expected_bytes:
            return False, f"{name} must be {expected_bytes} bytes, got {actual_bytes}"

    return True, ""


def validate_encryption_key_hex(value: Any) -> Tuple[bool, str]:
    """A stored market key is exactly 32 bytes of hex."""
    return validate_hex_string(value, "encryption_key", ENCRYPTION_KEY_BYTES)


# =============================================================================
# Parsers
# =============================================================================


def parse_side(raw: Any) -> Optional["Side"]:
    """
    Normalize a side selection.

    Accepts "A"/"a"/"B"/"b" and the integers 1/2. Anything else (including
    bools and the strings "1"/"2") returns None.
    """
    from sealmarket.core.state.market import Side

    if isinstance(raw, str):
        return {"A": Side.A, "a": Side.A, "B": Side.B, "b": Side.B}.get(raw)
    if isinstance(raw, bool) or not isinstance(raw, int):
        return None
    if raw in (Side.A, Side.B):
        return Side(raw)
    return None


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "validate_integer",
    "validate_amount",
    "validate_ticket_count",
    "validate_string",
    "validate_identifier",
    "validate_binding_secret",
    "validate_hex_string",
    "validate_encryption_key_hex",
    "parse_side",
    "MAX_IDENTIFIER_LENGTH",
    "MAX_SECRET_LENGTH",
]

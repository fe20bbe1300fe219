"""Numeric one-time code generator."""

from __future__ import annotations

import secrets

from credential_engine.core.errors import InvalidLength
from credential_engine.core.policies import MAX_CODE_LENGTH, MIN_CODE_LENGTH


def generate_code(length: int) -> str:
    """Return a *length*-digit code drawn uniformly from the CSPRNG.

    The value lies in ``[10**(length-1), 10**length - 1]`` so it never has a
    leading zero.
    """
    if not isinstance(length, int) or not MIN_CODE_LENGTH <= length <= MAX_CODE_LENGTH:
        raise InvalidLength(f"Code length must be between 4 and 10 digits, got {length!r}")
    low = 10 ** (length - 1)
    span = 10**length - low
    return str(low + secrets.randbelow(span))

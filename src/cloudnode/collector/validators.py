"""Predicates over raw operator input.

All functions are pure: they take the string exactly as typed (after the
collector strips surrounding whitespace) and return a bool.
"""

import re
from typing import Optional

_DIGITS = frozenset("0123456789")
_NAME_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._@-]*")

# Upper bound for network sizes and counts: the whole IPv4 space.
MAX_COUNT = 2**32


def is_integer(value: str, maximum: Optional[int] = None) -> bool:
    """True iff value is non-empty, decimal digits only, and <= maximum when given.

    >>> is_integer("042")
    True
    >>> is_integer("-1")
    False
    >>> is_integer("256", 255)
    False
    >>> is_integer("9" * 5000, 255)
    False
    """
    if not value or not set(value) <= _DIGITS:
        return False
    if maximum is not None:
        significant = value.lstrip("0") or "0"
        # Length first: int() refuses very long digit strings.
        if len(significant) > len(str(maximum)) or int(significant) > maximum:
            return False
    return True


def is_count(value: str) -> bool:
    """True iff value is a whole number no larger than :data:`MAX_COUNT`."""
    return is_integer(value, MAX_COUNT)


def is_ipv4(value: str) -> bool:
    """True iff value is a full dotted quad.

    Abbreviated forms that some resolvers accept are rejected.

    >>> is_ipv4("10.0.0.1")
    True
    >>> is_ipv4("127.1")
    False
    """
    segments = value.split(".")
    if len(segments) != 4:
        return False
    return all(is_integer(segment, 255) for segment in segments)


def is_cidr(value: str) -> bool:
    """True iff value is ``address/prefix`` with a dotted-quad address and prefix <= 32."""
    parts = value.split("/")
    if len(parts) != 2:
        return False
    address, prefix = parts
    return is_ipv4(address) and is_integer(prefix, 32)


def is_supported_role(value: str) -> bool:
    # Imported here: models imports this module.
    from cloudnode.common.models import NodeRole

    return value in {role.value for role in NodeRole}


def is_name(value: str) -> bool:
    """True iff value is safe to pass as a user or project name on a command line."""
    return _NAME_RE.fullmatch(value) is not None

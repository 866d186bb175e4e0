"""
Type-safe wrapper classes for Discord identifiers.

Guild, user, channel and role snowflakes are kept apart at the type level so a
role id can never be used where a user id is expected in whitelist or ledger
lookups.
"""

from __future__ import annotations

from typing import Any, Union


class Snowflake:
    """
    Base wrapper for a Discord snowflake ID.

    Snowflakes are 64-bit integers that frequently arrive as strings in JSON
    payloads. Instances are immutable, hashable, and compare equal to other
    instances of the same class as well as to plain ``int``/``str`` values.

    Example:
        >>> gid = GuildID("123456789012345678")
        >>> gid.to_int()
        123456789012345678
        >>> gid == 123456789012345678
        True
    """

    __slots__ = ("_value",)

    def __init__(self, value: Union[str, int, "Snowflake"]) -> None:
        if isinstance(value, Snowflake):
            self._value = value._value
        elif isinstance(value, bool):
            raise ValueError(f"Cannot create {type(self).__name__} from bool")
        elif isinstance(value, int):
            self._value = value
        elif isinstance(value, str):
            self._value = int(value.strip())
        else:
            raise ValueError(f"Cannot create {type(self).__name__} from {type(value).__name__}: {value}")
        if self._value < 0:
            raise ValueError(f"{type(self).__name__} must be non-negative, got {self._value}")

    @classmethod
    def from_discord(cls, obj: Any) -> "Snowflake":
        """Create an ID from any Discord model exposing an ``id`` attribute."""
        return cls(obj.id)

    def to_int(self) -> int:
        """Convert to an integer for Discord API calls."""
        return self._value

    def __int__(self) -> int:
        return self._value

    def __str__(self) -> str:
        return str(self._value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value})"

    def __eq__(self, other: object) -> bool:
        if type(other) is type(self):
            return self._value == other._value  # type: ignore[attr-defined]
        if isinstance(other, bool):
            return NotImplemented
        if isinstance(other, int):
            return self._value == other
        if isinstance(other, str):
            return str(self._value) == other.strip()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __lt__(self, other: "Snowflake") -> bool:
        return self._value < int(other)


class GuildID(Snowflake):
    """Snowflake of a guild (server)."""

    __slots__ = ()


class UserID(Snowflake):
    """Snowflake of a user or member."""

    __slots__ = ()


class ChannelID(Snowflake):
    """Snowflake of a channel or thread."""

    __slots__ = ()


class RoleID(Snowflake):
    """Snowflake of a role."""

    __slots__ = ()

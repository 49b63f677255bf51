"""Room keys.

Every room is identified by a deterministic string so independent processes
agree on membership without coordination:

    user:<userId>              personal room, joined at handshake
    role:<role>                everyone with a role
    area:<latBucket>,<lngBucket>
    dm:<idA>:<idB>             ids sorted, so both participants compute the same key
    task:<taskId>              everyone following one pickup
"""

import re
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from enum import StrEnum

from src.domain.user import UserRole


DEFAULT_AREA_PRECISION = 2

_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class RoomKind(StrEnum):
    """Room shapes."""

    USER = "user"
    ROLE = "role"
    AREA = "area"
    DM = "dm"
    TASK = "task"


@dataclass(frozen=True)
class ParsedRoom:
    """A room key split into its shape and components."""

    kind: RoomKind
    parts: tuple[str, ...]

    @property
    def key(self) -> str:
        if self.kind == RoomKind.AREA:
            return f"area:{self.parts[0]},{self.parts[1]}"
        return ":".join((self.kind.value, *self.parts))


def _check_id(value: str) -> str:
    if not _ID_PATTERN.match(value):
        msg = f"Invalid identifier in room key: {value!r}"
        raise ValueError(msg)
    return value


def user_room(user_id: str) -> str:
    return f"user:{_check_id(str(user_id))}"


def role_room(role: UserRole | str) -> str:
    return f"role:{UserRole(role).value}"


def task_room(task_id: str) -> str:
    return f"task:{_check_id(str(task_id))}"


def dm_room(user_a: str, user_b: str) -> str:
    """Direct-message room for two users, independent of argument order."""
    first, second = sorted((_check_id(str(user_a)), _check_id(str(user_b))))
    return f"dm:{first}:{second}"


def bucket_coordinate(value: float | str | Decimal, precision: int = DEFAULT_AREA_PRECISION) -> str:
    """Truncate a coordinate toward zero to ``precision`` decimals."""
    try:
        number = Decimal(str(value))
    except InvalidOperation as e:
        msg = f"Invalid coordinate: {value!r}"
        raise ValueError(msg) from e
    if not number.is_finite():
        msg = f"Invalid coordinate: {value!r}"
        raise ValueError(msg)

    step = Decimal(1).scaleb(-precision)
    truncated = number.quantize(step, rounding=ROUND_DOWN)
    if truncated == 0:
        truncated = abs(truncated)
    return f"{truncated:.{precision}f}"


def area_room(latitude: float, longitude: float, precision: int = DEFAULT_AREA_PRECISION) -> str:
    """Area room for a coordinate pair; nearby points share a bucket."""
    if not -90 <= float(latitude) <= 90 or not -180 <= float(longitude) <= 180:
        msg = f"Coordinates out of range: {latitude}, {longitude}"
        raise ValueError(msg)
    return f"area:{bucket_coordinate(latitude, precision)},{bucket_coordinate(longitude, precision)}"


def parse_room(key: str) -> ParsedRoom:
    """Split a room key into its parts.

    Raises:
        ValueError: If the key has no recognized shape
    """
    kind_str, sep, rest = key.partition(":")
    if not sep or not rest:
        msg = f"Malformed room key: {key!r}"
        raise ValueError(msg)
    try:
        kind = RoomKind(kind_str)
    except ValueError as e:
        msg = f"Unknown room kind: {kind_str!r}"
        raise ValueError(msg) from e

    match kind:
        case RoomKind.USER | RoomKind.TASK:
            return ParsedRoom(kind, (_check_id(rest),))
        case RoomKind.ROLE:
            return ParsedRoom(kind, (UserRole(rest).value,))
        case RoomKind.DM:
            ids = rest.split(":")
            if len(ids) != 2:
                msg = f"Malformed dm room key: {key!r}"
                raise ValueError(msg)
            return ParsedRoom(kind, (_check_id(ids[0]), _check_id(ids[1])))
        case RoomKind.AREA:
            coords = rest.split(",")
            if len(coords) != 2:
                msg = f"Malformed area room key: {key!r}"
                raise ValueError(msg)
            return ParsedRoom(kind, (coords[0].strip(), coords[1].strip()))


def normalize_room(key: str, precision: int = DEFAULT_AREA_PRECISION) -> str:
    """Canonical form of a client-supplied room key.

    DM pairs are sorted and area coordinates re-bucketed, so ``dm:b:a`` and
    ``area:12.3456,7.8`` land on the same rooms as keys computed server-side.
    """
    parsed = parse_room(key)
    match parsed.kind:
        case RoomKind.DM:
            return dm_room(*parsed.parts)
        case RoomKind.AREA:
            return area_room(float(parsed.parts[0]), float(parsed.parts[1]), precision)
        case _:
            return parsed.key

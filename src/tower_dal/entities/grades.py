"""Route kinds, statuses and grade classification."""

import math
import re
from enum import IntEnum, StrEnum
from typing import Self

from pydantic import BaseModel


class RouteType(StrEnum):
    BOULDER = "Boulder"
    TOPROPE = "Top-Rope"
    TRAVERSE = "Traverse"
    LEADCLIMB = "Lead-Climb"
    COMPETITION = "Competition"

    @property
    def is_rope(self) -> bool:
        return self in (RouteType.TOPROPE, RouteType.LEADCLIMB)

    @property
    def is_lettered(self) -> bool:
        return self in (RouteType.TRAVERSE, RouteType.COMPETITION)


class RouteStatus(IntEnum):
    DRAFT = 0
    ACTIVE = 1
    ARCHIVED = 2


class RouteTech(StrEnum):
    OH = "OH"
    ON = "ON"
    OFF = "OFF"


_BOULDER_PATTERN = re.compile(r"V(B|\d+)")
_ROPE_PATTERN = re.compile(r"5\.(\d+)([+-]?)")
_LETTER_PATTERN = re.compile(r"[A-Z]")


class RouteClassifier(BaseModel, frozen=True):
    """A route's grade, as stored (`rawgrade`) and as shown to climbers.

    Encoding of `rawgrade` per route type:

    - Boulder: `-1` is "VB", otherwise `x` is "Vx".
    - Traverse and Competition: `1..26` map to "A".."Z".
    - Top-Rope and Lead-Climb: `x` is "5.<round(x/10)>", with "+" when
      `x % 10 == 1` and "-" when `x % 10 == 9`, so 61 is "5.6+", 69 is
      "5.7-" and 70 is "5.7".
    """

    rawgrade: int
    """Grade number stored on routes and sends."""

    type: RouteType
    """Route type the grade belongs to."""

    @property
    def display_string(self) -> str:
        if self.type == RouteType.BOULDER:
            return "VB" if self.rawgrade == -1 else f"V{self.rawgrade}"
        if self.type.is_lettered:
            return chr(ord("A") + self.rawgrade - 1)
        # Half-up rounding, so 65 reads as 5.7 rather than banker's 5.6.
        whole = math.floor(self.rawgrade / 10 + 0.5)
        suffix = {1: "+", 9: "-"}.get(self.rawgrade % 10, "")
        return f"5.{whole}{suffix}"

    @property
    def points(self) -> int:
        """Leaderboard points for sending a route of this grade."""
        if self.type.is_rope:
            return self.rawgrade
        return self.rawgrade * 10 + 60

    @classmethod
    def parse(cls, text: str, route_type: RouteType) -> Self:
        """Build a classifier from its display string.

        Raises:
            ValueError: If `text` is not a valid grade for `route_type`.
        """
        text = text.strip()
        if route_type == RouteType.BOULDER:
            if (match := _BOULDER_PATTERN.fullmatch(text)) is None:
                raise ValueError(f"Invalid boulder grade: {text!r}")
            grade = match.group(1)
            return cls(rawgrade=-1 if grade == "B" else int(grade), type=route_type)
        if route_type.is_lettered:
            if _LETTER_PATTERN.fullmatch(text) is None:
                raise ValueError(f"Invalid {route_type} grade: {text!r}")
            return cls(rawgrade=ord(text) - ord("A") + 1, type=route_type)
        if (match := _ROPE_PATTERN.fullmatch(text)) is None:
            raise ValueError(f"Invalid {route_type} grade: {text!r}")
        whole, bias = match.groups()
        offset = {"+": 1, "-": -1}.get(bias, 0)
        return cls(rawgrade=int(whole) * 10 + offset, type=route_type)

    def __str__(self) -> str:
        return self.display_string


# Grades offered when setting a route, per type. Rope grades cover 5.5 to
# 5.13 with their "-" and "+" variants.
_ROPE_GRADES = tuple(g for whole in range(5, 14) for g in (whole * 10 - 1, whole * 10, whole * 10 + 1))

_GRADES: dict[RouteType, tuple[int, ...]] = {
    RouteType.BOULDER: tuple(range(-1, 8)),
    RouteType.TOPROPE: _ROPE_GRADES,
    RouteType.TRAVERSE: (1, 2, 3, 4),
    RouteType.LEADCLIMB: _ROPE_GRADES,
    RouteType.COMPETITION: (1, 2, 3, 4),
}


def all_classifiers(route_type: RouteType | None = None) -> list[RouteClassifier]:
    """Every selectable grade for `route_type`, or for all types if None."""
    types = [route_type] if route_type is not None else list(RouteType)
    return [RouteClassifier(rawgrade=g, type=t) for t in types for g in _GRADES[t]]

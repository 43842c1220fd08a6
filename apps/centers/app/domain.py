from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Coordinates:
    longitude: float
    latitude: float


@dataclass(frozen=True)
class Bounds:
    north_east: Coordinates
    south_west: Coordinates


@dataclass(frozen=True)
class CenterFilter:
    appointment: Optional[str] = None
    test_kind: Optional[str] = None
    dcc: Optional[bool] = None
    include_outdated: bool = False

"""Shot detection gating."""

from .sectors import (
    SectorGrid,
    SectorGridAccessor,
    ShotDetector,
    enabled_sectors,
    partition,
)

__all__ = [
    "SectorGrid",
    "SectorGridAccessor",
    "ShotDetector",
    "enabled_sectors",
    "partition",
]

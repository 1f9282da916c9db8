from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

BUCKET_NAMES: Tuple[str, ...] = ("active", "in_transit", "rewards", "exiting")
LIFECYCLE_BUCKETS: Tuple[str, ...] = ("active", "in_transit", "exiting")


@dataclass(frozen=True)
class BucketMapping:
    """
    Lifecycle state -> value bucket lookup.

    States missing from `states` fall into no bucket. The default mapping
    leaves `exited` out so fully withdrawn stake never shows as live value.
    The `rewards` bucket is not fed by any lifecycle state; the summary
    builder fills it from trailing reward events.
    """

    states: Mapping[str, str]

    def __post_init__(self) -> None:
        unknown = sorted({b for b in self.states.values() if b not in LIFECYCLE_BUCKETS})
        if unknown:
            raise ValueError(f"unknown bucket(s) in mapping: {', '.join(unknown)}")
        object.__setattr__(self, "states", MappingProxyType(dict(self.states)))

    def bucket_for(self, stake_state: str) -> Optional[str]:
        return self.states.get(stake_state)


DEFAULT_BUCKET_MAPPING = BucketMapping(
    states={
        "active": "active",
        "pending_activation": "in_transit",
        "in_transit": "in_transit",
        "exiting": "exiting",
    }
)

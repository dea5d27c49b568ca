"""
Cache — named dependency cache volumes.

A cache is identified by its name alone.  It is shared by every
environment that mounts it, persists across pipeline runs and is never
cleared or locked here; concurrency safety is left to the package
manager writing into it.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class CacheVolume:
    name: str

    def __post_init__(self) -> None:
        if not self.name or "/" in self.name:
            raise ValueError(f"invalid cache volume name: {self.name!r}")


def cache_volume(name: str) -> CacheVolume:
    """Resolve a logical cache name to a volume handle."""
    return CacheVolume(name=name)

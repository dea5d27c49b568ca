"""
Matrix — the table of platforms a native artifact can be built for.

A ``BuildMatrix`` is an explicit value handed to the aggregate builder;
``BuildMatrix.default()`` is the production table.  Target identifiers
are unique within a matrix, so per-target output paths never collide.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Iterable, Sequence, Tuple

from native_build.core.errors import UnknownTargetError


@unique
class OperatingSystem(str, Enum):
    LINUX = "linux"
    DARWIN = "darwin"


AOT_LINUX_IMAGE = "mcr.microsoft.com/dotnet/sdk:10.0-preview-trixie-slim"
AOT_DARWIN_IMAGE = "sickcodes/docker-osx:auto"


@dataclass(frozen=True)
class MatrixEntry:
    operating_system: OperatingSystem
    target: str             # runtime identifier, e.g. "linux-arm64"
    base_image: str

    def __post_init__(self) -> None:
        if "-" not in self.target:
            raise ValueError(f"target identifier must be '<os>-<arch>': {self.target!r}")

    @property
    def arch(self) -> str:
        return self.target.rsplit("-", 1)[1]


@dataclass(frozen=True)
class BuildMatrix:
    entries: Tuple[MatrixEntry, ...]

    def __post_init__(self) -> None:
        seen = set()
        for e in self.entries:
            if e.target in seen:
                raise ValueError(f"duplicate target identifier in matrix: {e.target}")
            seen.add(e.target)

    @classmethod
    def of(cls, entries: Iterable[MatrixEntry]) -> "BuildMatrix":
        return cls(entries=tuple(entries))

    @classmethod
    def default(cls) -> "BuildMatrix":
        return cls.of([
            MatrixEntry(OperatingSystem.LINUX, "linux-x64", AOT_LINUX_IMAGE),
            MatrixEntry(OperatingSystem.LINUX, "linux-arm64", AOT_LINUX_IMAGE),
            MatrixEntry(OperatingSystem.DARWIN, "osx-x64", AOT_DARWIN_IMAGE),
            MatrixEntry(OperatingSystem.DARWIN, "osx-arm64", AOT_DARWIN_IMAGE),
        ])

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def targets(self) -> list[str]:
        return [e.target for e in self.entries]

    def for_os(self, operating_system: OperatingSystem | str) -> "BuildMatrix":
        os_value = OperatingSystem(operating_system)
        return BuildMatrix.of(e for e in self.entries if e.operating_system == os_value)

    def lookup(self, target: str) -> MatrixEntry:
        for e in self.entries:
            if e.target == target:
                return e
        raise UnknownTargetError(target, self.targets())

    def select(self, targets: Sequence[str]) -> "BuildMatrix":
        """Sub-matrix for *targets*, in matrix order.  Unknown ids raise."""
        wanted = {self.lookup(t).target for t in targets}
        return BuildMatrix.of(e for e in self.entries if e.target in wanted)

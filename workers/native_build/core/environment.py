"""
Environment — immutable description of an isolated build environment.

An ``Environment`` is a value: a base image plus an ordered set of
mounts and exec steps.  Every ``with_*`` method returns a new value and
leaves the receiver untouched, so partially configured environments can
be shared and extended without interfering with each other.

Nothing runs until a ``ContainerEngine`` materializes the value (see
``native_build.core.engine``).
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from native_build.core.cache import CacheVolume


# ── Mounts ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DirectoryMount:
    """Host directory copied into the environment (never written back)."""
    path: str
    source: Path
    ignore: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CacheMount:
    path: str
    cache: CacheVolume


@dataclass(frozen=True)
class FileMount:
    """Single host file, mounted read-only."""
    path: str
    source: Path


Mount = DirectoryMount | CacheMount | FileMount


# ── Exec steps ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ExecStep:
    """One command, with the workdir and env in effect when it was added."""
    args: Tuple[str, ...]
    workdir: Optional[str] = None
    env: Tuple[Tuple[str, str], ...] = ()
    stage: str = "exec"
    allow_failure: bool = False

    @property
    def command_line(self) -> str:
        return " ".join(self.args)


# ── Environment ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Environment:
    image: str
    mounts: Tuple[Mount, ...] = ()
    steps: Tuple[ExecStep, ...] = ()
    workdir: Optional[str] = None
    env: Tuple[Tuple[str, str], ...] = field(default=())

    @classmethod
    def from_image(cls, address: str) -> "Environment":
        if not address:
            raise ValueError("base image address must not be empty")
        return cls(image=address)

    # mounts replace any earlier mount at the same in-environment path

    def _with_mount(self, mount: Mount) -> "Environment":
        kept = tuple(m for m in self.mounts if m.path != mount.path)
        return replace(self, mounts=kept + (mount,))

    def with_mounted_directory(
        self,
        path: str,
        source: Path,
        ignore: Sequence[str] = (),
    ) -> "Environment":
        return self._with_mount(
            DirectoryMount(path=path, source=Path(source), ignore=tuple(ignore))
        )

    def with_mounted_cache(self, path: str, cache: CacheVolume) -> "Environment":
        return self._with_mount(CacheMount(path=path, cache=cache))

    def with_mounted_file(self, path: str, source: Path) -> "Environment":
        return self._with_mount(FileMount(path=path, source=Path(source)))

    def with_workdir(self, path: str) -> "Environment":
        return replace(self, workdir=path)

    def with_env_variable(self, name: str, value: str) -> "Environment":
        kept = tuple((k, v) for k, v in self.env if k != name)
        return replace(self, env=kept + ((name, value),))

    def with_exec(
        self,
        args: Sequence[str],
        stage: str = "exec",
        allow_failure: bool = False,
    ) -> "Environment":
        if not args:
            raise ValueError("exec requires a non-empty command")
        step = ExecStep(
            args=tuple(str(a) for a in args),
            workdir=self.workdir,
            env=self.env,
            stage=stage,
            allow_failure=allow_failure,
        )
        return replace(self, steps=self.steps + (step,))

    # ── Introspection ────────────────────────────────────────────────────

    def env_dict(self) -> Dict[str, str]:
        return dict(self.env)

    def mount_at(self, path: str) -> Optional[Mount]:
        for m in self.mounts:
            if m.path == path:
                return m
        return None

    def stages(self) -> Tuple[str, ...]:
        return tuple(s.stage for s in self.steps)

"""
Shared pytest fixtures for native_build tests.

No container runtime is needed: ``FakeEngine`` implements the
``ContainerEngine`` interface in memory.  It records every environment it
materializes, runs exec steps by scripted rules, and "produces" a native
binary whenever a ``dotnet publish -r <rid> -o <dir>`` step runs:

  - linux-*  →  a minimal ELF64 executable for the rid's machine
  - osx-*    →  a Mach-O header

Failures are scripted with ``fail_when(env, step)``, an engine that cannot
create environments with ``unreachable(env)``, and cancellation is
observable through ``discarded`` / ``max_active``.
"""
import asyncio
import struct
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from native_build.core.engine import ExecResult
from native_build.core.environment import Environment, ExecStep
from native_build.core.errors import ExecError
from native_build.core.provisioner import ProvisionerRegistry
from native_build.policy.matrix import (
    AOT_DARWIN_IMAGE,
    AOT_LINUX_IMAGE,
    BuildMatrix,
    MatrixEntry,
    OperatingSystem,
)
from native_build.policy.profile import PipelineProfile

EM_X86_64 = 62
EM_AARCH64 = 183

RID_MACHINES = {"x64": EM_X86_64, "arm64": EM_AARCH64}

MACHO_HEADER = b"\xcf\xfa\xed\xfe" + b"\x00" * 28


def make_elf(machine: int = EM_X86_64, e_type: int = 2) -> bytes:
    """
    Smallest ELF64 little-endian file pyelftools will parse: a header and
    two section headers (null + .shstrtab).
    """
    shstrtab = b"\x00.shstrtab\x00"
    header = struct.pack(
        "<4sBBBBB7sHHIQQQIHHHHHH",
        b"\x7fELF", 2, 1, 1, 0, 0, b"\x00" * 7,
        e_type, machine, 1,
        0, 0, 80,          # entry, phoff, shoff
        0, 64, 0, 0,       # flags, ehsize, phentsize, phnum
        64, 2, 1,          # shentsize, shnum, shstrndx
    )
    body = shstrtab.ljust(16, b"\x00")
    null_section = struct.pack("<IIQQQQIIQQ", 0, 0, 0, 0, 0, 0, 0, 0, 0, 0)
    strtab_section = struct.pack(
        "<IIQQQQIIQQ", 1, 3, 0, 0, 64, len(shstrtab), 0, 0, 1, 0
    )
    return header + body + null_section + strtab_section


def default_binary(target: str) -> bytes:
    os_name, arch = target.rsplit("-", 1)
    if os_name == "linux":
        return make_elf(RID_MACHINES[arch])
    return MACHO_HEADER


def target_of(env: Environment) -> Optional[str]:
    """The runtime identifier an environment builds for, from its ``-r`` flag."""
    for step in env.steps:
        if "-r" in step.args:
            return step.args[step.args.index("-r") + 1]
    return None


# =============================================================================
# Fake engine
# =============================================================================

class FakeContainer:
    def __init__(self, engine: "FakeEngine", env: Environment) -> None:
        self.engine = engine
        self.env = env
        self.results: List[ExecResult] = []
        self.files: Dict[str, bytes] = {}

    async def exec(self, step: ExecStep) -> ExecResult:
        if self.engine.delay:
            await asyncio.sleep(self.engine.delay)
        code = 1 if self.engine.fail_when(self.env, step) else 0
        stdout = self.engine.stdout_for(step)
        stderr = f"error: {step.command_line} failed" if code else ""
        result = ExecResult(
            command=step.args, exit_code=code, stdout=stdout, stderr=stderr,
            duration_ms=0, stage=step.stage,
        )
        self.results.append(result)
        if code and not step.allow_failure:
            raise ExecError(step.args, code, stdout, stderr, stage=step.stage)

        args = step.args
        if "publish" in args and "-r" in args and "-o" in args:
            rid = args[args.index("-r") + 1]
            out = args[args.index("-o") + 1]
            payload = self.engine.binary_for(rid)
            if payload is not None:
                self.files[f"{out}/{self.engine.binary_name}"] = payload
        return result

    def stdout(self) -> str:
        if not self.results:
            raise ValueError("environment ran no commands; stdout is undefined")
        return self.results[-1].stdout

    async def read_file(self, path: str) -> bytes:
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    async def export_file(self, path: str, dest: Path) -> Path:
        data = await self.read_file(path)
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        return dest

    async def export_directory(self, path: str, dest: Path) -> Path:
        prefix = path.rstrip("/") + "/"
        dest = Path(dest)
        dest.mkdir(parents=True, exist_ok=True)
        for name, data in self.files.items():
            if name.startswith(prefix):
                out = dest / name[len(prefix):]
                out.parent.mkdir(parents=True, exist_ok=True)
                out.write_bytes(data)
        return dest


class FakeEngine:
    """In-memory ``ContainerEngine``."""

    def __init__(
        self,
        fail_when: Optional[Callable[[Environment, ExecStep], bool]] = None,
        stdout_for: Optional[Callable[[ExecStep], str]] = None,
        binary_for: Optional[Callable[[str], Optional[bytes]]] = None,
        binary_name: str = "paradox-clausewitz-sav",
        delay: float = 0.0,
        unreachable: Optional[Callable[[Environment], bool]] = None,
    ) -> None:
        self.fail_when = fail_when or (lambda env, step: False)
        self.stdout_for = stdout_for or (lambda step: f"ran: {step.command_line}\n")
        self.binary_for = binary_for or default_binary
        self.binary_name = binary_name
        self.delay = delay
        self.unreachable = unreachable or (lambda env: False)

        self.materialized: List[Environment] = []
        self.discarded: List[Optional[str]] = []
        self.active = 0
        self.max_active = 0

    @asynccontextmanager
    async def materialize(self, env: Environment):
        self.materialized.append(env)
        if self.unreachable(env):
            raise OSError("docker daemon not reachable")
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        container = FakeContainer(self, env)
        try:
            for step in env.steps:
                await container.exec(step)
            yield container
        finally:
            self.active -= 1
            self.discarded.append(target_of(env))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def profile() -> PipelineProfile:
    return PipelineProfile.v1()


@pytest.fixture
def provisioners() -> ProvisionerRegistry:
    return ProvisionerRegistry.default()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def matrix() -> BuildMatrix:
    return BuildMatrix.default()


@pytest.fixture
def linux_x64() -> MatrixEntry:
    return MatrixEntry(OperatingSystem.LINUX, "linux-x64", AOT_LINUX_IMAGE)


@pytest.fixture
def linux_arm64() -> MatrixEntry:
    return MatrixEntry(OperatingSystem.LINUX, "linux-arm64", AOT_LINUX_IMAGE)


@pytest.fixture
def osx_arm64() -> MatrixEntry:
    return MatrixEntry(OperatingSystem.DARWIN, "osx-arm64", AOT_DARWIN_IMAGE)


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A skeletal checkout with build outputs that must never be mounted."""
    root = tmp_path / "repo"
    cli = root / "src" / "MageeSoft.Paradox.Clausewitz.Save.Cli"
    cli.mkdir(parents=True)
    (cli / "Program.cs").write_text("// entry point\n")
    (cli / "obj").mkdir()
    (cli / "obj" / "project.assets.json").write_text("{}")
    (cli / "bin").mkdir()
    (cli / "bin" / "stale.dll").write_bytes(b"\x00")
    saves = root / "saves" / "stellaris"
    saves.mkdir(parents=True)
    (saves / "ironman.sav").write_bytes(b"PK\x03\x04")
    return root


@pytest.fixture
def make_engine():
    """``FakeEngine`` constructor, for tests that script failures."""
    return FakeEngine


@pytest.fixture
def elf():
    """``make_elf`` builder for hand-made artifacts."""
    return make_elf

"""
Engine — materialize an ``Environment`` into a running sandbox.

``DockerEngine`` drives the ``docker`` CLI through asyncio subprocesses:

    docker run -d --name <id> -v ... <image>    (keep-alive container)
    docker exec -w <workdir> -e K=V <id> ...    (one per exec step)
    docker cp <id>:<path> -                     (reads / exports, tar stream)
    docker rm -f <id>                           (always, on context exit)

Mounted directories are staged as a private copy first, so nothing a
build writes inside the sandbox reaches the caller's tree and two runs
never share state except through named cache volumes.

The materialized sandbox only lives inside the ``materialize`` context.
Cancelling the awaiting task kills the in-flight docker process and the
context exit removes the container.
"""
from __future__ import annotations

import asyncio
import io
import logging
import os
import shutil
import tarfile
import tempfile
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import AsyncContextManager, AsyncIterator, List, Optional, Protocol, Sequence
from uuid import uuid4

from native_build.core.environment import (
    CacheMount,
    DirectoryMount,
    Environment,
    ExecStep,
    FileMount,
)
from native_build.core.errors import ExecError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecResult:
    command: tuple
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    stage: str = "exec"


# ── Interfaces ───────────────────────────────────────────────────────────────

class RealizedEnvironment(Protocol):
    results: List[ExecResult]

    def stdout(self) -> str:
        ...

    async def read_file(self, path: str) -> bytes:
        ...

    async def export_file(self, path: str, dest: Path) -> Path:
        ...

    async def export_directory(self, path: str, dest: Path) -> Path:
        ...


class ContainerEngine(Protocol):
    def materialize(self, env: Environment) -> AsyncContextManager[RealizedEnvironment]:
        ...


# ── Subprocess helper ────────────────────────────────────────────────────────

async def run_process(args: Sequence[str]) -> tuple[int, bytes, bytes, int]:
    """Run *args*, returning (exit_code, stdout, stderr, duration_ms).

    On cancellation the child process is killed before re-raising.
    """
    t0 = time.monotonic()
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        out, err = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    duration = int((time.monotonic() - t0) * 1000)
    return proc.returncode or 0, out, err, duration


def ignore_names(patterns: Sequence[str]) -> List[str]:
    """``**/obj`` style patterns → bare names for ``shutil.ignore_patterns``."""
    names = []
    for p in patterns:
        name = p.removeprefix("**/").rstrip("/")
        if name:
            names.append(name)
    return names


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


# ── Docker ───────────────────────────────────────────────────────────────────

class DockerContainer:
    """A running keep-alive container created by ``DockerEngine``."""

    def __init__(self, name: str, docker: str = "docker") -> None:
        self.name = name
        self.docker = docker
        self.results: List[ExecResult] = []

    async def exec(self, step: ExecStep) -> ExecResult:
        args = [self.docker, "exec"]
        if step.workdir:
            args += ["-w", step.workdir]
        for key, value in step.env:
            args += ["-e", f"{key}={value}"]
        args.append(self.name)
        args += list(step.args)

        logger.info("[%s] %s: %s", self.name, step.stage, step.command_line)
        code, out, err, duration = await run_process(args)
        result = ExecResult(
            command=step.args,
            exit_code=code,
            stdout=_decode(out),
            stderr=_decode(err),
            duration_ms=duration,
            stage=step.stage,
        )
        self.results.append(result)

        if code != 0 and not step.allow_failure:
            logger.error(
                "[%s] %s step failed (exit %d): %s",
                self.name, step.stage, code, step.command_line,
            )
            raise ExecError(
                step.args, code, result.stdout, result.stderr, stage=step.stage
            )
        return result

    def stdout(self) -> str:
        if not self.results:
            raise ValueError("environment ran no commands; stdout is undefined")
        return self.results[-1].stdout

    async def _copy_out(self, path: str) -> tarfile.TarFile:
        code, out, err, _ = await run_process(
            [self.docker, "cp", f"{self.name}:{path}", "-"]
        )
        if code != 0:
            raise FileNotFoundError(
                f"{path} not found in environment {self.name}: {_decode(err).strip()}"
            )
        return tarfile.open(fileobj=io.BytesIO(out), mode="r:")

    def _file_member(self, tar: tarfile.TarFile, path: str) -> tarfile.TarInfo:
        """The archived file for *path*; directories and other types are rejected."""
        members = tar.getmembers()
        expected = PurePosixPath(path).name
        if not members or not members[0].isfile() or members[0].name != expected:
            raise FileNotFoundError(f"{path} is not a regular file in {self.name}")
        return members[0]

    async def read_file(self, path: str) -> bytes:
        with await self._copy_out(path) as tar:
            handle = tar.extractfile(self._file_member(tar, path))
            assert handle is not None
            return handle.read()

    async def export_file(self, path: str, dest: Path) -> Path:
        dest = Path(dest)
        with await self._copy_out(path) as tar:
            member = self._file_member(tar, path)
            handle = tar.extractfile(member)
            assert handle is not None
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(handle.read())
            os.chmod(dest, member.mode & 0o777 or 0o755)
        return dest

    async def export_directory(self, path: str, dest: Path) -> Path:
        dest = Path(dest)
        dest.mkdir(parents=True, exist_ok=True)
        with await self._copy_out(path.rstrip("/") + "/.") as tar:
            tar.extractall(dest, filter="data")
        return dest


class DockerEngine:
    """Materializes environments as docker containers."""

    def __init__(
        self,
        docker: str = "docker",
        cache_prefix: str = "native-build-",
        staging_root: Optional[Path] = None,
    ) -> None:
        self.docker = docker
        self.cache_prefix = cache_prefix
        self.staging_root = Path(staging_root) if staging_root else None

    def cache_volume_name(self, cache_name: str) -> str:
        return f"{self.cache_prefix}{cache_name}"

    def _stage_directory(self, mount: DirectoryMount, dest: Path) -> Path:
        if not mount.source.is_dir():
            raise FileNotFoundError(f"mounted directory does not exist: {mount.source}")
        names = ignore_names(mount.ignore)
        shutil.copytree(
            mount.source,
            dest,
            symlinks=True,
            ignore=shutil.ignore_patterns(*names) if names else None,
        )
        return dest

    async def _run_args(self, env: Environment, name: str, staging: Path) -> List[str]:
        args = [self.docker, "run", "-d", "--name", name, "--entrypoint", "tail"]
        for i, mount in enumerate(env.mounts):
            if isinstance(mount, DirectoryMount):
                staged = await asyncio.to_thread(
                    self._stage_directory, mount, staging / f"dir{i}"
                )
                args += ["-v", f"{staged}:{mount.path}"]
            elif isinstance(mount, CacheMount):
                volume = self.cache_volume_name(mount.cache.name)
                args += ["-v", f"{volume}:{mount.path}"]
            elif isinstance(mount, FileMount):
                if not mount.source.is_file():
                    raise FileNotFoundError(f"mounted file does not exist: {mount.source}")
                args += ["-v", f"{mount.source.resolve()}:{mount.path}:ro"]
        args += [env.image, "-f", "/dev/null"]
        return args

    async def _remove(self, name: str) -> None:
        try:
            code, _, err, _ = await run_process([self.docker, "rm", "-f", name])
        except OSError as e:
            logger.debug("docker rm -f %s: %s", name, e)
            return
        if code != 0:
            logger.debug("docker rm -f %s: %s", name, _decode(err).strip())

    @asynccontextmanager
    async def materialize(self, env: Environment) -> AsyncIterator[DockerContainer]:
        name = f"native-build-{uuid4().hex[:12]}"
        staging = Path(tempfile.mkdtemp(prefix="native-build-", dir=self.staging_root))
        container = DockerContainer(name, self.docker)
        try:
            args = await self._run_args(env, name, staging)
            logger.info("Starting environment %s from %s", name, env.image)
            code, out, err, _ = await run_process(args)
            if code != 0:
                raise ExecError(
                    args, code, _decode(out), _decode(err), stage="create"
                )
            for step in env.steps:
                await container.exec(step)
            yield container
        finally:
            await asyncio.shield(self._remove(name))
            shutil.rmtree(staging, ignore_errors=True)
            logger.info("Discarded environment %s", name)

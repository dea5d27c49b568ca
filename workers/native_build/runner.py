"""
Pipeline runner — the externally invocable operations.

Each entry point assembles one environment (or a matrix of them) from
the core components and returns captured text, an ``ArtifactFile`` or an
``AggregateReport``.  Failures propagate as the exceptions defined in
``native_build.core.errors``.

Usage (CLI)::

    python -m native_build.runner build-native-linux --repo . --output out/
    python -m native_build.runner build-native --target linux-arm64 --repo .
    python -m native_build.runner linux-test --repo .

Usage (async)::

    from native_build.runner import build_native_linux
    report = await build_native_linux(Path("."), Path("out"))
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from native_build.config import settings
from native_build.core.aggregate import build_aggregate
from native_build.core.artifact import ArtifactFile
from native_build.core.cache import cache_volume
from native_build.core.engine import ContainerEngine, DockerEngine
from native_build.core.environment import Environment
from native_build.core.errors import AggregateBuildError, BuildError, ExecError
from native_build.core.provisioner import ProvisionerRegistry
from native_build.core.single_target import build_native
from native_build.io.schema import AggregateReport
from native_build.io.writer import write_report
from native_build.policy.matrix import BuildMatrix, OperatingSystem
from native_build.policy.profile import PipelineProfile

log = logging.getLogger(__name__)


def default_engine() -> DockerEngine:
    return DockerEngine(
        docker=settings.DOCKER_BINARY,
        cache_prefix=settings.CACHE_VOLUME_PREFIX,
        staging_root=Path(settings.STAGING_ROOT),
    )


def default_provisioners() -> ProvisionerRegistry:
    return ProvisionerRegistry.default(
        channel=settings.DOTNET_CHANNEL,
        quality=settings.DOTNET_QUALITY,
    )


# ─── Managed (non-AOT) entry points ──────────────────────────────────────────

def managed_environment(
    repo_dir: Path,
    workdir: str,
    profile: PipelineProfile,
) -> Environment:
    """SDK image + nuget cache + source tree, positioned at *workdir*."""
    return (
        Environment.from_image(profile.sdk_image)
        .with_mounted_cache(profile.cache_path, cache_volume(profile.cache_name))
        .with_mounted_directory(profile.repo_mount, repo_dir, ignore=profile.source_ignore)
        .with_workdir(workdir)
    )


async def _stdout_of(engine: ContainerEngine, env: Environment) -> str:
    async with engine.materialize(env) as container:
        return container.stdout()


async def build(
    repo_dir: Path,
    engine: Optional[ContainerEngine] = None,
    profile: Optional[PipelineProfile] = None,
) -> str:
    """``dotnet build`` of the whole solution."""
    profile = profile or PipelineProfile.v1()
    env = managed_environment(repo_dir, profile.solution_dir, profile)
    return await _stdout_of(engine or default_engine(), env.with_exec(profile.build_command()))


async def test(
    repo_dir: Path,
    engine: Optional[ContainerEngine] = None,
    profile: Optional[PipelineProfile] = None,
) -> str:
    """``dotnet test`` of the whole solution."""
    profile = profile or PipelineProfile.v1()
    env = managed_environment(repo_dir, profile.solution_dir, profile)
    return await _stdout_of(engine or default_engine(), env.with_exec(profile.test_command()))


async def vs_test(
    repo_dir: Path,
    engine: Optional[ContainerEngine] = None,
    profile: Optional[PipelineProfile] = None,
) -> str:
    """Run the test project as an executable (``dotnet run --project``)."""
    profile = profile or PipelineProfile.v1()
    env = managed_environment(repo_dir, profile.solution_dir, profile)
    return await _stdout_of(engine or default_engine(), env.with_exec(profile.run_tests_command()))


async def tool(
    repo_dir: Path,
    engine: Optional[ContainerEngine] = None,
    profile: Optional[PipelineProfile] = None,
) -> str:
    """Publish the CLI packaged as a dotnet tool."""
    profile = profile or PipelineProfile.v1()
    env = managed_environment(repo_dir, profile.cli_project_dir, profile)
    return await _stdout_of(
        engine or default_engine(),
        env.with_exec(profile.publish_command(pack_as_tool=True)),
    )


async def publish(
    repo_dir: Path,
    engine: Optional[ContainerEngine] = None,
    profile: Optional[PipelineProfile] = None,
) -> str:
    """Framework-dependent ``dotnet publish`` of the CLI."""
    profile = profile or PipelineProfile.v1()
    env = managed_environment(repo_dir, profile.cli_project_dir, profile)
    return await _stdout_of(engine or default_engine(), env.with_exec(profile.publish_command()))


async def linux_test(
    repo_dir: Path,
    save_file: Optional[Path] = None,
    engine: Optional[ContainerEngine] = None,
    profile: Optional[PipelineProfile] = None,
) -> str:
    """
    Smoke test: mount a known save file where the CLI discovers Stellaris
    saves, then run its ``list`` command and return the output.
    """
    profile = profile or PipelineProfile.v1()
    save_file = Path(save_file) if save_file else Path(repo_dir) / profile.save_fixture
    env = (
        managed_environment(repo_dir, profile.cli_project_dir, profile)
        .with_mounted_file(profile.save_mount_path, save_file)
        .with_exec(profile.list_saves_command())
    )
    return await _stdout_of(engine or default_engine(), env)


# ─── Native AOT entry points ─────────────────────────────────────────────────

async def publish_aot(
    repo_dir: Path,
    target: str,
    output_dir: Path,
    engine: Optional[ContainerEngine] = None,
    matrix: Optional[BuildMatrix] = None,
    profile: Optional[PipelineProfile] = None,
    host_arch: Optional[str] = None,
    provisioners: Optional[ProvisionerRegistry] = None,
) -> ArtifactFile:
    """AOT-publish a single target; unknown targets raise ``UnknownTargetError``."""
    entry = (matrix or BuildMatrix.default()).lookup(target)
    return await build_native(
        engine or default_engine(),
        Path(repo_dir),
        entry,
        Path(output_dir),
        profile=profile,
        provisioners=provisioners or default_provisioners(),
        host_arch=host_arch or settings.HOST_ARCH,
    )


async def build_native_targets(
    repo_dir: Path,
    output_dir: Path,
    operating_system: Optional[OperatingSystem | str] = None,
    targets: Optional[Sequence[str]] = None,
    engine: Optional[ContainerEngine] = None,
    matrix: Optional[BuildMatrix] = None,
    profile: Optional[PipelineProfile] = None,
    host_arch: Optional[str] = None,
    provisioners: Optional[ProvisionerRegistry] = None,
    concurrency: Optional[int] = None,
    continue_on_error: bool = False,
) -> AggregateReport:
    """
    Build a filtered matrix into *output_dir* and write build_report.json.

    Raises the first ``BuildError`` (fail-fast), or ``AggregateBuildError``
    after writing the report when ``continue_on_error`` is set.
    """
    selected = matrix or BuildMatrix.default()
    if targets is not None:
        selected = selected.select(targets)
    if operating_system is not None:
        selected = selected.for_os(operating_system)

    output_dir = Path(output_dir)
    report = await build_aggregate(
        engine or default_engine(),
        Path(repo_dir),
        selected,
        output_dir,
        profile=profile,
        provisioners=provisioners or default_provisioners(),
        host_arch=host_arch or settings.HOST_ARCH,
        concurrency=settings.BUILD_CONCURRENCY if concurrency is None else concurrency,
        continue_on_error=continue_on_error,
    )
    report_path = write_report(report, output_dir)
    log.info("Report written: %s", report_path)

    if report.failed:
        raise AggregateBuildError(
            {r.target: r.error_message or "" for r in report.failed}
        )
    return report


async def build_native_linux(repo_dir: Path, output_dir: Path, **kwargs) -> AggregateReport:
    return await build_native_targets(
        repo_dir, output_dir, operating_system=OperatingSystem.LINUX, **kwargs
    )


async def build_native_darwin(repo_dir: Path, output_dir: Path, **kwargs) -> AggregateReport:
    return await build_native_targets(
        repo_dir, output_dir, operating_system=OperatingSystem.DARWIN, **kwargs
    )


# ─── CLI ──────────────────────────────────────────────────────────────────────

_TEXT_COMMANDS = {
    "build": build,
    "test": test,
    "vs-test": vs_test,
    "tool": tool,
    "publish": publish,
}


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Containerized build / test / native AOT pipeline",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    def _with_repo(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
        p.add_argument("--repo", type=Path, default=Path("."), help="Source tree root")
        return p

    for name in _TEXT_COMMANDS:
        _with_repo(sub.add_parser(name))

    smoke = _with_repo(sub.add_parser("linux-test", help="List saves from a fixture"))
    smoke.add_argument("--save-file", type=Path, default=None)

    aot = _with_repo(sub.add_parser("publish-aot", help="AOT-publish one target"))
    aot.add_argument("--target", required=True)
    aot.add_argument("--output", type=Path, default=Path(settings.NATIVE_OUTPUT_PATH))

    for name, help_text in (
        ("build-native", "AOT-publish a matrix subset"),
        ("build-native-linux", "AOT-publish all linux targets"),
        ("build-native-darwin", "AOT-publish all darwin targets"),
    ):
        p = _with_repo(sub.add_parser(name, help=help_text))
        p.add_argument("--output", type=Path, default=Path(settings.NATIVE_OUTPUT_PATH))
        p.add_argument("--concurrency", type=int, default=settings.BUILD_CONCURRENCY)
        p.add_argument("--continue-on-error", action="store_true")
        if name == "build-native":
            p.add_argument("--os", dest="operating_system", choices=[o.value for o in OperatingSystem])
            p.add_argument("--target", dest="targets", action="append", default=None)
    return parser


async def _dispatch(args: argparse.Namespace) -> str:
    if args.command in _TEXT_COMMANDS:
        return await _TEXT_COMMANDS[args.command](args.repo)
    if args.command == "linux-test":
        return await linux_test(args.repo, save_file=args.save_file)
    if args.command == "publish-aot":
        artifact = await publish_aot(args.repo, args.target, args.output)
        return f"{artifact.path_rel}  {artifact.sha256}  {artifact.size_bytes} bytes"

    common = dict(concurrency=args.concurrency, continue_on_error=args.continue_on_error)
    if args.command == "build-native-linux":
        report = await build_native_linux(args.repo, args.output, **common)
    elif args.command == "build-native-darwin":
        report = await build_native_darwin(args.repo, args.output, **common)
    else:
        report = await build_native_targets(
            args.repo, args.output,
            operating_system=args.operating_system,
            targets=args.targets,
            **common,
        )
    lines = [f"{r.path_rel}  {r.sha256}" for r in report.succeeded]
    return "\n".join(lines) or "(no targets selected)"


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point."""
    args = _parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )
    try:
        print(asyncio.run(_dispatch(args)))
    except (BuildError, AggregateBuildError, LookupError, ValueError) as exc:
        log.error("%s", exc)
        return 1
    except ExecError as exc:
        log.error("%s\n%s", exc, exc.output)
        return 1
    except OSError as exc:
        log.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

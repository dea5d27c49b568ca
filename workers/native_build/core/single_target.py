"""
Single-target builder — one matrix entry → one native executable.

    base image
      → provisioning strategy for the entry's OS   (stage: provision)
      → nuget cache + private copy of the source tree
      → dotnet restore -r <target>                  (stage: restore)
      → dotnet publish -c Release -r <target> -o …  (stage: compile)
      → export <output>/<target>/<binary>

The first failing step aborts the target and is reported with the error
class matching its stage.  Nothing is retried here.
"""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

from native_build.core.artifact import ArtifactFile, describe_artifact
from native_build.core.cache import cache_volume
from native_build.core.engine import ContainerEngine
from native_build.core.environment import Environment
from native_build.core.errors import (
    STAGE_ERRORS,
    ArtifactInvalid,
    ArtifactMissing,
    BuildError,
    ExecError,
    ProvisioningError,
)
from native_build.core.provisioner import ProvisionerRegistry
from native_build.policy.matrix import MatrixEntry
from native_build.policy.profile import PipelineProfile

logger = logging.getLogger(__name__)


def native_environment(
    source_dir: Path,
    entry: MatrixEntry,
    profile: PipelineProfile,
    provisioners: ProvisionerRegistry,
    host_arch: str,
) -> Environment:
    """Describe (without running) the environment that builds *entry*."""
    env = Environment.from_image(entry.base_image)
    env = provisioners.provision(env, entry, host_arch)
    return (
        env.with_mounted_cache(profile.cache_path, cache_volume(profile.cache_name))
        .with_mounted_directory(profile.repo_mount, source_dir, ignore=profile.source_ignore)
        .with_workdir(profile.cli_project_dir)
        .with_exec(profile.restore_command(entry.target), stage="restore")
        .with_exec(profile.publish_aot_command(entry.target), stage="compile")
    )


async def build_native(
    engine: ContainerEngine,
    source_dir: Path,
    entry: MatrixEntry,
    output_dir: Path,
    profile: Optional[PipelineProfile] = None,
    provisioners: Optional[ProvisionerRegistry] = None,
    host_arch: str = "x64",
) -> ArtifactFile:
    """
    Build *entry* from *source_dir* and extract its binary into
    ``output_dir/<target>/<binary>``.

    Raises
    ------
    ProvisioningError, RestoreError, CompileError
        A step of the corresponding stage exited non-zero, or (provisioning)
        the environment itself could not be created.
    ArtifactMissing
        Publish succeeded but the expected binary is absent or invalid.
    """
    profile = profile or PipelineProfile.v1()
    provisioners = provisioners or ProvisionerRegistry.default()

    path_rel = f"{entry.target}/{profile.binary_name}"
    dest = Path(output_dir) / path_rel
    artifact_path = profile.artifact_path(entry.target)

    env = native_environment(source_dir, entry, profile, provisioners, host_arch)
    logger.info(
        "Building %s on %s (%d steps)", entry.target, entry.base_image, len(env.steps)
    )
    t0 = time.monotonic()

    entered = False
    try:
        async with engine.materialize(env) as container:
            entered = True
            try:
                await container.export_file(artifact_path, dest)
            except FileNotFoundError as e:
                raise ArtifactMissing(
                    entry.target,
                    f"publish succeeded but {artifact_path} is absent",
                    command=profile.publish_aot_command(entry.target),
                ) from e
    except ExecError as e:
        error_cls = STAGE_ERRORS.get(e.stage, BuildError)
        logger.error("%s failed at %s: %s", entry.target, e.stage, e)
        raise error_cls.from_exec(entry.target, e) from e
    except OSError as e:
        # engine unavailable, missing mount source; host-side errors after
        # the environment is up propagate unchanged
        if entered:
            raise
        logger.error("%s: environment could not be created: %s", entry.target, e)
        raise ProvisioningError(
            entry.target, f"environment could not be created: {e}"
        ) from e

    try:
        artifact = describe_artifact(entry, dest, path_rel)
    except ArtifactInvalid:
        dest.unlink(missing_ok=True)
        raise

    logger.info(
        "Built %s: %s (%d bytes, %.1fs)",
        entry.target, path_rel, artifact.size_bytes, time.monotonic() - t0,
    )
    return artifact

"""
Aggregate builder — build every entry of a (filtered) matrix and merge
the binaries into one output tree keyed by target identifier.

Targets are independent and run concurrently, bounded by an
``asyncio.Semaphore``.  Default is fail-fast: the first failing target
cancels its in-flight siblings and its error is re-raised.  With
``continue_on_error`` every target runs to completion and failures are
reported in the returned ``AggregateReport`` instead.
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional

from native_build.core.engine import ContainerEngine
from native_build.core.errors import BuildError
from native_build.core.provisioner import ProvisionerRegistry
from native_build.core.single_target import build_native
from native_build.io.schema import AggregateReport, TargetResult, TargetStatus
from native_build.policy.matrix import BuildMatrix, MatrixEntry
from native_build.policy.profile import PipelineProfile

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 2


def _failed_result(entry: MatrixEntry, error: BuildError, duration_ms: int = 0) -> TargetResult:
    return TargetResult(
        target=entry.target,
        operating_system=entry.operating_system.value,
        base_image=entry.base_image,
        status=TargetStatus.FAILED,
        error_kind=error.kind,
        error_message=str(error),
        command=error.command,
        duration_ms=duration_ms,
    )


async def build_aggregate(
    engine: ContainerEngine,
    source_dir: Path,
    matrix: BuildMatrix,
    output_dir: Path,
    profile: Optional[PipelineProfile] = None,
    provisioners: Optional[ProvisionerRegistry] = None,
    host_arch: str = "x64",
    concurrency: int = DEFAULT_CONCURRENCY,
    continue_on_error: bool = False,
) -> AggregateReport:
    """
    Build every entry of *matrix* into ``output_dir/<target>/<binary>``.

    The caller filters the matrix (``for_os`` / ``select``); an empty
    matrix yields an empty output directory and an ``EMPTY`` report.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    profile = profile or PipelineProfile.v1()
    provisioners = provisioners or ProvisionerRegistry.default()
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    entries = list(matrix)
    report = AggregateReport(
        profile_id=profile.profile_id,
        output_dir=str(output_dir),
        requested_targets=[e.target for e in entries],
        continue_on_error=continue_on_error,
    )
    if not entries:
        logger.info("No matrix entries selected; nothing to build")
        return report

    claimed: Dict[str, str] = {}
    for e in entries:
        rel = f"{e.target}/{profile.binary_name}"
        if rel in claimed:
            raise ValueError(f"{e.target} and {claimed[rel]} both write {rel}")
        claimed[rel] = e.target

    sem = asyncio.Semaphore(concurrency)
    logger.info(
        "Building %d target(s) with concurrency %d: %s",
        len(entries), concurrency, ", ".join(report.requested_targets),
    )

    async def _build_one(entry: MatrixEntry) -> TargetResult:
        async with sem:
            t0 = time.monotonic()
            try:
                artifact = await build_native(
                    engine, source_dir, entry, output_dir,
                    profile=profile,
                    provisioners=provisioners,
                    host_arch=host_arch,
                )
            except BuildError as e:
                if not continue_on_error:
                    raise
                logger.warning("Target %s failed, continuing: %s", entry.target, e.message)
                return _failed_result(entry, e, int((time.monotonic() - t0) * 1000))
            return TargetResult(
                target=entry.target,
                operating_system=entry.operating_system.value,
                base_image=entry.base_image,
                status=TargetStatus.SUCCESS,
                path_rel=artifact.path_rel,
                sha256=artifact.sha256,
                size_bytes=artifact.size_bytes,
                machine=artifact.machine,
                duration_ms=int((time.monotonic() - t0) * 1000),
            )

    tasks = [asyncio.create_task(_build_one(e), name=e.target) for e in entries]
    results: List[TargetResult] = []
    try:
        for next_done in asyncio.as_completed(tasks):
            results.append(await next_done)
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    order = {e.target: i for i, e in enumerate(entries)}
    report.results = sorted(results, key=lambda r: order[r.target])
    logger.info(
        "Aggregate build %s: %d succeeded, %d failed",
        report.compute_status(), len(report.succeeded), len(report.failed),
    )
    return report

"""
Pipeline Router
Containerized build, test and native AOT publishing of the
paradox-clausewitz-sav CLI.

Every endpoint runs the corresponding ``native_build.runner`` entry
point and waits for it; builds can take minutes.
"""
import logging
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from app.config import settings as api_settings
from native_build import runner  # type: ignore
from native_build.config import settings as build_settings  # type: ignore
from native_build.core.errors import (  # type: ignore
    AggregateBuildError,
    BuildError,
    ExecError,
    UnknownTargetError,
)
from native_build.io.schema import AggregateReport  # type: ignore
from native_build.policy.matrix import BuildMatrix, OperatingSystem  # type: ignore

logger = logging.getLogger(__name__)


# =============================================================================
# Request/Response Models
# =============================================================================

class RepoRequest(BaseModel):
    """Source tree to operate on."""
    repo_dir: Optional[str] = Field(
        None,
        description="Path to the source tree (defaults to DEFAULT_REPO_DIR)",
    )


class SmokeTestRequest(RepoRequest):
    save_file: Optional[str] = Field(
        None,
        description="Save file to mount (defaults to the repo's Stellaris fixture)",
    )


class NativeBuildRequest(RepoRequest):
    """Request to AOT-publish a subset of the build matrix."""
    operating_system: Optional[OperatingSystem] = Field(
        None,
        description="Only build targets of this OS family",
    )
    targets: Optional[List[str]] = Field(
        None,
        description="Only build these target identifiers",
    )
    output_dir: Optional[str] = Field(
        None,
        description="Output tree (defaults to NATIVE_OUTPUT_PATH)",
    )
    concurrency: Optional[int] = Field(None, ge=1)
    continue_on_error: bool = Field(
        False,
        description="Build every target and report all failures at the end",
    )


class TextOutput(BaseModel):
    operation: str
    stdout: str


class MatrixEntryModel(BaseModel):
    operating_system: str
    target: str
    base_image: str


# =============================================================================
# Helpers
# =============================================================================

def _repo(request: RepoRequest) -> Path:
    return Path(request.repo_dir or api_settings.DEFAULT_REPO_DIR)


def _failure(exc: Exception) -> HTTPException:
    logger.error("Pipeline step failed: %s", exc)
    if isinstance(exc, (UnknownTargetError, FileNotFoundError)):
        return HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, OSError):
        return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if isinstance(exc, AggregateBuildError):
        detail: object = {"message": str(exc), "failures": exc.failures}
    elif isinstance(exc, ExecError):
        detail = {"message": str(exc), "output": exc.output}
    else:
        detail = str(exc)
    return HTTPException(status.HTTP_502_BAD_GATEWAY, detail=detail)


_TEXT_OPERATIONS = {
    "build": runner.build,
    "test": runner.test,
    "vs-test": runner.vs_test,
    "tool": runner.tool,
    "publish": runner.publish,
}


# =============================================================================
# Router
# =============================================================================

router = APIRouter()


@router.get("/matrix", response_model=List[MatrixEntryModel])
async def get_matrix():
    """List every platform a native artifact can be built for."""
    return [
        MatrixEntryModel(
            operating_system=e.operating_system.value,
            target=e.target,
            base_image=e.base_image,
        )
        for e in BuildMatrix.default()
    ]


@router.post("/run/{operation}", response_model=TextOutput)
async def run_operation(operation: str, request: RepoRequest):
    """Run a managed build/test/publish step and return its stdout."""
    fn = _TEXT_OPERATIONS.get(operation)
    if fn is None:
        raise HTTPException(
            status.HTTP_404_NOT_FOUND,
            detail=f"Unknown operation '{operation}'. Valid: {sorted(_TEXT_OPERATIONS)}",
        )
    try:
        out = await fn(_repo(request))
    except (ExecError, OSError) as e:
        raise _failure(e)
    return TextOutput(operation=operation, stdout=out)


@router.post("/smoke-test", response_model=TextOutput)
async def smoke_test(request: SmokeTestRequest):
    """List saves from a mounted fixture with the CLI."""
    try:
        out = await runner.linux_test(
            _repo(request),
            save_file=Path(request.save_file) if request.save_file else None,
        )
    except (ExecError, OSError) as e:
        raise _failure(e)
    return TextOutput(operation="linux-test", stdout=out)


@router.post("/native", response_model=AggregateReport)
async def build_native(request: NativeBuildRequest):
    """AOT-publish the selected matrix subset into one output tree."""
    output_dir = Path(request.output_dir or build_settings.NATIVE_OUTPUT_PATH)
    try:
        return await runner.build_native_targets(
            _repo(request),
            output_dir,
            operating_system=request.operating_system,
            targets=request.targets,
            concurrency=request.concurrency,
            continue_on_error=request.continue_on_error,
        )
    except (UnknownTargetError, BuildError, AggregateBuildError) as e:
        raise _failure(e)

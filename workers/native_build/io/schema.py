"""
Schema — Pydantic models for the aggregate build report.

One ``build_report.json`` per aggregate run, next to the per-target
directories:

    <output>/build_report.json
    <output>/<target>/<binary>

Runtime contract fields (present in every report):
  package_name, orchestrator_version, profile_id, schema_version.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from native_build import ORCHESTRATOR_VERSION, PACKAGE_NAME, SCHEMA_VERSION


class TargetStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class TargetResult(BaseModel):
    """Outcome of one matrix entry."""

    target: str
    operating_system: str
    base_image: str
    status: TargetStatus

    # SUCCESS only
    path_rel: Optional[str] = None   # <target>/<binary>
    sha256: Optional[str] = None
    size_bytes: Optional[int] = None
    machine: Optional[str] = None    # ELF e_machine (linux)

    # FAILED only
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    command: Optional[List[str]] = None

    duration_ms: int = 0


class AggregateReport(BaseModel):
    """Summary of one aggregate native build — build_report.json."""

    package_name: str = PACKAGE_NAME
    orchestrator_version: str = ORCHESTRATOR_VERSION
    schema_version: str = SCHEMA_VERSION
    profile_id: str

    output_dir: str
    requested_targets: List[str] = Field(default_factory=list)
    continue_on_error: bool = False

    results: List[TargetResult] = Field(default_factory=list)

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def succeeded(self) -> List[TargetResult]:
        return [r for r in self.results if r.status == TargetStatus.SUCCESS]

    @property
    def failed(self) -> List[TargetResult]:
        return [r for r in self.results if r.status == TargetStatus.FAILED]

    def compute_status(self) -> str:
        """EMPTY, SUCCESS, PARTIAL or FAILED."""
        if not self.results:
            return "EMPTY"
        if not self.failed:
            return "SUCCESS"
        if self.succeeded:
            return "PARTIAL"
        return "FAILED"

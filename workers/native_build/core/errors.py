"""
Errors — taxonomy for native build failures.

Every build-level error carries the target identifier, the command that
failed (if any) and the captured diagnostic output, so a failure can be
diagnosed without re-running the pipeline.

    BuildError
    ├── ProvisioningError        network / package-manager failures
    │   └── UnsupportedPlatformError
    ├── RestoreError             dependency resolution failures
    ├── CompileError             non-zero publish / build exit
    └── ArtifactMissing          publish succeeded, expected file absent
        └── ArtifactInvalid      file present but not the expected format
"""
from __future__ import annotations

from typing import Dict, Optional, Sequence


class ExecError(Exception):
    """A command inside an execution environment exited non-zero."""

    def __init__(
        self,
        command: Sequence[str],
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
        stage: str = "",
    ) -> None:
        self.command = list(command)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.stage = stage
        super().__init__(
            f"command {' '.join(self.command)!r} exited with {exit_code}"
        )

    @property
    def output(self) -> str:
        """Combined captured output, stderr last."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class BuildError(Exception):
    """Base class for failures of a single-target build."""

    kind = "BUILD_FAILED"

    def __init__(
        self,
        target: str,
        message: str,
        command: Optional[Sequence[str]] = None,
        output: str = "",
    ) -> None:
        self.target = target
        self.message = message
        self.command = list(command) if command else None
        self.output = output
        super().__init__(self._format())

    def _format(self) -> str:
        text = f"[{self.target}] {self.message}"
        if self.command:
            text += f" (command: {' '.join(self.command)})"
        if self.output:
            text += f"\n{self.output.strip()}"
        return text

    @classmethod
    def from_exec(cls, target: str, exc: ExecError) -> "BuildError":
        return cls(
            target,
            f"{exc.stage or 'exec'} step exited with {exc.exit_code}",
            command=exc.command,
            output=exc.output,
        )


class ProvisioningError(BuildError):
    kind = "PROVISIONING_FAILED"


class UnsupportedPlatformError(ProvisioningError):
    kind = "UNSUPPORTED_PLATFORM"


class RestoreError(BuildError):
    kind = "RESTORE_FAILED"


class CompileError(BuildError):
    kind = "COMPILE_FAILED"


class ArtifactMissing(BuildError):
    kind = "ARTIFACT_MISSING"


class ArtifactInvalid(ArtifactMissing):
    kind = "ARTIFACT_INVALID"


class UnknownTargetError(LookupError):
    """Requested target identifier is not in the build matrix."""

    def __init__(self, target: str, known: Sequence[str]) -> None:
        self.target = target
        self.known = list(known)
        super().__init__(
            f"unknown target {target!r}; known targets: {', '.join(self.known) or '(none)'}"
        )


class AggregateBuildError(Exception):
    """One or more targets failed in a continue-on-error aggregate run."""

    def __init__(self, failures: Dict[str, str]) -> None:
        self.failures = dict(failures)  # target → error message
        super().__init__(
            f"{len(self.failures)} target(s) failed: {', '.join(self.failures)}"
        )


# Stage tag of a failing exec step → error class raised for the target.
STAGE_ERRORS = {
    "create": ProvisioningError,
    "provision": ProvisioningError,
    "restore": RestoreError,
    "compile": CompileError,
}

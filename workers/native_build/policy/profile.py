"""
Profile — fixed paths, images and commands of the pipeline.

These strings are the literal contract with the wrapped .NET toolchain:
changing them changes where artifacts land and how they are produced,
so they live here rather than in the builders.
"""
from dataclasses import dataclass, field
from typing import List, Tuple


@dataclass(frozen=True)
class PipelineProfile:
    """Where things live inside the environment and which commands run."""

    profile_id: str

    # Images for managed (non-AOT) entry points
    sdk_image: str

    # Source tree
    repo_mount: str
    solution_dir: str
    cli_project_dir: str
    test_project: str
    source_ignore: Tuple[str, ...]

    # Dependency cache
    cache_name: str
    cache_path: str

    # Native artifact
    binary_name: str
    configuration: str = "Release"

    # Smoke test
    save_fixture: str = "saves/stellaris/ironman.sav"
    save_mount_path: str = (
        "/root/.paradoxlauncher/Stellaris/save games/my test empire/ironman.sav"
    )

    dotnet: str = "dotnet"

    @classmethod
    def v1(cls) -> "PipelineProfile":
        return cls(
            profile_id="dotnet10-aot-paradox-clausewitz-sav",
            sdk_image="mcr.microsoft.com/dotnet/sdk:10.0-preview",
            repo_mount="/repo",
            solution_dir="/repo/src",
            cli_project_dir="/repo/src/MageeSoft.Paradox.Clausewitz.Save.Cli",
            test_project="MageeSoft.Paradox.Clausewitz.Save.Tests",
            source_ignore=("**/obj", "**/bin"),
            cache_name="nuget",
            cache_path="/root/.nuget/packages",
            binary_name="paradox-clausewitz-sav",
        )

    # ── Commands ─────────────────────────────────────────────────────────

    def publish_output(self, target: str) -> str:
        return f"{self.repo_mount}/bin/{self.configuration}/{target}"

    def artifact_path(self, target: str) -> str:
        return f"{self.publish_output(target)}/{self.binary_name}"

    def restore_command(self, target: str) -> List[str]:
        return [self.dotnet, "restore", "-r", target]

    def publish_aot_command(self, target: str) -> List[str]:
        return [
            self.dotnet, "publish",
            "-c", self.configuration,
            "-r", target,
            "-o", self.publish_output(target),
        ]

    def build_command(self) -> List[str]:
        return [self.dotnet, "build"]

    def test_command(self) -> List[str]:
        return [self.dotnet, "test"]

    def run_tests_command(self) -> List[str]:
        return [self.dotnet, "run", "--project", self.test_project]

    def publish_command(self, pack_as_tool: bool = False) -> List[str]:
        cmd = [self.dotnet, "publish"]
        if pack_as_tool:
            cmd.append("-p:PackAsTool=true")
        return cmd

    def list_saves_command(self) -> List[str]:
        return [self.dotnet, "run", "--", "list"]

"""
Configuration for the native build orchestrator.

Values are defaults for the entry points; every entry point also accepts
explicit overrides.
"""
import platform
import tempfile

from pydantic_settings import BaseSettings

# platform.machine() → .NET runtime identifier architecture
_MACHINE_ARCH = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


def detect_host_arch() -> str:
    return _MACHINE_ARCH.get(platform.machine().lower(), "x64")


class Settings(BaseSettings):
    """Orchestrator settings"""

    # Execution engine
    DOCKER_BINARY: str = "docker"
    CACHE_VOLUME_PREFIX: str = "native-build-"
    STAGING_ROOT: str = tempfile.gettempdir()

    # Scheduling
    BUILD_CONCURRENCY: int = 2

    # Toolchain
    HOST_ARCH: str = detect_host_arch()
    DOTNET_CHANNEL: str = "10.0"
    DOTNET_QUALITY: str = "preview"

    # Outputs
    NATIVE_OUTPUT_PATH: str = "/files/native"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()

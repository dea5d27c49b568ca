"""
Provisioner — make an environment able to AOT-compile for one target.

Each operating-system family has its own ``ProvisioningStrategy``:

  * linux  — apt: native AOT prerequisites, plus foreign-architecture
             registration and a cross toolchain when the target CPU
             differs from the host CPU.
  * darwin — the base image ships without the .NET SDK, so it is
             installed just-in-time with the official install script.

Strategies only append exec steps tagged ``provision``; a failing step
therefore surfaces as a ``ProvisioningError`` for that target alone.
New OS families are added by registering a strategy, without touching
the builders.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Protocol

from native_build.core.environment import Environment
from native_build.core.errors import UnsupportedPlatformError
from native_build.policy.matrix import MatrixEntry, OperatingSystem

logger = logging.getLogger(__name__)

PROVISION = "provision"


@dataclass(frozen=True)
class ArchInfo:
    debian_arch: str
    triple: str


ARCHITECTURES: Dict[str, ArchInfo] = {
    "x64": ArchInfo(debian_arch="amd64", triple="x86_64-linux-gnu"),
    "arm64": ArchInfo(debian_arch="arm64", triple="aarch64-linux-gnu"),
}

# Needed by the ILCompiler for any native AOT publish on linux.
AOT_PACKAGES = ("clang", "llvm", "zlib1g-dev")


def arch_info(target: str, arch: str) -> ArchInfo:
    try:
        return ARCHITECTURES[arch]
    except KeyError:
        raise UnsupportedPlatformError(
            target, f"no toolchain mapping for architecture {arch!r}"
        ) from None


class ProvisioningStrategy(Protocol):
    def provision(
        self,
        env: Environment,
        entry: MatrixEntry,
        host_arch: str,
    ) -> Environment:
        ...


@dataclass(frozen=True)
class AptCrossToolchain:
    """Debian/apt provisioning with optional foreign-arch cross toolchain."""

    def packages(self, entry: MatrixEntry, host_arch: str) -> list[str]:
        packages = list(AOT_PACKAGES)
        if entry.arch != host_arch:
            info = arch_info(entry.target, entry.arch)
            packages += [
                f"gcc-{info.triple}",
                f"binutils-{info.triple}",
                f"zlib1g-dev:{info.debian_arch}",
            ]
        return packages

    def provision(
        self,
        env: Environment,
        entry: MatrixEntry,
        host_arch: str,
    ) -> Environment:
        foreign = entry.arch != host_arch
        if foreign:
            info = arch_info(entry.target, entry.arch)
            logger.info(
                "%s: cross-compiling %s on %s host (%s)",
                entry.target, entry.arch, host_arch, info.triple,
            )
            env = env.with_exec(
                ["dpkg", "--add-architecture", info.debian_arch], stage=PROVISION
            )
        return (
            env.with_exec(["apt-get", "update"], stage=PROVISION)
            .with_exec(
                ["apt-get", "install", "-y", *self.packages(entry, host_arch)],
                stage=PROVISION,
            )
            .with_exec(["sh", "-c", "rm -rf /var/lib/apt/lists/*"], stage=PROVISION)
        )


@dataclass(frozen=True)
class InstallScriptToolchain:
    """Just-in-time SDK install via ``dotnet-install.sh``."""

    channel: str = "10.0"
    quality: str = "preview"
    install_dir: str = "/usr/local/share/dotnet"
    script_url: str = "https://dot.net/v1/dotnet-install.sh"
    script_path: str = "/tmp/dotnet-install.sh"
    base_path: str = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"

    def provision(
        self,
        env: Environment,
        entry: MatrixEntry,
        host_arch: str,
    ) -> Environment:
        arch_info(entry.target, entry.arch)
        return (
            env.with_exec(
                ["curl", "-sSL", "-o", self.script_path, self.script_url],
                stage=PROVISION,
            )
            .with_exec(
                [
                    "bash", self.script_path,
                    "--channel", self.channel,
                    "--quality", self.quality,
                    "--install-dir", self.install_dir,
                ],
                stage=PROVISION,
            )
            .with_env_variable("DOTNET_ROOT", self.install_dir)
            .with_env_variable("PATH", f"{self.install_dir}:{self.base_path}")
        )


class ProvisionerRegistry:
    """Operating system → provisioning strategy."""

    def __init__(self, strategies: Dict[OperatingSystem, ProvisioningStrategy]) -> None:
        self._strategies = dict(strategies)

    @classmethod
    def default(cls, channel: str = "10.0", quality: str = "preview") -> "ProvisionerRegistry":
        return cls({
            OperatingSystem.LINUX: AptCrossToolchain(),
            OperatingSystem.DARWIN: InstallScriptToolchain(channel=channel, quality=quality),
        })

    def register(self, operating_system: OperatingSystem, strategy: ProvisioningStrategy) -> None:
        self._strategies[operating_system] = strategy

    def strategy_for(self, entry: MatrixEntry) -> ProvisioningStrategy:
        strategy = self._strategies.get(entry.operating_system)
        if strategy is None:
            raise UnsupportedPlatformError(
                entry.target,
                f"no provisioning strategy for {entry.operating_system.value}",
            )
        return strategy

    def provision(self, env: Environment, entry: MatrixEntry, host_arch: str) -> Environment:
        return self.strategy_for(entry).provision(env, entry, host_arch)

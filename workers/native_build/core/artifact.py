"""
Artifact — the single native executable produced by one target build.

Extracted files are checked before they are handed back: linux targets
must be ELF executables for the target machine, darwin targets must
carry a Mach-O magic number.  A mismatch means the matrix or publish
command is misconfigured and is always fatal.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

from native_build.core.errors import ArtifactInvalid
from native_build.policy.matrix import MatrixEntry, OperatingSystem

logger = logging.getLogger(__name__)

# RID arch → ELF e_machine
ELF_MACHINES = {
    "x64": "EM_X86_64",
    "arm64": "EM_AARCH64",
}

MACHO_MAGICS = {
    b"\xcf\xfa\xed\xfe",  # 64-bit, little endian
    b"\xfe\xed\xfa\xcf",
    b"\xca\xfe\xba\xbe",  # universal
}


@dataclass(frozen=True)
class ArtifactFile:
    target: str
    path: Path              # host path of the extracted binary
    path_rel: str           # <target>/<binary> within the output tree
    sha256: str
    size_bytes: int
    machine: Optional[str] = None


def hash_file(path: Path) -> str:
    """SHA-256 of a file."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def read_elf_machine(path: Path) -> Optional[str]:
    """e_machine of an ELF executable, or None if not an executable ELF."""
    try:
        with open(path, "rb") as f:
            elf = ELFFile(f)
            if elf.header["e_type"] not in ("ET_EXEC", "ET_DYN"):
                return None
            return elf.header["e_machine"]
    except (ELFError, OSError) as e:
        logger.warning("ELF validation failed for %s: %s", path, e)
        return None


def verify_artifact(entry: MatrixEntry, path: Path) -> Optional[str]:
    """Check *path* is a binary for *entry*; returns the ELF machine if any."""
    if entry.operating_system == OperatingSystem.LINUX:
        machine = read_elf_machine(path)
        expected = ELF_MACHINES.get(entry.arch)
        if machine is None:
            raise ArtifactInvalid(entry.target, f"{path.name} is not an ELF executable")
        if expected and machine != expected:
            raise ArtifactInvalid(
                entry.target,
                f"{path.name} targets {machine}, expected {expected}",
            )
        return machine

    with open(path, "rb") as f:
        magic = f.read(4)
    if magic not in MACHO_MAGICS:
        raise ArtifactInvalid(entry.target, f"{path.name} is not a Mach-O executable")
    return None


def describe_artifact(entry: MatrixEntry, path: Path, path_rel: str) -> ArtifactFile:
    machine = verify_artifact(entry, path)
    return ArtifactFile(
        target=entry.target,
        path=path,
        path_rel=path_rel,
        sha256=hash_file(path),
        size_bytes=path.stat().st_size,
        machine=machine,
    )

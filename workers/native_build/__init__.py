"""
native_build — Cross-platform native-build orchestrator for the
paradox-clausewitz-sav CLI.

Turns one source tree into N ahead-of-time compiled binaries, each built
inside its own disposable container with its own cross toolchain, and
merges them into a single output tree keyed by target identifier.
"""

__version__ = "0.1.0"
ORCHESTRATOR_VERSION = "v1"
PACKAGE_NAME = "native_build"
SCHEMA_VERSION = "0.1"

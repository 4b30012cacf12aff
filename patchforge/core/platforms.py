"""Host platform table of native library requirements.

The set of system libraries a build links against depends only on the
host platform family.  It is a plain lookup table, never branching logic
in the build driver.
"""

from __future__ import annotations

import platform as _platform
import sys
from collections.abc import Mapping
from pathlib import Path

from patchforge.core.errors import ConfigError

_BASE_LIBRARIES: frozenset[str] = frozenset({"openssl", "libgit2", "curl", "zlib"})

NATIVE_LIBRARIES: Mapping[str, frozenset[str]] = {
    "linux": _BASE_LIBRARIES,
    "darwin": _BASE_LIBRARIES | {"libiconv", "Security", "CoreServices"},
}

# Tools the toolchain needs at build time, on every platform.
NATIVE_BUILD_TOOLS: frozenset[str] = frozenset({"pkg-config"})

# Apple frameworks are located through framework search paths, not -L.
FRAMEWORKS: frozenset[str] = frozenset({"Security", "CoreServices"})

_PLATFORM_ALIASES: Mapping[str, str] = {
    "linux": "linux",
    "darwin": "darwin",
    "macos": "darwin",
}


def host_platform() -> str:
    """Platform family of the running interpreter's host."""
    return normalize_platform(sys.platform)


def normalize_platform(name: str) -> str:
    """Map a platform identifier to its family.

    Accepts bare names (``linux``, ``macos``), Nix systems
    (``x86_64-linux``) and Rust host triples (``x86_64-unknown-linux-gnu``,
    ``aarch64-apple-darwin``).  Each ``-``-separated component is matched
    against the known aliases, allowing a version suffix (``darwin23``).
    """
    key = name.strip().lower()
    if key in ("", "auto"):
        return host_platform()
    for component in key.split("-"):
        for alias, family in _PLATFORM_ALIASES.items():
            if component.startswith(alias):
                return family
    raise ConfigError(
        f"Unsupported host platform {name!r}; known: {', '.join(sorted(NATIVE_LIBRARIES))}"
    )


def native_libraries(platform: str) -> frozenset[str]:
    """Required native library set for *platform*."""
    return NATIVE_LIBRARIES[normalize_platform(platform)]


def library_search_env(
    libraries: frozenset[str] | tuple[str, ...],
    prefixes: Mapping[str, Path],
) -> dict[str, str]:
    """Search-path variables for libraries with a configured install prefix.

    Returns ``PKG_CONFIG_PATH``, ``LIBRARY_PATH`` and ``CPATH``, plus
    ``RUSTFLAGS`` framework search paths for Apple frameworks, each built
    in sorted library order.  Libraries without a prefix are left
    to the toolchain's sysroot.
    """
    pkg_config: list[str] = []
    lib_dirs: list[str] = []
    include_dirs: list[str] = []
    framework_dirs: list[str] = []

    for lib in sorted(libraries):
        prefix = prefixes.get(lib)
        if prefix is None:
            continue
        prefix = Path(prefix)
        if lib in FRAMEWORKS:
            framework_dirs.append(str(prefix))
            continue
        pkg_config.append(str(prefix / "lib" / "pkgconfig"))
        lib_dirs.append(str(prefix / "lib"))
        include_dirs.append(str(prefix / "include"))

    env: dict[str, str] = {}
    if pkg_config:
        env["PKG_CONFIG_PATH"] = ":".join(pkg_config)
    if lib_dirs:
        env["LIBRARY_PATH"] = ":".join(lib_dirs)
    if include_dirs:
        env["CPATH"] = ":".join(include_dirs)
    if framework_dirs:
        env["RUSTFLAGS"] = " ".join(f"-L framework={d}" for d in framework_dirs)
    return env


def describe_host() -> dict[str, str]:
    return {
        "platform": host_platform(),
        "machine": _platform.machine(),
        "python": _platform.python_version(),
    }

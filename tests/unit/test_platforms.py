"""Tests for the host platform native library table."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from patchforge.core.errors import ConfigError
from patchforge.core.platforms import (
    NATIVE_LIBRARIES,
    host_platform,
    library_search_env,
    native_libraries,
    normalize_platform,
)


class TestPlatformTable:
    def test_linux_base_set(self):
        assert native_libraries("linux") == {"openssl", "libgit2", "curl", "zlib"}

    def test_darwin_adds_system_frameworks(self):
        darwin = native_libraries("darwin")
        assert native_libraries("linux") < darwin
        assert darwin - native_libraries("linux") == {"libiconv", "Security", "CoreServices"}

    def test_table_is_total_over_known_platforms(self):
        assert set(NATIVE_LIBRARIES) == {"linux", "darwin"}


class TestNormalizePlatform:
    @pytest.mark.parametrize(
        "name, family",
        [
            ("linux", "linux"),
            ("x86_64-linux", "linux"),
            ("aarch64-darwin", "darwin"),
            ("macOS", "darwin"),
            ("Darwin", "darwin"),
            ("x86_64-unknown-linux-gnu", "linux"),
            ("aarch64-unknown-linux-musl", "linux"),
            ("aarch64-apple-darwin", "darwin"),
            ("x86_64-apple-darwin23", "darwin"),
        ],
    )
    def test_aliases(self, name: str, family: str):
        assert normalize_platform(name) == family

    def test_auto_is_host(self):
        assert normalize_platform("auto") == host_platform()

    @pytest.mark.skipif(not sys.platform.startswith("linux"), reason="linux host only")
    def test_host_on_linux(self):
        assert host_platform() == "linux"

    @pytest.mark.parametrize("name", ["windows", "x86_64-pc-windows-msvc", "wasm32-unknown-unknown"])
    def test_unknown_platform_rejected(self, name: str):
        with pytest.raises(ConfigError, match="Unsupported host platform"):
            normalize_platform(name)


class TestLibrarySearchEnv:
    def test_only_prefixed_libraries_contribute(self):
        env = library_search_env(
            frozenset({"openssl", "zlib", "curl"}),
            {"zlib": Path("/opt/zlib"), "openssl": Path("/opt/openssl")},
        )
        assert env["PKG_CONFIG_PATH"] == "/opt/openssl/lib/pkgconfig:/opt/zlib/lib/pkgconfig"
        assert env["LIBRARY_PATH"] == "/opt/openssl/lib:/opt/zlib/lib"
        assert env["CPATH"] == "/opt/openssl/include:/opt/zlib/include"
        assert "RUSTFLAGS" not in env

    def test_frameworks_use_framework_search_path(self):
        env = library_search_env(
            native_libraries("darwin"),
            {"Security": Path("/System/Library/Frameworks")},
        )
        assert env == {"RUSTFLAGS": "-L framework=/System/Library/Frameworks"}

    def test_no_prefixes(self):
        assert library_search_env(native_libraries("linux"), {}) == {}

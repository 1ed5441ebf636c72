# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import pathlib

import pytest

from torwrap.common import DARWIN, PLATFORM_GROUPS, PlatformGroup, TemplateError
from torwrap.generate import (
    clean,
    flatten,
    generate,
    generate_preamble,
    wrapper_name,
    write_entrypoints,
    write_package_preamble,
    write_wrappers,
)
from torwrap.introspect import CompilationUnit
from torwrap.libraries import LibrarySpec
from tests.helpers import LibtorProject


def test_flatten() -> None:
    assert flatten("crypto/aes/aes_core") == "crypto_aes_aes_core"


def test_wrapper_name(spec_map: dict[str, LibrarySpec], group: PlatformGroup) -> None:
    unit = CompilationUnit("crypto/aes/aes_core", "crypto/aes/aes_core")
    assert wrapper_name(group, spec_map["openssl"], unit) == (
        "linux_openssl_crypto_aes_aes_core.go"
    )


def test_wrapper_name_arch(spec_map: dict[str, LibrarySpec], group: PlatformGroup) -> None:
    unit = CompilationUnit("src/ext/donna-c64", "src/ext/donna", "386")
    assert wrapper_name(group, spec_map["tor"], unit) == "linux_tor_src_ext_donna-c64_386.go"


def test_generate_wrapper(spec_map: dict[str, LibrarySpec], group: PlatformGroup) -> None:
    unit = CompilationUnit("src/core/or/relay", "src/core/or/relay")
    content = generate(unit, spec_map["tor"], group)
    assert "// +build linux android\n" in content
    assert "#include <../src/core/or/relay.c>" in content
    assert content.startswith("// go-libtor - Self-contained Tor from Go\n")


def test_generate_narrow_variant(
    spec_map: dict[str, LibrarySpec], group: PlatformGroup
) -> None:
    donna = "src/ext/curve25519_donna/curve25519-donna"
    unit = CompilationUnit(donna + "-c64", donna, "arm")
    assert f"#include <../{donna}.c>" in generate(unit, spec_map["tor"], group)


def test_generate_zlib_wrapper(spec_map: dict[str, LibrarySpec]) -> None:
    content = generate(
        CompilationUnit("adler32", "adler32"), spec_map["zlib"], PLATFORM_GROUPS[DARWIN]
    )
    assert "// +build darwin,amd64 darwin,arm64 ios,amd64 ios,arm64\n" in content
    assert "#include <../zlib/adler32.c>" in content


def test_generate_preamble(spec_map: dict[str, LibrarySpec], group: PlatformGroup) -> None:
    content = generate_preamble(spec_map["libevent"], group)
    assert "#cgo CFLAGS: -I${SRCDIR}/../linux/libevent/include\n" in content
    assert "#cgo CFLAGS: -I${SRCDIR}/../libevent_config\n" in content


def test_generate_is_deterministic(
    spec_map: dict[str, LibrarySpec], group: PlatformGroup
) -> None:
    unit = CompilationUnit("buffer", "buffer")
    spec = spec_map["libevent"]
    assert generate(unit, spec, group) == generate(unit, spec, group)


def test_generate_undefined_variable(
    spec_map: dict[str, LibrarySpec], group: PlatformGroup
) -> None:
    spec = spec_map["zlib"]._replace(wrapper="#include <${missing}.c>\n")
    with pytest.raises(TemplateError):
        generate(CompilationUnit("adler32", "adler32"), spec, group)


def test_write_wrappers(
    spec_map: dict[str, LibrarySpec], group: PlatformGroup, tmp_path: pathlib.Path
) -> None:
    units = [CompilationUnit("a", "a"), CompilationUnit("b", "b")]
    written = write_wrappers(tmp_path, spec_map["zlib"], group, units)
    assert sorted(_.name for _ in written) == [
        "linux_zlib_a.go",
        "linux_zlib_b.go",
        "linux_zlib_preamble.go",
    ]
    assert all(_.parent == tmp_path / "libtor" for _ in written)


def test_write_package_files(libtor: LibtorProject) -> None:
    write_package_preamble(libtor.root_dir)
    write_entrypoints(libtor.root_dir)
    root = libtor.root_dir
    assert (root / "libtor" / "libtor_preamble.go").read_text() == "package libtor\n"
    assert (root / "libtor.go").read_text() == "package tor\n"
    assert (root / "libtor" / "libtor.go").read_text() == "package libtor\n// internal\n"


def test_write_entrypoints_missing_template(tmp_path: pathlib.Path) -> None:
    with pytest.raises(TemplateError):
        write_entrypoints(tmp_path)


def test_clean_group(tmp_path: pathlib.Path, group: PlatformGroup) -> None:
    package = tmp_path / "libtor"
    package.mkdir()
    for name in ("linux_zlib_a.go", "darwin_zlib_a.go", "libtor.go", "notes.txt"):
        (package / name).write_text("")
    clean(tmp_path, group)
    assert sorted(_.name for _ in package.iterdir()) == [
        "darwin_zlib_a.go",
        "libtor.go",
        "notes.txt",
    ]


def test_clean_everything(tmp_path: pathlib.Path, group: PlatformGroup) -> None:
    package = tmp_path / "libtor"
    package.mkdir()
    for name in ("linux_zlib_a.go", "darwin_zlib_a.go", "libtor.go", "notes.txt"):
        (package / name).write_text("")
    clean(tmp_path, group, everything=True)
    assert [_.name for _ in package.iterdir()] == ["notes.txt"]


def test_clean_without_package(tmp_path: pathlib.Path, group: PlatformGroup) -> None:
    clean(tmp_path, group)
    assert not (tmp_path / "libtor").exists()

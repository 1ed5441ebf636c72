# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The libraries wrapped into libtor and how each of them is built.
"""
from __future__ import annotations

import os
import pathlib
from typing import Mapping, NamedTuple, Optional

STATIC = "static"
DRY_RUN = "dry-run"

HOMEBREW_PREFIX = pathlib.Path("/opt/homebrew")

BANNER = """\
// go-libtor - Self-contained Tor from Go
// Copyright (c) 2018 Péter Szilágyi. All rights reserved.
"""


class VersionProbe(NamedTuple):
    """
    A pattern extracting one piece of version metadata from a source file.
    """

    variable: str
    path: str
    pattern: str


class ArchFanout(NamedTuple):
    """
    Units with a word size specific implementation.

    Units ending in ``marker`` are wrapped as-is for the ``wide`` architectures
    and with the marker removed for the ``narrow`` ones.
    """

    marker: str
    wide: tuple[str, ...]
    narrow: tuple[str, ...]


class PruneRule(NamedTuple):
    """
    What survives pruning in one directory of a source tree.
    """

    path: str = ""
    keep_dirs: tuple[str, ...] = ()
    keep_exts: tuple[str, ...] = ()
    keep_files: tuple[str, ...] = ()


class Fixup(NamedTuple):
    """
    A line based substitution applied to one file after pruning.
    """

    path: str
    old: str
    new: str


class LibrarySpec(NamedTuple):
    """
    Everything torwrap needs to know to wrap one library.
    """

    name: str
    url: str
    strategy: str
    preamble: str
    wrapper: str
    latest: Optional[str] = None
    stable_pattern: Optional[str] = None
    configure: tuple[tuple[str, ...], ...] = ()
    dry_run: tuple[str, ...] = ()
    unit_pattern: str = ""
    exclude_prefixes: tuple[str, ...] = ()
    exclude_suffixes: tuple[str, ...] = ()
    fanout: Optional[ArchFanout] = None
    probes: tuple[VersionProbe, ...] = ()
    source_exts: tuple[str, ...] = (".c",)
    prune: tuple[PruneRule, ...] = ()
    purge: tuple[str, ...] = ()
    fixups: tuple[Fixup, ...] = ()
    commit_date: bool = False
    require_units: bool = True


ZLIB_PREAMBLE = (
    BANNER
    + """\
// +build ${build_tags}

package libtor


/*
#cgo CFLAGS: -I$${SRCDIR}/../${target}/zlib
#cgo CFLAGS: -DHAVE_UNISTD_H -DHAVE_STDARG_H
*/
import "C"
"""
)

ZLIB_WRAPPER = (
    BANNER
    + """\
// +build ${build_tags}

package libtor

/*
#include <../zlib/${file}.c>
*/
import "C"
"""
)

LIBEVENT_PREAMBLE = (
    BANNER
    + """\
// +build ${build_tags}

package libtor

/*
#cgo CFLAGS: -I$${SRCDIR}/../libevent_config
#cgo CFLAGS: -I$${SRCDIR}/../${target}/libevent
#cgo CFLAGS: -I$${SRCDIR}/../${target}/libevent/compat
#cgo CFLAGS: -I$${SRCDIR}/../${target}/libevent/include
*/
import "C"
"""
)

LIBEVENT_WRAPPER = (
    BANNER
    + """\
// +build ${build_tags}

package libtor

/*
#include <compat/sys/queue.h>
#include <../${file}.c>
*/
import "C"
"""
)

OPENSSL_PREAMBLE = (
    BANNER
    + """\
// +build ${build_tags}

package libtor

/*
#cgo CFLAGS: -I$${SRCDIR}/../openssl_config
#cgo CFLAGS: -I$${SRCDIR}/../${target}/openssl
#cgo CFLAGS: -I$${SRCDIR}/../${target}/openssl/include
#cgo CFLAGS: -I$${SRCDIR}/../${target}/openssl/crypto/ec/curve448
#cgo CFLAGS: -I$${SRCDIR}/../${target}/openssl/crypto/ec/curve448/arch_32
#cgo CFLAGS: -I$${SRCDIR}/../${target}/openssl/crypto/modes
*/
import "C"
"""
)

OPENSSL_WRAPPER = (
    BANNER
    + """\
// +build ${build_tags}

package libtor

/*
#define DSO_NONE
#define OPENSSLDIR "/usr/local/ssl"
#define ENGINESDIR "/usr/local/lib/engines"

#include <../${file}.c>
*/
import "C"
"""
)

TOR_PREAMBLE = (
    BANNER
    + """\
// +build ${build_tags}

package libtor

/*
#cgo CFLAGS: -I$${SRCDIR}/../tor_config
#cgo CFLAGS: -I$${SRCDIR}/../${target}/tor
#cgo CFLAGS: -I$${SRCDIR}/../${target}/tor/src
#cgo CFLAGS: -I$${SRCDIR}/../${target}/tor/src/core/or
#cgo CFLAGS: -I$${SRCDIR}/../${target}/tor/src/ext
#cgo CFLAGS: -I$${SRCDIR}/../${target}/tor/src/ext/trunnel
#cgo CFLAGS: -I$${SRCDIR}/../${target}/tor/src/feature/api

#cgo CFLAGS: -DED25519_CUSTOMRANDOM -DED25519_CUSTOMHASH -DED25519_SUFFIX=_donna

#cgo LDFLAGS: -lm
*/
import "C"
"""
)

TOR_WRAPPER = (
    BANNER
    + """\
// +build ${build_tags}

package libtor

/*
#define BUILDDIR ""

#include <../${file}.c>
*/
import "C"
"""
)

# Path components that never belong to the library itself
EXCLUDED_COMPONENTS = frozenset(["test", "tests", "tools", "fuzz", "apps", "sample"])


def _upstream(name: str, default: str, environ: Mapping[str, str]) -> str:
    return environ.get(f"TORWRAP_{name.upper()}_URL", default)


def tor_configure_args(homebrew: pathlib.Path = HOMEBREW_PREFIX) -> tuple[str, ...]:
    """
    Arguments for tor's configure script.

    Homebrew on Apple silicon installs under /opt/homebrew instead of
    /usr/local, configure has to be told where libevent and openssl live.
    """
    args = ["./configure", "--disable-asciidoc"]
    if homebrew.is_dir():
        args.append(f"--with-libevent-dir={homebrew}/")
        args.append(f"--with-openssl-dir={homebrew}/opt/openssl@1.1/")
    return tuple(args)


def library_specs(
    environ: Optional[Mapping[str, str]] = None,
    homebrew: pathlib.Path = HOMEBREW_PREFIX,
) -> tuple[LibrarySpec, ...]:
    """
    The libraries to wrap, in the order they must be processed.

    :param environ: Environment consulted for upstream overrides
    :type environ: dict
    :param homebrew: The homebrew prefix probed for tor's dependencies
    :type homebrew: ``pathlib.Path``

    :return: The library specs
    :rtype: tuple
    """
    if environ is None:
        environ = os.environ
    zlib = LibrarySpec(
        name="zlib",
        url=_upstream("zlib", "https://github.com/madler/zlib", environ),
        strategy=STATIC,
        preamble=ZLIB_PREAMBLE,
        wrapper=ZLIB_WRAPPER,
        probes=(VersionProbe("version", "zlib.h", r'define ZLIB_VERSION "(.+)"'),),
        prune=(PruneRule(keep_exts=(".h", ".c"), keep_files=("LICENSE",)),),
    )
    libevent = LibrarySpec(
        name="libevent",
        url=_upstream("libevent", "https://github.com/libevent/libevent", environ),
        strategy=DRY_RUN,
        preamble=LIBEVENT_PREAMBLE,
        wrapper=LIBEVENT_WRAPPER,
        configure=(
            ("./autogen.sh",),
            ("./configure", "--disable-shared", "--enable-static"),
        ),
        dry_run=("make", "--dry-run", "libevent.la"),
        unit_pattern=r" ([a-z_]+)\.lo;",
        probes=(
            VersionProbe(
                "numeric_version",
                "configure.ac",
                r"AC_DEFINE\(NUMERIC_VERSION, (0x[0-9a-fA-F]{8}),",
            ),
            VersionProbe("version", "configure.ac", r"AC_INIT\(libevent,(.+)\)"),
        ),
        prune=(
            PruneRule(
                keep_dirs=("include", "compat"),
                keep_exts=(".h", ".c"),
                keep_files=("LICENSE",),
            ),
        ),
    )
    openssl = LibrarySpec(
        name="openssl",
        url=_upstream("openssl", "https://github.com/openssl/openssl", environ),
        strategy=DRY_RUN,
        preamble=OPENSSL_PREAMBLE,
        wrapper=OPENSSL_WRAPPER,
        stable_pattern=r"remotes/origin/(OpenSSL_([0-9]+)_([0-9]+)_([0-9]+)-stable)",
        commit_date=True,
        configure=(
            ("./config", "no-shared", "no-zlib", "no-asm", "no-async", "no-sctp"),
        ),
        dry_run=("make", "--dry-run"),
        unit_pattern=r"(?m)([a-z0-9_/-]+)\.c$",
        exclude_prefixes=("apps/", "fuzz/", "test/"),
        prune=(
            PruneRule(
                keep_dirs=("crypto", "engines", "include", "ssl"),
                keep_exts=(".h", ".c"),
                keep_files=("LICENSE",),
            ),
        ),
    )
    tor = LibrarySpec(
        name="tor",
        url=_upstream("tor", "https://git.torproject.org/tor.git", environ),
        strategy=DRY_RUN,
        preamble=TOR_PREAMBLE,
        wrapper=TOR_WRAPPER,
        latest="maint-0.4.7",
        configure=(("./autogen.sh",), tor_configure_args(homebrew)),
        dry_run=("make", "--dry-run"),
        unit_pattern=r"(?m)([a-z0-9_/-]+)\.c",
        exclude_prefixes=("src/ext/tinytest", "src/test/", "src/tools/"),
        # We're wrapping a library, not the tor executable
        exclude_suffixes=("tor_main",),
        fanout=ArchFanout("-c64", wide=("amd64", "arm64"), narrow=("386", "arm")),
        probes=(
            VersionProbe("version", "src/win32/orconfig.h", r'define VERSION "(.+)"'),
        ),
        prune=(
            PruneRule(keep_dirs=("src",), keep_files=("LICENSE",)),
            PruneRule(
                path="src",
                keep_dirs=("app", "core", "ext", "feature", "lib", "trunnel", "win32"),
            ),
        ),
        purge=(".deps",),
        fixups=(
            Fixup(
                "src/lib/string/compat_string.c",
                r"(?<![\w/])strlcpy\.c",
                "ext/strlcpy.c",
            ),
        ),
    )
    return (zlib, libevent, openssl, tor)

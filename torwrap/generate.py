# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Generate the Go wrappers compiling each native source file through cgo.

Every compilation unit gets a tiny Go file holding nothing but a build
constraint and an ``#include`` of the C source, the Go toolchain then builds
them all into the libtor package.
"""
from __future__ import annotations

import logging
import pathlib
from typing import Iterable

from .common import PathLike, PlatformGroup
from .headers import read_template, render, write_file
from .introspect import CompilationUnit
from .libraries import LibrarySpec

log = logging.getLogger(__name__)

PACKAGE_DIR = "libtor"
TEMPLATE_DIR = "build"

# (template, destination) of files copied verbatim into the package
ENTRYPOINTS = (
    ("libtor_external.go.in", "libtor.go"),
    ("libtor_internal.go.in", "libtor/libtor.go"),
)
PACKAGE_PREAMBLE = ("libtor_preamble.go.in", "libtor/libtor_preamble.go")


def flatten(path: str) -> str:
    return path.replace("/", "_")


def wrapper_name(group: PlatformGroup, spec: LibrarySpec, unit: CompilationUnit) -> str:
    """
    The file name of a unit's wrapper.

    Architecture variants use Go's ``_<goarch>`` file name suffix, which
    restricts them to that architecture.
    """
    name = f"{group.name}_{spec.name}_{flatten(unit.path)}"
    if unit.arch:
        name += f"_{unit.arch}"
    return name + ".go"


def preamble_name(group: PlatformGroup, spec: LibrarySpec) -> str:
    return f"{group.name}_{spec.name}_preamble.go"


def generate(unit: CompilationUnit, spec: LibrarySpec, group: PlatformGroup) -> str:
    """
    The content of a unit's wrapper.

    :param unit: The compilation unit
    :type unit: ``torwrap.introspect.CompilationUnit``
    :param spec: The library the unit belongs to
    :type spec: ``torwrap.libraries.LibrarySpec``
    :param group: The platform group the wrapper is built for
    :type group: ``torwrap.common.PlatformGroup``

    :return: The Go source
    :rtype: str
    """
    return render(
        spec.wrapper,
        {"build_tags": group.selector, "file": unit.source},
        name=f"{spec.name} wrapper",
    )


def generate_preamble(spec: LibrarySpec, group: PlatformGroup) -> str:
    """
    The cgo preamble configuring the C compiler for a library.
    """
    return render(
        spec.preamble,
        {"build_tags": group.selector, "target": group.name},
        name=f"{spec.name} preamble",
    )


def write_wrappers(
    root: PathLike,
    spec: LibrarySpec,
    group: PlatformGroup,
    units: Iterable[CompilationUnit],
) -> list[pathlib.Path]:
    """
    Write the wrappers of all units and the library preamble.

    :return: The written files
    :rtype: list
    """
    package = pathlib.Path(root) / PACKAGE_DIR
    written: list[pathlib.Path] = []
    for unit in units:
        dest = package / wrapper_name(group, spec, unit)
        write_file(dest, generate(unit, spec, group))
        written.append(dest)
    dest = package / preamble_name(group, spec)
    write_file(dest, generate_preamble(spec, group))
    written.append(dest)
    log.info("Generated %d %s wrappers", len(written) - 1, spec.name)
    return written


def copy_template(root: PathLike, template: str, dest: str) -> pathlib.Path:
    """
    Copy a checked in template below ``build/`` into the repository.

    :raises TemplateError: If the template does not exist
    """
    root = pathlib.Path(root)
    path = root / dest
    write_file(path, read_template(root / TEMPLATE_DIR / template))
    return path


def write_package_preamble(root: PathLike) -> pathlib.Path:
    """
    Copy in the library preamble with the architecture definitions.
    """
    return copy_template(root, *PACKAGE_PREAMBLE)


def write_entrypoints(root: PathLike) -> list[pathlib.Path]:
    """
    Copy the public and internal libtor entrypoints.
    """
    return [copy_template(root, template, dest) for template, dest in ENTRYPOINTS]


def clean(root: PathLike, group: PlatformGroup, everything: bool = False) -> None:
    """
    Remove previously generated wrappers.

    :param everything: Remove the wrappers of every platform group, not just
        the given one
    :type everything: bool
    """
    package = pathlib.Path(root) / PACKAGE_DIR
    if not package.is_dir():
        return
    pattern = "*.go" if everything else f"{group.name}_*.go"
    for path in sorted(package.glob(pattern)):
        log.debug("Removing %s", path)
        path.unlink()

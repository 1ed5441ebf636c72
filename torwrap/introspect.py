# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Discover what a library's native build compiles.

Small libraries are wrapped by enumerating their sources on disk. Libraries
whose build mixes and matches sources per platform are configured for real
and their build driver is asked what it would do, the compile targets are then
scraped out of that dry-run log.
"""
from __future__ import annotations

import logging
import pathlib
import re
from typing import NamedTuple, Optional

from .acquire import Checkout, stable_branches
from .common import (
    ConfigurationError,
    Introspector,
    IntrospectionError,
    PathLike,
)
from .libraries import DRY_RUN, EXCLUDED_COMPONENTS, LibrarySpec

log = logging.getLogger(__name__)


class CompilationUnit(NamedTuple):
    """
    One native source file to wrap.

    ``path`` identifies the unit and names the wrapper, ``source`` is the file
    the wrapper includes. They only differ for architecture variants.
    """

    path: str
    source: str
    arch: Optional[str] = None


class Metadata(NamedTuple):
    """
    Version information a library's configuration exposes.
    """

    version: str
    numeric_version: Optional[str] = None
    build_date: Optional[str] = None

    def variables(self) -> dict[str, str]:
        """
        The template variables this metadata defines.
        """
        return {k: v for k, v in self._asdict().items() if v is not None}


def configure(spec: LibrarySpec, checkout: Checkout, introspector: Introspector) -> None:
    """
    Run the library's native configuration steps.

    :raises ConfigurationError: If any step fails
    """
    for cmd in spec.configure:
        log.info("Configuring %s: %s", spec.name, " ".join(cmd))
        introspector.run(cmd, cwd=checkout.workdir, error=ConfigurationError)


def probe(spec: LibrarySpec, workdir: PathLike) -> dict[str, str]:
    """
    Extract version metadata from the library's sources.

    :raises ConfigurationError: If a file is missing or a pattern finds nothing
    """
    values: dict[str, str] = {}
    for item in spec.probes:
        path = pathlib.Path(workdir) / item.path
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise ConfigurationError(
                f"Unable to read {item.path} for {spec.name} {item.variable}: {exc}"
            )
        match = re.search(item.pattern, content)
        if match is None:
            raise ConfigurationError(
                f"No {item.variable} found in {item.path} for {spec.name}"
            )
        values[item.variable] = match.group(1).strip()
    return values


def stable_version(
    spec: LibrarySpec, checkout: Checkout, introspector: Introspector
) -> str:
    """
    The version of the newest stable branch holding the checked out commit.

    ``OpenSSL_1_1_1-stable`` yields ``1.1.1-stable``.

    :raises ConfigurationError: If no stable branch contains the commit
    """
    if spec.stable_pattern is None:
        raise ConfigurationError(f"{spec.name} has no stable branch classification")
    listing = introspector.run(
        ["git", "branch", "-a", "--contains", "HEAD"],
        cwd=checkout.workdir,
        error=ConfigurationError,
    )
    stables = stable_branches(listing, spec.stable_pattern)
    if not stables:
        raise ConfigurationError(
            f"{checkout.revision} of {spec.name} is not on a stable branch"
        )
    return stables[-1].split("_", 1)[1].replace("_", ".")


def resolve_version(
    spec: LibrarySpec, checkout: Checkout, introspector: Introspector
) -> Metadata:
    """
    Collect the version metadata of a checked out library.

    :param spec: The library
    :type spec: ``torwrap.libraries.LibrarySpec``
    :param checkout: The library's working tree
    :type checkout: ``torwrap.acquire.Checkout``
    :param introspector: Runs the git commands some libraries need
    :type introspector: ``torwrap.common.Introspector``

    :raises ConfigurationError: If any piece of metadata can not be found,
        every generated artifact depends on it

    :return: The metadata
    :rtype: ``torwrap.introspect.Metadata``
    """
    values = probe(spec, checkout.workdir)
    if spec.stable_pattern is not None:
        values["version"] = stable_version(spec, checkout, introspector)
    if spec.commit_date:
        if not checkout.date:
            raise ConfigurationError(f"No commit date known for {spec.name}")
        values["build_date"] = checkout.date
    if not values.get("version"):
        raise ConfigurationError(f"No version found for {spec.name}")
    metadata = Metadata(**values)
    log.info("Found %s version %s", spec.name, metadata.version)
    return metadata


def excluded(spec: LibrarySpec, path: str) -> bool:
    """
    True when a unit is not part of the library proper.
    """
    if EXCLUDED_COMPONENTS.intersection(path.split("/")[:-1]):
        return True
    if path.startswith(spec.exclude_prefixes):
        return True
    if spec.exclude_suffixes and path.endswith(spec.exclude_suffixes):
        return True
    return False


def fan_out(spec: LibrarySpec, paths: list[str]) -> list[CompilationUnit]:
    """
    Turn unit paths into compilation units.

    Units with a word size specific implementation become one unit per
    architecture. The wide architectures include the unit as discovered, the
    narrow ones include it with the marker stripped.
    """
    units: list[CompilationUnit] = []
    for path in paths:
        if spec.fanout is not None and path.endswith(spec.fanout.marker):
            for arch in spec.fanout.wide:
                units.append(CompilationUnit(path, path, arch))
            narrow = path.replace(spec.fanout.marker, "")
            for arch in spec.fanout.narrow:
                units.append(CompilationUnit(path, narrow, arch))
            continue
        units.append(CompilationUnit(path, path))
    return units


def extract_units(spec: LibrarySpec, output: str) -> list[CompilationUnit]:
    """
    Scrape compilation units out of a dry-run build log.

    :param spec: The library, providing the pattern and the exclusions
    :type spec: ``torwrap.libraries.LibrarySpec``
    :param output: The build driver's output
    :type output: str

    :raises IntrospectionError: If nothing was found and the library needs
        at least one unit

    :return: The units, in the order they first appear in the log
    :rtype: list
    """
    paths: list[str] = []
    skipped: set[str] = set()
    for match in re.finditer(spec.unit_pattern, output):
        path = match.group(1)
        if path in paths or path in skipped:
            continue
        if excluded(spec, path):
            log.debug("Skipping %s unit %s", spec.name, path)
            skipped.add(path)
            continue
        paths.append(path)
    if not paths and spec.require_units:
        raise IntrospectionError(
            f"No compilation units found for {spec.name}", output=output
        )
    log.info("Found %d %s compilation units", len(paths), spec.name)
    return fan_out(spec, paths)


def enumerate_units(spec: LibrarySpec, workdir: PathLike) -> list[CompilationUnit]:
    """
    Every source file directly inside the working tree is a unit.

    :raises IntrospectionError: If there are no sources and the library
        needs at least one unit
    """
    paths = sorted(
        _.stem
        for _ in pathlib.Path(workdir).iterdir()
        if _.is_file() and _.suffix in spec.source_exts
    )
    if not paths and spec.require_units:
        raise IntrospectionError(f"No source files found for {spec.name}")
    log.info("Found %d %s compilation units", len(paths), spec.name)
    return fan_out(spec, paths)


def dry_run(
    spec: LibrarySpec, checkout: Checkout, introspector: Introspector
) -> list[CompilationUnit]:
    """
    Ask the build driver what it would compile.

    :raises IntrospectionError: If the build driver fails or lists nothing
    """
    log.info("Hooking the %s build: %s", spec.name, " ".join(spec.dry_run))
    output = introspector.run(
        spec.dry_run, cwd=checkout.workdir, error=IntrospectionError
    )
    return extract_units(spec, output)


def discover_units(
    spec: LibrarySpec, checkout: Checkout, introspector: Introspector
) -> list[CompilationUnit]:
    """
    The compilation units of a library, using the library's strategy.

    Dry-run discovery needs the configured, unpruned tree. Enumeration expects
    the pruned tree.
    """
    if spec.strategy == DRY_RUN:
        return dry_run(spec, checkout, introspector)
    return enumerate_units(spec, checkout.workdir)

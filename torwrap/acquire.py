# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Fetch upstream sources and check out the revision to wrap.
"""
from __future__ import annotations

import logging
import os
import pathlib
import re
import shutil
from typing import NamedTuple, Optional

from packaging.version import Version

from .common import (
    AcquisitionError,
    Introspector,
    NoStableChannel,
    PathLike,
    RevisionNotFound,
)
from .libraries import LibrarySpec

log = logging.getLogger(__name__)


class Checkout(NamedTuple):
    """
    A working tree checked out at a resolved revision.
    """

    library: str
    revision: str
    workdir: pathlib.Path
    date: str


def workdir(root: PathLike, group: str, library: str) -> pathlib.Path:
    """
    Where a library's sources live for the given platform group.
    """
    return pathlib.Path(root) / group / library


def stable_branches(listing: str, pattern: str) -> list[str]:
    """
    Stable branch names found in ``git branch -a`` output, oldest first.

    :param listing: The output of ``git branch``
    :type listing: str
    :param pattern: A pattern whose first group is the branch name and whose
        remaining groups are the numeric version components
    :type pattern: str

    :return: Unique branch names ordered by version
    :rtype: list
    """
    found: dict[str, Version] = {}
    for match in re.finditer(pattern, listing):
        found[match.group(1)] = Version(".".join(match.groups()[1:]))
    return sorted(found, key=lambda name: found[name])


def latest_stable(spec: LibrarySpec, cwd: PathLike, introspector: Introspector) -> str:
    """
    The newest branch classified as stable for the given library.

    :raises NoStableChannel: If no branch matches the stable classification
    """
    if spec.stable_pattern is None:
        raise NoStableChannel(f"{spec.name} has no stable branch classification")
    listing = introspector.run(["git", "branch", "-a"], cwd=cwd, error=AcquisitionError)
    stables = stable_branches(listing, spec.stable_pattern)
    if not stables:
        raise NoStableChannel(f"no stable branch found for {spec.name}")
    return stables[-1]


def acquire(
    spec: LibrarySpec,
    revision: Optional[str],
    root: PathLike,
    group: str,
    introspector: Introspector,
) -> Checkout:
    """
    Clone a library and check out the revision to wrap.

    Any existing working tree is removed first, so acquiring the same
    revision twice yields the same tree.

    :param spec: The library to acquire
    :type spec: ``torwrap.libraries.LibrarySpec``
    :param revision: The pinned revision, or None to follow the library's
        policy for the latest code
    :type revision: str
    :param root: The repository root
    :type root: str
    :param group: The platform group name scoping the working tree
    :type group: str
    :param introspector: Runs the git commands
    :type introspector: ``torwrap.common.Introspector``

    :raises AcquisitionError: If cloning or inspecting the repository fails
    :raises RevisionNotFound: If the revision can not be checked out
    :raises NoStableChannel: If the library needs a stable branch and has none

    :return: The checkout
    :rtype: ``torwrap.acquire.Checkout``
    """
    dest = workdir(root, group, spec.name)
    if dest.exists():
        log.info("Removing previous working tree %s", dest)
        shutil.rmtree(dest)
    os.makedirs(dest.parent, exist_ok=True)

    log.info("Acquiring %s from %s", spec.name, spec.url)
    introspector.run(
        ["git", "clone", spec.url, spec.name], cwd=dest.parent, error=AcquisitionError
    )

    ref = revision
    if ref is None:
        if spec.stable_pattern is not None:
            # Security sensitive code follows the latest stable branch
            ref = latest_stable(spec, dest, introspector)
        else:
            ref = spec.latest
    if ref is not None:
        log.info("Checking out %s %s", spec.name, ref)
        introspector.run(["git", "checkout", ref], cwd=dest, error=RevisionNotFound)

    # Save the upstream commit hash for later reference
    commit = introspector.run(
        ["git", "rev-parse", "HEAD"], cwd=dest, error=AcquisitionError
    ).strip()
    date = introspector.run(
        ["git", "show", "-s", "--format=%cd"], cwd=dest, error=AcquisitionError
    ).strip()
    log.info("Acquired %s at %s", spec.name, commit)
    return Checkout(spec.name, commit, dest, date)

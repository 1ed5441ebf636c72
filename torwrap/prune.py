# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Wipe everything from a library's source tree that's non-essential.
"""
from __future__ import annotations

import logging
import os
import pathlib
import shutil
from typing import Iterable

from .common import PathLike, PruningError, patch_file
from .libraries import LibrarySpec, PruneRule

log = logging.getLogger(__name__)


def _remove(path: pathlib.Path) -> None:
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as exc:
        raise PruningError(f"Unable to remove {path}: {exc}")


def retained(rule: PruneRule, entry: pathlib.Path) -> bool:
    """
    True when the rule keeps the given directory entry.
    """
    if entry.is_dir() and not entry.is_symlink():
        return entry.name in rule.keep_dirs
    if entry.name in rule.keep_files:
        return True
    return entry.suffix in rule.keep_exts


def apply_rules(root: PathLike, rules: Iterable[PruneRule]) -> None:
    """
    Apply prune rules, shallowest directory first.

    :raises PruningError: If an entry can not be removed
    """
    root = pathlib.Path(root)
    for rule in sorted(rules, key=lambda _: len(pathlib.PurePosixPath(_.path).parts)):
        directory = root / rule.path
        if not directory.is_dir():
            continue
        for entry in sorted(directory.iterdir()):
            if retained(rule, entry):
                continue
            log.debug("Removing %s", entry)
            _remove(entry)


def purge(root: PathLike, names: Iterable[str]) -> None:
    """
    Remove every directory with one of the given names anywhere in the tree.
    """
    names = set(names)
    if not names:
        return
    for dirpath, dirnames, _ in os.walk(root):
        for name in sorted(dirnames):
            if name in names:
                log.debug("Purging %s", os.path.join(dirpath, name))
                _remove(pathlib.Path(dirpath) / name)
                dirnames.remove(name)


def prune(spec: LibrarySpec, workdir: PathLike) -> None:
    """
    Reduce a working tree to the files needed to compile the library.

    Only retained directories, files with a retained extension and the
    license survive. Pruning a pruned tree changes nothing.

    :param spec: The library
    :type spec: ``torwrap.libraries.LibrarySpec``
    :param workdir: The library's working tree
    :type workdir: str

    :raises PruningError: If the tree can not be cleaned up
    """
    workdir = pathlib.Path(workdir)
    log.info("Pruning %s", workdir)
    apply_rules(workdir, spec.prune)
    purge(workdir, spec.purge)
    for fixup in spec.fixups:
        path = workdir / fixup.path
        try:
            if patch_file(path, fixup.old, fixup.new):
                log.info("Patched %s", fixup.path)
        except OSError as exc:
            raise PruningError(f"Unable to patch {path}: {exc}")

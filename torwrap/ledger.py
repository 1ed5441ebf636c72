# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The version ledger pinning every wrapped library to an upstream revision.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import pathlib
import sys
import tempfile
from typing import Mapping, Optional

from .common import (
    LedgerCorrupt,
    LedgerError,
    LedgerMissing,
    TorwrapException,
    default_root,
)

log = logging.getLogger(__name__)

LEDGER_FILE = "lock.json"

# Field order of the serialized ledger
LIBRARIES = ("zlib", "libevent", "openssl", "tor")


def ledger_path(root: Optional[os.PathLike[str] | str] = None) -> pathlib.Path:
    """
    Location of the ledger inside the given repository root.
    """
    if root is None:
        root = default_root()
    return pathlib.Path(root) / LEDGER_FILE


def validate(data: object) -> dict[str, str]:
    """
    Check a ledger maps exactly the known libraries to revision strings.

    :raises LedgerCorrupt: If it does not

    :return: The library to revision mapping in field order
    :rtype: dict
    """
    if not isinstance(data, Mapping):
        raise LedgerCorrupt("Ledger must be a mapping of library to revision")
    missing = [_ for _ in LIBRARIES if _ not in data]
    if missing:
        raise LedgerCorrupt(f"Ledger has no revision for {', '.join(missing)}")
    unknown = sorted(set(data) - set(LIBRARIES))
    if unknown:
        raise LedgerCorrupt(f"Ledger has unknown entries {', '.join(unknown)}")
    for name in LIBRARIES:
        if not isinstance(data[name], str) or not data[name]:
            raise LedgerCorrupt(f"Ledger revision for {name} must be a string")
    return {name: data[name] for name in LIBRARIES}


def parse(text: str) -> dict[str, str]:
    """
    Parse a serialized ledger.

    :param text: The serialized ledger
    :type text: str

    :raises LedgerCorrupt: If the content is not a mapping of exactly the
        known libraries to revision strings

    :return: The library to revision mapping
    :rtype: dict
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LedgerCorrupt(f"Unable to parse ledger: {exc}")
    return validate(data)


def serialize(entries: Mapping[str, str]) -> str:
    """
    Serialize a ledger, the inverse of :func:`parse`.

    :raises LedgerCorrupt: If the entries are not a valid ledger
    """
    data = validate(entries)
    return json.dumps(data, indent=2) + "\n"


def load(path: os.PathLike[str] | str) -> dict[str, str]:
    """
    Load the ledger required for a replay run.

    :param path: The ledger file
    :type path: str

    :raises LedgerMissing: If there is no ledger file
    :raises LedgerCorrupt: If the ledger can not be parsed

    :return: The library to revision mapping
    :rtype: dict
    """
    path = pathlib.Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise LedgerMissing(f"No version ledger found at {path}")
    except OSError as exc:
        raise LedgerCorrupt(f"Unable to read ledger {path}: {exc}")
    entries = parse(text)
    log.info("Loaded version ledger %s", path)
    return entries


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def save(path: os.PathLike[str] | str, entries: Mapping[str, str]) -> None:
    """
    Write the ledger atomically.

    The content goes to a temporary file in the same directory which is then
    renamed over the ledger, so readers never see a partial ledger.

    :param path: The ledger file
    :type path: str
    :param entries: The library to revision mapping
    :type entries: dict
    """
    path = pathlib.Path(path)
    content = serialize(entries)
    try:
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    except OSError as exc:
        raise LedgerError(f"Unable to write ledger {path}: {exc}")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fp:
            fp.write(content)
            fp.flush()
            os.fsync(fp.fileno())
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except OSError as exc:
        _discard(tmp)
        raise LedgerError(f"Unable to write ledger {path}: {exc}")
    except BaseException:
        _discard(tmp)
        raise
    log.info("Wrote version ledger %s", path)


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``lock`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    subparser = subparsers.add_parser(
        "lock", description="Show the pinned upstream revisions"
    )
    subparser.set_defaults(func=main)
    subparser.add_argument(
        "--root",
        default=None,
        type=pathlib.Path,
        help="The repository holding lock.json [default: $TORWRAP_ROOT or cwd]",
    )


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint into the ``torwrap lock`` command.

    :param args: The args passed to the command
    :type args: argparse.Namespace
    """
    try:
        entries = load(ledger_path(args.root))
    except TorwrapException as exc:
        sys.stderr.write(f"{exc}\n")
        sys.exit(1)
    for name in LIBRARIES:
        print(f"{name:<10} {entries[name]}")

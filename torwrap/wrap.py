# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The ``torwrap wrap`` command.

Wraps each of the component libraries into libtor: zlib, libevent, openssl
and finally tor, whose configure step needs the other three.
"""
from __future__ import annotations

import argparse
import contextlib
import logging
import os
import pathlib
import shutil
import sys
from typing import Callable, Iterator, NamedTuple, Optional, Sequence, TypeVar

from . import acquire, generate, headers, introspect, ledger, prune
from .common import (
    DATA_DIR,
    PLATFORM_GROUPS,
    BuildCheckError,
    Introspector,
    PathLike,
    PlatformGroup,
    SubprocessIntrospector,
    TorwrapException,
    default_root,
    platform_group,
)
from .libraries import DRY_RUN, LibrarySpec, library_specs

log = logging.getLogger(__name__)

RELEASE_NOTES = ("README.md", "README.md")

T = TypeVar("T")


class LibraryResult(NamedTuple):
    """
    What wrapping one library produced.
    """

    name: str
    version: str
    revision: str
    units: int


def stage(library: str, name: str, func: Callable[..., T], *args: object) -> T:
    """
    Run one pipeline stage, tagging any failure with where it happened.

    The exception is re-raised unchanged apart from the ``library`` and
    ``stage`` attributes.
    """
    try:
        return func(*args)
    except TorwrapException as exc:
        if exc.library is None:
            exc.library = library
        if exc.stage is None:
            exc.stage = name
        raise


def wrap_library(
    spec: LibrarySpec,
    revision: Optional[str],
    root: pathlib.Path,
    group: PlatformGroup,
    introspector: Introspector,
) -> LibraryResult:
    """
    Clone, introspect, prune and wrap one library.

    :param spec: The library
    :type spec: ``torwrap.libraries.LibrarySpec``
    :param revision: The pinned revision, None in refresh mode
    :type revision: str
    :param root: The repository root
    :type root: ``pathlib.Path``
    :param group: The platform group to generate for
    :type group: ``torwrap.common.PlatformGroup``
    :param introspector: Runs the native tools
    :type introspector: ``torwrap.common.Introspector``

    :return: The library's version, revision and unit count
    :rtype: ``torwrap.wrap.LibraryResult``
    """
    name = spec.name
    log.info("Wrapping %s", name)
    checkout = stage(
        name, "acquire", acquire.acquire, spec, revision, root, group.name, introspector
    )
    units: Optional[list[introspect.CompilationUnit]] = None
    if spec.strategy == DRY_RUN:
        # The build system has to be configured before it can be hooked
        stage(name, "configure", introspect.configure, spec, checkout, introspector)
    metadata = stage(
        name, "introspect", introspect.resolve_version, spec, checkout, introspector
    )
    if spec.strategy == DRY_RUN:
        units = stage(
            name, "introspect", introspect.discover_units, spec, checkout, introspector
        )
    stage(name, "prune", prune.prune, spec, checkout.workdir)
    if units is None:
        units = stage(
            name, "introspect", introspect.discover_units, spec, checkout, introspector
        )
    stage(name, "generate", generate.write_wrappers, root, spec, group, units)
    stage(name, "headers", headers.materialize, root, name, metadata.variables())
    return LibraryResult(name, metadata.version, checkout.revision, len(units))


def render_release_notes(root: PathLike, results: Sequence[LibraryResult]) -> str:
    """
    Render the README embedding the wrapped versions and revisions.

    :raises TemplateError: If the template is missing or can not be rendered
    """
    root = pathlib.Path(root)
    variables: dict[str, str] = {}
    for result in results:
        variables[f"{result.name}_version"] = result.version
        variables[f"{result.name}_revision"] = result.revision
    source = root / generate.TEMPLATE_DIR / RELEASE_NOTES[0]
    return headers.render(headers.read_template(source), variables, str(source))


def validate(root: PathLike, introspector: Introspector) -> None:
    """
    Build the generated package to make sure everything compiles.

    :raises BuildCheckError: If the build fails
    """
    log.info("Building the generated package")
    introspector.run(["go", "build", "."], cwd=root, error=BuildCheckError)


def wrap(
    root: PathLike,
    group: PlatformGroup,
    update: bool = False,
    nobuild: bool = False,
    introspector: Optional[Introspector] = None,
    specs: Optional[Sequence[LibrarySpec]] = None,
) -> list[LibraryResult]:
    """
    Regenerate the libtor package for one platform group.

    In replay mode every library is checked out at the revision recorded in
    the version ledger. In update mode the latest code is wrapped and, once
    every library succeeded, the ledger and README are rewritten.

    :param root: The repository root
    :type root: str
    :param group: The platform group to generate for
    :type group: ``torwrap.common.PlatformGroup``
    :param update: Pull new commits instead of replaying the ledger
    :type update: bool
    :param nobuild: Skip the validation build
    :type nobuild: bool
    :param introspector: Runs the native tools, defaults to real subprocesses
    :type introspector: ``torwrap.common.Introspector``
    :param specs: The libraries to wrap, defaults to the full catalog
    :type specs: list

    :raises TorwrapException: On any failure, tagged with the failing library
        and stage. The ledger is left untouched.

    :return: The per library results
    :rtype: list
    """
    root = pathlib.Path(root)
    if introspector is None:
        introspector = SubprocessIntrospector()
    if specs is None:
        specs = library_specs()
    lock_path = ledger.ledger_path(root)

    pins: dict[str, str] = {}
    if not update:
        pins = stage("libtor", "ledger", ledger.load, lock_path)

    # Clean up any previously generated files
    generate.clean(root, group, everything=update)
    target = root / group.name
    if target.exists():
        shutil.rmtree(target)
    stage("libtor", "generate", generate.write_package_preamble, root)

    results = [
        wrap_library(spec, pins.get(spec.name), root, group, introspector)
        for spec in specs
    ]

    stage("libtor", "generate", generate.write_entrypoints, root)
    if not nobuild:
        stage("libtor", "validate", validate, root, introspector)

    if update:
        # The ledger is only written once everything else is known to succeed
        notes = stage(
            "libtor", "release-notes", render_release_notes, root, results
        )
        revisions = {_.name: _.revision for _ in results}
        stage("libtor", "ledger", ledger.save, lock_path, revisions)
        headers.write_file(root / RELEASE_NOTES[1], notes)
    for result in results:
        log.info(
            "%s %s (%s, %d units)",
            result.name,
            result.version,
            result.revision,
            result.units,
        )
    return results


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``wrap`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    subparser = subparsers.add_parser(
        "wrap", description="Wrap the tor libraries into the libtor Go package"
    )
    subparser.set_defaults(func=main)
    subparser.add_argument(
        "--update",
        default=False,
        action="store_true",
        help=(
            "Pull new commits and rewrite lock.json. If unset the commits are "
            "taken from lock.json."
        ),
    )
    subparser.add_argument(
        "--nobuild",
        default=False,
        action="store_true",
        help=(
            "Don't build the generated package. Only use this when there's a "
            "final build check outside of the wrapping."
        ),
    )
    subparser.add_argument(
        "--target",
        default=None,
        choices=sorted(PLATFORM_GROUPS),
        help="The platform group to generate [default: derived from the host]",
    )
    subparser.add_argument(
        "--root",
        default=None,
        type=pathlib.Path,
        help="The libtor repository to generate into [default: $TORWRAP_ROOT or cwd]",
    )
    subparser.add_argument(
        "--log-level",
        default="warning",
        choices=(
            "error",
            "warning",
            "info",
            "debug",
        ),
        help="Log level determines how verbose the logs will be.",
    )


@contextlib.contextmanager
def _logging(log_level: str) -> Iterator[None]:
    root_log = logging.getLogger(None)
    root_log.setLevel(logging.NOTSET)
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.getLevelName(log_level.upper()))
    root_log.addHandler(stream_handler)
    logs = DATA_DIR / "logs"
    os.makedirs(logs, exist_ok=True)
    file_handler = logging.FileHandler(logs / "wrap.log")
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(message)s"))
    root_log.addHandler(file_handler)
    try:
        yield
    finally:
        root_log.removeHandler(file_handler)
        root_log.removeHandler(stream_handler)
        file_handler.close()


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint to the ``wrap`` command.

    :param args: The arguments to the command
    :type args: ``argparse.Namespace``
    """
    root = args.root.resolve() if args.root else default_root()
    with _logging(args.log_level):
        try:
            group = platform_group(args.target)
            wrap(root, group, update=args.update, nobuild=args.nobuild)
        except TorwrapException as exc:
            log.error(
                "%s failed during %s: %s",
                exc.library or "torwrap",
                exc.stage or "setup",
                exc,
            )
            if exc.output:
                sys.stderr.write(exc.output)
                sys.stderr.flush()
            sys.exit(1)

# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Common classes and values used around torwrap.
"""
from __future__ import annotations

import abc
import logging
import os
import pathlib
import re
import selectors
import subprocess
import sys
from typing import IO, Any, NamedTuple, Optional, Sequence, Union, cast

# torwrap package version
__version__ = "0.4.7"

log = logging.getLogger(__name__)

MODULE_DIR = pathlib.Path(__file__).resolve().parent

LINUX = "linux"
DARWIN = "darwin"

DEFAULT_DATA_DIR = pathlib.Path.home() / ".local" / "torwrap"

DATA_DIR = pathlib.Path(os.environ.get("TORWRAP_DATA", DEFAULT_DATA_DIR)).resolve()

PathLike = Union[str, os.PathLike[str]]


class TorwrapException(Exception):
    """
    Base class for exeptions generated from torwrap.

    The orchestrator sets ``library`` and ``stage`` on the exception before
    re-raising it so the operator can tell where a run stopped.
    """

    library: Optional[str] = None
    stage: Optional[str] = None

    def __init__(
        self, message: str, output: str = "", returncode: Optional[int] = None
    ) -> None:
        super().__init__(message)
        self.output = output
        self.returncode = returncode


class PlatformError(TorwrapException):
    """
    The host platform does not belong to any platform group.
    """


class AcquisitionError(TorwrapException):
    """
    Cloning or inspecting an upstream repository failed.
    """


class RevisionNotFound(AcquisitionError):
    """
    The requested revision does not exist upstream.
    """


class NoStableChannel(AcquisitionError):
    """
    No stable branch could be found for a library that requires one.
    """


class ConfigurationError(TorwrapException):
    """
    A native configure step failed or did not expose the expected metadata.
    """


class IntrospectionError(TorwrapException):
    """
    The dry-run build failed or yielded no compilation units.
    """


class PruningError(TorwrapException):
    """
    Removing entries from a source tree failed.
    """


class TemplateError(TorwrapException):
    """
    A template is missing, malformed or references an undefined variable.
    """


class BuildCheckError(TorwrapException):
    """
    The validation build of the generated package failed.
    """


class LedgerError(TorwrapException):
    """
    Base class for version ledger problems.
    """


class LedgerMissing(LedgerError):
    """
    Replay mode was requested but no ledger exists.
    """


class LedgerCorrupt(LedgerError):
    """
    The ledger exists but can not be parsed.
    """


class PlatformGroup(NamedTuple):
    """
    A set of build targets sharing one build selector expression.
    """

    name: str
    selector: str


PLATFORM_GROUPS = {
    LINUX: PlatformGroup(LINUX, "linux android"),
    DARWIN: PlatformGroup(DARWIN, "darwin,amd64 darwin,arm64 ios,amd64 ios,arm64"),
}

_PLATFORM_ALIASES = {
    "linux": LINUX,
    "android": LINUX,
    "darwin": DARWIN,
    "ios": DARWIN,
}


def platform_group(plat: Optional[str] = None) -> PlatformGroup:
    """
    Get the platform group for the given platform.

    :param plat: The platform, defaults to ``sys.platform``
    :type plat: str

    :raises PlatformError: If the platform is not supported

    :return: The platform group
    :rtype: ``torwrap.common.PlatformGroup``
    """
    if not plat:
        plat = sys.platform
    try:
        return PLATFORM_GROUPS[_PLATFORM_ALIASES[plat]]
    except KeyError:
        raise PlatformError(f"Sorry but your os : {plat} is not yet supported.")


def default_root() -> pathlib.Path:
    """
    The repository the generated package is written to.
    """
    return pathlib.Path(os.environ.get("TORWRAP_ROOT", os.getcwd())).resolve()


def runcmd(
    cmd: Sequence[PathLike],
    cwd: Optional[PathLike] = None,
    env: Optional[dict[str, str]] = None,
    error: type[TorwrapException] = TorwrapException,
    **kwargs: Any,
) -> str:
    """
    Run a command and return everything it printed.

    Each line of output is logged as it arrives, stdout at info and stderr at
    error. The combined output is kept in arrival order.

    :param cmd: The command to run
    :type cmd: list
    :param cwd: The directory to run the command in
    :type cwd: str
    :param env: The environment for the command, defaults to the current one
    :type env: dict
    :param error: The exception raised when the command fails
    :type error: type

    :raises TorwrapException: If the command finishes with a non zero exit
        code or can not be started. The ``error`` class is used.

    :return: The combined stdout and stderr of the command
    :rtype: str
    """
    args = [os.fspath(_) for _ in cmd]
    log.debug("Running command: %s", " ".join(args))
    try:
        p = subprocess.Popen(
            args,
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            universal_newlines=True,
            **kwargs,
        )
    except OSError as exc:
        raise error(f"Unable to run '{' '.join(args)}': {exc}")
    stdout_stream = p.stdout
    stderr_stream = p.stderr
    if stdout_stream is None or stderr_stream is None:
        p.wait()
        raise error("Process pipes are unavailable")
    lines: list[str] = []
    # Read both stdout and stderr simultaneously
    sel = selectors.DefaultSelector()
    sel.register(stdout_stream, selectors.EVENT_READ)
    sel.register(stderr_stream, selectors.EVENT_READ)
    while sel.get_map():
        for key, _ in sel.select():
            stream = cast(IO[str], key.fileobj)
            line = stream.readline()
            if not line:
                sel.unregister(stream)
                continue
            lines.append(line)
            if line.endswith("\n"):
                line = line[:-1]
            if stream is stdout_stream:
                log.info(line)
            else:
                log.error(line)
    sel.close()
    p.wait()
    output = "".join(lines)
    if p.returncode != 0:
        raise error(
            "Command '{}' failed with exit code {}".format(" ".join(args), p.returncode),
            output=output,
            returncode=p.returncode,
        )
    return output


def patch_file(path: PathLike, old: str, new: str) -> bool:
    """
    Search a file line by line for a pattern to replace.

    :param path: Location of the file to search
    :type path: str
    :param old: The pattern that will be replaced
    :type old: str
    :param new: The value that will replace the 'old' value.
    :type new: str

    :return: True when the file content changed
    :rtype: bool
    """
    log.debug("Patching file: %s", path)
    with open(path, "r") as fp:
        content = fp.read()
    new_content = ""
    for line in content.splitlines():
        line = re.sub(old, new, line)
        new_content += line + "\n"
    if new_content == content:
        return False
    with open(path, "w") as fp:
        fp.write(new_content)
    return True


class Introspector(abc.ABC):
    """
    The boundary between torwrap and native tools.

    Everything torwrap learns from git, configure scripts and build drivers
    goes through :meth:`run`, which makes the parsing around it testable with
    canned output.
    """

    @abc.abstractmethod
    def run(
        self,
        cmd: Sequence[str],
        cwd: Optional[PathLike] = None,
        error: type[TorwrapException] = TorwrapException,
    ) -> str:
        """
        Run a command to completion and return its combined output.

        :raises TorwrapException: An instance of ``error`` when the command fails
        """


class SubprocessIntrospector(Introspector):
    """
    Runs commands for real.

    :param env: Environment for the commands, defaults to the current one
    :type env: dict
    """

    def __init__(self, env: Optional[dict[str, str]] = None) -> None:
        self.env = env

    def run(
        self,
        cmd: Sequence[str],
        cwd: Optional[PathLike] = None,
        error: type[TorwrapException] = TorwrapException,
    ) -> str:
        return runcmd(cmd, cwd=cwd, env=self.env, error=error)

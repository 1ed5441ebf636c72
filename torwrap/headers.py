# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Materialize the per architecture configuration headers.

The headers native configure scripts would generate are checked in below
``config/`` of the repository, one per supported architecture. Some of them
are templates taking the version information found while introspecting.
"""
from __future__ import annotations

import logging
import os
import pathlib
import string
from typing import Mapping, NamedTuple

from .common import PathLike, TemplateError

log = logging.getLogger(__name__)

CONFIG_DIR = "config"

LINUX_ANDROID_DARWIN = (
    "",
    ".linux64",
    ".linux32",
    ".android64",
    ".android32",
    ".macos64",
    ".ios64",
)


class HeaderTemplate(NamedTuple):
    """
    A family of configuration headers, one per architecture suffix.

    ``source`` and ``dest`` are formatted with ``arch``. Headers that don't
    ``render`` are copied verbatim.
    """

    library: str
    source: str
    dest: str
    arches: tuple[str, ...]
    render: bool = False


CATALOG = (
    HeaderTemplate(
        "libevent",
        "libevent/event-config{arch}.h",
        "libevent_config/event2/event-config{arch}.h",
        LINUX_ANDROID_DARWIN,
        render=True,
    ),
    HeaderTemplate(
        "openssl",
        "openssl/dso_conf{arch}.h",
        "openssl_config/crypto/dso_conf{arch}.h",
        ("", ".linux", ".darwin"),
    ),
    HeaderTemplate(
        "openssl",
        "openssl/bn_conf{arch}.h",
        "openssl_config/crypto/bn_conf{arch}.h",
        ("", ".x64", ".x86"),
    ),
    HeaderTemplate(
        "openssl",
        "openssl/buildinf{arch}.h",
        "openssl_config/buildinf{arch}.h",
        ("", ".x64", ".x86", ".macos64", ".ios64"),
        render=True,
    ),
    HeaderTemplate(
        "openssl",
        "openssl/opensslconf{arch}.h",
        "openssl_config/openssl/opensslconf{arch}.h",
        ("", ".x64", ".x86", ".macos64", ".ios64"),
    ),
    HeaderTemplate(
        "tor",
        "tor/orconfig{arch}.h",
        "tor_config/orconfig{arch}.h",
        LINUX_ANDROID_DARWIN,
        render=True,
    ),
    HeaderTemplate(
        "tor",
        "tor/micro-revision.i",
        "tor_config/micro-revision.i",
        ("",),
    ),
)


def render(template: str, variables: Mapping[str, str], name: str = "template") -> str:
    """
    Substitute ``${variable}`` placeholders.

    :param template: The template text
    :type template: str
    :param variables: The values to substitute
    :type variables: dict
    :param name: Name of the template used in error messages
    :type name: str

    :raises TemplateError: If a placeholder is undefined or malformed

    :return: The rendered text
    :rtype: str
    """
    try:
        return string.Template(template).substitute(variables)
    except KeyError as exc:
        raise TemplateError(f"{name} references undefined variable {exc.args[0]}")
    except ValueError as exc:
        raise TemplateError(f"{name} is malformed: {exc}")


def read_template(path: PathLike) -> str:
    """
    Read a checked in template.

    :raises TemplateError: If the template can not be read
    """
    try:
        with open(path, "r", encoding="utf-8") as fp:
            return fp.read()
    except OSError as exc:
        raise TemplateError(f"Unable to read template {path}: {exc}")


def write_file(path: PathLike, content: str) -> None:
    """
    Write generated content, creating parent directories as needed.
    """
    path = pathlib.Path(path)
    os.makedirs(path.parent, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="\n") as fp:
        fp.write(content)


def materialize(
    root: PathLike,
    library: str,
    variables: Mapping[str, str],
    catalog: tuple[HeaderTemplate, ...] = CATALOG,
) -> list[pathlib.Path]:
    """
    Write every configuration header of a library for all architectures.

    :param root: The repository root holding ``config/``
    :type root: str
    :param library: The library name
    :type library: str
    :param variables: The library's version metadata
    :type variables: dict
    :param catalog: The header families to write
    :type catalog: tuple

    :raises TemplateError: If a source is missing or can not be rendered

    :return: The written headers
    :rtype: list
    """
    root = pathlib.Path(root)
    written: list[pathlib.Path] = []
    for entry in catalog:
        if entry.library != library:
            continue
        for arch in entry.arches:
            source = root / CONFIG_DIR / entry.source.format(arch=arch)
            dest = root / entry.dest.format(arch=arch)
            content = read_template(source)
            if entry.render:
                content = render(content, variables, name=str(source))
            write_file(dest, content)
            log.debug("Wrote %s", dest)
            written.append(dest)
    log.info("Wrote %d %s configuration headers", len(written), library)
    return written

# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
#
import logging
from pathlib import Path
from typing import Iterator

import pytest

from torwrap.common import PLATFORM_GROUPS, LINUX, PlatformGroup
from torwrap.headers import CATALOG
from torwrap.libraries import LibrarySpec, library_specs
from tests.helpers import (
    BRANCHES,
    LIBEVENT_DRY_RUN,
    OPENSSL_DRY_RUN,
    REVISIONS,
    TOR_DRY_RUN,
    UPSTREAMS,
    FakeIntrospector,
    LibtorProject,
    clone_from,
)

# mypy: ignore-errors


log = logging.getLogger(__name__)


@pytest.fixture
def group() -> PlatformGroup:
    return PLATFORM_GROUPS[LINUX]


@pytest.fixture
def specs(tmp_path: Path) -> tuple[LibrarySpec, ...]:
    return library_specs(environ={}, homebrew=tmp_path / "no-homebrew")


@pytest.fixture
def spec_map(specs: tuple[LibrarySpec, ...]) -> dict[str, LibrarySpec]:
    return {_.name: _ for _ in specs}


@pytest.fixture
def upstreams() -> dict[str, dict[str, str]]:
    return {name: dict(files) for name, files in UPSTREAMS.items()}


@pytest.fixture
def introspector(upstreams: dict[str, dict[str, str]]) -> FakeIntrospector:
    fake = FakeIntrospector()
    fake.add(["git", "clone"], effect=clone_from(upstreams))
    fake.add(
        ["git", "rev-parse", "HEAD"],
        output=lambda cmd, cwd: REVISIONS[cwd.name] + "\n",
    )
    fake.add(["git", "show", "-s"], output="Tue Sep 11 13:53:17 2018 +0100\n")
    fake.add(["git", "branch", "-a"], output=BRANCHES)
    fake.add(["make", "--dry-run", "libevent.la"], output=LIBEVENT_DRY_RUN)
    fake.add(
        ["make", "--dry-run"],
        output=lambda cmd, cwd: OPENSSL_DRY_RUN if cwd.name == "openssl" else TOR_DRY_RUN,
    )
    return fake


@pytest.fixture
def libtor(tmp_path: Path) -> Iterator[LibtorProject]:
    with LibtorProject(tmp_path / "libtor-repo") as project:
        project.add_templates()
        project.add_headers(CATALOG)
        yield project

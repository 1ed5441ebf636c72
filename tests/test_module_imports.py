# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
#
from __future__ import annotations

import importlib
import pathlib
from typing import List, Sequence

import pytest
from _pytest.mark.structures import ParameterSet


def _top_level_modules() -> Sequence[ParameterSet]:
    torwrap_dir = pathlib.Path(__file__).resolve().parents[1] / "torwrap"
    params: List[ParameterSet] = []
    for path in sorted(torwrap_dir.iterdir()):
        if not path.is_file() or path.suffix != ".py":
            continue
        stem = path.stem
        if stem == "__init__":
            module_name = "torwrap"
        else:
            module_name = f"torwrap.{stem}"
        params.append(pytest.param(module_name, id=module_name))
    return params


@pytest.mark.parametrize("module_name", _top_level_modules())
def test_import_top_level_module(module_name: str) -> None:
    """
    Ensure each top-level module in the torwrap package can be imported.
    """
    importlib.import_module(module_name)


def test_cli_commands() -> None:
    from torwrap.__main__ import setup_cli

    parser = setup_cli()
    args = parser.parse_args(["wrap", "--update", "--nobuild", "--target", "darwin"])
    assert args.update
    assert args.nobuild
    assert args.target == "darwin"
    assert args.log_level == "warning"
    args = parser.parse_args(["lock", "--root", "/tmp/libtor"])
    assert args.root == pathlib.Path("/tmp/libtor")


def test_cli_rejects_unknown_target() -> None:
    from torwrap.__main__ import setup_cli

    with pytest.raises(SystemExit):
        setup_cli().parse_args(["wrap", "--target", "win32"])

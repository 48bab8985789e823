"""
Shared test fixtures.

Settings and the secure filesystem adapter are process-wide singletons;
every test starts and ends with both reset.
"""

import os
import stat
import sys
import textwrap

import pytest

from automode.config import reset_settings
from automode.secure_fs import reset_secure_fs


@pytest.fixture(autouse=True)
def _reset_globals():
    reset_settings()
    reset_secure_fs()
    yield
    reset_settings()
    reset_secure_fs()


@pytest.fixture
def fake_cli(tmp_path):
    """
    Write an executable Python script that stands in for a vendor CLI.

    The script body runs with `sys` and `json` imported; argv and stdin are
    available to it like any CLI.
    """
    def make(body: str, name: str = "fake-cli") -> str:
        path = tmp_path / name
        path.write_text(
            f"#!{sys.executable}\n"
            "import json, sys\n"
            + textwrap.dedent(body)
        )
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return os.fspath(path)

    return make

import os
from pathlib import Path

import pytest

import moco_common
from moco_common import load_projects_file

FIXTURES = Path(__file__).parent / "fixtures"
PROJECTS_FILE = FIXTURES / "projects.json"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep host settings (MOCO_API_KEY, TIMEWARRIOR_*) out of the tests."""
    for name in list(os.environ):
        if name.startswith("TIMEWARRIOR_") or name == "MOCO_API_KEY":
            monkeypatch.delenv(name, raising=False)
    moco_common.set_debug(None)
    yield
    moco_common.set_debug(None)


@pytest.fixture
def projects():
    return load_projects_file(str(PROJECTS_FILE))

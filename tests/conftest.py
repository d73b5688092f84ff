import os
import sys

import pytest

from peach import Session, SolverConfig


def pytest_sessionstart(session):  # noqa: D401 - test harness helper
    """Ensure the current Python's bin directory is on PATH for subprocesses.

    The CLI smoke test launches ``python -m peach``; prepend the directory of
    the running interpreter so the ``python`` launcher is discoverable.
    """

    bin_dir = os.path.dirname(sys.executable)
    path = os.environ.get("PATH", "")
    if bin_dir and bin_dir not in path.split(os.pathsep):
        os.environ["PATH"] = os.pathsep.join([bin_dir, path]) if path else bin_dir


@pytest.fixture
def solver_session():
    with Session(SolverConfig(dimension=2, max_workers=4)) as session:
        yield session

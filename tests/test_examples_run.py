from __future__ import annotations

import runpy
from pathlib import Path

import pytest

EXAMPLES_DIR = Path(__file__).resolve().parent.parent / "examples"


@pytest.mark.parametrize(
    "script",
    sorted(EXAMPLES_DIR.glob("*.py"), key=lambda p: p.name),
    ids=lambda p: p.name,
)
def test_example_scripts_run(script: Path, monkeypatch, capsys) -> None:
    monkeypatch.chdir(EXAMPLES_DIR)
    runpy.run_path(str(script), run_name="__main__")
    out = capsys.readouterr().out
    assert "# Coefficient_" in out

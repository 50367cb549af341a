"""Checks that the requirements files mirror the pyproject dependency lists."""

from __future__ import annotations

from pathlib import Path

import tomllib


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _read_requirements(path: Path) -> list[str]:
    return [
        line.strip()
        for line in path.read_text().splitlines()
        if line.strip() and not line.lstrip().startswith("#")
    ]


def _pyproject() -> dict:
    return tomllib.loads((PROJECT_ROOT / "pyproject.toml").read_text())


def test_base_requirements_match_runtime_dependencies() -> None:
    runtime = sorted(_pyproject()["project"]["dependencies"])
    assert sorted(_read_requirements(PROJECT_ROOT / "requirements" / "base.txt")) == runtime


def test_dev_requirements_extend_base() -> None:
    expected_dev = sorted(_pyproject()["project"]["optional-dependencies"]["dev"])
    dev_requirements = _read_requirements(PROJECT_ROOT / "requirements" / "dev.txt")
    assert dev_requirements[0] == "-r base.txt"
    assert sorted(dev_requirements[1:]) == expected_dev


def test_runtime_stack_is_declared() -> None:
    names = {
        entry.split(">")[0].split("[")[0].split("=")[0].lower()
        for entry in _pyproject()["project"]["dependencies"]
    }
    assert {"fastapi", "httpx", "pydantic", "pyyaml", "rapidfuzz"} <= names

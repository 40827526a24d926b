from __future__ import annotations

import os
from pathlib import Path

import pytest

from cidvault import env as cv_env


@pytest.fixture(autouse=True)
def _reset_loaded(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cv_env, "_LOADED", False)


def test_dotenv_loads_once_without_overriding(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = tmp_path / "registry.env"
    p.write_text("CIDVAULT_TEST_A=from-file\nCIDVAULT_TEST_B=from-file\n", encoding="utf-8")
    monkeypatch.setenv("CIDVAULT_TEST_A", "from-env")
    monkeypatch.delenv("CIDVAULT_TEST_B", raising=False)
    monkeypatch.setenv("CIDVAULT_DOTENV_PATH", str(p))

    try:
        assert cv_env.load_dotenv_if_present() is True
        assert os.environ["CIDVAULT_TEST_A"] == "from-env"
        assert os.environ["CIDVAULT_TEST_B"] == "from-file"
        # Second call is a no-op.
        assert cv_env.load_dotenv_if_present() is False
    finally:
        os.environ.pop("CIDVAULT_TEST_B", None)


def test_missing_dotenv_is_not_an_error(tmp_path: Path) -> None:
    assert cv_env.load_dotenv_if_present(str(tmp_path / "absent.env")) is False

from __future__ import annotations

from pathlib import Path

import pytest

from src.app.runtime import build_planner_settings
from src.app.settings import AppSettings


@pytest.fixture
def base_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in (
        "TRAINER_SCHEME",
        "TRAINER_ADVANCEMENT",
        "TRAINER_CHAT_ID",
        "TRAINER_EXTENSION_LENGTH",
        "TRAINER_MAX_CHUNK",
        "TRAINER_DESIRED_RETENTION",
        "TRAINER_STRICT_REVIEWABLE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("SCRIPT_PATH", "script.txt")
    return monkeypatch


def test_defaults(base_env: pytest.MonkeyPatch) -> None:
    settings = AppSettings.from_env()

    assert settings.scheme == "fsrs"
    assert settings.advancement == "fixed"
    assert settings.script_path == Path("script.txt")
    assert settings.allowed_chat_id is None
    assert settings.max_chunk == 3
    assert settings.strict_reviewable is True
    assert build_planner_settings(settings).extension_length == 4


def test_overrides(base_env: pytest.MonkeyPatch) -> None:
    base_env.setenv("TRAINER_SCHEME", "EASE")
    base_env.setenv("TRAINER_CHAT_ID", "-100200")
    base_env.setenv("TRAINER_MAX_CHUNK", "5")
    base_env.setenv("TRAINER_STRICT_REVIEWABLE", "off")

    settings = AppSettings.from_env()
    planner_settings = build_planner_settings(settings)

    assert settings.scheme == "ease"
    assert settings.allowed_chat_id == -100200
    assert settings.strict_reviewable is False
    assert planner_settings.max_chunk == 5
    assert planner_settings.extension_length == 3


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("TRAINER_SCHEME", "sm2"),
        ("TRAINER_ADVANCEMENT", "sometimes"),
        ("TRAINER_MAX_CHUNK", "0"),
        ("TRAINER_EXTENSION_LENGTH", "many"),
        ("TRAINER_DESIRED_RETENTION", "1.5"),
    ],
)
def test_invalid_values_fail_fast(base_env: pytest.MonkeyPatch, name: str, value: str) -> None:
    base_env.setenv(name, value)

    with pytest.raises(RuntimeError):
        AppSettings.from_env()


def test_missing_token_fails(base_env: pytest.MonkeyPatch) -> None:
    base_env.delenv("TELEGRAM_BOT_TOKEN")

    with pytest.raises(RuntimeError):
        AppSettings.from_env()

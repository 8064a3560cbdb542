from pathlib import Path

import pytest

from marketchat import config
from marketchat.config import load_settings
from marketchat.errors import CredentialsNotProvided
from marketchat.storage import DEFAULT_DB_PATH

ENV_NAMES = (
    "MARKETCHAT_URL",
    "MARKETCHAT_API_KEY",
    "MARKETCHAT_ACCESS_TOKEN",
    "MARKETCHAT_USER_ID",
    "MARKETCHAT_ARCHIVE_PATH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, "SESSION_FILE", tmp_path / "missing_session")


def _write_config(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "config.ini"
    path.write_text(body, encoding="utf-8")
    return path


def test_reads_config_file(tmp_path):
    path = _write_config(
        tmp_path,
        "[backend]\n"
        "url = https://project.supabase.co\n"
        "api_key = anon\n"
        "access_token = jwt\n"
        "user_id = user-1\n"
        "[storage]\n"
        f"archive_path = {tmp_path / 'archive.sqlite3'}\n",
    )

    settings = load_settings(path)

    assert settings.url == "https://project.supabase.co"
    assert settings.api_key == "anon"
    assert settings.access_token == "jwt"
    assert settings.user_id == "user-1"
    assert settings.archive_path == tmp_path / "archive.sqlite3"


def test_environment_overrides_config(tmp_path, monkeypatch):
    path = _write_config(tmp_path, "[backend]\nurl = https://a.example\napi_key = a\n")
    monkeypatch.setenv("MARKETCHAT_URL", "https://b.example")

    settings = load_settings(path)

    assert settings.url == "https://b.example"
    assert settings.api_key == "a"
    assert settings.archive_path == DEFAULT_DB_PATH


def test_placeholders_count_as_missing(tmp_path):
    path = _write_config(
        tmp_path,
        "[backend]\nurl = https://YOUR_PROJECT.supabase.co\napi_key = YOUR_ANON_KEY\n",
    )

    with pytest.raises(CredentialsNotProvided) as excinfo:
        load_settings(path)

    assert excinfo.value.missing == "url and api key"


def test_missing_file_without_env_fails(tmp_path, monkeypatch):
    monkeypatch.setenv("MARKETCHAT_URL", "https://b.example")

    with pytest.raises(CredentialsNotProvided) as excinfo:
        load_settings(tmp_path / "nope.ini")

    assert excinfo.value.missing == "api key"


def test_session_file_supplies_access_token(tmp_path, monkeypatch):
    session = tmp_path / "session"
    session.write_text("  saved-jwt\n", encoding="utf-8")
    monkeypatch.setattr(config, "SESSION_FILE", session)
    monkeypatch.setenv("MARKETCHAT_URL", "https://b.example")
    monkeypatch.setenv("MARKETCHAT_API_KEY", "anon")

    settings = load_settings(tmp_path / "nope.ini")

    assert settings.access_token == "saved-jwt"
    assert settings.user_id is None

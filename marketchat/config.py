from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import CredentialsNotProvided
from .storage import DEFAULT_DB_PATH

SESSION_FILE = Path.home() / ".marketchat_session"


@dataclass(frozen=True)
class Settings:
    url: str
    api_key: str
    access_token: Optional[str] = None
    user_id: Optional[str] = None
    archive_path: Path = DEFAULT_DB_PATH


def _read_config(config_path: str | Path) -> configparser.ConfigParser:
    parser = configparser.ConfigParser()
    config_file = Path(config_path).expanduser()
    if config_file.is_file():
        parser.read(config_file)
    return parser


def _lookup(
    parser: configparser.ConfigParser,
    env_name: str,
    section: str,
    option: str,
) -> Optional[str]:
    env_value = os.environ.get(env_name)
    if env_value and env_value.strip():
        return env_value.strip()

    value = parser.get(section, option, fallback="").strip()
    if value and "YOUR_" not in value:
        return value
    return None


def get_access_token(parser: configparser.ConfigParser) -> Optional[str]:
    """Return the signed-in user's access token.

    Checked in order: ``MARKETCHAT_ACCESS_TOKEN``, ``[backend] access_token``
    in ``config.ini`` and finally ``~/.marketchat_session``, which should
    contain only the raw token.
    """

    token = _lookup(parser, "MARKETCHAT_ACCESS_TOKEN", "backend", "access_token")
    if token:
        return token
    if SESSION_FILE.is_file():
        token = SESSION_FILE.read_text(encoding="utf-8").strip()
        if token:
            return token
    return None


def load_settings(config_path: str | Path = "config.ini") -> Settings:
    """Collect backend and archive settings.

    Environment variables win over ``config.ini``::

        [backend]
        url = https://YOUR_PROJECT.supabase.co
        api_key = YOUR_ANON_KEY
        access_token = YOUR_ACCESS_TOKEN
        user_id = YOUR_USER_ID

        [storage]
        archive_path = ~/.marketchat_archive.sqlite3

    Raises:
        CredentialsNotProvided: If the url or the api key is missing.
    """

    parser = _read_config(config_path)

    url = _lookup(parser, "MARKETCHAT_URL", "backend", "url")
    api_key = _lookup(parser, "MARKETCHAT_API_KEY", "backend", "api_key")
    missing = [name for name, value in (("url", url), ("api key", api_key)) if not value]
    if missing:
        raise CredentialsNotProvided(" and ".join(missing))

    archive_path = _lookup(parser, "MARKETCHAT_ARCHIVE_PATH", "storage", "archive_path")

    return Settings(
        url=url,
        api_key=api_key,
        access_token=get_access_token(parser),
        user_id=_lookup(parser, "MARKETCHAT_USER_ID", "backend", "user_id"),
        archive_path=Path(archive_path).expanduser() if archive_path else DEFAULT_DB_PATH,
    )

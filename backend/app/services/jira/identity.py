"""IdentityResolver — chat username -> display name and per-source Jira login.

Built once at startup from settings and handed to every component that
needs it. Read-only afterwards.
"""
import json
import logging
from pathlib import Path

from config import IdentityEntry

logger = logging.getLogger("relay.jira.identity")


class IdentityResolver:

    def __init__(self, mappings: dict[str, IdentityEntry]):
        self._by_username = dict(mappings)
        self._by_login: dict[str, str] = {}
        for entry in self._by_username.values():
            for login in entry.logins.values():
                self._by_login.setdefault(login, entry.name)

    @classmethod
    def from_settings(cls, settings) -> "IdentityResolver":
        """Merge USER_MAPPINGS_FILE (if set) with inline USER_MAPPINGS."""
        mappings: dict[str, IdentityEntry] = {}
        if settings.USER_MAPPINGS_FILE:
            raw = json.loads(Path(settings.USER_MAPPINGS_FILE).read_text(encoding="utf-8"))
            mappings.update({
                username: IdentityEntry.model_validate(data)
                for username, data in raw.items()
            })
        mappings.update(settings.USER_MAPPINGS)
        logger.info("Identity mapping loaded: %d users", len(mappings))
        return cls(mappings)

    def __len__(self) -> int:
        return len(self._by_username)

    def display_name(self, username: str | None) -> str:
        entry = self._by_username.get(username or "")
        return entry.name if entry else (username or "unknown user")

    def login_for(self, username: str | None, source: str) -> str | None:
        entry = self._by_username.get(username or "")
        if not entry:
            return None
        return entry.logins.get(source) or None

    def token_for(self, username: str | None, source: str) -> str | None:
        entry = self._by_username.get(username or "")
        if not entry:
            return None
        return entry.tokens.get(source) or None

    def name_for_login(self, login: str | None) -> str:
        """Display name for a Jira login, "" when the login is not mapped."""
        if not login:
            return ""
        return self._by_login.get(login, "")

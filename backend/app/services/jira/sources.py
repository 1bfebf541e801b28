"""Per-source Jira adapters.

Each Jira instance stores the same concepts in different places (the
department is a different custom field on every instance, workflow
transition ids differ). An adapter owns that mapping plus the client for
its instance; shared code only talks to the SourceAdapter interface.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from services.jira.client import JiraClient
from services.jira.config import DEPARTMENT_UNSPECIFIED, FIELD_UNKNOWN
from services.jira.identity import IdentityResolver

logger = logging.getLogger("relay.jira.sources")


@dataclass(frozen=True)
class TaskFields:
    """Normalized issue as fetched, before merging with local state."""
    id: str
    title: str
    priority: str
    issue_type: str
    department: str
    resolution: str
    assignee: str
    source: str


class SourceAdapter:
    """Base adapter. Subclasses set the source name and field/transition ids."""

    name: str = ""
    department_field: str = ""
    take_transition_id: str | None = None
    complete_transition_id: str = "401"
    complete_resolution: str | None = "Done"

    def __init__(self, base_url: str, token: str, jql: str, timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.jql = jql
        self.client = JiraClient(self.base_url, token, timeout)

    def issue_url(self, issue_key: str) -> str:
        return f"{self.base_url}/browse/{issue_key}"

    def search_fields(self) -> list[str]:
        return [
            "summary", "priority", "issuetype", "resolution", "assignee",
            self.department_field,
        ]

    def department_of(self, fields: dict) -> str:
        value = fields.get(self.department_field)
        if isinstance(value, dict):
            value = value.get("value")
        return value or DEPARTMENT_UNSPECIFIED

    def normalize(self, issue: dict, identities: IdentityResolver) -> TaskFields:
        fields = issue.get("fields") or {}
        assignee_login = (fields.get("assignee") or {}).get("name")
        return TaskFields(
            id=issue["key"],
            title=fields.get("summary") or "",
            priority=(fields.get("priority") or {}).get("name") or FIELD_UNKNOWN,
            issue_type=(fields.get("issuetype") or {}).get("name") or FIELD_UNKNOWN,
            department=self.department_of(fields),
            resolution=(fields.get("resolution") or {}).get("name") or "",
            assignee=identities.name_for_login(assignee_login),
            source=self.name,
        )

    async def close(self) -> None:
        await self.client.close()


class SxlAdapter(SourceAdapter):
    name = "sxl"
    department_field = "customfield_10500"
    take_transition_id = "221"


class BetoneAdapter(SourceAdapter):
    name = "betone"
    department_field = "customfield_10504"
    take_transition_id = "201"


ADAPTERS: dict[str, type[SourceAdapter]] = {
    SxlAdapter.name: SxlAdapter,
    BetoneAdapter.name: BetoneAdapter,
}


def build_adapters(settings) -> dict[str, SourceAdapter]:
    """Instantiate adapters for every enabled source."""
    adapters: dict[str, SourceAdapter] = {}
    for name, adapter_cls in ADAPTERS.items():
        prefix = f"JIRA_{name.upper()}_"
        if not getattr(settings, prefix + "ENABLED", False):
            continue
        adapters[name] = adapter_cls(
            getattr(settings, prefix + "URL"),
            getattr(settings, prefix + "PAT"),
            getattr(settings, prefix + "JQL"),
            timeout=settings.JIRA_TIMEOUT,
        )
        logger.info("Jira source enabled: %s (%s)", name, adapters[name].base_url)
    return adapters

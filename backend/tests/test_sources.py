"""Tests for source adapters, identity mapping and the issue fetcher."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from config import IdentityEntry
from services.jira.client import JiraError
from services.jira.fetcher import IssueFetcher
from services.jira.identity import IdentityResolver
from services.jira.sources import BetoneAdapter, SxlAdapter, build_adapters

from conftest import SUPPORT


def issue(key: str, **fields) -> dict:
    return {"key": key, "fields": fields}


class TestNormalize:

    @pytest.mark.asyncio
    async def test_sxl_issue(self, sxl_adapter, identities) -> None:
        raw = issue(
            "SUP-5",
            summary="VPN drops every hour",
            priority={"name": "High"},
            issuetype={"name": "Task"},
            resolution={"name": "Done"},
            assignee={"name": "a.smith"},
            customfield_10500={"value": SUPPORT},
        )

        task = sxl_adapter.normalize(raw, identities)

        assert task.id == "SUP-5"
        assert task.source == "sxl"
        assert task.title == "VPN drops every hour"
        assert task.priority == "High"
        assert task.department == SUPPORT
        assert task.resolution == "Done"
        assert task.assignee == "Alice Smith"

    @pytest.mark.asyncio
    async def test_missing_fields_get_sentinels(self, sxl_adapter, identities) -> None:
        task = sxl_adapter.normalize(issue("SUP-6", assignee={"name": "stranger"}), identities)

        assert task.title == ""
        assert task.priority == "unknown"
        assert task.issue_type == "unknown"
        assert task.department == "unspecified"
        assert task.resolution == ""
        assert task.assignee == ""

    @pytest.mark.asyncio
    async def test_betone_reads_its_own_department_field(self, identities) -> None:
        adapter = BetoneAdapter("https://jira.betone.team", "pat", "project = BETONE")
        try:
            task = adapter.normalize(
                issue("BET-1", customfield_10500={"value": "Wrong"}, customfield_10504={"value": SUPPORT}),
                identities,
            )
        finally:
            await adapter.close()

        assert task.department == SUPPORT
        assert task.source == "betone"
        assert adapter.take_transition_id == "201"

    @pytest.mark.asyncio
    async def test_issue_url(self, sxl_adapter) -> None:
        assert sxl_adapter.issue_url("SUP-1") == "https://jira.sxl.team/browse/SUP-1"


@pytest.mark.asyncio
async def test_build_adapters_skips_disabled_sources() -> None:
    settings = SimpleNamespace(
        JIRA_SXL_ENABLED=True, JIRA_SXL_URL="https://jira.sxl.team/", JIRA_SXL_PAT="p", JIRA_SXL_JQL="q",
        JIRA_BETONE_ENABLED=False, JIRA_BETONE_URL="", JIRA_BETONE_PAT="", JIRA_BETONE_JQL="",
        JIRA_TIMEOUT=5.0,
    )

    adapters = build_adapters(settings)
    try:
        assert list(adapters) == ["sxl"]
        assert isinstance(adapters["sxl"], SxlAdapter)
        assert adapters["sxl"].base_url == "https://jira.sxl.team"
    finally:
        for adapter in adapters.values():
            await adapter.close()


class TestIdentityResolver:

    def test_lookups(self, identities) -> None:
        assert identities.display_name("alice") == "Alice Smith"
        assert identities.display_name("ghost") == "ghost"
        assert identities.display_name(None) == "unknown user"
        assert identities.login_for("alice", "sxl") == "a.smith"
        assert identities.login_for("alice", "betone") is None
        assert identities.login_for(None, "sxl") is None
        assert identities.token_for("bob", "sxl") == "bob-pat"
        assert identities.token_for("alice", "sxl") is None
        assert identities.name_for_login("bjones") == "Bob Jones"
        assert len(identities) == 2

    def test_from_settings_merges_file_and_inline(self, tmp_path) -> None:
        mapping_file = tmp_path / "users.json"
        mapping_file.write_text(json.dumps({
            "alice": {"name": "Alice (file)", "logins": {"sxl": "a.file"}},
            "carol": {"name": "Carol White", "logins": {"betone": "cwhite"}},
        }), encoding="utf-8")
        settings = SimpleNamespace(
            USER_MAPPINGS_FILE=str(mapping_file),
            USER_MAPPINGS={"alice": IdentityEntry(name="Alice Smith", logins={"sxl": "a.smith"})},
        )

        resolver = IdentityResolver.from_settings(settings)

        assert resolver.display_name("alice") == "Alice Smith"
        assert resolver.login_for("carol", "betone") == "cwhite"


class TestIssueFetcher:

    @pytest.mark.asyncio
    async def test_skips_malformed_issues(self, sxl_adapter, identities) -> None:
        sxl_adapter.client.search.return_value = [
            issue("SUP-1", summary="ok"),
            {"fields": {"summary": "no key"}},
        ]

        tasks = await IssueFetcher(sxl_adapter, identities).fetch()

        assert [t.id for t in tasks] == ["SUP-1"]
        sxl_adapter.client.search.assert_awaited_once_with(
            "project = SUPPORT", fields=sxl_adapter.search_fields(),
        )

    @pytest.mark.asyncio
    async def test_search_errors_propagate(self, sxl_adapter, identities) -> None:
        sxl_adapter.client.search.side_effect = JiraError(0, "down")

        with pytest.raises(JiraError):
            await IssueFetcher(sxl_adapter, identities).fetch()

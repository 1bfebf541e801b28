"""Tests for inline button actions and the comment dialog."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError
from sqlalchemy import select

from models.action_audit import ActionAudit
from services.jira.actions import (
    ActionCoordinator,
    ActionKind,
    ActionRequest,
    ActionStatus,
    Actor,
    PendingCommentStore,
)
from services.jira.config import MSG_GENERIC_FAILURE, MSG_OPERATION_FAILED
from services.jira.transport import MessageRef

from conftest import CHAT_ID, SUPPORT

ORIGIN = MessageRef(CHAT_ID, 42)
ALICE = Actor(user_id=1, username="alice")
BOB = Actor(user_id=2, username="bob")
MALLORY = Actor(user_id=3, username="mallory")


@pytest.fixture
def coordinator(session_factory, adapters, identities, transport, fake_redis) -> ActionCoordinator:
    return ActionCoordinator(
        session_factory, adapters, identities, transport,
        PendingCommentStore(fake_redis, ttl=300),
        support_department=SUPPORT,
    )


async def audits(session_factory) -> list[ActionAudit]:
    async with session_factory() as session:
        result = await session.execute(select(ActionAudit))
        return list(result.scalars().all())


class TestActionRequest:

    def test_encode_decode(self) -> None:
        request = ActionRequest.decode("complete:SUP-12")
        assert request.kind is ActionKind.complete
        assert request.task_id == "SUP-12"
        assert request.encode() == "complete:SUP-12"

    @pytest.mark.parametrize("data", [
        "",
        "take",
        "take:",
        "nuke:SUP-1",
        "take:SUP 1",
        "take:../etc",
        "take:" + "A" * 60,
    ])
    def test_rejects_malformed_payloads(self, data: str) -> None:
        with pytest.raises(ValueError):
            ActionRequest.decode(data)


class TestTake:

    @pytest.mark.asyncio
    async def test_unmapped_actor_makes_no_remote_call(
        self, coordinator, store, sxl_adapter, transport,
    ) -> None:
        await store.add("SUP-1")

        outcome = await coordinator.handle(ActionRequest.decode("take:SUP-1"), MALLORY, ORIGIN)

        assert outcome.status is ActionStatus.no_login
        sxl_adapter.client.assign.assert_not_awaited()
        sxl_adapter.client.transition.assert_not_awaited()
        assert transport.edits == []
        assert len(transport.sent) == 1
        assert "mallory" in transport.texts[0]

    @pytest.mark.asyncio
    async def test_assigns_transitions_and_edits_origin(
        self, coordinator, store, sxl_adapter, transport, session_factory,
    ) -> None:
        await store.add("SUP-1")

        outcome = await coordinator.handle(ActionRequest.decode("take:SUP-1"), ALICE, ORIGIN)

        assert outcome.status is ActionStatus.done
        sxl_adapter.client.assign.assert_awaited_once_with("SUP-1", "a.smith")
        sxl_adapter.client.transition.assert_awaited_once_with("SUP-1", "221")
        ref, text, buttons = transport.edits[0]
        assert ref == ORIGIN
        assert text == f"{SUPPORT}\n\nTaken: Alice Smith"
        assert buttons[0][0].url == "https://jira.sxl.team/browse/SUP-1"
        rows = await audits(session_factory)
        assert [(r.task_id, r.username, r.action) for r in rows] == [("SUP-1", "alice", "take")]

    @pytest.mark.asyncio
    async def test_remote_failure_sends_notice_and_keeps_message(
        self, coordinator, store, sxl_adapter, transport, session_factory,
    ) -> None:
        await store.add("SUP-1")
        sxl_adapter.client.assign.return_value = False

        outcome = await coordinator.handle(ActionRequest.decode("take:SUP-1"), ALICE, ORIGIN)

        assert outcome.status is ActionStatus.failed
        assert transport.edits == []
        assert transport.texts == [MSG_OPERATION_FAILED.format(operation="assign", task_id="SUP-1")]
        assert await audits(session_factory) == []

    @pytest.mark.asyncio
    async def test_missing_task(self, coordinator, sxl_adapter) -> None:
        outcome = await coordinator.handle(ActionRequest.decode("take:SUP-404"), ALICE, ORIGIN)

        assert outcome.status is ActionStatus.not_found
        sxl_adapter.client.assign.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_actions_limited_to_support_department(self, coordinator, store, sxl_adapter) -> None:
        await store.add("INF-1", department="DevOps", issue_type="Infra")

        outcome = await coordinator.handle(ActionRequest.decode("take:INF-1"), ALICE, ORIGIN)

        assert outcome.status is ActionStatus.unavailable
        sxl_adapter.client.assign.assert_not_awaited()


class TestComplete:

    @pytest.mark.asyncio
    async def test_transitions_with_resolution(self, coordinator, store, sxl_adapter, transport) -> None:
        await store.add("SUP-1")

        outcome = await coordinator.handle(ActionRequest.decode("complete:SUP-1"), ALICE, ORIGIN)

        assert outcome.status is ActionStatus.done
        sxl_adapter.client.transition.assert_awaited_once_with("SUP-1", "401", "Done")
        assert transport.edits[0][1] == f"{SUPPORT}\n\nCompleted: Alice Smith"

    @pytest.mark.asyncio
    async def test_edit_failure_falls_back_to_new_message(self, coordinator, store, transport) -> None:
        await store.add("SUP-1")
        transport.fail_edit = True

        outcome = await coordinator.handle(ActionRequest.decode("complete:SUP-1"), ALICE, ORIGIN)

        assert outcome.status is ActionStatus.done
        assert transport.sent[0][0] == CHAT_ID
        assert transport.texts == [f"{SUPPORT}\n\nCompleted: Alice Smith"]


class TestCommentDialog:

    @pytest.mark.asyncio
    async def test_prompt_then_reply_posts_comment(
        self, coordinator, store, sxl_adapter, transport, fake_redis,
    ) -> None:
        await store.add("SUP-1")

        outcome = await coordinator.handle(ActionRequest.decode("comment:SUP-1"), ALICE, ORIGIN)
        assert outcome.status is ActionStatus.prompted
        assert list(fake_redis.ttls.values()) == [300]
        sxl_adapter.client.add_comment.assert_not_awaited()

        outcome = await coordinator.submit_comment(CHAT_ID, ALICE, "  Cable replaced  ")

        assert outcome.status is ActionStatus.done
        sxl_adapter.client.add_comment.assert_awaited_once_with(
            "SUP-1", "[Alice Smith] Cable replaced", token=None,
        )
        assert transport.edits[0][0] == ORIGIN
        assert transport.edits[0][1] == f"{SUPPORT}\n\nComment added: Alice Smith"

    @pytest.mark.asyncio
    async def test_personal_token_posts_unprefixed(self, coordinator, store, sxl_adapter) -> None:
        await store.add("SUP-1")
        await coordinator.handle(ActionRequest.decode("comment:SUP-1"), BOB, ORIGIN)

        await coordinator.submit_comment(CHAT_ID, BOB, "On it")

        sxl_adapter.client.add_comment.assert_awaited_once_with("SUP-1", "On it", token="bob-pat")

    @pytest.mark.asyncio
    async def test_dialog_resumes_only_once(self, coordinator, store, sxl_adapter) -> None:
        await store.add("SUP-1")
        await coordinator.handle(ActionRequest.decode("comment:SUP-1"), ALICE, ORIGIN)

        await coordinator.submit_comment(CHAT_ID, ALICE, "first")

        assert await coordinator.submit_comment(CHAT_ID, ALICE, "second") is None
        assert sxl_adapter.client.add_comment.await_count == 1

    @pytest.mark.asyncio
    async def test_other_user_text_is_ignored(self, coordinator, store, sxl_adapter) -> None:
        await store.add("SUP-1")
        await coordinator.handle(ActionRequest.decode("comment:SUP-1"), ALICE, ORIGIN)

        assert await coordinator.submit_comment(CHAT_ID, BOB, "not mine") is None
        sxl_adapter.client.add_comment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_reply_cancels(self, coordinator, store, sxl_adapter) -> None:
        await store.add("SUP-1")
        await coordinator.handle(ActionRequest.decode("comment:SUP-1"), ALICE, ORIGIN)

        outcome = await coordinator.submit_comment(CHAT_ID, ALICE, "   ")

        assert outcome.status is ActionStatus.cancelled
        sxl_adapter.client.add_comment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_clears_pending(self, coordinator, store, sxl_adapter) -> None:
        await store.add("SUP-1")
        await coordinator.handle(ActionRequest.decode("comment:SUP-1"), ALICE, ORIGIN)

        outcome = await coordinator.cancel_comment(CHAT_ID, ALICE)

        assert outcome.status is ActionStatus.cancelled
        assert await coordinator.submit_comment(CHAT_ID, ALICE, "late") is None
        assert await coordinator.cancel_comment(CHAT_ID, ALICE) is None

    @pytest.mark.asyncio
    async def test_failed_comment_reports_operation(
        self, coordinator, store, sxl_adapter, transport,
    ) -> None:
        await store.add("SUP-1")
        sxl_adapter.client.add_comment.return_value = False
        await coordinator.handle(ActionRequest.decode("comment:SUP-1"), ALICE, ORIGIN)

        outcome = await coordinator.submit_comment(CHAT_ID, ALICE, "text")

        assert outcome.status is ActionStatus.failed
        assert transport.edits == []
        assert transport.texts[-1] == MSG_OPERATION_FAILED.format(
            operation="add comment", task_id="SUP-1",
        )

    @pytest.mark.asyncio
    async def test_redis_down_reports_generic_failure(
        self, coordinator, store, sxl_adapter, transport, fake_redis,
    ) -> None:
        await store.add("SUP-1")
        fake_redis.setex = AsyncMock(side_effect=RedisError("connection refused"))

        outcome = await coordinator.handle(ActionRequest.decode("comment:SUP-1"), ALICE, ORIGIN)

        assert outcome.status is ActionStatus.error
        assert outcome.message == MSG_GENERIC_FAILURE.format(task_id="SUP-1")
        assert transport.texts[-1] == outcome.message
        sxl_adapter.client.add_comment.assert_not_awaited()

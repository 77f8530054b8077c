"""Tests for user-context reads and chat turn storage (mocked Supabase)."""

from unittest.mock import MagicMock

import pytest

from consultant.core.schemas_chat import SourceKind, Turn, TurnRole, TurnStatus
from consultant.db import chat_turns
from consultant.db.user_context import (
    load_fallback_candidates,
    load_persistent_objective_context,
    load_recent_journal,
    load_recent_tasks,
)


def _mock_supabase(execute_results=None):
    """Supabase mock with chained query builder.

    Args:
        execute_results: Optional list of return values for successive
            .execute() calls (uses side_effect).  When not provided,
            every .execute() returns ``MagicMock(data=[])``.
    """
    sb = MagicMock()
    chain = MagicMock()
    if execute_results is not None:
        chain.execute.side_effect = execute_results
    else:
        chain.execute.return_value = MagicMock(data=[])
    chain.eq.return_value = chain
    chain.in_.return_value = chain
    chain.order.return_value = chain
    chain.limit.return_value = chain
    chain.select.return_value = chain
    chain.insert.return_value = chain
    sb.table.return_value = chain
    return sb


class TestObjectives:
    def test_macro_goals_and_priorities(self):
        sb = _mock_supabase(
            execute_results=[
                MagicMock(data=[{"macro_goals": "- Ship the product\n\n- Run a marathon\n"}]),
                MagicMock(
                    data=[
                        {"title": "Sleep", "priority_level": "medium", "updated_at": "2026-10-01"},
                        {"title": "Launch", "priority_level": "critical", "updated_at": "2026-09-01"},
                        {"title": "Fitness", "priority_level": "medium", "updated_at": "2026-10-10"},
                    ]
                ),
            ]
        )

        context = load_persistent_objective_context("u1", client=sb)

        assert context.objectives == ["Ship the product", "Run a marathon"]
        assert context.focus_areas == ["Launch", "Fitness", "Sleep"]

    def test_missing_profile_is_empty(self):
        sb = _mock_supabase(execute_results=[MagicMock(data=[]), MagicMock(data=[])])

        context = load_persistent_objective_context("u1", client=sb)

        assert context.is_empty


class TestRecentWindow:
    def test_recent_tasks_filter_active_statuses(self):
        sb = _mock_supabase(
            execute_results=[
                MagicMock(data=[{"id": "t1", "title": "Deck", "type": "task", "status": "doing", "priority": 9}])
            ]
        )

        tasks = load_recent_tasks("u1", 10, client=sb)

        assert [t.id for t in tasks] == ["t1"]
        assert tasks[0].kind == SourceKind.TASK
        assert tasks[0].relevance == 0.0
        sb.table.assert_called_with("opportunities")
        sb.table.return_value.in_.assert_called_once_with("status", ["backlog", "doing", "review"])
        sb.table.return_value.limit.assert_called_once_with(10)

    def test_recent_journal_newest_first(self):
        sb = _mock_supabase()

        load_recent_journal("u1", 7, client=sb)

        sb.table.assert_called_with("daily_logs")
        sb.table.return_value.order.assert_called_once_with("log_date", desc=True)
        sb.table.return_value.limit.assert_called_once_with(7)

    def test_fallback_candidates_in_kind_order(self):
        sb = _mock_supabase(
            execute_results=[
                MagicMock(data=[{"id": "t1", "title": "T", "type": "task", "status": "doing"}]),
                MagicMock(data=[{"id": "j1", "log_date": "2026-10-17", "content": "ok"}]),
                MagicMock(data=[{"id": "n1", "content_chunk": "note"}]),
            ]
        )

        candidates = load_fallback_candidates("u1", 50, client=sb)

        assert [(c.kind, c.id) for c in candidates] == [
            (SourceKind.TASK, "t1"),
            (SourceKind.JOURNAL, "j1"),
            (SourceKind.NOTE, "n1"),
        ]


class TestChatTurns:
    def test_load_turns_returns_oldest_first(self):
        rows = [
            {"session_id": "s1", "role": "assistant", "content": "A", "seq": 2,
             "created_at": "2026-10-17T09:01:00+00:00", "status": "interrupted", "sources": []},
            {"session_id": "s1", "role": "user", "content": "Q", "seq": 1,
             "created_at": "2026-10-17T09:00:00+00:00"},
        ]
        sb = _mock_supabase(execute_results=[MagicMock(data=rows)])

        turns = chat_turns.load_turns("s1", 10, client=sb)

        assert [t.seq for t in turns] == [1, 2]
        assert turns[1].status == TurnStatus.INTERRUPTED
        sb.table.assert_called_with("chat_history")

    def test_load_turns_filters_by_user_when_given(self):
        sb = _mock_supabase()

        chat_turns.load_turns("s1", 10, user_id="u1", client=sb)

        eq_calls = [c.args for c in sb.table.return_value.eq.call_args_list]
        assert eq_calls == [("session_id", "s1"), ("user_id", "u1")]

    def test_load_turns_without_user_filters_session_only(self):
        sb = _mock_supabase()

        chat_turns.load_turns("s1", 1, client=sb)

        sb.table.return_value.eq.assert_called_once_with("session_id", "s1")

    def test_session_owner_is_first_turns_user(self):
        sb = _mock_supabase(execute_results=[MagicMock(data=[{"user_id": "u1"}])])

        assert chat_turns.get_session_owner("s1", client=sb) == "u1"
        sb.table.return_value.select.assert_called_once_with("user_id")
        sb.table.return_value.limit.assert_called_once_with(1)

    def test_unused_session_has_no_owner(self):
        sb = _mock_supabase()

        assert chat_turns.get_session_owner("s1", client=sb) is None

    def test_load_turns_zero_limit_skips_query(self):
        sb = _mock_supabase()

        assert chat_turns.load_turns("s1", 0, client=sb) == []
        sb.table.assert_not_called()

    def test_insert_turn_writes_record(self):
        sb = _mock_supabase()
        turn = Turn(session_id="s1", role=TurnRole.USER, content="Q", user_id="u1", seq=1)

        chat_turns.insert_turn(turn, client=sb)

        record = sb.table.return_value.insert.call_args[0][0]
        assert record["session_id"] == "s1"
        assert record["role"] == "user"
        assert record["status"] == "complete"
        assert record["seq"] == 1

    @pytest.mark.asyncio
    async def test_store_adapter_round_trip(self):
        sb = _mock_supabase(
            execute_results=[
                MagicMock(data=[]),
                MagicMock(data=[{"session_id": "s1", "role": "user", "content": "Q",
                                 "created_at": "2026-10-17T09:00:00+00:00"}]),
            ]
        )
        store = chat_turns.SupabaseTurnStore(client=sb)

        await store.insert_turn(Turn(session_id="s1", role=TurnRole.USER, content="Q"))
        turns = await store.load_turns("s1", 5)

        assert [t.content for t in turns] == ["Q"]

    @pytest.mark.asyncio
    async def test_store_adapter_passes_user_filter_and_owner_lookup(self):
        sb = _mock_supabase(
            execute_results=[MagicMock(data=[]), MagicMock(data=[{"user_id": "u1"}])]
        )
        store = chat_turns.SupabaseTurnStore(client=sb)

        await store.load_turns("s1", 5, "u1")
        owner = await store.session_owner("s1")

        assert ("user_id", "u1") in [c.args for c in sb.table.return_value.eq.call_args_list]
        assert owner == "u1"

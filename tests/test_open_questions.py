"""Tests for the follow-up question queue."""

import sys
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

import pytest
from rebar_agentic.services import open_questions, supabase_client


@pytest.fixture(autouse=True)
def _available_table():
    open_questions.reset_availability()
    yield
    open_questions.reset_availability()


def _missing_table_error():
    return supabase_client.SupabaseError(
        "Could not find the table 'public.open_questions'", status_code=404, code="PGRST205"
    )


def test_list_returns_rows():
    rows = [{"id": "q1", "question": "Is M365 Microsoft 365?"}]
    with patch.object(supabase_client, "fetch_open_questions", return_value=rows) as fetch:
        assert open_questions.list_open_questions("user-1", limit=0) == rows
    fetch.assert_called_once_with("user-1", limit=10)


def test_missing_table_disables_queue():
    with patch.object(supabase_client, "fetch_open_questions", side_effect=_missing_table_error()) as fetch:
        assert open_questions.list_open_questions("user-1") == []
        assert open_questions.list_open_questions("user-1") == []
    assert fetch.call_count == 1

    with patch.object(supabase_client, "insert_open_question") as insert:
        assert open_questions.add_open_question("user-1", "Anything?") is None
    insert.assert_not_called()

    open_questions.reset_availability()
    with patch.object(supabase_client, "fetch_open_questions", return_value=[]) as fetch:
        open_questions.list_open_questions("user-1")
    fetch.assert_called_once()


def test_other_errors_propagate():
    err = supabase_client.SupabaseError("boom", status_code=500)
    with patch.object(supabase_client, "insert_open_question", side_effect=err):
        with pytest.raises(supabase_client.SupabaseError):
            open_questions.add_open_question("user-1", "Anything?")


def test_add_skips_blank_question():
    with patch.object(supabase_client, "insert_open_question") as insert:
        assert open_questions.add_open_question("user-1", "   ") is None
        assert open_questions.add_open_question("", "Real question") is None
    insert.assert_not_called()


def test_add_strips_question_and_stamps_time():
    with patch.object(supabase_client, "insert_open_question", return_value={"id": "q1"}) as insert:
        open_questions.add_open_question("user-1", "  Which region?  ", context={"type": "clarify"})
    row = insert.call_args[0][0]
    assert row["question"] == "Which region?"
    assert row["context"] == {"type": "clarify"}
    assert row["asked_at"]


def test_resolve_sets_resolution():
    with patch.object(supabase_client, "update_open_question", return_value={"id": "q1"}) as update:
        open_questions.resolve_open_question("q1", "done")
    question_id, fields = update.call_args[0]
    assert question_id == "q1"
    assert fields["resolution"] == "done"
    assert "context" not in fields
    assert fields["resolved_at"]

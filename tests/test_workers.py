"""Tests for worker helpers and the bulk research loop."""

import sys
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

import psycopg

from rebar_agentic.services import bulk_research, signal_monitor, supabase_client
from rebar_agentic.services.errors import ApiError
from rebar_agentic.workers import bulk_research_runner, signal_detection_runner
from rebar_agentic.workers.utils import load_env_files, max_loops_from_env


def test_max_loops_from_env(monkeypatch):
    monkeypatch.delenv("WORKER_MAX_LOOPS", raising=False)
    assert max_loops_from_env() is None
    monkeypatch.setenv("WORKER_MAX_LOOPS", "3")
    assert max_loops_from_env() == 3
    monkeypatch.setenv("WORKER_MAX_LOOPS", "many")
    assert max_loops_from_env() is None


def test_load_env_files_keeps_existing_values(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("REBAR_TEST_A=from-file\nREBAR_TEST_B=from-file\n")
    monkeypatch.setenv("REBAR_TEST_A", "from-env")
    monkeypatch.delenv("REBAR_TEST_B", raising=False)

    load_env_files(root_dir=str(tmp_path))

    import os

    assert os.environ["REBAR_TEST_A"] == "from-env"
    assert os.environ["REBAR_TEST_B"] == "from-file"
    monkeypatch.delenv("REBAR_TEST_B", raising=False)


def test_process_active_jobs_counts_and_skips_failures():
    jobs = [{"id": "j1"}, {"id": "j2"}, {"id": "j3"}, {"id": "j4"}]

    def run_batch(job_id):
        if job_id == "j2":
            raise ApiError("job not found", 404)
        if job_id == "j3":
            raise psycopg.OperationalError("server closed the connection unexpectedly")
        return {"processed": 2, "remaining": 0}

    with patch.object(supabase_client, "list_active_bulk_jobs", return_value=jobs) as list_jobs, patch.object(
        bulk_research, "process_job_batch", side_effect=run_batch
    ):
        assert bulk_research_runner.process_active_jobs(job_limit=5) == 4
    list_jobs.assert_called_once_with(limit=5)


def test_bulk_worker_stops_after_max_loops(monkeypatch):
    monkeypatch.setenv("WORKER_MAX_LOOPS", "2")
    with patch.object(bulk_research_runner, "load_env_files"), patch.object(
        bulk_research_runner, "configure_logging"
    ), patch.object(bulk_research, "resolve_chat_endpoint"), patch.object(
        bulk_research_runner, "process_active_jobs", return_value=0
    ) as process, patch.object(bulk_research_runner.time, "sleep") as sleep:
        bulk_research_runner.main()
    assert process.call_count == 2
    assert sleep.call_count == 2


def test_signal_worker_single_pass(monkeypatch):
    monkeypatch.setenv("WORKER_MAX_LOOPS", "1")
    summary = {"users_processed": 1, "accounts_processed": 2, "signals_detected": 3}
    with patch.object(signal_detection_runner, "load_env_files"), patch.object(
        signal_detection_runner, "configure_logging"
    ), patch.object(signal_detection_runner, "_ensure_openai_api_key"), patch.object(
        signal_monitor, "detect_signals_for_all_users", return_value=summary
    ) as detect, patch.object(signal_detection_runner.time, "sleep") as sleep:
        signal_detection_runner.main()
    detect.assert_called_once_with()
    sleep.assert_not_called()


def test_bulk_worker_keeps_looping_when_job_listing_fails(monkeypatch):
    monkeypatch.setenv("WORKER_MAX_LOOPS", "2")
    with patch.object(bulk_research_runner, "load_env_files"), patch.object(
        bulk_research_runner, "configure_logging"
    ), patch.object(bulk_research, "resolve_chat_endpoint"), patch.object(
        supabase_client, "list_active_bulk_jobs", side_effect=supabase_client.SupabaseError("GET failed: network error")
    ) as list_jobs, patch.object(bulk_research_runner.time, "sleep") as sleep:
        bulk_research_runner.main()
    assert list_jobs.call_count == 2
    assert sleep.call_count == 2


def test_signal_worker_survives_a_failed_sweep(monkeypatch):
    monkeypatch.setenv("WORKER_MAX_LOOPS", "2")
    summary = {"users_processed": 1, "accounts_processed": 1, "signals_detected": 0}
    with patch.object(signal_detection_runner, "load_env_files"), patch.object(
        signal_detection_runner, "configure_logging"
    ), patch.object(signal_detection_runner, "_ensure_openai_api_key"), patch.object(
        signal_monitor,
        "detect_signals_for_all_users",
        side_effect=[psycopg.OperationalError("connection refused"), summary],
    ) as detect, patch.object(signal_detection_runner.time, "sleep") as sleep:
        signal_detection_runner.main()
    assert detect.call_count == 2
    sleep.assert_called_once()

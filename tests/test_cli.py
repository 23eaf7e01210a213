import json
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from scoop.models.results import (
    IngestSummary,
    ProcessSummary,
    SyncSummary,
    TransitionOutcome,
    TransitionResult,
)
from scoop.scoop_bot import cli


@pytest.fixture
def engine():
    with patch("scoop.core.curation.CurationEngine") as engine_cls:
        yield engine_cls.return_value


def test_cli_help():
    runner = CliRunner()
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "St. Cloud Scoop curation engine CLI" in result.output


def test_sync_events_reports_counts(engine):
    engine.sync_events = AsyncMock(return_value=SyncSummary(fetched=12, new=3, updated=9))

    result = CliRunner().invoke(cli, ["sync-events"])

    assert result.exit_code == 0
    assert "fetched=12 new=3 updated=9" in result.output
    engine.sync_events.assert_awaited_once_with(None, None)


def test_sync_events_override_window(engine):
    engine.sync_events = AsyncMock(return_value=SyncSummary())

    CliRunner().invoke(cli, ["sync-events", "--start-date", "2025-10-01", "--end-date", "2025-10-05"])

    engine.sync_events.assert_awaited_once_with(date(2025, 10, 1), date(2025, 10, 5))


def test_sync_events_run_error_exits_nonzero(engine):
    engine.sync_events = AsyncMock(
        return_value=SyncSummary(error="Events feed unreachable for the whole window")
    )

    result = CliRunner().invoke(cli, ["sync-events"])

    assert result.exit_code == 1
    assert "unreachable" in result.output


def test_ingest(engine):
    engine.ingest_articles = AsyncMock(return_value=IngestSummary(feeds=2, fetched=5, new=4))
    result = CliRunner().invoke(cli, ["ingest", "--date", "2025-09-26"])
    assert result.exit_code == 0
    assert "new=4" in result.output
    engine.ingest_articles.assert_awaited_once_with(date(2025, 9, 26))


def test_process_stage_errors_exit_nonzero(engine):
    engine.process_campaign = AsyncMock(
        return_value=ProcessSummary(
            campaign_id=1,
            campaign_date="2025-09-26",
            selected={"articles": 5},
            stage_errors={"dedup": "boom"},
        )
    )

    result = CliRunner().invoke(cli, ["process", "2025-09-26"])

    assert result.exit_code == 1
    assert "articles: 5 selected" in result.output
    assert "dedup: boom" in result.output


def test_review_check_outcome(engine):
    engine.run_review_check = AsyncMock(
        return_value=TransitionResult(
            outcome=TransitionOutcome.ALREADY_RUN,
            campaign_date="2025-09-26",
            reason="Review check already ran today",
        )
    )

    result = CliRunner().invoke(cli, ["review-check"])

    assert result.exit_code == 0
    assert "already_run [2025-09-26]" in result.output


def test_approve_force_flag(engine):
    engine.approve.return_value = TransitionResult(outcome=TransitionOutcome.TRANSITIONED)

    result = CliRunner().invoke(cli, ["approve", "2025-09-26", "--force"])

    assert result.exit_code == 0
    engine.approve.assert_called_once_with(date(2025, 9, 26), force=True)


def test_status_missing_campaign(engine):
    engine.status.return_value = None
    result = CliRunner().invoke(cli, ["status", "2025-09-26"])
    assert result.exit_code == 1


def test_status_prints_json(engine):
    engine.status.return_value = {"campaign": {"status": "draft"}, "selections": {}}
    result = CliRunner().invoke(cli, ["status", "2025-09-26"])
    assert result.exit_code == 0
    assert json.loads(result.output)["campaign"]["status"] == "draft"


def test_import_records(engine, tmp_path):
    path = tmp_path / "deals.json"
    path.write_text(json.dumps([{"business_name": "Pizza Place", "deal_text": "2-for-1", "day_of_week": "Friday"}]))
    engine.import_records.return_value = 1

    result = CliRunner().invoke(cli, ["import-records", "dining", str(path)])

    assert result.exit_code == 0
    assert "Imported 1 dining records" in result.output


def test_import_records_rejects_non_array(engine, tmp_path):
    path = tmp_path / "deals.json"
    path.write_text('{"business_name": "Pizza Place"}')

    result = CliRunner().invoke(cli, ["import-records", "dining", str(path)])

    assert result.exit_code == 1
    engine.import_records.assert_not_called()


def test_config_command(monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "test_key")
    result = CliRunner().invoke(cli, ["config"])
    assert result.exit_code == 0
    assert "OpenRouter: ✅ Configured" in result.output

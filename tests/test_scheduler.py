"""Tests for ReportScheduler registry, due checks and runs."""

import logging
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from analytics_engine.exceptions import (
    ConflictError,
    CronParseError,
    NotFoundError,
    ValidationError,
)
from analytics_engine.models.schedule import ScheduledReport
from analytics_engine.modules.scheduling import ReportScheduler

NOW = datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc)  # Monday


@pytest.fixture()
def active_report(report_manager, salary_report_def):
    definition = {**salary_report_def, "parameters": [
        {"name": "status", "type": "string", "defaultValue": "active"},
    ]}
    return report_manager.create(definition)


def _config(**overrides):
    config = {
        "id": "weekly",
        "reportId": "salary-by-dept",
        "cron": "0 9 * * 1",
        "recipients": ["finance@example.com"],
        "format": "csv",
    }
    config.update(overrides)
    return config


# ===========================================================================
# 1. Registry
# ===========================================================================
class TestScheduleRegistry:

    def test_schedule_computes_next_run(self, scheduler):
        entry = scheduler.schedule(_config(), now=NOW)
        assert isinstance(entry, ScheduledReport)
        assert entry.next_run == "2024-01-01T09:00:00+00:00"
        assert entry.last_run is None
        assert entry.enabled is True
        assert scheduler.get_schedule("weekly") is entry

    def test_provided_next_run_is_kept(self, scheduler):
        entry = scheduler.schedule(_config(nextRun="2024-01-01T08:29:00Z"), now=NOW)
        assert entry.next_run == "2024-01-01T08:29:00+00:00"

    def test_invalid_next_run(self, scheduler):
        with pytest.raises(ValidationError, match="ISO-8601"):
            scheduler.schedule(_config(nextRun="next tuesday"), now=NOW)

    def test_duplicate_is_conflict(self, scheduler):
        scheduler.schedule(_config(), now=NOW)
        with pytest.raises(ConflictError):
            scheduler.schedule(_config(cron="0 10 * * *"), now=NOW)

    @pytest.mark.parametrize("override,message", [
        ({"id": ""}, "id"),
        ({"reportId": ""}, "reportId"),
        ({"cron": ""}, "cron"),
        ({"cron": "   "}, "cron"),
        ({"recipients": []}, "recipient"),
        ({"recipients": "finance@example.com"}, "recipient"),
        ({"recipients": ["ok@example.com", ""]}, "recipient"),
        ({"format": "xml"}, "format"),
    ])
    def test_validation(self, scheduler, override, message):
        with pytest.raises(ValidationError, match=message):
            scheduler.schedule(_config(**override), now=NOW)
        assert len(scheduler) == 0

    def test_bad_cron_is_parse_error(self, scheduler):
        with pytest.raises(CronParseError):
            scheduler.schedule(_config(cron="99 9 * * *"), now=NOW)

    def test_unschedule(self, scheduler):
        scheduler.schedule(_config(), now=NOW)
        assert scheduler.unschedule("weekly") is True
        assert scheduler.unschedule("weekly") is False
        assert scheduler.get_schedule("weekly") is None
        assert scheduler.list_schedules() == []

    def test_enable_disable(self, scheduler):
        scheduler.schedule(_config(), now=NOW)
        assert scheduler.disable("weekly").enabled is False
        assert scheduler.enable("weekly").enabled is True
        with pytest.raises(NotFoundError):
            scheduler.disable("ghost")

    def test_static_cron_helpers(self):
        assert ReportScheduler.parse_cron("0 9 * * 1").hour.value == 9
        assert ReportScheduler.get_next_run("0 9 * * 1", NOW) == "2024-01-01T09:00:00+00:00"

    def test_round_trip_dict(self, scheduler):
        entry = scheduler.schedule(_config(), now=NOW)
        assert ScheduledReport.from_dict(entry.to_dict()) == entry


# ===========================================================================
# 2. Due checks
# ===========================================================================
class TestCheckDue:

    def test_past_next_run_is_due(self, scheduler):
        past = (NOW - timedelta(minutes=1)).isoformat()
        scheduler.schedule(_config(nextRun=past), now=NOW)
        assert [s.id for s in scheduler.check_due(NOW)] == ["weekly"]

    def test_exactly_now_is_due(self, scheduler):
        scheduler.schedule(_config(nextRun=NOW.isoformat()), now=NOW)
        assert len(scheduler.check_due(NOW)) == 1

    def test_disabled_is_not_due(self, scheduler):
        past = (NOW - timedelta(minutes=1)).isoformat()
        scheduler.schedule(_config(nextRun=past, enabled=False), now=NOW)
        assert scheduler.check_due(NOW) == []

    def test_future_is_not_due(self, scheduler):
        scheduler.schedule(_config(), now=NOW)
        assert scheduler.check_due(NOW) == []
        assert len(scheduler.check_due(NOW + timedelta(minutes=30))) == 1

    def test_naive_now_is_utc(self, scheduler):
        scheduler.schedule(_config(), now=NOW)
        assert len(scheduler.check_due(datetime(2024, 1, 1, 9, 0))) == 1


# ===========================================================================
# 3. Running due reports
# ===========================================================================
class TestRunDue:

    @pytest.mark.asyncio
    async def test_run_due_executes_and_delivers(
        self, scheduler, active_report, data_source, mock_notifier
    ):
        scheduler.schedule(_config(), now=NOW - timedelta(hours=1))
        run_at = datetime(2024, 1, 1, 9, 0, 30, tzinfo=timezone.utc)

        executed = await scheduler.run_due(data_source, mock_notifier, now=run_at)

        assert executed == ["weekly"]
        entry = scheduler.get_schedule("weekly")
        assert entry.last_run == run_at.isoformat()
        assert entry.next_run == "2024-01-08T09:00:00+00:00"
        mock_notifier.deliver.assert_awaited_once()
        recipients, result = mock_notifier.deliver.await_args.args
        assert recipients == ["finance@example.com"]
        assert result.report_id == "salary-by-dept"
        assert result.data[0] == {"_id": "Engineering", "totalSalary": 215000}

    @pytest.mark.asyncio
    async def test_nothing_due(self, scheduler, active_report, data_source, mock_notifier):
        scheduler.schedule(_config(), now=NOW)
        assert await scheduler.run_due(data_source, mock_notifier, now=NOW) == []
        mock_notifier.deliver.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_run_is_not_repeated(self, scheduler, active_report, data_source):
        scheduler.schedule(_config(nextRun=NOW.isoformat()), now=NOW)
        assert await scheduler.run_due(data_source, None, now=NOW) == ["weekly"]
        assert await scheduler.run_due(data_source, None, now=NOW) == []

    @pytest.mark.asyncio
    async def test_failure_is_isolated(
        self, scheduler, active_report, data_source, mock_notifier, caplog
    ):
        scheduler.schedule(_config(id="broken", reportId="deleted", nextRun=NOW.isoformat()))
        scheduler.schedule(_config(id="weekly", nextRun=NOW.isoformat()))

        with caplog.at_level(logging.ERROR):
            executed = await scheduler.run_due(data_source, mock_notifier, now=NOW)

        assert executed == ["weekly"]
        assert 'Report "deleted" not found' in scheduler.last_errors["broken"]
        assert scheduler.get_schedule("broken").next_run == NOW.isoformat()
        assert scheduler.get_schedule("broken").last_run is None
        assert "broken" in caplog.text
        assert mock_notifier.deliver.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_schedule_retried_and_cleared(
        self, scheduler, report_manager, salary_report_def, data_source
    ):
        scheduler.schedule(_config(nextRun=NOW.isoformat()))
        await scheduler.run_due(data_source, None, now=NOW)
        assert "weekly" in scheduler.last_errors

        report_manager.create({**salary_report_def, "parameters": []})
        executed = await scheduler.run_due(data_source, None, now=NOW + timedelta(minutes=1))
        assert executed == ["weekly"]
        assert "weekly" not in scheduler.last_errors

    @pytest.mark.asyncio
    async def test_failure_propagates_without_isolation(
        self, report_manager, data_source
    ):
        scheduler = ReportScheduler(report_manager, isolate_failures=False)
        scheduler.schedule(_config(reportId="deleted", nextRun=NOW.isoformat()))
        with pytest.raises(NotFoundError):
            await scheduler.run_due(data_source, None, now=NOW)

    @pytest.mark.asyncio
    async def test_notifier_failure_is_logged(
        self, scheduler, active_report, data_source, caplog
    ):
        notifier = MagicMock()
        notifier.deliver.side_effect = ConnectionError("smtp down")
        scheduler.schedule(_config(nextRun=NOW.isoformat()))

        with caplog.at_level(logging.WARNING):
            executed = await scheduler.run_due(data_source, notifier, now=NOW)

        assert executed == ["weekly"]
        assert "smtp down" in caplog.text
        assert scheduler.get_schedule("weekly").last_run == NOW.isoformat()

    @pytest.mark.asyncio
    async def test_sync_notifier(self, scheduler, active_report, data_source):
        notifier = MagicMock()
        notifier.deliver.return_value = None
        scheduler.schedule(_config(nextRun=NOW.isoformat()))
        await scheduler.run_due(data_source, notifier, now=NOW)
        notifier.deliver.assert_called_once()

    @pytest.mark.asyncio
    async def test_disabled_schedule_is_skipped(self, scheduler, active_report, data_source):
        scheduler.schedule(_config(nextRun=NOW.isoformat()))
        scheduler.disable("weekly")
        assert await scheduler.run_due(data_source, None, now=NOW) == []


# ===========================================================================
# 4. Concurrent registration
# ===========================================================================
class TestConcurrentSchedule:

    def test_same_id_scheduled_once(self, scheduler):
        workers = 16
        barrier = threading.Barrier(workers)
        scheduled, conflicts, errors = [], [], []

        def register(index):
            barrier.wait()
            try:
                scheduled.append(
                    scheduler.schedule(_config(recipients=[f"user{index}@example.com"]), now=NOW)
                )
            except ConflictError as exc:
                conflicts.append(exc)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=register, args=(i,)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert errors == []
        assert len(scheduled) == 1
        assert len(conflicts) == workers - 1
        assert scheduler.list_schedules() == scheduled

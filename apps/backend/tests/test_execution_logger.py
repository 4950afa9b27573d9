import shutil
import sqlite3
import sys
import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from flowrelay.errors import ExecutionConflict, ExecutionNotFound
from flowrelay.executions import ExecutionLogger, ExecutionStatus
from flowrelay.executions.logger import humanize_timestamp, local_day_bounds


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


class ExecutionLoggerTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp(prefix="flowrelay-exec-test-"))
        self.noon = datetime(2026, 10, 17, 12, 0).astimezone()
        self.clock = Clock(self.noon)
        self.logger = ExecutionLogger(self.tmpdir / "executions.db", clock=self.clock)

    def tearDown(self):
        self.logger.close()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_complete_records_duration(self):
        execution_id = self.logger.start_execution("wf-1", "user-1", {"workflow_name": "Alerts"})
        self.clock.set(self.noon + timedelta(seconds=2, milliseconds=500))

        execution = self.logger.complete_execution(execution_id, "SUCCESS")

        self.assertEqual(execution.status, ExecutionStatus.SUCCESS)
        self.assertEqual(execution.duration_ms, 2500)
        self.assertIsNotNone(execution.completed_at)
        self.assertEqual(execution.metadata, {"workflow_name": "Alerts"})

    def test_complete_unknown_execution(self):
        with self.assertRaises(ExecutionNotFound):
            self.logger.complete_execution("missing", ExecutionStatus.FAILED, "boom")

    def test_second_completion_is_rejected_and_keeps_first_outcome(self):
        execution_id = self.logger.start_execution("wf-1", "user-1")
        self.clock.set(self.noon + timedelta(seconds=1))
        self.logger.complete_execution(execution_id, ExecutionStatus.SUCCESS)

        self.clock.set(self.noon + timedelta(minutes=5))
        with self.assertRaises(ExecutionConflict) as ctx:
            self.logger.complete_execution(execution_id, ExecutionStatus.FAILED, "late")

        self.assertEqual(ctx.exception.status, "SUCCESS")
        stored = self.logger.get_execution(execution_id)
        self.assertEqual(stored.status, ExecutionStatus.SUCCESS)
        self.assertEqual(stored.duration_ms, 1000)
        self.assertIsNone(stored.error)

    def test_complete_requires_terminal_status(self):
        execution_id = self.logger.start_execution("wf-1", "user-1")
        with self.assertRaises(ValueError):
            self.logger.complete_execution(execution_id, "RUNNING")

    def test_activity_requires_existing_execution(self):
        with self.assertRaises(ExecutionNotFound):
            self.logger.log_activity("missing", "user-1", "INFO", "hello")

    def test_success_rate_is_rounded_percentage(self):
        ids = [self.logger.start_execution("wf-1", "user-1") for _ in range(3)]
        self.logger.complete_execution(ids[0], "SUCCESS")
        self.logger.complete_execution(ids[1], "FAILED", "boom")
        self.logger.complete_execution(ids[2], "FAILED", "boom")

        stats = self.logger.get_user_stats("user-1")
        self.assertEqual(stats.success_rate, 33.33)

        self.logger.complete_execution(self.logger.start_execution("wf-1", "user-1"), "SUCCESS")
        self.logger.complete_execution(self.logger.start_execution("wf-1", "user-1"), "SUCCESS")
        # 3 of 5
        self.assertEqual(self.logger.get_user_stats("user-1").success_rate, 60.0)

    def test_success_rate_rounds_half_up(self):
        ids = [self.logger.start_execution("wf-1", "user-2") for _ in range(32)]
        self.logger.complete_execution(ids[0], "SUCCESS")
        for execution_id in ids[1:]:
            self.logger.complete_execution(execution_id, "FAILED", "boom")

        # 1 of 32 is exactly 3.125
        self.assertEqual(self.logger.get_user_stats("user-2").success_rate, 3.13)

    def test_stats_for_user_without_executions(self):
        stats = self.logger.get_user_stats("nobody")
        self.assertEqual(stats.executions_today, 0)
        self.assertEqual(stats.success_rate, 0.0)
        self.assertEqual(stats.total_executions, 0)

    def test_executions_today_uses_local_calendar_day(self):
        start, end = local_day_bounds(self.noon)

        self.clock.set(start - timedelta(minutes=1))
        self.logger.start_execution("wf-1", "user-1")
        self.clock.set(start)
        self.logger.start_execution("wf-1", "user-1")
        self.clock.set(end)
        self.logger.start_execution("wf-1", "user-1")
        self.clock.set(self.noon)
        self.logger.start_execution("wf-1", "user-2")

        stats = self.logger.get_user_stats("user-1", now=self.noon)
        self.assertEqual(stats.executions_today, 2)
        self.assertEqual(stats.total_executions, 3)

    def test_recent_activities_newest_first_with_relative_times(self):
        execution_id = self.logger.start_execution(
            "wf-1", "user-1", {"workflow_name": "Daily digest"}
        )
        entries = [
            (timedelta(days=10), "INFO", "ten days"),
            (timedelta(days=3), "WARNING", "three days"),
            (timedelta(minutes=90), "ERROR", "ninety minutes"),
            (timedelta(seconds=30), "SUCCESS", "thirty seconds"),
        ]
        for age, activity_type, message in entries:
            self.clock.set(self.noon - age)
            self.logger.log_activity(execution_id, "user-1", activity_type, message, service="slack")

        activities = self.logger.get_recent_activities("user-1", limit=10, now=self.noon)

        self.assertEqual(
            [a.message for a in activities],
            ["thirty seconds", "ninety minutes", "three days", "ten days"],
        )
        self.assertEqual(
            [a.timestamp for a in activities],
            ["Just now", "1 hour ago", "3 days ago", "2026-10-07"],
        )
        self.assertEqual(activities[0].type, "success")
        self.assertEqual(activities[0].workflow_name, "Daily digest")
        self.assertEqual(activities[0].model_dump(by_alias=True)["workflowName"], "Daily digest")

        self.assertEqual(len(self.logger.get_recent_activities("user-1", limit=2, now=self.noon)), 2)

    def test_recent_activities_fall_back_to_stored_workflow_name(self):
        names = {"wf-1": "Release notes"}
        self.logger.close()
        self.logger = ExecutionLogger(
            self.tmpdir / "executions.db", clock=self.clock, workflow_names=names.get
        )
        named = self.logger.start_execution("wf-1", "user-1", {"workflow_name": "Stale"})
        self.logger.log_activity(named, "user-1", "INFO", "from store")
        self.logger.log_activity(named, "user-1", "INFO", "explicit", workflow_name="Given")
        self.clock.set(self.noon + timedelta(seconds=1))
        unknown = self.logger.start_execution("wf-gone", "user-1", {"workflow_name": "From metadata"})
        self.logger.log_activity(unknown, "user-1", "INFO", "from metadata")

        views = {a.message: a.workflow_name for a in self.logger.get_recent_activities("user-1")}

        self.assertEqual(views["from store"], "Release notes")
        self.assertEqual(views["explicit"], "Given")
        self.assertEqual(views["from metadata"], "From metadata")

    def test_workflow_executions_carry_latest_activities(self):
        execution_id = self.logger.start_execution("wf-1", "user-1")
        for i in range(7):
            self.clock.set(self.noon + timedelta(seconds=i))
            self.logger.log_activity(execution_id, "user-1", "INFO", f"step {i}")

        summaries = self.logger.get_workflow_executions("wf-1")

        self.assertEqual(len(summaries), 1)
        self.assertEqual([a.message for a in summaries[0].activities], [f"step {i}" for i in range(6, 1, -1)])
        self.assertEqual(len(self.logger.get_execution_activities(execution_id)), 7)

    def test_stuck_executions(self):
        self.clock.set(self.noon - timedelta(hours=2))
        stuck = self.logger.start_execution("wf-1", "user-1")
        finished = self.logger.start_execution("wf-1", "user-1")
        self.logger.complete_execution(finished, "SUCCESS")
        self.clock.set(self.noon)
        self.logger.start_execution("wf-1", "user-1")

        result = self.logger.list_stuck_executions(timedelta(hours=1))
        self.assertEqual([e.id for e in result], [stuck])

    def test_reads_degrade_but_writes_propagate_on_store_errors(self):
        self.logger.close()

        with self.assertLogs("flowrelay.executions.logger", level="WARNING"):
            stats = self.logger.get_user_stats("user-1")
            activities = self.logger.get_recent_activities("user-1")
            executions = self.logger.get_workflow_executions("wf-1")

        self.assertEqual(stats.executions_today, 0)
        self.assertEqual(stats.success_rate, 0.0)
        self.assertEqual(activities, [])
        self.assertEqual(executions, [])

        with self.assertRaises(sqlite3.Error):
            self.logger.start_execution("wf-1", "user-1")


class HumanizeTimestampTests(unittest.TestCase):
    def setUp(self):
        self.now = datetime(2026, 10, 17, 12, 0).astimezone()

    def test_buckets(self):
        cases = [
            (timedelta(seconds=59), "Just now"),
            (timedelta(minutes=1), "1 min ago"),
            (timedelta(minutes=59), "59 min ago"),
            (timedelta(hours=1), "1 hour ago"),
            (timedelta(hours=5), "5 hours ago"),
            (timedelta(days=1), "1 day ago"),
            (timedelta(days=6), "6 days ago"),
        ]
        for age, expected in cases:
            with self.subTest(age=age):
                self.assertEqual(humanize_timestamp(self.now - age, self.now), expected)

    def test_day_bounds_cover_whole_local_day(self):
        start, end = local_day_bounds(self.now)
        self.assertEqual((start.hour, start.minute, start.second, start.microsecond), (0, 0, 0, 0))
        self.assertEqual((end.hour, end.minute, end.second, end.microsecond), (23, 59, 59, 999999))
        self.assertEqual(start.date(), self.now.date())


if __name__ == "__main__":
    unittest.main()

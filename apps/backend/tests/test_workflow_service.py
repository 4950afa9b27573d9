import asyncio
import json
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

import httpx

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from flowrelay.config import Settings
from flowrelay.dispatch import Destination
from flowrelay.errors import WorkflowNotFound
from flowrelay.events import SinkResult, WorkflowEventPublisher
from flowrelay.workflow import WorkflowPatch, WorkflowService, WorkflowStore


class RecordingSink:
    name = "recording"

    def __init__(self, ok: bool = True, on_emit=None):
        self.ok = ok
        self.on_emit = on_emit
        self.events = []

    async def emit(self, event):
        if self.on_emit is not None:
            self.on_emit(event)
        self.events.append(event)
        return SinkResult(ok=self.ok, error=None if self.ok else "broker down")


class WorkflowStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp_dir = Path(tempfile.mkdtemp(prefix="flowrelay-store-tests-"))
        self.store = WorkflowStore(self.tmp_dir)

    def tearDown(self) -> None:
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_create_and_reload(self):
        workflow = self.store.create_workflow("user-1", "Alerts", "Ops alerts")
        loaded = self.store.get_workflow(workflow.id)

        self.assertEqual(loaded.name, "Alerts")
        self.assertFalse(loaded.publish)
        self.assertTrue((self.tmp_dir / "user-1" / f"{workflow.id}.json").exists())
        self.assertEqual(list((self.tmp_dir / "user-1").glob("*.tmp")), [])

    def test_slack_channels_are_merged_in_order(self):
        workflow = self.store.create_workflow("user-1", "Alerts")
        self.store.update_workflow(workflow.id, WorkflowPatch(slack_channels=["C1", "C2"]))
        updated = self.store.update_workflow(workflow.id, WorkflowPatch(slack_channels=["C2", "C3"]))

        self.assertEqual(updated.slack_channels, ["C1", "C2", "C3"])

    def test_unset_fields_are_left_alone(self):
        workflow = self.store.create_workflow("user-1", "Alerts", "keep me")
        updated = self.store.update_workflow(workflow.id, WorkflowPatch(name="Renamed"))

        self.assertEqual(updated.name, "Renamed")
        self.assertEqual(updated.description, "keep me")
        self.assertGreaterEqual(updated.updated_at, workflow.updated_at)

    def test_nodes_edges_need_both_parts(self):
        workflow = self.store.create_workflow("user-1", "Alerts")
        self.assertIsNone(self.store.get_nodes_edges(workflow.id))

        self.store.update_workflow(workflow.id, WorkflowPatch(nodes=[{"id": "n1"}]))
        self.assertIsNone(self.store.get_nodes_edges(workflow.id))

        self.store.update_workflow(workflow.id, WorkflowPatch(edges=[{"source": "n1", "target": "n2"}]))
        graph = self.store.get_nodes_edges(workflow.id)
        self.assertEqual(graph.nodes, [{"id": "n1"}])

    def test_list_and_delete(self):
        first = self.store.create_workflow("user-1", "First")
        second = self.store.create_workflow("user-1", "Second")
        self.store.create_workflow("user-2", "Other")

        self.assertEqual([wf.id for wf in self.store.list_workflows("user-1")], [second.id, first.id])
        self.assertTrue(self.store.delete_workflow(first.id))
        self.assertFalse(self.store.delete_workflow(first.id))
        with self.assertRaises(WorkflowNotFound):
            self.store.get_workflow(first.id)

    def test_workflow_name_lookup(self):
        workflow = self.store.create_workflow("user-1", "Alerts")
        self.assertEqual(self.store.get_workflow_name(workflow.id), "Alerts")
        self.assertIsNone(self.store.get_workflow_name("missing"))

    def test_unsafe_ids_are_rejected(self):
        with self.assertRaises(ValueError):
            self.store.create_workflow("../escape", "Bad")
        with self.assertRaises(WorkflowNotFound):
            self.store.get_workflow("../user-1")


class WorkflowServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp_dir = Path(tempfile.mkdtemp(prefix="flowrelay-service-tests-"))
        self.store = WorkflowStore(self.tmp_dir)
        self.sink = RecordingSink()
        self.audit = RecordingSink()
        self.service = WorkflowService(
            self.store, WorkflowEventPublisher(sink=self.sink, audit_sink=self.audit)
        )

    def tearDown(self) -> None:
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_create_emits_created_event(self):
        workflow = asyncio.run(self.service.create_workflow("user-1", "Alerts", "Ops alerts"))

        self.assertEqual(len(self.sink.events), 1)
        event = self.sink.events[0]
        self.assertEqual(event.type, "workflow.created")
        self.assertEqual(event.workflow_id, workflow.id)
        self.assertEqual(event.payload.name, "Alerts")
        self.assertEqual(len(self.audit.events), 1)

    def test_publish_event_is_emitted_after_store_write(self):
        workflow = self.store.create_workflow("user-1", "Alerts")
        seen_state = []
        self.sink.on_emit = lambda event: seen_state.append(self.store.get_workflow(workflow.id).publish)

        message = asyncio.run(self.service.publish_workflow(workflow.id, "user-1", True))

        self.assertEqual(message, "Workflow published")
        self.assertEqual(seen_state, [True])
        self.assertTrue(self.sink.events[0].payload.published)

        message = asyncio.run(self.service.publish_workflow(workflow.id, "user-1", False))
        self.assertEqual(message, "Workflow unpublished")

    def test_publish_succeeds_when_broker_is_down(self):
        self.service.publisher.sink = RecordingSink(ok=False)
        workflow = self.store.create_workflow("user-1", "Alerts")

        with self.assertLogs("flowrelay.events.publisher", level="WARNING"):
            message = asyncio.run(self.service.publish_workflow(workflow.id, "user-1", True))

        self.assertEqual(message, "Workflow published")
        self.assertTrue(self.store.get_workflow(workflow.id).publish)
        self.assertEqual(len(self.audit.events), 1)

    def test_missing_workflow_propagates_without_event(self):
        with self.assertRaises(WorkflowNotFound):
            asyncio.run(self.service.publish_workflow("missing", "user-1", True))
        self.assertEqual(self.sink.events, [])

    def test_slack_template_merges_channels_and_keeps_token(self):
        workflow = self.store.create_workflow("user-1", "Alerts")
        asyncio.run(
            self.service.update_template(
                workflow.id,
                "user-1",
                "Slack",
                "Deploy finished",
                channels=[Destination(label="general", value="C1")],
                access_token="xoxb-1",
            )
        )
        message = asyncio.run(
            self.service.update_template(
                workflow.id,
                "user-1",
                "Slack",
                "Deploy finished!",
                channels=[Destination(label="alerts", value="C2"), Destination(label="general", value="C1")],
            )
        )

        stored = self.store.get_workflow(workflow.id)
        self.assertEqual(message, "Slack template saved")
        self.assertEqual(stored.slack_channels, ["C1", "C2"])
        self.assertEqual(stored.slack_access_token, "xoxb-1")
        self.assertEqual(stored.slack_template, "Deploy finished!")
        self.assertEqual(self.sink.events[-1].payload.channel_type, "Slack")

    def test_discord_and_notion_templates(self):
        workflow = self.store.create_workflow("user-1", "Alerts")

        self.assertEqual(
            asyncio.run(self.service.update_template(workflow.id, "user-1", "Discord", "hi")),
            "Discord template saved",
        )
        self.assertEqual(
            asyncio.run(
                self.service.update_template(
                    workflow.id, "user-1", "Notion", "page", access_token="secret_x", notion_db_id="db-1"
                )
            ),
            "Notion template saved",
        )

        stored = self.store.get_workflow(workflow.id)
        self.assertEqual(stored.discord_template, "hi")
        self.assertEqual(stored.notion_db_id, "db-1")

    def test_unknown_template_type(self):
        workflow = self.store.create_workflow("user-1", "Alerts")
        with self.assertRaises(ValueError):
            asyncio.run(self.service.update_template(workflow.id, "user-1", "Teams", "hi"))
        self.assertEqual(self.sink.events, [])

    def test_update_event_hides_credentials(self):
        workflow = self.store.create_workflow("user-1", "Alerts")
        patch = WorkflowPatch(name="Renamed", notion_access_token="secret_x")

        asyncio.run(self.service.update_workflow(workflow.id, "user-1", patch))

        changes = self.sink.events[0].payload.changes
        self.assertEqual(changes, {"name": "Renamed", "notion_access_token": "***"})

    def test_delete_emits_only_when_something_was_deleted(self):
        workflow = self.store.create_workflow("user-1", "Alerts")

        self.assertTrue(asyncio.run(self.service.delete_workflow(workflow.id, "user-1")))
        self.assertFalse(asyncio.run(self.service.delete_workflow(workflow.id, "user-1")))
        self.assertEqual([e.type for e in self.sink.events], ["workflow.deleted"])

    def test_notify_posts_template_to_selected_channels(self):
        workflow = self.store.create_workflow("user-1", "Alerts")
        self.store.update_workflow(
            workflow.id,
            WorkflowPatch(slack_template="Build green", slack_access_token="xoxb-1", slack_channels=["C1", "C2"]),
        )
        posted = []

        def handler(request):
            posted.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": True})

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
                self.service.http = http
                return await self.service.notify_channels(workflow.id)

        summary = asyncio.run(run())

        self.assertEqual(summary.message, "Success")
        self.assertEqual(sorted(p["channel"] for p in posted), ["C1", "C2"])
        self.assertTrue(all(p["text"] == "Build green" for p in posted))


    def _run_with_transport(self, handler, coro_factory):
        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
                self.service.http = http
                return await coro_factory()

        return asyncio.run(run())

    def test_notify_uses_configured_retry_budget(self):
        self.service.settings = Settings(dispatch_max_attempts=1)
        workflow = self.store.create_workflow("user-1", "Alerts")
        self.store.update_workflow(
            workflow.id,
            WorkflowPatch(slack_template="Build green", slack_access_token="xoxb-1", slack_channels=["C1"]),
        )
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(
                200, json={"ok": False, "error": "ratelimited", "response_metadata": {"retry_after": 0}}
            )

        summary = self._run_with_transport(handler, lambda: self.service.notify_channels(workflow.id))

        self.assertEqual(len(calls), 1)
        self.assertEqual(summary.message, "Message could not be sent")

    def test_notify_sends_saved_discord_template(self):
        workflow = self.store.create_workflow("user-1", "Alerts")
        asyncio.run(
            self.service.update_template(
                workflow.id, "user-1", "Discord", "Deploy done", webhook_url="https://discord.com/api/webhooks/1/abc"
            )
        )
        posted = []

        def handler(request):
            posted.append((str(request.url), json.loads(request.content)))
            return httpx.Response(204)

        summary = self._run_with_transport(
            handler, lambda: self.service.notify_channels(workflow.id, channel_type="Discord")
        )

        self.assertEqual(summary.message, "Success")
        self.assertEqual(posted, [("https://discord.com/api/webhooks/1/abc", {"content": "Deploy done"})])

    def test_notify_sends_saved_notion_template(self):
        workflow = self.store.create_workflow("user-1", "Alerts")
        asyncio.run(
            self.service.update_template(
                workflow.id, "user-1", "Notion", "Weekly report", access_token="secret_x", notion_db_id="db-1"
            )
        )
        posted = []

        def handler(request):
            posted.append((request.headers["authorization"], json.loads(request.content)))
            return httpx.Response(200, json={"object": "page"})

        summary = self._run_with_transport(
            handler, lambda: self.service.notify_channels(workflow.id, channel_type="Notion")
        )

        self.assertEqual(summary.message, "Success")
        self.assertEqual(posted[0][0], "Bearer secret_x")
        self.assertEqual(posted[0][1]["parent"], {"database_id": "db-1"})

    def test_notify_without_saved_destination(self):
        workflow = self.store.create_workflow("user-1", "Alerts")
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(204)

        summary = self._run_with_transport(
            handler, lambda: self.service.notify_channels(workflow.id, "hello", channel_type="Discord")
        )

        self.assertEqual(summary.message, "Channel not selected")
        self.assertEqual(calls, [])
        with self.assertRaises(ValueError):
            asyncio.run(self.service.notify_channels(workflow.id, "hello", channel_type="Teams"))

    def test_list_slack_channels_degrades_with_configured_budget(self):
        self.service.settings = Settings(dispatch_max_attempts=1)
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"ok": False, "error": "ratelimited"})

        with self.assertLogs("flowrelay.dispatch.slack", level="WARNING"):
            channels = self._run_with_transport(handler, lambda: self.service.list_slack_channels("xoxb-1"))

        self.assertEqual(channels, [])
        self.assertEqual(len(calls), 1)


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from ha_dashboard.core import settings
from ha_dashboard.services import log_service


class TestLogService(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.log_path = Path(tmp.name) / "operations.jsonl"
        patcher = patch.object(settings, "APP_LOG_PATH", self.log_path)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_logged_operations_are_listed_newest_first(self) -> None:
        log_service.log_operation(event_type="tool_call", source="assistant", action="tool.call_service", success=True)
        log_service.log_operation(event_type="tool_call", source="assistant", action="tool.create_automation", success=False)
        log_service.flush_logs(timeout_sec=2.0)

        logs = log_service.list_recent_logs(limit=10, event_type="tool_call")
        self.assertEqual(["tool.create_automation", "tool.call_service"], [x.action for x in logs[:2]])

    def test_source_filter(self) -> None:
        log_service.log_operation(event_type="chat_turn", source="assistant", action="chat.agent")
        log_service.log_http_request(method="GET", path="/health", status_code=200, duration_ms=1.0, client_ip=None)
        log_service.flush_logs(timeout_sec=2.0)

        logs = log_service.list_recent_logs(limit=10, sources=["api"])
        self.assertTrue(logs)
        self.assertTrue(all(x.source == "api" for x in logs))

    def test_oversized_detail_is_truncated(self) -> None:
        item = log_service.log_operation(
            event_type="completion_request",
            source="completion",
            action="completion.request",
            detail={"body": "x" * 10000},
        )
        self.assertTrue(item.detail["_truncated"])
        self.assertLessEqual(len(item.detail["preview"]), 4000)

    def test_rotation_keeps_backups(self) -> None:
        entry = log_service.log_operation(event_type="ha_request", source="system", action="ha.request")
        with patch.object(settings, "APP_LOG_MAX_BYTES", 1):
            log_service._write_batch([entry])
            log_service._write_batch([entry])

        self.assertTrue(self.log_path.exists())
        self.assertTrue(self.log_path.with_name("operations.jsonl.1").exists())


if __name__ == "__main__":
    unittest.main()

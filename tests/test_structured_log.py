import json
import logging
import unittest

from gembridge.observability.structured_log import MAX_FIELD_CHARS, log_json


class TestStructuredLog(unittest.TestCase):
    def test_emits_json_line(self):
        logger = logging.getLogger("gembridge.tests.structured")
        with self.assertLogs(logger, level="INFO") as captured:
            log_json(logger, "process.exited", exit_code=0, stdout=b"ok", long="x" * (MAX_FIELD_CHARS + 10))
        payload = json.loads(captured.records[0].getMessage())
        self.assertEqual(payload["event"], "process.exited")
        self.assertEqual(payload["exit_code"], 0)
        self.assertEqual(payload["stdout"], "ok")
        self.assertTrue(payload["long"].endswith("...(truncated)"))
        self.assertIn("ts", payload)

    def test_respects_level(self):
        logger = logging.getLogger("gembridge.tests.structured.level")
        with self.assertLogs(logger, level="WARNING") as captured:
            log_json(logger, "ignored", level=logging.DEBUG)
            log_json(logger, "process.spawn_failed", level=logging.WARNING)
        self.assertEqual(len(captured.records), 1)
        self.assertEqual(captured.records[0].levelno, logging.WARNING)

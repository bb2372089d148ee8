import json
import logging
import unittest

from amlchain_api.logging_config import AuditLogger, StructuredFormatter, get_request_id, set_request_id


class CapturingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestStructuredLogging(unittest.TestCase):

    def setUp(self):
        self.handler = CapturingHandler()
        self.logger = logging.getLogger("amlchain.audit.test")
        self.logger.addHandler(self.handler)
        self.logger.setLevel(logging.DEBUG)
        self.audit = AuditLogger("amlchain.audit.test")

    def tearDown(self):
        self.logger.removeHandler(self.handler)

    def test_audit_fields_flattened_into_json_line(self):
        set_request_id("req-42")
        self.audit.declaration_finalized("decl-1", "failed", "0x" + "cd" * 32, "poller")

        record = self.handler.records[0]
        self.assertEqual(record.levelno, logging.WARNING)
        line = json.loads(StructuredFormatter().format(record))
        self.assertEqual(line["event"], "DECLARATION_FINALIZED")
        self.assertEqual(line["declaration_id"], "decl-1")
        self.assertEqual(line["source"], "poller")
        self.assertEqual(line["request_id"], "req-42")
        self.assertEqual(line["msg"], "declaration decl-1 failed")
        self.assertTrue(line["ts"].endswith("Z"))

    def test_security_event_severity(self):
        self.audit.security_event("operator_auth_failed", severity="high", client_id="10.0.0.1")
        self.assertEqual(self.handler.records[0].levelno, logging.ERROR)
        self.assertEqual(self.handler.records[0].audit["client_id"], "10.0.0.1")

    def test_request_id_generated_when_missing(self):
        generated = set_request_id(None)
        self.assertTrue(generated)
        self.assertEqual(get_request_id(), generated)


if __name__ == "__main__":
    unittest.main()

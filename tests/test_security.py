import unittest

from fastapi import HTTPException

from amlchain_api.security import (
    clean_request_id,
    extract_client_id,
    parse_bearer,
    require_operator,
    sanitize_for_logging,
)

from fakes import SIGNATURE


class TestOperatorAuth(unittest.TestCase):

    def test_parse_bearer(self):
        self.assertEqual(parse_bearer("Bearer abc"), "abc")
        self.assertEqual(parse_bearer("bearer  abc "), "abc")
        self.assertIsNone(parse_bearer("Basic abc"))
        self.assertIsNone(parse_bearer("Bearer "))
        self.assertIsNone(parse_bearer(None))

    def test_require_operator(self):
        require_operator("Bearer secret", "secret")
        with self.assertRaises(HTTPException) as ctx:
            require_operator("Bearer wrong", "secret")
        self.assertEqual(ctx.exception.status_code, 401)
        with self.assertRaises(HTTPException) as ctx:
            require_operator(None, "secret")
        self.assertEqual(ctx.exception.status_code, 401)

    def test_unconfigured_token(self):
        with self.assertRaises(HTTPException) as ctx:
            require_operator("Bearer anything", "")
        self.assertEqual(ctx.exception.status_code, 500)


class TestHelpers(unittest.TestCase):

    def test_sanitize_masks_signature(self):
        out = sanitize_for_logging({"owner": "0xabc", "signature": SIGNATURE, "nested": {"token": "t"}})
        self.assertEqual(out["owner"], "0xabc")
        self.assertEqual(out["signature"], SIGNATURE[:4] + "..." + SIGNATURE[-4:])
        self.assertEqual(out["nested"]["token"], "[REDACTED]")

    def test_client_id(self):
        self.assertEqual(extract_client_id({"x-forwarded-for": "10.0.0.1, 10.0.0.2"}), "ip:10.0.0.1")
        self.assertEqual(extract_client_id({}, "127.0.0.1"), "ip:127.0.0.1")
        self.assertEqual(extract_client_id({}), "anonymous")

    def test_request_id(self):
        self.assertEqual(clean_request_id("abc-123"), "abc-123")
        self.assertIsNone(clean_request_id("no spaces allowed"))
        self.assertIsNone(clean_request_id(None))


if __name__ == "__main__":
    unittest.main()

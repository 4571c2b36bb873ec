import json
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from bgaze.auth import OtpService, TokenSigner, generate_code
from bgaze.errors import DeliveryFailed, InvalidToken, UpstreamFailure
from bgaze.mailer import InMemoryMailer
from bgaze.otp_store import InMemoryOtpStore, OtpRecord, RedisOtpStore


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class OtpServiceTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.store = InMemoryOtpStore()
        self.mailer = InMemoryMailer()
        self.service = OtpService(
            store=self.store, mailer=self.mailer, ttl_seconds=300, clock=self.clock
        )

    def test_generate_code_is_six_digits(self):
        for _ in range(200):
            code = generate_code()
            self.assertEqual(len(code), 6)
            self.assertTrue(100000 <= int(code) <= 999999)

    def test_issue_stores_and_mails_code(self):
        record = self.service.issue("a@b.com")
        self.assertEqual(record.expires_at, self.clock.now + 300)
        self.assertEqual(len(self.mailer.outbox), 1)
        message = self.mailer.outbox[0]
        self.assertEqual(message.to, "a@b.com")
        self.assertIn(record.code, message.text)
        self.assertIn(record.code, message.html)
        self.assertIs(self.store.get("a@b.com", now=self.clock.now), record)

    def test_verify_is_single_use(self):
        code = self.service.issue("a@b.com").code
        self.assertTrue(self.service.verify("a@b.com", code))
        self.assertFalse(self.service.verify("a@b.com", code))

    def test_wrong_code_keeps_pending_record(self):
        code = self.service.issue("a@b.com").code
        wrong = "000000" if code != "000000" else "111111"
        self.assertFalse(self.service.verify("a@b.com", wrong))
        self.assertTrue(self.service.verify("a@b.com", code))

    def test_verify_without_issue(self):
        self.assertFalse(self.service.verify("nobody@b.com", "123456"))

    def test_expired_code_is_rejected_and_purged(self):
        code = self.service.issue("a@b.com").code
        self.clock.now += 301
        self.assertFalse(self.service.verify("a@b.com", code))
        self.assertEqual(self.store.records, {})

    def test_reissue_overwrites_previous_code(self):
        first = self.service.issue("a@b.com")
        second = self.service.issue("a@b.com")
        self.assertEqual(len(self.store.records), 1)
        self.assertIs(self.store.get("a@b.com", now=self.clock.now), second)
        if first.code != second.code:
            self.assertFalse(self.service.verify("a@b.com", first.code))
        self.assertTrue(self.service.verify("a@b.com", second.code))

    def test_failed_delivery_rolls_back_code(self):
        self.mailer.fail = True
        with self.assertRaises(DeliveryFailed):
            self.service.issue("a@b.com")
        self.assertEqual(self.store.records, {})

    def test_issue_purges_abandoned_codes(self):
        for i in range(5):
            self.service.issue(f"user{i}@b.com")
        self.clock.now += 10_000
        latest = self.service.issue("late@b.com")
        self.assertEqual(list(self.store.records), ["late@b.com"])
        self.assertIs(self.store.records["late@b.com"], latest)

    def test_purge_expired(self):
        self.store.put(OtpRecord("old@b.com", "123456", expires_at=10.0))
        self.store.put(OtpRecord("new@b.com", "654321", expires_at=100.0))
        self.assertEqual(self.store.purge_expired(now=50.0), 1)
        self.assertEqual(list(self.store.records), ["new@b.com"])


class TokenSignerTests(unittest.TestCase):
    def setUp(self):
        self.signer = TokenSigner(secret="test-secret")

    def test_roundtrip_claims(self):
        token = self.signer.issue({"email": "a@b.com"})
        claims = self.signer.validate(token)
        self.assertEqual(claims["email"], "a@b.com")
        self.assertEqual(claims["exp"] - claims["iat"], 7 * 24 * 60 * 60)

    def test_valid_six_days_after_issue(self):
        issued = datetime.now(timezone.utc) - timedelta(days=6)
        token = self.signer.issue({"email": "a@b.com"}, now=issued)
        self.assertEqual(self.signer.validate(token)["email"], "a@b.com")

    def test_expired_eight_days_after_issue(self):
        issued = datetime.now(timezone.utc) - timedelta(days=8)
        token = self.signer.issue({"email": "a@b.com"}, now=issued)
        with self.assertRaises(InvalidToken):
            self.signer.validate(token)

    def test_rejects_foreign_signature(self):
        token = TokenSigner(secret="other-secret").issue({"email": "a@b.com"})
        with self.assertRaises(InvalidToken):
            self.signer.validate(token)

    def test_rejects_garbage(self):
        with self.assertRaises(InvalidToken):
            self.signer.validate("not-a-jwt")


class RedisOtpStoreTests(unittest.TestCase):
    @patch("bgaze.otp_store.redis.Redis.from_url")
    def setUp(self, mock_from_url):
        self.client = MagicMock()
        mock_from_url.return_value = self.client
        self.store = RedisOtpStore(url="redis://localhost:6379/0")

    @patch("bgaze.otp_store.time.time", return_value=1000.0)
    def test_put_sets_ttl(self, _mock_time):
        self.store.put(OtpRecord("a@b.com", "123456", expires_at=1300.0))
        self.client.set.assert_called_once()
        args, kwargs = self.client.set.call_args
        self.assertEqual(args[0], "bgaze:otp:a@b.com")
        self.assertEqual(json.loads(args[1])["code"], "123456")
        self.assertEqual(kwargs["ex"], 300)

    def test_get_decodes_record(self):
        self.client.get.return_value = json.dumps(
            {"code": "123456", "expires_at": 1300.0}
        ).encode("utf-8")
        record = self.store.get("a@b.com", now=1000.0)
        self.assertEqual(record.code, "123456")
        self.client.delete.assert_not_called()

    def test_get_drops_expired_record(self):
        self.client.get.return_value = json.dumps(
            {"code": "123456", "expires_at": 900.0}
        )
        self.assertIsNone(self.store.get("a@b.com", now=1000.0))
        self.client.delete.assert_called_once_with("bgaze:otp:a@b.com")

    def test_delete_reports_removal(self):
        self.client.delete.return_value = 1
        self.assertTrue(self.store.delete("a@b.com"))
        self.client.delete.return_value = 0
        self.assertFalse(self.store.delete("a@b.com"))

    def test_connection_errors_become_upstream_failures(self):
        from redis import exceptions as redis_exceptions

        self.client.get.side_effect = redis_exceptions.ConnectionError("down")
        with self.assertRaises(UpstreamFailure):
            self.store.get("a@b.com", now=0.0)


if __name__ == "__main__":
    unittest.main()

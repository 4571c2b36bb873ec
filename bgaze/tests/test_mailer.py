import smtplib
import unittest
from unittest.mock import MagicMock, patch

from bgaze.errors import DeliveryFailed
from bgaze.mailer import OTP_SUBJECT, SmtpMailer, build_otp_message


class SmtpMailerTests(unittest.TestCase):
    def setUp(self):
        self.mailer = SmtpMailer(
            host="smtp.example.com",
            port=465,
            username="study@example.com",
            password="app-password",
        )
        self.message = build_otp_message("a@b.com", "123456", 300)

    def test_otp_message_mentions_code_and_lifetime(self):
        self.assertEqual(self.message.subject, OTP_SUBJECT)
        self.assertIn("123456", self.message.text)
        self.assertIn("5 minutes", self.message.text)
        self.assertIn("123456", self.message.html)

    @patch("bgaze.mailer.smtplib.SMTP_SSL")
    def test_send_logs_in_and_sends(self, mock_smtp):
        client = MagicMock()
        mock_smtp.return_value.__enter__.return_value = client
        self.mailer.send(self.message)

        client.login.assert_called_once_with("study@example.com", "app-password")
        sent = client.send_message.call_args[0][0]
        self.assertEqual(sent["To"], "a@b.com")
        self.assertEqual(sent["From"], "study@example.com")
        self.assertEqual(sent["Subject"], OTP_SUBJECT)
        self.assertTrue(sent.is_multipart())

    @patch("bgaze.mailer.smtplib.SMTP")
    def test_starttls_when_ssl_disabled(self, mock_smtp):
        mailer = SmtpMailer(host="smtp.example.com", port=587, use_ssl=False)
        client = mock_smtp.return_value
        client.__enter__.return_value = client
        mailer.send(self.message)
        client.starttls.assert_called_once()
        client.login.assert_not_called()
        client.send_message.assert_called_once()

    @patch("bgaze.mailer.smtplib.SMTP")
    def test_failed_starttls_closes_connection(self, mock_smtp):
        mailer = SmtpMailer(host="smtp.example.com", port=587, use_ssl=False)
        client = mock_smtp.return_value
        client.starttls.side_effect = smtplib.SMTPNotSupportedError("no TLS")
        with self.assertRaises(DeliveryFailed):
            mailer.send(self.message)
        client.close.assert_called_once()
        client.send_message.assert_not_called()

    @patch("bgaze.mailer.smtplib.SMTP_SSL")
    def test_smtp_errors_become_delivery_failures(self, mock_smtp):
        client = MagicMock()
        client.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad creds")
        mock_smtp.return_value.__enter__.return_value = client
        with self.assertRaises(DeliveryFailed):
            self.mailer.send(self.message)

    @patch("bgaze.mailer.smtplib.SMTP_SSL", side_effect=OSError("unreachable"))
    def test_connection_errors_become_delivery_failures(self, _mock_smtp):
        with self.assertRaises(DeliveryFailed):
            self.mailer.send(self.message)


if __name__ == "__main__":
    unittest.main()

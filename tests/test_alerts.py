"""
Comprehensive unit tests for jobs/alerts.py

Tests cover:
- AlertLevel constants
- Slack / Discord / Telegram payload structure
- send_alert (webhook disabled, success, failure)
- summarize_results counting
- alert_job_finished levels and toggling
"""

import asyncio
import unittest
from unittest.mock import patch, MagicMock, AsyncMock
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def mock_session(status=200, body=""):
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=body)
    post_ctx = MagicMock()
    post_ctx.__aenter__ = AsyncMock(return_value=response)
    post_ctx.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.post.return_value = post_ctx
    session_ctx = MagicMock()
    session_ctx.__aenter__ = AsyncMock(return_value=session)
    session_ctx.__aexit__ = AsyncMock(return_value=False)
    return session_ctx, session


def snapshot(status="Completed", results=None, last_error=None):
    return {
        "status": status,
        "cursor": len(results or []),
        "total": 3,
        "results": results or [],
        "last_error": last_error,
    }


class TestAlertLevel(unittest.TestCase):

    def test_levels_defined(self):
        from jobs.alerts import AlertLevel

        self.assertEqual(AlertLevel.CRITICAL, "critical")
        self.assertEqual(AlertLevel.WARNING, "warning")
        self.assertEqual(AlertLevel.INFO, "info")


class TestPayloads(unittest.TestCase):

    def test_slack_payload_structure(self):
        from jobs.alerts import _build_slack_payload

        payload = _build_slack_payload("Test Title", "Test message", "info")
        attachment = payload["attachments"][0]
        self.assertEqual(attachment["title"], "Test Title")
        self.assertEqual(attachment["text"], "Test message")
        self.assertEqual(attachment["color"], "#36A64F")  # info = green
        self.assertIsInstance(attachment["ts"], int)

    def test_discord_payload_structure(self):
        from jobs.alerts import _build_discord_payload

        embed = _build_discord_payload("Test Title", "Test message", "critical")["embeds"][0]
        self.assertEqual(embed["description"], "Test message")
        self.assertEqual(embed["color"], 0xFF0000)

    @patch("config.TELEGRAM_CHAT_ID", "12345")
    def test_telegram_payload_structure(self):
        from jobs.alerts import _build_telegram_payload

        payload = _build_telegram_payload("Test Title", "Test message")
        self.assertEqual(payload["chat_id"], "12345")
        self.assertIn("*Test Title*", payload["text"])
        self.assertEqual(payload["parse_mode"], "Markdown")


class TestSendAlert(unittest.TestCase):

    @patch("config.ALERT_WEBHOOK_URL", "")
    def test_no_webhook_returns_false(self):
        from jobs.alerts import send_alert

        self.assertFalse(run_async(send_alert("Test message")))

    @patch("config.ALERT_WEBHOOK_URL", "https://hooks.slack.com/test")
    @patch("config.ALERT_CHANNEL", "slack")
    def test_successful_send(self):
        from jobs.alerts import send_alert

        session_ctx, session = mock_session(status=200)
        with patch("jobs.alerts.aiohttp.ClientSession", return_value=session_ctx):
            self.assertTrue(run_async(send_alert("Job done", level="info")))

        url = session.post.call_args.args[0]
        self.assertEqual(url, "https://hooks.slack.com/test")
        self.assertIn("attachments", session.post.call_args.kwargs["json"])

    @patch("config.ALERT_WEBHOOK_URL", "bot-token")
    @patch("config.ALERT_CHANNEL", "telegram")
    def test_telegram_url(self):
        from jobs.alerts import send_alert

        session_ctx, session = mock_session(status=200)
        with patch("jobs.alerts.aiohttp.ClientSession", return_value=session_ctx):
            run_async(send_alert("Job done"))

        self.assertEqual(session.post.call_args.args[0], "https://api.telegram.org/botbot-token/sendMessage")

    @patch("config.ALERT_WEBHOOK_URL", "https://hooks.slack.com/test")
    def test_webhook_error_returns_false(self):
        from jobs.alerts import send_alert

        session_ctx, _ = mock_session(status=500, body="boom")
        with patch("jobs.alerts.aiohttp.ClientSession", return_value=session_ctx):
            self.assertFalse(run_async(send_alert("Job done")))

    @patch("config.ALERT_WEBHOOK_URL", "https://hooks.slack.com/test")
    def test_network_error_returns_false(self):
        from jobs.alerts import send_alert

        with patch("jobs.alerts.aiohttp.ClientSession", side_effect=OSError("no route")):
            self.assertFalse(run_async(send_alert("Job done")))


class TestJobFinishedAlert(unittest.TestCase):

    RESULTS = [
        {"create_outcome": "Success", "send_outcome": "Success"},
        {"create_outcome": "Duplicate", "send_outcome": "Skipped"},
        {"create_outcome": "Failed", "send_outcome": "Failed"},
    ]

    def test_summarize_results(self):
        from jobs.alerts import summarize_results

        counts = summarize_results(snapshot(results=self.RESULTS))
        self.assertEqual(counts, {
            "created": 1, "duplicates": 1, "create_failed": 1,
            "sent": 1, "send_failed": 1, "skipped": 1,
        })

    @patch("config.JOB_ALERTS_ENABLED", False)
    @patch("jobs.alerts.send_alert", new_callable=AsyncMock)
    def test_disabled(self, mock_send):
        from jobs.alerts import alert_job_finished

        self.assertFalse(run_async(alert_job_finished("crm-1", snapshot())))
        mock_send.assert_not_called()

    @patch("config.JOB_ALERTS_ENABLED", True)
    @patch("jobs.alerts.send_alert", new_callable=AsyncMock)
    def test_failed_job_is_critical(self, mock_send):
        from jobs.alerts import AlertLevel, alert_job_finished

        run_async(alert_job_finished("crm-1", snapshot("Failed", last_error="Account 1 not found.")))
        message, level, title = mock_send.call_args.args
        self.assertEqual(level, AlertLevel.CRITICAL)
        self.assertIn("crm-1", title)
        self.assertIn("Account 1 not found.", message)

    @patch("config.JOB_ALERTS_ENABLED", True)
    @patch("jobs.alerts.send_alert", new_callable=AsyncMock)
    def test_completed_with_failures_is_warning(self, mock_send):
        from jobs.alerts import AlertLevel, alert_job_finished

        run_async(alert_job_finished("bigin-1", snapshot(results=self.RESULTS)))
        message, level, _ = mock_send.call_args.args
        self.assertEqual(level, AlertLevel.WARNING)
        self.assertIn("3/3", message)

    @patch("config.JOB_ALERTS_ENABLED", True)
    @patch("jobs.alerts.send_alert", new_callable=AsyncMock)
    def test_clean_completion_is_info(self, mock_send):
        from jobs.alerts import AlertLevel, alert_job_finished

        run_async(alert_job_finished("crm-1", snapshot(results=self.RESULTS[:1])))
        self.assertEqual(mock_send.call_args.args[1], AlertLevel.INFO)


if __name__ == "__main__":
    unittest.main()

"""Tests for email/Slack notification fan-out and failure isolation."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

from monitor_agent.config import SmtpSettings
from monitor_agent.notifications import COLOR_FAILURE, COLOR_SUCCESS, Notifier
from monitor_agent.schemas import DeploymentStatus, EnhancementRecord, EnhancementStatus

RECORD = EnhancementRecord(
    id=1,
    title="Add CSV export",
    description="Export reports",
    requested_by="alice@example.com",
    status=EnhancementStatus.PR_CREATED,
    pr_url="https://gh/pull/42",
)


class _Response:
    def read(self) -> bytes:
        return b"ok"

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


def test_disabled_channels_return_false():
    notifier = Notifier()
    assert notifier.send_email("a@example.com", "s", "b") is False
    assert notifier.send_slack("hello") is False
    assert notifier.pr_created(RECORD) is False


def test_slack_enabled_without_url_is_disabled():
    assert Notifier(slack_enabled=True).send_slack("hello") is False


def test_slack_payload_shape():
    sent = []

    def fake_urlopen(request, timeout=None):
        sent.append(json.loads(request.data.decode("utf-8")))
        return _Response()

    notifier = Notifier(slack_enabled=True, slack_webhook_url="https://hooks.example.test/x")
    with patch("monitor_agent.notifications.urlopen", fake_urlopen):
        assert notifier.pr_created(RECORD) is True

    payload = sent[0]
    assert payload["text"] == "PR created for Enhancement #1"
    attachment = payload["attachments"][0]
    assert attachment["color"] == COLOR_SUCCESS
    assert {"title": "PR", "value": "https://gh/pull/42", "short": True} in attachment["fields"]


def test_enhancement_email_goes_to_requester_and_list_once():
    notifier = Notifier(
        smtp=SmtpSettings(host="smtp.example.test"),
        email_enabled=True,
        recipients=("ops@example.com", "alice@example.com", "not-an-address"),
    )
    with patch.object(notifier, "send_email", return_value=True) as send_email:
        notifier.enhancement_failed(RECORD, "RuntimeError: boom")

    recipients = [call.args[0] for call in send_email.call_args_list]
    assert recipients == ["alice@example.com", "ops@example.com"]
    subject, body = send_email.call_args_list[0].args[1:]
    assert subject == "[Monitor Agent] Enhancement #1 Failed: Add CSV export"
    assert "Error: RuntimeError: boom" in body


def test_deployment_email_only_for_address_requesters():
    notifier = Notifier(email_enabled=True)
    with patch.object(notifier, "send_email", return_value=True) as send_email:
        notifier.deployment(
            enhancement_id=1, description="d", requested_by="bob",
            status=DeploymentStatus.DEPLOYED, pr_number=42,
        )
        send_email.assert_not_called()
        notifier.deployment(
            enhancement_id=1, description="d", requested_by="bob@example.com",
            status=DeploymentStatus.FAILED, error="PR #42 has merge conflicts",
        )
    assert send_email.call_args.args[1] == "[Monitor Agent] Deployment Failed: Enhancement #1"


def test_failed_deployment_slack_is_red():
    notifier = Notifier(slack_enabled=True, slack_webhook_url="https://hooks.example.test/x")
    with patch.object(notifier, "send_slack", return_value=True) as send_slack:
        notifier.deployment(
            enhancement_id=1, description="d", requested_by="",
            status=DeploymentStatus.FAILED, error="boom",
        )
    text, attachments = send_slack.call_args.args
    assert text == ":x: Enhancement #1 deployment failed"
    assert attachments[0]["color"] == COLOR_FAILURE


def test_smtp_failure_returns_false():
    notifier = Notifier(smtp=SmtpSettings(host="smtp.example.test"), email_enabled=True)
    smtp = MagicMock()
    smtp.return_value.send_message.side_effect = OSError("refused")
    with patch("monitor_agent.notifications.smtplib.SMTP", smtp):
        assert notifier.send_email("a@example.com", "s", "b") is False


def test_unexpected_error_is_swallowed():
    notifier = Notifier()
    with patch.object(notifier, "send_slack", side_effect=ValueError("bad")):
        assert notifier.enhancement_started(RECORD) is False

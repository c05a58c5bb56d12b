"""Email and Slack notifications for enhancement and deployment events.

Notifications are fire-and-forget: every public method logs failures and
returns ``False`` instead of raising, so a broken SMTP server or webhook
never affects the job that triggered it.
"""

from __future__ import annotations

import json
import logging
import re
import smtplib
import ssl
from collections.abc import Iterable, Sequence
from email.message import EmailMessage
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from monitor_agent.config import SmtpSettings
from monitor_agent.schemas import DeploymentStatus, EnhancementRecord

logger = logging.getLogger(__name__)

COLOR_INFO = "#2196F3"
COLOR_SUCCESS = "#4CAF50"
COLOR_FAILURE = "#F44336"

_SUBJECT_PREFIX = "[Monitor Agent]"
_FOOTER = "---\nThis is an automated message from the Monitor Agent."
_WEBHOOK_TIMEOUT_SECONDS = 15


def _looks_like_email(value: str | None) -> bool:
    return bool(value) and "@" in str(value)


def _field(title: str, value: Any, short: bool = True) -> dict[str, Any]:
    return {"title": title, "value": str(value), "short": short}


class Notifier:
    def __init__(
        self,
        *,
        smtp: SmtpSettings | None = None,
        slack_webhook_url: str = "",
        email_enabled: bool = False,
        slack_enabled: bool = False,
        recipients: Sequence[str] = (),
    ) -> None:
        self.smtp = smtp or SmtpSettings()
        self.slack_webhook_url = slack_webhook_url
        self.email_enabled = email_enabled
        self.slack_enabled = slack_enabled
        self.recipients = tuple(recipients)

    # -- transports --------------------------------------------------------

    def send_email(self, to: str, subject: str, body: str) -> bool:
        if not self.email_enabled:
            logger.info("[email disabled] Would send to %s: %s", to, subject)
            return False
        msg = EmailMessage()
        msg["From"] = self.smtp.sender or self.smtp.user
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        try:
            if self.smtp.secure:
                client = smtplib.SMTP_SSL(
                    self.smtp.host, self.smtp.port, context=ssl.create_default_context(), timeout=30
                )
            else:
                client = smtplib.SMTP(self.smtp.host, self.smtp.port, timeout=30)
            with client:
                if not self.smtp.secure:
                    client.ehlo()
                    if client.has_extn("starttls"):
                        client.starttls(context=ssl.create_default_context())
                        client.ehlo()
                if self.smtp.user:
                    client.login(self.smtp.user, self.smtp.password)
                client.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", to, exc)
            return False
        logger.info("Email sent to %s: %s", to, subject)
        return True

    def send_slack(self, text: str, attachments: list[dict[str, Any]] | None = None) -> bool:
        if not self.slack_enabled or not self.slack_webhook_url:
            logger.info("[slack disabled] Would post: %s", text)
            return False
        payload: dict[str, Any] = {"text": text}
        if attachments:
            payload["attachments"] = attachments
        request_obj = Request(
            self.slack_webhook_url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={"Content-Type": "application/json", "User-Agent": "monitor-agent"},
        )
        try:
            with urlopen(request_obj, timeout=_WEBHOOK_TIMEOUT_SECONDS) as response:
                _ = response.read()
        except HTTPError as exc:
            detail = ""
            try:
                detail = re.sub(r"\s+", " ", exc.read().decode("utf-8", errors="replace"))[:280]
            except OSError:
                detail = ""
            logger.error("Slack webhook returned HTTP %s %s", exc.code, detail)
            return False
        except (URLError, OSError) as exc:
            logger.error("Slack webhook failed: %s", getattr(exc, "reason", exc))
            return False
        return True

    def _email_all(self, recipients: Iterable[str], subject: str, body: str) -> None:
        seen: set[str] = set()
        for to in recipients:
            if _looks_like_email(to) and to not in seen:
                seen.add(to)
                self.send_email(to, subject, body)

    def _enhancement_recipients(self, enhancement: EnhancementRecord) -> list[str]:
        return [enhancement.requested_by, *self.recipients]

    @staticmethod
    def _enhancement_body(heading: str, enhancement: EnhancementRecord, *extra: str) -> str:
        lines = [
            heading,
            "=" * len(heading),
            "",
            f"ID: {enhancement.id}",
            f"Title: {enhancement.title}",
            f"Status: {enhancement.status.value}",
        ]
        if enhancement.branch_name:
            lines.append(f"Branch: {enhancement.branch_name}")
        if enhancement.pr_url:
            lines.append(f"Pull Request: {enhancement.pr_url}")
        lines.extend(line for line in extra if line)
        lines.extend(["", _FOOTER])
        return "\n".join(lines)

    # -- enhancement events ----------------------------------------------

    def enhancement_started(self, enhancement: EnhancementRecord) -> bool:
        try:
            subject = f"{_SUBJECT_PREFIX} Enhancement #{enhancement.id} Started: {enhancement.title}"
            body = self._enhancement_body(
                "Enhancement Processing Started", enhancement, f"Description: {enhancement.description}"
            )
            self._email_all(self._enhancement_recipients(enhancement), subject, body)
            return self.send_slack(
                f"Enhancement #{enhancement.id} started: {enhancement.title}",
                [{
                    "color": COLOR_INFO,
                    "title": f"Enhancement #{enhancement.id}",
                    "text": enhancement.title,
                    "fields": [_field("Status", enhancement.status.value)],
                }],
            )
        except Exception:
            logger.exception("[#%s] Started notification failed", enhancement.id)
            return False

    def pr_created(self, enhancement: EnhancementRecord) -> bool:
        try:
            subject = (
                f"{_SUBJECT_PREFIX} PR Created for Enhancement #{enhancement.id}: {enhancement.title}"
            )
            body = self._enhancement_body(
                "Pull Request Created",
                enhancement,
                "A pull request is ready for review and will be merged at its scheduled deployment.",
            )
            self._email_all(self._enhancement_recipients(enhancement), subject, body)
            return self.send_slack(
                f"PR created for Enhancement #{enhancement.id}",
                [{
                    "color": COLOR_SUCCESS,
                    "title": f"Enhancement #{enhancement.id}",
                    "text": enhancement.title,
                    "fields": [
                        _field("Status", enhancement.status.value),
                        _field("PR", enhancement.pr_url or "N/A"),
                    ],
                }],
            )
        except Exception:
            logger.exception("[#%s] PR notification failed", enhancement.id)
            return False

    def enhancement_completed(self, enhancement: EnhancementRecord) -> bool:
        try:
            subject = f"{_SUBJECT_PREFIX} Enhancement #{enhancement.id} Completed: {enhancement.title}"
            body = self._enhancement_body(
                "Enhancement Completed", enhancement, f"Notes: {enhancement.notes or ''}"
            )
            self._email_all(self._enhancement_recipients(enhancement), subject, body)
            return self.send_slack(
                f"Enhancement #{enhancement.id} completed!",
                [{
                    "color": COLOR_SUCCESS,
                    "title": f"Enhancement #{enhancement.id} - Completed",
                    "text": enhancement.title,
                    "fields": [
                        _field("Status", enhancement.status.value),
                        _field("PR", enhancement.pr_url or "N/A"),
                    ],
                }],
            )
        except Exception:
            logger.exception("[#%s] Completed notification failed", enhancement.id)
            return False

    def enhancement_failed(self, enhancement: EnhancementRecord, error: str | None = None) -> bool:
        try:
            message = error or enhancement.error_message or "Unknown error"
            subject = f"{_SUBJECT_PREFIX} Enhancement #{enhancement.id} Failed: {enhancement.title}"
            body = self._enhancement_body("Enhancement Failed", enhancement, f"Error: {message}")
            self._email_all(self._enhancement_recipients(enhancement), subject, body)
            return self.send_slack(
                f"Enhancement #{enhancement.id} failed!",
                [{
                    "color": COLOR_FAILURE,
                    "title": f"Enhancement #{enhancement.id} - Failed",
                    "text": enhancement.title,
                    "fields": [
                        _field("Status", enhancement.status.value),
                        _field("Error", message, short=False),
                    ],
                }],
            )
        except Exception:
            logger.exception("[#%s] Failure notification failed", enhancement.id)
            return False

    # -- deployment events -------------------------------------------------

    def deployment(
        self,
        *,
        enhancement_id: int,
        description: str,
        requested_by: str,
        status: DeploymentStatus,
        pr_number: int | None = None,
        error: str | None = None,
    ) -> bool:
        try:
            ok = status is DeploymentStatus.DEPLOYED
            status_text = "Deployed" if ok else "Failed"
            heading = f"Deployment {status_text}"
            lines = [
                heading,
                "=" * len(heading),
                "",
                f"Enhancement ID: {enhancement_id}",
                f"Description: {description}",
                f"Requestor: {requested_by or 'Unknown'}",
                f"Status: {status_text}",
            ]
            if pr_number:
                lines.append(f"PR Number: #{pr_number}")
            if error:
                lines.append(f"Error: {error}")
            lines.extend([
                "",
                "The enhancement has been deployed." if ok
                else "The deployment failed. Please review the error and take action.",
                "",
                _FOOTER,
            ])
            subject = f"{_SUBJECT_PREFIX} Deployment {status_text}: Enhancement #{enhancement_id}"
            if _looks_like_email(requested_by):
                self.send_email(requested_by, subject, "\n".join(lines))

            fields = [_field("Status", status_text), _field("Requestor", requested_by or "Unknown")]
            if pr_number:
                fields.append(_field("PR", f"#{pr_number}"))
            if error:
                fields.append(_field("Error", error, short=False))
            text = (
                f":white_check_mark: Enhancement #{enhancement_id} deployed successfully" if ok
                else f":x: Enhancement #{enhancement_id} deployment failed"
            )
            return self.send_slack(
                text,
                [{
                    "color": COLOR_SUCCESS if ok else COLOR_FAILURE,
                    "title": f"Enhancement #{enhancement_id} - {status_text}",
                    "text": description,
                    "fields": fields,
                }],
            )
        except Exception:
            logger.exception("Deployment notification for enhancement #%s failed", enhancement_id)
            return False

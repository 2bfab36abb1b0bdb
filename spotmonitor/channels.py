# spotmonitor/channels.py
import html
import logging

import requests
from botocore.exceptions import BotoCoreError, ClientError

from spotmonitor.errors import UpstreamError

log = logging.getLogger(__name__)

SEVERITY_COLORS = {
    "info": "#2196F3",
    "warning": "#FF9800",
    "error": "#F44336",
    "critical": "#9C27B0",
}


def _metadata_lines(metadata):
    return [f"{k}: {v}" for k, v in (metadata or {}).items()]


class EmailAdapter:
    """Sends through SES."""

    kind = "email"

    def __init__(self, ses, sender):
        self.ses = ses
        self.sender = sender

    def render(self, subject, message, severity, metadata):
        text = f"{subject}\n\nSeverity: {severity}\n\n{message}"
        body = f"<h2>{html.escape(subject)}</h2><p><strong>Severity:</strong> {severity}</p><p>{html.escape(message)}</p>"
        if metadata:
            text += "\n\nAdditional Information:\n" + "\n".join(_metadata_lines(metadata))
            items = "".join(
                f"<li><strong>{html.escape(str(k))}:</strong> {html.escape(str(v))}</li>" for k, v in metadata.items()
            )
            body += f"<h3>Additional Information:</h3><ul>{items}</ul>"
        return text, body

    def send(self, channel, subject, message, severity, metadata):
        text, body = self.render(subject, message, severity, metadata)
        try:
            resp = self.ses.send_email(
                Source=self.sender,
                Destination={"ToAddresses": [channel.address]},
                Message={
                    "Subject": {"Charset": "UTF-8", "Data": f"[{severity.upper()}] {subject}"},
                    "Body": {
                        "Text": {"Charset": "UTF-8", "Data": text},
                        "Html": {"Charset": "UTF-8", "Data": body},
                    },
                },
            )
        except (ClientError, BotoCoreError) as e:
            raise UpstreamError(f"SES send_email failed: {e}", operation="send_email") from e
        log.info("Email notification sent to %s (message id %s)", channel.address, resp.get("MessageId"))
        return {"id": resp.get("MessageId")}


class SmsAdapter:
    """Sends through SNS direct publish."""

    kind = "sms"

    def __init__(self, sns):
        self.sns = sns

    def send(self, channel, subject, message, severity, metadata):
        text = f"[{severity.upper()}] {subject}: {message}"
        try:
            resp = self.sns.publish(PhoneNumber=channel.address, Message=text)
        except (ClientError, BotoCoreError) as e:
            raise UpstreamError(f"SNS publish failed: {e}", operation="publish") from e
        log.info("SMS notification sent (message id %s)", resp.get("MessageId"))
        return {"id": resp.get("MessageId")}


class ChatWebhookAdapter:
    """Posts a Slack-compatible attachment to an incoming webhook."""

    kind = "chat"

    def __init__(self, timeout=5, session=None):
        self.timeout = timeout
        self.session = session or requests.Session()

    @staticmethod
    def payload(subject, message, severity, metadata):
        return {
            "attachments": [{
                "color": SEVERITY_COLORS.get(severity, SEVERITY_COLORS["info"]),
                "pretext": f"*[{severity.upper()}]* {subject}",
                "text": message,
                "fields": [{"title": k, "value": str(v), "short": True} for k, v in (metadata or {}).items()],
            }]
        }

    def send(self, channel, subject, message, severity, metadata):
        try:
            resp = self.session.post(
                channel.webhook_url,
                json=self.payload(subject, message, severity, metadata),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise UpstreamError(f"Webhook post failed: {e}", operation="post_webhook") from e
        log.info("Chat notification sent (status %s)", resp.status_code)
        return {"status_code": resp.status_code}


def build_adapters(session, region, sender, webhook_timeout=5):
    return {
        "email": EmailAdapter(session.client("ses", region_name=region), sender),
        "sms": SmsAdapter(session.client("sns", region_name=region)),
        "chat": ChatWebhookAdapter(timeout=webhook_timeout),
    }

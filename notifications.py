"""Customer e-mail notifications sent through the Gmail API.

``GmailClient`` exchanges a long-lived OAuth refresh token for an access token
and posts a base64url-encoded RFC 2822 message. ``NotificationDispatcher``
renders the Jinja2 templates and is strictly best-effort: it logs failures
and reports them as ``False``, never raising into the pipeline.
"""

from __future__ import annotations

import base64
import logging
from datetime import date
from email.message import EmailMessage
from pathlib import Path
from typing import Dict, Optional

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape

import email_templates
from catalog import AwningType
from config import Settings
from errors import NotificationError
from imaging import ImageBuffer
from pricing import PriceBreakdown

log = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"
TEMPLATES_DIR = Path(email_templates.__file__).parent

INLINE_IMAGE_CID = "visualization"


def _error_detail(resp: requests.Response) -> str:
    try:
        return resp.json().get("error", {}).get("message") or resp.reason
    except ValueError:
        return resp.text[:200] or resp.reason


class GmailClient:
    """Minimal Gmail REST sender authorised by a refresh token."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        sender_email: str,
        timeout: float = 30.0,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.sender_email = sender_email
        self.timeout = timeout

    def _access_token(self) -> str:
        try:
            resp = requests.post(
                TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NotificationError(f"Token request failed: {exc}") from exc
        if not resp.ok:
            raise NotificationError(f"Failed to get access token: {_error_detail(resp)}")
        token = resp.json().get("access_token")
        if not token:
            raise NotificationError("Token response did not contain an access_token")
        return token

    def build_message(
        self,
        to: str,
        subject: str,
        html: str,
        inline_image: Optional[ImageBuffer] = None,
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender_email
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("Open dit bericht in een e-mailprogramma dat HTML ondersteunt.")
        msg.add_alternative(html, subtype="html")

        if inline_image is not None:
            maintype, subtype = inline_image.mime_type.split("/", 1)
            extension = "jpg" if subtype == "jpeg" else subtype
            html_part = msg.get_payload()[1]
            html_part.add_related(
                inline_image.to_bytes(),
                maintype=maintype,
                subtype=subtype,
                cid=f"<{INLINE_IMAGE_CID}>",
                filename=f"zonnescherm_visualisatie.{extension}",
                disposition="inline",
            )
        return msg

    def send(
        self,
        to: str,
        subject: str,
        html: str,
        inline_image: Optional[ImageBuffer] = None,
    ) -> Dict:
        message = self.build_message(to, subject, html, inline_image)
        raw = base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")
        token = self._access_token()
        try:
            resp = requests.post(
                SEND_URL,
                headers={"Authorization": f"Bearer {token}"},
                json={"raw": raw},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NotificationError(f"Gmail send failed: {exc}") from exc
        if not resp.ok:
            raise NotificationError(f"Gmail API error: {_error_detail(resp)}")
        return resp.json()


class NotificationDispatcher:
    """Renders and sends the "started" and "completed" customer e-mails."""

    def __init__(self, client: GmailClient, templates_dir: Optional[Path] = None) -> None:
        self.client = client
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir or TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"]),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["NotificationDispatcher"]:
        """None when the Gmail credentials are incomplete."""
        if not settings.notifications_configured:
            log.info("Gmail credentials incomplete; customer notifications disabled")
            return None
        client = GmailClient(
            settings.gmail_client_id,
            settings.gmail_client_secret,
            settings.gmail_refresh_token,
            settings.gmail_sender_email,
        )
        return cls(client)

    def _render(self, name: str, **context) -> str:
        return self.env.get_template(name).render(**context)

    def notify_started(
        self,
        email: str,
        name: Optional[str],
        awning_type: AwningType,
        with_price: bool = False,
    ) -> bool:
        try:
            html = self._render(
                "start.html",
                customer_name=name or "daar",
                awning_name=awning_type.display_name,
                with_price=with_price,
            )
            self.client.send(email, "🚀 Uw Zonnescherm Visualisatie wordt Gemaakt", html)
        except Exception as exc:
            log.warning("Start notification to %s failed: %s", email, exc)
            return False
        log.info("Start notification sent to %s", email)
        return True

    def notify_completed(
        self,
        email: str,
        name: Optional[str],
        awning_type: AwningType,
        image: ImageBuffer,
        goal_achieved: bool,
        score: int,
        price: Optional[PriceBreakdown] = None,
    ) -> bool:
        if goal_achieved:
            subject = "✅ Uw Zonnescherm Visualisatie is Klaar!"
        else:
            subject = "⚠️ Uw Zonnescherm Visualisatie - Resultaat Beschikbaar"
        try:
            html = self._render(
                "completion.html",
                customer_name=name or "daar",
                awning_name=awning_type.display_name,
                goal_achieved=goal_achieved,
                score=score,
                price=price,
                image_cid=INLINE_IMAGE_CID,
                today=date.today().strftime("%d-%m-%Y"),
            )
            self.client.send(email, subject, html, inline_image=image)
        except Exception as exc:
            log.warning("Completion notification to %s failed: %s", email, exc)
            return False
        log.info("Completion notification sent to %s (score %d)", email, score)
        return True

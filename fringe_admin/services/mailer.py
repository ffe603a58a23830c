from __future__ import annotations

import logging
import smtplib
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

from itsdangerous import BadSignature, URLSafeSerializer

from ..config import SmtpConfig
from .database_service import DatabaseService
from .queries import eq

logger = logging.getLogger(__name__)

Attachment = Tuple[str, bytes, str]

OUTBOX_SIZE = 50
UNSUBSCRIBE_SALT = 'newsletter-unsubscribe'


@dataclass
class OutgoingEmail:
    to: str
    subject: str
    html: str
    text: Optional[str] = None
    attachments: Sequence[Attachment] = ()
    tag: Optional[str] = None


@dataclass
class SendResult:
    to: str
    success: bool
    error: Optional[str] = None
    tag: Optional[str] = None


@dataclass
class Mailer:
    """Sends HTML mail through the active SMTP settings.

    The active ``email_smtp_settings`` row wins over the environment fallback.
    With neither configured the mailer runs in test mode: messages are logged
    and the most recent ones are kept in :attr:`outbox` instead of being
    delivered.
    """

    database: DatabaseService
    fallback: SmtpConfig
    max_workers: int = 5
    outbox: Deque[OutgoingEmail] = field(default_factory=lambda: deque(maxlen=OUTBOX_SIZE))

    def resolve_config(self) -> Optional[SmtpConfig]:
        row = self.database.find_one('email_smtp_settings', [eq('is_active', True)])
        if row:
            return SmtpConfig(
                host=row.get('host', ''),
                port=int(row.get('port') or 587),
                username=row.get('username') or '',
                password=row.get('password') or '',
                from_email=row.get('from_email', ''),
                from_name=row.get('from_name') or self.fallback.from_name,
                encryption=(row.get('encryption') or 'tls').lower(),
            )
        if self.fallback.is_valid:
            return self.fallback
        return None

    def send(self, message: OutgoingEmail, config: Optional[SmtpConfig] = None) -> SendResult:
        config = config or self.resolve_config()
        if config is None:
            logger.info('Email test mode: to=%s subject=%r', message.to, message.subject)
            self.outbox.append(message)
            return SendResult(message.to, True, tag=message.tag)

        try:
            self._deliver(config, message)
        except Exception as exc:
            logger.warning('Email delivery to %s failed', message.to, exc_info=True)
            return SendResult(message.to, False, str(exc), tag=message.tag)
        return SendResult(message.to, True, tag=message.tag)

    def send_many(self, messages: Sequence[OutgoingEmail]) -> List[SendResult]:
        if not messages:
            return []
        config = self.resolve_config()
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(pool.map(lambda message: self.send(message, config), messages))

    @staticmethod
    def _build(config: SmtpConfig, message: OutgoingEmail) -> MIMEMultipart:
        root = MIMEMultipart('mixed')
        root['Subject'] = message.subject
        root['From'] = formataddr((config.from_name, config.from_email)) if config.from_name else config.from_email
        root['To'] = message.to
        alt = MIMEMultipart('alternative')
        root.attach(alt)
        if message.text:
            alt.attach(MIMEText(message.text, 'plain'))
        alt.attach(MIMEText(message.html, 'html'))
        for filename, content, mimetype in message.attachments:
            part = MIMEApplication(content, _subtype=mimetype.split('/')[-1])
            part.add_header('Content-Disposition', 'attachment', filename=filename)
            root.attach(part)
        return root

    def _deliver(self, config: SmtpConfig, message: OutgoingEmail) -> None:
        mime = self._build(config, message)
        if config.encryption == 'ssl':
            server: Any = smtplib.SMTP_SSL(config.host, config.port, timeout=30)
        else:
            server = smtplib.SMTP(config.host, config.port, timeout=30)
        with server:
            if config.encryption == 'tls':
                server.starttls()
            if config.username:
                server.login(config.username, config.password)
            server.send_message(mime)


def personalise(template: str, subscriber: Dict[str, Any]) -> str:
    return (
        template.replace('{{first_name}}', subscriber.get('first_name') or '')
        .replace('{{last_name}}', subscriber.get('last_name') or '')
        .replace('{{email}}', subscriber.get('email') or '')
    )


def _unsubscribe_serializer(secret: str) -> URLSafeSerializer:
    return URLSafeSerializer(secret, salt=UNSUBSCRIBE_SALT)


def unsubscribe_token(email: str, secret: str) -> str:
    return _unsubscribe_serializer(secret).dumps(email.strip().lower())


def read_unsubscribe_token(token: str, secret: str) -> Optional[str]:
    """Return the email address signed into ``token``, or ``None`` when it was tampered with."""

    try:
        email = _unsubscribe_serializer(secret).loads(token)
    except BadSignature:
        return None
    return email if isinstance(email, str) else None


def newsletter_html(content: str, email: str, site_url: str, secret: str) -> str:
    unsubscribe = f"{site_url.rstrip('/')}/unsubscribe?token={quote(unsubscribe_token(email, secret))}"
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'{content}'
        '<hr style="margin: 32px 0; border: none; border-top: 1px solid #eee;" />'
        '<p style="font-size: 12px; color: #888;">'
        'You are receiving this email because you subscribed to The Fringe newsletter. '
        f'<a href="{unsubscribe}">Unsubscribe</a>'
        '</p></div>'
    )

"""
Email Provider Service
Adapter pattern for email transports (dev logging, SMTP, Amazon SES)
"""
import logging
import smtplib
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Deque, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..config import config
from ..exceptions import EmailProviderError

logger = logging.getLogger(__name__)

# Messages kept in memory by the dev provider; older ones drop off
DEV_OUTBOX_LIMIT = 100


@dataclass
class EmailMessage:
    """Email message structure"""
    to: List[str]
    subject: str
    html_body: str
    text_body: Optional[str] = None
    from_address: Optional[str] = None
    reply_to: Optional[str] = None
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)
    tags: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.to, str):
            self.to = [self.to]


@dataclass
class EmailResult:
    message_id: str
    provider: str


class EmailProvider(ABC):
    """
    Abstract email provider interface

    Implementations:
    - DevEmailProvider: Logs emails (development, tests)
    - SMTPEmailProvider: Sends via SMTP with STARTTLS
    - SESEmailProvider: Sends via Amazon SES
    """

    name = "abstract"

    @abstractmethod
    def send(self, message: EmailMessage) -> EmailResult:
        """
        Send an email

        Args:
            message: Email message to send

        Returns:
            EmailResult with the provider's message ID

        Raises:
            EmailProviderError: transport refused or failed
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the provider is configured and ready to send"""


class DevEmailProvider(EmailProvider):
    """Development email provider - logs emails instead of sending"""

    name = "dev"

    def __init__(self, limit: int = DEV_OUTBOX_LIMIT):
        self.sent: Deque[EmailMessage] = deque(maxlen=limit)

    def send(self, message: EmailMessage) -> EmailResult:
        logger.info("=" * 60)
        logger.info("📧 EMAIL (DEV MODE - NOT ACTUALLY SENT)")
        logger.info(f"To: {', '.join(message.to)}")
        logger.info(f"From: {message.from_address or config.EMAIL_FROM_ADDRESS}")
        if message.reply_to:
            logger.info(f"Reply-To: {message.reply_to}")
        logger.info(f"Subject: {message.subject}")
        logger.info("-" * 60)
        logger.info(message.text_body or message.html_body)
        logger.info("=" * 60)

        self.sent.append(message)
        return EmailResult(message_id=f"dev-{uuid.uuid4().hex}", provider=self.name)

    def is_available(self) -> bool:
        return True


class SMTPEmailProvider(EmailProvider):
    """
    SMTP email provider

    Configured via SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD
    """

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        user: Optional[str],
        password: Optional[str],
        from_address: str,
        use_tls: bool = True,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_address = from_address
        self.use_tls = use_tls

    def _build_mime(self, message: EmailMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = message.from_address or self.from_address
        msg["To"] = ", ".join(message.to)
        if message.cc:
            msg["Cc"] = ", ".join(message.cc)
        if message.reply_to:
            msg["Reply-To"] = message.reply_to
        message_id = f"<{uuid.uuid4().hex}@{self.host}>"
        msg["Message-ID"] = message_id

        if message.text_body:
            msg.attach(MIMEText(message.text_body, "plain"))
        msg.attach(MIMEText(message.html_body, "html"))
        return msg

    def send(self, message: EmailMessage) -> EmailResult:
        msg = self._build_mime(message)
        recipients = list(message.to) + list(message.cc) + list(message.bcc)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                if self.use_tls:
                    server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg, to_addrs=recipients)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send to {', '.join(message.to)} failed: {e}")
            raise EmailProviderError(f"SMTP send failed: {e}") from e

        logger.info(f"✓ Email sent via SMTP to {', '.join(message.to)}: {message.subject}")
        return EmailResult(message_id=msg["Message-ID"], provider=self.name)

    def is_available(self) -> bool:
        return bool(self.host and self.port and self.from_address)


class SESEmailProvider(EmailProvider):
    """Amazon SES provider (boto3 ses.send_email)"""

    name = "ses"

    def __init__(self, region: str, from_address: str, client=None):
        self.region = region
        self.from_address = from_address
        self.client = client or boto3.client(
            "ses",
            region_name=region,
            aws_access_key_id=config.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=config.AWS_SECRET_ACCESS_KEY,
        )

    def send(self, message: EmailMessage) -> EmailResult:
        destination = {"ToAddresses": list(message.to)}
        if message.cc:
            destination["CcAddresses"] = list(message.cc)
        if message.bcc:
            destination["BccAddresses"] = list(message.bcc)

        body = {"Html": {"Data": message.html_body, "Charset": "UTF-8"}}
        if message.text_body:
            body["Text"] = {"Data": message.text_body, "Charset": "UTF-8"}

        kwargs = {
            "Source": message.from_address or self.from_address,
            "Destination": destination,
            "Message": {
                "Subject": {"Data": message.subject, "Charset": "UTF-8"},
                "Body": body,
            },
        }
        if message.reply_to:
            kwargs["ReplyToAddresses"] = [message.reply_to]
        if message.tags:
            kwargs["Tags"] = [{"Name": k, "Value": str(v)} for k, v in message.tags.items()]

        try:
            response = self.client.send_email(**kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"SES send to {', '.join(message.to)} failed: {e}")
            raise EmailProviderError(f"SES send failed: {e}") from e

        message_id = response["MessageId"]
        logger.info(f"✓ Email sent via SES to {', '.join(message.to)}: {message_id}")
        return EmailResult(message_id=message_id, provider=self.name)

    def is_available(self) -> bool:
        return bool(self.client and self.from_address)


# Singleton instance
_email_provider: Optional[EmailProvider] = None


def _create_provider() -> EmailProvider:
    provider_name = (config.EMAIL_PROVIDER or "").lower()

    if provider_name == "ses":
        logger.info(f"✓ Email provider: SES ({config.AWS_SES_REGION})")
        return SESEmailProvider(region=config.AWS_SES_REGION, from_address=config.EMAIL_FROM_ADDRESS)

    if provider_name == "smtp":
        if not config.SMTP_HOST:
            raise EmailProviderError("EMAIL_PROVIDER=smtp requires SMTP_HOST")
        logger.info(f"✓ Email provider: SMTP ({config.SMTP_HOST}:{config.SMTP_PORT})")
        return SMTPEmailProvider(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            user=config.SMTP_USER,
            password=config.SMTP_PASSWORD,
            from_address=config.EMAIL_FROM_ADDRESS,
        )

    logger.info("📧 Email provider: DevEmailProvider (logs only)")
    return DevEmailProvider()


def get_email_provider() -> EmailProvider:
    """
    Get or create the email provider singleton selected by EMAIL_PROVIDER
    ('ses', 'smtp', 'dev'; dev when unset)
    """
    global _email_provider
    if _email_provider is None:
        _email_provider = _create_provider()
    return _email_provider


def reset_email_provider() -> None:
    global _email_provider
    _email_provider = None

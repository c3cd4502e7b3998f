"""
Email notification channel

Sends SOS alerts over SMTP (STARTTLS or implicit SSL) with a plain text and
HTML body and, when the segment points at a readable local file, the audio
recording as an attachment.
"""

import asyncio
import logging
import mimetypes
import smtplib
import socket
import ssl
from dataclasses import dataclass
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlparse

from safewatch.core.errors import TransientNetworkError
from safewatch.models.safety import AlertPayload, ChannelType, EmergencyContact, SendResult
from .base import NotificationChannel
from . import templates


@dataclass
class EmailChannelConfig:
    """SMTP settings for the email channel"""
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_use_ssl: bool = False
    smtp_timeout: int = 30
    from_address: str = "no-reply@safewatch.example.com"
    from_name: str = "SafeWatch"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmailChannelConfig':
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in fields})


class EmailChannel(NotificationChannel):
    """SMTP email channel"""

    channel_type = ChannelType.EMAIL

    def __init__(self, config: EmailChannelConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.emails_sent = 0
        self.send_failures = 0

    def supports(self, contact: EmergencyContact) -> bool:
        return bool(contact.email and '@' in contact.email)

    async def send(self, contact: EmergencyContact, payload: AlertPayload) -> SendResult:
        message = self._create_mime_message(contact, payload)
        loop = asyncio.get_running_loop()

        try:
            await loop.run_in_executor(None, self._deliver, contact.email, message)

        except smtplib.SMTPAuthenticationError as e:
            self.logger.error(f"SMTP authentication failed: {e}")
            return self._failed(f"Authentication failed: {e}", e.smtp_code)

        except smtplib.SMTPRecipientsRefused as e:
            self.logger.error(f"Recipient refused for contact {contact.id}: {e}")
            return self._failed(f"Recipient refused: {e}")

        except smtplib.SMTPSenderRefused as e:
            self.logger.error(f"Sender refused: {e}")
            return self._failed(f"Sender refused: {e}", e.smtp_code)

        except smtplib.SMTPDataError as e:
            self.logger.error(f"SMTP data error for contact {contact.id}: {e}")
            return self._failed(f"Data error: {e}", e.smtp_code)

        except (smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected) as e:
            self.send_failures += 1
            raise TransientNetworkError(f"SMTP connection failed: {e}") from e

        # SMTPException subclasses OSError; protocol errors are not retried
        except smtplib.SMTPException as e:
            self.logger.error(f"Unexpected SMTP error for contact {contact.id}: {e}")
            return self._failed(f"SMTP error: {e}")

        except (socket.gaierror, socket.timeout, OSError) as e:
            self.send_failures += 1
            raise TransientNetworkError(f"SMTP connection failed: {e}") from e

        self.emails_sent += 1
        self.logger.info(f"SOS email sent to contact {contact.id} for alert {payload.alert.id}")
        return SendResult(success=True)

    def _deliver(self, recipient: str, message: MIMEMultipart) -> None:
        """Open a connection, authenticate and send (runs in an executor)"""
        if self.config.smtp_use_ssl:
            context = ssl.create_default_context()
            server = smtplib.SMTP_SSL(
                self.config.smtp_host,
                self.config.smtp_port,
                timeout=self.config.smtp_timeout,
                context=context
            )
        else:
            server = smtplib.SMTP(
                self.config.smtp_host,
                self.config.smtp_port,
                timeout=self.config.smtp_timeout
            )

        try:
            if not self.config.smtp_use_ssl and self.config.smtp_use_tls:
                server.starttls(context=ssl.create_default_context())

            if self.config.smtp_username and self.config.smtp_password:
                server.login(self.config.smtp_username, self.config.smtp_password)

            server.sendmail(self.config.from_address, [recipient], message.as_string())
        finally:
            try:
                server.quit()
            except (smtplib.SMTPException, OSError) as e:
                self.logger.debug(f"Error during SMTP disconnect: {e}")

    def _create_mime_message(self, contact: EmergencyContact, payload: AlertPayload) -> MIMEMultipart:
        msg = MIMEMultipart('mixed')
        msg['From'] = formataddr((self.config.from_name, self.config.from_address))
        msg['To'] = formataddr((contact.name, contact.email))
        msg['Subject'] = templates.build_subject(payload.alert)
        msg['Date'] = formatdate(localtime=False)
        msg['Message-ID'] = make_msgid(domain=self.config.from_address.split('@')[-1])
        msg['X-SafeWatch-Alert-ID'] = payload.alert.id
        msg['X-Priority'] = '1'

        body = MIMEMultipart('alternative')
        body.attach(MIMEText(templates.build_text(payload), 'plain', 'utf-8'))
        body.attach(MIMEText(templates.build_html(payload), 'html', 'utf-8'))
        msg.attach(body)

        audio_path = self._local_audio_path(payload)
        if audio_path is not None:
            try:
                content_type, _ = mimetypes.guess_type(str(audio_path))
                maintype, subtype = (content_type or 'audio/mp4').split('/', 1)
                attachment = MIMEBase(maintype, subtype)
                attachment.set_payload(audio_path.read_bytes())
                encoders.encode_base64(attachment)
                attachment.add_header(
                    'Content-Disposition',
                    'attachment',
                    filename=f"sos-recording-{payload.sequence}{audio_path.suffix or '.m4a'}"
                )
                msg.attach(attachment)
            except OSError as e:
                self.logger.warning(f"Failed to attach recording {audio_path}: {e}")

        return msg

    def _local_audio_path(self, payload: AlertPayload) -> Optional[Path]:
        if not payload.segment or not payload.segment.has_audio:
            return None

        parsed = urlparse(payload.segment.uri)
        if parsed.scheme not in ('', 'file'):
            return None

        path = Path(unquote(parsed.path) if parsed.scheme == 'file' else payload.segment.uri)
        return path if path.is_file() else None

    def _failed(self, error: str, status: Optional[int] = None) -> SendResult:
        self.send_failures += 1
        return SendResult(success=False, error=error, provider_status=status)

import smtplib
import socket
from email.message import EmailMessage

from security.errors import DeliveryFailed
from utils.logging import get_logger

log = get_logger(__name__)

SUBJECT = "IllustAuto sign-in code"


def render_code_email(code: str, ttl_minutes: int) -> str:
    return (
        f"Your IllustAuto sign-in code: {code}\n\n"
        f"It expires in {ttl_minutes} minutes. If you did not ask for it, ignore this email."
    )


class SmtpEmailSender:
    """
    Delivers one-time codes over SMTP.

    send() either returns or raises DeliveryFailed with reason
    timeout | rejected | unauthenticated. It never retries.
    """

    def __init__(self, host=None, port=587, username=None, password=None,
                 from_email=None, use_tls=True, timeout=10.0,
                 console_fallback=False, ttl_minutes=5):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email or username
        self.use_tls = use_tls
        self.timeout = timeout
        self.console_fallback = console_fallback
        self.ttl_minutes = ttl_minutes

    @classmethod
    def from_config(cls, config):
        return cls(
            host=config.get("SMTP_HOST"),
            port=config.get("SMTP_PORT", 587),
            username=config.get("SMTP_USERNAME"),
            password=config.get("SMTP_PASSWORD"),
            from_email=config.get("SMTP_FROM_EMAIL"),
            use_tls=config.get("SMTP_USE_TLS", True),
            timeout=config.get("EMAIL_SEND_TIMEOUT_SECONDS", 10.0),
            console_fallback=config.get("EMAIL_CONSOLE_FALLBACK", False),
            ttl_minutes=max(1, config.get("AUTH_CODE_TTL_SECONDS", 300) // 60),
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.from_email)

    def send(self, to_email: str, code: str) -> None:
        if not self.configured:
            if self.console_fallback:
                # development only: nothing leaves the process
                log.warning("email_console_fallback", to=to_email, sign_in=code)
                return
            raise DeliveryFailed(DeliveryFailed.REJECTED, "Email not configured")

        msg = EmailMessage()
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg["Subject"] = SUBJECT
        msg.set_content(render_code_email(code, self.ttl_minutes))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (socket.timeout, TimeoutError) as exc:
            log.error("email_send_failed", reason=DeliveryFailed.TIMEOUT, error=str(exc))
            raise DeliveryFailed(DeliveryFailed.TIMEOUT) from exc
        except smtplib.SMTPAuthenticationError as exc:
            log.error("email_send_failed", reason=DeliveryFailed.UNAUTHENTICATED, error=str(exc))
            raise DeliveryFailed(DeliveryFailed.UNAUTHENTICATED) from exc
        except (smtplib.SMTPException, OSError) as exc:
            log.error("email_send_failed", reason=DeliveryFailed.REJECTED, error=str(exc))
            raise DeliveryFailed(DeliveryFailed.REJECTED) from exc

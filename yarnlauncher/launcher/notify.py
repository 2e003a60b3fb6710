import logging
import smtplib
from email.message import EmailMessage
from typing import TYPE_CHECKING, List, Optional

import jinja2

from yarnlauncher.schemas import ApplicationReport

if TYPE_CHECKING:
    from yarnlauncher.config.config import NotificationSettings

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "Not available"

REPORT_TEMPLATE = """\
YARN ApplicationReport:{% if report is none %} {{ not_available }}{% else %}

	Application ID: {{ report.application_id }}
	Application attempt ID: {{ report.current_attempt_id }}
	Final application status: {{ report.final_status.value }}
	Start time: {{ report.start_time }}
	Finish time: {{ report.finish_time }}
{% if report.diagnostics %}
	Diagnostics: {{ report.diagnostics }}
{% endif %}
{% if report.resource_usage %}
	Used containers: {{ report.resource_usage.num_used_containers }}
{% if report.resource_usage.used_resources %}
	Used memory (MBs): {{ report.resource_usage.used_resources.memory_mb }}
	Used vcores: {{ report.resource_usage.used_resources.vcores }}
{% endif %}
{% endif %}
{% endif %}
"""

_env = jinja2.Environment(trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)
_template = _env.from_string(REPORT_TEMPLATE)


def render_report(report: Optional[ApplicationReport]) -> str:
    return _template.render(report=report, not_available=NOT_AVAILABLE)


class EmailNotifier:
    def __init__(
        self,
        application_name: str,
        recipients: List[str],
        sender: str,
        smtp_host: str = "localhost",
        smtp_port: int = 25,
        timeout: float = 30.0,
    ) -> None:
        self.application_name = application_name
        self.recipients = list(recipients)
        self.sender = sender
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: "NotificationSettings", application_name: str) -> "EmailNotifier":
        return cls(
            application_name,
            recipients=settings.recipients,
            sender=settings.sender,
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
        )

    @property
    def subject(self) -> str:
        return f"YARN application {self.application_name} completed"

    def build_message(self, report: Optional[ApplicationReport]) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = self.subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg.set_content(render_report(report))
        return msg

    def send_shutdown_notification(self, report: Optional[ApplicationReport]) -> bool:
        """Send the end-of-run email. Failures are logged; returns True if sent."""
        if not self.recipients:
            logger.warning("No notification recipients configured; not sending shutdown email")
            return False
        msg = self.build_message(report)
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as smtp:
                smtp.send_message(msg)
        except (OSError, smtplib.SMTPException):
            logger.exception("Failed to send email notification on shutdown")
            return False
        logger.info(f"Sent shutdown notification to {', '.join(self.recipients)}")
        return True

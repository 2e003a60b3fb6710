import smtplib
from datetime import datetime

import pytest

from yarnlauncher.launcher import EmailNotifier
from yarnlauncher.launcher.notify import NOT_AVAILABLE, render_report
from yarnlauncher.schemas import (
    ApplicationReport,
    ApplicationState,
    FinalApplicationStatus,
    Resource,
    ResourceUsage,
)


@pytest.fixture
def report():
    return ApplicationReport(
        application_id="application_1700000000000_0003",
        name="ingest",
        state=ApplicationState.FAILED,
        final_status=FinalApplicationStatus.FAILED,
        diagnostics="AM container exited with code 1",
        current_attempt_id="appattempt_1700000000000_0003_000002",
        start_time=datetime(2024, 5, 20, 8, 0),
        finish_time=datetime(2024, 5, 20, 9, 30),
        resource_usage=ResourceUsage(
            num_used_containers=4, used_resources=Resource(memory_mb=8192, vcores=4)
        ),
    )


@pytest.fixture
def notifier():
    return EmailNotifier("ingest", ["ops@example.com", "etl@example.com"], sender="launcher@example.com")


def test_render_without_report():
    assert render_report(None).strip() == f"YARN ApplicationReport: {NOT_AVAILABLE}"


def test_render_report(report):
    text = render_report(report)
    assert "Application ID: application_1700000000000_0003" in text
    assert "Application attempt ID: appattempt_1700000000000_0003_000002" in text
    assert "Final application status: FAILED" in text
    assert "Start time: 2024-05-20 08:00:00" in text
    assert "Diagnostics: AM container exited with code 1" in text
    assert "Used containers: 4" in text
    assert "Used memory (MBs): 8192" in text
    assert "Used vcores: 4" in text
    assert NOT_AVAILABLE not in text


def test_render_omits_missing_sections(report):
    text = render_report(report.model_copy(update={"diagnostics": "", "resource_usage": None}))
    assert "Diagnostics" not in text
    assert "Used containers" not in text


def test_message(notifier, report):
    msg = notifier.build_message(report)
    assert msg["Subject"] == "YARN application ingest completed"
    assert msg["To"] == "ops@example.com, etl@example.com"
    assert msg["From"] == "launcher@example.com"
    assert "Final application status: FAILED" in msg.get_content()


def test_send(notifier, report, mocker):
    smtp = mocker.patch("yarnlauncher.launcher.notify.smtplib.SMTP")
    assert notifier.send_shutdown_notification(report)
    smtp.assert_called_once_with("localhost", 25, timeout=30.0)
    sent = smtp.return_value.__enter__.return_value.send_message.call_args.args[0]
    assert sent["Subject"] == notifier.subject


def test_no_recipients(report, mocker, caplog):
    smtp = mocker.patch("yarnlauncher.launcher.notify.smtplib.SMTP")
    assert not EmailNotifier("ingest", [], sender="x@example.com").send_shutdown_notification(report)
    smtp.assert_not_called()
    assert "No notification recipients" in caplog.text


@pytest.mark.parametrize("error", [ConnectionRefusedError("refused"), smtplib.SMTPRecipientsRefused({})])
def test_send_failure_is_logged(notifier, mocker, caplog, error):
    mocker.patch("yarnlauncher.launcher.notify.smtplib.SMTP", side_effect=error)
    assert not notifier.send_shutdown_notification(None)
    assert "Failed to send email notification" in caplog.text

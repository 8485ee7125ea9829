"""
Run log collection and email reporting.

The Reporter keeps every line written during an update run, echoes each one
to the operator as it is produced and, at the end of the run, mails the
whole log to the configured recipients.

Reports go through the primary Mailer (usually SMTP). When no primary is
configured, or it fails, the failure is logged and the report is piped to
the local ``sendmail`` binary instead.
"""

from __future__ import annotations

import getpass
import smtplib
import socket
import subprocess
from collections.abc import Callable, Iterable
from datetime import datetime
from email.message import EmailMessage
from typing import Protocol

from pydantic import BaseModel, Field

from selfupdate.config import SmtpConfig
from selfupdate.logging import RUN_LOG_LOGGER_NAME, get_logger

logger = get_logger(__name__)
run_logger = get_logger(RUN_LOG_LOGGER_NAME)

SUCCESS_SUBJECT_PREFIX = "Update success"
FAILURE_SUBJECT_PREFIX = "UPDATE FAILED"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ReportMessage(BaseModel):
    """
    Execution report email.

    Attributes:
        from_address: Sender address.
        to_addresses: Recipient addresses.
        subject: Subject line.
        body: Plain text body.
    """

    from_address: str = Field(..., description="Sender address")
    to_addresses: list[str] = Field(..., description="Recipient addresses")
    subject: str = Field(..., description="Subject line")
    body: str = Field(default="", description="Plain text body")

    def to_email(self) -> EmailMessage:
        """Render the report as an RFC 5322 message."""
        message = EmailMessage()
        message["From"] = self.from_address
        message["To"] = ", ".join(self.to_addresses)
        message["Reply-To"] = self.from_address
        message["Subject"] = self.subject
        message.set_content(self.body, charset="utf-8")
        return message


class Mailer(Protocol):
    """Mail transport contract."""

    def send(self, message: ReportMessage) -> None:
        """Deliver the message or raise."""
        ...


class SmtpMailer:
    """Sends reports through an SMTP server."""

    def __init__(self, config: SmtpConfig) -> None:
        self.config = config

    def send(self, message: ReportMessage) -> None:
        with smtplib.SMTP(
            self.config.host, self.config.port, timeout=self.config.timeout
        ) as smtp:
            if self.config.use_tls:
                smtp.starttls()
            if self.config.username:
                smtp.login(self.config.username, self.config.password or "")
            smtp.send_message(message.to_email())


class SendmailMailer:
    """Pipes reports to the local ``sendmail`` binary."""

    def __init__(self, bin_path: str = "sendmail") -> None:
        self.bin_path = bin_path

    def send(self, message: ReportMessage) -> None:
        """
        Deliver the message with ``sendmail -t -i``.

        Raises:
            OSError: If sendmail cannot be executed.
            subprocess.CalledProcessError: If sendmail exits with an error.
        """
        subprocess.run(  # noqa: S603 - fixed argument list
            [self.bin_path, "-t", "-i"],
            input=message.to_email().as_bytes(),
            check=True,
        )


def get_host_name() -> str:
    """Server host name."""
    return socket.gethostname() or "localhost"


def get_user_name() -> str:
    """Name of the user running the update."""
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "selfupdate"


class Reporter:
    """
    Collects run log lines and sends the execution report.

    Attributes:
        emails: Recipient addresses; reports are skipped when empty.
        mailer: Primary transport, may be None.
        fallback_mailer: Transport used when the primary is unset or fails.
    """

    def __init__(
        self,
        emails: Iterable[str] = (),
        mailer: Mailer | None = None,
        fallback_mailer: Mailer | None = None,
        *,
        host_name: Callable[[], str] = get_host_name,
        user_name: Callable[[], str] = get_user_name,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.emails = list(dict.fromkeys(emails))
        self.mailer = mailer
        self.fallback_mailer = fallback_mailer or SendmailMailer()
        self._host_name = host_name
        self._user_name = user_name
        self._clock = clock
        self._lines: list[str] = []

    @property
    def lines(self) -> list[str]:
        """Lines logged since the last flush."""
        return list(self._lines)

    def log(self, message: str) -> None:
        """Append a line to the run log and echo it to the operator."""
        self._lines.append(message)
        run_logger.info(message)

    def flush(self) -> list[str]:
        """Return the accumulated lines and clear the log."""
        lines, self._lines = self._lines, []
        return lines

    def compose(self, subject_prefix: str) -> ReportMessage:
        """
        Build the report from the accumulated log, clearing it.

        Args:
            subject_prefix: Outcome prefix of the subject line.

        Returns:
            The report message.
        """
        host_name = self._host_name()
        return ReportMessage(
            from_address=f"{self._user_name()}@{host_name}",
            to_addresses=self.emails,
            subject=(
                f"{subject_prefix}: {host_name} at "
                f"{self._clock().strftime(DATE_FORMAT)}"
            ),
            body="\n".join(self.flush()),
        )

    def report_success(self) -> ReportMessage | None:
        """Send the success report."""
        return self.report(SUCCESS_SUBJECT_PREFIX)

    def report_fail(self) -> ReportMessage | None:
        """Send the failure report."""
        return self.report(FAILURE_SUBJECT_PREFIX)

    def report(self, subject_prefix: str) -> ReportMessage | None:
        """
        Compose and send the report.

        Returns:
            The sent message, or None if no recipients are configured.
        """
        if not self.emails:
            self.flush()
            return None

        message = self.compose(subject_prefix)
        self.send(message)
        return message

    def send(self, message: ReportMessage) -> None:
        """Send through the primary mailer, falling back to sendmail."""
        if self.mailer is not None:
            try:
                self.mailer.send(message)
                return
            except Exception as e:
                logger.error(
                    f"Unable to send report via primary mailer: {e}",
                    extra={"subject": message.subject},
                )
        else:
            logger.warning("Primary mailer is not configured, using sendmail")

        self.fallback_mailer.send(message)

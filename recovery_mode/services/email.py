import re
from typing import Callable

from recovery_mode.core.db.options import OptionStore
from recovery_mode.core.errors import EmailFailed, EmailSentAlready, StorageError
from recovery_mode.core.logger import get_logger
from recovery_mode.core.models import ErrorInfo, Extension
from recovery_mode.core.timeutil import current_time, human_time_diff
from recovery_mode.services.extensions import ExtensionRegistry
from recovery_mode.services.links import RecoveryModeLinkService
from recovery_mode.services.mailer import Mailer

logger = get_logger(__name__)

RATE_LIMIT_OPTION = "recovery_mode_email_last_sent"

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MESSAGE_TEMPLATE = """Howdy,

Your site recently crashed on {location} and may not be working as expected.
{cause}
Click the link below to initiate recovery mode and fix the problem.

This link expires in {expires}.

{link} {details}
"""


def _join_names(names: list[str]) -> str:
    if len(names) <= 1:
        return "".join(names)
    return f"{', '.join(names[:-1])} and {names[-1]}"


class RecoveryModeEmailService:
    """Sends the recovery mode link, at most once per rate limit interval."""

    def __init__(
        self,
        options: OptionStore,
        links: RecoveryModeLinkService,
        mailer: Mailer,
        registry: ExtensionRegistry,
        site_name: str = "My Site",
        admin_email: str = "",
        recovery_mode_email: str | None = None,
        clock: Callable[[], int] = current_time,
    ):
        self.options = options
        self.links = links
        self.mailer = mailer
        self.registry = registry
        self.site_name = site_name
        self.admin_email = admin_email
        self.recovery_mode_email = recovery_mode_email
        self.clock = clock

    def maybe_send_recovery_mode_email(
        self,
        rate_limit: int,
        error: ErrorInfo,
        extension: Extension | None,
        link_ttl: int | None = None,
        location: str = "",
    ) -> None:
        """
        Send the recovery mode email if the rate limit has not been hit.

        Args:
            rate_limit: Seconds to wait between two emails
            error: The error that triggered the email
            extension: The extension that caused the error
            link_ttl: Seconds the emailed link stays valid, for the message
            location: Where the site crashed, for the message

        Raises:
            EmailSentAlready: An email was sent within the rate limit
            StorageError: The send time could not be recorded
            EmailFailed: The mail transport failed
        """
        now = self.clock()
        last_sent = self.options.get(RATE_LIMIT_OPTION)

        if not last_sent or now > last_sent + rate_limit:
            if not self.options.update(RATE_LIMIT_OPTION, now):
                raise StorageError("Could not update the email last sent time.")

            if self.send_recovery_mode_email(error, extension, link_ttl or rate_limit, location):
                return

            raise EmailFailed()

        logger.info("Recovery mode email suppressed by the rate limit")
        raise EmailSentAlready(
            f"A recovery link was already sent {human_time_diff(last_sent, now)} ago. "
            f"Please wait another {human_time_diff(last_sent + rate_limit, now)} before requesting a new email."
        )

    def clear_rate_limit(self) -> bool:
        """Allow a new recovery mode email to be sent immediately."""
        return self.options.delete(RATE_LIMIT_OPTION)

    def send_recovery_mode_email(self, error: ErrorInfo, extension: Extension | None, link_ttl: int, location: str = "") -> bool:
        url = self.links.generate_url()

        if extension is not None:
            cause = self.get_cause(extension)
            header = "Error Details"
            details = f"\n\n{header}\n{'=' * len(header)}\n{error.describe()}"
        else:
            cause = details = ""

        message = MESSAGE_TEMPLATE.format(
            location=location or self.site_name,
            cause=f"\n{cause}\n" if cause else "\n",
            expires=human_time_diff(self.clock(), self.clock() + link_ttl),
            link=url,
            details=details,
        )

        to = self.get_recovery_mode_email_address()
        sent = self.mailer.send(to, f"[{self.site_name}] Your Site Experienced an Issue", message, {})

        if sent:
            logger.info(f"Recovery mode email sent to {to}")
        else:
            logger.error(f"Recovery mode email to {to} could not be sent")
        return sent

    def get_recovery_mode_email_address(self) -> str:
        if self.recovery_mode_email and EMAIL_PATTERN.match(self.recovery_mode_email):
            return self.recovery_mode_email
        return self.admin_email

    def get_cause(self, extension: Extension) -> str:
        if extension.type == "plugin":
            names = self.registry.plugin_names(extension.slug)
            noun = "plugin" if len(names) == 1 else "plugins"
            return f"This may be caused by the {_join_names(names)} {noun}."

        return f"This may be caused by the {self.registry.theme_name(extension.slug)} theme."

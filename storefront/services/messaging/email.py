"""Email collaborator contract.

Email delivery mechanics are out of scope for this service. Deployments
inject a real EmailSender; LoggingEmailSender is the development stand-in
and is never wired in production.
"""

from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class EmailSender(Protocol):
    async def send_code(self, email: str, code: str, purpose: str, store_name: str) -> bool: ...


class LoggingEmailSender:
    """Logs the code so a developer can complete email flows locally."""

    async def send_code(self, email: str, code: str, purpose: str, store_name: str) -> bool:
        logger.warning(
            "email_code_logged", email=email, purpose=purpose, store=store_name, code=code
        )
        return True

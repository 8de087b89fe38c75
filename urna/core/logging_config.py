"""Structured logging configuration for the application."""

from datetime import UTC, datetime
import json
import logging
import sys

from urna.core.config import settings


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure application logging based on environment."""
    log_level = logging.INFO
    if settings.ENVIRONMENT == "development":
        log_level = logging.DEBUG
    elif settings.ENVIRONMENT == "production":
        log_level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if settings.ENVIRONMENT == "production":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class SecurityLogger:
    """Specialized logger for security events."""

    def __init__(self) -> None:
        self.logger = get_logger("security")

    def log_login_attempt(
        self,
        email: str,
        success: bool,
        ip_address: str | None = None,
        user_agent: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Log a login attempt."""
        extra_fields = {
            "event_type": "login_attempt",
            "email": email,
            "success": success,
            "ip_address": ip_address,
            "user_agent": user_agent,
        }

        if not success and reason:
            extra_fields["failure_reason"] = reason

        message = f"Login {'succeeded' if success else 'failed'} for operator: {email}"

        if success:
            self.logger.info(message, extra={"extra_fields": extra_fields})
        else:
            self.logger.warning(message, extra={"extra_fields": extra_fields})

    def log_token_creation(self, user_id: str, token_type: str = "access") -> None:
        """Log token creation."""
        self.logger.info(
            f"Token created for operator: {user_id}",
            extra={
                "extra_fields": {
                    "event_type": "token_created",
                    "user_id": user_id,
                    "token_type": token_type,
                }
            },
        )

    def log_unauthorized_access(
        self,
        resource: str,
        user_id: str | None = None,
        ip_address: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Log unauthorized access attempt."""
        self.logger.warning(
            f"Unauthorized access attempt to: {resource}",
            extra={
                "extra_fields": {
                    "event_type": "unauthorized_access",
                    "resource": resource,
                    "user_id": user_id,
                    "ip_address": ip_address,
                    "reason": reason,
                }
            },
        )

    def log_operator_registration(self, email: str, role: str, created_by: str) -> None:
        """Log new operator registration."""
        self.logger.info(
            f"New operator registered: {email}",
            extra={
                "extra_fields": {
                    "event_type": "operator_registration",
                    "email": email,
                    "role": role,
                    "created_by": created_by,
                }
            },
        )


class VoteLogger:
    """
    Logger for ballot events.

    Only the election, voter registration number and outcome are recorded,
    never the selection itself.
    """

    def __init__(self) -> None:
        self.logger = get_logger("votes")

    def log_vote_accepted(
        self, election_id: str, registration_number: str, booth_id: str | None = None
    ) -> None:
        self.logger.info(
            f"Vote registered for voter {registration_number} in election {election_id}",
            extra={
                "extra_fields": {
                    "event_type": "vote_accepted",
                    "election_id": election_id,
                    "registration_number": registration_number,
                    "booth_id": booth_id,
                }
            },
        )

    def log_vote_rejected(
        self, election_id: str, registration_number: str, code: str
    ) -> None:
        self.logger.warning(
            f"Vote rejected ({code}) for voter {registration_number} in election {election_id}",
            extra={
                "extra_fields": {
                    "event_type": "vote_rejected",
                    "election_id": election_id,
                    "registration_number": registration_number,
                    "code": code,
                }
            },
        )


# Global logger instances
security_logger = SecurityLogger()
vote_logger = VoteLogger()

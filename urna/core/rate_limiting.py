"""Rate limiting for login attempts and booth vote submissions."""

from collections import defaultdict
from datetime import UTC, datetime, timedelta
import threading

from urna.core.config import settings


class RateLimiter:
    """
    Sliding-window in-memory rate limiter.

    State is per process; a fleet of API instances limits per instance.
    """

    def __init__(self) -> None:
        self._attempts: dict[str, list[datetime]] = defaultdict(list)
        self._lock = threading.Lock()

    def is_rate_limited(
        self, identifier: str, max_attempts: int, window_seconds: int
    ) -> tuple[bool, int | None]:
        """
        Check if an identifier is rate limited.

        Returns:
            Tuple of (is_limited, retry_after_seconds)
        """
        with self._lock:
            now = datetime.now(UTC)
            cutoff = now - timedelta(seconds=window_seconds)

            self._attempts[identifier] = [
                timestamp for timestamp in self._attempts[identifier] if timestamp > cutoff
            ]

            if len(self._attempts[identifier]) >= max_attempts:
                oldest_attempt = min(self._attempts[identifier])
                retry_after = (
                    oldest_attempt + timedelta(seconds=window_seconds) - now
                ).total_seconds()
                return True, int(max(1, retry_after))

            return False, None

    def record_attempt(self, identifier: str) -> None:
        """Record an attempt for the given identifier."""
        with self._lock:
            self._attempts[identifier].append(datetime.now(UTC))

    def reset(self, identifier: str) -> None:
        """Forget all attempts for an identifier."""
        with self._lock:
            self._attempts.pop(identifier, None)


class LoginRateLimiter:
    """Rate limiter for operator logins with temporary lockout."""

    MAX_ATTEMPTS_PER_EMAIL = 5
    MAX_ATTEMPTS_PER_IP = 10
    WINDOW_SECONDS = 300
    LOCKOUT_DURATION = 900

    def __init__(self) -> None:
        self.email_limiter = RateLimiter()
        self.ip_limiter = RateLimiter()
        self._lockouts: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def check_login_allowed(
        self, email: str, ip_address: str | None = None
    ) -> tuple[bool, str | None]:
        """
        Check if a login attempt is allowed.

        Returns:
            Tuple of (is_allowed, error_message)
        """
        remaining = self._lockout_remaining(email)
        if remaining:
            return False, f"Account temporarily locked. Try again in {remaining} seconds"

        email_limited, _ = self.email_limiter.is_rate_limited(
            email, self.MAX_ATTEMPTS_PER_EMAIL, self.WINDOW_SECONDS
        )
        if email_limited:
            self._lockout_account(email)
            return (
                False,
                f"Too many failed attempts. Account locked for {self.LOCKOUT_DURATION // 60} minutes",
            )

        if ip_address:
            ip_limited, ip_retry = self.ip_limiter.is_rate_limited(
                ip_address, self.MAX_ATTEMPTS_PER_IP, self.WINDOW_SECONDS
            )
            if ip_limited:
                return False, f"Too many requests from your IP. Try again in {ip_retry} seconds"

        return True, None

    def record_failed_attempt(self, email: str, ip_address: str | None = None) -> None:
        """Record a failed login attempt."""
        self.email_limiter.record_attempt(email)
        if ip_address:
            self.ip_limiter.record_attempt(ip_address)

    def record_successful_login(self, email: str, ip_address: str | None = None) -> None:
        """Reset counters after a successful login."""
        self.email_limiter.reset(email)
        if ip_address:
            self.ip_limiter.reset(ip_address)
        with self._lock:
            self._lockouts.pop(email, None)

    def _lockout_remaining(self, email: str) -> int:
        with self._lock:
            expiry = self._lockouts.get(email)
            if expiry is None:
                return 0
            remaining = int((expiry - datetime.now(UTC)).total_seconds())
            if remaining <= 0:
                del self._lockouts[email]
                return 0
            return remaining

    def _lockout_account(self, email: str) -> None:
        with self._lock:
            self._lockouts[email] = datetime.now(UTC) + timedelta(
                seconds=self.LOCKOUT_DURATION
            )


class VoteSubmissionRateLimiter:
    """Caps vote submissions per booth (or client IP when no booth is given)."""

    WINDOW_SECONDS = 60

    def __init__(self, max_per_minute: int) -> None:
        self.max_per_minute = max_per_minute
        self.limiter = RateLimiter()

    def check_submission_allowed(self, source: str) -> tuple[bool, str | None]:
        limited, retry_after = self.limiter.is_rate_limited(
            source, self.max_per_minute, self.WINDOW_SECONDS
        )
        if limited:
            return False, f"Too many vote submissions. Try again in {retry_after} seconds"
        return True, None

    def record_submission(self, source: str) -> None:
        self.limiter.record_attempt(source)


# Global rate limiter instances
login_rate_limiter = LoginRateLimiter()
vote_rate_limiter = VoteSubmissionRateLimiter(settings.VOTE_RATE_LIMIT_PER_MINUTE)

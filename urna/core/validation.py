"""Input validation utilities for operators and voter registry data."""

import re

_CPF_NON_DIGITS = re.compile(r"\D")
_REGISTRATION_RE = re.compile(r"^[A-Za-z0-9._-]{1,50}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class PasswordValidator:
    """Validate operator password strength."""

    MIN_LENGTH = 8
    MAX_LENGTH = 128

    COMMON_PASSWORDS = {
        "password",
        "123456",
        "12345678",
        "qwerty",
        "abc123",
        "letmein",
        "admin",
        "admin123",
        "senha123",
        "urna1234",
    }

    @classmethod
    def validate(cls, password: str) -> tuple[bool, str | None]:
        """
        Validate password strength.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if len(password) < cls.MIN_LENGTH:
            return False, f"Password must be at least {cls.MIN_LENGTH} characters long"

        if len(password) > cls.MAX_LENGTH:
            return False, f"Password must not exceed {cls.MAX_LENGTH} characters"

        if password.lower() in cls.COMMON_PASSWORDS:
            return False, "This password is too common. Please choose a stronger password"

        if not re.search(r"[A-Z]", password):
            return False, "Password must contain at least one uppercase letter"

        if not re.search(r"[a-z]", password):
            return False, "Password must contain at least one lowercase letter"

        if not re.search(r"\d", password):
            return False, "Password must contain at least one digit"

        return True, None


def normalize_cpf(cpf: str) -> str:
    """Strip formatting characters from a CPF."""
    return _CPF_NON_DIGITS.sub("", cpf)


def is_valid_cpf(cpf: str) -> bool:
    """Check the two CPF check digits."""
    digits = normalize_cpf(cpf)

    if len(digits) != 11 or digits == digits[0] * 11:
        return False

    for position in (9, 10):
        total = sum(
            int(digits[i]) * (position + 1 - i) for i in range(position)
        )
        check = (total * 10) % 11
        if check == 10:
            check = 0
        if check != int(digits[position]):
            return False

    return True


def is_valid_registration_number(value: str) -> bool:
    """Registration numbers are short alphanumeric identifiers."""
    return bool(_REGISTRATION_RE.match(value))


def sanitize_string(value: str, max_length: int = 255) -> str:
    """Trim whitespace, drop angle brackets and truncate."""
    return value.strip().replace("<", "").replace(">", "")[:max_length]


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value))

"""Unit tests for input validation helpers."""

import pytest

from urna.core.validation import (
    PasswordValidator,
    is_valid_cpf,
    is_valid_email,
    is_valid_registration_number,
    normalize_cpf,
    sanitize_string,
)


class TestCPF:
    @pytest.mark.parametrize("cpf", ["52998224725", "529.982.247-25", "111.444.777-35"])
    def test_valid(self, cpf):
        assert is_valid_cpf(cpf) is True

    @pytest.mark.parametrize(
        "cpf",
        [
            "52998224724",  # wrong second check digit
            "52998224715",  # wrong first check digit
            "11111111111",  # repeated digits
            "5299822472",  # too short
            "",
            "abcdefghijk",
        ],
    )
    def test_invalid(self, cpf):
        assert is_valid_cpf(cpf) is False

    def test_normalize(self):
        assert normalize_cpf("529.982.247-25") == "52998224725"


class TestRegistrationNumber:
    @pytest.mark.parametrize("value", ["000123", "ABC-12", "a.b_c"])
    def test_valid(self, value):
        assert is_valid_registration_number(value)

    @pytest.mark.parametrize("value", ["", "with space", "x" * 51, "12;DROP"])
    def test_invalid(self, value):
        assert not is_valid_registration_number(value)


class TestPasswordValidator:
    def test_strong_password(self):
        assert PasswordValidator.validate("Urn4Segura") == (True, None)

    @pytest.mark.parametrize(
        "password, fragment",
        [
            ("Ab1", "at least 8"),
            ("A1" + "a" * 127, "must not exceed"),
            ("Password", "too common"),
            ("lowercase1", "uppercase"),
            ("UPPERCASE1", "lowercase"),
            ("NoDigitsHere", "digit"),
        ],
    )
    def test_weak_passwords(self, password, fragment):
        is_valid, error = PasswordValidator.validate(password)
        assert is_valid is False
        assert fragment in error


@pytest.mark.parametrize(
    "value, expected",
    [
        ("admin@example.com", True),
        ("a.b+c@sub.example.org", True),
        ("no-at-sign.com", False),
        ("two@@example.com", False),
        ("space @example.com", False),
        ("user@localhost", False),
    ],
)
def test_is_valid_email(value, expected):
    assert is_valid_email(value) is expected


def test_sanitize_string():
    assert sanitize_string("  <b>Maria</b>  ") == "bMaria/b"
    assert sanitize_string("x" * 300, max_length=10) == "x" * 10

"""Tests for input sanitization and validation."""

import pytest

from app.services.validation import (
    EmailValidationResult,
    contains_suspicious_patterns,
    levenshtein_distance,
    sanitize_email,
    sanitize_input,
    sanitize_name,
    suggest_domain_corrections,
    validate_email,
    validate_name,
)


class TestSanitizers:
    def test_sanitize_input_strips_control_and_zero_width(self) -> None:
        assert sanitize_input("  ja\u200bne\x00\x1f  ") == "jane"

    def test_sanitize_input_truncates(self) -> None:
        assert len(sanitize_input("a" * 300)) == 254
        assert sanitize_input("abcdef", max_length=3) == "abc"

    def test_sanitize_email_lowercases(self) -> None:
        assert sanitize_email("  John.Doe@Example.COM ") == "john.doe@example.com"

    def test_sanitize_name_collapses_whitespace(self) -> None:
        assert sanitize_name("  John \t  Doe  ") == "John Doe"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("John\tDoe", "John Doe"), ("Mary\nAnn", "Mary Ann"), ("Mary\r\nAnn", "Mary Ann")],
    )
    def test_sanitize_name_keeps_word_boundaries_from_tabs_and_newlines(
        self, raw: str, expected: str
    ) -> None:
        assert sanitize_name(raw) == expected

    def test_sanitize_input_keeps_tab_and_newline(self) -> None:
        assert sanitize_input("a\tb\nc\rd\x0be") == "a\tb\nc\rde"

    def test_sanitize_name_truncates_to_100(self) -> None:
        assert len(sanitize_name("a" * 150)) == 100


class TestSuspiciousPatterns:
    @pytest.mark.parametrize(
        "value",
        [
            "<script>alert(1)</script>",
            "<b>bold</b>",
            "javascript:alert(1)",
            "img onerror=alert(1)",
            "&lt;tag&gt;",
            "Robert'); DROP TABLE students;--",
            "x' or 1=1",
            "union select password from users",
            "/* comment */",
        ],
    )
    def test_detects_injection_markers(self, value: str) -> None:
        assert contains_suspicious_patterns(value) is True

    @pytest.mark.parametrize(
        "value",
        ["John Doe", "Mary-Jane O'Brien", "jane.doe@example.com", "Anderson", "Leon Orr"],
    )
    def test_allows_ordinary_input(self, value: str) -> None:
        assert contains_suspicious_patterns(value) is False

    def test_empty_value_is_not_suspicious(self) -> None:
        assert contains_suspicious_patterns("") is False


class TestValidateName:
    @pytest.mark.parametrize("name", ["John Doe", "José Núñez", "Mary-Jane O'Brien", "Dr. Who"])
    def test_valid_names(self, name: str) -> None:
        assert validate_name(name).is_valid

    @pytest.mark.parametrize(
        ("name", "reason"),
        [
            ("", "Name is required"),
            ("J", "Name is too short"),
            ("a" * 101, "Name is too long"),
            ("John123", "Name contains invalid characters"),
            ("John@Doe", "Name contains invalid characters"),
            ("Joooooohn", "Name contains suspicious patterns"),
        ],
    )
    def test_invalid_names(self, name: str, reason: str) -> None:
        result = validate_name(name)
        assert not result.is_valid
        assert result.reason == reason

    def test_rejects_sql_keywords(self) -> None:
        assert not validate_name("select something").is_valid


class TestValidateEmail:
    def test_valid_email(self) -> None:
        result = validate_email("john.doe@example.com")
        assert result.is_valid
        assert result.suggestions == []

    @pytest.mark.parametrize(
        ("email", "reason"),
        [
            ("not-an-email", "Invalid email format"),
            ("john..doe@example.com", "Email cannot contain consecutive dots"),
            (".john@example.com", "Email local part cannot start or end with a dot"),
            ("john@mailinator.com", "Disposable email addresses are not allowed"),
            ("john@localhost", "Invalid domain format"),
            ("john@example.c", "Invalid top-level domain"),
            ("john@example.c0m", "Invalid top-level domain"),
            ("john@free.tk", "Domain contains suspicious patterns"),
            ("john@mail12345.com", "Domain contains suspicious patterns"),
            ("<x>@example.com", "Email contains invalid characters"),
        ],
    )
    def test_invalid_emails(self, email: str, reason: str) -> None:
        result = validate_email(email)
        assert not result.is_valid
        assert result.reason == reason

    def test_local_part_too_long(self) -> None:
        result = validate_email(f"{'a' * 65}@example.com")
        assert not result.is_valid
        assert result.reason == "Email local part is too long"

    def test_typo_domain_is_valid_with_suggestion(self) -> None:
        result = validate_email("john@gmial.com")
        assert result.is_valid
        assert "gmail.com" in result.suggestions

    def test_result_serialization(self) -> None:
        result = EmailValidationResult(False, "Invalid top-level domain", ["gmail.com"])
        assert EmailValidationResult.from_dict(result.to_dict()) == result


class TestDomainSuggestions:
    def test_levenshtein_distance(self) -> None:
        assert levenshtein_distance("gmail.com", "gmail.com") == 0
        assert levenshtein_distance("gmial.com", "gmail.com") == 2
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3

    def test_exact_match_is_not_suggested(self) -> None:
        assert suggest_domain_corrections("gmail.com") == []

    def test_suggestions_capped_at_three(self) -> None:
        assert len(suggest_domain_corrections("mail.co")) <= 3

    def test_unrelated_domain_has_no_suggestion(self) -> None:
        assert suggest_domain_corrections("arenafund.com") == []

"""Tests for contact hygiene utilities."""

import pytest

from contact_rollup.utils.normalization import (
    is_likely_deliverable_email,
    is_likely_dialable_phone,
    normalize_email,
    normalize_phone,
    normalize_string,
)


class TestNormalizeEmail:
    """Test email normalization."""

    def test_trims_and_lowercases(self):
        """Whitespace should be stripped and the address lowercased."""
        assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"

    def test_none_returns_empty(self):
        assert normalize_email(None) == ""

    def test_empty_returns_empty(self):
        assert normalize_email("") == ""


class TestDeliverableEmail:
    """Test the email plausibility check."""

    @pytest.mark.parametrize(
        "email",
        ["jane@example.com", "a.b+tag@sub.example.org", "x@y.io"],
    )
    def test_plausible_addresses_accepted(self, email):
        assert is_likely_deliverable_email(email)

    @pytest.mark.parametrize(
        "email",
        ["", "not-an-email", "jane@example", "jane @example.com", "@example.com"],
    )
    def test_malformed_addresses_rejected(self, email):
        assert not is_likely_deliverable_email(email)

    def test_disposable_domain_rejected(self):
        """Addresses on throwaway-inbox domains should be rejected."""
        assert not is_likely_deliverable_email("someone@mailinator.com")
        assert not is_likely_deliverable_email("someone@yopmail.com")


class TestNormalizePhone:
    """Test phone normalization."""

    def test_formatting_removed(self):
        assert normalize_phone("(555) 123-4567") == "5551234567"

    def test_leading_plus_kept(self):
        """A leading '+' should survive normalization."""
        assert normalize_phone(" +1 555.123.4567") == "+15551234567"

    def test_inner_plus_dropped(self):
        assert normalize_phone("1+5551234567") == "15551234567"

    def test_no_digits_returns_empty(self):
        assert normalize_phone("ext.") == ""

    def test_none_returns_empty(self):
        assert normalize_phone(None) == ""


class TestDialablePhone:
    """Test the phone plausibility check."""

    def test_ten_digits_accepted(self):
        assert is_likely_dialable_phone("5551234567")

    def test_fifteen_digits_with_plus_accepted(self):
        assert is_likely_dialable_phone("+123456789012345")

    def test_too_short_rejected(self):
        assert not is_likely_dialable_phone("555123")

    def test_too_long_rejected(self):
        assert not is_likely_dialable_phone("1234567890123456")

    def test_empty_rejected(self):
        assert not is_likely_dialable_phone("")


class TestNormalizeString:
    """Test whitespace normalization of names."""

    def test_collapses_inner_whitespace(self):
        assert normalize_string("  Jane   van  Doe ") == "Jane van Doe"

    def test_none_returns_empty(self):
        assert normalize_string(None) == ""

"""Tests for shared helpers."""

import re

import pytest

from lzvending.utils import random_hex, sanitise_error_message


class TestRandomHex:
    def test_length_and_alphabet(self) -> None:
        value = random_hex(2)
        assert re.fullmatch(r"[0-9a-f]{4}", value)

    def test_values_differ(self) -> None:
        assert random_hex(16) != random_hex(16)

    def test_invalid_length(self) -> None:
        with pytest.raises(ValueError):
            random_hex(0)


class TestSanitiseErrorMessage:
    def test_joins_wrapped_lines(self) -> None:
        err = Exception(
            "A valid billing scope starts with\n/providers/Microsoft.Billing/billingAccounts/"
            " and is case\r\nsensitive."
        )

        assert sanitise_error_message(err) == (
            "A valid billing scope starts with /providers/Microsoft.Billing/billingAccounts/"
            " and is case sensitive."
        )

    def test_accepts_strings(self) -> None:
        assert sanitise_error_message("a\nb") == "a b"

"""Tests for errors module."""

import pytest

from ex_remover.errors import AdapterError, is_billing_error


class TestIsBillingError:
    """Tests for the billing/quota classifier."""

    @pytest.mark.parametrize(
        "message",
        [
            "quota exceeded",
            "You exceeded your current QUOTA",
            "Please enable billing: https://example.com/billing",
        ],
    )
    def test_billing_messages(self, message: str) -> None:
        """Test that billing and quota wording is recognized."""
        assert is_billing_error(AdapterError(message))
        assert is_billing_error(message)

    def test_other_messages(self) -> None:
        """Test that ordinary failures are not billing errors."""
        assert not is_billing_error(AdapterError("API error during image editing: timeout"))
        assert not is_billing_error(ValueError("bad image"))

    def test_structured_code_wins(self) -> None:
        """Test that a billing code classifies regardless of the message."""
        error = AdapterError("The request was rejected", code="insufficient_quota")
        assert is_billing_error(error)
        assert error.is_billing

    def test_unrelated_code_falls_back_to_message(self) -> None:
        """Test that a non-billing code still consults the message."""
        assert is_billing_error(AdapterError("quota exceeded", code="rate_limit"))
        assert not is_billing_error(AdapterError("slow down", code="rate_limit"))

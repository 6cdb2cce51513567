"""Unit tests for RefundPolicyService calculation logic.

Tests verify the service calculates refund amounts from who cancelled and
how much notice was given:
- Full refund: builder or system cancellation, or 24+ hours notice
- 50% refund: 12-24 hours notice
- No refund: under 12 hours notice, or after the session started

Test categories:
- Full refund scenarios
- Partial refund scenarios
- No refund scenarios
- Edge cases (exact boundaries, unknown start, custom settings)
"""

import datetime as dt

import pytest

from bookings.config import RefundPolicySettings
from bookings.models.enums import CancelledBy, RefundPolicy
from bookings.services.refund_policy_service import RefundPolicyService

# === Test Configuration ===

TEST_PAYMENT_AMOUNT = 15000  # USD cents ($150.00)
SESSION_START = dt.datetime(2026, 7, 20, 10, 0, tzinfo=dt.UTC)


def hours_before(hours: float) -> dt.datetime:
    return SESSION_START - dt.timedelta(hours=hours)


@pytest.fixture
def service() -> RefundPolicyService:
    return RefundPolicyService(RefundPolicySettings())


# === Full Refund Tests ===


class TestFullRefundPolicy:
    def test_full_refund_48_hours_before(self, service: RefundPolicyService) -> None:
        result = service.calculate_refund_amount(
            payment_amount=TEST_PAYMENT_AMOUNT,
            start_time=SESSION_START,
            cancelled_at=hours_before(48),
            cancelled_by=CancelledBy.CLIENT,
        )

        assert result["refund_amount"] == TEST_PAYMENT_AMOUNT
        assert result["refund_percentage"] == 100
        assert result["policy_tier"] == RefundPolicy.FULL
        assert result["hours_until_start"] == pytest.approx(48)

    def test_full_refund_exactly_24_hours_before(self, service: RefundPolicyService) -> None:
        """Exactly 24 hours before start is inclusive."""
        result = service.calculate_refund_amount(
            TEST_PAYMENT_AMOUNT, SESSION_START, hours_before(24), CancelledBy.CLIENT
        )

        assert result["policy_tier"] == RefundPolicy.FULL

    @pytest.mark.parametrize("actor", [CancelledBy.BUILDER, CancelledBy.SYSTEM])
    def test_full_refund_when_not_client(
        self, service: RefundPolicyService, actor: CancelledBy
    ) -> None:
        result = service.calculate_refund_amount(
            TEST_PAYMENT_AMOUNT, SESSION_START, hours_before(1), actor
        )

        assert result["refund_amount"] == TEST_PAYMENT_AMOUNT
        assert result["policy_tier"] == RefundPolicy.FULL
        assert actor.value.lower() in result["description"]

    def test_full_refund_without_start_time(self, service: RefundPolicyService) -> None:
        result = service.calculate_refund_amount(
            TEST_PAYMENT_AMOUNT, None, hours_before(1), CancelledBy.CLIENT
        )

        assert result["policy_tier"] == RefundPolicy.FULL
        assert result["hours_until_start"] is None


# === Partial Refund Tests ===


class TestPartialRefundPolicy:
    def test_partial_refund_18_hours_before(self, service: RefundPolicyService) -> None:
        result = service.calculate_refund_amount(
            TEST_PAYMENT_AMOUNT, SESSION_START, hours_before(18), CancelledBy.CLIENT
        )

        assert result["refund_amount"] == 7500
        assert result["refund_percentage"] == 50
        assert result["policy_tier"] == RefundPolicy.PARTIAL

    def test_partial_refund_exactly_12_hours_before(self, service: RefundPolicyService) -> None:
        result = service.calculate_refund_amount(
            TEST_PAYMENT_AMOUNT, SESSION_START, hours_before(12), CancelledBy.CLIENT
        )

        assert result["policy_tier"] == RefundPolicy.PARTIAL

    def test_partial_refund_rounds_down_to_cent(self, service: RefundPolicyService) -> None:
        result = service.calculate_refund_amount(
            10001, SESSION_START, hours_before(18), CancelledBy.CLIENT
        )

        assert result["refund_amount"] == 5000

    def test_just_under_24_hours_is_partial(self, service: RefundPolicyService) -> None:
        result = service.calculate_refund_amount(
            TEST_PAYMENT_AMOUNT, SESSION_START, hours_before(23.99), CancelledBy.CLIENT
        )

        assert result["policy_tier"] == RefundPolicy.PARTIAL


# === No Refund Tests ===


class TestNoRefundPolicy:
    def test_no_refund_6_hours_before(self, service: RefundPolicyService) -> None:
        result = service.calculate_refund_amount(
            TEST_PAYMENT_AMOUNT, SESSION_START, hours_before(6), CancelledBy.CLIENT
        )

        assert result["refund_amount"] == 0
        assert result["refund_percentage"] == 0
        assert result["policy_tier"] == RefundPolicy.NONE

    def test_no_refund_after_start(self, service: RefundPolicyService) -> None:
        result = service.calculate_refund_amount(
            TEST_PAYMENT_AMOUNT, SESSION_START, hours_before(-2), CancelledBy.CLIENT
        )

        assert result["refund_amount"] == 0
        assert "after the session started" in result["description"]


# === Edge Cases ===


class TestRefundPolicyEdgeCases:
    def test_custom_thresholds(self) -> None:
        service = RefundPolicyService(
            RefundPolicySettings(full_notice_hours=48, partial_notice_hours=24, partial_percent=25)
        )

        result = service.calculate_refund_amount(
            TEST_PAYMENT_AMOUNT, SESSION_START, hours_before(30), CancelledBy.CLIENT
        )

        assert result["policy_tier"] == RefundPolicy.PARTIAL
        assert result["refund_amount"] == 3750

    def test_zero_amount(self, service: RefundPolicyService) -> None:
        result = service.calculate_refund_amount(
            0, SESSION_START, hours_before(48), CancelledBy.CLIENT
        )

        assert result["refund_amount"] == 0
        assert result["policy_tier"] == RefundPolicy.FULL

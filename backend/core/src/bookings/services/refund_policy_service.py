"""Refund policy service for calculating refund amounts.

Implements the session cancellation refund policy:
- Full refund (100%): cancelled by the builder or the system, or with
  24+ hours notice
- Partial refund (50%): 12-24 hours notice
- No refund (0%): less than 12 hours notice, or after the session started

Thresholds and the partial percentage come from RefundPolicySettings.
All amounts are in minor currency units (cents).
"""

import datetime as dt
from typing import TypedDict

from bookings.config import RefundPolicySettings, get_settings
from bookings.models.enums import CancelledBy, RefundPolicy


class RefundCalculation(TypedDict):
    """Result of refund policy calculation."""

    refund_amount: int  # Amount in cents
    refund_percentage: int  # 0, partial percent, or 100
    policy_tier: RefundPolicy
    hours_until_start: float | None
    description: str


class RefundPolicyService:
    """Service for calculating refund amounts based on who cancelled and when."""

    FULL_REFUND_PERCENT = 100
    NO_REFUND_PERCENT = 0

    def __init__(self, settings: RefundPolicySettings | None = None) -> None:
        self._settings = settings or get_settings().refund_policy

    def calculate_refund_amount(
        self,
        payment_amount: int,
        start_time: dt.datetime | None,
        cancelled_at: dt.datetime,
        cancelled_by: CancelledBy,
    ) -> RefundCalculation:
        """Calculate refund amount based on cancellation timing and actor.

        Args:
            payment_amount: Original payment amount in cents
            start_time: Scheduled session start (None if never scheduled)
            cancelled_at: When the cancellation happened
            cancelled_by: Who cancelled

        Returns:
            RefundCalculation with refund amount and policy details
        """
        settings = self._settings
        hours_until_start: float | None = None
        if start_time is not None:
            hours_until_start = (start_time - cancelled_at).total_seconds() / 3600

        if cancelled_by in (CancelledBy.BUILDER, CancelledBy.SYSTEM):
            percentage = self.FULL_REFUND_PERCENT
            tier = RefundPolicy.FULL
            description = f"Full refund (100%): cancelled by {cancelled_by.value.lower()}"
        elif hours_until_start is None or hours_until_start >= settings.full_notice_hours:
            percentage = self.FULL_REFUND_PERCENT
            tier = RefundPolicy.FULL
            description = (
                f"Full refund (100%): cancelled with at least "
                f"{settings.full_notice_hours}h notice"
            )
        elif hours_until_start >= settings.partial_notice_hours:
            percentage = settings.partial_percent
            tier = RefundPolicy.PARTIAL
            description = (
                f"Partial refund ({percentage}%): cancelled {hours_until_start:.1f}h "
                f"before start (policy: {settings.partial_notice_hours}-"
                f"{settings.full_notice_hours}h = {percentage}% refund)"
            )
        else:
            percentage = self.NO_REFUND_PERCENT
            tier = RefundPolicy.NONE
            if hours_until_start < 0:
                description = "No refund: cancelled after the session started"
            else:
                description = (
                    f"No refund (0%): cancelled {hours_until_start:.1f}h before start "
                    f"(policy: <{settings.partial_notice_hours}h = no refund)"
                )

        # Integer division keeps cents exact
        refund_amount = (payment_amount * percentage) // 100

        return RefundCalculation(
            refund_amount=refund_amount,
            refund_percentage=percentage,
            policy_tier=tier,
            hours_until_start=hours_until_start,
            description=description,
        )

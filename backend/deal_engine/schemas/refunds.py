"""Refund Pydantic schemas for API responses."""

from decimal import Decimal

from pydantic import BaseModel


class RefundEntryResponse(BaseModel):
    participant_id: str
    contribution_id: str
    contributed_amount: Decimal
    allocated_amount: Decimal
    refund_amount: Decimal


class RefundSummaryResponse(BaseModel):
    deal_id: str
    total_contributed: Decimal
    total_allocated: Decimal
    total_refunds: Decimal
    refund_count: int
    entries: list[RefundEntryResponse]

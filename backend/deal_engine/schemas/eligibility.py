"""Eligibility Pydantic schemas for API responses."""

from pydantic import BaseModel


class CheckResultResponse(BaseModel):
    name: str
    passed: bool
    reason: str | None = None


class EligibilityResponse(BaseModel):
    """Every check that ran, and the subset that failed."""

    participant_id: str
    deal_id: str
    eligible: bool
    checks: list[CheckResultResponse]
    failed_checks: list[CheckResultResponse]

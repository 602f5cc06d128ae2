"""Contribution eligibility checks.

Each check is a pure function returning a CheckResult. The eligibility
service gathers the inputs, runs every check, and never short-circuits,
so a caller always sees every failing reason at once.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, localcontext

from deal_engine.domain.deal_status import CONTRIBUTION_STATUSES, DealStatus
from deal_engine.domain.money import MONEY_CONTEXT
from deal_engine.domain.tiers import TierLevel

KYC_APPROVED = "approved"

ACCREDITED_CLASSIFICATIONS = frozenset({"accredited", "qualified_purchaser", "sophisticated"})


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    reason: str | None = None


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    checks: list[CheckResult]
    failed_checks: list[CheckResult] = field(default_factory=list)


def build_result(checks: Sequence[CheckResult]) -> EligibilityResult:
    """Aggregate checks: eligible iff every one passed."""
    failed = [check for check in checks if not check.passed]
    return EligibilityResult(eligible=not failed, checks=list(checks), failed_checks=failed)


def missing_resource(name: str, reason: str) -> EligibilityResult:
    """Result for a participant or deal that does not exist."""
    return build_result([CheckResult(name, False, reason)])


def _fail(name: str, reason: str) -> CheckResult:
    return CheckResult(name=name, passed=False, reason=reason)


def check_wallet_connected(wallet_address: str | None) -> CheckResult:
    if wallet_address:
        return CheckResult("wallet_connected", True)
    return _fail("wallet_connected", "Participant does not have a wallet address connected.")


def check_not_banned(is_banned: bool, ban_reason: str | None = None) -> CheckResult:
    if not is_banned:
        return CheckResult("user_not_banned", True)
    if ban_reason:
        return _fail("user_not_banned", f"Account is suspended: {ban_reason}")
    return _fail("user_not_banned", "Account is suspended.")


def is_accredited(is_accredited_us: bool, investor_classification: str | None) -> bool:
    return is_accredited_us or investor_classification in ACCREDITED_CLASSIFICATIONS


def check_kyc(
    *,
    requires_kyc: bool,
    requires_accreditation: bool,
    kyc_status: str,
    kyc_expires_at: datetime | None,
    is_accredited_us: bool = False,
    investor_classification: str | None = None,
    now: datetime | None = None,
) -> CheckResult:
    """KYC approved and unexpired, plus accreditation when the deal asks for it.

    Passes outright when the deal does not require KYC.
    """
    if not requires_kyc:
        return CheckResult("kyc_status", True)

    if now is None:
        now = datetime.now(timezone.utc)

    if kyc_status != KYC_APPROVED:
        return _fail("kyc_status", f"KYC status must be approved. Current status: {kyc_status}.")

    if kyc_expires_at is not None and kyc_expires_at < now:
        return _fail("kyc_status", "KYC verification has expired. Please re-verify.")

    if requires_accreditation and not is_accredited(is_accredited_us, investor_classification):
        return _fail("kyc_status", "This deal requires accredited investor status.")

    return CheckResult("kyc_status", True)


def check_tier(tier_level: TierLevel, min_tier_required: TierLevel | None) -> CheckResult:
    if tier_level.at_least(min_tier_required):
        return CheckResult("tier_requirement", True)
    return _fail(
        "tier_requirement",
        f"Minimum tier of {min_tier_required.value} required. Current tier: {tier_level.value}.",
    )


def check_deal_status(
    status: DealStatus,
    contribution_open_at: datetime | None,
    contribution_close_at: datetime | None,
    now: datetime | None = None,
) -> CheckResult:
    """Deal accepts contributions and `now` is inside the contribution window."""
    if now is None:
        now = datetime.now(timezone.utc)

    if status not in CONTRIBUTION_STATUSES:
        return _fail(
            "deal_status",
            f"Deal is not currently accepting contributions. Current status: {status.value}.",
        )

    if contribution_open_at is not None and now < contribution_open_at:
        return _fail(
            "deal_status",
            f"Contribution window has not opened yet. Opens at: {contribution_open_at.isoformat()}.",
        )

    if contribution_close_at is not None and now > contribution_close_at:
        return _fail(
            "deal_status",
            f"Contribution window has closed. Closed at: {contribution_close_at.isoformat()}.",
        )

    return CheckResult("deal_status", True)


def check_hard_cap(total_raised: Decimal, hard_cap: Decimal, amount: Decimal | None = None) -> CheckResult:
    if total_raised >= hard_cap:
        return _fail("hard_cap", "Deal has reached its hard cap. No further contributions are accepted.")

    if amount is not None:
        with localcontext(MONEY_CONTEXT):
            remaining = hard_cap - total_raised
        if amount > remaining:
            return _fail(
                "hard_cap",
                f"Contribution of {amount} would exceed the hard cap. Remaining capacity: {remaining}.",
            )

    return CheckResult("hard_cap", True)


def check_contribution_limits(
    existing_total: Decimal,
    min_contribution: Decimal,
    max_contribution: Decimal,
    amount: Decimal | None = None,
) -> CheckResult:
    """Per-participant limits. existing_total sums Pending and Confirmed contributions.

    A max_contribution of zero means no per-participant cap.
    """
    if amount is not None and min_contribution > 0 and amount < min_contribution:
        return _fail(
            "contribution_limits",
            f"Contribution of {amount} is below the minimum contribution of {min_contribution}.",
        )

    if max_contribution <= 0:
        return CheckResult("contribution_limits", True)

    if existing_total >= max_contribution:
        return _fail(
            "contribution_limits",
            f"Maximum contribution of {max_contribution} for this deal already reached.",
        )

    if amount is not None:
        with localcontext(MONEY_CONTEXT):
            remaining = max_contribution - existing_total
        if amount > remaining:
            return _fail(
                "contribution_limits",
                f"Contribution of {amount} would exceed the per-participant limit. "
                f"Remaining allowance: {remaining}.",
            )

    return CheckResult("contribution_limits", True)


def check_geo(country: str | None, allowed_countries: Iterable[str], blocked_countries: Iterable[str]) -> CheckResult:
    """Blocked list wins over the allow list. No country fails when any list is set."""
    allowed = {c.upper() for c in allowed_countries}
    blocked = {c.upper() for c in blocked_countries}

    if not allowed and not blocked:
        return CheckResult("geo_restriction", True)

    if not country:
        return _fail("geo_restriction", "Country is not set. Update the profile to verify geo-eligibility.")

    code = country.upper()
    if code in blocked:
        return _fail("geo_restriction", f"This deal is not available in {country}.")
    if allowed and code not in allowed:
        return _fail(
            "geo_restriction", f"This deal is only available in specific countries; {country} is not included."
        )

    return CheckResult("geo_restriction", True)


def check_registered(has_allocation: bool) -> CheckResult:
    if has_allocation:
        return CheckResult("user_registered", True)
    return _fail("user_registered", "Participant must register for this deal before contributing.")

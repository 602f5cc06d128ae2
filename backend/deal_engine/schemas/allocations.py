"""Allocation method configs and API schemas.

Each allocation method has its own config model; AllocationConfig is the
tagged union over them, discriminated by `method`. Configs are validated
once, in parse_allocation_config, before any database access. Past that
boundary the strategies only ever see well-formed configs.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, TypeAdapter, ValidationError, model_validator

from deal_engine.core.exceptions import AllocationValidationError
from deal_engine.domain.tiers import TierLevel


class AllocationMethod(str, Enum):
    GUARANTEED = "guaranteed"
    PRO_RATA = "pro_rata"
    LOTTERY = "lottery"
    FCFS = "fcfs"
    HYBRID = "hybrid"


class _StrategyConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class GuaranteedConfig(_StrategyConfig):
    method: Literal["guaranteed"] = "guaranteed"
    # Per-tier overrides of GUARANTEED_AMOUNTS
    guaranteed_amounts: dict[TierLevel, Annotated[Decimal, Field(ge=0)]] | None = None


class ProRataConfig(_StrategyConfig):
    method: Literal["pro_rata"] = "pro_rata"
    # Multiply each participant's contribution by their tier multiplier
    weighted: bool = False


class LotteryConfig(_StrategyConfig):
    method: Literal["lottery"] = "lottery"
    winner_allocation: Annotated[Decimal, Field(gt=0)]
    max_winners: PositiveInt | None = None
    # Same seed + same eligible set = same winners. None draws from the OS CSPRNG.
    seed: str | None = None


class FCFSConfig(_StrategyConfig):
    method: Literal["fcfs"] = "fcfs"
    # Defaults to the deal's max_contribution
    max_per_user: Annotated[Decimal, Field(gt=0)] | None = None


SubStrategyConfig = Annotated[
    Union[GuaranteedConfig, ProRataConfig, LotteryConfig, FCFSConfig],
    Field(discriminator="method"),
]


class HybridSplit(_StrategyConfig):
    percent: Annotated[Decimal, Field(ge=0, le=100)]
    strategy: SubStrategyConfig


class HybridConfig(_StrategyConfig):
    method: Literal["hybrid"] = "hybrid"
    splits: list[HybridSplit] = Field(min_length=1)

    @model_validator(mode="after")
    def _splits_sum_to_100(self) -> "HybridConfig":
        total = sum((split.percent for split in self.splits), Decimal(0))
        if total != Decimal(100):
            raise ValueError(f"Hybrid splits must sum to 100%, got {total}%")
        return self


AllocationConfig = Annotated[
    Union[GuaranteedConfig, ProRataConfig, LotteryConfig, FCFSConfig, HybridConfig],
    Field(discriminator="method"),
]

_config_adapter: TypeAdapter = TypeAdapter(AllocationConfig)

_CONFIG_REQUIRED = {AllocationMethod.LOTTERY, AllocationMethod.HYBRID}


def parse_allocation_config(method: AllocationMethod | str, config: Any = None) -> AllocationConfig:
    """Validate a method + raw config into a typed AllocationConfig.

    Args:
        method: Allocation method name
        config: A config model, a dict of method-specific fields, or None

    Raises:
        AllocationValidationError: unknown method, missing required config,
            method/config mismatch, or malformed fields
    """
    try:
        method = AllocationMethod(method)
    except ValueError:
        raise AllocationValidationError(f"Unknown allocation method: {method}") from None

    if isinstance(config, BaseModel):
        if getattr(config, "method", None) != method.value:
            raise AllocationValidationError(
                f"Config for {getattr(config, 'method', '?')} does not match method {method.value}"
            )
        return config

    if not config and method in _CONFIG_REQUIRED:
        raise AllocationValidationError(f"{method.value} allocation requires a config")

    data = dict(config or {})
    if data.setdefault("method", method.value) != method.value:
        raise AllocationValidationError(f"Config for {data['method']} does not match method {method.value}")

    try:
        return _config_adapter.validate_python(data)
    except ValidationError as exc:
        raise AllocationValidationError(_summarize(exc)) from exc


def _summarize(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error["loc"])
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(parts)


# ──────────────────────────────────────────────────────────────────────────────
# API schemas
# ──────────────────────────────────────────────────────────────────────────────


class CalculateAllocationsRequest(BaseModel):
    method: AllocationMethod
    config: dict[str, Any] | None = None


class AllocationResultResponse(BaseModel):
    participant_id: str
    amount: Decimal
    method: AllocationMethod
    lottery_tickets: int
    lottery_won: bool | None


class CalculateAllocationsResponse(BaseModel):
    deal_id: str
    method: AllocationMethod
    total_allocated: Decimal
    allocations: list[AllocationResultResponse]


class AllocationResponse(BaseModel):
    participant_id: str
    deal_id: str
    guaranteed_amount: Decimal
    requested_amount: Decimal
    final_amount: Decimal
    allocation_method: AllocationMethod | None
    lottery_tickets: int
    lottery_won: bool | None
    is_finalized: bool
    finalized_at: datetime | None
    commitment_proof: list[str] | None


class FinalizeResponse(BaseModel):
    deal_id: str
    commitment_root: str
    allocations_finalized: int


class VerifyAllocationResponse(BaseModel):
    deal_id: str
    participant_id: str
    verified: bool


class SettleResponse(BaseModel):
    """Allocation followed by finalization, for a deal in Settlement."""

    deal_id: str
    method: AllocationMethod
    total_allocated: Decimal
    allocations: list[AllocationResultResponse]
    commitment_root: str
    allocations_finalized: int

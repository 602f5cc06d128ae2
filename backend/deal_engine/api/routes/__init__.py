from fastapi import APIRouter

from deal_engine.api.routes import allocations, eligibility, health, phase, refunds

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(eligibility.router, prefix="/deals", tags=["eligibility"])
api_router.include_router(allocations.router, prefix="/deals", tags=["allocations"])
api_router.include_router(refunds.router, prefix="/deals", tags=["refunds"])
api_router.include_router(phase.router, prefix="/deals", tags=["lifecycle"])

import random
from decimal import Decimal
from typing import Dict
from fastapi import APIRouter
from app.schemas.expense import AllocationResult, BreakdownRequest, SharesRequest
from app.services.allocation_service import allocate
from app.services.expense_services import compute_shares

router = APIRouter()


@router.post("/breakdown", response_model=AllocationResult)
async def itemized_breakdown(data: BreakdownRequest):
    rng = random.Random(data.seed) if data.seed is not None else None
    return allocate(
        data.items,
        data.extras,
        data.allocation,
        payer_id=data.payer_id,
        participants=data.participants,
        rng=rng,
    )


@router.post("/shares", response_model=Dict[str, Decimal])
async def expense_shares(data: SharesRequest):
    return compute_shares(data.expense, decimal_places=data.decimal_places)

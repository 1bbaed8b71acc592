from typing import Dict
from fastapi import APIRouter
from app.schemas.settlements import (
    PersonSummary,
    SettlementRequest,
    SettlementResult,
    SettlementStrategyName,
    SettlementValidationOut,
    TransferBreakdown,
    TransferBreakdownRequest,
)
from app.services.settlement_service import (
    compute_person_summaries,
    compute_settlement,
    compute_transfer_breakdown,
    validate_settlement,
)

router = APIRouter()


@router.post("/summaries", response_model=Dict[str, PersonSummary])
async def person_summaries(data: SettlementRequest):
    return compute_person_summaries(
        data.expenses,
        data.base_currency,
        data.settled_transfers,
        decimal_places=data.decimal_places,
    )


@router.post("/compute", response_model=SettlementResult)
async def settle(data: SettlementRequest, strategy: SettlementStrategyName | None = None):
    return compute_settlement(
        data.trip_id,
        data.expenses,
        data.base_currency,
        strategy=strategy,
        settled_transfers=data.settled_transfers,
        decimal_places=data.decimal_places,
    )


@router.post("/validate", response_model=SettlementValidationOut)
async def validate(data: SettlementRequest, strategy: SettlementStrategyName | None = None):
    result = compute_settlement(
        data.trip_id,
        data.expenses,
        data.base_currency,
        strategy=strategy,
        settled_transfers=data.settled_transfers,
        decimal_places=data.decimal_places,
    )
    issues = validate_settlement(
        result.person_summaries, result.transfers, decimal_places=data.decimal_places
    )
    return {"balanced": result.balanced, "issues": issues}


@router.post("/transfer-breakdown", response_model=TransferBreakdown)
async def transfer_breakdown(data: TransferBreakdownRequest):
    return compute_transfer_breakdown(
        data.from_user_id,
        data.to_user_id,
        data.transfer_amount,
        data.expenses,
    )

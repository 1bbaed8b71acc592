from decimal import Decimal
from enum import Enum
from pydantic import BaseModel
from datetime import datetime
from typing import Dict, List, Optional
from app.schemas.expense import DegenerateInputWarning, Expense


class SettlementStrategyName(str, Enum):
    PAIRWISE = "pairwise"
    GREEDY = "greedy"


class PersonSummary(BaseModel):
    user_id: str
    total_paid_base: Decimal
    total_owed_base: Decimal
    net_base: Decimal


class MinimalTransfer(BaseModel):
    id: str
    trip_id: str
    from_user_id: str
    to_user_id: str
    amount_base: Decimal
    computed_at: datetime
    settled_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_settled(self) -> bool:
        return self.settled_at is not None


class ConservationViolation(BaseModel):
    expected: Decimal
    actual: Decimal
    difference: Decimal


class SettlementResult(BaseModel):
    trip_id: str
    strategy: SettlementStrategyName
    person_summaries: Dict[str, PersonSummary]
    transfers: List[MinimalTransfer]
    balanced: bool
    violation: Optional[ConservationViolation] = None
    warnings: List[DegenerateInputWarning] = []


class ExpenseContribution(BaseModel):
    expense_id: str
    description: Optional[str] = None
    from_paid: Decimal
    from_owes: Decimal
    to_paid: Decimal
    to_owes: Decimal
    net_contribution: Decimal


class TransferBreakdown(BaseModel):
    from_user_id: str
    to_user_id: str
    total_amount: Decimal
    expense_breakdowns: List[ExpenseContribution]

    @property
    def contributions_total(self) -> Decimal:
        return sum((e.net_contribution for e in self.expense_breakdowns), Decimal("0"))


class SettlementRequest(BaseModel):
    trip_id: str
    base_currency: str = "USD"
    expenses: List[Expense] = []
    settled_transfers: List[MinimalTransfer] = []
    decimal_places: Optional[int] = None


class SettlementValidationOut(BaseModel):
    balanced: bool
    issues: List[str]


class TransferBreakdownRequest(BaseModel):
    from_user_id: str
    to_user_id: str
    transfer_amount: Decimal
    expenses: List[Expense]

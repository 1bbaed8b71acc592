from datetime import datetime, timezone
from decimal import Decimal
import pytest
from app.schemas.expense import (
    CustomAssignment,
    EvenAssignment,
    Expense,
    LineItem,
    SplitType,
)


FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def D(value) -> Decimal:
    return Decimal(str(value))


def even_item(item_id, price, users, quantity="1", **kwargs) -> LineItem:
    return LineItem(
        id=item_id,
        name=item_id.title(),
        quantity=D(quantity),
        unit_price=D(price),
        assignment=EvenAssignment(users=list(users)),
        **kwargs,
    )


def custom_item(item_id, price, shares, quantity="1", **kwargs) -> LineItem:
    return LineItem(
        id=item_id,
        name=item_id.title(),
        quantity=D(quantity),
        unit_price=D(price),
        assignment=CustomAssignment(
            users=list(shares),
            shares={uid: D(w) for uid, w in shares.items()},
        ),
        **kwargs,
    )


def expense(expense_id, payer, amount, participants, split_type=SplitType.EQUAL, currency="USD", **kwargs) -> Expense:
    if not isinstance(participants, dict):
        participants = {uid: 1 for uid in participants}
    return Expense(
        id=expense_id,
        trip_id="trip1",
        payer_user_id=payer,
        currency=currency,
        amount=D(amount),
        split_type=split_type,
        participants={uid: D(w) for uid, w in participants.items()},
        **kwargs,
    )


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def dinner_expenses():
    """A pays 30 split A/B, B pays 10 split A/B: B ends up owing A 10."""
    return [
        expense("e1", "A", "30.00", ["A", "B"], description="Dinner"),
        expense("e2", "B", "10.00", ["A", "B"], description="Taxi"),
    ]


@pytest.fixture
def trip_expenses():
    """
    A pays 30 split A/B/C, B pays 12 split B/C.

    Net: A +20, B -4, C -16.
    """
    return [
        expense("e1", "A", "30.00", ["A", "B", "C"]),
        expense("e2", "B", "12.00", ["B", "C"]),
    ]

import logging
from decimal import Decimal
from typing import Dict, List, Mapping, Optional
from app.core.config import settings
from app.core.currency import get_decimal_places
from app.core.errors import ValidationError
from app.core.utils import dsum, minimal_unit, safe_divide
from app.schemas.expense import (
    AllocationRule,
    DegenerateInputWarning,
    Expense,
    RemainderDistributionMode,
    RoundingConfig,
    RoundingMode,
    SplitType,
)
from app.services.allocation_service import allocate
from app.services.rounding_service import round_amounts

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 200


def validate_expense(expense: Expense):
    if expense.amount <= 0:
        raise ValidationError("Expense amount must be positive", "amount")

    if expense.description and len(expense.description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Expense description cannot exceed {MAX_DESCRIPTION_LENGTH} characters",
            "description",
        )

    if expense.split_type == SplitType.ITEMIZED:
        if not expense.items and not expense.participant_amounts:
            raise ValidationError(
                "Itemized split requires items or participant amounts", "items"
            )
        return

    if not expense.participants:
        raise ValidationError("At least one participant is required", "participants")

    weights = expense.participants.values()

    if expense.split_type == SplitType.EQUAL and any(w != 1 for w in weights):
        raise ValidationError(
            "Equal split requires every participant weight to be 1", "participants"
        )

    if expense.split_type == SplitType.WEIGHTED and any(w <= 0 for w in weights):
        raise ValidationError(
            "Weighted split requires all participant weights to be greater than 0",
            "participants",
        )


def resolve_decimal_places(
    currency: str,
    decimal_places: Optional[int] = None,
    currency_decimals: Optional[Mapping[str, int]] = None,
) -> int:
    if decimal_places is not None:
        return decimal_places
    return get_decimal_places(currency, currency_decimals)


def _raw_shares(expense: Expense) -> Dict[str, Decimal]:
    if expense.split_type == SplitType.EQUAL:
        per_person = expense.amount / Decimal(len(expense.participants))
        return {uid: per_person for uid in expense.participants}

    total_weight = dsum(expense.participants.values())
    return {
        uid: expense.amount * safe_divide(weight, total_weight)
        for uid, weight in expense.participants.items()
    }


def _itemized_shares(expense: Expense, precision: Decimal) -> Dict[str, Decimal]:
    if expense.participant_amounts:
        return dict(expense.participant_amounts)

    result = allocate(
        expense.items or [],
        expense.extras,
        _expense_rule(expense.allocation, precision),
        payer_id=expense.payer_user_id,
    )
    return {uid: b.total for uid, b in result.breakdowns.items()}


def _expense_rule(rule: Optional[AllocationRule], precision: Decimal) -> AllocationRule:
    if rule is None:
        return _default_rule(precision)
    # an unset precision follows the currency, not the 0.01 default
    if "precision" in rule.rounding.model_fields_set:
        return rule
    rounding = rule.rounding.model_copy(update={"precision": precision})
    return rule.model_copy(update={"rounding": rounding})


def _default_rule(precision: Decimal) -> AllocationRule:
    return AllocationRule(
        rounding=RoundingConfig(
            precision=precision,
            mode=RoundingMode(settings.ROUNDING_MODE),
            distribute_remainder_to=RemainderDistributionMode(settings.REMAINDER_DISTRIBUTION),
        )
    )


def compute_shares(
    expense: Expense,
    decimal_places: Optional[int] = None,
    rounding_mode: Optional[RoundingMode] = None,
    distribute_remainder_to: Optional[RemainderDistributionMode] = None,
    currency_decimals: Optional[Mapping[str, int]] = None,
) -> Dict[str, Decimal]:
    """
    Each participant's share of an expense.

    Equal and weighted splits are rounded to the currency's decimal places
    and the leftover units are reconciled so the shares add up to the
    expense amount. Itemized expenses use the stored participant amounts
    or, failing that, the allocation engine.
    """
    validate_expense(expense)

    places = resolve_decimal_places(expense.currency, decimal_places, currency_decimals)
    precision = minimal_unit(places)

    if expense.split_type == SplitType.ITEMIZED:
        return _itemized_shares(expense, precision)

    config = RoundingConfig(
        precision=precision,
        mode=rounding_mode or RoundingMode(settings.ROUNDING_MODE),
        distribute_remainder_to=distribute_remainder_to
        or RemainderDistributionMode(settings.REMAINDER_DISTRIBUTION),
    )

    outcome = round_amounts(_raw_shares(expense), config, payer_id=expense.payer_user_id)
    return outcome.rounded


def check_itemized_amount(
    expense: Expense,
    decimal_places: Optional[int] = None,
    currency_decimals: Optional[Mapping[str, int]] = None,
) -> List[DegenerateInputWarning]:
    """Warn when an itemized expense's shares don't add up to its declared amount."""
    if expense.split_type != SplitType.ITEMIZED:
        return []

    places = resolve_decimal_places(expense.currency, decimal_places, currency_decimals)
    shares = compute_shares(expense, decimal_places=places)
    allocated = dsum(shares.values())

    if abs(allocated - expense.amount) > minimal_unit(places):
        logger.warning(
            "Expense %s: shares sum to %s but amount is %s", expense.id, allocated, expense.amount
        )
        return [
            DegenerateInputWarning(
                code="amount_mismatch",
                message=f"Sum of participant amounts ({allocated}) differs from total amount ({expense.amount})",
                subject_id=expense.id,
            )
        ]
    return []

import logging
import warnings
from collections import deque
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple
from app.core.config import settings
from app.core.currency import get_decimal_places
from app.core.errors import ValidationError
from app.core.utils import ZERO, dsum, minimal_unit, qround
from app.schemas.expense import Expense, SplitType
from app.schemas.settlements import (
    ConservationViolation,
    ExpenseContribution,
    MinimalTransfer,
    PersonSummary,
    SettlementResult,
    SettlementStrategyName,
    TransferBreakdown,
)
from app.services.expense_services import check_itemized_amount, compute_shares

logger = logging.getLogger(__name__)

# (low_user_id, high_user_id); a positive balance means low owes high
PairKey = Tuple[str, str]


def _unit(decimal_places: Optional[int], currency: Optional[str] = None) -> Decimal:
    if decimal_places is None:
        decimal_places = get_decimal_places(currency or settings.DEFAULT_CURRENCY)
    return minimal_unit(decimal_places)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _transfer_id(trip_id: str, from_user_id: str, to_user_id: str) -> str:
    return f"{trip_id}:{from_user_id}->{to_user_id}"


def settled_transfer_as_expense(transfer: MinimalTransfer, currency: str) -> Expense:
    """
    A settled transfer behaves like an expense the debtor paid entirely on
    the creditor's behalf, which cancels the debt it paid off.
    """
    return Expense(
        id=f"settlement:{transfer.id}",
        trip_id=transfer.trip_id,
        payer_user_id=transfer.from_user_id,
        currency=currency,
        amount=transfer.amount_base,
        split_type=SplitType.EQUAL,
        participants={transfer.to_user_id: Decimal(1)},
        description="Settled transfer",
    )


def _with_settlements(
    expenses: Sequence[Expense],
    settled_transfers: Iterable[MinimalTransfer],
    currency: str,
) -> List[Expense]:
    combined = list(expenses)
    combined.extend(
        settled_transfer_as_expense(t, currency)
        for t in settled_transfers
        if t.is_settled
    )
    return combined


def _expense_shares(expense: Expense, decimal_places: Optional[int]) -> Dict[str, Decimal]:
    return compute_shares(expense, decimal_places=decimal_places)


def _check_currency(expenses: Iterable[Expense], currency: str):
    for expense in expenses:
        if expense.currency.upper() != currency.upper():
            raise ValidationError(
                f"Expense {expense.id} is in {expense.currency}, not {currency}",
                "currency",
            )


# -----------------------------------
# Person summaries
# -----------------------------------
def compute_person_summaries(
    expenses: Sequence[Expense],
    base_currency: str,
    settled_transfers: Iterable[MinimalTransfer] = (),
    decimal_places: Optional[int] = None,
) -> Dict[str, PersonSummary]:
    """
    Returns:
        {
            user_id: PersonSummary
        }

    net_base = total_paid_base - total_owed_base
    """
    paid: Dict[str, Decimal] = {}
    owed: Dict[str, Decimal] = {}

    _check_currency(expenses, base_currency)

    for expense in _with_settlements(expenses, settled_transfers, base_currency):
        # paid_by increases balance
        paid[expense.payer_user_id] = paid.get(expense.payer_user_id, ZERO) + expense.amount
        owed.setdefault(expense.payer_user_id, ZERO)

        # shares decrease balance
        for uid, share in _expense_shares(expense, decimal_places).items():
            owed[uid] = owed.get(uid, ZERO) + share
            paid.setdefault(uid, ZERO)

    summaries: Dict[str, PersonSummary] = {}
    for uid in paid:
        summaries[uid] = PersonSummary(
            user_id=uid,
            total_paid_base=paid[uid],
            total_owed_base=owed[uid],
            net_base=paid[uid] - owed[uid],
        )
        logger.debug("%s paid %s, owes %s, net %s", uid, paid[uid], owed[uid], summaries[uid].net_base)

    return summaries


# -----------------------------------
# Pairwise netting
# -----------------------------------
def _pair_balances(expenses: Sequence[Expense], decimal_places: Optional[int]) -> Dict[PairKey, Decimal]:
    balances: Dict[PairKey, Decimal] = {}

    for expense in expenses:
        payer = expense.payer_user_id
        for participant, share in _expense_shares(expense, decimal_places).items():
            if participant == payer:
                continue

            # participant owes the payer
            if participant < payer:
                key, signed = (participant, payer), share
            else:
                key, signed = (payer, participant), -share
            balances[key] = balances.get(key, ZERO) + signed

    return balances


def compute_pairwise_transfers(
    trip_id: str,
    expenses: Sequence[Expense],
    settled_transfers: Iterable[MinimalTransfer] = (),
    decimal_places: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[MinimalTransfer]:
    """
    One transfer per pair of people, netting what each owes the other
    across the expenses they share. Every transfer traces back to real
    expenses between those two people.
    """
    currency = expenses[0].currency if expenses else settings.DEFAULT_CURRENCY
    _check_currency(expenses, currency)
    unit = _unit(decimal_places, currency)
    computed_at = _now(now)

    balances = _pair_balances(_with_settlements(expenses, settled_transfers, currency), decimal_places)

    transfers: List[MinimalTransfer] = []
    for (low, high) in sorted(balances):
        net = balances[(low, high)]
        logger.debug("Netting %s <-> %s: %s", low, high, net)

        if abs(net) < unit:
            continue

        from_user, to_user = (low, high) if net > 0 else (high, low)
        transfers.append(
            MinimalTransfer(
                id=_transfer_id(trip_id, from_user, to_user),
                trip_id=trip_id,
                from_user_id=from_user,
                to_user_id=to_user,
                amount_base=abs(net),
                computed_at=computed_at,
            )
        )

    logger.info("Trip %s: %s pairwise transfer(s)", trip_id, len(transfers))
    return transfers


# -----------------------------------
# Greedy minimal transfers
# -----------------------------------
def _greedy_transfers(
    trip_id: str,
    person_summaries: Mapping[str, PersonSummary],
    unit: Decimal,
    computed_at: datetime,
) -> List[MinimalTransfer]:
    creditors = []
    debtors = []

    for uid, summary in person_summaries.items():
        if summary.net_base >= unit:
            creditors.append([uid, summary.net_base])
        elif summary.net_base <= -unit:
            debtors.append([uid, -summary.net_base])

    creditors.sort(key=lambda x: (-x[1], x[0]))
    debtors.sort(key=lambda x: (-x[1], x[0]))

    creditors = deque(creditors)
    debtors = deque(debtors)

    transfers: List[MinimalTransfer] = []

    while creditors and debtors:
        cred_id, cred_amt = creditors[0]
        debt_id, debt_amt = debtors[0]

        pay_amt = qround(min(cred_amt, debt_amt), unit)

        if pay_amt > 0:
            logger.debug("%s pays %s %s", debt_id, cred_id, pay_amt)
            transfers.append(
                MinimalTransfer(
                    id=_transfer_id(trip_id, debt_id, cred_id),
                    trip_id=trip_id,
                    from_user_id=debt_id,
                    to_user_id=cred_id,
                    amount_base=pay_amt,
                    computed_at=computed_at,
                )
            )

        new_cred = cred_amt - pay_amt
        new_debt = debt_amt - pay_amt

        creditors.popleft()
        debtors.popleft()

        if new_cred >= unit:
            creditors.appendleft([cred_id, new_cred])
        if new_debt >= unit:
            debtors.appendleft([debt_id, new_debt])

    return transfers


def compute_minimal_transfers(
    trip_id: str,
    person_summaries: Mapping[str, PersonSummary],
    decimal_places: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[MinimalTransfer]:
    """
    Standard Greedy algorithm to minimize number of transactions.

    Deprecated in favour of compute_pairwise_transfers: the transfers it
    produces can connect people who never shared an expense.
    """
    warnings.warn(
        "compute_minimal_transfers is deprecated, use compute_pairwise_transfers",
        DeprecationWarning,
        stacklevel=2,
    )
    return _greedy_transfers(trip_id, person_summaries, _unit(decimal_places), _now(now))


# -----------------------------------
# Validation
# -----------------------------------
def find_conservation_violation(
    person_summaries: Mapping[str, PersonSummary],
    decimal_places: Optional[int] = None,
) -> Optional[ConservationViolation]:
    total = dsum(p.net_base for p in person_summaries.values())

    if abs(total) < _unit(decimal_places):
        return None

    logger.error("Conservation of money violated: net balances sum to %s", total)
    return ConservationViolation(expected=ZERO, actual=total, difference=total)


def validate_balances(
    person_summaries: Mapping[str, PersonSummary],
    decimal_places: Optional[int] = None,
) -> bool:
    """True if the net balances sum to zero within one minimal unit."""
    return find_conservation_violation(person_summaries, decimal_places) is None


def validate_settlement(
    person_summaries: Mapping[str, PersonSummary],
    transfers: Sequence[MinimalTransfer],
    decimal_places: Optional[int] = None,
) -> List[str]:
    issues: List[str] = []
    unit = _unit(decimal_places)

    violation = find_conservation_violation(person_summaries, decimal_places)
    if violation:
        issues.append(f"Conservation of money violated: sum of balances = {violation.actual}")

    seen: Dict[Tuple[str, str], int] = {}
    for t in transfers:
        if t.from_user_id not in person_summaries:
            issues.append(f"Transfer {t.id} has unknown payer: {t.from_user_id}")
        if t.to_user_id not in person_summaries:
            issues.append(f"Transfer {t.id} has unknown receiver: {t.to_user_id}")
        if t.from_user_id == t.to_user_id:
            issues.append(f"Transfer {t.id} has same payer and receiver: {t.from_user_id}")
        if t.amount_base <= 0:
            issues.append(f"Transfer {t.id} has non-positive amount: {t.amount_base}")

        key = (t.from_user_id, t.to_user_id)
        seen[key] = seen.get(key, 0) + 1

    for (from_user, to_user), count in seen.items():
        if count > 1:
            issues.append(f"Duplicate transfers detected for pair {from_user}->{to_user}: {count}")

    # each person's incoming - outgoing should equal their net balance
    tolerance = unit * max(len(person_summaries), 1)
    for uid, summary in person_summaries.items():
        incoming = dsum(t.amount_base for t in transfers if t.to_user_id == uid)
        outgoing = dsum(t.amount_base for t in transfers if t.from_user_id == uid)
        difference = abs((incoming - outgoing) - summary.net_base)
        if difference > tolerance:
            issues.append(
                f"Balance mismatch for {uid}: transfers net {incoming - outgoing}, "
                f"summary net {summary.net_base}"
            )

    return issues


# -----------------------------------
# Strategies
# -----------------------------------
class SettlementStrategy(Protocol):
    name: SettlementStrategyName

    def compute(
        self,
        trip_id: str,
        expenses: Sequence[Expense],
        person_summaries: Mapping[str, PersonSummary],
        settled_transfers: Sequence[MinimalTransfer],
        decimal_places: Optional[int],
        now: datetime,
    ) -> List[MinimalTransfer]:
        ...


class PairwiseNettingStrategy:
    name = SettlementStrategyName.PAIRWISE

    def compute(self, trip_id, expenses, person_summaries, settled_transfers, decimal_places, now):
        return compute_pairwise_transfers(
            trip_id, expenses, settled_transfers, decimal_places=decimal_places, now=now
        )


class GreedyMinimalStrategy:
    name = SettlementStrategyName.GREEDY

    def compute(self, trip_id, expenses, person_summaries, settled_transfers, decimal_places, now):
        # person_summaries already include the settled transfers
        return _greedy_transfers(trip_id, person_summaries, _unit(decimal_places), now)


_STRATEGIES = {
    SettlementStrategyName.PAIRWISE: PairwiseNettingStrategy,
    SettlementStrategyName.GREEDY: GreedyMinimalStrategy,
}


def get_strategy(name: SettlementStrategyName | str | None = None) -> SettlementStrategy:
    try:
        key = SettlementStrategyName(name or settings.SETTLEMENT_STRATEGY)
    except ValueError:
        raise ValidationError(f"Unknown settlement strategy: {name}", "strategy")
    return _STRATEGIES[key]()


def compute_settlement(
    trip_id: str,
    expenses: Sequence[Expense],
    base_currency: str,
    strategy: SettlementStrategy | SettlementStrategyName | str | None = None,
    settled_transfers: Sequence[MinimalTransfer] = (),
    decimal_places: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SettlementResult:
    if strategy is None or isinstance(strategy, str):
        strategy = get_strategy(strategy)

    if decimal_places is None:
        decimal_places = get_decimal_places(base_currency)

    summaries = compute_person_summaries(
        expenses, base_currency, settled_transfers, decimal_places=decimal_places
    )
    transfers = strategy.compute(
        trip_id, expenses, summaries, settled_transfers, decimal_places, _now(now)
    )
    violation = find_conservation_violation(summaries, decimal_places)
    # a mismatched itemized amount is the usual reason for an unbalanced trip
    amount_warnings = [
        w
        for expense in expenses
        for w in check_itemized_amount(expense, decimal_places=decimal_places)
    ]

    return SettlementResult(
        trip_id=trip_id,
        strategy=strategy.name,
        person_summaries=summaries,
        transfers=transfers,
        balanced=violation is None,
        violation=violation,
        warnings=amount_warnings,
    )


# -----------------------------------
# Transfer breakdown
# -----------------------------------
def compute_transfer_breakdown(
    from_user_id: str,
    to_user_id: str,
    transfer_amount: Decimal,
    expenses: Sequence[Expense],
    decimal_places: Optional[int] = None,
) -> TransferBreakdown:
    """
    Which expenses make up a pairwise transfer.

    An expense the receiver paid adds the sender's share; one the sender
    paid subtracts the receiver's share; expenses paid by anyone else do
    not create debt between the two and are left out.
    """
    contributions: List[ExpenseContribution] = []

    for expense in expenses:
        payer = expense.payer_user_id
        if payer not in (from_user_id, to_user_id):
            continue

        shares = _expense_shares(expense, decimal_places)
        from_owes = shares.get(from_user_id, ZERO)
        to_owes = shares.get(to_user_id, ZERO)

        if payer == to_user_id:
            net = from_owes
        else:
            net = -to_owes

        if net == 0:
            continue

        contributions.append(
            ExpenseContribution(
                expense_id=expense.id,
                description=expense.description,
                from_paid=expense.amount if payer == from_user_id else ZERO,
                from_owes=from_owes,
                to_paid=expense.amount if payer == to_user_id else ZERO,
                to_owes=to_owes,
                net_contribution=net,
            )
        )

    return TransferBreakdown(
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        total_amount=transfer_amount,
        expense_breakdowns=contributions,
    )

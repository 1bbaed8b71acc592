import logging
import random
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from app.core.errors import ValidationError
from app.core.utils import HUNDRED, ZERO, dsum
from app.schemas.expense import (
    AbsoluteSplitMode,
    AllocationResult,
    AllocationRule,
    AmountExtra,
    CustomAssignment,
    DegenerateInputWarning,
    EvenAssignment,
    Extras,
    ItemContribution,
    LineItem,
    ParticipantBreakdown,
    PercentBase,
    PercentExtra,
)
from app.services.rounding_service import round_amounts, validate_rounding_config

logger = logging.getLogger(__name__)

TAX = "tax"
TIP = "tip"
FEE = "fee"
DISCOUNT = "discount"


class _Ledger:
    """Unrounded running tallies for one participant."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.items_subtotal = ZERO
        self.taxable_subtotal = ZERO
        self.service_subtotal = ZERO
        self.has_items = False
        self.contributions: List[ItemContribution] = []
        self.extras: Dict[str, Decimal] = {}
        self.tax = ZERO
        self.tip = ZERO
        self.fees = ZERO
        self.discounts = ZERO

    @property
    def running_total(self) -> Decimal:
        return self.items_subtotal + dsum(self.extras.values())

    def item_basis(self, kind: str) -> Decimal:
        if kind == TAX:
            return self.taxable_subtotal
        if kind in (TIP, FEE):
            return self.service_subtotal
        return self.items_subtotal

    def basis(self, kind: str, base: PercentBase) -> Decimal:
        if base == PercentBase.PRE_TAX_ITEM_SUBTOTALS:
            return self.item_basis(kind)
        if base == PercentBase.TAXABLE_ITEM_SUBTOTALS_ONLY:
            return self.taxable_subtotal
        if base == PercentBase.POST_DISCOUNT_ITEM_SUBTOTALS:
            return self.items_subtotal - self.discounts
        if base == PercentBase.POST_TAX_SUBTOTALS:
            return self.item_basis(kind) + self.tax
        if base == PercentBase.POST_FEES_SUBTOTALS:
            return self.item_basis(kind) + self.tax + self.tip + self.fees
        raise ValidationError(f"Unknown percent base: {base}")


# -----------------------------------
# Validation
# -----------------------------------
def _validate_extra(extra, rule: AllocationRule, field: str):
    if extra.value < 0:
        raise ValidationError("value cannot be negative", field)
    if isinstance(extra, PercentExtra) and extra.base is None and rule.percent_base is None:
        raise ValidationError("percent extra needs a base", field)


def validate_allocation_input(items: List[LineItem], extras: Extras, rule: AllocationRule):
    validate_rounding_config(rule.rounding)

    for i, item in enumerate(items):
        field = f"items[{i}]"
        if item.quantity <= 0:
            raise ValidationError("quantity must be greater than zero", f"{field}.quantity")
        if item.unit_price < 0:
            raise ValidationError("unit price cannot be negative", f"{field}.unit_price")

        assignment = item.assignment
        if isinstance(assignment, CustomAssignment):
            unknown = set(assignment.shares) - set(assignment.users)
            if unknown:
                raise ValidationError(
                    f"shares reference users not assigned to the item: {sorted(unknown)}",
                    f"{field}.assignment.shares",
                )
            if any(weight < 0 for weight in assignment.shares.values()):
                raise ValidationError("shares cannot be negative", f"{field}.assignment.shares")

    if extras.tax is not None:
        _validate_extra(extras.tax, rule, "extras.tax")
    if extras.tip is not None:
        _validate_extra(extras.tip, rule, "extras.tip")
    for group in ("fees", "discounts"):
        seen = set()
        for i, adjustment in enumerate(getattr(extras, group)):
            field = f"extras.{group}[{i}]"
            _validate_extra(adjustment, rule, field)
            # ids key the per-participant extras, a repeat would overwrite
            if adjustment.id in seen:
                raise ValidationError(f"duplicate id: {adjustment.id}", f"{field}.id")
            seen.add(adjustment.id)


# -----------------------------------
# Step 1-3: item shares and subtotals
# -----------------------------------
def _item_ratios(item: LineItem, warnings: List[DegenerateInputWarning]) -> Dict[str, Decimal]:
    assignment = item.assignment
    users = list(dict.fromkeys(assignment.users))

    if not users:
        logger.warning("Item %s (%s) has no assigned participants", item.id, item.name)
        warnings.append(
            DegenerateInputWarning(
                code="unassigned_item",
                message=f"Item '{item.name}' is not assigned to anyone",
                subject_id=item.id,
            )
        )
        return {}

    if isinstance(assignment, EvenAssignment):
        ratio = Decimal(1) / Decimal(len(users))
        return {uid: ratio for uid in users}

    if isinstance(assignment, CustomAssignment):
        total_weight = dsum(assignment.shares.values())
        if total_weight == 0:
            logger.warning("Item %s (%s) has all-zero custom shares", item.id, item.name)
            warnings.append(
                DegenerateInputWarning(
                    code="zero_custom_shares",
                    message=f"Custom shares for item '{item.name}' sum to zero",
                    subject_id=item.id,
                )
            )
            return {}
        return {
            uid: assignment.shares.get(uid, ZERO) / total_weight
            for uid in users
        }

    raise ValidationError(f"Unsupported assignment: {assignment!r}")


def _item_share(item: LineItem, ratio: Decimal, user_count: int) -> Decimal:
    # divide instead of multiplying by a rounded 1/n so even splits stay exact
    if isinstance(item.assignment, EvenAssignment):
        return item.item_total / Decimal(user_count)
    return item.item_total * ratio


def _collect_items(
    items: List[LineItem],
    ledgers: Dict[str, _Ledger],
    warnings: List[DegenerateInputWarning],
):
    for item in items:
        ratios = _item_ratios(item, warnings)

        for uid, ratio in ratios.items():
            share = _item_share(item, ratio, len(ratios))
            ledger = ledgers.setdefault(uid, _Ledger(uid))

            ledger.items_subtotal += share
            if item.taxable:
                ledger.taxable_subtotal += share
            if item.service_chargeable:
                ledger.service_subtotal += share
            ledger.has_items = True

            ledger.contributions.append(
                ItemContribution(
                    item_id=item.id,
                    item_name=item.name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    share_ratio=ratio,
                    assigned_share=share,
                )
            )


# -----------------------------------
# Step 4: extras
# -----------------------------------
def _split_proportionally(
    total: Decimal,
    weights: Dict[str, Decimal],
    key: str,
    warnings: List[DegenerateInputWarning],
    charged: bool = True,
) -> Dict[str, Decimal]:
    weight_total = dsum(weights.values())

    if weight_total == 0:
        if charged:
            logger.warning("Extra %s references a basis that sums to zero", key)
            warnings.append(
                DegenerateInputWarning(
                    code="zero_basis",
                    message=f"Basis for '{key}' sums to zero; nothing allocated",
                    subject_id=key,
                )
            )
        return {uid: ZERO for uid in weights}

    return {uid: total * weight / weight_total for uid, weight in weights.items()}


def _split_evenly(
    total: Decimal,
    ledgers: Dict[str, _Ledger],
    key: str,
    warnings: List[DegenerateInputWarning],
) -> Dict[str, Decimal]:
    assigned = [uid for uid, ledger in ledgers.items() if ledger.has_items]
    people = assigned or list(ledgers)

    if not people:
        warnings.append(
            DegenerateInputWarning(
                code="no_participants",
                message=f"No participants to carry '{key}'",
                subject_id=key,
            )
        )
        return {}

    per_person = total / Decimal(len(people))
    shares = {uid: ZERO for uid in ledgers}
    shares.update({uid: per_person for uid in people})
    return shares


def _allocate_extra(
    extra,
    kind: str,
    key: str,
    ledgers: Dict[str, _Ledger],
    rule: AllocationRule,
    warnings: List[DegenerateInputWarning],
) -> Dict[str, Decimal]:
    if isinstance(extra, PercentExtra):
        base = extra.base or rule.percent_base
        basis = {uid: ledger.basis(kind, base) for uid, ledger in ledgers.items()}
        total = dsum(basis.values()) * extra.value / HUNDRED
        return _split_proportionally(total, basis, key, warnings, extra.value != 0)

    if isinstance(extra, AmountExtra):
        split = extra.split or rule.absolute_split
        if split == AbsoluteSplitMode.EVEN_ACROSS_ASSIGNED_PEOPLE:
            return _split_evenly(extra.value, ledgers, key, warnings)
        weights = {uid: ledger.items_subtotal for uid, ledger in ledgers.items()}
        return _split_proportionally(extra.value, weights, key, warnings, extra.value != 0)

    raise ValidationError(f"Unsupported extra: {extra!r}")


def _apply_extras(
    extras: Extras,
    ledgers: Dict[str, _Ledger],
    rule: AllocationRule,
    warnings: List[DegenerateInputWarning],
):
    # tip and fee bases may look at tax, so the order is fixed
    if extras.tax is not None:
        for uid, amount in _allocate_extra(extras.tax, TAX, TAX, ledgers, rule, warnings).items():
            ledgers[uid].tax += amount
            ledgers[uid].extras[TAX] = amount

    if extras.tip is not None:
        for uid, amount in _allocate_extra(extras.tip, TIP, TIP, ledgers, rule, warnings).items():
            ledgers[uid].tip += amount
            ledgers[uid].extras[TIP] = amount

    for fee in extras.fees:
        key = f"{FEE}_{fee.id}"
        for uid, amount in _allocate_extra(fee, FEE, key, ledgers, rule, warnings).items():
            ledgers[uid].fees += amount
            ledgers[uid].extras[key] = amount

    for discount in extras.discounts:
        key = f"{DISCOUNT}_{discount.id}"
        for uid, amount in _allocate_extra(discount, DISCOUNT, key, ledgers, rule, warnings).items():
            ledgers[uid].discounts += amount
            ledgers[uid].extras[key] = -amount


# -----------------------------------
# Public API
# -----------------------------------
def allocate(
    items: List[LineItem],
    extras: Optional[Extras] = None,
    allocation_rule: Optional[AllocationRule] = None,
    payer_id: Optional[str] = None,
    participants: Optional[Iterable[str]] = None,
    rng: Optional[random.Random] = None,
) -> AllocationResult:
    """
    Per-participant breakdown of one itemized expense.

    Shares, subtotals and extras are kept at full precision; only each
    participant's final total is rounded, and the rounding remainder is
    reconciled so the totals add up to the rounded grand total exactly.
    """
    extras = extras or Extras()
    rule = allocation_rule or AllocationRule()
    validate_allocation_input(items, extras, rule)

    warnings: List[DegenerateInputWarning] = []
    ledgers: Dict[str, _Ledger] = {}
    for uid in participants or ():
        ledgers.setdefault(uid, _Ledger(uid))

    _collect_items(items, ledgers, warnings)
    _apply_extras(extras, ledgers, rule, warnings)

    unrounded = {uid: ledger.running_total for uid, ledger in ledgers.items()}
    outcome = round_amounts(unrounded, rule.rounding, payer_id=payer_id, rng=rng)
    warnings.extend(outcome.warnings)

    breakdowns: Dict[str, ParticipantBreakdown] = {}
    for uid, ledger in ledgers.items():
        total = outcome.rounded[uid]
        breakdowns[uid] = ParticipantBreakdown(
            user_id=uid,
            items_subtotal=ledger.items_subtotal,
            extras_allocated=dict(ledger.extras),
            rounded_adjustment=total - unrounded[uid],
            remainder_adjustment=outcome.remainder_adjustments[uid],
            total=total,
            items=ledger.contributions,
        )

    allocated = dsum(b.total for b in breakdowns.values())
    if breakdowns and allocated != outcome.grand_total:
        logger.error(
            "Breakdown totals %s do not match grand total %s", allocated, outcome.grand_total
        )

    logger.debug("Allocated %s across %s participant(s)", outcome.grand_total, len(breakdowns))
    return AllocationResult(
        breakdowns=breakdowns,
        grand_total=outcome.grand_total,
        warnings=warnings,
    )


def compute_breakdown(
    items: List[LineItem],
    extras: Optional[Extras] = None,
    allocation_rule: Optional[AllocationRule] = None,
    payer_id: Optional[str] = None,
    participants: Optional[Iterable[str]] = None,
    rng: Optional[random.Random] = None,
) -> Dict[str, ParticipantBreakdown]:
    return allocate(items, extras, allocation_rule, payer_id, participants, rng).breakdowns


def breakdown_is_conserved(result: AllocationResult) -> bool:
    """Every breakdown obeys total == subtotal + extras + adjustment and totals sum to grand_total."""
    for b in result.breakdowns.values():
        if b.total != b.items_subtotal + b.extras_total + b.rounded_adjustment:
            return False
    return dsum(b.total for b in result.breakdowns.values()) == result.grand_total

import logging
import random
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_EVEN, ROUND_HALF_UP
from typing import Dict, List, Mapping, Optional
from app.core.errors import ValidationError
from app.core.utils import ZERO, dsum
from app.schemas.expense import (
    DegenerateInputWarning,
    RemainderDistributionMode,
    RoundingConfig,
    RoundingMode,
)

logger = logging.getLogger(__name__)

_DECIMAL_ROUNDING = {
    RoundingMode.ROUND_HALF_UP: ROUND_HALF_UP,
    RoundingMode.ROUND_HALF_EVEN: ROUND_HALF_EVEN,
    RoundingMode.FLOOR: ROUND_FLOOR,
    RoundingMode.CEIL: ROUND_CEILING,
}


@dataclass
class RoundingOutcome:
    rounded: Dict[str, Decimal]
    remainder_adjustments: Dict[str, Decimal]
    grand_total: Decimal
    warnings: List[DegenerateInputWarning] = field(default_factory=list)


def validate_rounding_config(config: RoundingConfig):
    if config.precision <= 0:
        raise ValidationError("precision must be greater than zero", "rounding.precision")


def round_to_precision(value: Decimal, precision: Decimal, mode: RoundingMode) -> Decimal:
    """
    Round to a multiple of precision.

    The rounding is applied to value / precision, then rescaled, so
    precisions such as 0.05 work as well as 0.01.
    """
    if precision <= 0:
        raise ValidationError("precision must be greater than zero", "precision")
    units = (value / precision).to_integral_value(rounding=_DECIMAL_ROUNDING[mode])
    return units * precision


def _largest_share_order(rounded: Mapping[str, Decimal]) -> List[str]:
    return sorted(rounded, key=lambda uid: (-rounded[uid], uid))


def _recipients(
    rounded: Mapping[str, Decimal],
    units: int,
    config: RoundingConfig,
    payer_id: Optional[str],
    rng: Optional[random.Random],
    warnings: List[DegenerateInputWarning],
) -> List[str]:
    """One participant id per minimal unit to hand out."""
    mode = config.distribute_remainder_to

    if mode == RemainderDistributionMode.PAYER:
        if payer_id is None:
            raise ValidationError(
                "payer_id is required when remainder goes to the payer",
                "rounding.distribute_remainder_to",
            )
        if payer_id in rounded:
            return [payer_id] * units

        logger.warning("Payer %s has no share, remainder goes to the largest share", payer_id)
        warnings.append(
            DegenerateInputWarning(
                code="payer_not_participant",
                message=f"Payer {payer_id} has no share; remainder given to the largest share",
                subject_id=payer_id,
            )
        )
        order = _largest_share_order(rounded)

    elif mode == RemainderDistributionMode.LARGEST_SHARE:
        order = _largest_share_order(rounded)

    elif mode == RemainderDistributionMode.FIRST_LISTED:
        return [next(iter(rounded))] * units

    elif mode == RemainderDistributionMode.RANDOM:
        gen = rng or random.Random()
        ids = list(rounded)
        return [gen.choice(ids) for _ in range(units)]

    else:
        raise ValidationError(f"Unknown remainder distribution mode: {mode}")

    return [order[i % len(order)] for i in range(units)]


def round_amounts(
    amounts: Mapping[str, Decimal],
    config: RoundingConfig,
    payer_id: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> RoundingOutcome:
    """
    Round every amount and reconcile the leftover minimal units so that the
    rounded amounts sum exactly to the rounded grand total.

    The remainder (possibly negative) is handed out one minimal unit at a
    time to the participants chosen by config.distribute_remainder_to.
    """
    validate_rounding_config(config)

    precision = config.precision
    rounded = {
        uid: round_to_precision(amount, precision, config.mode)
        for uid, amount in amounts.items()
    }
    adjustments = {uid: ZERO for uid in amounts}
    grand_total = round_to_precision(dsum(amounts.values()), precision, config.mode)
    warnings: List[DegenerateInputWarning] = []

    if not rounded:
        return RoundingOutcome(rounded, adjustments, grand_total, warnings)

    remainder = grand_total - dsum(rounded.values())
    # both sides are multiples of precision, so this is an exact integer
    units = int(remainder / precision)

    if units:
        step = precision if units > 0 else -precision
        logger.debug("Distributing %s unit(s) of %s via %s", units, precision, config.distribute_remainder_to.value)

        for uid in _recipients(rounded, abs(units), config, payer_id, rng, warnings):
            rounded[uid] += step
            adjustments[uid] += step

    return RoundingOutcome(rounded, adjustments, grand_total, warnings)

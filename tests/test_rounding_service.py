import random
from decimal import Decimal
import pytest
from app.core.errors import ValidationError
from app.schemas.expense import RemainderDistributionMode, RoundingConfig, RoundingMode
from app.services.rounding_service import round_amounts, round_to_precision
from conftest import D

CENT = D("0.01")
THIRD = Decimal(10) / Decimal(3)


def config(distribute=RemainderDistributionMode.LARGEST_SHARE, mode=RoundingMode.ROUND_HALF_UP, precision=CENT):
    return RoundingConfig(precision=precision, mode=mode, distribute_remainder_to=distribute)


@pytest.mark.parametrize(
    "value, mode, expected",
    [
        ("1.235", RoundingMode.ROUND_HALF_UP, "1.24"),
        ("1.245", RoundingMode.ROUND_HALF_EVEN, "1.24"),
        ("1.255", RoundingMode.ROUND_HALF_EVEN, "1.26"),
        ("1.239", RoundingMode.FLOOR, "1.23"),
        ("1.231", RoundingMode.CEIL, "1.24"),
        ("-1.231", RoundingMode.FLOOR, "-1.24"),
    ],
)
def test_round_to_precision_modes(value, mode, expected):
    assert round_to_precision(D(value), CENT, mode) == D(expected)


def test_round_to_precision_supports_cash_rounding():
    assert round_to_precision(D("1.12"), D("0.05"), RoundingMode.ROUND_HALF_UP) == D("1.10")
    assert round_to_precision(D("1.13"), D("0.05"), RoundingMode.ROUND_HALF_UP) == D("1.15")


def test_round_to_precision_rejects_non_positive_precision():
    with pytest.raises(ValidationError):
        round_to_precision(D("1.00"), D("0"), RoundingMode.ROUND_HALF_UP)


def test_remainder_goes_to_largest_share_with_id_tiebreak():
    outcome = round_amounts({"carol": THIRD, "alice": THIRD, "bob": THIRD}, config())

    assert outcome.grand_total == D("10.00")
    assert outcome.rounded == {"carol": D("3.33"), "alice": D("3.34"), "bob": D("3.33")}
    assert outcome.remainder_adjustments["alice"] == CENT
    assert outcome.remainder_adjustments["bob"] == 0
    assert sum(outcome.rounded.values()) == outcome.grand_total


def test_remainder_goes_to_first_listed():
    outcome = round_amounts(
        {"carol": THIRD, "alice": THIRD, "bob": THIRD},
        config(RemainderDistributionMode.FIRST_LISTED),
    )
    assert outcome.rounded["carol"] == D("3.34")


def test_first_listed_takes_every_unit():
    amounts = {"A": D("0.255"), "B": D("0.255"), "C": D("0.245"), "D": D("0.245")}

    outcome = round_amounts(amounts, config(RemainderDistributionMode.FIRST_LISTED, mode=RoundingMode.FLOOR))

    assert outcome.grand_total == D("1.00")
    assert outcome.rounded == {"A": D("0.27"), "B": D("0.25"), "C": D("0.24"), "D": D("0.24")}
    assert outcome.remainder_adjustments["A"] == D("0.02")


def test_remainder_goes_to_payer():
    outcome = round_amounts(
        {"alice": THIRD, "bob": THIRD, "carol": THIRD},
        config(RemainderDistributionMode.PAYER),
        payer_id="bob",
    )
    assert outcome.rounded["bob"] == D("3.34")
    assert outcome.warnings == []


def test_payer_mode_requires_payer():
    with pytest.raises(ValidationError):
        round_amounts({"alice": THIRD, "bob": THIRD, "carol": THIRD}, config(RemainderDistributionMode.PAYER))


def test_payer_without_share_falls_back_with_warning():
    outcome = round_amounts(
        {"alice": THIRD, "bob": THIRD, "carol": THIRD},
        config(RemainderDistributionMode.PAYER),
        payer_id="dave",
    )
    assert outcome.rounded["alice"] == D("3.34")
    assert [w.code for w in outcome.warnings] == ["payer_not_participant"]


def test_negative_remainder_is_taken_back():
    outcome = round_amounts({"a": D("0.666"), "b": D("0.666"), "c": D("0.668")}, config())

    assert outcome.grand_total == D("2.00")
    assert outcome.rounded == {"a": D("0.66"), "b": D("0.67"), "c": D("0.67")}
    assert outcome.remainder_adjustments["a"] == -CENT


def test_floor_mode_distributes_positive_units():
    outcome = round_amounts({"a": THIRD, "b": THIRD, "c": THIRD}, config(mode=RoundingMode.FLOOR))

    # floor(9.999...) is 9.99, so the three 3.33s already add up
    assert outcome.grand_total == D("9.99")
    assert sum(outcome.rounded.values()) == D("9.99")


def test_seeded_random_distribution_is_reproducible():
    amounts = {uid: D("1") / D("7") for uid in "abcdefg"}
    cfg = config(RemainderDistributionMode.RANDOM)

    first = round_amounts(amounts, cfg, rng=random.Random(42))
    second = round_amounts(amounts, cfg, rng=random.Random(42))

    assert first.rounded == second.rounded
    assert sum(first.rounded.values()) == first.grand_total


def test_empty_amounts():
    outcome = round_amounts({}, config())
    assert outcome.rounded == {}
    assert outcome.grand_total == 0

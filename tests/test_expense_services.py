import pytest
from app.core.errors import ValidationError
from app.schemas.expense import (
    AllocationRule,
    Extras,
    PercentExtra,
    RemainderDistributionMode,
    RoundingConfig,
    SplitType,
)
from app.services.expense_services import check_itemized_amount, compute_shares, validate_expense
from conftest import D, even_item, expense


def test_equal_split_divides_evenly():
    shares = compute_shares(expense("e1", "A", "12.00", ["A", "B", "C"]))
    assert shares == {"A": D("4.00"), "B": D("4.00"), "C": D("4.00")}


def test_equal_split_shares_sum_to_amount():
    shares = compute_shares(expense("e1", "A", "10.00", ["A", "B", "C"]))

    assert sum(shares.values()) == D("10.00")
    assert sorted(shares.values()) == [D("3.33"), D("3.33"), D("3.34")]


def test_equal_split_remainder_to_payer():
    shares = compute_shares(
        expense("e1", "C", "10.00", ["A", "B", "C"]),
        distribute_remainder_to=RemainderDistributionMode.PAYER,
    )
    assert shares["C"] == D("3.34")


def test_weighted_split():
    shares = compute_shares(expense("e1", "A", "9.00", {"A": 2, "B": 1}, split_type=SplitType.WEIGHTED))
    assert shares == {"A": D("6.00"), "B": D("3.00")}


def test_weighted_split_with_fractional_weights():
    shares = compute_shares(
        expense("e1", "A", "100.00", {"A": "1.5", "B": "1", "C": "0.5"}, split_type=SplitType.WEIGHTED)
    )
    assert shares == {"A": D("50.00"), "B": D("33.33"), "C": D("16.67")}


def test_zero_decimal_currency():
    shares = compute_shares(expense("e1", "A", "1000", ["A", "B", "C"], currency="JPY"))

    assert sum(shares.values()) == D("1000")
    assert sorted(shares.values()) == [D("333"), D("333"), D("334")]


def test_three_decimal_currency():
    shares = compute_shares(expense("e1", "A", "1.000", ["A", "B", "C"], currency="KWD"))

    assert sum(shares.values()) == D("1.000")
    assert min(shares.values()) == D("0.333")


def test_explicit_decimal_places_win_over_currency_table():
    shares = compute_shares(expense("e1", "A", "10", ["A", "B", "C"], currency="USD"), decimal_places=0)
    assert sorted(shares.values()) == [D("3"), D("3"), D("4")]


def test_injected_currency_table():
    shares = compute_shares(
        expense("e1", "A", "10", ["A", "B", "C"], currency="XTS"),
        currency_decimals={"XTS": 1},
    )
    assert sorted(shares.values()) == [D("3.3"), D("3.3"), D("3.4")]


def test_itemized_uses_stored_participant_amounts():
    e = expense(
        "e1",
        "A",
        "30.00",
        {},
        split_type=SplitType.ITEMIZED,
        participant_amounts={"A": D("18.00"), "B": D("12.00")},
    )
    assert compute_shares(e) == {"A": D("18.00"), "B": D("12.00")}


def test_itemized_computes_from_items():
    e = expense(
        "e1",
        "A",
        "33.00",
        {},
        split_type=SplitType.ITEMIZED,
        items=[even_item("burger", "20.00", ["A"]), even_item("salad", "10.00", ["B"])],
        extras=Extras(tax=PercentExtra(value=D("10"))),
        allocation=AllocationRule(),
    )

    assert compute_shares(e) == {"A": D("22.00"), "B": D("11.00")}
    assert check_itemized_amount(e) == []


def yen_dinner(allocation):
    return expense(
        "e1",
        "A",
        "1000",
        {},
        split_type=SplitType.ITEMIZED,
        currency="JPY",
        items=[even_item("sushi", "1000", ["A", "B", "C"])],
        allocation=allocation,
    )


def test_itemized_rule_without_precision_follows_currency():
    assert compute_shares(yen_dinner(AllocationRule())) == {"A": D("334"), "B": D("333"), "C": D("333")}


def test_itemized_rule_with_explicit_precision_is_kept():
    rule = AllocationRule(rounding=RoundingConfig(precision=D("0.01")))

    assert compute_shares(yen_dinner(rule)) == {"A": D("333.34"), "B": D("333.33"), "C": D("333.33")}


def test_itemized_amount_mismatch_warns():
    e = expense(
        "e1",
        "A",
        "40.00",
        {},
        split_type=SplitType.ITEMIZED,
        participant_amounts={"A": D("18.00"), "B": D("12.00")},
    )

    warnings = check_itemized_amount(e)

    assert [w.code for w in warnings] == ["amount_mismatch"]
    assert warnings[0].subject_id == "e1"


@pytest.mark.parametrize(
    "bad",
    [
        expense("e1", "A", "0", ["A"]),
        expense("e1", "A", "10.00", {}),
        expense("e1", "A", "10.00", {"A": 1, "B": 2}),
        expense("e1", "A", "10.00", {"A": 1, "B": 0}, split_type=SplitType.WEIGHTED),
        expense("e1", "A", "10.00", {}, split_type=SplitType.ITEMIZED),
        expense("e1", "A", "10.00", ["A"], description="x" * 201),
    ],
    ids=["zero-amount", "no-participants", "equal-weight-not-one", "zero-weight", "itemized-empty", "long-description"],
)
def test_invalid_expenses(bad):
    with pytest.raises(ValidationError):
        validate_expense(bad)
    with pytest.raises(ValidationError):
        compute_shares(bad)

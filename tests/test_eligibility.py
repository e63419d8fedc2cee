from decimal import Decimal

from schoolms.api.v1.clearances.eligibility import FeeTotals, evaluate, payment_percentage


def _totals(total, paid, aid="0") -> FeeTotals:
    total, paid, aid = Decimal(total), Decimal(paid), Decimal(aid)
    outstanding = max(total - paid - aid, Decimal("0"))
    return FeeTotals(total, paid, aid, outstanding)


def test_payment_percentage_counts_aid() -> None:
    assert payment_percentage(_totals("100000", "50000", "20000")) == Decimal("70.00")


def test_no_fees_counts_as_fully_paid() -> None:
    assert payment_percentage(_totals("0", "0")) == Decimal("100.00")


def test_percentage_is_capped() -> None:
    totals = FeeTotals(Decimal("100"), Decimal("100"), Decimal("50"), Decimal("0"))
    assert payment_percentage(totals) == Decimal("100.00")


def test_minimum_percentage_threshold() -> None:
    result = evaluate(_totals("100000", "70000"), Decimal("70"), False)
    assert result.eligible
    assert result.required_percentage == Decimal("70.00")

    result = evaluate(_totals("100000", "69000"), Decimal("70"), False)
    assert not result.eligible
    assert "70.00% is required" in result.reason


def test_full_payment_ignores_threshold() -> None:
    result = evaluate(_totals("100000", "99000"), Decimal("50"), True)
    assert not result.eligible
    assert result.required_percentage == Decimal("100.00")

    assert evaluate(_totals("100000", "100000"), Decimal("50"), True).eligible


def test_threshold_override() -> None:
    result = evaluate(_totals("100000", "40000"), Decimal("70"), False, threshold_override=Decimal("40"))
    assert result.eligible
    assert result.required_percentage == Decimal("40.00")

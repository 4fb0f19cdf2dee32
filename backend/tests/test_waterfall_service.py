"""Tests for the pure waterfall calculation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

from pricing_engine.models import CalculationType, ConditionType
from pricing_engine.schemas import PricingConditionRead, PricingContext
from pricing_engine.services.waterfall_service import calculate


def _condition(name: str, **overrides) -> PricingConditionRead:
    data = {
        "name": name,
        "condition_type": ConditionType.DISCOUNT,
        "calculation_type": CalculationType.PERCENTAGE,
        "value": Decimal("-10"),
        "priority": 1,
    }
    data.update(overrides)
    return PricingConditionRead(**data)


def _context(**overrides) -> PricingContext:
    data = {"product_id": "P-1", "customer_id": "C-1", "quantity": 1, "list_price": 100}
    data.update(overrides)
    return PricingContext(**data)


def _reconciles(result) -> bool:
    adjustments = sum((step.adjustment for step in result.steps), Decimal("0"))
    total = result.list_price + adjustments
    return total == result.final_price


def test_percentages_compound_on_running_total() -> None:
    first = _condition("Dealer discount", priority=1)
    result = calculate(_context(), [first])
    assert result.final_price == Decimal("90.00")

    second = _condition("Promo discount", priority=2)
    result = calculate(_context(), [second, first])
    assert [step.condition_name for step in result.steps] == [
        "Dealer discount",
        "Promo discount",
    ]
    assert result.steps[1].adjustment == Decimal("-9.00")
    assert result.final_price == Decimal("81.00")
    assert _reconciles(result)


def test_formula_result_is_a_delta() -> None:
    surcharge = _condition(
        "Handling",
        condition_type=ConditionType.SURCHARGE,
        calculation_type=CalculationType.FORMULA,
        formula="qty*value",
        value=Decimal("2"),
    )
    result = calculate(_context(list_price=50, quantity=5), [surcharge])
    assert result.steps[0].adjustment == Decimal("10.00")
    assert result.final_price == Decimal("60.00")


def test_fixed_value_keeps_its_sign() -> None:
    freight = _condition(
        "Freight",
        condition_type=ConditionType.FREIGHT,
        calculation_type=CalculationType.FIXED,
        value=Decimal("12.5"),
    )
    rebate = _condition(
        "Rebate",
        condition_type=ConditionType.REBATE,
        calculation_type=CalculationType.FIXED,
        value=Decimal("-2.5"),
        priority=2,
    )
    result = calculate(_context(), [freight, rebate])
    assert [step.adjustment for step in result.steps] == [
        Decimal("12.50"),
        Decimal("-2.50"),
    ]
    assert [step.running_total for step in result.steps] == [
        Decimal("112.50"),
        Decimal("110.00"),
    ]


def test_exclusive_condition_halts_later_conditions() -> None:
    contract = _condition(
        "Contract price",
        calculation_type=CalculationType.FIXED,
        value=Decimal("-20"),
        exclusive=True,
    )
    promo = _condition("Promo", priority=2)
    result = calculate(_context(), [promo, contract])
    assert [step.condition_name for step in result.steps] == ["Contract price"]
    assert result.final_price == Decimal("80.00")


def test_non_matching_exclusive_condition_does_not_halt() -> None:
    contract = _condition(
        "Contract price",
        exclusive=True,
        conditions=[{"dimension": "customer", "operator": "eq", "value": "C-9"}],
    )
    promo = _condition("Promo", priority=2)
    result = calculate(_context(), [contract, promo])
    assert [step.condition_name for step in result.steps] == ["Promo"]


def test_priority_ties_keep_input_order() -> None:
    conditions = [
        _condition(f"Tie {index}", calculation_type=CalculationType.FIXED, value=-1)
        for index in range(5)
    ]
    names = [f"Tie {index}" for index in range(5)]
    for _ in range(3):
        result = calculate(_context(), conditions)
        assert [step.condition_name for step in result.steps] == names

    result = calculate(_context(), list(reversed(conditions)))
    assert [step.condition_name for step in result.steps] == list(reversed(names))


def test_adjustments_round_half_up_to_cents() -> None:
    surcharge = _condition(
        "Energy surcharge",
        condition_type=ConditionType.SURCHARGE,
        value=Decimal("1"),
    )
    result = calculate(_context(list_price=Decimal("12.50")), [surcharge])
    assert result.steps[0].adjustment == Decimal("0.13")
    assert result.final_price == Decimal("12.63")


def test_many_steps_reconcile_exactly() -> None:
    conditions = [
        _condition("A", value=Decimal("-3.33"), priority=1),
        _condition("B", value=Decimal("7.77"), priority=2),
        _condition(
            "C",
            calculation_type=CalculationType.FORMULA,
            formula="price / 7",
            priority=3,
        ),
        _condition(
            "D", calculation_type=CalculationType.FIXED, value="0.005", priority=4
        ),
    ]
    result = calculate(_context(list_price=Decimal("99.99"), quantity=3), conditions)
    assert len(result.steps) == 4
    assert _reconciles(result)
    assert result.steps[-1].running_total == result.final_price


def test_negative_final_price_is_not_clamped() -> None:
    credit = _condition(
        "Credit",
        calculation_type=CalculationType.FIXED,
        value=Decimal("-15"),
    )
    result = calculate(_context(list_price=10), [credit])
    assert result.final_price == Decimal("-5.00")


def test_inactive_conditions_are_ignored() -> None:
    result = calculate(_context(), [_condition("Off", is_active=False)])
    assert result.steps == ()
    assert result.final_price == Decimal("100")


def test_broken_formula_is_skipped_with_diagnostic() -> None:
    broken = _condition(
        "Broken",
        calculation_type=CalculationType.FORMULA,
        formula="price / (qty - qty)",
        exclusive=True,
    )
    fine = _condition("Fine", priority=2)
    result = calculate(_context(), [broken, fine])
    assert [step.condition_name for step in result.steps] == ["Fine"]
    assert result.final_price == Decimal("90.00")
    assert len(result.diagnostics) == 1
    diagnostic = result.diagnostics[0]
    assert diagnostic.code == "formula_error"
    assert diagnostic.condition_id == broken.id


def test_type_mismatch_is_reported_and_condition_skipped() -> None:
    odd = _condition(
        "Odd",
        conditions=[{"dimension": "customer", "operator": "lt", "value": "10"}],
    )
    result = calculate(_context(), [odd])
    assert result.steps == ()
    assert [item.code for item in result.diagnostics] == ["dimension_type_error"]


def test_scale_tier_value_drives_adjustment() -> None:
    volume = _condition(
        "Volume",
        scale=[
            {"from": 1, "to": 10, "value": "-2"},
            {"from": 10, "to": None, "value": "-15"},
        ],
    )
    result = calculate(_context(quantity=25), [volume])
    assert result.steps[0].adjustment == Decimal("-15.00")


def test_margin_uses_cost_and_rounds_to_one_decimal() -> None:
    conditions = [_condition("A"), _condition("B", priority=2)]
    result = calculate(_context(), conditions, cost=Decimal("60"))
    assert result.final_price == Decimal("81.00")
    assert result.margin_pct == Decimal("25.9")


def test_margin_is_null_without_cost() -> None:
    result = calculate(_context(), [_condition("A")])
    assert result.margin_pct is None
    assert result.diagnostics == ()


def test_margin_is_null_for_zero_final_price() -> None:
    free = _condition(
        "Free sample",
        calculation_type=CalculationType.PERCENTAGE,
        value=Decimal("-100"),
    )
    result = calculate(_context(), [free], cost=Decimal("10"))
    assert result.final_price == Decimal("0.00")
    assert result.margin_pct is None
    assert [item.code for item in result.diagnostics] == ["margin_undefined"]


def test_validity_window_is_checked_against_pricing_date() -> None:
    now = datetime(2025, 6, 1, tzinfo=UTC)
    expired = _condition("Expired", valid_to=now - timedelta(days=1))
    upcoming = _condition("Upcoming", valid_from=now + timedelta(days=1))
    current = _condition(
        "Current", valid_from=now - timedelta(days=1), valid_to=now + timedelta(days=1)
    )
    result = calculate(_context(pricing_date=now), [expired, upcoming, current])
    assert [step.condition_name for step in result.steps] == ["Current"]


def test_calculation_is_deterministic() -> None:
    created_at = datetime(2025, 1, 1, tzinfo=UTC)
    conditions = [
        _condition("A", priority=3),
        _condition("B", priority=1, calculation_type=CalculationType.FIXED, value=5),
        _condition("C", priority=3),
    ]
    first = calculate(_context(), conditions, created_at=created_at)
    second = calculate(_context(), conditions, created_at=created_at)
    assert first == second
    assert first.to_dict()["steps"][0]["condition_name"] == "B"


def test_to_dict_serializes_money_as_strings() -> None:
    result = calculate(_context(), [_condition("A")], cost=Decimal("45"))
    data = result.to_dict()
    assert data["list_price"] == "100.00"
    assert data["final_price"] == "90.00"
    assert data["margin_pct"] == "50.0"
    assert data["steps"][0]["adjustment"] == "-10.00"
    assert data["steps"][0]["condition_type"] == "discount"

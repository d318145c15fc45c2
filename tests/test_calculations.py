import logging
import math

import pytest
import pandas as pd
import numpy as np
from copy import deepcopy

from core.financials import (
    analyze_viability,
    calculate_depreciation,
    calculate_first_year_revenue,
    calculate_irr,
    calculate_npv,
    calculate_projections,
    calculate_valuation,
)


@pytest.fixture
def base_inputs():
    return {
        "initial_investment": 500000,
        "monthly_revenue": 120000,
        "monthly_cost": 80000,
        "annual_growth_rate": 10,
        "tax_rate": 15,
        "discount_rate": 12,
    }


@pytest.fixture
def losing_inputs():
    return {
        "initial_investment": 10000,
        "monthly_revenue": 1000,
        "monthly_cost": 2000,
        "annual_growth_rate": 0,
        "tax_rate": 50,
        "discount_rate": 10,
    }


@pytest.mark.parametrize("years", [1, 5, 10])
def test_projection_length_matches_horizon(base_inputs, years):
    cf = calculate_projections(deepcopy(base_inputs), years)["cash_flow"]
    assert len(cf) == years * 12
    assert cf.index.name == "month"
    assert list(cf.index) == list(range(1, years * 12 + 1))


def test_projection_structure_and_types(base_inputs):
    result = calculate_projections(deepcopy(base_inputs))
    assert {"cash_flow", "payback_month"} == set(result.keys())
    cf = result["cash_flow"]
    assert isinstance(cf, pd.DataFrame)
    expected_columns = {
        "year",
        "revenue",
        "costs",
        "gross_profit",
        "taxes",
        "net_income",
        "cumulative",
    }
    assert expected_columns.issubset(cf.columns)
    assert len(cf) == 60


def test_year_column_is_ceiling_of_month(base_inputs):
    cf = calculate_projections(deepcopy(base_inputs), 3)["cash_flow"]
    assert cf.loc[1, "year"] == 1
    assert cf.loc[12, "year"] == 1
    assert cf.loc[13, "year"] == 2
    assert cf.loc[36, "year"] == 3


def test_first_month_matches_example_scenario(base_inputs):
    cf = calculate_projections(deepcopy(base_inputs))["cash_flow"]
    assert cf.loc[1, "net_income"] == pytest.approx(34000)
    assert cf.loc[1, "taxes"] == pytest.approx(6000)
    assert cf.loc[1, "cumulative"] == pytest.approx(-466000)


def test_cumulative_follows_net_income(base_inputs):
    cf = calculate_projections(deepcopy(base_inputs))["cash_flow"]
    assert cf["cumulative"].iloc[0] == pytest.approx(
        -base_inputs["initial_investment"] + cf["net_income"].iloc[0]
    )
    steps = cf["cumulative"].diff().iloc[1:]
    assert np.allclose(steps.values, cf["net_income"].iloc[1:].values)


def test_growth_applied_at_start_of_each_year(base_inputs):
    cf = calculate_projections(deepcopy(base_inputs))["cash_flow"]
    revenue, cost = base_inputs["monthly_revenue"], base_inputs["monthly_cost"]

    assert cf.loc[12, "revenue"] == pytest.approx(revenue)
    assert cf.loc[13, "revenue"] == pytest.approx(revenue * 1.1)
    assert cf.loc[24, "revenue"] == pytest.approx(revenue * 1.1)
    assert cf.loc[25, "revenue"] == pytest.approx(revenue * 1.1**2)

    # Costs grow at half the revenue rate.
    assert cf.loc[12, "costs"] == pytest.approx(cost)
    assert cf.loc[13, "costs"] == pytest.approx(cost * 1.05)
    assert cf.loc[37, "costs"] == pytest.approx(cost * 1.05**3)


def test_revenue_constant_within_a_year(base_inputs):
    cf = calculate_projections(deepcopy(base_inputs))["cash_flow"]
    per_year = cf.groupby("year")["revenue"].nunique()
    assert (per_year == 1).all()


def test_zero_tax_keeps_gross_profit(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["tax_rate"] = 0
    cf = calculate_projections(inputs)["cash_flow"]
    assert (cf["taxes"] == 0).all()
    assert np.allclose(cf["net_income"].values, cf["gross_profit"].values)


def test_losses_are_not_taxed(losing_inputs):
    cf = calculate_projections(deepcopy(losing_inputs))["cash_flow"]
    assert (cf["gross_profit"] < 0).all()
    assert (cf["taxes"] == 0).all()
    assert cf["net_income"].eq(-1000).all()


def test_payback_month_in_example_scenario(base_inputs):
    result = calculate_projections(deepcopy(base_inputs))
    cf = result["cash_flow"]
    # 12 * 34000 leaves 92000 to recover; year two nets 40800 a month.
    assert cf.loc[12, "cumulative"] == pytest.approx(-92000)
    assert cf.loc[14, "cumulative"] == pytest.approx(-10400)
    assert result["payback_month"] == 15


def test_payback_is_first_non_negative_month(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["initial_investment"] = 1234567
    result = calculate_projections(inputs)
    cf = result["cash_flow"]
    expected = int(cf.index[cf["cumulative"] >= 0][0])
    assert result["payback_month"] == expected
    assert cf.loc[expected - 1, "cumulative"] < 0


def test_payback_not_reached_returns_none(losing_inputs):
    result = calculate_projections(deepcopy(losing_inputs))
    assert result["payback_month"] is None


def test_zero_investment_pays_back_in_first_month(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["initial_investment"] = 0
    assert calculate_projections(inputs)["payback_month"] == 1


@pytest.mark.parametrize("years", [0, -1])
def test_non_positive_horizon_gives_empty_projection(base_inputs, years):
    result = calculate_projections(deepcopy(base_inputs), years)
    assert result["cash_flow"].empty
    assert result["payback_month"] is None


def test_negative_growth_declines_revenue(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["annual_growth_rate"] = -20
    cf = calculate_projections(inputs)["cash_flow"]
    assert cf["revenue"].is_monotonic_decreasing
    assert cf.loc[13, "revenue"] == pytest.approx(120000 * 0.8)
    assert cf.loc[13, "costs"] == pytest.approx(80000 * 0.9)


def test_zero_revenue_and_cost_propagate_zeros(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["monthly_revenue"] = 0
    inputs["monthly_cost"] = 0
    cf = calculate_projections(inputs)["cash_flow"]
    assert (cf["revenue"] == 0).all()
    assert (cf["net_income"] == 0).all()
    assert (cf["cumulative"] == -500000).all()


def test_projection_is_deterministic(base_inputs):
    first = calculate_projections(deepcopy(base_inputs))
    second = calculate_projections(deepcopy(base_inputs))
    pd.testing.assert_frame_equal(first["cash_flow"], second["cash_flow"])
    assert first["payback_month"] == second["payback_month"]


def test_projection_does_not_mutate_inputs(base_inputs):
    inputs = deepcopy(base_inputs)
    calculate_projections(inputs)
    assert inputs == base_inputs


def test_missing_field_raises_value_error(base_inputs):
    inputs = deepcopy(base_inputs)
    del inputs["tax_rate"]
    with pytest.raises(ValueError):
        calculate_projections(inputs)


def test_large_numbers_do_not_overflow(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["monthly_revenue"] = 1e12
    inputs["monthly_cost"] = 1e11
    cf = calculate_projections(inputs, 10)["cash_flow"]
    assert np.all(np.isfinite(cf.values))


def test_npv_without_discount_is_plain_sum():
    assert calculate_npv(500, [100, 200, 300], 0) == pytest.approx(100)
    assert calculate_npv(0, [-100] * 12, 0) == pytest.approx(-1200)


def test_npv_discounts_first_flow_one_month():
    assert calculate_npv(0, [100], 12) == pytest.approx(100 / 1.12 ** (1 / 12))


def test_npv_monthly_rate_compounds_to_annual_rate():
    flows = [0] * 11 + [112]
    assert calculate_npv(0, flows, 12) == pytest.approx(100)


def test_npv_of_empty_flows_is_minus_investment():
    assert calculate_npv(1000, [], 12) == pytest.approx(-1000)


def test_npv_degenerate_rate_propagates_infinity():
    result = calculate_npv(0, [100, 100], -100)
    assert math.isinf(result)


def test_irr_single_flow_matches_known_rate():
    flows = [0] * 11 + [110]
    assert calculate_irr(100, flows) == pytest.approx(10, abs=0.05)


def test_irr_zeroes_npv_of_projected_flows(base_inputs):
    cf = calculate_projections(deepcopy(base_inputs))["cash_flow"]
    flows = cf["net_income"].tolist()
    irr = calculate_irr(base_inputs["initial_investment"], flows)
    assert abs(calculate_npv(base_inputs["initial_investment"], flows, irr)) < 0.01
    assert irr > base_inputs["discount_rate"]


def test_irr_without_root_returns_bound_estimate(caplog):
    caplog.set_level(logging.DEBUG, logger="viability")
    assert calculate_irr(0, [1000] * 12) == pytest.approx(500)
    assert calculate_irr(1000, [-10] * 12) == pytest.approx(-99)
    assert "IRR search ended without convergence" in caplog.text


def test_valuation_golden_value():
    result = calculate_valuation(0, 10000, 12, 5)
    assert result == pytest.approx(10000 * 12 * 1.05 / 0.07 / 1.12**5)
    assert result == pytest.approx(1021368.34, abs=0.01)


def test_valuation_adds_npv():
    base = calculate_valuation(0, 10000, 12, 5)
    assert calculate_valuation(250, 10000, 12, 5) == pytest.approx(base + 250)


def test_valuation_caps_growth_below_discount_rate():
    result = calculate_valuation(0, 10000, 8, 10)
    assert result == pytest.approx(10000 * 12 * 1.06 / 0.02 / 1.08**5)


def test_valuation_degenerate_discount_propagates_infinity():
    assert calculate_valuation(0, 10000, -100, 10) == float("-inf")


def test_depreciation_is_straight_line():
    assert calculate_depreciation(500000) == pytest.approx(100000)
    assert calculate_depreciation(500000, 10) == pytest.approx(50000)


def test_depreciation_zero_years_is_infinite():
    assert calculate_depreciation(1000, 0) == float("inf")
    assert math.isnan(calculate_depreciation(0, 0))


def test_viability_structure_and_types(base_inputs):
    analysis = analyze_viability(deepcopy(base_inputs))
    assert {
        "cash_flow",
        "payback_month",
        "npv",
        "irr",
        "valuation",
        "irr_above_discount",
        "warnings",
    } == set(analysis.keys())
    assert isinstance(analysis["warnings"], list)


def test_viability_composes_engine_functions(base_inputs):
    analysis = analyze_viability(deepcopy(base_inputs))
    flows = analysis["cash_flow"]["net_income"].tolist()

    npv = calculate_npv(500000, flows, 12)
    assert analysis["npv"] == pytest.approx(npv)
    assert analysis["irr"] == pytest.approx(calculate_irr(500000, flows))
    assert analysis["valuation"] == pytest.approx(calculate_valuation(npv, flows[-1], 12, 10))
    assert analysis["payback_month"] == 15
    assert analysis["npv"] > 0
    assert analysis["irr_above_discount"] is True
    assert analysis["warnings"] == []


def test_viability_warnings_for_losing_project(losing_inputs):
    analysis = analyze_viability(deepcopy(losing_inputs))
    assert analysis["warnings"] == [
        "PAYBACK_NOT_REACHED",
        "IRR_INCONCLUSIVE",
        "NEGATIVE_NPV",
    ]
    assert analysis["irr_above_discount"] is False


def test_viability_flags_degenerate_valuation(base_inputs):
    inputs = deepcopy(base_inputs)
    inputs["discount_rate"] = -100
    analysis = analyze_viability(inputs)
    assert not math.isfinite(analysis["valuation"])
    assert "VALUATION_DEGENERATE" in analysis["warnings"]


def test_viability_with_empty_horizon(base_inputs):
    analysis = analyze_viability(deepcopy(base_inputs), 0)
    assert analysis["cash_flow"].empty
    assert analysis["npv"] == pytest.approx(-500000)
    assert analysis["valuation"] == pytest.approx(-500000)
    assert "PAYBACK_NOT_REACHED" in analysis["warnings"]


def test_first_year_revenue(base_inputs):
    assert calculate_first_year_revenue(deepcopy(base_inputs)) == pytest.approx(1440000)

# financials.py
"""
Financial projection engine for project viability studies.

This module projects monthly cash flow from a set of financial assumptions
and derives the viability indicators shown to the user: payback month,
net present value, internal rate of return and a terminal-value valuation.
All functions are pure: they read their arguments and return new objects.
"""

from typing import Dict, Iterable, List, Mapping, Optional
import math
import numpy as np
import pandas as pd

from core.assumptions import REQUIRED_FIELDS
from core.logging import get_logger

logger = get_logger(__name__)

# Operating costs grow at half the revenue growth rate.
COST_GROWTH_FACTOR = 0.5

# Terminal growth is capped this many percentage points below the discount rate.
TERMINAL_GROWTH_SPREAD = 2.0
TERMINAL_HORIZON_YEARS = 5

# IRR search bounds are annual rates as fractions (-99% .. +500%).
IRR_LOW = -0.99
IRR_HIGH = 5.0
IRR_INITIAL_GUESS = 0.1
IRR_MAX_ITERATIONS = 100
IRR_TOLERANCE = 0.01

CASHFLOW_COLUMNS = [
    "year",
    "revenue",
    "costs",
    "gross_profit",
    "taxes",
    "net_income",
    "cumulative",
]


def _require_fields(assumptions: Mapping) -> None:
    missing = REQUIRED_FIELDS - set(assumptions.keys())
    if missing:
        raise ValueError(f"Missing required assumptions: {', '.join(sorted(missing))}")


def calculate_projections(assumptions: Mapping, years: int = 5) -> Dict:
    """Projects monthly revenue, costs and cash position over a horizon.

    Revenue grows by ``annual_growth_rate`` at the start of every new year
    (months 13, 25, 37, ...); costs grow at half that rate. Taxes apply only
    to a positive gross profit. The cumulative position starts at minus the
    initial investment.

    Args:
        assumptions: Mapping with the financial assumption fields.
        years: Projection horizon in years. Zero or less gives an empty series.

    Returns:
        A dict with ``cash_flow`` (DataFrame indexed by month) and
        ``payback_month`` (first month with a non-negative cumulative
        position, or None if it is never reached).

    Raises:
        ValueError: If a required assumption is missing.
    """
    _require_fields(assumptions)
    growth_pct = float(assumptions["annual_growth_rate"])
    tax_rate = float(assumptions["tax_rate"]) / 100.0
    months = int(years) * 12

    current_revenue = float(assumptions["monthly_revenue"])
    current_cost = float(assumptions["monthly_cost"])
    cumulative = -float(assumptions["initial_investment"])
    payback_month: Optional[int] = None

    rows: List[Dict] = []
    for month in range(1, months + 1):
        # First month of a new year.
        if month > 1 and (month - 1) % 12 == 0:
            current_revenue *= 1 + growth_pct / 100.0
            current_cost *= 1 + (growth_pct * COST_GROWTH_FACTOR) / 100.0

        gross_profit = current_revenue - current_cost
        taxes = gross_profit * tax_rate if gross_profit > 0 else 0.0
        net_income = gross_profit - taxes
        cumulative += net_income

        if payback_month is None and cumulative >= 0:
            payback_month = month

        rows.append(
            {
                "month": month,
                "year": math.ceil(month / 12),
                "revenue": current_revenue,
                "costs": current_cost,
                "gross_profit": gross_profit,
                "taxes": taxes,
                "net_income": net_income,
                "cumulative": cumulative,
            }
        )

    df = pd.DataFrame(rows, columns=["month"] + CASHFLOW_COLUMNS).set_index("month")
    return {"cash_flow": df, "payback_month": payback_month}


def calculate_npv(
    initial_investment: float,
    monthly_flows: Iterable[float],
    annual_discount_rate: float,
) -> float:
    """Net present value of monthly flows at an annual discount rate.

    The annual rate (a percentage, e.g. 12 for 12%) is converted to the
    equivalent monthly compounding rate. The first flow is discounted one
    full month.

    Args:
        initial_investment: Outlay at time zero.
        monthly_flows: Net flows for months 1..n.
        annual_discount_rate: Annual discount rate in percent.

    Returns:
        The NPV. Degenerate rates (at or below -100%) yield inf or nan.
    """
    flows = np.asarray(list(monthly_flows), dtype=float)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        monthly_rate = np.power(1 + annual_discount_rate / 100.0, 1 / 12) - 1
        periods = np.arange(1, flows.size + 1)
        discounted = flows / np.power(1 + monthly_rate, periods)
        return float(-initial_investment + discounted.sum())


def calculate_irr(initial_investment: float, monthly_flows: Iterable[float]) -> float:
    """Annualised internal rate of return, in percent, found by bisection.

    Searches annual rates between -99% and +500% for a fixed number of
    iterations and stops early once the NPV is within one cent of zero.
    When the tolerance is never met the last midpoint is returned as a
    best-effort estimate. A single sign change in the flows is assumed;
    multiple roots are not detected.

    Args:
        initial_investment: Outlay at time zero.
        monthly_flows: Net flows for months 1..n.

    Returns:
        The annual rate in percent.
    """
    flows = list(monthly_flows)
    low, high, guess = IRR_LOW, IRR_HIGH, IRR_INITIAL_GUESS

    for _ in range(IRR_MAX_ITERATIONS):
        npv = calculate_npv(initial_investment, flows, guess * 100)
        if abs(npv) < IRR_TOLERANCE:
            return guess * 100

        # A positive NPV means the rate is still too low.
        if npv > 0:
            low = guess
        else:
            high = guess
        guess = (low + high) / 2

    logger.debug(
        "IRR search ended without convergence",
        extra={"context": {"iterations": IRR_MAX_ITERATIONS, "estimate_pct": guess * 100}},
    )
    return guess * 100


def calculate_valuation(
    npv: float,
    last_period_monthly_flow: float,
    annual_discount_rate: float,
    annual_growth_rate: float,
) -> float:
    """NPV plus the present value of a Gordon-growth terminal value.

    The last monthly flow is annualised and grown in perpetuity. Growth is
    capped two points below the discount rate, then the terminal value is
    discounted over a fixed five-year horizon.

    The caller must keep the discount rate well above -100%; values at or
    below it produce inf or nan, which are returned as is.
    """
    safe_growth = min(annual_growth_rate, annual_discount_rate - TERMINAL_GROWTH_SPREAD)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        terminal_value = np.float64(last_period_monthly_flow * 12 * (1 + safe_growth / 100.0)) / (
            (annual_discount_rate - safe_growth) / 100.0
        )
        present_terminal_value = terminal_value / np.power(
            1 + annual_discount_rate / 100.0, TERMINAL_HORIZON_YEARS
        )
        return float(npv + present_terminal_value)


def calculate_depreciation(total_fixed_assets: float, years: int = 5) -> float:
    """Straight-line yearly depreciation. A zero horizon gives inf or nan."""
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.float64(total_fixed_assets) / years)


def analyze_viability(assumptions: Mapping, years: int = 5) -> Dict:
    """Runs the full viability analysis for one set of assumptions.

    Projects the cash flow, then derives NPV, IRR and valuation from the
    monthly net incomes. Also produces warning codes that help the caller
    judge the indicators.

    Args:
        assumptions: Mapping with the financial assumption fields.
        years: Projection horizon in years.

    Returns:
        A dictionary with ``cash_flow``, ``payback_month``, ``npv``, ``irr``,
        ``valuation``, ``irr_above_discount`` and a list of ``warnings``.
    """
    projection = calculate_projections(assumptions, years)
    cash_flow = projection["cash_flow"]
    flows = cash_flow["net_income"].tolist()

    initial_investment = float(assumptions["initial_investment"])
    discount_rate = float(assumptions["discount_rate"])
    growth_rate = float(assumptions["annual_growth_rate"])

    npv = calculate_npv(initial_investment, flows, discount_rate)
    irr = calculate_irr(initial_investment, flows)
    last_flow = flows[-1] if flows else 0.0
    valuation = calculate_valuation(npv, last_flow, discount_rate, growth_rate)

    warnings: List[str] = []
    if projection["payback_month"] is None:
        warnings.append("PAYBACK_NOT_REACHED")

    # Estimates pinned to a search bound mean there was no root to find.
    if min(abs(irr - IRR_LOW * 100), abs(irr - IRR_HIGH * 100)) < IRR_TOLERANCE:
        warnings.append("IRR_INCONCLUSIVE")

    if not math.isfinite(valuation):
        warnings.append("VALUATION_DEGENERATE")
    if npv < 0:
        warnings.append("NEGATIVE_NPV")

    if warnings:
        logger.info(
            "Viability analysis produced warnings",
            extra={"context": {"warnings": warnings, "years": years}},
        )

    return {
        "cash_flow": cash_flow,
        "payback_month": projection["payback_month"],
        "npv": npv,
        "irr": irr,
        "valuation": valuation,
        "irr_above_discount": irr > discount_rate,
        "warnings": warnings,
    }


def calculate_first_year_revenue(assumptions: Mapping) -> float:
    """Total revenue over the first projected year."""
    cash_flow = calculate_projections(assumptions, 1)["cash_flow"]
    return float(cash_flow["revenue"].sum())


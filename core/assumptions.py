# assumptions.py
"""
Financial assumptions for a viability study.

Assumptions are plain dictionaries so they can be edited by form widgets,
cached by the UI and written to JSON scenario files unchanged. This module
holds the field list, the JSON schema used on import, validation, the
starting templates and the helpers that keep derived fields in sync.
"""

from copy import deepcopy
from typing import Any, Dict, Iterable, Mapping
import json

from jsonschema import validate

from core.logging import get_logger

logger = get_logger(__name__)

# A set of required fields for every projection.
REQUIRED_FIELDS = {
    "initial_investment",
    "monthly_revenue",
    "monthly_cost",
    "annual_growth_rate",
    "tax_rate",
    "discount_rate",
}

MONEY_FIELDS = ["initial_investment", "monthly_revenue", "monthly_cost"]
RATE_FIELDS = ["annual_growth_rate", "discount_rate"]

INVESTMENT_ITEMS = [
    "reform",
    "furniture",
    "equipment",
    "marketing",
    "legal",
    "working_capital",
]

# Breakdown items that are depreciated; the rest is expensed or kept as cash.
FIXED_ASSET_ITEMS = ["reform", "furniture", "equipment"]

ASSUMPTIONS_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "FinancialAssumptions",
    "type": "object",
    "properties": {
        "initial_investment": {"type": "number", "minimum": 0},
        "monthly_revenue": {"type": "number", "minimum": 0},
        "monthly_cost": {"type": "number", "minimum": 0},
        "annual_growth_rate": {"type": "number"},
        "tax_rate": {"type": "number", "minimum": 0, "maximum": 100},
        "discount_rate": {"type": "number"},
        "investment_breakdown": {
            "type": "object",
            "properties": {
                item: {"type": "number", "minimum": 0} for item in INVESTMENT_ITEMS
            },
            "additionalProperties": False,
        },
    },
    "required": sorted(REQUIRED_FIELDS),
}

DEFAULT_ASSUMPTIONS: Dict[str, Any] = {
    "initial_investment": 500000.0,
    "investment_breakdown": {
        "reform": 200000.0,
        "furniture": 100000.0,
        "equipment": 100000.0,
        "marketing": 50000.0,
        "legal": 20000.0,
        "working_capital": 30000.0,
    },
    "monthly_revenue": 120000.0,
    "monthly_cost": 80000.0,
    "annual_growth_rate": 10.0,
    "tax_rate": 15.0,
    "discount_rate": 12.0,
}

BLANK_ASSUMPTIONS: Dict[str, Any] = {
    "initial_investment": 0.0,
    "investment_breakdown": {item: 0.0 for item in INVESTMENT_ITEMS},
    "monthly_revenue": 0.0,
    "monthly_cost": 0.0,
    "annual_growth_rate": 0.0,
    "tax_rate": 0.0,
    "discount_rate": 0.0,
}

TEMPLATES = {"default": DEFAULT_ASSUMPTIONS, "blank": BLANK_ASSUMPTIONS}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_assumptions(assumptions: Mapping) -> None:
    """Validates a financial assumptions dictionary.

    Ensures that all required fields are present, numeric and within their
    allowed ranges. Growth and discount rates may be negative.

    Args:
        assumptions: A dictionary of user-provided financial assumptions.

    Raises:
        ValueError: If a field is missing, has the wrong type,
                    or is outside its allowed range.
    """
    missing = REQUIRED_FIELDS - set(assumptions.keys())
    if missing:
        raise ValueError(f"Missing required assumptions: {', '.join(sorted(missing))}")

    for k in MONEY_FIELDS:
        v = assumptions.get(k)
        if not _is_number(v) or v < 0:
            raise ValueError(f"{k} must be a non-negative number")

    for k in RATE_FIELDS:
        if not _is_number(assumptions.get(k)):
            raise ValueError(f"{k} must be a number")

    tax = assumptions.get("tax_rate")
    if not _is_number(tax) or not 0 <= tax <= 100:
        raise ValueError("tax_rate must be between 0 and 100")

    breakdown = assumptions.get("investment_breakdown")
    if breakdown is not None:
        for item, v in breakdown.items():
            if item not in INVESTMENT_ITEMS:
                raise ValueError(f"Unknown investment item: {item}")
            if not _is_number(v) or v < 0:
                raise ValueError(f"investment_breakdown.{item} must be a non-negative number")


def new_assumptions(template: str = "default") -> Dict[str, Any]:
    """Returns a fresh copy of a named starting template ("default" or "blank")."""
    if template not in TEMPLATES:
        raise ValueError(f"Unknown assumptions template: {template}")
    return deepcopy(TEMPLATES[template])


def total_investment(breakdown: Mapping) -> float:
    return float(sum(float(breakdown.get(item, 0) or 0) for item in INVESTMENT_ITEMS))


def total_fixed_assets(breakdown: Mapping) -> float:
    return float(sum(float(breakdown.get(item, 0) or 0) for item in FIXED_ASSET_ITEMS))


def sync_initial_investment(assumptions: Mapping) -> Dict[str, Any]:
    """Returns a copy whose initial investment equals the breakdown total.

    Assumptions without a breakdown are copied unchanged.
    """
    synced = deepcopy(dict(assumptions))
    breakdown = synced.get("investment_breakdown")
    if breakdown:
        synced["initial_investment"] = total_investment(breakdown)
    return synced


def calculate_payroll(roles: Iterable[Mapping]) -> float:
    """Monthly payroll: salary times headcount, summed over all roles."""
    return float(
        sum(float(role.get("salary", 0) or 0) * float(role.get("quantity", 0) or 0) for role in roles)
    )


def apply_payroll_cost(assumptions: Mapping, payroll_cost: float) -> Dict[str, Any]:
    """Raises the monthly cost to cover payroll.

    Monthly operating cost must at least contain the payroll of the
    organisation chart. A copy is returned in every case.

    Args:
        assumptions: The current financial assumptions.
        payroll_cost: Monthly payroll from the organisation chart.

    Returns:
        A new assumptions dictionary.
    """
    updated = deepcopy(dict(assumptions))
    if payroll_cost > 0 and float(updated["monthly_cost"]) < payroll_cost:
        logger.debug(
            "Monthly cost raised to payroll",
            extra={"context": {"previous": updated["monthly_cost"], "payroll": payroll_cost}},
        )
        updated["monthly_cost"] = float(payroll_cost)
    return updated


def assumptions_to_json(assumptions: Mapping) -> bytes:
    return json.dumps(dict(assumptions), indent=2, ensure_ascii=False).encode("utf-8")


def assumptions_from_json(data) -> Dict[str, Any]:
    """Loads a scenario file exported by ``assumptions_to_json``.

    Args:
        data: JSON text or UTF-8 bytes.

    Returns:
        The assumptions dictionary.

    Raises:
        ValueError: If the payload is not valid JSON.
        jsonschema.ValidationError: If it does not match the schema.
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        loaded = json.loads(data)
    except json.JSONDecodeError as e:
        raise ValueError(f"Scenario file is not valid JSON: {e}") from e
    validate(instance=loaded, schema=ASSUMPTIONS_SCHEMA)
    logger.debug("Scenario loaded", extra={"context": {"fields": sorted(loaded)}})
    return loaded

"""
Aggregation registry for calculated fields.

Every aggregation is a pure function over the camelCase data source. Missing
or empty collections count as empty (sum = 0); nothing here raises for
missing data. Mapping rules refer to aggregations by name, which keeps the
mapping table a plain data asset.
"""

import re
from decimal import Decimal, InvalidOperation
from functools import partial
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from pfsfill.fill_engine.layout import schedule_key

# Sentinel for "path does not exist" (distinct from an explicit None)
MISSING = object()

_INDEX_SEGMENT = re.compile(r"^(\w+)\[(\d+)\]$")


# =============================================================================
# Source Access Helpers
# =============================================================================

def value_at(source: Any, path: str, default: Any = MISSING) -> Any:
    """
    Read a value by dotted path.

    Supports mapping keys, attributes, numeric segments and ``name[0]``
    indexing into sequences. Any missing intermediate returns ``default``.
    """
    current = source
    for part in path.split("."):
        if current is None:
            return default
        match = _INDEX_SEGMENT.match(part)
        if match:
            current = _step(current, match.group(1))
            if current is MISSING:
                return default
            current = _index(current, int(match.group(2)))
        elif part.isdigit() and isinstance(current, (list, tuple)):
            current = _index(current, int(part))
        else:
            current = _step(current, part)
        if current is MISSING:
            return default
    return current


def _step(current: Any, key: str) -> Any:
    if isinstance(current, Mapping):
        return current.get(key, MISSING)
    return getattr(current, key, MISSING)


def _index(current: Any, index: int) -> Any:
    if not isinstance(current, (list, tuple)) or index >= len(current):
        return MISSING
    return current[index]


def to_decimal(value: Any) -> Decimal:
    """Numeric view of a value for aggregation; non-numeric counts as 0."""
    if value is None or value is MISSING or isinstance(value, bool):
        return Decimal(0)
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal(0)
    if isinstance(value, (int, float)):
        result = Decimal(str(value))
        return result if result.is_finite() else Decimal(0)
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("$", "")
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            return Decimal(0)
        return result if result.is_finite() else Decimal(0)
    return Decimal(0)


def schedule_rows(source: Mapping[str, Any], schedule_id: str) -> List[Mapping[str, Any]]:
    """Rows of a schedule; anything that is not a row is skipped."""
    rows = value_at(source, schedule_key(schedule_id), default=None)
    if not isinstance(rows, (list, tuple)):
        return []
    return [row for row in rows if isinstance(row, Mapping)]


def mortgage_for(source: Mapping[str, Any], property_id: Any) -> Optional[Mapping[str, Any]]:
    """First mortgage joined to a property by ``propertyId``."""
    if property_id is None:
        return None
    mortgages = value_at(source, "mortgages", default=None)
    if not isinstance(mortgages, (list, tuple)):
        return None
    for mortgage in mortgages:
        if isinstance(mortgage, Mapping) and mortgage.get("propertyId") == property_id:
            return mortgage
    return None


# =============================================================================
# Aggregations
# =============================================================================

def schedule_total(source: Mapping[str, Any], schedule: str, column: str) -> Decimal:
    """Sum one column of a schedule."""
    return sum((to_decimal(row.get(column)) for row in schedule_rows(source, schedule)), Decimal(0))


def scalar_sum(source: Mapping[str, Any], paths: Sequence[str]) -> Decimal:
    """Sum scalar values at the given paths."""
    return sum((to_decimal(value_at(source, p, default=None)) for p in paths), Decimal(0))


def real_estate_value_total(source: Mapping[str, Any]) -> Decimal:
    """Current value of the selected properties, adjusted for ownership share."""
    total = Decimal(0)
    for prop in schedule_rows(source, "F"):
        ownership = prop.get("ownershipPercentage")
        # Unspecified ownership means sole ownership
        share = Decimal(1) if ownership is None else to_decimal(ownership) / Decimal(100)
        total += to_decimal(prop.get("currentValue")) * share
    return total


def mortgage_balance_total(source: Mapping[str, Any]) -> Decimal:
    """Principal balance of mortgages on the selected properties."""
    total = Decimal(0)
    for prop in schedule_rows(source, "F"):
        mortgage = mortgage_for(source, prop.get("id"))
        if mortgage:
            total += to_decimal(mortgage.get("principalBalance"))
    return total


def mortgage_payment_total(source: Mapping[str, Any]) -> Decimal:
    """Payment amount of mortgages on the selected properties."""
    total = Decimal(0)
    for prop in schedule_rows(source, "F"):
        mortgage = mortgage_for(source, prop.get("id"))
        if mortgage:
            total += to_decimal(mortgage.get("paymentAmount"))
    return total


def total_current_assets(source: Mapping[str, Any]) -> Decimal:
    return (
        scalar_sum(source, [
            "cashOnHand",
            "cashOtherInstitutions",
            "buildingMaterialInventory",
            "lifeInsuranceCashValue",
            "retirementAccounts",
        ])
        + schedule_total(source, "A", "amount")
        + schedule_total(source, "B", "amount")
        + schedule_total(source, "C", "totalValue")
    )


def accrued_liabilities_total(source: Mapping[str, Any]) -> Decimal:
    return scalar_sum(source, [
        "accruedInterest",
        "accruedSalaryWages",
        "accruedTaxesOther",
        "incomeTaxPayable",
    ])


def total_current_liabilities(source: Mapping[str, Any]) -> Decimal:
    return (
        schedule_total(source, "G", "amount")
        + scalar_sum(source, ["notesPayableRelatives"])
        + schedule_total(source, "H", "amount")
        + accrued_liabilities_total(source)
        + schedule_total(source, "I", "balance")
    )


def total_income(source: Mapping[str, Any]) -> Decimal:
    return scalar_sum(source, [
        "salaryWages",
        "proprietorshipDraws",
        "commissionsBonus",
        "dividendsInterest",
        "rentals",
        "otherIncome",
    ])


def contingent_liabilities_total(source: Mapping[str, Any]) -> Decimal:
    return scalar_sum(source, ["guaranteedLoans", "suretyBonds", "contingentOtherValue"])


def summary(source: Mapping[str, Any], key: str) -> Decimal:
    """Caller-supplied summary figure, e.g. ``totalAssets``."""
    return to_decimal(value_at(source, f"summaries.{key}", default=None))


# Totals used to populate summaries when the caller has none

def total_assets(source: Mapping[str, Any]) -> Decimal:
    return (
        total_current_assets(source)
        + real_estate_value_total(source)
        + scalar_sum(source, ["automobilesTrucks", "machineryTools", "otherAssetsValue"])
        + schedule_total(source, "E", "presentBalance")
        + schedule_total(source, "D", "totalValue")
    )


def total_liabilities(source: Mapping[str, Any]) -> Decimal:
    return (
        total_current_liabilities(source)
        + mortgage_balance_total(source)
        + scalar_sum(source, ["chattelMortgage", "otherLiabilitiesValue"])
    )


def net_worth(source: Mapping[str, Any]) -> Decimal:
    return total_assets(source) - total_liabilities(source)


AGGREGATIONS: Dict[str, Callable[..., Any]] = {
    "schedule_total": schedule_total,
    "scalar_sum": scalar_sum,
    "real_estate_value_total": real_estate_value_total,
    "mortgage_balance_total": mortgage_balance_total,
    "mortgage_payment_total": mortgage_payment_total,
    "total_current_assets": total_current_assets,
    "accrued_liabilities_total": accrued_liabilities_total,
    "total_current_liabilities": total_current_liabilities,
    "total_income": total_income,
    "contingent_liabilities_total": contingent_liabilities_total,
    "summary": summary,
    "total_assets": total_assets,
    "total_liabilities": total_liabilities,
    "net_worth": net_worth,
}


def build_aggregation(name: str, args: Optional[Mapping[str, Any]] = None) -> Callable[[Mapping[str, Any]], Any]:
    """
    Bind a named aggregation to its arguments.

    Raises:
        KeyError: Unknown aggregation name.
    """
    func = AGGREGATIONS[name]
    return partial(func, **dict(args or {}))


# =============================================================================
# Transforms
# =============================================================================

def year_only(value: Any) -> Any:
    """Leading four-digit year of a date-like value."""
    match = re.match(r"^\s*(\d{4})", str(value))
    return match.group(1) if match else value


TRANSFORMS: Dict[str, Callable[[Any], Any]] = {
    "upper": lambda v: str(v).upper(),
    "title": lambda v: str(v).title(),
    "strip": lambda v: str(v).strip(),
    "year_only": year_only,
}

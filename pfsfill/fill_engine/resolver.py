"""
Value resolver for the PFSFill engine.

Dispatches on a mapping's data source and extracts the raw value from the
camelCase data source. Missing data is never an error: it resolves to an
absent value. Only a ``calculate`` or ``transform`` hook that raises produces
a resolution error, and only for that one field.
"""

import re
from datetime import date
from typing import Any, Callable, Dict, Mapping

import structlog

from pfsfill.fill_engine.calculations import (
    MISSING,
    mortgage_for,
    to_decimal,
    value_at,
)
from pfsfill.fill_engine.layout import PROPERTY_SCHEDULE, schedule_key
from pfsfill.fill_engine.models import DataSource, FieldMapping, ResolvedValue

logger = structlog.get_logger(__name__)

_ISO_DATE_PREFIX = re.compile(r"^\s*\d{4}-")

# Property fields whose value comes from the joined mortgage first
_MORTGAGE_JOINED = {
    "balance": "principalBalance",
    "payment": "paymentAmount",
}


class FieldResolver:
    """
    Strategy dispatcher producing one ResolvedValue per mapping.

    Never raises for missing data or unknown strategies.
    """

    def __init__(self):
        self._strategies: Dict[DataSource, Callable[[FieldMapping, Mapping[str, Any]], ResolvedValue]] = {
            DataSource.DIRECT: self._resolve_direct,
            DataSource.CALCULATED: self._resolve_calculated,
            DataSource.SCHEDULE: self._resolve_schedule,
            DataSource.PROPERTY: self._resolve_property,
        }

    def resolve(self, mapping: FieldMapping, source: Mapping[str, Any]) -> ResolvedValue:
        """
        Resolve the raw value of one mapping.

        Args:
            mapping: Field mapping rule.
            source: camelCase financial data.

        Returns:
            ResolvedValue; literal 0, "" and None are returned as present values.
        """
        try:
            data_source = DataSource(mapping.data_source)
        except ValueError:
            logger.warning(
                "Unknown data source, field left unresolved",
                field=mapping.output_field_name,
                data_source=str(mapping.data_source),
            )
            return ResolvedValue.absent(note=f"unknown data source {mapping.data_source!r}")

        resolved = self._strategies[data_source](mapping, source)

        if mapping.transform is not None and resolved.present:
            try:
                return ResolvedValue.of(mapping.transform(resolved.value))
            except Exception as e:
                logger.warning(
                    "Transform failed",
                    field=mapping.output_field_name,
                    error=str(e),
                )
                return ResolvedValue.failed(f"transform failed: {e}")

        return resolved

    # =========================================================================
    # Strategies
    # =========================================================================

    def _resolve_direct(self, mapping: FieldMapping, source: Mapping[str, Any]) -> ResolvedValue:
        if not mapping.data_path:
            return ResolvedValue.absent(note="no data path")
        value = value_at(source, mapping.data_path)
        if value is MISSING:
            return ResolvedValue.absent(note=f"path {mapping.data_path} not found")
        return ResolvedValue.of(value)

    def _resolve_calculated(self, mapping: FieldMapping, source: Mapping[str, Any]) -> ResolvedValue:
        if mapping.calculate is None:
            return ResolvedValue.absent(note="no calculate function")
        try:
            return ResolvedValue.of(mapping.calculate(source))
        except Exception as e:
            logger.warning(
                "Calculation failed",
                field=mapping.output_field_name,
                calculation=mapping.describe_source(),
                error=str(e),
            )
            return ResolvedValue.failed(f"calculation failed: {e}")

    def _resolve_schedule(self, mapping: FieldMapping, source: Mapping[str, Any]) -> ResolvedValue:
        if mapping.schedule_id is None or mapping.schedule_index is None or not mapping.schedule_field:
            return ResolvedValue.absent(note="incomplete schedule reference")
        row = self._row_at(source, schedule_key(mapping.schedule_id), mapping.schedule_index)
        if row is None:
            return ResolvedValue.absent(
                note=f"schedule {mapping.schedule_id} row {mapping.schedule_index} not provided"
            )
        if mapping.schedule_field not in row:
            return ResolvedValue.absent(note=f"column {mapping.schedule_field} not provided")
        return ResolvedValue.of(row[mapping.schedule_field])

    def _resolve_property(self, mapping: FieldMapping, source: Mapping[str, Any]) -> ResolvedValue:
        if mapping.property_index is None or not mapping.property_field:
            return ResolvedValue.absent(note="incomplete property reference")
        prop = self._row_at(source, schedule_key(PROPERTY_SCHEDULE), mapping.property_index)
        if prop is None:
            return ResolvedValue.absent(note=f"property {mapping.property_index} not provided")

        field_name = mapping.property_field

        if field_name in _MORTGAGE_JOINED:
            mortgage = mortgage_for(source, prop.get("id"))
            if mortgage is not None:
                joined = mortgage.get(_MORTGAGE_JOINED[field_name])
                if to_decimal(joined) > 0:
                    return ResolvedValue.of(joined)
            local = prop.get(field_name)
            if to_decimal(local) > 0:
                return ResolvedValue.of(local)
            return ResolvedValue.absent(note=f"no {field_name} on mortgage or property")

        if field_name not in prop:
            return ResolvedValue.absent(note=f"property field {field_name} not provided")

        value = prop[field_name]
        if field_name == "yearAcquired":
            return ResolvedValue.of(self._year_of(value))
        return ResolvedValue.of(value)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _row_at(source: Mapping[str, Any], key: str, index: int):
        rows = value_at(source, key, default=None)
        if not isinstance(rows, (list, tuple)) or index < 0 or index >= len(rows):
            return None
        row = rows[index]
        return row if isinstance(row, Mapping) else None

    @staticmethod
    def _year_of(value: Any) -> Any:
        """Leading year of an ISO date; anything else passes through."""
        if isinstance(value, date):
            return str(value.year)
        if isinstance(value, str) and _ISO_DATE_PREFIX.match(value):
            return value.strip().split("-", 1)[0]
        return value


def get_resolver() -> FieldResolver:
    """Get FieldResolver instance."""
    return FieldResolver()

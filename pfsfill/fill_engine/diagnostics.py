"""
Diagnostics for the PFSFill engine.

Builds the machine-readable fill report:
1. Outcome counts (filled, blank, missing, failed)
2. Reconciliation of the mapping table against the document registry
3. Schedule rows supplied beyond the printed capacity
4. Canary write/read when a pass filled nothing
"""

from typing import Any, List, Mapping, Optional, Sequence

import structlog

from pfsfill.fill_engine.calculations import value_at
from pfsfill.fill_engine.document import FormDocument
from pfsfill.fill_engine.layout import SCHEDULE_CAPACITY, schedule_key
from pfsfill.fill_engine.mapping_table import MappingTable
from pfsfill.fill_engine.models import (
    CanaryResult,
    CanaryVerdict,
    FillOutcome,
    FillReport,
    Reconciliation,
    WidgetKind,
)

logger = structlog.get_logger(__name__)

CANARY_VALUE = "TEST_VALUE"


class FillDiagnostics:
    """Observes the outcomes of a fill pass and explains them."""

    def reconcile(
        self,
        table: MappingTable,
        document_fields: Sequence[str],
        source: Mapping[str, Any],
    ) -> Reconciliation:
        """
        Compare mapping table, document registry and supplied data.

        Args:
            table: Mapping table in use.
            document_fields: Field names of the document registry.
            source: camelCase financial data.
        """
        in_document = set(document_fields)
        unmatched = [name for name in table.field_names if name not in in_document]
        unmapped = [name for name in document_fields if name not in table]

        overflow = {}
        for schedule_id, capacity in SCHEDULE_CAPACITY.items():
            rows = value_at(source, schedule_key(schedule_id), default=None)
            if isinstance(rows, (list, tuple)) and len(rows) > capacity:
                overflow[schedule_id] = len(rows) - capacity

        if overflow:
            logger.warning("Rows beyond form capacity will not appear", overflow=overflow)

        return Reconciliation(
            unmatched_mappings=unmatched,
            unmapped_document_fields=unmapped,
            overflow_rows=overflow,
        )

    def run_canary(self, document: FormDocument) -> CanaryResult:
        """
        Write and read back a marker on the first text field.

        The field's previous value, or its unset state, is restored afterwards.
        """
        target = next(
            (n for n in document.field_names() if document.widget_kind(n) == WidgetKind.TEXT),
            None,
        )
        if target is None:
            return CanaryResult(CanaryVerdict.INCONCLUSIVE, None, "document has no text field for the canary write")

        had_value = document.has_value(target)
        previous = document.read_value(target)
        try:
            document.set_text(target, CANARY_VALUE)
            echoed = document.read_value(target)
        except Exception as e:
            logger.error("Canary write failed", field=target, error=str(e))
            result = CanaryResult(CanaryVerdict.INCONCLUSIVE, target, f"canary write failed: {e}")
        else:
            if echoed == CANARY_VALUE:
                result = CanaryResult(
                    CanaryVerdict.DOCUMENT_WRITABLE,
                    target,
                    "document accepts writes; mapping field names likely do not match this document",
                )
            else:
                result = CanaryResult(
                    CanaryVerdict.DOCUMENT_READ_ONLY,
                    target,
                    "canary value did not stick; document fields are read-only or protected",
                )

        self._restore(document, target, previous if had_value else None, result)
        return result

    @staticmethod
    def _restore(document: FormDocument, target: str, previous: Optional[str], result: CanaryResult) -> None:
        try:
            if previous is None:
                document.clear_value(target)
            else:
                document.set_text(target, previous)
        except Exception as e:
            logger.error("Canary restore failed", field=target, error=str(e))
            result.detail = f"{result.detail}; restoring the previous value failed: {e}"

    def build_report(
        self,
        table: MappingTable,
        document: FormDocument,
        document_fields: Sequence[str],
        outcomes: List[FillOutcome],
        source: Mapping[str, Any],
    ) -> FillReport:
        """
        Aggregate outcomes into a FillReport.

        Must run before flattening, the canary needs the live form.
        """
        report = FillReport(
            layout=table.layout,
            version=table.version,
            edition=table.edition,
            document_field_count=len(document_fields),
            outcomes=list(outcomes),
            reconciliation=self.reconcile(table, document_fields, source),
        )
        if report.zero_filled:
            report.canary = self.run_canary(document)
        return report


def get_diagnostics() -> FillDiagnostics:
    """Get FillDiagnostics instance."""
    return FillDiagnostics()

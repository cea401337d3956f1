"""
Writeback layer for the PFSFill engine.

Applies formatted values to a form document's named fields.

Absolute rules:
- Structural problems (no form, no fields) are raised before any field is touched
- Every mapping produces exactly one FillOutcome, in mapping-table order
- A field's failure never aborts the loop
- Every non-empty write is read back and compared
"""

from typing import Any, Iterable, List, Mapping, Optional

import structlog

from pfsfill.exceptions import DocumentHasNoFieldsError, DocumentHasNoFormError
from pfsfill.fill_engine.document import FormDocument
from pfsfill.fill_engine.formatter import ValueFormatter, get_formatter
from pfsfill.fill_engine.models import (
    FieldMapping,
    FillOutcome,
    FillStatus,
    ResolvedValue,
    WidgetKind,
)
from pfsfill.fill_engine.resolver import FieldResolver, get_resolver

logger = structlog.get_logger(__name__)


class FormWriter:
    """Fills a form document field by field from a mapping table."""

    def __init__(
        self,
        resolver: Optional[FieldResolver] = None,
        formatter: Optional[ValueFormatter] = None,
    ):
        self.resolver = resolver or get_resolver()
        self.formatter = formatter or get_formatter()

    def check_registry(self, document: FormDocument) -> List[str]:
        """
        Verify the document exposes fillable fields.

        Returns:
            Field names of the document registry.

        Raises:
            DocumentHasNoFormError: No interactive form.
            DocumentHasNoFieldsError: Form without any terminal field.
        """
        if not document.has_form:
            raise DocumentHasNoFormError()
        names = document.field_names()
        if not names:
            raise DocumentHasNoFieldsError()
        return names

    def fill(
        self,
        document: FormDocument,
        mappings: Iterable[FieldMapping],
        source: Mapping[str, Any],
    ) -> List[FillOutcome]:
        """
        Apply every mapping to the document.

        Args:
            document: Target document, mutated in place.
            mappings: Mapping rules in table order.
            source: camelCase financial data.

        Returns:
            One FillOutcome per mapping, in the same order.
        """
        return [self.fill_field(document, mapping, source) for mapping in mappings]

    def fill_field(
        self,
        document: FormDocument,
        mapping: FieldMapping,
        source: Mapping[str, Any],
    ) -> FillOutcome:
        """Fill one field and record what happened."""
        name = mapping.output_field_name

        if not document.has_field(name):
            logger.debug("Field not in document", field=name)
            return FillOutcome(name, FillStatus.MISSING_IN_DOCUMENT, "no field with this name in document")

        kind = document.widget_kind(name)
        if kind == WidgetKind.UNSUPPORTED:
            logger.debug("Unsupported widget", field=name)
            return FillOutcome(name, FillStatus.UNSUPPORTED_FIELD_TYPE, "widget is not text, dropdown or checkbox")

        resolved = self.resolver.resolve(mapping, source)
        if resolved.is_error:
            return self._record_resolution_error(document, name, kind, resolved)

        try:
            rendered = self.formatter.format(resolved, mapping.field_type)
        except Exception as e:
            logger.warning(
                "Field format failed",
                field=name,
                field_type=getattr(mapping.field_type, "value", mapping.field_type),
                error=str(e),
            )
            return self._record_resolution_error(
                document, name, kind, ResolvedValue.failed(f"format failed: {e}")
            )

        try:
            if kind == WidgetKind.TEXT:
                outcome = self._write_text(document, name, rendered)
            elif kind == WidgetKind.DROPDOWN:
                outcome = self._write_dropdown(document, name, rendered)
            else:
                outcome = self._write_checkbox(document, name, rendered)
        except Exception as e:
            logger.warning("Field write failed", field=name, widget=kind.value, error=str(e))
            return FillOutcome(name, FillStatus.WRITE_VERIFICATION_MISMATCH, f"write failed: {e}")

        if outcome.status == FillStatus.FILLED:
            outcome = FillOutcome(name, outcome.status, mapping.describe_source())
        elif outcome.status == FillStatus.BLANK:
            outcome = FillOutcome(name, outcome.status, self._blank_detail(mapping, resolved))

        logger.debug("Field processed", field=name, widget=kind.value, status=outcome.status.value)
        return outcome

    # =========================================================================
    # Widget Writes
    # =========================================================================

    @staticmethod
    def _write_text(document: FormDocument, name: str, rendered: str) -> FillOutcome:
        document.set_text(name, rendered)
        if not rendered:
            return FillOutcome(name, FillStatus.BLANK)
        return FormWriter._verify(document, name, rendered)

    @staticmethod
    def _write_dropdown(document: FormDocument, name: str, rendered: str) -> FillOutcome:
        if not rendered:
            document.set_text(name, "")
            return FillOutcome(name, FillStatus.BLANK)
        stored = document.select_option(name, rendered)
        if stored is None:
            # No matching option: fall back to raw assignment
            document.set_text(name, rendered)
            stored = rendered
        return FormWriter._verify(document, name, stored)

    @staticmethod
    def _write_checkbox(document: FormDocument, name: str, rendered: str) -> FillOutcome:
        checked = rendered != ""
        document.set_checked(name, checked)
        if document.is_checked(name) != checked:
            return FillOutcome(
                name,
                FillStatus.WRITE_VERIFICATION_MISMATCH,
                f"checkbox did not change to {'checked' if checked else 'unchecked'}",
            )
        return FillOutcome(name, FillStatus.FILLED if checked else FillStatus.BLANK)

    @staticmethod
    def _verify(document: FormDocument, name: str, expected: str) -> FillOutcome:
        actual = document.read_value(name)
        if actual != expected:
            logger.warning("Write verification mismatch", field=name)
            return FillOutcome(
                name,
                FillStatus.WRITE_VERIFICATION_MISMATCH,
                f"read back {len(actual)} chars, expected {len(expected)}",
            )
        return FillOutcome(name, FillStatus.FILLED)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _record_resolution_error(
        document: FormDocument,
        name: str,
        kind: WidgetKind,
        resolved: ResolvedValue,
    ) -> FillOutcome:
        detail = resolved.error or "resolution failed"
        try:
            if kind == WidgetKind.CHECKBOX:
                document.set_checked(name, False)
            else:
                document.set_text(name, "")
        except Exception as e:
            detail = f"{detail}; clearing field failed: {e}"
        return FillOutcome(name, FillStatus.RESOLUTION_ERROR, detail)

    @staticmethod
    def _blank_detail(mapping: FieldMapping, resolved: ResolvedValue) -> str:
        if resolved.note:
            return f"{mapping.describe_source()}: {resolved.note}"
        return mapping.describe_source()


def get_form_writer(
    resolver: Optional[FieldResolver] = None,
    formatter: Optional[ValueFormatter] = None,
) -> FormWriter:
    """Get FormWriter instance."""
    return FormWriter(resolver=resolver, formatter=formatter)

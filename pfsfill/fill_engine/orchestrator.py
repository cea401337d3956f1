"""
Orchestrator for the PFSFill engine.

Main entry point that runs one fill pass:
Idle -> LoadingDocument -> ValidatingFieldRegistry -> Filling -> Flattening
-> Serialized -> Idle

Structural problems stop the pass before any field is touched and are
returned as a failed FillResult. Per-field problems are outcomes in the
report; they never stop the pass.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

import structlog

from pfsfill.config import get_settings
from pfsfill.exceptions import (
    DocumentHasNoFieldsError,
    DocumentHasNoFormError,
    DocumentLoadError,
    PFSFillError,
)
from pfsfill.fill_engine.diagnostics import FillDiagnostics, get_diagnostics
from pfsfill.fill_engine.document import FormDocument, PdfFormDocument
from pfsfill.fill_engine.financial_model import (
    FinancialDataModel,
    as_source,
    from_payload,
)
from pfsfill.fill_engine.mapping_table import MappingTable, load_mapping_table
from pfsfill.fill_engine.models import FillReport, FillResult, PassState
from pfsfill.fill_engine.writeback import FormWriter, get_form_writer
from pfsfill.logging_config import bind_pass_id

logger = structlog.get_logger(__name__)

FinancialData = Union[FinancialDataModel, Mapping[str, Any]]

_FATAL_STATES = {
    DocumentLoadError: PassState.DOCUMENT_LOAD_FAILED,
    DocumentHasNoFormError: PassState.DOCUMENT_HAS_NO_FORM,
    DocumentHasNoFieldsError: PassState.DOCUMENT_HAS_NO_FIELDS,
}


@dataclass
class FillOptions:
    """Configuration options for a fill pass."""
    # Flatten after filling; None uses settings.flatten_output
    flatten: Optional[bool] = None
    # Mapping edition when no table is given; None uses settings.mapping_edition
    edition: Optional[str] = None
    # Compute missing summaries (total assets / liabilities) from the data
    fill_summaries: bool = False
    # Fixed pass id, mainly for tests
    pass_id: Optional[str] = None


class FillPass:
    """
    A single, strictly sequential fill pass.

    Owns its document for the duration of the pass; concurrent passes use
    separate instances.
    """

    def __init__(
        self,
        table: Optional[MappingTable] = None,
        options: Optional[FillOptions] = None,
        writer: Optional[FormWriter] = None,
        diagnostics: Optional[FillDiagnostics] = None,
    ):
        self.options = options or FillOptions()
        self.table = table
        self.writer = writer or get_form_writer()
        self.diagnostics = diagnostics or get_diagnostics()
        self.states = [PassState.IDLE]

    # =========================================================================
    # Entry Points
    # =========================================================================

    def run(self, template_bytes: bytes, data: FinancialData) -> FillResult:
        """Load, fill, flatten and serialize a template."""
        self.states = [PassState.IDLE]
        with bind_pass_id(self.options.pass_id) as pass_id:
            try:
                source = self._prepare_source(data)
                document = self._load(template_bytes)
                report = self._fill(document, source)
                output = self._finalize(document, report)
            except PFSFillError as e:
                return self._failed(pass_id, e)
            return self._succeeded(pass_id, output, report)

    async def run_async(self, template_bytes: bytes, data: FinancialData) -> FillResult:
        """
        Same as ``run``; loading and serializing run in a worker thread.

        The fill loop itself runs without suspension.
        """
        self.states = [PassState.IDLE]
        with bind_pass_id(self.options.pass_id) as pass_id:
            try:
                source = self._prepare_source(data)
                document = await asyncio.to_thread(self._load, template_bytes)
                report = self._fill(document, source)
                self._flatten(document, report)
                output = await asyncio.to_thread(self._serialize, document)
            except PFSFillError as e:
                return self._failed(pass_id, e)
            return self._succeeded(pass_id, output, report)

    def run_document(self, document: FormDocument, data: FinancialData) -> FillResult:
        """Fill an already loaded document."""
        self.states = [PassState.IDLE]
        with bind_pass_id(self.options.pass_id) as pass_id:
            try:
                source = self._prepare_source(data)
                report = self._fill(document, source)
                output = self._finalize(document, report)
            except PFSFillError as e:
                return self._failed(pass_id, e)
            return self._succeeded(pass_id, output, report)

    # =========================================================================
    # Steps
    # =========================================================================

    def _enter(self, state: PassState) -> None:
        self.states.append(state)
        logger.debug("Fill pass state", state=state.value)

    def _prepare_source(self, data: FinancialData) -> Mapping[str, Any]:
        if self.options.fill_summaries:
            model = data if isinstance(data, FinancialDataModel) else from_payload(as_source(data))
            return model.with_summaries().to_source()
        return as_source(data)

    def _resolve_table(self) -> MappingTable:
        if self.table is None:
            settings = get_settings()
            self.table = load_mapping_table(
                self.options.edition or settings.mapping_edition,
                settings.mapping_table_path,
            )
        return self.table

    def _load(self, template_bytes: bytes) -> PdfFormDocument:
        self._enter(PassState.LOADING_DOCUMENT)
        return PdfFormDocument.load(template_bytes)

    def _fill(self, document: FormDocument, source: Mapping[str, Any]) -> FillReport:
        table = self._resolve_table()

        self._enter(PassState.VALIDATING_FIELD_REGISTRY)
        document_fields = self.writer.check_registry(document)

        self._enter(PassState.FILLING)
        outcomes = self.writer.fill(document, table, source)

        return self.diagnostics.build_report(table, document, document_fields, outcomes, source)

    def _flatten(self, document: FormDocument, report: FillReport) -> None:
        flatten = self.options.flatten
        if flatten is None:
            flatten = get_settings().flatten_output
        if flatten:
            self._enter(PassState.FLATTENING)
            document.flatten()
            report.flattened = True

    def _serialize(self, document: FormDocument) -> bytes:
        output = document.serialize()
        self._enter(PassState.SERIALIZED)
        return output

    def _finalize(self, document: FormDocument, report: FillReport) -> bytes:
        self._flatten(document, report)
        return self._serialize(document)

    # =========================================================================
    # Results
    # =========================================================================

    def _succeeded(self, pass_id: str, output: bytes, report: FillReport) -> FillResult:
        self._enter(PassState.IDLE)
        counts = report.counts()

        logger.info(
            "Fill pass complete",
            edition=report.edition,
            total=counts["total"],
            filled=counts["filled"],
            blank=counts["blank"],
            missing=counts["missing"],
            failed=counts["failed"],
            flattened=report.flattened,
            output_bytes=len(output),
        )

        if report.zero_filled:
            logger.error(
                "Fill pass filled zero fields",
                canary=report.canary.verdict.value,
                canary_field=report.canary.field_name,
                unmatched_mappings=len(report.reconciliation.unmatched_mappings),
                document_fields=report.document_field_count,
            )
        elif report.missing:
            logger.warning(
                "Mapped fields not found in document",
                missing=report.missing,
                sample=report.reconciliation.unmatched_mappings[:10],
            )

        return FillResult(
            success=True,
            pass_id=pass_id,
            document_bytes=output,
            report=report,
            states=list(self.states),
        )

    def _failed(self, pass_id: str, error: PFSFillError) -> FillResult:
        fatal_state = _FATAL_STATES.get(type(error))
        if fatal_state is not None:
            self._enter(fatal_state)

        logger.error(
            "Fill pass failed",
            error_code=error.error_code,
            error=error.message,
            state=self.states[-1].value,
        )

        return FillResult(
            success=False,
            pass_id=pass_id,
            states=list(self.states),
            error_code=error.error_code,
            error_message=error.message,
        )


def run_fill_pass(
    template_bytes: bytes,
    data: FinancialData,
    table: Optional[MappingTable] = None,
    options: Optional[FillOptions] = None,
) -> FillResult:
    """
    Main entry point for the PFSFill engine.

    Args:
        template_bytes: AcroForm PDF template.
        data: FinancialDataModel or a camelCase mapping of the same shape.
        table: Mapping table; defaults to the configured edition.
        options: Fill pass options.

    Returns:
        FillResult with output bytes and the fill report.
    """
    return FillPass(table=table, options=options).run(template_bytes, data)


async def run_fill_pass_async(
    template_bytes: bytes,
    data: FinancialData,
    table: Optional[MappingTable] = None,
    options: Optional[FillOptions] = None,
) -> FillResult:
    """Async variant of ``run_fill_pass``."""
    return await FillPass(table=table, options=options).run_async(template_bytes, data)

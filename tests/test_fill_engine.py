"""
Tests for the PFSFill engine.

Covers:
- One outcome per mapping, in table order, loop never aborts
- Blank instead of zero on the written document
- Missing, unsupported, read-only and failing fields recorded as outcomes
- Structural errors stop the pass before any field is touched
- Zero-fill canary and reconciliation diagnostics
- Pass state history and byte-identical reports for equal inputs
"""

import pytest

from pfsfill.fill_engine.diagnostics import CANARY_VALUE, FillDiagnostics
from pfsfill.fill_engine.formatter import ValueFormatter
from pfsfill.fill_engine.mapping_table import MappingTable
from pfsfill.fill_engine.models import (
    CanaryVerdict,
    DataSource,
    FieldMapping,
    FieldType,
    FillStatus,
    PassState,
    WidgetKind,
)
from pfsfill.fill_engine.orchestrator import FillOptions, FillPass
from pfsfill.fill_engine.writeback import FormWriter


def run(document, data, table, **options):
    return FillPass(table=table, options=FillOptions(pass_id="test-pass", **options)).run_document(document, data)


def single(mapping):
    return MappingTable("PFS", "test", "standard", [mapping])


# =============================================================================
# Scenarios
# =============================================================================

class TestScenarios:
    """End-to-end scenarios on an in-memory document."""

    def test_currency_direct(self, fake_document):
        """cashOnHand 1500 renders $1,500; 0 renders blank."""
        table = single(FieldMapping("cash", DataSource.DIRECT, FieldType.CURRENCY, data_path="cashOnHand"))

        document = fake_document({"cash": WidgetKind.TEXT})
        result = run(document, {"cashOnHand": 1500}, table)
        assert document.values["cash"] == "$1,500"
        assert result.report.outcomes[0].status == FillStatus.FILLED

        document = fake_document({"cash": WidgetKind.TEXT}, values={"cash": "stale"})
        result = run(document, {"cashOnHand": 0}, table)
        assert document.values["cash"] == ""
        assert result.report.outcomes[0].status == FillStatus.BLANK

    def test_schedule_rows(self, small_table, small_document, sample_source):
        """Row 0 amount fills, the unsupplied row 1 stays blank."""
        result = run(small_document, sample_source, small_table)

        assert small_document.values["Text Field_63"] == "$500"
        assert small_document.values["Text Field_69"] == ""
        statuses = {o.field_name: o.status for o in result.report.outcomes}
        assert statuses["Text Field_69"] == FillStatus.BLANK

    def test_property_balance_from_mortgage(self, small_table, small_document, sample_source):
        """Property balance comes from the joined mortgage."""
        run(small_document, sample_source, small_table)
        assert small_document.values["Text Field_140"] == "$200,000"

    def test_property_balance_without_mortgage(self, small_table, small_document, sample_source):
        """No matching mortgage and a zero local balance leave the field blank."""
        sample_source["mortgages"] = []
        run(small_document, sample_source, small_table)
        assert small_document.values["Text Field_140"] == ""

    def test_year_acquired_on_packaged_table(self, standard_table, fake_document, sample_source):
        """The year-acquired column shows the year of an ISO acquisition date."""
        document = fake_document({name: WidgetKind.TEXT for name in standard_table.field_names})

        run(document, sample_source, standard_table)

        assert standard_table.get("Text Field_136").property_field == "yearAcquired"
        assert document.values["Text Field_136"] == "2015"

    def test_missing_field(self, small_table, fake_document, sample_source):
        """A field absent from the document is recorded, the rest still fill."""
        names = [n for n in small_table.field_names if n != "Text Field_1"]
        document = fake_document({name: WidgetKind.TEXT for name in names})

        result = run(document, sample_source, small_table)

        assert result.success
        assert result.has_warnings
        missing = result.report.outcomes_with(FillStatus.MISSING_IN_DOCUMENT)
        assert [o.field_name for o in missing] == ["Text Field_1"]
        assert document.values["Text Field"] == "Jordan Example"
        assert result.report.reconciliation.unmatched_mappings == ["Text Field_1"]


# =============================================================================
# Fill Loop
# =============================================================================

class TestFillLoop:
    """Tests for the per-field fold."""

    def test_one_outcome_per_mapping_in_order(self, small_table, small_document, sample_source):
        """Outcomes follow mapping-table order, one each."""
        result = run(small_document, sample_source, small_table)
        assert [o.field_name for o in result.report.outcomes] == small_table.field_names

    def test_continuation_law(self, small_table, small_document, sample_source):
        """Exactly one throwing calculate gives exactly one resolution error."""
        def explode(source):
            raise RuntimeError("bad aggregation")

        mappings = list(small_table) + [
            FieldMapping("Broken", DataSource.CALCULATED, FieldType.CURRENCY, calculate=explode)
        ]
        table = MappingTable("PFS", "test", "standard", mappings)
        small_document.kinds["Broken"] = WidgetKind.TEXT
        small_document.values["Broken"] = "old"

        result = run(small_document, sample_source, table)

        errors = result.report.outcomes_with(FillStatus.RESOLUTION_ERROR)
        assert len(errors) == 1
        assert errors[0].field_name == "Broken"
        assert "bad aggregation" in errors[0].detail
        assert small_document.values["Broken"] == ""
        assert result.report.filled == 7

    def test_unsupported_widget(self, fake_document):
        """Unsupported widgets are recorded and never written."""
        table = single(FieldMapping("sig", DataSource.DIRECT, data_path="borrowerName"))
        document = fake_document({"sig": WidgetKind.UNSUPPORTED})

        result = run(document, {"borrowerName": "x"}, table)

        assert result.report.outcomes[0].status == FillStatus.UNSUPPORTED_FIELD_TYPE
        assert document.write_log == []

    def test_huge_value_next_to_normal_field(self, fake_document):
        """Values beyond the default decimal precision still render."""
        mappings = [
            FieldMapping("a", DataSource.DIRECT, FieldType.CURRENCY, data_path="big"),
            FieldMapping("b", DataSource.DIRECT, FieldType.CURRENCY, data_path="cashOnHand"),
        ]
        document = fake_document({"a": WidgetKind.TEXT, "b": WidgetKind.TEXT})

        result = run(document, {"big": 10 ** 30, "cashOnHand": 1500}, MappingTable("PFS", "t", "standard", mappings))

        assert [o.status for o in result.report.outcomes] == [FillStatus.FILLED, FillStatus.FILLED]
        assert document.values["a"] == "$" + f"{10 ** 30:,}"
        assert document.values["b"] == "$1,500"

    def test_format_error_is_scoped_to_field(self, fake_document):
        """A raising formatter becomes a resolution error for that field only."""
        class BrokenPercentages(ValueFormatter):
            def format_percentage(self, value):
                raise ArithmeticError("no percentages today")

        mappings = [
            FieldMapping("rate", DataSource.DIRECT, FieldType.PERCENTAGE, data_path="rate"),
            FieldMapping("cash", DataSource.DIRECT, FieldType.CURRENCY, data_path="cashOnHand"),
        ]
        document = fake_document({"rate": WidgetKind.TEXT, "cash": WidgetKind.TEXT}, values={"rate": "old"})
        writer = FormWriter(formatter=BrokenPercentages())

        result = FillPass(
            table=MappingTable("PFS", "t", "standard", mappings),
            options=FillOptions(flatten=False),
            writer=writer,
        ).run_document(document, {"rate": 4.5, "cashOnHand": 1500})

        rate, cash = result.report.outcomes
        assert rate.status == FillStatus.RESOLUTION_ERROR
        assert "no percentages today" in rate.detail
        assert document.values["rate"] == ""
        assert cash.status == FillStatus.FILLED

    def test_read_only_field(self, fake_document):
        """A write that does not stick is a verification mismatch."""
        table = single(FieldMapping("name", DataSource.DIRECT, data_path="borrowerName"))
        document = fake_document({"name": WidgetKind.TEXT}, read_only={"name"})

        result = run(document, {"borrowerName": "Jordan"}, table)

        assert result.report.outcomes[0].status == FillStatus.WRITE_VERIFICATION_MISMATCH

    def test_write_raises(self, fake_document):
        """A raising write is a verification mismatch with the error text."""
        mappings = [
            FieldMapping("a", DataSource.DIRECT, data_path="borrowerName"),
            FieldMapping("b", DataSource.DIRECT, data_path="borrowerName"),
        ]
        document = fake_document({"a": WidgetKind.TEXT, "b": WidgetKind.TEXT}, failing={"a"})

        result = run(document, {"borrowerName": "Jordan"}, MappingTable("PFS", "t", "standard", mappings))

        first, second = result.report.outcomes
        assert first.status == FillStatus.WRITE_VERIFICATION_MISMATCH
        assert "cannot write a" in first.detail
        assert second.status == FillStatus.FILLED

    def test_dropdown_select_and_fallback(self, fake_document):
        """Dropdowns select by label, else fall back to raw text."""
        mappings = [
            FieldMapping("type", DataSource.DIRECT, data_path="propertyType"),
            FieldMapping("other", DataSource.DIRECT, data_path="lender"),
        ]
        document = fake_document(
            {"type": WidgetKind.DROPDOWN, "other": WidgetKind.DROPDOWN},
            options={"type": [("R", "Residential"), ("C", "Commercial")]},
        )

        result = run(
            document,
            {"propertyType": "Commercial", "lender": "First Bank"},
            MappingTable("PFS", "t", "standard", mappings),
        )

        assert document.values["type"] == "C"
        assert document.values["other"] == "First Bank"
        assert all(o.status == FillStatus.FILLED for o in result.report.outcomes)

    def test_checkbox(self, fake_document):
        """Non-empty values check the box, empty values uncheck it."""
        mappings = [
            FieldMapping("yes", DataSource.DIRECT, data_path="flag"),
            FieldMapping("no", DataSource.DIRECT, data_path="missing"),
        ]
        document = fake_document({"yes": WidgetKind.CHECKBOX, "no": WidgetKind.CHECKBOX})
        document.checked["no"] = True

        result = run(document, {"flag": "X"}, MappingTable("PFS", "t", "standard", mappings))

        assert document.checked == {"yes": True, "no": False}
        assert [o.status for o in result.report.outcomes] == [FillStatus.FILLED, FillStatus.BLANK]

    def test_blank_detail_carries_note(self, small_table, small_document, sample_source):
        """Blank outcomes explain where the value was looked for."""
        result = run(small_document, sample_source, small_table)
        detail = next(o.detail for o in result.report.outcomes if o.field_name == "Text Field_69")
        assert "schedule A[1].amount" in detail
        assert "not provided" in detail


# =============================================================================
# Structural Errors
# =============================================================================

class TestStructuralErrors:
    """Tests for fatal pre-loop states."""

    def test_no_form(self, small_table, fake_document, sample_source):
        """A document without a form fails before any write."""
        document = fake_document({}, has_form=False)

        result = run(document, sample_source, small_table)

        assert not result.success
        assert result.error_code == "PFS-101"
        assert result.final_state == PassState.DOCUMENT_HAS_NO_FORM
        assert result.document_bytes is None
        assert document.write_log == []

    def test_no_fields(self, small_table, fake_document, sample_source):
        """A form without fields fails with the no-fields error."""
        result = run(fake_document({}), sample_source, small_table)

        assert not result.success
        assert result.error_code == "PFS-102"
        assert result.error_message == "document has no fillable fields"
        assert result.final_state == PassState.DOCUMENT_HAS_NO_FIELDS

    def test_invalid_data(self, small_table, small_document):
        """Data that is not a mapping fails validation."""
        result = run(small_document, ["not", "a", "mapping"], small_table)

        assert not result.success
        assert result.error_code == "PFS-700"

    def test_check_registry(self, fake_document):
        """The registry check returns the document's field names."""
        assert FormWriter().check_registry(fake_document({"a": WidgetKind.TEXT})) == ["a"]


# =============================================================================
# Diagnostics
# =============================================================================

class TestDiagnostics:
    """Tests for the report, reconciliation and canary."""

    def test_counts(self, small_table, small_document, sample_source):
        """Counts add up to the number of mappings."""
        result = run(small_document, sample_source, small_table)
        counts = result.report.counts()

        assert counts["total"] == len(small_table)
        assert counts["filled"] + counts["blank"] + counts["missing"] + counts["failed"] == counts["total"]
        assert counts["by_status"]["filled"] == counts["filled"]

    def test_unmapped_document_fields(self, small_table, small_document, sample_source):
        """Document fields no mapping targets are listed."""
        small_document.kinds["Extra"] = WidgetKind.TEXT
        small_document.values["Extra"] = ""

        result = run(small_document, sample_source, small_table)

        assert result.report.reconciliation.unmapped_document_fields == ["Extra"]

    def test_overflow_rows(self, small_table, small_document, sample_source):
        """Rows beyond a schedule's capacity are reported."""
        sample_source["scheduleA"] = [{"amount": i + 1} for i in range(5)]
        sample_source["selectedProperties"] = sample_source["selectedProperties"] * 9

        result = run(small_document, sample_source, small_table)

        assert result.report.reconciliation.overflow_rows == {"A": 2, "F": 1}

    def test_zero_fill_writable(self, small_table, fake_document, sample_source):
        """Nothing matched but the document accepts writes: mapping is wrong."""
        document = fake_document({"Other_1": WidgetKind.TEXT, "Other_2": WidgetKind.TEXT}, values={"Other_1": "keep"})

        result = run(document, sample_source, small_table)

        report = result.report
        assert result.success
        assert report.zero_filled
        assert report.canary.verdict == CanaryVerdict.DOCUMENT_WRITABLE
        assert report.canary.field_name == "Other_1"
        assert ("Other_1", CANARY_VALUE) in document.write_log
        assert document.values["Other_1"] == "keep"

    def test_zero_fill_read_only(self, small_table, fake_document, sample_source):
        """Nothing sticks: the document is read-only."""
        names = small_table.field_names
        document = fake_document({name: WidgetKind.TEXT for name in names}, read_only=set(names))

        result = run(document, sample_source, small_table)

        assert result.report.zero_filled
        assert result.report.canary.verdict == CanaryVerdict.DOCUMENT_READ_ONLY

    def test_zero_fill_when_every_write_raises(self, small_table, fake_document, sample_source):
        """A raising canary write is inconclusive and the pass still completes."""
        names = small_table.field_names
        document = fake_document({name: WidgetKind.TEXT for name in names}, failing=set(names))

        result = run(document, sample_source, small_table)

        assert result.success
        assert result.report.zero_filled
        canary = result.report.canary
        assert canary.verdict == CanaryVerdict.INCONCLUSIVE
        assert "canary write failed" in canary.detail
        assert "restoring the previous value failed" in canary.detail

    def test_canary_restores_value(self, fake_document):
        document = fake_document({"a": WidgetKind.TEXT}, values={"a": "keep"})

        result = FillDiagnostics().run_canary(document)

        assert result.verdict == CanaryVerdict.DOCUMENT_WRITABLE
        assert document.values["a"] == "keep"
        assert document.write_log == [("a", CANARY_VALUE), ("a", "keep")]

    def test_zero_fill_without_text_fields(self, small_table, fake_document, sample_source):
        """Without a text field the canary is inconclusive."""
        document = fake_document({"box": WidgetKind.CHECKBOX})
        result = run(document, sample_source, small_table)
        assert result.report.canary.verdict == CanaryVerdict.INCONCLUSIVE

    def test_canary_not_run_when_filled(self, small_table, small_document, sample_source):
        result = run(small_document, sample_source, small_table)
        assert result.report.canary.verdict == CanaryVerdict.NOT_RUN

    def test_idempotent_reports(self, small_table, small_document, fake_document, sample_source):
        """Two fresh documents filled from the same data give identical reports."""
        second_document = fake_document(dict(small_document.kinds))

        first = FillPass(table=small_table).run_document(small_document, sample_source)
        second = FillPass(table=small_table).run_document(second_document, sample_source)

        assert first.pass_id != second.pass_id
        assert first.report.to_json() == second.report.to_json()
        assert first.document_bytes == second.document_bytes

    def test_reconcile_directly(self, small_table):
        reconciliation = FillDiagnostics().reconcile(small_table, ["Text Field"], {})
        assert "Text Field" not in reconciliation.unmatched_mappings
        assert len(reconciliation.unmatched_mappings) == len(small_table) - 1


# =============================================================================
# Pass States
# =============================================================================

class TestPassStates:
    """Tests for the pass state history."""

    def test_successful_pass(self, small_table, small_document, sample_source):
        """A flattened pass walks the full state sequence back to idle."""
        result = run(small_document, sample_source, small_table, flatten=True)

        assert result.states == [
            PassState.IDLE,
            PassState.VALIDATING_FIELD_REGISTRY,
            PassState.FILLING,
            PassState.FLATTENING,
            PassState.SERIALIZED,
            PassState.IDLE,
        ]
        assert result.final_state == PassState.SERIALIZED
        assert small_document.flattened
        assert result.report.flattened

    def test_unflattened_pass(self, small_table, small_document, sample_source):
        """Flattening can be switched off."""
        result = run(small_document, sample_source, small_table, flatten=False)

        assert PassState.FLATTENING not in result.states
        assert not small_document.flattened
        assert not result.report.flattened

    def test_flatten_from_settings(self, monkeypatch, small_table, small_document, sample_source):
        """Without an explicit option the settings decide."""
        monkeypatch.setenv("PFSFILL_FLATTEN_OUTPUT", "false")
        result = run(small_document, sample_source, small_table)
        assert not result.report.flattened

    def test_reused_pass_starts_fresh(self, small_table, small_document, fake_document, sample_source):
        """Each run records only its own states."""
        fill_pass = FillPass(table=small_table, options=FillOptions(flatten=False))

        first = fill_pass.run_document(small_document, sample_source)
        second = fill_pass.run_document(fake_document(dict(small_document.kinds)), sample_source)
        failed = fill_pass.run_document(fake_document({}), sample_source)

        assert second.states == first.states
        assert failed.states == [
            PassState.IDLE,
            PassState.VALIDATING_FIELD_REGISTRY,
            PassState.DOCUMENT_HAS_NO_FIELDS,
        ]

    def test_pass_id(self, small_table, small_document, sample_source):
        result = run(small_document, sample_source, small_table)
        assert result.pass_id == "test-pass"

    def test_fill_summaries(self, fake_document):
        """Missing summaries can be computed before filling."""
        table = single(FieldMapping("total", DataSource.DIRECT, FieldType.CURRENCY, data_path="summaries.totalAssets"))
        document = fake_document({"total": WidgetKind.TEXT})

        run(document, {"cashOnHand": 1200, "retirementAccounts": 800}, table, fill_summaries=True)

        assert document.values["total"] == "$2,000"


@pytest.mark.parametrize("value, expected", [(1500, "$1,500"), (0, ""), (None, ""), ("", "")])
def test_blank_instead_of_zero_on_document(fake_document, value, expected):
    """Absent and zero values leave the written field empty."""
    table = single(FieldMapping("cash", DataSource.DIRECT, FieldType.CURRENCY, data_path="cashOnHand"))
    document = fake_document({"cash": WidgetKind.TEXT}, values={"cash": "old"})
    run(document, {"cashOnHand": value}, table)
    assert document.values["cash"] == expected

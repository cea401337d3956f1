"""
Diagnostic script for PFS form templates.

Checks:
1. Whether the PDF carries an AcroForm and how many fields it exposes.
2. Widget kind of every field.
3. Reconciliation against a mapping edition (unmatched and unmapped names).

Usage:
    python scripts/dump_form_fields.py <template.pdf | template-id> [edition]

A template id is looked up in PFSFILL_TEMPLATE_DIR ("default" is the
configured default template).
"""
import os
import sys
from pathlib import Path

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from pfsfill.config import get_settings
from pfsfill.exceptions import PFSFillError
from pfsfill.fill_engine.diagnostics import get_diagnostics
from pfsfill.fill_engine.document import PdfFormDocument
from pfsfill.fill_engine.mapping_table import available_editions, load_mapping_table
from pfsfill.logging_config import configure_logging
from pfsfill.services import get_template_source


def read_template(target: str) -> bytes:
    path = Path(target)
    if path.is_file():
        return path.read_bytes()
    return get_template_source().load(target)


def dump_fields(target: str, edition: str) -> int:
    print(f"\n--- Form fields: {target} ---")

    try:
        document = PdfFormDocument.load(read_template(target))
    except PFSFillError as e:
        print(f"  Load failed [{e.error_code}]: {e.message}")
        return 1

    if not document.has_form:
        print("  No AcroForm in document.")
        return 1

    names = document.field_names()
    print(f"  Fields: {len(names)}")
    for name in names:
        value = document.read_value(name)
        print(f"    {document.widget_kind(name).value:<12} {name}" + (f" = {value!r}" if value else ""))

    print(f"\nReconciling against edition '{edition}'...")
    table = load_mapping_table(edition)
    reconciliation = get_diagnostics().reconcile(table, names, {})
    matched = len(table) - len(reconciliation.unmatched_mappings)
    print(f"  Mappings matched: {matched}/{len(table)}")
    if reconciliation.unmatched_mappings:
        print(f"  Not in document ({len(reconciliation.unmatched_mappings)}):")
        for name in reconciliation.unmatched_mappings[:20]:
            print(f"      - {name}")
        if len(reconciliation.unmatched_mappings) > 20:
            print(f"      ... and {len(reconciliation.unmatched_mappings) - 20} more")
    if reconciliation.unmapped_document_fields:
        print(f"  Document fields without mapping: {len(reconciliation.unmapped_document_fields)}")
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    edition = sys.argv[2] if len(sys.argv) > 2 else settings.mapping_edition
    if edition not in available_editions():
        print(f"Unknown edition {edition}; available: {', '.join(available_editions())}")
        sys.exit(2)
    sys.exit(dump_fields(sys.argv[1], edition))

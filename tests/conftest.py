"""
Pytest configuration and fixtures.
"""
import json
from io import BytesIO
from typing import Any, Dict, List, Optional

import pytest
from pypdf import PdfWriter
from pypdf.generic import (
    ArrayObject,
    DictionaryObject,
    FloatObject,
    NameObject,
    NumberObject,
    TextStringObject,
)

from pfsfill.config import get_settings
from pfsfill.fill_engine.document import FF_COMBO, FF_RADIO, FF_READ_ONLY, FormDocument
from pfsfill.fill_engine.mapping_table import load_mapping_table, parse_mapping_table
from pfsfill.fill_engine.models import WidgetKind


# =============================================================================
# In-memory Form Document
# =============================================================================

class FakeFormDocument(FormDocument):
    """
    Dictionary-backed form document.

    ``fields`` maps a field name to its widget kind. Read-only fields ignore
    writes; fields in ``failing`` raise on write.
    """

    def __init__(
        self,
        fields: Dict[str, WidgetKind],
        values: Optional[Dict[str, str]] = None,
        read_only: Optional[set] = None,
        failing: Optional[set] = None,
        options: Optional[Dict[str, List[tuple]]] = None,
        has_form: bool = True,
    ):
        self.kinds = dict(fields)
        self.values: Dict[str, str] = {name: "" for name in fields}
        self.values.update(values or {})
        self.checked: Dict[str, bool] = {}
        self.read_only = read_only or set()
        self.failing = failing or set()
        self.options = options or {}
        self._has_form = has_form
        self.flattened = False
        self.write_log: List[tuple] = []

    @property
    def has_form(self) -> bool:
        return self._has_form

    def field_names(self) -> List[str]:
        return list(self.kinds)

    def widget_kind(self, name: str) -> WidgetKind:
        return self.kinds[name]

    def read_value(self, name: str) -> str:
        return self.values[name]

    def set_text(self, name: str, value: str) -> None:
        self.write_log.append((name, value))
        if name in self.failing:
            raise RuntimeError(f"cannot write {name}")
        if name not in self.read_only:
            self.values[name] = value

    def select_option(self, name: str, value: str) -> Optional[str]:
        for export, label in self.options.get(name, []):
            if value in (export, label):
                self.set_text(name, export)
                return export
        return None

    def set_checked(self, name: str, checked: bool) -> None:
        if name in self.failing:
            raise RuntimeError(f"cannot toggle {name}")
        if name not in self.read_only:
            self.checked[name] = checked

    def is_checked(self, name: str) -> bool:
        return self.checked.get(name, False)

    def flatten(self) -> None:
        self.flattened = True

    def serialize(self) -> bytes:
        return json.dumps(
            {"values": self.values, "checked": self.checked, "flattened": self.flattened},
            sort_keys=True,
        ).encode("utf-8")


# =============================================================================
# AcroForm PDF Builder
# =============================================================================

def build_form_pdf(fields: List[Dict[str, Any]], with_form: bool = True) -> bytes:
    """
    Build a one-page AcroForm PDF.

    Each field spec has ``name`` and optionally ``kind`` (text, combo,
    listbox, checkbox, radio, signature), ``value``, ``read_only`` and
    ``options`` (list of labels).
    """
    writer = PdfWriter()
    page = writer.add_blank_page(width=612, height=792)

    font = writer._add_object(DictionaryObject({
        NameObject("/Type"): NameObject("/Font"),
        NameObject("/Subtype"): NameObject("/Type1"),
        NameObject("/BaseFont"): NameObject("/Helvetica"),
        NameObject("/Encoding"): NameObject("/WinAnsiEncoding"),
    }))

    annots = ArrayObject()
    for i, spec in enumerate(fields):
        y = 760 - 20 * (i % 36)
        x = 40 + 280 * (i // 36)
        kind = spec.get("kind", "text")
        flags = FF_READ_ONLY if spec.get("read_only") else 0

        widget = DictionaryObject({
            NameObject("/Type"): NameObject("/Annot"),
            NameObject("/Subtype"): NameObject("/Widget"),
            NameObject("/T"): TextStringObject(spec["name"]),
            NameObject("/Rect"): ArrayObject([
                FloatObject(x), FloatObject(y), FloatObject(x + 250), FloatObject(y + 15),
            ]),
            NameObject("/F"): NumberObject(4),
            NameObject("/DA"): TextStringObject("/Helv 10 Tf 0 g"),
        })

        if kind == "text":
            widget[NameObject("/FT")] = NameObject("/Tx")
        elif kind in ("combo", "listbox"):
            widget[NameObject("/FT")] = NameObject("/Ch")
            if kind == "combo":
                flags |= FF_COMBO
            widget[NameObject("/Opt")] = ArrayObject(
                [TextStringObject(label) for label in spec.get("options", [])]
            )
        elif kind == "checkbox":
            widget[NameObject("/FT")] = NameObject("/Btn")
        elif kind == "radio":
            widget[NameObject("/FT")] = NameObject("/Btn")
            flags |= FF_RADIO
        elif kind == "signature":
            widget[NameObject("/FT")] = NameObject("/Sig")

        if flags:
            widget[NameObject("/Ff")] = NumberObject(flags)
        if spec.get("value") is not None:
            widget[NameObject("/V")] = TextStringObject(spec["value"])

        annots.append(writer._add_object(widget))

    page[NameObject("/Annots")] = annots

    if with_form:
        writer._root_object[NameObject("/AcroForm")] = writer._add_object(DictionaryObject({
            NameObject("/Fields"): ArrayObject(list(annots)),
            NameObject("/DA"): TextStringObject("/Helv 0 Tf 0 g"),
            NameObject("/DR"): DictionaryObject({
                NameObject("/Font"): DictionaryObject({NameObject("/Helv"): font}),
            }),
        }))

    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


# =============================================================================
# Fixtures
# =============================================================================

SMALL_TABLE_DOCUMENT = {
    "layout": "PFS",
    "version": "test",
    "editions": {
        "standard": {"pattern": "Text Field_{slot}", "first_slot": "Text Field"},
    },
    "fields": [
        {"slot": 0, "source": "direct", "path": "borrowerName", "type": "text"},
        {"slot": 1, "source": "direct", "path": "cashOnHand", "type": "currency"},
        {"slot": 5, "source": "calculated", "aggregation": "schedule_total",
         "args": {"schedule": "A", "column": "amount"}, "type": "currency"},
        {"slot": 62, "source": "schedule", "schedule": "A", "row": 0, "column": "name", "type": "text"},
        {"slot": 63, "source": "schedule", "schedule": "A", "row": 0, "column": "amount", "type": "currency"},
        {"slot": 69, "source": "schedule", "schedule": "A", "row": 1, "column": "amount", "type": "currency"},
        {"slot": 134, "source": "property", "index": 0, "field": "address", "type": "text"},
        {"slot": 140, "source": "property", "index": 0, "field": "balance", "type": "currency"},
    ],
}


@pytest.fixture(autouse=True)
def reset_caches():
    """Reset cached settings and mapping tables for proper isolation."""
    get_settings.cache_clear()
    load_mapping_table.cache_clear()
    yield
    get_settings.cache_clear()
    load_mapping_table.cache_clear()


@pytest.fixture
def small_table():
    """Eight-rule table covering every resolution strategy."""
    return parse_mapping_table(SMALL_TABLE_DOCUMENT, "standard")


@pytest.fixture
def standard_table():
    """Packaged table, standard edition."""
    return load_mapping_table("standard")


@pytest.fixture
def sample_source() -> Dict[str, Any]:
    """camelCase financial data touching a few of each kind of field."""
    return {
        "borrowerName": "Jordan Example",
        "cashOnHand": 1500,
        "scheduleA": [{"name": "Acme", "amount": 500, "dueDate": "2025-03-01"}],
        "selectedProperties": [
            {
                "id": "p1",
                "address": "12 Main St",
                "propertyType": "Duplex",
                "yearAcquired": "2015-06-01",
                "originalCost": 150000,
                "currentValue": 300000,
                "ownershipPercentage": 50,
                "balance": 0,
            },
        ],
        "mortgages": [{"propertyId": "p1", "principalBalance": 200000, "paymentAmount": 1450}],
        "summaries": {"totalAssets": 2000, "totalLiabilities": 1000},
    }


@pytest.fixture
def small_document() -> FakeFormDocument:
    """Fake document holding exactly the small table's fields."""
    return FakeFormDocument({
        name: WidgetKind.TEXT
        for name in parse_mapping_table(SMALL_TABLE_DOCUMENT, "standard").field_names
    })


@pytest.fixture
def form_pdf_bytes() -> bytes:
    """AcroForm PDF with the small table's fields as text widgets."""
    names = parse_mapping_table(SMALL_TABLE_DOCUMENT, "standard").field_names
    return build_form_pdf([{"name": name} for name in names])


@pytest.fixture
def fake_document():
    """Factory for FakeFormDocument instances."""
    return FakeFormDocument


@pytest.fixture
def pdf_builder():
    """Factory building AcroForm PDF bytes from field specs."""
    return build_form_pdf

"""
Form document adapter for the PFSFill engine.

``FormDocument`` is the narrow interface the writer needs: a named-field
registry, an explicit widget-kind query, writes, read-back, flatten and
serialize. ``PdfFormDocument`` implements it on top of pypdf for AcroForm PDFs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict, List, Optional

import structlog
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError
from pypdf.generic import (
    ArrayObject,
    BooleanObject,
    DictionaryObject,
    NameObject,
    TextStringObject,
)

from pfsfill.exceptions import DocumentLoadError
from pfsfill.fill_engine.models import WidgetKind

logger = structlog.get_logger(__name__)

# Field flag bits (PDF 32000-1, 12.7.3.1 and 12.7.4)
FF_READ_ONLY = 1 << 0
FF_RADIO = 1 << 15
FF_PUSHBUTTON = 1 << 16
FF_COMBO = 1 << 17


class FormDocument(ABC):
    """A document with a registry of named, fillable fields."""

    @property
    @abstractmethod
    def has_form(self) -> bool:
        """True when the document carries an interactive form at all."""

    @abstractmethod
    def field_names(self) -> List[str]:
        """Fully qualified names of all terminal fields, in document order."""

    def has_field(self, name: str) -> bool:
        return name in self.field_names()

    @abstractmethod
    def widget_kind(self, name: str) -> WidgetKind:
        """Native widget type of a field."""

    @abstractmethod
    def read_value(self, name: str) -> str:
        """Current value of a field as a string ("" when unset)."""

    def has_value(self, name: str) -> bool:
        """True when the field carries a value at all."""
        return self.read_value(name) != ""

    @abstractmethod
    def set_text(self, name: str, value: str) -> None:
        """Assign raw text to a field."""

    def clear_value(self, name: str) -> None:
        """Return a field to the unset state."""
        self.set_text(name, "")

    @abstractmethod
    def select_option(self, name: str, value: str) -> Optional[str]:
        """
        Select a dropdown option by label or export value.

        Returns:
            The stored option value, or None when no option matches.
        """

    @abstractmethod
    def set_checked(self, name: str, checked: bool) -> None:
        """Check or uncheck a checkbox."""

    @abstractmethod
    def is_checked(self, name: str) -> bool:
        """Whether a checkbox is in its on state."""

    @abstractmethod
    def flatten(self) -> None:
        """Burn field values into page content and drop the form."""

    @abstractmethod
    def serialize(self) -> bytes:
        """Finalized document bytes."""


# =============================================================================
# pypdf Implementation
# =============================================================================

@dataclass
class _PdfField:
    """Terminal field with its (possibly inherited) type and flags."""
    name: str
    node: DictionaryObject
    field_type: str = ""
    flags: int = 0
    widgets: List[DictionaryObject] = field(default_factory=list)

    @property
    def read_only(self) -> bool:
        return bool(self.flags & FF_READ_ONLY)


def _resolved(node: DictionaryObject, key: str, default: Any = None) -> Any:
    value = node.get(key)
    if value is None:
        return default
    return value.get_object()


def _discover_checkbox_on_state(widget: DictionaryObject) -> str:
    """Find the 'on' state name from a checkbox's appearance dict."""
    ap = _resolved(widget, "/AP")
    if not ap:
        return "/Yes"
    normal = ap.get("/N")
    if normal is not None:
        normal = normal.get_object()
        if isinstance(normal, DictionaryObject):
            for key in normal.keys():
                if str(key) != "/Off":
                    return str(key)
    return "/Yes"


class PdfFormDocument(FormDocument):
    """
    AcroForm PDF held in memory for one fill pass.

    Read-only fields keep their value on write; callers detect this through
    read-back.
    """

    def __init__(self, writer: PdfWriter):
        self._writer = writer
        self._fields: Dict[str, _PdfField] = {}
        self._index_fields()

    @classmethod
    def load(cls, data: bytes) -> "PdfFormDocument":
        """
        Parse PDF bytes.

        Raises:
            DocumentLoadError: Bytes are not a readable PDF.
        """
        if not data:
            raise DocumentLoadError("empty document")
        try:
            reader = PdfReader(BytesIO(data))
            writer = PdfWriter(clone_from=reader)
        except (PdfReadError, ValueError, KeyError, TypeError, OSError) as e:
            raise DocumentLoadError(str(e) or type(e).__name__)
        return cls(writer)

    # =========================================================================
    # Registry
    # =========================================================================

    @property
    def _acroform(self) -> Optional[DictionaryObject]:
        acroform = self._writer._root_object.get("/AcroForm")
        return acroform.get_object() if acroform is not None else None

    def _index_fields(self) -> None:
        acroform = self._acroform
        if acroform is None:
            return
        for ref in _resolved(acroform, "/Fields") or ArrayObject():
            self._walk(ref, "", "", 0)
        logger.debug("Indexed form fields", field_count=len(self._fields))

    def _walk(self, ref: Any, parent_name: str, inherited_type: str, inherited_flags: int) -> None:
        node = ref.get_object()
        if not isinstance(node, DictionaryObject):
            return
        partial = _resolved(node, "/T")
        name = ".".join(p for p in (parent_name, str(partial) if partial is not None else "") if p)
        field_type = str(_resolved(node, "/FT", inherited_type) or "")
        flags = int(_resolved(node, "/Ff", inherited_flags) or 0)

        kids = [k.get_object() for k in (_resolved(node, "/Kids") or ArrayObject())]
        child_fields = [k for k in kids if isinstance(k, DictionaryObject) and "/T" in k]
        if child_fields:
            for kid in child_fields:
                self._walk(kid, name, field_type, flags)
            return

        if not name:
            return
        widgets = [k for k in kids if isinstance(k, DictionaryObject)] or [node]
        self._fields[name] = _PdfField(
            name=name, node=node, field_type=field_type, flags=flags, widgets=widgets
        )

    @property
    def has_form(self) -> bool:
        return self._acroform is not None

    def field_names(self) -> List[str]:
        return list(self._fields)

    def has_field(self, name: str) -> bool:
        return name in self._fields

    def widget_kind(self, name: str) -> WidgetKind:
        pdf_field = self._fields[name]
        if pdf_field.field_type == "/Tx":
            return WidgetKind.TEXT
        if pdf_field.field_type == "/Ch":
            return WidgetKind.DROPDOWN if pdf_field.flags & FF_COMBO else WidgetKind.UNSUPPORTED
        if pdf_field.field_type == "/Btn":
            if pdf_field.flags & (FF_RADIO | FF_PUSHBUTTON):
                return WidgetKind.UNSUPPORTED
            return WidgetKind.CHECKBOX
        return WidgetKind.UNSUPPORTED

    # =========================================================================
    # Values
    # =========================================================================

    def read_value(self, name: str) -> str:
        value = _resolved(self._fields[name].node, "/V")
        if value is None:
            return ""
        if isinstance(value, ArrayObject):
            return ", ".join(str(v) for v in value)
        return str(value)

    def set_text(self, name: str, value: str) -> None:
        pdf_field = self._fields[name]
        if pdf_field.read_only:
            logger.debug("Field is read-only, value kept", field=name)
            return
        pdf_field.node[NameObject("/V")] = TextStringObject(value)

    def has_value(self, name: str) -> bool:
        return "/V" in self._fields[name].node

    def clear_value(self, name: str) -> None:
        pdf_field = self._fields[name]
        if pdf_field.read_only:
            logger.debug("Field is read-only, value kept", field=name)
            return
        if "/V" in pdf_field.node:
            del pdf_field.node["/V"]

    def select_option(self, name: str, value: str) -> Optional[str]:
        pdf_field = self._fields[name]
        for option in _resolved(pdf_field.node, "/Opt") or ArrayObject():
            option = option.get_object()
            if isinstance(option, ArrayObject) and len(option) >= 2:
                export, label = str(option[0].get_object()), str(option[1].get_object())
            else:
                export = label = str(option)
            if value in (export, label):
                self.set_text(name, export)
                return export
        return None

    def set_checked(self, name: str, checked: bool) -> None:
        pdf_field = self._fields[name]
        if pdf_field.read_only:
            logger.debug("Field is read-only, state kept", field=name)
            return
        on_state = _discover_checkbox_on_state(pdf_field.widgets[0])
        state = NameObject(on_state if checked else "/Off")
        pdf_field.node[NameObject("/V")] = state
        for widget in pdf_field.widgets:
            widget[NameObject("/AS")] = state

    def is_checked(self, name: str) -> bool:
        value = _resolved(self._fields[name].node, "/V")
        return value is not None and str(value) not in ("", "/Off")

    # =========================================================================
    # Finalization
    # =========================================================================

    def _flatten_values(self) -> Dict[str, str]:
        values: Dict[str, str] = {}
        for name, pdf_field in self._fields.items():
            kind = self.widget_kind(name)
            if kind in (WidgetKind.TEXT, WidgetKind.DROPDOWN):
                current = self.read_value(name)
                if current:
                    values[name] = current
            elif kind == WidgetKind.CHECKBOX and self.is_checked(name):
                # Appearance streams are required to burn a checkbox in
                if all("/AP" in w for w in pdf_field.widgets):
                    values[name] = str(pdf_field.node["/V"])
        return values

    def flatten(self) -> None:
        values = self._flatten_values()
        if values:
            for page in self._writer.pages:
                if "/Annots" not in page:
                    continue
                self._writer.update_page_form_field_values(
                    page, values, auto_regenerate=False, flatten=True
                )
        self._writer.remove_annotations(subtypes="/Widget")
        if "/AcroForm" in self._writer._root_object:
            del self._writer._root_object["/AcroForm"]
        logger.debug("Document flattened", burned_fields=len(values))

    def serialize(self) -> bytes:
        acroform = self._acroform
        if acroform is not None:
            # Viewers regenerate appearances for the unflattened form
            acroform[NameObject("/NeedAppearances")] = BooleanObject(True)
        buffer = BytesIO()
        self._writer.write(buffer)
        return buffer.getvalue()

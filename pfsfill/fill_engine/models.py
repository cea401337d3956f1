"""
Data structures for the PFSFill engine.

Covers:
- FieldMapping rules (one per output field) and the strategy / render enums
- ResolvedValue records produced by the resolver
- FillOutcome records (one per mapping per fill pass)
- FillReport aggregate with reconciliation and canary diagnostics
- FillResult returned by the orchestrator
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union


class DataSource(str, Enum):
    """Resolution strategy of a field mapping."""
    DIRECT = "direct"
    CALCULATED = "calculated"
    SCHEDULE = "schedule"
    PROPERTY = "property"


class FieldType(str, Enum):
    """How a resolved value is rendered."""
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"


class WidgetKind(str, Enum):
    """Native widget type of a document field."""
    TEXT = "text"
    DROPDOWN = "dropdown"
    CHECKBOX = "checkbox"
    UNSUPPORTED = "unsupported"


class FillStatus(str, Enum):
    """Per-field result of a fill pass."""
    FILLED = "filled"
    BLANK = "blank"
    MISSING_IN_DOCUMENT = "missing_in_document"
    UNSUPPORTED_FIELD_TYPE = "unsupported_field_type"
    RESOLUTION_ERROR = "resolution_error"
    WRITE_VERIFICATION_MISMATCH = "write_verification_mismatch"


FAILED_STATUSES = frozenset({
    FillStatus.UNSUPPORTED_FIELD_TYPE,
    FillStatus.RESOLUTION_ERROR,
    FillStatus.WRITE_VERIFICATION_MISMATCH,
})


class PassState(str, Enum):
    """States of a single fill pass."""
    IDLE = "idle"
    LOADING_DOCUMENT = "loading_document"
    VALIDATING_FIELD_REGISTRY = "validating_field_registry"
    FILLING = "filling"
    FLATTENING = "flattening"
    SERIALIZED = "serialized"
    # Fatal, pre-loop
    DOCUMENT_LOAD_FAILED = "document_load_failed"
    DOCUMENT_HAS_NO_FORM = "document_has_no_form"
    DOCUMENT_HAS_NO_FIELDS = "document_has_no_fields"


class CanaryVerdict(str, Enum):
    """Outcome of the zero-fill canary write."""
    NOT_RUN = "not_run"
    DOCUMENT_WRITABLE = "document_writable"    # mapping is the likely culprit
    DOCUMENT_READ_ONLY = "document_read_only"
    INCONCLUSIVE = "inconclusive"


# =============================================================================
# Mapping Rules
# =============================================================================

@dataclass(frozen=True)
class FieldMapping:
    """Rule linking one output-document field to a value and a render policy."""
    output_field_name: str
    data_source: Union[DataSource, str]
    field_type: FieldType = FieldType.TEXT
    # Direct
    data_path: Optional[str] = None
    # Schedule
    schedule_id: Optional[str] = None
    schedule_index: Optional[int] = None
    schedule_field: Optional[str] = None
    # Property
    property_index: Optional[int] = None
    property_field: Optional[str] = None
    # Hooks
    transform: Optional[Callable[[Any], Any]] = None
    calculate: Optional[Callable[[Mapping[str, Any]], Any]] = None
    # Provenance
    label: str = ""

    def describe_source(self) -> str:
        """Short human-readable description of where the value comes from."""
        if self.data_source == DataSource.DIRECT:
            return f"direct {self.data_path}"
        if self.data_source == DataSource.SCHEDULE:
            return f"schedule {self.schedule_id}[{self.schedule_index}].{self.schedule_field}"
        if self.data_source == DataSource.PROPERTY:
            return f"property[{self.property_index}].{self.property_field}"
        if self.data_source == DataSource.CALCULATED:
            name = getattr(self.calculate, "__name__", None) or getattr(
                getattr(self.calculate, "func", None), "__name__", "calculate"
            )
            return f"calculated {name}"
        return f"unknown source {self.data_source!r}"


# =============================================================================
# Resolution
# =============================================================================

@dataclass(frozen=True)
class ResolvedValue:
    """Raw value extracted for one mapping, before formatting."""
    value: Any = None
    present: bool = False
    error: Optional[str] = None
    note: Optional[str] = None

    @classmethod
    def of(cls, value: Any) -> "ResolvedValue":
        return cls(value=value, present=True)

    @classmethod
    def absent(cls, note: Optional[str] = None) -> "ResolvedValue":
        return cls(note=note)

    @classmethod
    def failed(cls, error: str) -> "ResolvedValue":
        return cls(error=error)

    @property
    def is_error(self) -> bool:
        return self.error is not None


# =============================================================================
# Outcomes and Reports
# =============================================================================

@dataclass(frozen=True)
class FillOutcome:
    """Per-field result record from one fill pass."""
    field_name: str
    status: FillStatus
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_name": self.field_name,
            "status": self.status.value,
            "detail": self.detail,
        }


@dataclass
class CanaryResult:
    """Result of the single canary write/read run when nothing was filled."""
    verdict: CanaryVerdict = CanaryVerdict.NOT_RUN
    field_name: Optional[str] = None
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "field_name": self.field_name,
            "detail": self.detail,
        }


@dataclass
class Reconciliation:
    """Comparison of the mapping table against the actual document registry."""
    # Mappings whose output field has zero matches in the document
    unmatched_mappings: List[str] = field(default_factory=list)
    # Document fields no mapping targets
    unmapped_document_fields: List[str] = field(default_factory=list)
    # Rows supplied beyond a schedule's capacity, keyed by schedule id
    overflow_rows: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unmatched_mappings": list(self.unmatched_mappings),
            "unmapped_document_fields": list(self.unmapped_document_fields),
            "overflow_rows": dict(self.overflow_rows),
        }


@dataclass
class FillReport:
    """Machine-readable report of one fill pass."""
    layout: str
    version: str
    edition: str
    document_field_count: int
    outcomes: List[FillOutcome] = field(default_factory=list)
    reconciliation: Reconciliation = field(default_factory=Reconciliation)
    canary: CanaryResult = field(default_factory=CanaryResult)
    flattened: bool = False

    def count(self, status: FillStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def filled(self) -> int:
        return self.count(FillStatus.FILLED)

    @property
    def blank(self) -> int:
        return self.count(FillStatus.BLANK)

    @property
    def missing(self) -> int:
        return self.count(FillStatus.MISSING_IN_DOCUMENT)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status in FAILED_STATUSES)

    @property
    def zero_filled(self) -> bool:
        """True when not a single field received a value."""
        return self.filled == 0

    @property
    def has_warnings(self) -> bool:
        return self.missing > 0 or self.failed > 0 or self.zero_filled

    def outcomes_with(self, status: FillStatus) -> List[FillOutcome]:
        return [o for o in self.outcomes if o.status == status]

    def counts(self) -> Dict[str, int]:
        return {
            "total": len(self.outcomes),
            "filled": self.filled,
            "blank": self.blank,
            "missing": self.missing,
            "failed": self.failed,
            "by_status": {s.value: self.count(s) for s in FillStatus},
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "layout": self.layout,
            "version": self.version,
            "edition": self.edition,
            "document_field_count": self.document_field_count,
            "flattened": self.flattened,
            "zero_filled": self.zero_filled,
            "counts": self.counts(),
            "reconciliation": self.reconciliation.to_dict(),
            "canary": self.canary.to_dict(),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)


@dataclass
class FillResult:
    """Final result of a fill pass."""
    success: bool
    pass_id: str
    document_bytes: Optional[bytes] = None
    report: Optional[FillReport] = None
    states: List[PassState] = field(default_factory=list)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def final_state(self) -> PassState:
        """Last state reached before the pass returned to idle."""
        for state in reversed(self.states):
            if state != PassState.IDLE:
                return state
        return PassState.IDLE

    @property
    def has_warnings(self) -> bool:
        return self.report.has_warnings if self.report else False

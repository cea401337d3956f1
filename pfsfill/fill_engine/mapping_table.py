"""
Field mapping table for the PFSFill engine.

The table is a versioned YAML data asset. Each rule declares how one output
field derives its value and how the value is rendered. Output field names are
produced from a slot number through an edition's naming convention, so every
document edition shares the one rule list.

The table never performs I/O once loaded; ``load_mapping_table`` is cached and
the result is a process-wide constant.
"""
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

import structlog
import yaml

from pfsfill.exceptions import MappingTableError
from pfsfill.fill_engine.calculations import TRANSFORMS, build_aggregation
from pfsfill.fill_engine.layout import (
    PROPERTY_FIELDS,
    PROPERTY_SCHEDULE,
    SCHEDULE_COLUMNS,
    schedule_capacity,
)
from pfsfill.fill_engine.models import DataSource, FieldMapping, FieldType

logger = structlog.get_logger(__name__)

DEFAULT_TABLE_PATH = Path(__file__).parent / "data" / "pfs_field_mappings.yaml"


class MappingTable:
    """Ordered, immutable collection of field mappings with name lookup."""

    def __init__(
        self,
        layout: str,
        version: str,
        edition: str,
        mappings: Sequence[FieldMapping],
    ):
        self.layout = layout
        self.version = version
        self.edition = edition
        self._mappings = tuple(mappings)
        self._by_name: Dict[str, FieldMapping] = {}

        for mapping in self._mappings:
            if mapping.output_field_name in self._by_name:
                raise MappingTableError(
                    f"Duplicate output field name: {mapping.output_field_name}",
                    details={"field": mapping.output_field_name, "edition": edition},
                )
            self._by_name[mapping.output_field_name] = mapping

    @property
    def mappings(self) -> Sequence[FieldMapping]:
        return self._mappings

    @property
    def field_names(self) -> List[str]:
        return [m.output_field_name for m in self._mappings]

    def get(self, field_name: str) -> Optional[FieldMapping]:
        return self._by_name.get(field_name)

    def __iter__(self) -> Iterator[FieldMapping]:
        return iter(self._mappings)

    def __len__(self) -> int:
        return len(self._mappings)

    def __contains__(self, field_name: object) -> bool:
        return field_name in self._by_name

    def __repr__(self) -> str:
        return (
            f"MappingTable(layout={self.layout!r}, version={self.version!r}, "
            f"edition={self.edition!r}, mappings={len(self)})"
        )


# =============================================================================
# Parsing
# =============================================================================

def render_field_name(edition: Mapping[str, Any], slot: int) -> str:
    """Document field name of an output slot under an edition's convention."""
    if slot == 0 and edition.get("first_slot"):
        return str(edition["first_slot"])
    return str(edition["pattern"]).format(slot=slot)


def _fail(message: str, position: int, rule: Mapping[str, Any]) -> MappingTableError:
    return MappingTableError(message, details={"rule_index": position, "rule": dict(rule)})


def _require(rule: Mapping[str, Any], position: int, *keys: str) -> None:
    missing = [k for k in keys if rule.get(k) is None]
    if missing:
        raise _fail(
            f"Rule {position} ({rule.get('source')}) is missing {', '.join(missing)}",
            position,
            rule,
        )


def _check_index(value: Any, capacity: int, what: str, position: int, rule: Mapping[str, Any]) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise _fail(f"Rule {position}: {what} must be a non-negative integer", position, rule)
    if value >= capacity:
        raise _fail(
            f"Rule {position}: {what} {value} exceeds capacity {capacity}",
            position,
            rule,
        )
    return value


def _build_mapping(rule: Mapping[str, Any], edition: Mapping[str, Any], position: int) -> FieldMapping:
    """Build one FieldMapping from a YAML rule."""
    if not isinstance(rule, Mapping):
        raise MappingTableError(f"Rule {position} is not a mapping", details={"rule_index": position})

    if rule.get("name"):
        field_name = str(rule["name"])
    elif isinstance(rule.get("slot"), int):
        field_name = render_field_name(edition, rule["slot"])
    else:
        raise _fail(f"Rule {position} needs a slot or a name", position, rule)

    try:
        source = DataSource(rule.get("source"))
    except ValueError:
        raise _fail(f"Rule {position}: unknown source {rule.get('source')!r}", position, rule)

    try:
        field_type = FieldType(rule.get("type", FieldType.TEXT.value))
    except ValueError:
        raise _fail(f"Rule {position}: unknown field type {rule.get('type')!r}", position, rule)

    transform = None
    if rule.get("transform") is not None:
        transform = TRANSFORMS.get(rule["transform"])
        if transform is None:
            raise _fail(f"Rule {position}: unknown transform {rule['transform']!r}", position, rule)

    kwargs: Dict[str, Any] = {
        "output_field_name": field_name,
        "data_source": source,
        "field_type": field_type,
        "transform": transform,
        "label": str(rule.get("label", "")),
    }

    if source == DataSource.DIRECT:
        _require(rule, position, "path")
        kwargs["data_path"] = str(rule["path"])

    elif source == DataSource.CALCULATED:
        _require(rule, position, "aggregation")
        try:
            kwargs["calculate"] = build_aggregation(rule["aggregation"], rule.get("args"))
        except KeyError:
            raise _fail(
                f"Rule {position}: unknown aggregation {rule['aggregation']!r}",
                position,
                rule,
            )

    elif source == DataSource.SCHEDULE:
        _require(rule, position, "schedule", "row", "column")
        schedule_id = str(rule["schedule"])
        if schedule_id not in SCHEDULE_COLUMNS or schedule_id == PROPERTY_SCHEDULE:
            raise _fail(f"Rule {position}: unknown schedule {schedule_id!r}", position, rule)
        if rule["column"] not in SCHEDULE_COLUMNS[schedule_id]:
            raise _fail(
                f"Rule {position}: schedule {schedule_id} has no column {rule['column']!r}",
                position,
                rule,
            )
        kwargs["schedule_id"] = schedule_id
        kwargs["schedule_index"] = _check_index(
            rule["row"], schedule_capacity(schedule_id), "row", position, rule
        )
        kwargs["schedule_field"] = str(rule["column"])

    elif source == DataSource.PROPERTY:
        _require(rule, position, "index", "field")
        if rule["field"] not in PROPERTY_FIELDS:
            raise _fail(f"Rule {position}: unknown property field {rule['field']!r}", position, rule)
        kwargs["property_index"] = _check_index(
            rule["index"], schedule_capacity(PROPERTY_SCHEDULE), "index", position, rule
        )
        kwargs["property_field"] = str(rule["field"])

    return FieldMapping(**kwargs)


def parse_mapping_table(document: Mapping[str, Any], edition: str) -> MappingTable:
    """
    Build a MappingTable for one edition from a parsed YAML document.

    Raises:
        MappingTableError: Unknown edition or any malformed rule.
    """
    if not isinstance(document, Mapping):
        raise MappingTableError("Mapping table document must be a mapping")

    editions = document.get("editions") or {}
    if edition not in editions:
        raise MappingTableError(
            f"Unknown mapping edition: {edition}",
            details={"edition": edition, "available": sorted(editions)},
        )
    convention = editions[edition]
    if not isinstance(convention, Mapping) or not convention.get("pattern"):
        raise MappingTableError(
            f"Edition {edition} has no naming pattern",
            details={"edition": edition},
        )

    rules = document.get("fields")
    if not isinstance(rules, list) or not rules:
        raise MappingTableError("Mapping table has no field rules")

    mappings = [_build_mapping(rule, convention, i) for i, rule in enumerate(rules)]

    return MappingTable(
        layout=str(document.get("layout", "")),
        version=str(document.get("version", "")),
        edition=edition,
        mappings=mappings,
    )


def read_table_document(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Read the raw YAML table document.

    Raises:
        MappingTableError: File missing or not valid YAML.
    """
    path = Path(path) if path else DEFAULT_TABLE_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise MappingTableError(f"Mapping table not found: {path}", details={"path": str(path)})
    except yaml.YAMLError as e:
        raise MappingTableError(
            f"Mapping table is not valid YAML: {path}",
            details={"path": str(path), "reason": str(e)},
        )
    return data or {}


@lru_cache(maxsize=None)
def load_mapping_table(edition: str = "standard", path: Optional[Path] = None) -> MappingTable:
    """
    Load the mapping table for an edition.

    Args:
        edition: Naming convention matching the document in hand.
        path: Alternate table file; defaults to the packaged asset.

    Returns:
        Cached MappingTable.
    """
    table = parse_mapping_table(read_table_document(path), edition)
    logger.info(
        "Mapping table loaded",
        layout=table.layout,
        version=table.version,
        edition=edition,
        mappings=len(table),
    )
    return table


def available_editions(path: Optional[Path] = None) -> List[str]:
    """Edition names declared by the table file."""
    return sorted((read_table_document(path).get("editions") or {}).keys())

"""
Template Loader Service

Resolves a template id to the bytes of a PFS document template.
"""

import re
from pathlib import Path
from typing import List, Optional, Protocol

import structlog

from pfsfill.config import get_settings
from pfsfill.exceptions import TemplateError, TemplateNotFoundError

logger = structlog.get_logger(__name__)

_TEMPLATE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class TemplateSource(Protocol):
    """Template registry: template id -> document bytes."""

    def load(self, template_id: str) -> bytes:
        ...


class LocalTemplateSource:
    """
    Reads templates from a directory.

    ``<template_dir>/<id>.pdf``; the default id maps to the configured
    default filename.
    """

    def __init__(
        self,
        template_dir: Optional[Path] = None,
        default_template_id: Optional[str] = None,
        default_template_filename: Optional[str] = None,
    ):
        settings = get_settings()
        self.template_dir = Path(template_dir or settings.template_dir)
        self.default_template_id = default_template_id or settings.default_template_id
        self.default_template_filename = (
            default_template_filename or settings.default_template_filename
        )

    def get_template_path(self, template_id: str) -> Path:
        """Path a template id refers to (which may not exist)."""
        if template_id == self.default_template_id:
            return self.template_dir / self.default_template_filename
        if not _TEMPLATE_ID.match(template_id) or ".." in template_id:
            raise TemplateError(
                f"Invalid template id: {template_id}",
                details={"template_id": template_id},
            )
        return self.template_dir / f"{template_id}.pdf"

    def load(self, template_id: str) -> bytes:
        """
        Read a template.

        Raises:
            TemplateNotFoundError: No file for this id.
            TemplateError: Invalid id or unreadable file.
        """
        path = self.get_template_path(template_id)
        if not path.is_file():
            raise TemplateNotFoundError(template_id)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise TemplateError(
                f"Failed to read template {template_id}",
                details={"template_id": template_id, "reason": str(e)},
            )

        logger.info("Template loaded", template_id=template_id, path=str(path), size=len(data))
        return data

    def list_templates(self) -> List[str]:
        """Ids of the templates present in the directory."""
        if not self.template_dir.is_dir():
            return []
        ids = []
        for path in sorted(self.template_dir.glob("*.pdf")):
            if path.name == self.default_template_filename:
                ids.append(self.default_template_id)
            else:
                ids.append(path.stem)
        return ids


def get_template_source() -> LocalTemplateSource:
    """Get LocalTemplateSource for the configured template directory."""
    return LocalTemplateSource()

"""
Custom exceptions for PFSFill.

Provides a hierarchy of exceptions with error codes for consistent error handling.

Only structural problems and configuration problems are raised. Per-field
problems during a fill pass (missing field, unsupported widget, failed
calculation, write that did not stick) are recorded as outcomes instead.
"""
from typing import Optional, Dict, Any


class PFSFillError(Exception):
    """
    Base exception for all PFSFill errors.

    Attributes:
        error_code: Unique error code (e.g., PFS-001)
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "PFS-000"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for reports."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Structural Errors (PFS-1XX) - fatal, raised before any field is touched
class StructuralError(PFSFillError):
    """Target document cannot be filled at all."""
    error_code = "PFS-100"

    def __init__(self, message: str = "Document cannot be filled", **kwargs):
        super().__init__(message, **kwargs)


class DocumentHasNoFormError(StructuralError):
    """Document carries no interactive form."""
    error_code = "PFS-101"

    def __init__(self, **kwargs):
        message = "Document does not contain a form. Ensure the template has AcroForm fields."
        super().__init__(message, **kwargs)


class DocumentHasNoFieldsError(StructuralError):
    """Document form exists but exposes no fields."""
    error_code = "PFS-102"

    def __init__(self, **kwargs):
        message = "document has no fillable fields"
        super().__init__(message, **kwargs)


class DocumentLoadError(StructuralError):
    """Document bytes could not be parsed."""
    error_code = "PFS-103"

    def __init__(self, reason: str, **kwargs):
        message = f"Failed to load document: {reason}"
        super().__init__(message, details={"reason": reason}, **kwargs)


# Mapping Errors (PFS-2XX)
class MappingTableError(PFSFillError):
    """Field mapping table is malformed."""
    error_code = "PFS-200"

    def __init__(self, message: str = "Invalid field mapping table", **kwargs):
        super().__init__(message, **kwargs)


# Template Errors (PFS-3XX)
class TemplateError(PFSFillError):
    """Error while obtaining a document template."""
    error_code = "PFS-300"

    def __init__(self, message: str = "Failed to load template", **kwargs):
        super().__init__(message, **kwargs)


class TemplateNotFoundError(TemplateError):
    """Template id does not resolve to any document."""
    error_code = "PFS-301"

    def __init__(self, template_id: str, **kwargs):
        message = f"Template {template_id} not found"
        super().__init__(message, details={"template_id": template_id}, **kwargs)


# Validation Errors (PFS-7XX)
class ValidationError(PFSFillError):
    """Input financial data could not be parsed."""
    error_code = "PFS-700"

    def __init__(self, message: str = "Validation failed", errors: list = None, **kwargs):
        details = kwargs.pop("details", {})
        details["errors"] = errors or []
        super().__init__(message, details=details, **kwargs)

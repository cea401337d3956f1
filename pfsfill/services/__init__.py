"""Services package."""
from pfsfill.services.template_loader import (
    LocalTemplateSource,
    TemplateSource,
    get_template_source,
)

__all__ = ["LocalTemplateSource", "TemplateSource", "get_template_source"]

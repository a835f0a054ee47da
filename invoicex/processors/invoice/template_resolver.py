import logging
from typing import Optional

from invoicex.db.connection import Database
from invoicex.db.models import VendorTemplate
from invoicex.db.repository import TemplateRepository
from invoicex.models.invoice import TemplateConfig
from invoicex.utils import utcnow

logger = logging.getLogger(__name__)


class TemplateResolver:
    """Loads the active extraction template of a vendor"""

    def __init__(self, db: Database):
        self.db = db
        self.templates = TemplateRepository(db)

    def resolve(self, vendor_id: Optional[str]) -> Optional[TemplateConfig]:
        """
        Get the vendor's active template

        Returns:
            TemplateConfig, or None when the vendor has no active template

        Raises:
            pydantic.ValidationError: If the stored template is malformed
        """
        if not vendor_id:
            return None
        template = self.templates.get_active_for_vendor(vendor_id)
        if template is None:
            return None
        logger.debug(f"Using template {template.id} for vendor {vendor_id}")
        return TemplateConfig(
            id=template.id,
            vendor_id=template.vendor_id,
            name=template.name,
            custom_prompt=template.custom_prompt,
            custom_fields=template.custom_fields,
            field_mappings=template.field_mappings,
            validation_rules=template.validation_rules,
        )

    def record_usage(self, template_id: str) -> int:
        """
        Bump the template's usage counters

        Returns:
            New usage count
        """
        with self.db.transaction() as session:
            template = session.get(VendorTemplate, template_id)
            if template is None:
                raise LookupError(f"Template not found: {template_id}")
            template.invoice_count = (template.invoice_count or 0) + 1
            template.last_used_at = utcnow()
            return template.invoice_count

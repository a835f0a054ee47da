"""
Field mapping for vendor-specific extraction payloads

Templates rename vendor keys onto the canonical invoice keys. Mapping only
adds keys: the vendor's original keys stay in the payload and end up in the
document's custom fields.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from invoicex.models.invoice import CANONICAL_FIELDS

logger = logging.getLogger(__name__)

DATE_FORMATS = [
    '%Y-%m-%d',      # ISO format
    '%m/%d/%Y',      # US format
    '%d/%m/%Y',      # EU format
    '%m-%d-%Y',
    '%d-%m-%Y',
    '%Y/%m/%d',
    '%d.%m.%Y',
    '%B %d, %Y',     # January 15, 2024
    '%b %d, %Y',     # Jan 15, 2024
    '%d %B %Y',      # 15 January 2024
    '%d %b %Y',      # 15 Jan 2024
]


def apply_field_mappings(
    data: Mapping[str, Any],
    mappings: Optional[Mapping[str, str]]
) -> Dict[str, Any]:
    """
    Copy mapped vendor keys onto canonical keys

    Args:
        data: Raw extraction payload
        mappings: Vendor key -> canonical key

    Returns:
        New dict with every original key plus the mapped ones. Sources that
        are absent from ``data`` are skipped.
    """
    mapped = dict(data)
    for source_key, target_key in (mappings or {}).items():
        if source_key in data:
            mapped[target_key] = data[source_key]
    return mapped


def separate_standard_and_custom_fields(
    data: Mapping[str, Any]
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Split a payload into canonical and custom fields

    Returns:
        (standard, custom) dictionaries
    """
    standard = {k: v for k, v in data.items() if k in CANONICAL_FIELDS}
    custom = {k: v for k, v in data.items() if k not in CANONICAL_FIELDS}
    return standard, custom


def parse_document_date(value: Any) -> Optional[datetime]:
    """
    Parse an extracted date leniently

    Unparseable values yield None rather than an error; a missing date is
    not a processing failure.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value

    value = str(value).strip()
    if not value:
        return None

    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue

    logger.debug(f"Could not parse document date: {value!r}")
    return None

from .connection import Database, Base, get_base
from .models import Batch, Document, LineItem, Vendor, VendorTemplate, Operation, AuditEvent

__all__ = [
    'Database', 'Base', 'get_base',
    'Batch', 'Document', 'LineItem', 'Vendor', 'VendorTemplate', 'Operation', 'AuditEvent',
]

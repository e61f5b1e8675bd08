"""
Invoicing Module.

Creates customer invoices with ordered line items.
"""

from backoffice_modules.invoicing.models import (
    Invoice,
    InvoiceLine,
    InvoiceRequest,
    InvoiceStatus,
)
from backoffice_modules.invoicing.service import InvoiceService

__all__ = [
    "Invoice",
    "InvoiceLine",
    "InvoiceRequest",
    "InvoiceStatus",
    "InvoiceService",
]

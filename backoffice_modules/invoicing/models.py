"""
Invoicing Domain Models (``backoffice_modules.invoicing.models``).

Responsibility
--------------
Frozen dataclass value objects for customer invoices and their lines.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Decimal`` -- NEVER ``float``.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class InvoiceLine:
    """One billed line, copied in order onto the invoice."""
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal


@dataclass(frozen=True)
class InvoiceRequest:
    """Everything needed to create an invoice for a job."""
    business_id: UUID
    customer_id: UUID
    amount: Decimal
    issue_date: date
    due_date: date
    tax: Decimal = Decimal("0")
    notes: str | None = None
    recurring_schedule_id: UUID | None = None


@dataclass(frozen=True)
class Invoice:
    """A created invoice."""
    id: UUID
    business_id: UUID
    customer_id: UUID
    job_id: UUID | None
    invoice_number: str
    amount: Decimal
    tax: Decimal
    total: Decimal
    due_date: date
    status: InvoiceStatus
    notes: str | None = None
    recurring_schedule_id: UUID | None = None
    lines: tuple[InvoiceLine, ...] = ()

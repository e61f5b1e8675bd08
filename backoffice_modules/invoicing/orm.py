"""
Invoicing ORM Models (``backoffice_modules.invoicing.orm``).

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``backoffice_kernel.db.base``
and sibling ``models.py``.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_kernel.db.base import TrackedBase


class InvoiceModel(TrackedBase):
    """
    ORM model for invoices.

    Guarantees:
        - invoice_number is unique (uq_invoices_invoice_number).
        - total = amount + tax, computed by InvoiceService.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        Index("idx_invoices_business_id", "business_id"),
        Index("idx_invoices_job_id", "job_id"),
    )

    business_id: Mapped[UUID] = mapped_column(nullable=False)
    customer_id: Mapped[UUID] = mapped_column(nullable=False)
    job_id: Mapped[UUID | None] = mapped_column(ForeignKey("jobs.id"), nullable=True)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(50), default="pending", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    recurring_schedule_id: Mapped[UUID | None] = mapped_column(nullable=True)

    lines: Mapped[list["InvoiceItemModel"]] = relationship(
        "InvoiceItemModel",
        back_populates="invoice",
        order_by="InvoiceItemModel.position",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from backoffice_modules.invoicing.models import Invoice, InvoiceStatus

        return Invoice(
            id=self.id,
            business_id=self.business_id,
            customer_id=self.customer_id,
            job_id=self.job_id,
            invoice_number=self.invoice_number,
            amount=self.amount,
            tax=self.tax,
            total=self.total,
            due_date=self.due_date,
            status=InvoiceStatus(self.status),
            notes=self.notes,
            recurring_schedule_id=self.recurring_schedule_id,
            lines=tuple(line.to_dto() for line in self.lines),
        )


class InvoiceItemModel(TrackedBase):
    """ORM model for invoice line items, ordered by ``position``."""

    __tablename__ = "invoice_items"

    __table_args__ = (
        UniqueConstraint("invoice_id", "position", name="uq_invoice_items_position"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped["InvoiceModel"] = relationship(
        "InvoiceModel",
        back_populates="lines",
        foreign_keys=[invoice_id],
    )

    def to_dto(self):
        from backoffice_modules.invoicing.models import InvoiceLine

        return InvoiceLine(
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            amount=self.amount,
        )

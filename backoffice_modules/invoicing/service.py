"""
Invoicing Service (``backoffice_modules.invoicing.service``).

Responsibility
--------------
Creates invoices and their line items inside the caller's transaction.

Contract
--------
* ``create_invoice()`` validates the request, writes the invoice and its
  lines in order, flushes, and returns the invoice id.
* Does NOT call ``session.commit()`` -- caller controls boundaries.

Failure modes
-------------
* ``InvoiceCreationError`` for negative amounts/tax, an empty line
  description, or a database error on flush.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backoffice_kernel.exceptions import InvoiceCreationError
from backoffice_kernel.logging_config import get_logger
from backoffice_modules.invoicing.models import (
    Invoice,
    InvoiceLine,
    InvoiceRequest,
    InvoiceStatus,
)
from backoffice_modules.invoicing.orm import InvoiceItemModel, InvoiceModel

logger = get_logger("modules.invoicing.service")


def generate_invoice_number(request: InvoiceRequest) -> str:
    """``INV-<yyyymmdd>-<8 hex>``, dated by the issue date."""
    return f"INV-{request.issue_date:%Y%m%d}-{uuid4().hex[:8].upper()}"


class InvoiceService:
    """Creates and reads invoices."""

    def __init__(self, session: Session):
        self._session = session

    def create_invoice(
        self,
        request: InvoiceRequest,
        lines: Sequence[InvoiceLine],
        job_id: UUID | None,
        actor_id: UUID,
    ) -> UUID:
        """Create a ``pending`` invoice linked to ``job_id`` and return its id."""
        job_ref = str(job_id) if job_id else None
        if request.amount < 0:
            raise InvoiceCreationError("amount cannot be negative", job_id=job_ref)
        if request.tax < 0:
            raise InvoiceCreationError("tax cannot be negative", job_id=job_ref)
        if request.due_date < request.issue_date:
            raise InvoiceCreationError("due_date precedes issue_date", job_id=job_ref)
        for line in lines:
            if not line.description or not line.description.strip():
                raise InvoiceCreationError("line description cannot be empty", job_id=job_ref)

        invoice_id = uuid4()
        invoice_number = generate_invoice_number(request)
        model = InvoiceModel(
            id=invoice_id,
            business_id=request.business_id,
            customer_id=request.customer_id,
            job_id=job_id,
            invoice_number=invoice_number,
            amount=request.amount,
            tax=request.tax,
            total=request.amount + request.tax,
            due_date=request.due_date,
            status=InvoiceStatus.PENDING.value,
            notes=request.notes,
            recurring_schedule_id=request.recurring_schedule_id,
            created_by_id=actor_id,
        )
        self._session.add(model)

        for position, line in enumerate(lines):
            self._session.add(
                InvoiceItemModel(
                    invoice_id=invoice_id,
                    position=position,
                    description=line.description,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    amount=line.amount,
                    created_by_id=actor_id,
                )
            )

        try:
            self._session.flush()
        except SQLAlchemyError as exc:
            raise InvoiceCreationError(str(exc), job_id=job_ref) from exc

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice_id),
                "invoice_number": invoice_number,
                "job_id": job_ref,
                "total": str(request.amount + request.tax),
                "line_count": len(lines),
            },
        )
        return invoice_id

    def get_invoice(self, invoice_id: UUID) -> Invoice | None:
        model = self._session.get(InvoiceModel, invoice_id)
        return model.to_dto() if model is not None else None

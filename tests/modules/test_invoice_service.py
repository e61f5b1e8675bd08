"""
Tests for InvoiceService -- invoice and line creation.
"""

import re
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from backoffice_kernel.db.engine import session_scope
from backoffice_kernel.exceptions import InvoiceCreationError
from backoffice_modules.invoicing.models import InvoiceLine, InvoiceRequest, InvoiceStatus
from backoffice_modules.invoicing.orm import InvoiceItemModel, InvoiceModel
from backoffice_modules.invoicing.service import InvoiceService, generate_invoice_number

INVOICE_NUMBER = re.compile(r"^INV-\d{8}-[0-9A-F]{8}$")


def _request(**overrides) -> InvoiceRequest:
    values = dict(
        business_id=uuid4(),
        customer_id=uuid4(),
        amount=Decimal("120.00"),
        tax=Decimal("9.60"),
        issue_date=date(2024, 3, 15),
        due_date=date(2024, 4, 14),
    )
    values.update(overrides)
    return InvoiceRequest(**values)


LINES = (
    InvoiceLine("Deep clean", Decimal("1"), Decimal("100.00"), Decimal("100.00")),
    InvoiceLine("Oven", Decimal("2"), Decimal("10.00"), Decimal("20.00")),
)


class TestCreateInvoice:
    def test_create_and_read(self, session_factory, actor_id):
        with session_scope(session_factory) as session:
            invoice_id = InvoiceService(session).create_invoice(_request(), LINES, None, actor_id)
        with session_scope(session_factory) as session:
            invoice = InvoiceService(session).get_invoice(invoice_id)

        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.amount == Decimal("120.00")
        assert invoice.total == Decimal("129.60")
        assert invoice.due_date == date(2024, 4, 14)
        assert INVOICE_NUMBER.match(invoice.invoice_number)
        assert invoice.invoice_number.startswith("INV-20240315-")
        assert [line.description for line in invoice.lines] == ["Deep clean", "Oven"]

    def test_without_lines(self, session_factory, count_rows, actor_id):
        with session_scope(session_factory) as session:
            InvoiceService(session).create_invoice(_request(tax=Decimal("0")), (), None, actor_id)

        assert count_rows(InvoiceModel) == 1
        assert count_rows(InvoiceItemModel) == 0

    def test_get_unknown_returns_none(self, session_factory):
        with session_scope(session_factory) as session:
            assert InvoiceService(session).get_invoice(uuid4()) is None

    def test_invoice_numbers_are_distinct(self):
        request = _request()
        numbers = {generate_invoice_number(request) for _ in range(50)}

        assert len(numbers) == 50
        assert all(INVOICE_NUMBER.match(n) for n in numbers)


class TestValidation:
    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"amount": Decimal("-1")}, "amount"),
            ({"tax": Decimal("-0.01")}, "tax"),
            ({"due_date": date(2024, 3, 14)}, "due_date"),
        ],
    )
    def test_rejected_requests(self, session_factory, count_rows, actor_id, overrides, reason):
        with pytest.raises(InvoiceCreationError, match=reason) as exc_info:
            with session_scope(session_factory) as session:
                InvoiceService(session).create_invoice(_request(**overrides), LINES, None, actor_id)

        assert exc_info.value.code == "INVOICE_CREATION_FAILED"
        assert count_rows(InvoiceModel) == 0

    def test_blank_line_description(self, session_factory, actor_id):
        lines = (InvoiceLine(" ", Decimal("1"), Decimal("5.00"), Decimal("5.00")),)

        with pytest.raises(InvoiceCreationError, match="line description"):
            with session_scope(session_factory) as session:
                InvoiceService(session).create_invoice(_request(), lines, None, actor_id)

"""Request and response bodies for the recurring schedule HTTP API (camelCase)."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from backoffice_kernel.exceptions import InvalidRecurrenceRuleError

from recurring_engine.domain.types import (
    ExecutionResult,
    Frequency,
    JobHistoryEntry,
    RecurrenceRule,
    RecurringSchedule,
    ScheduleDraft,
    ScheduleItem,
    TemplateUpdate,
)


def parse_frequency(value: str) -> Frequency:
    try:
        return Frequency(value)
    except ValueError:
        valid = [f.value for f in Frequency]
        raise InvalidRecurrenceRuleError(
            "frequency", f"must be one of {valid}, got {value!r}"
        ) from None


class ScheduleItemPayload(BaseModel):
    description: str
    quantity: Decimal = Decimal("1")
    unitPrice: Decimal
    amount: Decimal | None = None

    def to_item(self) -> ScheduleItem:
        return ScheduleItem(
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unitPrice,
            amount=self.amount,
        )

    @classmethod
    def from_item(cls, item: ScheduleItem) -> "ScheduleItemPayload":
        return cls(
            description=item.description,
            quantity=item.quantity,
            unitPrice=item.unit_price,
            amount=item.amount,
        )


class RecurringScheduleCreate(BaseModel):
    businessId: UUID
    customerId: UUID
    serviceId: UUID | None = None
    staffId: UUID | None = None
    name: str
    frequency: str
    interval: int = 1
    dayOfWeek: int | None = None
    dayOfMonth: int | None = None
    startDate: date
    endDate: date | None = None
    jobTitle: str
    jobDescription: str | None = None
    estimatedDuration: int | None = None
    autoCreateInvoice: bool = False
    invoiceAmount: Decimal | None = None
    invoiceTax: Decimal | None = None
    invoiceNotes: str | None = None
    items: list[ScheduleItemPayload] = Field(default_factory=list)

    def to_draft(self) -> ScheduleDraft:
        """Raises InvalidRecurrenceRuleError for an unknown frequency."""
        return ScheduleDraft(
            business_id=self.businessId,
            customer_id=self.customerId,
            name=self.name,
            rule=RecurrenceRule(
                frequency=parse_frequency(self.frequency),
                start_date=self.startDate,
                interval=self.interval,
                day_of_week=self.dayOfWeek,
                day_of_month=self.dayOfMonth,
                end_date=self.endDate,
            ),
            job_title=self.jobTitle,
            job_description=self.jobDescription,
            estimated_duration=self.estimatedDuration,
            service_id=self.serviceId,
            staff_id=self.staffId,
            auto_create_invoice=self.autoCreateInvoice,
            invoice_amount=self.invoiceAmount,
            invoice_tax=self.invoiceTax,
            invoice_notes=self.invoiceNotes,
            items=tuple(item.to_item() for item in self.items),
        )


# camelCase body field -> TemplateUpdate field
_UPDATE_FIELDS = {
    "name": "name",
    "jobTitle": "job_title",
    "jobDescription": "job_description",
    "estimatedDuration": "estimated_duration",
    "serviceId": "service_id",
    "staffId": "staff_id",
    "autoCreateInvoice": "auto_create_invoice",
    "invoiceAmount": "invoice_amount",
    "invoiceTax": "invoice_tax",
    "invoiceNotes": "invoice_notes",
}


class RecurringScheduleUpdate(BaseModel):
    """Template changes; omitted fields stay as they are, an explicit null clears."""

    name: str | None = None
    jobTitle: str | None = None
    jobDescription: str | None = None
    estimatedDuration: int | None = None
    serviceId: UUID | None = None
    staffId: UUID | None = None
    autoCreateInvoice: bool | None = None
    invoiceAmount: Decimal | None = None
    invoiceTax: Decimal | None = None
    invoiceNotes: str | None = None
    items: list[ScheduleItemPayload] | None = None

    def to_update(self) -> TemplateUpdate:
        sent = self.model_fields_set
        changes = {
            field: getattr(self, attr)
            for attr, field in _UPDATE_FIELDS.items()
            if attr in sent
        }
        if "items" in sent:
            changes["items"] = (
                tuple(item.to_item() for item in self.items) if self.items is not None else None
            )
        return TemplateUpdate(**changes)


class RunNowRequest(BaseModel):
    occurrenceDate: date | None = None


class RecurringScheduleResponse(BaseModel):
    id: UUID
    businessId: UUID
    customerId: UUID
    serviceId: UUID | None
    staffId: UUID | None
    name: str
    frequency: str
    interval: int
    dayOfWeek: int | None
    dayOfMonth: int | None
    startDate: date
    endDate: date | None
    nextRunDate: date | None
    lastRunDate: date | None
    jobTitle: str
    jobDescription: str | None
    estimatedDuration: int | None
    autoCreateInvoice: bool
    invoiceAmount: Decimal | None
    invoiceTax: Decimal | None
    invoiceNotes: str | None
    items: list[ScheduleItemPayload]
    status: str
    totalJobsCreated: int
    createdAt: datetime | None = None
    updatedAt: datetime | None = None

    @classmethod
    def from_schedule(cls, schedule: RecurringSchedule) -> "RecurringScheduleResponse":
        rule = schedule.rule
        return cls(
            id=schedule.id,
            businessId=schedule.business_id,
            customerId=schedule.customer_id,
            serviceId=schedule.service_id,
            staffId=schedule.staff_id,
            name=schedule.name,
            frequency=rule.frequency.value,
            interval=rule.interval,
            dayOfWeek=rule.day_of_week,
            dayOfMonth=rule.day_of_month,
            startDate=rule.start_date,
            endDate=rule.end_date,
            nextRunDate=schedule.next_run_date,
            lastRunDate=schedule.last_run_date,
            jobTitle=schedule.job_title,
            jobDescription=schedule.job_description,
            estimatedDuration=schedule.estimated_duration,
            autoCreateInvoice=schedule.auto_create_invoice,
            invoiceAmount=schedule.invoice_amount,
            invoiceTax=schedule.invoice_tax,
            invoiceNotes=schedule.invoice_notes,
            items=[ScheduleItemPayload.from_item(item) for item in schedule.items],
            status=schedule.status.value,
            totalJobsCreated=schedule.total_jobs_created,
            createdAt=schedule.created_at,
            updatedAt=schedule.updated_at,
        )


class JobHistoryResponse(BaseModel):
    id: UUID
    scheduleId: UUID
    jobId: UUID
    invoiceId: UUID | None
    scheduledFor: date
    createdAt: datetime | None = None

    @classmethod
    def from_entry(cls, entry: JobHistoryEntry) -> "JobHistoryResponse":
        return cls(
            id=entry.id,
            scheduleId=entry.schedule_id,
            jobId=entry.job_id,
            invoiceId=entry.invoice_id,
            scheduledFor=entry.scheduled_for,
            createdAt=entry.created_at,
        )


class ExecutionResultResponse(BaseModel):
    scheduleId: UUID
    occurrenceDate: date
    status: str
    jobId: UUID | None
    invoiceId: UUID | None
    nextRunDate: date | None
    scheduleStatus: str | None
    reason: str | None = None

    @classmethod
    def from_result(cls, result: ExecutionResult) -> "ExecutionResultResponse":
        return cls(
            scheduleId=result.schedule_id,
            occurrenceDate=result.occurrence_date,
            status=result.status.value,
            jobId=result.job_id,
            invoiceId=result.invoice_id,
            nextRunDate=result.next_run_date,
            scheduleStatus=result.schedule_status.value if result.schedule_status else None,
            reason=result.error_code,
        )


class PreviewResponse(BaseModel):
    scheduleId: UUID
    dates: list[date]


class ErrorResponse(BaseModel):
    error: str
    message: str

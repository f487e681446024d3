from datetime import date, datetime

from pydantic import BaseModel, Field

from ..people_module.schemas import StudentBrief
from ..rbac_module.schemas import EntityId, ORMModel
from .models import PaymentMethod, PaymentStatus

# --- concepts ---


class PaymentConceptCreateRequest(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    amount: float = Field(ge=0)
    is_recurrent: bool = False
    due_day: int | None = Field(default=None, ge=1, le=31)


class PaymentConceptUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    amount: float | None = Field(default=None, ge=0)
    is_recurrent: bool | None = None
    due_day: int | None = Field(default=None, ge=1, le=31)
    is_active: bool | None = None


class PaymentConceptOut(ORMModel):
    id: str
    school_id: str
    name: str
    description: str | None = None
    amount: float
    is_recurrent: bool
    due_day: int | None = None
    is_active: bool
    created_at: datetime


# --- payments ---


class PaymentCreateRequest(BaseModel):
    student_id: EntityId
    concept_id: EntityId
    school_id: EntityId | None = None
    amount: float | None = Field(default=None, ge=0)
    due_date: date
    notes: str | None = Field(default=None, max_length=1000)


class PaymentUpdateRequest(BaseModel):
    amount: float | None = Field(default=None, ge=0)
    status: PaymentStatus | None = None
    method: PaymentMethod | None = None
    due_date: date | None = None
    notes: str | None = Field(default=None, max_length=1000)


class MarkPaidRequest(BaseModel):
    method: PaymentMethod
    receipt_number: str | None = Field(default=None, max_length=50)
    notes: str | None = Field(default=None, max_length=1000)


class ConceptBrief(ORMModel):
    id: str
    name: str


class PaymentOut(ORMModel):
    id: str
    school_id: str
    student_id: str
    concept_id: str
    amount: float
    due_date: date
    status: PaymentStatus
    method: PaymentMethod | None = None
    paid_at: datetime | None = None
    receipt_number: str | None = None
    notes: str | None = None
    created_at: datetime
    concept: ConceptBrief
    student: StudentBrief


class StatusTotals(BaseModel):
    count: int
    amount: float


class PaymentStatsOut(BaseModel):
    total: int
    by_status: dict[PaymentStatus, StatusTotals]
    collected: float
    outstanding: float

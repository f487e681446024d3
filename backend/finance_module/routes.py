from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..rbac_module.database import get_db_session
from ..rbac_module.middleware import PageParams, ensure_own_school, page_params, require_roles
from ..rbac_module.models import User, UserRole
from ..rbac_module.schemas import MessageResponse, Page
from . import services
from .models import PaymentStatus
from .schemas import (
    MarkPaidRequest,
    PaymentConceptCreateRequest,
    PaymentConceptOut,
    PaymentConceptUpdateRequest,
    PaymentCreateRequest,
    PaymentOut,
    PaymentStatsOut,
    PaymentUpdateRequest,
)

payments_router = APIRouter(prefix="/payments", tags=["Payments"])

admin_only = require_roles(UserRole.ADMIN)
admin_or_parent = require_roles(UserRole.ADMIN, UserRole.PARENT)


# --- concepts ---


@payments_router.post("/concepts", response_model=PaymentConceptOut, status_code=status.HTTP_201_CREATED)
def concept_create(
    payload: PaymentConceptCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.create_concept(db, school_id=current_user.school_id, **payload.model_dump())


@payments_router.get("/concepts", response_model=list[PaymentConceptOut])
def concept_list(
    is_active: bool | None = None,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.list_concepts(db, school_id=current_user.school_id, is_active=is_active)


@payments_router.get("/concepts/{concept_id}", response_model=PaymentConceptOut)
def concept_detail(
    concept_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.get_concept(db, concept_id=concept_id, school_id=current_user.school_id)


@payments_router.patch("/concepts/{concept_id}", response_model=PaymentConceptOut)
def concept_update(
    concept_id: str,
    payload: PaymentConceptUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    return services.update_concept(db, concept_id=concept_id, school_id=current_user.school_id, changes=changes)


@payments_router.delete("/concepts/{concept_id}", response_model=MessageResponse)
def concept_delete(
    concept_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    services.deactivate_concept(db, concept_id=concept_id, school_id=current_user.school_id)
    return MessageResponse(message="Payment concept deactivated")


# --- payments ---


@payments_router.post("", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
def payment_create(
    payload: PaymentCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    school_id = ensure_own_school(current_user, payload.school_id)
    return services.create_payment(
        db,
        actor=current_user,
        school_id=school_id,
        **payload.model_dump(exclude={"school_id"}),
    )


@payments_router.get("", response_model=Page[PaymentOut])
def payment_list(
    status: PaymentStatus | None = None,
    student_id: str | None = None,
    paging: PageParams = Depends(page_params(default_limit=20)),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_or_parent),
):
    items, meta = services.list_payments(
        db,
        user=current_user,
        page=paging.page,
        limit=paging.limit,
        status=status,
        student_id=student_id,
    )
    return {"data": items, "meta": meta}


@payments_router.get("/stats", response_model=PaymentStatsOut)
def payment_stats(
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    return services.payment_stats(db, school_id=current_user.school_id)


@payments_router.get("/student/{student_id}", response_model=list[PaymentOut])
def payments_for_student(
    student_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_or_parent),
):
    return services.student_payments(db, user=current_user, student_id=student_id)


@payments_router.get("/parent/{parent_id}", response_model=list[PaymentOut])
def payments_for_parent(
    parent_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_or_parent),
):
    return services.parent_payments(db, user=current_user, parent_id=parent_id)


@payments_router.get("/{payment_id}", response_model=PaymentOut)
def payment_detail(
    payment_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_or_parent),
):
    return services.get_payment(db, payment_id=payment_id, user=current_user)


@payments_router.patch("/{payment_id}", response_model=PaymentOut)
def payment_update(
    payment_id: str,
    payload: PaymentUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    return services.update_payment(db, actor=current_user, payment_id=payment_id, changes=changes)


@payments_router.delete("/{payment_id}", response_model=MessageResponse)
def payment_delete(
    payment_id: str,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_only),
):
    services.delete_payment(db, actor=current_user, payment_id=payment_id)
    return MessageResponse(message="Payment deleted")


@payments_router.post("/{payment_id}/pay", response_model=PaymentOut)
def payment_pay(
    payment_id: str,
    payload: MarkPaidRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(admin_or_parent),
):
    return services.mark_as_paid(db, actor=current_user, payment_id=payment_id, **payload.model_dump())


router = APIRouter(prefix="/api/v1")
router.include_router(payments_router)

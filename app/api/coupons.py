from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_admin, require_user
from app.models.user import User
from app.schemas.billing import (
    CouponCreate,
    CouponRead,
    CouponSummary,
    CouponUpdate,
    CouponUsageRead,
    CouponValidateRequest,
    CouponValidateResponse,
)
from app.schemas.common import ListResponse
from app.services.coupons import coupons
from app.services.response import list_response

router = APIRouter(tags=["coupons"])
admin_router = APIRouter(
    prefix="/admin/coupons",
    tags=["admin-coupons"],
    dependencies=[Depends(require_admin)],
)


@router.post("/coupons/validate", response_model=CouponValidateResponse)
def validate_coupon(
    payload: CouponValidateRequest,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    result = coupons.validate(
        db, payload.code, user.id, payload.amount, plugin_id=payload.plugin_id
    )
    if not result.valid:
        return CouponValidateResponse(valid=False, code=result.code, reason=result.reason)
    return CouponValidateResponse(
        valid=True,
        discount_amount=result.discount_amount,
        final_amount=result.final_amount,
        coupon=CouponSummary.model_validate(result.coupon),
    )


@admin_router.post("", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
def create_coupon(payload: CouponCreate, db: Session = Depends(get_db)):
    return coupons.create(db, payload)


@admin_router.get("", response_model=ListResponse[CouponRead])
def list_coupons(
    is_active: bool | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return coupons.list_response(db, is_active, order_by, order_dir, limit, offset)


@admin_router.get("/{coupon_id}", response_model=CouponRead)
def get_coupon(coupon_id: str, db: Session = Depends(get_db)):
    return coupons.get(db, coupon_id)


@admin_router.patch("/{coupon_id}", response_model=CouponRead)
def update_coupon(coupon_id: str, payload: CouponUpdate, db: Session = Depends(get_db)):
    return coupons.update(db, coupon_id, payload)


@admin_router.delete("/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_coupon(coupon_id: str, db: Session = Depends(get_db)) -> None:
    coupons.delete(db, coupon_id)


@admin_router.get("/{coupon_id}/usages", response_model=ListResponse[CouponUsageRead])
def list_coupon_usages(
    coupon_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    items, total = coupons.list_usages(db, coupon_id, limit, offset)
    return list_response(items, limit, offset, total=total)

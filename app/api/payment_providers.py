from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_admin
from app.schemas.billing import (
    PaymentProviderCreate,
    PaymentProviderRead,
    PaymentProviderUpdate,
)
from app.schemas.common import ListResponse
from app.services.payment_providers import payment_providers

router = APIRouter(
    prefix="/admin/payment-providers",
    tags=["admin-payment-providers"],
    dependencies=[Depends(require_admin)],
)


@router.get("", response_model=ListResponse[PaymentProviderRead])
def list_payment_providers(
    is_active: bool | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return payment_providers.list_response(db, is_active, limit, offset)


@router.get("/active", response_model=list[PaymentProviderRead])
def list_active_payment_providers(db: Session = Depends(get_db)):
    return payment_providers.list_active(db)


@router.get("/default", response_model=PaymentProviderRead)
def get_default_payment_provider(db: Session = Depends(get_db)):
    provider = payment_providers.get_default(db)
    if provider is None:
        raise HTTPException(status_code=404, detail="No default payment provider")
    return provider


@router.get("/{provider_id}", response_model=PaymentProviderRead)
def get_payment_provider(provider_id: str, db: Session = Depends(get_db)):
    return payment_providers.get(db, provider_id)


@router.post("", response_model=PaymentProviderRead, status_code=status.HTTP_201_CREATED)
def create_payment_provider(
    payload: PaymentProviderCreate, db: Session = Depends(get_db)
):
    return payment_providers.create(db, payload)


@router.patch("/{provider_id}", response_model=PaymentProviderRead)
def update_payment_provider(
    provider_id: str, payload: PaymentProviderUpdate, db: Session = Depends(get_db)
):
    return payment_providers.update(db, provider_id, payload)


@router.post("/{provider_id}/set-default", response_model=PaymentProviderRead)
def set_default_payment_provider(provider_id: str, db: Session = Depends(get_db)):
    return payment_providers.set_default(db, provider_id)


@router.delete("/{provider_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment_provider(provider_id: str, db: Session = Depends(get_db)) -> None:
    payment_providers.delete(db, provider_id)

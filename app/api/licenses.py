from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_user
from app.models.user import User
from app.schemas.billing import (
    LicenseActivateRequest,
    LicenseRead,
    LicenseValidateRequest,
    LicenseValidateResponse,
)
from app.schemas.common import ListResponse
from app.services.licenses import licenses

router = APIRouter(prefix="/licenses", tags=["licenses"])


@router.get("", response_model=ListResponse[LicenseRead])
def list_my_licenses(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return licenses.list_response(db, user.id, limit, offset)


@router.post("/validate", response_model=LicenseValidateResponse)
def validate_license(payload: LicenseValidateRequest, db: Session = Depends(get_db)):
    """Public endpoint used by installed plugins."""
    result = licenses.validate(db, payload.license_key, payload.domain)
    return LicenseValidateResponse(
        valid=result.valid,
        reason=result.reason,
        license=LicenseRead.model_validate(result.license) if result.license else None,
    )


@router.post("/activate", response_model=LicenseRead)
def activate_license(payload: LicenseActivateRequest, db: Session = Depends(get_db)):
    return licenses.activate(db, payload.license_key, payload.domain)

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_user
from app.models.user import User
from app.schemas.billing import SubscriptionRead
from app.schemas.common import ListResponse
from app.services.subscriptions import subscriptions

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("", response_model=ListResponse[SubscriptionRead])
def list_my_subscriptions(
    status: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return subscriptions.list_response(db, user.id, status, limit, offset)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionRead)
def cancel_subscription(
    subscription_id: str,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return subscriptions.cancel(db, subscription_id, user.id)

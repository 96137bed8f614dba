from __future__ import annotations

import logging

from fastapi import HTTPException
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.models.billing import PaymentProvider, PaymentProviderType
from app.schemas.billing import PaymentProviderCreate, PaymentProviderUpdate
from app.services.common import apply_pagination, coerce_uuid
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


def _clear_defaults(db: Session, exclude_id=None) -> None:
    stmt = (
        update(PaymentProvider)
        .where(PaymentProvider.is_default.is_(True))
        .values(is_default=False)
    )
    if exclude_id is not None:
        stmt = stmt.where(PaymentProvider.id != exclude_id)
    db.execute(stmt.execution_options(synchronize_session="evaluate"))
    db.flush()


class PaymentProviders(ListResponseMixin):
    @staticmethod
    def create(db: Session, payload: PaymentProviderCreate) -> PaymentProvider:
        data = payload.model_dump()
        data["type"] = PaymentProviderType(data["type"])
        if data["is_default"]:
            _clear_defaults(db)
        item = PaymentProvider(**data)
        db.add(item)
        db.commit()
        db.refresh(item)
        logger.info("Created PaymentProvider: %s", item.id, extra={"provider": item.type.value})
        return item

    @staticmethod
    def get(db: Session, provider_id: str) -> PaymentProvider:
        try:
            provider_uuid = coerce_uuid(provider_id)
        except ValueError:
            provider_uuid = None
        item = db.get(PaymentProvider, provider_uuid) if provider_uuid else None
        if not item:
            raise HTTPException(status_code=404, detail="Payment provider not found")
        return item

    @staticmethod
    def list(
        db: Session,
        is_active: bool | None,
        limit: int,
        offset: int,
    ) -> tuple[list[PaymentProvider], int]:
        conditions = []
        if is_active is not None:
            conditions.append(PaymentProvider.is_active == is_active)
        total = db.scalar(
            select(func.count()).select_from(PaymentProvider).where(*conditions)
        ) or 0
        stmt = (
            select(PaymentProvider)
            .where(*conditions)
            .order_by(PaymentProvider.is_default.desc(), PaymentProvider.name.asc())
        )
        items = list(db.scalars(apply_pagination(stmt, limit, offset)).all())
        return items, total

    @staticmethod
    def list_active(db: Session) -> list[PaymentProvider]:
        stmt = (
            select(PaymentProvider)
            .where(PaymentProvider.is_active.is_(True))
            .order_by(PaymentProvider.is_default.desc(), PaymentProvider.name.asc())
        )
        return list(db.scalars(stmt).all())

    @staticmethod
    def get_default(db: Session) -> PaymentProvider | None:
        """Return the provider used for new checkouts, if one is active."""
        return db.scalar(
            select(PaymentProvider).where(
                PaymentProvider.is_default.is_(True),
                PaymentProvider.is_active.is_(True),
            )
        )

    @staticmethod
    def get_by_type(db: Session, provider_type: PaymentProviderType) -> PaymentProvider | None:
        return db.scalar(
            select(PaymentProvider)
            .where(PaymentProvider.type == provider_type)
            .order_by(PaymentProvider.is_active.desc(), PaymentProvider.created_at.asc())
            .limit(1)
        )

    @staticmethod
    def update(
        db: Session, provider_id: str, payload: PaymentProviderUpdate
    ) -> PaymentProvider:
        item = PaymentProviders.get(db, provider_id)
        data = payload.model_dump(exclude_unset=True)
        if data.get("type") is not None:
            data["type"] = PaymentProviderType(data["type"])
        if data.get("is_default"):
            _clear_defaults(db, exclude_id=item.id)
        for key, value in data.items():
            setattr(item, key, value)
        db.commit()
        db.refresh(item)
        logger.info("Updated PaymentProvider: %s", item.id)
        return item

    @staticmethod
    def set_default(db: Session, provider_id: str) -> PaymentProvider:
        """Make one provider the default inside a single transaction.

        All existing defaults are cleared and flushed before the new one is set,
        so the partial unique index on ``is_default`` never sees two rows.
        """
        item = PaymentProviders.get(db, provider_id)
        try:
            _clear_defaults(db)
            item.is_default = True
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(item)
        logger.info("Default PaymentProvider set: %s", item.id, extra={"provider": item.type.value})
        return item

    @staticmethod
    def delete(db: Session, provider_id: str) -> None:
        item = PaymentProviders.get(db, provider_id)
        db.delete(item)
        db.commit()
        logger.info("Deleted PaymentProvider: %s", provider_id)


payment_providers = PaymentProviders()

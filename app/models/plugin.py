import uuid
from decimal import Decimal

from sqlalchemy import Boolean, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base, TimestampMixin


class Plugin(TimestampMixin, Base):
    """Catalog entry. Managed by the catalog service; read-only here.

    ``price`` is the one-off (lifetime) price; the recurring plans use
    ``monthly_price`` and ``yearly_price``.
    """

    __tablename__ = "plugins"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    version: Mapped[str] = mapped_column(String(40), default="1.0.0")
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    monthly_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    yearly_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.billing import License, LicenseStatus
from app.services.common import apply_pagination, as_utc, coerce_uuid
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


def generate_license_key() -> str:
    """Four groups of 8 upper-case hex chars from 16 random bytes."""
    return "-".join(secrets.token_hex(4).upper() for _ in range(4))


def normalize_domain(domain: str) -> str:
    value = domain.strip().lower()
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            value = value[len(prefix):]
    return value.split("/", 1)[0]


@dataclass(frozen=True)
class LicenseCheck:
    valid: bool
    reason: str | None = None
    license: License | None = None


def check_license(license: License | None, now: datetime | None = None) -> LicenseCheck:
    if license is None:
        return LicenseCheck(valid=False, reason="License not found")
    now = now or datetime.now(UTC)
    status = LicenseStatus(license.status)
    if status != LicenseStatus.active:
        return LicenseCheck(valid=False, reason=f"License is {status.value}", license=license)
    expires_at = as_utc(license.expires_at)
    if expires_at is not None and expires_at < now:
        return LicenseCheck(valid=False, reason="License has expired", license=license)
    return LicenseCheck(valid=True, license=license)


class Licenses(ListResponseMixin):
    @staticmethod
    def get_by_key(db: Session, license_key: str, for_update: bool = False) -> License | None:
        stmt = select(License).where(License.license_key == license_key.strip().upper())
        if for_update:
            stmt = stmt.with_for_update()
        return db.scalar(stmt)

    @staticmethod
    def list(
        db: Session,
        user_id: str,
        limit: int,
        offset: int,
    ) -> tuple[list[License], int]:
        condition = License.user_id == coerce_uuid(user_id)
        total = db.scalar(select(func.count()).select_from(License).where(condition)) or 0
        stmt = select(License).where(condition).order_by(License.created_at.desc())
        items = list(db.scalars(apply_pagination(stmt, limit, offset)).all())
        return items, total

    @staticmethod
    def validate(db: Session, license_key: str, domain: str | None = None) -> LicenseCheck:
        """Check a key for a plugin installation. Read-only."""
        result = check_license(Licenses.get_by_key(db, license_key))
        if not result.valid or not domain:
            return result
        license = result.license
        domain = normalize_domain(domain)
        domains = list(license.activated_domains or [])
        if domain not in domains and len(domains) >= license.max_domains:
            return LicenseCheck(
                valid=False,
                reason=f"Maximum domains ({license.max_domains}) reached",
                license=license,
            )
        return result

    @staticmethod
    def activate(db: Session, license_key: str, domain: str) -> License:
        """Activate a domain on a license.

        Re-activating a domain that is already listed is a no-op. A new domain is
        rejected once ``max_domains`` domains are active.
        """
        license = Licenses.get_by_key(db, license_key, for_update=True)
        result = check_license(license)
        if license is None:
            raise HTTPException(status_code=404, detail="License not found")
        if not result.valid:
            db.rollback()
            raise HTTPException(status_code=400, detail=result.reason)

        domain = normalize_domain(domain)
        domains = list(license.activated_domains or [])
        if domain in domains:
            db.rollback()
            return license
        if len(domains) >= license.max_domains:
            db.rollback()
            raise HTTPException(
                status_code=409,
                detail=f"Maximum domains ({license.max_domains}) reached",
            )
        license.activated_domains = [*domains, domain]
        if license.activated_at is None:
            license.activated_at = datetime.now(UTC)
        db.commit()
        db.refresh(license)
        logger.info("Activated license %s on %s", license.id, domain)
        return license


licenses = Licenses()

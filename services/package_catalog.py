"""Subscription package catalog: lookup, listing and bootstrap seeding."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from core.logging import get_logger
from core.subscription_constants import DEFAULT_CURRENCY
from models.package import SubscriptionPackage

logger = get_logger(__name__)


@dataclass(frozen=True)
class PackageSeed:
    name: str
    validity_days: int
    price: int
    currency: str = DEFAULT_CURRENCY


DEFAULT_PACKAGES: Sequence[PackageSeed] = (
    PackageSeed(name="Wiki 1", validity_days=7, price=1000),
    PackageSeed(name="Mwezi 1", validity_days=30, price=3000),
    PackageSeed(name="Mwaka 1", validity_days=365, price=30000),
)


def package_key(name: Optional[str]) -> str:
    """Case-insensitive match key for a package name."""
    return " ".join((name or "").split()).lower()


def find_package(session: Session, name: Optional[str], *, active_only: bool = False) -> Optional[SubscriptionPackage]:
    key = package_key(name)
    if not key:
        return None
    query = session.query(SubscriptionPackage).filter(SubscriptionPackage.name_key == key)
    if active_only:
        query = query.filter(SubscriptionPackage.is_active.is_(True))
    return query.first()


def list_packages(session: Session, *, active_only: bool = True) -> List[SubscriptionPackage]:
    query = session.query(SubscriptionPackage)
    if active_only:
        query = query.filter(SubscriptionPackage.is_active.is_(True))
    return query.order_by(SubscriptionPackage.position.asc(), SubscriptionPackage.validity_days.asc()).all()


def ensure_default_packages(session: Session, seeds: Sequence[PackageSeed] = DEFAULT_PACKAGES) -> List[str]:
    """Insert the default plans that are missing. Existing rows are left untouched."""
    created: List[str] = []
    for position, seed in enumerate(seeds):
        if find_package(session, seed.name) is not None:
            continue
        session.add(
            SubscriptionPackage(
                name=seed.name,
                name_key=package_key(seed.name),
                price=seed.price,
                currency=seed.currency,
                validity_days=seed.validity_days,
                is_active=True,
                position=position,
            )
        )
        created.append(seed.name)
    if created:
        session.commit()
        logger.info("Seeded subscription packages: %s", ", ".join(created))
    return created


def serialize_package(package: SubscriptionPackage) -> dict:
    return {
        "name": package.name,
        "price": package.price,
        "currency": package.currency,
        "durationDays": package.validity_days,
    }


__all__ = [
    "DEFAULT_PACKAGES",
    "PackageSeed",
    "ensure_default_packages",
    "find_package",
    "list_packages",
    "package_key",
    "serialize_package",
]

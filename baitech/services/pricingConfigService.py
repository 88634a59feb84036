"""
Pricing Configuration Service
=============================

Owns the single active pricing configuration.

- Reads return an immutable ``ActivePricingConfig`` snapshot, so one price
  calculation always runs against one consistent version.
- Writes never mutate history: every change clones the active ruleset,
  applies the change, deactivates the previous version and inserts the next
  version as active, all in the caller's transaction. The active row is
  locked while this happens and a partial unique index rejects a second
  active row, so concurrent publishers cannot both end up active.
- Service price lookup falls back from ``(category, type)`` to
  ``(category, "general")``; it never substitutes another category.
"""

from __future__ import annotations

import difflib
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from baitech.models.pricing import PricingConfig
from baitech.models.taxonomy import ServiceCategory
from baitech.services.pricingErrors import ConfigNotFoundError, UnknownCategoryError
from baitech.services.pricingRules import GENERAL_SERVICE_TYPE, PricingRules, ServicePrice

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class InvalidPricingConfigError(ValueError):
    """Raised when a config change does not validate."""

    def __init__(self, errors: str) -> None:
        super().__init__(f"Invalid pricing configuration: {errors}")


class DuplicateServicePriceError(Exception):
    def __init__(self, category: str, service_type: str) -> None:
        super().__init__(
            f"Service price for '{service_type}' already exists in category '{category}'"
        )


class ServicePriceNotFoundError(Exception):
    def __init__(self, category: str, service_type: str) -> None:
        super().__init__(
            f"Service price for '{service_type}' not found in category '{category}'"
        )


class ConfigVersionNotFoundError(Exception):
    def __init__(self, version: int) -> None:
        super().__init__(f"Pricing configuration version {version} not found")


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActivePricingConfig:
    id: uuid.UUID
    version: int
    name: str
    rules: PricingRules

    @property
    def currency(self) -> str:
        return self.rules.currency


@dataclass(frozen=True)
class ServiceTypeValidation:
    valid: bool
    service_type: str
    resolved_type: Optional[str]
    uses_fallback: bool
    suggestions: list[str]


def _snapshot(row: PricingConfig) -> ActivePricingConfig:
    return ActivePricingConfig(
        id=row.id,
        version=row.version,
        name=row.name,
        rules=PricingRules.model_validate(row.rules),
    )


def _validated(rules_or_document: Any) -> PricingRules:
    if isinstance(rules_or_document, PricingRules):
        return rules_or_document
    try:
        return PricingRules.model_validate(rules_or_document)
    except ValidationError as exc:
        raise InvalidPricingConfigError(str(exc)) from exc


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def _get_active_row(db: AsyncSession, *, for_update: bool = False) -> Optional[PricingConfig]:
    stmt = select(PricingConfig).where(PricingConfig.is_active.is_(True))
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_active_config(db: AsyncSession) -> ActivePricingConfig:
    """Return the active pricing configuration.

    Raises:
        ConfigNotFoundError: If no configuration is flagged active.
    """
    row = await _get_active_row(db)
    if row is None:
        raise ConfigNotFoundError()
    return _snapshot(row)


def resolve_service_price(
    rules: PricingRules,
    category: ServiceCategory,
    service_type: Optional[str],
) -> tuple[ServicePrice, bool]:
    """Resolve the price entry for a service.

    Returns:
        ``(entry, used_fallback)``.

    Raises:
        UnknownCategoryError: If neither the exact type nor the category's
            ``general`` entry exists.
    """
    requested = (service_type or GENERAL_SERVICE_TYPE).strip() or GENERAL_SERVICE_TYPE

    entry = rules.get_service_price(category, requested)
    if entry is not None:
        return entry, False

    fallback = rules.get_service_price(category, GENERAL_SERVICE_TYPE)
    if fallback is None:
        raise UnknownCategoryError(category.value, requested)

    logger.info(
        "Service type '%s' not found in category '%s', using '%s' fallback",
        requested,
        category.value,
        GENERAL_SERVICE_TYPE,
    )
    return fallback, True


async def get_config_version(db: AsyncSession, version: int) -> PricingConfig:
    result = await db.execute(select(PricingConfig).where(PricingConfig.version == version))
    row = result.scalar_one_or_none()
    if row is None:
        raise ConfigVersionNotFoundError(version)
    return row


async def list_config_history(
    db: AsyncSession,
    *,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[PricingConfig], int]:
    """Return one page of config versions, newest first, and the total count."""
    total = (await db.execute(select(func.count(PricingConfig.id)))).scalar_one()
    result = await db.execute(
        select(PricingConfig)
        .order_by(PricingConfig.version.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


# ---------------------------------------------------------------------------
# Catalog helpers
# ---------------------------------------------------------------------------

def get_service_types(rules: PricingRules, category: ServiceCategory) -> list[str]:
    """Active service types of a category, alphabetical, ``general`` last."""
    types = sorted(
        {entry.service_type for entry in rules.services_in(category)},
        key=lambda t: (t.lower() == GENERAL_SERVICE_TYPE, t.lower()),
    )
    return types


def validate_service_type(
    rules: PricingRules,
    category: ServiceCategory,
    service_type: str,
) -> ServiceTypeValidation:
    """Check a service type against the catalog and suggest close names."""
    known = get_service_types(rules, category)

    if rules.get_service_price(category, service_type) is not None:
        return ServiceTypeValidation(
            valid=True,
            service_type=service_type,
            resolved_type=service_type,
            uses_fallback=False,
            suggestions=[],
        )

    lowered = {t.lower(): t for t in known}
    close = difflib.get_close_matches(service_type.lower(), list(lowered), n=MAX_SUGGESTIONS, cutoff=0.4)
    suggestions = [lowered[name] for name in close]
    has_general = rules.get_service_price(category, GENERAL_SERVICE_TYPE) is not None

    return ServiceTypeValidation(
        valid=has_general,
        service_type=service_type,
        resolved_type=GENERAL_SERVICE_TYPE if has_general else None,
        uses_fallback=has_general,
        suggestions=suggestions,
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def bootstrap_config(
    db: AsyncSession,
    rules: PricingRules | dict[str, Any],
    *,
    name: str = "Default Pricing Configuration",
    notes: Optional[str] = None,
    created_by: Optional[uuid.UUID] = None,
) -> PricingConfig:
    """Create version 1 as the active configuration.

    Raises:
        ValueError: If any configuration already exists.
    """
    existing = (await db.execute(select(func.count(PricingConfig.id)))).scalar_one()
    if existing:
        raise ValueError("A pricing configuration already exists; publish a new version instead.")

    validated = _validated(rules)
    row = PricingConfig(
        name=name,
        version=1,
        is_active=True,
        currency=validated.currency,
        rules=validated.to_document(),
        notes=notes,
        created_by=created_by,
    )
    db.add(row)
    await db.flush()

    logger.info("Bootstrapped pricing configuration v1 (%s)", name)
    return row


async def publish_new_version(
    db: AsyncSession,
    changes: dict[str, Any],
    *,
    created_by: Optional[uuid.UUID] = None,
    name: Optional[str] = None,
    notes: Optional[str] = None,
) -> PricingConfig:
    """Clone the active configuration with ``changes`` applied and make the
    clone the only active version.

    Raises:
        ConfigNotFoundError: If there is no active configuration to clone.
        InvalidPricingConfigError: If the changed ruleset does not validate.
    """
    current = await _get_active_row(db, for_update=True)
    if current is None:
        raise ConfigNotFoundError()

    try:
        new_rules = PricingRules.model_validate(current.rules).with_changes(changes)
    except ValidationError as exc:
        raise InvalidPricingConfigError(str(exc)) from exc

    latest = (await db.execute(select(func.max(PricingConfig.version)))).scalar_one()

    # Deactivate first so the single-active index never sees two rows
    current.is_active = False
    await db.flush()

    row = PricingConfig(
        name=name or current.name,
        version=latest + 1,
        is_active=True,
        currency=new_rules.currency,
        rules=new_rules.to_document(),
        notes=notes,
        created_by=created_by,
    )
    db.add(row)
    await db.flush()

    logger.info(
        "Published pricing configuration v%d (replacing v%d)",
        row.version,
        current.version,
    )
    return row


async def add_service_price(
    db: AsyncSession,
    entry: ServicePrice,
    *,
    created_by: Optional[uuid.UUID] = None,
) -> PricingConfig:
    """Publish a new version with one more service price entry.

    An inactive entry with the same category and type also counts as a
    duplicate; re-activate it with ``update_service_price``.
    """
    active = await get_active_config(db)
    if active.rules.find_service_entry(entry.service_category, entry.service_type) is not None:
        raise DuplicateServicePriceError(entry.service_category.value, entry.service_type)

    prices = [p.model_dump(mode="json") for p in active.rules.service_prices]
    prices.append(entry.model_dump(mode="json"))
    return await publish_new_version(
        db,
        {"service_prices": prices},
        created_by=created_by,
        notes=f"Added service price {entry.service_category.value}/{entry.service_type}",
    )


async def update_service_price(
    db: AsyncSession,
    category: ServiceCategory,
    service_type: str,
    changes: dict[str, Any],
    *,
    created_by: Optional[uuid.UUID] = None,
) -> PricingConfig:
    """Publish a new version with one service price entry changed.

    Inactive entries can be updated too (e.g. to re-activate them).
    """
    active = await get_active_config(db)
    prices = [p.model_dump(mode="json") for p in active.rules.service_prices]

    existing = active.rules.find_service_entry(category, service_type)
    if existing is None:
        raise ServicePriceNotFoundError(category.value, service_type)
    prices[active.rules.service_prices.index(existing)].update(changes)

    return await publish_new_version(
        db,
        {"service_prices": prices},
        created_by=created_by,
        notes=f"Updated service price {category.value}/{service_type}",
    )

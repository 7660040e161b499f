"""Data access for credit categories and award criteria packages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import and_, exists, select
from sqlalchemy.orm import Session

from credits.errors import (
    ConfigurationConflictError,
    CreditValidationError,
    InUseConflictError,
    NotFoundError,
)
from models import (
    AttendanceCriterionEnum,
    AwardCriteriaPackage,
    AwardException,
    AwardPackageCategory,
    CreditCategory,
    CreditCategoryJurisdiction,
    CreditCategoryProfile,
    CreditGrant,
    EventSession,
    GrantExecutionLog,
    SessionCreditValue,
)
from time_utils import utc_now

logger = logging.getLogger(__name__)

UNSET = object()


@dataclass(frozen=True)
class CategoryCreateInput:
    """Input payload for creating a credit category."""

    event_id: int
    name: str
    code: str | None = None
    description: str | None = None
    jurisdictions: tuple[str, ...] = ()
    profile_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class CategoryUpdateInput:
    """Input payload for updating a credit category."""

    name: str | object = UNSET
    code: str | None | object = UNSET
    description: str | None | object = UNSET
    jurisdictions: tuple[str, ...] | object = UNSET
    profile_ids: tuple[int, ...] | object = UNSET


@dataclass(frozen=True)
class CategoryView:
    """Read-only view of a credit category with its audience restrictions."""

    id: int
    event_id: int
    name: str
    code: str | None
    description: str | None
    archived: bool
    jurisdictions: frozenset[str]
    profile_ids: frozenset[int]


@dataclass(frozen=True)
class PackageCreateInput:
    """Input payload for creating an award criteria package."""

    event_id: int
    name: str
    attendance_criterion: str = "none"
    payment_in_full_required: bool = False
    survey_required: bool = False
    category_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class PackageUpdateInput:
    """Input payload for updating an award criteria package."""

    name: str | object = UNSET
    attendance_criterion: str | object = UNSET
    payment_in_full_required: bool | object = UNSET
    survey_required: bool | object = UNSET
    category_ids: tuple[int, ...] | object = UNSET


@dataclass(frozen=True)
class PackageView:
    """Read-only view of an award criteria package and its linked categories."""

    id: int
    event_id: int
    name: str
    attendance_criterion: str
    payment_in_full_required: bool
    survey_required: bool
    archived: bool
    category_ids: frozenset[int]


@dataclass(frozen=True)
class CategorySessionView:
    """Session carrying credit for a category."""

    session_id: int
    session_name: str
    category_id: int
    credit_value: object


def _require_name(value: str, label: str) -> str:
    """Return a stripped name or raise when blank."""
    normalized = (value or "").strip()
    if not normalized:
        raise CreditValidationError(f"{label} is required.")
    return normalized


def _normalize_jurisdictions(values: Iterable[str]) -> set[str]:
    normalized = set()
    for value in values:
        code = (value or "").strip().upper()
        if not code:
            raise CreditValidationError("jurisdiction codes must be non-empty.")
        normalized.add(code)
    return normalized


def _validate_attendance_criterion(value: str) -> str:
    if value not in AttendanceCriterionEnum.enums:
        raise CreditValidationError(
            f"Invalid attendance criterion: {value}.",
            {"allowed": list(AttendanceCriterionEnum.enums)},
        )
    return value


def _fetch_category(session: Session, category_id: int) -> CreditCategory:
    """Return a category or raise when missing."""
    category = session.get(CreditCategory, category_id)
    if category is None:
        raise NotFoundError(f"Credit category not found: {category_id}", {"category_id": category_id})
    return category


def _fetch_package(session: Session, package_id: int) -> AwardCriteriaPackage:
    """Return a package or raise when missing."""
    package = session.get(AwardCriteriaPackage, package_id)
    if package is None:
        raise NotFoundError(f"Award package not found: {package_id}", {"package_id": package_id})
    return package


def _replace_jurisdictions(session: Session, category_id: int, codes: set[str]) -> None:
    session.query(CreditCategoryJurisdiction).filter(
        CreditCategoryJurisdiction.category_id == category_id
    ).delete(synchronize_session=False)
    for code in sorted(codes):
        session.add(CreditCategoryJurisdiction(category_id=category_id, jurisdiction_code=code))


def _replace_profiles(session: Session, category_id: int, profile_ids: set[int]) -> None:
    session.query(CreditCategoryProfile).filter(
        CreditCategoryProfile.category_id == category_id
    ).delete(synchronize_session=False)
    for profile_id in sorted(profile_ids):
        session.add(CreditCategoryProfile(category_id=category_id, profile_id=profile_id))


def category_view(session: Session, category: CreditCategory) -> CategoryView:
    """Build a category view including jurisdiction and profile sets."""
    jurisdictions = session.scalars(
        select(CreditCategoryJurisdiction.jurisdiction_code).where(
            CreditCategoryJurisdiction.category_id == category.id
        )
    ).all()
    profiles = session.scalars(
        select(CreditCategoryProfile.profile_id).where(
            CreditCategoryProfile.category_id == category.id
        )
    ).all()
    return CategoryView(
        id=category.id,
        event_id=category.event_id,
        name=category.name,
        code=category.code,
        description=category.description,
        archived=bool(category.archived),
        jurisdictions=frozenset(jurisdictions),
        profile_ids=frozenset(profiles),
    )


def create_category(session: Session, payload: CategoryCreateInput) -> CategoryView:
    """Create a credit category with its audience restrictions."""
    timestamp = utc_now()
    category = CreditCategory(
        event_id=payload.event_id,
        name=_require_name(payload.name, "name"),
        code=(payload.code or "").strip() or None,
        description=payload.description,
        archived=False,
        created_at=timestamp,
        updated_at=timestamp,
    )
    session.add(category)
    session.flush()
    _replace_jurisdictions(session, category.id, _normalize_jurisdictions(payload.jurisdictions))
    _replace_profiles(session, category.id, set(payload.profile_ids))
    session.flush()
    logger.info("Created credit category %s for event %s.", category.id, category.event_id)
    return category_view(session, category)


def update_category(
    session: Session,
    category_id: int,
    updates: CategoryUpdateInput,
) -> CategoryView:
    """Update a credit category's fields and audience restrictions."""
    category = _fetch_category(session, category_id)
    if updates.name is not UNSET:
        category.name = _require_name(updates.name, "name")
    if updates.code is not UNSET:
        category.code = (updates.code or "").strip() or None
    if updates.description is not UNSET:
        category.description = updates.description
    if updates.jurisdictions is not UNSET:
        _replace_jurisdictions(session, category.id, _normalize_jurisdictions(updates.jurisdictions))
    if updates.profile_ids is not UNSET:
        _replace_profiles(session, category.id, set(updates.profile_ids))
    category.updated_at = utc_now()
    session.flush()
    return category_view(session, category)


def set_category_archived(session: Session, category_id: int, archived: bool) -> CategoryView:
    """Archive or restore a category.

    Archiving is blocked while any registration item carries credit for it.
    """
    category = _fetch_category(session, category_id)
    if archived and not category.archived:
        attached = session.scalar(
            select(exists().where(SessionCreditValue.category_id == category_id))
        )
        if attached:
            raise InUseConflictError(
                "Credit category is attached to a registration item.",
                {"category_id": category_id},
            )
    category.archived = archived
    category.updated_at = utc_now()
    session.flush()
    logger.info("Set credit category %s archived=%s.", category_id, archived)
    return category_view(session, category)


def get_category(session: Session, category_id: int) -> CategoryView:
    """Return a category view or raise when missing."""
    return category_view(session, _fetch_category(session, category_id))


def list_categories(
    session: Session,
    event_id: int,
    *,
    include_archived: bool = False,
) -> list[CategoryView]:
    """Return the categories of an event ordered by name."""
    query = select(CreditCategory).where(CreditCategory.event_id == event_id)
    if not include_archived:
        query = query.where(CreditCategory.archived.is_(False))
    categories = session.scalars(query.order_by(CreditCategory.name, CreditCategory.id)).all()
    return [category_view(session, category) for category in categories]


def list_unused_categories(session: Session, event_id: int) -> list[CategoryView]:
    """Return active categories attached to a session but linked to no package."""
    query = (
        select(CreditCategory)
        .where(
            CreditCategory.event_id == event_id,
            CreditCategory.archived.is_(False),
            exists().where(SessionCreditValue.category_id == CreditCategory.id),
            ~exists().where(AwardPackageCategory.category_id == CreditCategory.id),
        )
        .order_by(CreditCategory.name, CreditCategory.id)
    )
    return [category_view(session, category) for category in session.scalars(query).all()]


def list_category_sessions(session: Session, category_id: int) -> list[CategorySessionView]:
    """Return the sessions carrying credit for a category ordered by name."""
    _fetch_category(session, category_id)
    rows = session.execute(
        select(EventSession.id, EventSession.name, SessionCreditValue.credit_value)
        .join(SessionCreditValue, SessionCreditValue.session_id == EventSession.id)
        .where(SessionCreditValue.category_id == category_id)
        .order_by(EventSession.name, EventSession.id)
    ).all()
    return [
        CategorySessionView(
            session_id=row.id,
            session_name=row.name,
            category_id=category_id,
            credit_value=row.credit_value,
        )
        for row in rows
    ]


def list_category_grant_ids(session: Session, category_id: int) -> list[int]:
    """Return ids of grants whose package is linked to the category."""
    _fetch_category(session, category_id)
    return list(
        session.scalars(
            select(CreditGrant.id)
            .join(AwardPackageCategory, AwardPackageCategory.package_id == CreditGrant.package_id)
            .where(AwardPackageCategory.category_id == category_id)
            .order_by(CreditGrant.id)
        ).all()
    )


def package_view(session: Session, package: AwardCriteriaPackage) -> PackageView:
    """Build a package view including linked category ids."""
    category_ids = session.scalars(
        select(AwardPackageCategory.category_id).where(
            AwardPackageCategory.package_id == package.id
        )
    ).all()
    return PackageView(
        id=package.id,
        event_id=package.event_id,
        name=package.name,
        attendance_criterion=package.attendance_criterion,
        payment_in_full_required=bool(package.payment_in_full_required),
        survey_required=bool(package.survey_required),
        archived=bool(package.archived),
        category_ids=frozenset(category_ids),
    )


def _ensure_linkable(
    session: Session,
    package: AwardCriteriaPackage,
    category_ids: Iterable[int],
) -> None:
    """Reject links to missing, foreign, or already-bound categories."""
    for category_id in category_ids:
        category = _fetch_category(session, category_id)
        if category.event_id != package.event_id:
            raise CreditValidationError(
                "Credit category belongs to a different event.",
                {"category_id": category_id, "package_id": package.id},
            )
        competing = session.scalars(
            select(AwardPackageCategory.package_id)
            .join(
                AwardCriteriaPackage,
                AwardCriteriaPackage.id == AwardPackageCategory.package_id,
            )
            .where(
                and_(
                    AwardPackageCategory.category_id == category_id,
                    AwardPackageCategory.package_id != package.id,
                    AwardCriteriaPackage.archived.is_(False),
                )
            )
        ).first()
        if competing is not None:
            raise ConfigurationConflictError(
                "Credit category is already bound to another active package.",
                {
                    "category_id": category_id,
                    "package_id": package.id,
                    "conflicting_package_id": competing,
                },
            )


def _replace_package_categories(
    session: Session,
    package: AwardCriteriaPackage,
    category_ids: set[int],
) -> None:
    if not package.archived:
        _ensure_linkable(session, package, sorted(category_ids))
    session.query(AwardPackageCategory).filter(
        AwardPackageCategory.package_id == package.id
    ).delete(synchronize_session=False)
    for category_id in sorted(category_ids):
        session.add(AwardPackageCategory(package_id=package.id, category_id=category_id))


def create_package(session: Session, payload: PackageCreateInput) -> PackageView:
    """Create an award criteria package linked to its categories."""
    timestamp = utc_now()
    package = AwardCriteriaPackage(
        event_id=payload.event_id,
        name=_require_name(payload.name, "name"),
        attendance_criterion=_validate_attendance_criterion(payload.attendance_criterion),
        payment_in_full_required=bool(payload.payment_in_full_required),
        survey_required=bool(payload.survey_required),
        archived=False,
        created_at=timestamp,
        updated_at=timestamp,
    )
    session.add(package)
    session.flush()
    _replace_package_categories(session, package, set(payload.category_ids))
    session.flush()
    logger.info(
        "Created award package %s for event %s with %s categories.",
        package.id,
        package.event_id,
        len(payload.category_ids),
    )
    return package_view(session, package)


def update_package(
    session: Session,
    package_id: int,
    updates: PackageUpdateInput,
) -> PackageView:
    """Update an award criteria package's criteria and category links."""
    package = _fetch_package(session, package_id)
    if updates.name is not UNSET:
        package.name = _require_name(updates.name, "name")
    if updates.attendance_criterion is not UNSET:
        package.attendance_criterion = _validate_attendance_criterion(updates.attendance_criterion)
    if updates.payment_in_full_required is not UNSET:
        package.payment_in_full_required = bool(updates.payment_in_full_required)
    if updates.survey_required is not UNSET:
        package.survey_required = bool(updates.survey_required)
    if updates.category_ids is not UNSET:
        _replace_package_categories(session, package, set(updates.category_ids))
    package.updated_at = utc_now()
    session.flush()
    return package_view(session, package)


def set_package_archived(session: Session, package_id: int, archived: bool) -> PackageView:
    """Archive or restore a package; restoring re-checks category bindings."""
    package = _fetch_package(session, package_id)
    if not archived and package.archived:
        current = session.scalars(
            select(AwardPackageCategory.category_id).where(
                AwardPackageCategory.package_id == package.id
            )
        ).all()
        _ensure_linkable(session, package, sorted(current))
    package.archived = archived
    package.updated_at = utc_now()
    session.flush()
    logger.info("Set award package %s archived=%s.", package_id, archived)
    return package_view(session, package)


def package_has_history(session: Session, package_id: int) -> bool:
    """Return whether any grant of the package has ever executed."""
    return bool(
        session.scalar(
            select(
                exists()
                .where(GrantExecutionLog.grant_id == CreditGrant.id)
                .where(CreditGrant.package_id == package_id)
            )
        )
    )


def delete_package(session: Session, package_id: int) -> None:
    """Delete a package that has never executed, with its links and grants."""
    package = _fetch_package(session, package_id)
    if package_has_history(session, package_id):
        raise InUseConflictError(
            "Award package has execution history; reset it before deleting.",
            {"package_id": package_id},
        )
    session.query(AwardPackageCategory).filter(
        AwardPackageCategory.package_id == package_id
    ).delete(synchronize_session=False)
    session.query(AwardException).filter(AwardException.package_id == package_id).delete(
        synchronize_session=False
    )
    session.query(CreditGrant).filter(CreditGrant.package_id == package_id).delete(
        synchronize_session=False
    )
    session.delete(package)
    session.flush()
    logger.info("Deleted award package %s.", package_id)


def get_package(session: Session, package_id: int) -> PackageView:
    """Return a package view or raise when missing."""
    return package_view(session, _fetch_package(session, package_id))


def list_packages(
    session: Session,
    event_id: int,
    *,
    include_archived: bool = True,
) -> list[PackageView]:
    """Return the packages of an event ordered by name."""
    query = select(AwardCriteriaPackage).where(AwardCriteriaPackage.event_id == event_id)
    if not include_archived:
        query = query.where(AwardCriteriaPackage.archived.is_(False))
    packages = session.scalars(
        query.order_by(AwardCriteriaPackage.name, AwardCriteriaPackage.id)
    ).all()
    return [package_view(session, package) for package in packages]

import logging
from typing import Iterable

from sqlalchemy.orm import Session

from . import centers_store
from .database import session_scope, use_transaction
from .errors import (
    AppError,
    DuplicateUserReference,
    Forbidden,
    GeocodeNoResult,
    GeocodeTooManyResults,
    NotFound,
    ValidationFailed,
)
from .geocoding import Geocoder
from .models import Center, Operator

logger = logging.getLogger("centers.service")


def save_center(
    db: Session,
    operator: Operator,
    center: Center,
    *,
    can_issue_dcc: bool,
    geocoder: Geocoder | None = None,
) -> Center:
    """Persist ``center`` for ``operator``, adopting an existing row by user reference.

    When a geocoder is given the stored center is geocoded right away.
    """
    if center.user_reference:
        existing = centers_store.find_by_operator_and_user_reference(db, operator.uuid, center.user_reference)
        if existing is not None:
            if center.uuid and center.uuid != existing.uuid:
                raise DuplicateUserReference()
            center.uuid = existing.uuid

    center.operator_uuid = operator.uuid
    if not can_issue_dcc:
        center.dcc = False

    saved = centers_store.save(db, center)
    if geocoder is not None:
        saved = geocode_center(db, geocoder, saved)
    return saved


def geocode_center(db: Session, geocoder: Geocoder, center: Center) -> Center:
    try:
        result = geocoder.lookup(center.address)
    except (GeocodeNoResult, GeocodeTooManyResults) as exc:
        logger.info("geocoding %s failed: %s", center.uuid, exc.message)
        center.message = f"Geocoding: {exc.message}"
        return centers_store.save(db, center)
    except AppError as exc:
        logger.error("geocoder unavailable for center %s: %s", center.uuid, exc.message)
        return center

    center.zip_code = result.zip_code
    center.region = result.region
    if not center.coordinates_fixed:
        center.longitude = result.coordinates.longitude
        center.latitude = result.coordinates.latitude
    return centers_store.save(db, center)


def perform_geocoding(geocoder: Geocoder, uuids: Iterable[str]) -> int:
    """Geocode centers one after another, each in its own transaction.

    Centers deleted in the meantime are skipped. Returns the number processed.
    """
    processed = 0
    for uuid in uuids:
        with session_scope() as db:
            center = centers_store.find_by_uuid(db, uuid)
            if center is None:
                logger.warning("center %s vanished before geocoding", uuid)
                continue
            geocode_center(db, geocoder, center)
            processed += 1
    logger.info("background geocoding finished, %d centers processed", processed)
    return processed


def _check_unique_references(centers: list[Center]) -> None:
    errors = []
    seen: set[str] = set()
    for idx, center in enumerate(centers):
        ref = center.user_reference
        if not ref:
            continue
        if ref in seen:
            errors.append({"field": f"centers[{idx}].userReference", "validation": "unique"})
        seen.add(ref)
    if errors:
        raise ValidationFailed(errors, "duplicate user reference in import")


def import_centers(
    db: Session,
    operator: Operator,
    centers: list[Center],
    *,
    delete_all: bool,
    can_issue_dcc: bool,
) -> list[Center]:
    """Replace or extend an operator's centers in one transaction, without geocoding."""
    _check_unique_references(centers)

    def _run(tx: Session) -> list[Center]:
        if delete_all:
            removed = centers_store.delete_by_operator(tx, operator.uuid)
            logger.info("import for operator %s removed %d centers", operator.uuid, removed)
        return [save_center(tx, operator, c, can_issue_dcc=can_issue_dcc) for c in centers]

    return use_transaction(db, _run)


def get_owned_center(db: Session, operator: Operator, uuid: str, *, is_admin: bool) -> Center:
    center = centers_store.find_by_uuid(db, uuid)
    if center is None or (center.operator_uuid != operator.uuid and not is_admin):
        raise NotFound()
    return center


def delete_center(db: Session, operator: Operator, uuid: str, *, is_admin: bool) -> None:
    center = centers_store.find_by_uuid(db, uuid)
    if center is None:
        raise NotFound()
    if center.operator_uuid != operator.uuid and not is_admin:
        raise Forbidden()
    use_transaction(db, lambda tx: centers_store.delete(tx, center))


def delete_center_by_reference(db: Session, operator: Operator, reference: str) -> None:
    center = centers_store.find_by_operator_and_user_reference(db, operator.uuid, reference)
    if center is None:
        raise NotFound()
    use_transaction(db, lambda tx: centers_store.delete(tx, center))

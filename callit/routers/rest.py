import logging
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..database import get_session
from ..dependencies import get_current_user, require_user
from ..models.user import User
from ..realtime import Change, ChangeFeed, get_feed
from ..services.policies import PolicyError
from ..services.tables import (
    Table,
    get_table,
    build_select,
    build_target,
    validate_values,
    feed_rows,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rest", tags=["rest"])


def _http_error(error: PolicyError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.detail)


def _writable_table(name: str) -> Table:
    table = get_table(name)
    if not table.writable:
        raise PolicyError(status.HTTP_405_METHOD_NOT_ALLOWED, f"{name} is read-only")
    return table


def _conflict(db: Session, error: IntegrityError) -> HTTPException:
    db.rollback()
    logger.warning(f"Integrity error: {error.orig}")
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Row conflicts with an existing row")


def _visible_targets(db: Session, table: Table, params, user: User) -> list:
    rows = db.exec(build_target(table, params)).all()
    return [row for row in rows if table.policy.can_see(user.id, row.model_dump())]


async def _publish(feed: ChangeFeed, changes: List[Change]) -> None:
    for change in changes:
        await feed.publish(change)


@router.get("/{table_name}")
async def select_rows(
    table_name: str,
    request: Request,
    current_user: Optional[User] = Depends(get_current_user),
    db: Session = Depends(get_session)
):
    """Read rows visible to the caller, filtered, ordered and limited by query string."""
    try:
        table = get_table(table_name)
        statement = build_select(table, request.query_params.multi_items(), current_user)
    except PolicyError as e:
        raise _http_error(e)

    return table.rows(db, current_user, db.exec(statement).all())


@router.post("/{table_name}", status_code=status.HTTP_201_CREATED)
async def insert_row(
    table_name: str,
    values: dict = Body(...),
    current_user: User = Depends(require_user),
    db: Session = Depends(get_session),
    feed: ChangeFeed = Depends(get_feed)
):
    """Insert one row and return it as stored."""
    try:
        table = _writable_table(table_name)
        cleaned = table.policy.check_insert(db, current_user, dict(values))
        instance = table.model(**validate_values(table.model, cleaned))
        db.add(instance)
        db.commit()
    except PolicyError as e:
        db.rollback()
        raise _http_error(e)
    except IntegrityError as e:
        raise _conflict(db, e)

    db.refresh(instance)
    feed_name, row = feed_rows(db, instance)
    await _publish(feed, [Change(feed_name, "insert", None, row)])

    return table.rows(db, current_user, [instance])[0]


@router.patch("/{table_name}")
async def update_rows(
    table_name: str,
    request: Request,
    values: dict = Body(...),
    current_user: User = Depends(require_user),
    db: Session = Depends(get_session),
    feed: ChangeFeed = Depends(get_feed)
):
    """Update every row matching the filter. All rows pass the policy or none change."""
    updated = []
    try:
        table = _writable_table(table_name)
        targets = _visible_targets(db, table, request.query_params.multi_items(), current_user)
        for row in targets:
            cleaned = table.policy.check_update(db, current_user, row, dict(values))
            cleaned = validate_values(table.model, cleaned)
            _, old = feed_rows(db, row)
            for name, value in cleaned.items():
                setattr(row, name, value)
            if "updated_at" in table.model.model_fields:
                row.updated_at = datetime.utcnow()
            db.add(row)
            updated.append((row, old))
        db.commit()
    except PolicyError as e:
        db.rollback()
        raise _http_error(e)
    except IntegrityError as e:
        raise _conflict(db, e)

    changes = []
    for row, old in updated:
        db.refresh(row)
        feed_name, new = feed_rows(db, row)
        changes.append(Change(feed_name, "update", old, new))
    await _publish(feed, changes)

    return table.rows(db, current_user, [row for row, _ in updated])


@router.delete("/{table_name}")
async def delete_rows(
    table_name: str,
    request: Request,
    current_user: User = Depends(require_user),
    db: Session = Depends(get_session),
    feed: ChangeFeed = Depends(get_feed)
):
    """Delete every row matching the filter, with the rows that depend on them."""
    deleted = []
    changes = []
    detached = []
    try:
        table = _writable_table(table_name)
        targets = _visible_targets(db, table, request.query_params.multi_items(), current_user)
        for row in targets:
            table.policy.check_delete(db, current_user, row)

        for row in targets:
            deleted.extend(table.rows(db, current_user, [row]))
            row_feed, row_old = feed_rows(db, row)
            for _, dependent in table.policy.dependents(db, row):
                dependent_feed, old = feed_rows(db, dependent)
                changes.append(Change(dependent_feed, "delete", old, None))
                db.delete(dependent)
            for _, instance, column in table.policy.detached(db, row):
                _, old = feed_rows(db, instance)
                setattr(instance, column, None)
                db.add(instance)
                detached.append((instance, old))
            changes.append(Change(row_feed, "delete", row_old, None))
            db.delete(row)
        db.commit()
    except PolicyError as e:
        db.rollback()
        raise _http_error(e)
    except IntegrityError as e:
        raise _conflict(db, e)

    for instance, old in detached:
        db.refresh(instance)
        feed_name, new = feed_rows(db, instance)
        changes.append(Change(feed_name, "update", old, new))
    await _publish(feed, changes)

    return deleted

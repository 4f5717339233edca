"""
Row-level rules for the generic table API.

Each policy decides which rows a user may read, and cleans the values of an
insert or update before they reach the database. Policies raise PolicyError;
the REST router turns it into an HTTP error.
"""

from datetime import datetime
from typing import Optional
from fastapi import status
from sqlmodel import Session, select, or_

from ..config import CATEGORY_ICONS
from ..models import (
    User,
    Prediction,
    Vote,
    VOTE_TYPES,
    Comment,
    Category,
    CommentNotification,
)

RESULT_FIELDS = ("result_text", "is_correct", "result_added_at")


class PolicyError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def _user_id(user: Optional[User]) -> Optional[str]:
    return user.id if user else None


def _reject_unknown(values: dict, allowed: set) -> None:
    unknown = sorted(set(values) - allowed)
    if unknown:
        raise PolicyError(status.HTTP_400_BAD_REQUEST, f"Columns not writable: {', '.join(unknown)}")


def _require_text(values: dict, key: str, label: str) -> str:
    text = values.get(key)
    if not isinstance(text, str) or not text.strip():
        raise PolicyError(status.HTTP_400_BAD_REQUEST, f"{label} cannot be empty")
    return text.strip()


def _claim_owner(values: dict, user: User) -> None:
    """Rows are always written as the caller; a differing user_id is refused."""
    if values.get("user_id", user.id) != user.id:
        raise PolicyError(status.HTTP_403_FORBIDDEN, "Cannot write rows for another user")
    values["user_id"] = user.id


class TablePolicy:
    """Defaults: everything readable, nothing writable."""

    # Columns usable in filters and ordering; None allows every column
    queryable_columns = None

    def scope(self, statement, user: Optional[User]):
        return statement

    def can_see(self, user_id: Optional[str], row: dict) -> bool:
        return True

    def serialize(self, user: Optional[User], row: dict) -> dict:
        return row

    def check_insert(self, db: Session, user: User, values: dict) -> dict:
        raise PolicyError(status.HTTP_405_METHOD_NOT_ALLOWED, "Insert not allowed")

    def check_update(self, db: Session, user: User, row, values: dict) -> dict:
        raise PolicyError(status.HTTP_405_METHOD_NOT_ALLOWED, "Update not allowed")

    def check_delete(self, db: Session, user: User, row) -> None:
        raise PolicyError(status.HTTP_405_METHOD_NOT_ALLOWED, "Delete not allowed")

    def dependents(self, db: Session, row) -> list:
        """Rows removed along with `row`, as (model, instance) pairs."""
        return []

    def detached(self, db: Session, row) -> list:
        """Rows whose reference to `row` is cleared when it is deleted, as (model, instance, column)."""
        return []


class PredictionPolicy(TablePolicy):
    """Unlocked predictions are private to their author."""

    def scope(self, statement, user):
        if user is None:
            return statement.where(Prediction.is_locked == True)  # noqa: E712
        return statement.where(or_(Prediction.is_locked == True, Prediction.user_id == user.id))  # noqa: E712

    def can_see(self, user_id, row):
        return bool(row.get("is_locked")) or (user_id is not None and row.get("user_id") == user_id)

    def check_insert(self, db, user, values):
        locked_or_result = {"is_locked", "locked_at", *RESULT_FIELDS} & set(values)
        if locked_or_result:
            raise PolicyError(status.HTTP_400_BAD_REQUEST, "New predictions start unlocked without a result")
        _reject_unknown(values, {"id", "content", "user_id", "category_id", "end_date"})
        _claim_owner(values, user)
        values["content"] = _require_text(values, "content", "Prediction")
        if not values.get("end_date"):
            raise PolicyError(status.HTTP_400_BAD_REQUEST, "End date is required")
        _check_category(db, values.get("category_id"))
        return values

    def check_update(self, db, user, row, values):
        values = {k: v for k, v in values.items() if k != "updated_at"}
        _reject_unknown(values, {"content", "category_id", "end_date", "is_locked", "locked_at", *RESULT_FIELDS})

        if row.user_id != user.id:
            # Admins may file an uncategorized prediction, nothing else
            if user.is_admin and set(values) == {"category_id"} and row.category_id is None:
                _check_category(db, values["category_id"])
                return values
            raise PolicyError(status.HTTP_403_FORBIDDEN, "Only the author can change a prediction")

        if row.is_locked:
            return self._check_result(row, values)

        if set(RESULT_FIELDS) & set(values):
            raise PolicyError(status.HTTP_409_CONFLICT, "Results can only be recorded after locking")
        if "content" in values:
            values["content"] = _require_text(values, "content", "Prediction")
        if "end_date" in values and not values["end_date"]:
            raise PolicyError(status.HTTP_400_BAD_REQUEST, "End date is required")
        if "category_id" in values:
            _check_category(db, values["category_id"])
        if "locked_at" in values and not values.get("is_locked"):
            raise PolicyError(status.HTTP_400_BAD_REQUEST, "locked_at is only set when locking")
        if values.get("is_locked"):
            values["locked_at"] = values.get("locked_at") or datetime.utcnow()
        else:
            values.pop("is_locked", None)
        return values

    def _check_result(self, row, values):
        if set(values) - set(RESULT_FIELDS):
            if values.get("is_locked"):
                raise PolicyError(status.HTTP_409_CONFLICT, "Prediction is already locked")
            raise PolicyError(status.HTTP_409_CONFLICT, "Locked predictions cannot be changed")
        if row.result_text is not None:
            raise PolicyError(status.HTTP_409_CONFLICT, "Result already recorded")
        values["result_text"] = _require_text(values, "result_text", "Result explanation")
        if values.get("is_correct") is None:
            raise PolicyError(status.HTTP_400_BAD_REQUEST, "Result must say whether the prediction was correct")
        values["result_added_at"] = values.get("result_added_at") or datetime.utcnow()
        return values

    def check_delete(self, db, user, row):
        if row.user_id != user.id:
            raise PolicyError(status.HTTP_403_FORBIDDEN, "Only the author can delete a prediction")
        if row.is_locked:
            raise PolicyError(status.HTTP_409_CONFLICT, "Locked predictions cannot be deleted")

    def dependents(self, db, row):
        removed = []
        for model in (CommentNotification, Comment, Vote):
            rows = db.exec(select(model).where(model.prediction_id == row.id)).all()
            removed.extend((model, dependent) for dependent in rows)
        return removed


class VotePolicy(TablePolicy):

    def check_insert(self, db, user, values):
        _reject_unknown(values, {"id", "prediction_id", "user_id", "vote_type"})
        _claim_owner(values, user)
        _check_vote_type(values.get("vote_type"))
        prediction = _visible_prediction(db, user, values.get("prediction_id"))
        if prediction.user_id == user.id:
            raise PolicyError(status.HTTP_403_FORBIDDEN, "You cannot vote on your own prediction")
        return values

    def check_update(self, db, user, row, values):
        _reject_unknown(values, {"vote_type"})
        if row.user_id != user.id:
            raise PolicyError(status.HTTP_403_FORBIDDEN, "Only the voter can change a vote")
        _check_vote_type(values.get("vote_type"))
        return values

    def check_delete(self, db, user, row):
        if row.user_id != user.id:
            raise PolicyError(status.HTTP_403_FORBIDDEN, "Only the voter can retract a vote")


class CommentPolicy(TablePolicy):

    def check_insert(self, db, user, values):
        _reject_unknown(values, {"id", "prediction_id", "user_id", "content"})
        _claim_owner(values, user)
        _visible_prediction(db, user, values.get("prediction_id"))
        values["content"] = _require_text(values, "content", "Comment")
        return values

    def check_update(self, db, user, row, values):
        values = {k: v for k, v in values.items() if k != "updated_at"}
        _reject_unknown(values, {"content"})
        if row.user_id != user.id:
            raise PolicyError(status.HTTP_403_FORBIDDEN, "Only the author can edit a comment")
        values["content"] = _require_text(values, "content", "Comment")
        return values

    def check_delete(self, db, user, row):
        if row.user_id != user.id:
            raise PolicyError(status.HTTP_403_FORBIDDEN, "Only the author can delete a comment")

    def dependents(self, db, row):
        seen = db.exec(select(CommentNotification).where(CommentNotification.comment_id == row.id)).all()
        return [(CommentNotification, notification) for notification in seen]


class CategoryPolicy(TablePolicy):

    def check_insert(self, db, user, values):
        _reject_unknown(values, {"id", "name", "icon"})
        values["name"] = _require_text(values, "name", "Category name")
        values["icon"] = _check_icon(values.get("icon"))
        values["created_by"] = user.id
        return values

    def check_update(self, db, user, row, values):
        _reject_unknown(values, {"name", "icon"})
        self._check_manager(user, row)
        if "name" in values:
            values["name"] = _require_text(values, "name", "Category name")
        if "icon" in values:
            values["icon"] = _check_icon(values["icon"])
        return values

    def check_delete(self, db, user, row):
        self._check_manager(user, row)

    def detached(self, db, row):
        filed = db.exec(select(Prediction).where(Prediction.category_id == row.id)).all()
        return [(Prediction, prediction, "category_id") for prediction in filed]

    def _check_manager(self, user, row):
        if row.created_by != user.id and not user.is_admin:
            raise PolicyError(status.HTTP_403_FORBIDDEN, "Only the creator or an admin can change a category")


class ProfilePolicy(TablePolicy):
    """Profiles are public, but only their display name and join date."""

    PUBLIC_COLUMNS = ("id", "display_name", "created_at")
    OWNER_COLUMNS = ("email", "is_admin", "updated_at")
    queryable_columns = frozenset(PUBLIC_COLUMNS)

    def serialize(self, user, row):
        columns = self.PUBLIC_COLUMNS
        if user is not None and row.get("id") == user.id:
            columns = columns + self.OWNER_COLUMNS
        return {column: row.get(column) for column in columns}

    def check_update(self, db, user, row, values):
        values = {k: v for k, v in values.items() if k != "updated_at"}
        _reject_unknown(values, {"display_name"})
        if row.id != user.id:
            raise PolicyError(status.HTTP_403_FORBIDDEN, "You can only update your own profile")
        values["display_name"] = _require_text(values, "display_name", "Display name")
        return values


class CommentNotificationPolicy(TablePolicy):
    """Seen markers are private to the user who set them."""

    def scope(self, statement, user):
        return statement.where(CommentNotification.user_id == _user_id(user))

    def can_see(self, user_id, row):
        return user_id is not None and row.get("user_id") == user_id

    def check_insert(self, db, user, values):
        _reject_unknown(values, {"id", "comment_id", "prediction_id", "user_id", "seen_at"})
        _claim_owner(values, user)
        comment = db.get(Comment, values.get("comment_id"))
        if comment is None:
            raise PolicyError(status.HTTP_404_NOT_FOUND, "Comment not found")
        values["prediction_id"] = comment.prediction_id
        return values

    def check_delete(self, db, user, row):
        if row.user_id != user.id:
            raise PolicyError(status.HTTP_403_FORBIDDEN, "Not your notification")


def _check_category(db: Session, category_id: Optional[str]) -> None:
    if category_id and db.get(Category, category_id) is None:
        raise PolicyError(status.HTTP_400_BAD_REQUEST, "Unknown category")


def _check_icon(icon: Optional[str]) -> Optional[str]:
    if not icon:
        return None
    if icon not in CATEGORY_ICONS:
        raise PolicyError(status.HTTP_400_BAD_REQUEST, f"Unknown icon: {icon}")
    return icon


def _check_vote_type(vote_type) -> None:
    if vote_type not in VOTE_TYPES:
        raise PolicyError(status.HTTP_400_BAD_REQUEST, "vote_type must be 'agree' or 'disagree'")


def _visible_prediction(db: Session, user: User, prediction_id) -> Prediction:
    prediction = db.get(Prediction, prediction_id) if prediction_id else None
    if prediction is None or not (prediction.is_locked or prediction.user_id == user.id):
        raise PolicyError(status.HTTP_404_NOT_FOUND, "Prediction not found")
    return prediction

"""
Registry of the collections exposed through /rest/{table}, and the
translation of query-string filters into SQLModel statements.

Filters follow a small PostgREST-like grammar:

    ?user_id=eq.<id>          equality
    ?category_id=neq.<id>     inequality
    ?result_text=is.null      null / boolean tests
    ?order=created_at.desc    ordering (comma separated, asc by default)
    ?limit=10                 row limit
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from fastapi import status
from pydantic import TypeAdapter, ValidationError
from sqlmodel import SQLModel, Session, select

from ..models import User, Prediction, Vote, Comment, Category, CommentNotification
from .enrich import enrich_predictions, enrich_comments
from .policies import (
    PolicyError,
    TablePolicy,
    PredictionPolicy,
    VotePolicy,
    CommentPolicy,
    CategoryPolicy,
    ProfilePolicy,
    CommentNotificationPolicy,
)

RESERVED_PARAMS = {"order", "limit"}


@dataclass
class Table:
    name: str
    model: type
    policy: TablePolicy
    enrich: Optional[Callable] = None
    writable: bool = True

    def rows(self, db: Session, user: Optional[User], instances) -> List[dict]:
        """Dump instances in this table's read shape, as seen by `user`."""
        if self.enrich:
            rows = self.enrich(db, instances)
        else:
            rows = [instance.model_dump() for instance in instances]
        return [self.policy.serialize(user, row) for row in rows]


_prediction_policy = PredictionPolicy()
_comment_policy = CommentPolicy()

TABLES = {
    "predictions": Table("predictions", Prediction, _prediction_policy),
    "predictions_with_profiles": Table(
        "predictions_with_profiles", Prediction, _prediction_policy,
        enrich=enrich_predictions, writable=False,
    ),
    "votes": Table("votes", Vote, VotePolicy()),
    "comments": Table("comments", Comment, _comment_policy),
    "comments_with_profiles": Table(
        "comments_with_profiles", Comment, _comment_policy,
        enrich=enrich_comments, writable=False,
    ),
    "categories": Table("categories", Category, CategoryPolicy()),
    "profiles": Table("profiles", User, ProfilePolicy()),
    "comment_notifications": Table("comment_notifications", CommentNotification, CommentNotificationPolicy()),
}

# Read shape used when publishing change events for a base table
FEED_TABLES = {
    Prediction: TABLES["predictions_with_profiles"],
    Vote: TABLES["votes"],
    Comment: TABLES["comments"],
    Category: TABLES["categories"],
    User: TABLES["profiles"],
    CommentNotification: TABLES["comment_notifications"],
}

FEED_NAMES = {
    Prediction: "predictions",
    Vote: "votes",
    Comment: "comments",
    Category: "categories",
    User: "profiles",
    CommentNotification: "comment_notifications",
}


def get_table(name: str) -> Table:
    table = TABLES.get(name)
    if table is None:
        raise PolicyError(status.HTTP_404_NOT_FOUND, f"Unknown table: {name}")
    return table


def _column(model: type, name: str, queryable: Optional[frozenset] = None):
    if name not in model.model_fields:
        raise PolicyError(status.HTTP_400_BAD_REQUEST, f"Unknown column: {name}")
    if queryable is not None and name not in queryable:
        raise PolicyError(status.HTTP_400_BAD_REQUEST, f"Column cannot be queried: {name}")
    return getattr(model, name)


def coerce_value(model: type, name: str, raw):
    """Convert a raw (string) value to the column's Python type."""
    annotation = model.model_fields[name].annotation
    try:
        return TypeAdapter(annotation).validate_python(raw)
    except ValidationError:
        raise PolicyError(status.HTTP_400_BAD_REQUEST, f"Invalid value for {name}: {raw!r}")


def parse_filters(model: type, params: List[Tuple[str, str]], queryable: Optional[frozenset] = None) -> list:
    clauses = []
    for key, raw in params:
        if key in RESERVED_PARAMS:
            continue
        column = _column(model, key, queryable)
        operator, _, value = raw.partition(".")
        if operator == "eq":
            clauses.append(column == coerce_value(model, key, value))
        elif operator == "neq":
            clauses.append(column != coerce_value(model, key, value))
        elif operator == "is":
            if value == "null":
                clauses.append(column.is_(None))
            elif value in ("true", "false"):
                clauses.append(column.is_(value == "true"))
            else:
                raise PolicyError(status.HTTP_400_BAD_REQUEST, f"Invalid is. filter: {value}")
        else:
            raise PolicyError(status.HTTP_400_BAD_REQUEST, f"Unsupported operator: {operator}")
    return clauses


def parse_order(model: type, order: Optional[str], queryable: Optional[frozenset] = None) -> list:
    clauses = []
    for part in filter(None, (order or "").split(",")):
        name, _, direction = part.partition(".")
        column = _column(model, name, queryable)
        if direction in ("", "asc"):
            clauses.append(column.asc())
        elif direction == "desc":
            clauses.append(column.desc())
        else:
            raise PolicyError(status.HTTP_400_BAD_REQUEST, f"Invalid order direction: {direction}")
    return clauses


def parse_limit(limit: Optional[str]) -> Optional[int]:
    if limit is None:
        return None
    try:
        value = int(limit)
    except ValueError:
        raise PolicyError(status.HTTP_400_BAD_REQUEST, "limit must be an integer")
    if value < 0:
        raise PolicyError(status.HTTP_400_BAD_REQUEST, "limit must not be negative")
    return value


def build_select(table: Table, params: List[Tuple[str, str]], user: Optional[User]):
    """Statement for a read: caller's filters, then the policy's row scope."""
    query = dict(params)
    statement = select(table.model)
    for clause in parse_filters(table.model, params, table.policy.queryable_columns):
        statement = statement.where(clause)
    statement = table.policy.scope(statement, user)
    for clause in parse_order(table.model, query.get("order"), table.policy.queryable_columns):
        statement = statement.order_by(clause)
    limit = parse_limit(query.get("limit"))
    if limit is not None:
        statement = statement.limit(limit)
    return statement


def build_target(table: Table, params: List[Tuple[str, str]]):
    """Statement selecting the rows a PATCH/DELETE applies to. A filter is required."""
    clauses = parse_filters(table.model, params, table.policy.queryable_columns)
    if not clauses:
        raise PolicyError(status.HTTP_400_BAD_REQUEST, "Updates and deletes need a filter")
    statement = select(table.model)
    for clause in clauses:
        statement = statement.where(clause)
    return statement


def validate_values(model: type, values: dict) -> dict:
    """Type-check a partial set of column values against the model."""
    validated = {}
    for name, raw in values.items():
        _column(model, name)
        validated[name] = coerce_value(model, name, raw)
    return validated


def feed_rows(db: Session, instance: SQLModel) -> Tuple[str, dict]:
    """(feed name, read-shaped row) of an instance for change events."""
    model = type(instance)
    return FEED_NAMES[model], FEED_TABLES[model].rows(db, None, [instance])[0]

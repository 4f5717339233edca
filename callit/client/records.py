"""
Record types held by the client core.

`Prediction` is the one canonical shape of a prediction on the client: the
row plus the joined display fields of predictions_with_profiles. Vote tallies
and comment counts live beside it in the store, not on the record.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator

from ..config import DEFAULT_DISPLAY_NAME


class VoteType(str, Enum):
    AGREE = "agree"
    DISAGREE = "disagree"


class PredictionFilter(str, Enum):
    ALL = "all"
    MINE = "mine"
    AWAITING = "awaiting"
    CORRECT = "correct"
    INCORRECT = "incorrect"


class SortDirection(str, Enum):
    NEWEST_FIRST = "desc"
    OLDEST_FIRST = "asc"

    def toggled(self) -> "SortDirection":
        if self is SortDirection.NEWEST_FIRST:
            return SortDirection.OLDEST_FIRST
        return SortDirection.NEWEST_FIRST


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Prediction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    content: str
    user_id: str
    display_name: str = DEFAULT_DISPLAY_NAME
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    category_icon: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    end_date: datetime
    is_locked: bool = False
    locked_at: Optional[datetime] = None
    result_text: Optional[str] = None
    is_correct: Optional[bool] = None
    result_added_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_lifecycle(self):
        if self.is_locked != (self.locked_at is not None):
            raise ValueError("locked_at must be set exactly when the prediction is locked")
        result = (self.result_text, self.is_correct, self.result_added_at)
        if any(value is not None for value in result) and any(value is None for value in result):
            raise ValueError("result_text, is_correct and result_added_at are set together")
        return self

    @classmethod
    def from_row(cls, row: dict) -> "Prediction":
        """Build a record from a predictions or predictions_with_profiles row."""
        data = dict(row)
        if not data.get("display_name"):
            data["display_name"] = DEFAULT_DISPLAY_NAME
        return cls.model_validate(data)

    def replace(self, **changes) -> "Prediction":
        """Copy with `changes` applied, re-checking the lifecycle invariants."""
        return type(self).model_validate({**self.model_dump(), **changes})

    @property
    def has_result(self) -> bool:
        return self.result_text is not None


class Vote(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    prediction_id: str
    user_id: str
    vote_type: VoteType


class Category(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    icon: Optional[str] = None


@dataclass(frozen=True)
class VoteTally:
    agree: int = 0
    disagree: int = 0

    def adjust(self, vote_type: VoteType, delta: int) -> "VoteTally":
        if vote_type is VoteType.AGREE:
            return VoteTally(max(self.agree + delta, 0), self.disagree)
        return VoteTally(self.agree, max(self.disagree + delta, 0))


class ChangeEvent(BaseModel):
    """A decoded change-feed notification."""
    table: str
    type: ChangeType
    old: Optional[dict] = None
    new: Optional[dict] = None

    @property
    def record_id(self) -> Optional[str]:
        row = self.new if self.type is not ChangeType.DELETE else self.old
        return (row or {}).get("id")

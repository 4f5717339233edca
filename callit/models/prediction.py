from datetime import datetime
from typing import Optional
from uuid import uuid4
from sqlmodel import SQLModel, Field


class Prediction(SQLModel, table=True):
    __tablename__ = "predictions"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    content: str
    user_id: str = Field(foreign_key="profiles.id", index=True)
    category_id: Optional[str] = Field(default=None, foreign_key="categories.id", index=True)

    # Lifecycle: locked exactly once, locked_at set iff is_locked
    is_locked: bool = Field(default=False)
    locked_at: Optional[datetime] = Field(default=None)
    end_date: datetime

    # Result: all three set together after locking
    result_text: Optional[str] = Field(default=None)
    is_correct: Optional[bool] = Field(default=None)
    result_added_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

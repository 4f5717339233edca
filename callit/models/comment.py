from datetime import datetime
from uuid import uuid4
from sqlmodel import SQLModel, Field


class Comment(SQLModel, table=True):
    __tablename__ = "comments"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    prediction_id: str = Field(foreign_key="predictions.id", index=True)
    user_id: str = Field(foreign_key="profiles.id", index=True)
    content: str
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

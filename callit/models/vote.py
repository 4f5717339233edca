from datetime import datetime
from uuid import uuid4
from sqlmodel import SQLModel, Field, UniqueConstraint

VOTE_TYPES = ("agree", "disagree")


class Vote(SQLModel, table=True):
    __tablename__ = "votes"
    __table_args__ = (UniqueConstraint("prediction_id", "user_id", name="unique_prediction_voter"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    prediction_id: str = Field(foreign_key="predictions.id", index=True)
    user_id: str = Field(foreign_key="profiles.id", index=True)
    vote_type: str  # agree, disagree
    created_at: datetime = Field(default_factory=datetime.utcnow)

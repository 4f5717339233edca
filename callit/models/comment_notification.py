from datetime import datetime
from uuid import uuid4
from sqlmodel import SQLModel, Field, UniqueConstraint


class CommentNotification(SQLModel, table=True):
    """Marks a comment on one of the user's predictions as seen."""
    __tablename__ = "comment_notifications"
    __table_args__ = (UniqueConstraint("user_id", "comment_id", name="unique_user_comment_seen"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="profiles.id", index=True)
    comment_id: str = Field(foreign_key="comments.id", index=True)
    prediction_id: str = Field(foreign_key="predictions.id")
    seen_at: datetime = Field(default_factory=datetime.utcnow)

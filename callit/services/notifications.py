from typing import List
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..config import DEFAULT_DISPLAY_NAME
from ..models import User, Prediction, Comment, CommentNotification

NOTIFICATION_LIMIT = 10


def list_notifications(db: Session, user: User, limit: int = NOTIFICATION_LIMIT) -> List[dict]:
    """Most recent comments other people left on the user's predictions."""
    statement = (
        select(Comment, Prediction, User)
        .join(Prediction, Prediction.id == Comment.prediction_id)
        .join(User, User.id == Comment.user_id)
        .where(Prediction.user_id == user.id, Comment.user_id != user.id)
        .order_by(Comment.created_at.desc())
        .limit(limit)
    )
    rows = db.exec(statement).all()

    comment_ids = [comment.id for comment, _, _ in rows]
    seen = set()
    if comment_ids:
        seen = set(db.exec(
            select(CommentNotification.comment_id).where(
                CommentNotification.user_id == user.id,
                CommentNotification.comment_id.in_(comment_ids)
            )
        ).all())

    return [
        {
            "comment_id": comment.id,
            "comment_content": comment.content,
            "prediction_id": prediction.id,
            "prediction_content": prediction.content,
            "commenter_name": commenter.display_name or DEFAULT_DISPLAY_NAME,
            "created_at": comment.created_at,
            "seen": comment.id in seen,
        }
        for comment, prediction, commenter in rows
    ]


def mark_seen(db: Session, user: User, comment: Comment) -> CommentNotification:
    """Mark a comment as seen. Marking twice keeps the first timestamp."""
    statement = select(CommentNotification).where(
        CommentNotification.user_id == user.id,
        CommentNotification.comment_id == comment.id
    )
    existing = db.exec(statement).first()
    if existing:
        return existing

    notification = CommentNotification(
        user_id=user.id,
        comment_id=comment.id,
        prediction_id=comment.prediction_id
    )
    db.add(notification)
    try:
        db.commit()
    except IntegrityError:
        # Marked concurrently by another request
        db.rollback()
        return db.exec(statement).one()
    db.refresh(notification)
    return notification

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select

from ..database import get_session
from ..dependencies import require_user, require_admin
from ..models import User, Prediction, Comment
from ..services.enrich import enrich_predictions
from ..services.notifications import list_notifications, mark_seen
from ..services.stats import prediction_stats

router = APIRouter(prefix="/api", tags=["api"])


@router.get("/notifications")
async def get_notifications(
    current_user: User = Depends(require_user),
    db: Session = Depends(get_session)
):
    """Recent comments on the user's predictions, with an unread count."""
    notifications = list_notifications(db, current_user)
    return {
        "notifications": notifications,
        "unread_count": sum(1 for n in notifications if not n["seen"]),
    }


@router.post("/notifications/{comment_id}/seen")
async def post_notification_seen(
    comment_id: str,
    current_user: User = Depends(require_user),
    db: Session = Depends(get_session)
):
    """Mark one comment notification as seen."""
    comment = db.get(Comment, comment_id)
    if not comment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found")

    prediction = db.get(Prediction, comment.prediction_id)
    if not prediction or prediction.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a comment on your prediction")

    notification = mark_seen(db, current_user, comment)
    return {"comment_id": comment.id, "seen_at": notification.seen_at}


@router.get("/stats")
async def get_stats(db: Session = Depends(get_session)):
    """Correct vs incorrect predictions across the site."""
    return prediction_stats(db)


@router.get("/admin/uncategorized")
async def get_uncategorized(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_session)
):
    """Predictions still waiting for a category."""
    statement = (
        select(Prediction)
        .where(Prediction.category_id.is_(None))
        .order_by(Prediction.created_at.desc())
    )
    return enrich_predictions(db, db.exec(statement).all())

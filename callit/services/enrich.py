from typing import Iterable, List
from sqlmodel import Session, select, func

from ..config import DEFAULT_DISPLAY_NAME
from ..models import User, Prediction, Category, Vote, Comment


def _display_names(db: Session, user_ids: set) -> dict:
    if not user_ids:
        return {}
    users = db.exec(select(User).where(User.id.in_(user_ids))).all()
    return {user.id: user.display_name for user in users}


def enrich_predictions(db: Session, predictions: Iterable[Prediction]) -> List[dict]:
    """
    Build the predictions_with_profiles shape: the prediction row plus author
    display name, category name/icon and vote/comment aggregates.
    """
    predictions = list(predictions)
    if not predictions:
        return []

    ids = [p.id for p in predictions]
    names = _display_names(db, {p.user_id for p in predictions})

    category_ids = {p.category_id for p in predictions if p.category_id}
    categories = {}
    if category_ids:
        rows = db.exec(select(Category).where(Category.id.in_(category_ids))).all()
        categories = {category.id: category for category in rows}

    vote_counts = {}
    statement = (
        select(Vote.prediction_id, Vote.vote_type, func.count(Vote.id))
        .where(Vote.prediction_id.in_(ids))
        .group_by(Vote.prediction_id, Vote.vote_type)
    )
    for prediction_id, vote_type, count in db.exec(statement).all():
        vote_counts[(prediction_id, vote_type)] = count

    statement = (
        select(Comment.prediction_id, func.count(Comment.id))
        .where(Comment.prediction_id.in_(ids))
        .group_by(Comment.prediction_id)
    )
    comment_counts = dict(db.exec(statement).all())

    rows = []
    for prediction in predictions:
        row = prediction.model_dump()
        category = categories.get(prediction.category_id)
        row["display_name"] = names.get(prediction.user_id) or DEFAULT_DISPLAY_NAME
        row["category_name"] = category.name if category else None
        row["category_icon"] = category.icon if category else None
        row["agree_count"] = vote_counts.get((prediction.id, "agree"), 0)
        row["disagree_count"] = vote_counts.get((prediction.id, "disagree"), 0)
        row["comment_count"] = comment_counts.get(prediction.id, 0)
        rows.append(row)
    return rows


def enrich_comments(db: Session, comments: Iterable[Comment]) -> List[dict]:
    """comments_with_profiles: the comment row plus the commenter's display name."""
    comments = list(comments)
    names = _display_names(db, {c.user_id for c in comments})
    rows = []
    for comment in comments:
        row = comment.model_dump()
        row["display_name"] = names.get(comment.user_id) or DEFAULT_DISPLAY_NAME
        rows.append(row)
    return rows

from sqlmodel import Session, select, func

from ..models import Prediction


def prediction_stats(db: Session) -> dict:
    """Correct/incorrect counts over every prediction with a recorded result."""
    statement = (
        select(Prediction.is_correct, func.count(Prediction.id))
        .where(Prediction.is_correct.is_not(None))
        .group_by(Prediction.is_correct)
    )
    counts = dict(db.exec(statement).all())
    correct = counts.get(True, 0)
    incorrect = counts.get(False, 0)
    total = correct + incorrect

    return {
        "correct": correct,
        "incorrect": incorrect,
        "total": total,
        "correct_percentage": round(correct / total * 100) if total else 0,
    }

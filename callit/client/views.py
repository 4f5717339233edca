import re
from typing import Iterable, List, Optional

from .records import Prediction, PredictionFilter, SortDirection


def is_visible(prediction: Prediction, viewer_id: Optional[str]) -> bool:
    """Unlocked predictions are only shown to their author."""
    return prediction.is_locked or (viewer_id is not None and prediction.user_id == viewer_id)


def matches_filter(prediction: Prediction, active_filter: PredictionFilter, viewer_id: Optional[str]) -> bool:
    if active_filter is PredictionFilter.MINE:
        return viewer_id is not None and prediction.user_id == viewer_id
    if active_filter is PredictionFilter.AWAITING:
        return prediction.is_locked and not prediction.has_result
    if active_filter is PredictionFilter.CORRECT:
        return prediction.is_correct is True
    if active_filter is PredictionFilter.INCORRECT:
        return prediction.is_correct is False
    return True


def filter_predictions(
    predictions: Iterable[Prediction],
    viewer_id: Optional[str],
    active_filter: PredictionFilter = PredictionFilter.ALL,
    category_id: Optional[str] = None,
    direction: SortDirection = SortDirection.NEWEST_FIRST,
) -> List[Prediction]:
    """
    The list as shown: visible records matching the filter and category,
    sorted by creation time. The sort is stable, so records created at the
    same instant keep their fetch order in both directions.
    """
    shown = [
        prediction for prediction in predictions
        if is_visible(prediction, viewer_id)
        and matches_filter(prediction, active_filter, viewer_id)
        and (category_id is None or prediction.category_id == category_id)
    ]
    return sorted(
        shown,
        key=lambda prediction: prediction.created_at,
        reverse=direction is SortDirection.NEWEST_FIRST,
    )


def empty_message(active_filter: PredictionFilter) -> str:
    if active_filter is PredictionFilter.ALL:
        return "No predictions yet. Be the first to add one!"
    return "No predictions match the selected filter."


def prediction_stats(predictions: Iterable[Prediction]) -> dict:
    """Correct/incorrect counts over predictions with a result."""
    judged = [p for p in predictions if p.is_correct is not None]
    correct = sum(1 for p in judged if p.is_correct)
    total = len(judged)
    return {
        "correct": correct,
        "incorrect": total - correct,
        "total": total,
        "correct_percentage": round(correct / total * 100) if total else 0,
    }


def slugify(content: str) -> str:
    """URL slug of a prediction, as used by /prediction/{slug}."""
    return re.sub(r"\s+", "-", content.strip().lower())

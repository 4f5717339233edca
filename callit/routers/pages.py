from typing import Optional
from fastapi import APIRouter, Request, Depends, HTTPException, status
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlmodel import Session, select

from ..config import TEMPLATES_DIR
from ..database import get_session
from ..dependencies import get_current_user
from ..models import User, Prediction, Comment
from ..services.enrich import enrich_predictions, enrich_comments
from ..services.policies import PredictionPolicy
from ..services.stats import prediction_stats

router = APIRouter(tags=["pages"])
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

_visibility = PredictionPolicy()

LIKE_ESCAPE = "\\"


def slug_to_content(slug: str) -> str:
    """Inverse of the client's slugify: dashes become spaces."""
    return slug.replace("-", " ")


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so `text` only matches itself."""
    for char in (LIKE_ESCAPE, "%", "_"):
        text = text.replace(char, LIKE_ESCAPE + char)
    return text


@router.get("/", response_class=HTMLResponse)
async def home(
    request: Request,
    current_user: Optional[User] = Depends(get_current_user),
    db: Session = Depends(get_session)
):
    statement = _visibility.scope(select(Prediction), current_user).order_by(Prediction.created_at.desc())
    predictions = enrich_predictions(db, db.exec(statement).all())

    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "current_user": current_user,
            "predictions": predictions,
            "stats": prediction_stats(db),
        }
    )


@router.get("/prediction/{slug}", response_class=HTMLResponse)
async def prediction_detail(
    slug: str,
    request: Request,
    current_user: Optional[User] = Depends(get_current_user),
    db: Session = Depends(get_session)
):
    """A single prediction, looked up by the slug of its content, with its comments."""
    pattern = escape_like(slug_to_content(slug))
    statement = _visibility.scope(
        select(Prediction).where(Prediction.content.ilike(pattern, escape=LIKE_ESCAPE)),
        current_user
    )
    prediction = db.exec(statement).first()
    if not prediction:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Prediction not found")

    comments = db.exec(
        select(Comment)
        .where(Comment.prediction_id == prediction.id)
        .order_by(Comment.created_at)
    ).all()

    return templates.TemplateResponse(
        request,
        "prediction.html",
        {
            "current_user": current_user,
            "prediction": enrich_predictions(db, [prediction])[0],
            "comments": enrich_comments(db, comments),
        }
    )

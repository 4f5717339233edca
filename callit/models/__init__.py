from .user import User
from .session import Session
from .category import Category
from .prediction import Prediction
from .vote import Vote, VOTE_TYPES
from .comment import Comment
from .comment_notification import CommentNotification

__all__ = [
    "User",
    "Session",
    "Category",
    "Prediction",
    "Vote",
    "VOTE_TYPES",
    "Comment",
    "CommentNotification",
]

from .backend import FeedSubscription, HttpBackend
from .context import ClientContext, Identity, IdentityState
from .errors import BackendError, ClientError, NotSignedIn, TransitionRejected, ValidationFailed
from .notices import Notice, Notifier
from .reconciler import Reconciler
from .records import ChangeEvent, ChangeType, Prediction, PredictionFilter, SortDirection, Vote, VoteTally, VoteType
from .store import ListStore

__all__ = [
    "BackendError",
    "ChangeEvent",
    "ChangeType",
    "ClientContext",
    "ClientError",
    "FeedSubscription",
    "HttpBackend",
    "Identity",
    "IdentityState",
    "ListStore",
    "NotSignedIn",
    "Notice",
    "Notifier",
    "Prediction",
    "PredictionFilter",
    "Reconciler",
    "SortDirection",
    "TransitionRejected",
    "ValidationFailed",
    "Vote",
    "VoteTally",
    "VoteType",
]

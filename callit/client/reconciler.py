"""
Realtime reconciliation.

The pure functions below turn (local state, change event) into new local
state and can be tested without a network. `Reconciler` wires them to a
change-feed subscription and writes the results into a ListStore.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from .errors import BackendError
from .records import ChangeEvent, ChangeType, Prediction, Vote, VoteTally, VoteType

logger = logging.getLogger(__name__)

FEED_TABLES = ("predictions", "votes", "comments")


def needs_fetch(records: List[Prediction], event: ChangeEvent) -> bool:
    """Inserts not already held locally are fetched in their enriched shape first."""
    if event.type is not ChangeType.INSERT:
        return False
    return all(record.id != event.record_id for record in records)


def apply_prediction_event(
    records: List[Prediction],
    event: ChangeEvent,
    enriched: Optional[dict] = None
) -> List[Prediction]:
    """
    Return the prediction list with `event` applied.

    insert: prepends the record unless its id is already present (this tab's
            own optimistic add). `enriched` is the fetched joined row, when
            there is one.
    update: replaces the record wholesale with the new-row payload; local
            fields missing from the payload are dropped.
    delete: removes the record; a no-op when it is already gone.
    """
    record_id = event.record_id
    if record_id is None:
        return list(records)

    if event.type is ChangeType.DELETE:
        return [record for record in records if record.id != record_id]

    if event.type is ChangeType.INSERT:
        if any(record.id == record_id for record in records):
            return list(records)
        return [Prediction.from_row(enriched or event.new)] + list(records)

    replacement = Prediction.from_row(event.new)
    return [replacement if record.id == record_id else record for record in records]


def tally_votes(votes: Iterable[Vote]) -> Dict[str, VoteTally]:
    """Agree/disagree counts per prediction, recomputed from every vote."""
    tallies: Dict[str, VoteTally] = {}
    for vote in votes:
        tally = tallies.get(vote.prediction_id, VoteTally())
        tallies[vote.prediction_id] = tally.adjust(VoteType(vote.vote_type), 1)
    return tallies


def votes_by_user(votes: Iterable[Vote], user_id: Optional[str]) -> Dict[str, Vote]:
    """The given user's vote per prediction."""
    if user_id is None:
        return {}
    return {vote.prediction_id: vote for vote in votes if vote.user_id == user_id}


def count_comments(comments: Iterable[dict]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for comment in comments:
        prediction_id = comment["prediction_id"]
        counts[prediction_id] = counts.get(prediction_id, 0) + 1
    return counts


class Reconciler:
    """Applies change-feed events for predictions, votes and comments to a store."""

    def __init__(self, context, store):
        self.context = context
        self.store = store
        self.subscription = None
        self._tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        self.subscription = await self.context.backend.subscribe(FEED_TABLES)
        handlers = {
            "predictions": self.handle_prediction_event,
            "votes": self.handle_vote_event,
            "comments": self.handle_comment_event,
        }
        self._tasks = [
            asyncio.create_task(self._consume(table, handler))
            for table, handler in handlers.items()
        ]

    async def _consume(self, table: str, handler) -> None:
        while True:
            event = await self.subscription.get(table)
            try:
                await handler(event)
            except BackendError as e:
                logger.warning(f"Could not apply {table} {event.type.value}: {e.message}")
            except (KeyError, TypeError, ValueError) as e:
                # ValueError covers pydantic ValidationError
                logger.warning(f"Ignoring malformed {table} event: {e!r}")

    async def handle_prediction_event(self, event: ChangeEvent) -> None:
        enriched = None
        if needs_fetch(self.store.predictions, event):
            rows = await self.context.backend.select("predictions_with_profiles", eq={"id": event.record_id})
            if not rows:
                # Gone again, or not visible to us
                return
            enriched = rows[0]
        self.store.predictions = apply_prediction_event(self.store.predictions, event, enriched)

    async def handle_vote_event(self, event: ChangeEvent) -> None:
        rows = await self.context.backend.select("votes")
        self.store.set_votes([Vote.model_validate(row) for row in rows])

    async def handle_comment_event(self, event: ChangeEvent) -> None:
        rows = await self.context.backend.select("comments")
        self.store.comment_counts = count_comments(rows)

    async def close(self) -> None:
        """Stop consuming and tear down the subscription."""
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        if self.subscription is not None:
            await self.subscription.close()
            self.subscription = None

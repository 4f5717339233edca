"""
The prediction list store.

Holds the enriched prediction records, the viewer's votes, vote tallies and
comment counts, and runs every mutation as an optimistic transaction: the
local state changes first, the backend write follows, and a failed write puts
the snapshot back.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from fastapi.encoders import jsonable_encoder

from ..config import DEFAULT_DISPLAY_NAME
from .errors import BackendError, ClientError, TransitionRejected, ValidationFailed
from .records import Category, Prediction, PredictionFilter, SortDirection, Vote, VoteTally, VoteType
from .reconciler import tally_votes, votes_by_user
from .views import filter_predictions

logger = logging.getLogger(__name__)


def _require_text(value: Optional[str], what: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationFailed(f"{what} cannot be empty")
    return text


PROVISIONAL_PREFIX = "temp-"


def _single_row(rows: List[dict], what: str = "Prediction") -> dict:
    """An update or delete that matched nothing is a failed write."""
    if not rows:
        raise BackendError(f"{what} not found", 404)
    return rows[0]


@dataclass
class RecordSnapshot:
    """A prediction as it was before a mutation; `record` is None if it did not exist."""
    prediction_id: str
    index: int
    record: Optional[Prediction]


class ListStore:
    def __init__(self, context):
        self.context = context
        self.predictions: List[Prediction] = []
        self.my_votes: Dict[str, Vote] = {}
        self.tallies: Dict[str, VoteTally] = {}
        self.comment_counts: Dict[str, int] = {}
        self.categories: Dict[str, Category] = {}

        self.active_filter = PredictionFilter.ALL
        self.category_id: Optional[str] = None
        self.direction = SortDirection.NEWEST_FIRST

    @property
    def backend(self):
        return self.context.backend

    @property
    def notifier(self):
        return self.context.notifier

    # Reading

    def get(self, prediction_id: str) -> Optional[Prediction]:
        index = self._index(prediction_id)
        return self.predictions[index] if index is not None else None

    def _index(self, prediction_id: str) -> Optional[int]:
        for index, record in enumerate(self.predictions):
            if record.id == prediction_id:
                return index
        return None

    def visible(self) -> List[Prediction]:
        """The list as currently shown to the viewer."""
        return filter_predictions(
            self.predictions,
            self.context.user_id,
            self.active_filter,
            self.category_id,
            self.direction,
        )

    def tally(self, prediction_id: str) -> VoteTally:
        return self.tallies.get(prediction_id, VoteTally())

    def toggle_sort(self) -> SortDirection:
        self.direction = self.direction.toggled()
        return self.direction

    def set_votes(self, votes: List[Vote]) -> None:
        self.tallies = tally_votes(votes)
        self.my_votes = votes_by_user(votes, self.context.user_id)

    async def load(self) -> bool:
        """Initial fetch. On failure the list stays empty and an error notice is posted."""
        try:
            rows = await self.backend.select("predictions_with_profiles", order="created_at.desc")
            votes = await self.backend.select("votes")
            categories = await self.backend.select("categories", order="name")
        except BackendError as e:
            logger.warning(f"Loading predictions failed: {e.message}")
            self.notifier.error(e.message, title="Error fetching predictions")
            return False

        self.predictions = [Prediction.from_row(row) for row in rows]
        self.comment_counts = {row["id"]: row.get("comment_count", 0) for row in rows}
        self.categories = {row["id"]: Category.model_validate(row) for row in categories}
        self.set_votes([Vote.model_validate(vote) for vote in votes])
        logger.info(f"Loaded {len(self.predictions)} predictions")
        return True

    # Snapshots

    def _snapshot(self, prediction_id: str) -> RecordSnapshot:
        index = self._index(prediction_id)
        record = self.predictions[index] if index is not None else None
        return RecordSnapshot(prediction_id, index if index is not None else 0, record)

    def _restore(self, snapshot: RecordSnapshot) -> None:
        current = self._index(snapshot.prediction_id)
        if snapshot.record is None:
            if current is not None:
                del self.predictions[current]
        elif current is not None:
            self.predictions[current] = snapshot.record
        else:
            self.predictions.insert(min(snapshot.index, len(self.predictions)), snapshot.record)

    def _put(self, record: Prediction) -> None:
        index = self._index(record.id)
        if index is not None:
            self.predictions[index] = record

    def _merge(self, row: dict) -> None:
        """Refine a local record with the server's row, keeping the joined display fields."""
        current = self.get(row["id"])
        if current is None:
            return
        self._put(Prediction.from_row({**current.model_dump(), **row}))

    async def _transact(
        self,
        action: str,
        apply: Callable[[], None],
        remote,
        restore: Callable[[], None],
        on_success: Optional[Callable] = None,
        success_message: Optional[str] = None
    ) -> bool:
        """
        Run one optimistic transaction.

        `apply` changes local state, `remote` is a zero-argument coroutine
        function doing the write, and `restore` undoes `apply`. Backend
        failures are reported through the notifier and turned into False.
        """
        apply()
        try:
            result = await remote()
        except BackendError as e:
            restore()
            logger.warning(f"{action} failed: {e.message}")
            self.notifier.error(e.message, title=f"Could not {action}")
            return False

        if on_success is not None:
            on_success(result)
        if success_message:
            self.notifier.success(success_message)
        return True

    def _own_record(self, prediction_id: str) -> Prediction:
        user = self.context.require_user()
        record = self.get(prediction_id)
        if record is None:
            raise ClientError("Prediction not found")
        if record.user_id != user.id:
            raise TransitionRejected("Only the author can change this prediction")
        return record

    # Mutations

    async def _display_name(self, user_id: str) -> str:
        try:
            rows = await self.backend.select("profiles", eq={"id": user_id})
        except BackendError as e:
            logger.debug(f"Profile lookup failed: {e.message}")
            return DEFAULT_DISPLAY_NAME
        if rows and rows[0].get("display_name"):
            return rows[0]["display_name"]
        return DEFAULT_DISPLAY_NAME

    async def add(
        self,
        content: str,
        category_id: Optional[str] = None,
        end_date: Optional[datetime] = None
    ) -> bool:
        user = self.context.require_user()
        content = _require_text(content, "Prediction")
        if end_date is None:
            raise ValidationFailed("End date is required")

        now = datetime.utcnow()
        category = self.categories.get(category_id) if category_id else None
        record = Prediction(
            id=str(uuid4()),
            content=content,
            user_id=user.id,
            display_name=await self._display_name(user.id),
            category_id=category_id,
            category_name=category.name if category else None,
            category_icon=category.icon if category else None,
            created_at=now,
            updated_at=now,
            end_date=end_date,
        )
        payload = jsonable_encoder({
            "id": record.id,
            "content": content,
            "user_id": user.id,
            "category_id": category_id,
            "end_date": end_date,
        })
        snapshot = RecordSnapshot(record.id, 0, None)

        return await self._transact(
            "add prediction",
            apply=lambda: self.predictions.insert(0, record),
            remote=lambda: self.backend.insert("predictions", payload),
            restore=lambda: self._restore(snapshot),
            on_success=self._merge,
            success_message="Prediction added",
        )

    async def edit(
        self,
        prediction_id: str,
        content: Optional[str] = None,
        category_id: Optional[str] = None,
        end_date: Optional[datetime] = None
    ) -> bool:
        record = self._own_record(prediction_id)
        if record.is_locked:
            raise TransitionRejected("Locked predictions cannot be edited")

        values = {}
        if content is not None:
            values["content"] = _require_text(content, "Prediction")
        if category_id is not None:
            values["category_id"] = category_id
        if end_date is not None:
            values["end_date"] = end_date
        if not values:
            raise ValidationFailed("Nothing to update")

        local = dict(values)
        if "category_id" in local:
            category = self.categories.get(category_id)
            local["category_name"] = category.name if category else None
            local["category_icon"] = category.icon if category else None
        updated = record.replace(updated_at=datetime.utcnow(), **local)
        snapshot = self._snapshot(prediction_id)

        async def remote():
            return _single_row(await self.backend.update("predictions", jsonable_encoder(values), eq={"id": prediction_id}))

        return await self._transact(
            "edit prediction",
            apply=lambda: self._put(updated),
            remote=remote,
            restore=lambda: self._restore(snapshot),
            on_success=self._merge,
            success_message="Prediction updated",
        )

    async def lock(self, prediction_id: str) -> bool:
        record = self._own_record(prediction_id)
        if record.is_locked:
            raise TransitionRejected("Prediction is already locked")

        locked_at = datetime.utcnow()
        snapshot = self._snapshot(prediction_id)
        values = jsonable_encoder({"is_locked": True, "locked_at": locked_at})

        async def remote():
            return _single_row(await self.backend.update("predictions", values, eq={"id": prediction_id}))

        return await self._transact(
            "lock prediction",
            apply=lambda: self._put(record.replace(is_locked=True, locked_at=locked_at)),
            remote=remote,
            restore=lambda: self._restore(snapshot),
            on_success=self._merge,
            success_message="Prediction locked",
        )

    async def delete(self, prediction_id: str) -> bool:
        record = self._own_record(prediction_id)
        if record.is_locked:
            raise TransitionRejected("Locked predictions cannot be deleted")

        snapshot = self._snapshot(prediction_id)

        def apply():
            del self.predictions[snapshot.index]

        async def remote():
            return _single_row(await self.backend.delete("predictions", eq={"id": prediction_id}))

        return await self._transact(
            "delete prediction",
            apply=apply,
            remote=remote,
            restore=lambda: self._restore(snapshot),
            success_message="Prediction deleted",
        )

    async def record_result(self, prediction_id: str, explanation: str, is_correct: bool) -> bool:
        record = self._own_record(prediction_id)
        if not record.is_locked:
            raise TransitionRejected("Lock the prediction before adding a result")
        if record.has_result:
            raise TransitionRejected("A result has already been recorded")
        explanation = _require_text(explanation, "Result explanation")
        if not isinstance(is_correct, bool):
            raise ValidationFailed("Choose whether the prediction was correct")

        result = {
            "result_text": explanation,
            "is_correct": is_correct,
            "result_added_at": datetime.utcnow(),
        }
        snapshot = self._snapshot(prediction_id)

        async def remote():
            return _single_row(await self.backend.update("predictions", jsonable_encoder(result), eq={"id": prediction_id}))

        return await self._transact(
            "add result",
            apply=lambda: self._put(record.replace(**result)),
            remote=remote,
            restore=lambda: self._restore(snapshot),
            on_success=self._merge,
            success_message="Result added",
        )

    async def vote(self, prediction_id: str, vote_type) -> bool:
        """
        Cast, change or retract the viewer's vote.

        No vote yet: insert. Same type again: retract. Other type: switch.
        """
        user = self.context.require_user()
        record = self.get(prediction_id)
        if record is None:
            raise ClientError("Prediction not found")
        if record.user_id == user.id:
            raise TransitionRejected("You cannot vote on your own prediction")
        try:
            vote_type = VoteType(vote_type)
        except ValueError:
            raise ValidationFailed(f"Unknown vote type: {vote_type}")

        saved_votes, saved_tallies = dict(self.my_votes), dict(self.tallies)
        existing = self.my_votes.get(prediction_id)
        tally = self.tally(prediction_id)

        def restore():
            self.my_votes, self.tallies = saved_votes, saved_tallies

        if existing is None:
            provisional = Vote(
                id=f"{PROVISIONAL_PREFIX}{uuid4()}",
                prediction_id=prediction_id,
                user_id=user.id,
                vote_type=vote_type,
            )

            def apply():
                self.my_votes[prediction_id] = provisional
                self.tallies[prediction_id] = tally.adjust(vote_type, 1)

            def on_success(row):
                # Only swap in the server id if nothing replaced the provisional vote meanwhile
                if self.my_votes.get(prediction_id) is provisional:
                    self.my_votes[prediction_id] = Vote.model_validate(row)

            payload = {"prediction_id": prediction_id, "user_id": user.id, "vote_type": vote_type.value}
            return await self._transact(
                "vote",
                apply=apply,
                remote=lambda: self.backend.insert("votes", payload),
                restore=restore,
                on_success=on_success,
            )

        # A vote whose insert is still in flight has no server id yet
        if existing.id.startswith(PROVISIONAL_PREFIX):
            target = {"prediction_id": prediction_id, "user_id": user.id}
        else:
            target = {"id": existing.id}

        if existing.vote_type is vote_type:
            def apply():
                del self.my_votes[prediction_id]
                self.tallies[prediction_id] = tally.adjust(vote_type, -1)

            async def remote():
                return _single_row(await self.backend.delete("votes", eq=target), "Vote")

            return await self._transact(
                "remove vote",
                apply=apply,
                remote=remote,
                restore=restore,
            )

        switched = existing.model_copy(update={"vote_type": vote_type})

        def apply():
            self.my_votes[prediction_id] = switched
            self.tallies[prediction_id] = tally.adjust(existing.vote_type, -1).adjust(vote_type, 1)

        async def remote():
            return _single_row(
                await self.backend.update("votes", {"vote_type": vote_type.value}, eq=target), "Vote"
            )

        def on_success(row):
            if self.my_votes.get(prediction_id) is switched:
                self.my_votes[prediction_id] = Vote.model_validate(row)

        return await self._transact(
            "change vote",
            apply=apply,
            remote=remote,
            restore=restore,
            on_success=on_success,
        )

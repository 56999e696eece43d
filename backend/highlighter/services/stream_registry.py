"""Highlighted stream records and their detection state."""
import logging
from typing import List, Optional

from highlighter.models.stream import DetectionState, Game, HighlightedStream
from highlighter.services.clip_ledger import ClipLedger
from highlighter.services.commands import AddStream, RemoveStream, UpdateStream
from highlighter.services.state_store import StateStore

logger = logging.getLogger(__name__)


class StreamRegistry:
    """Owns HighlightedStream records. Clips are reached only through the ledger."""

    def __init__(self, store: StateStore, ledger: ClipLedger):
        self.store = store
        self.ledger = ledger

    def get(self, stream_id: str) -> Optional[HighlightedStream]:
        return self.store.state.streams.get(stream_id)

    def list(self) -> List[HighlightedStream]:
        return sorted(self.store.state.streams.values(), key=lambda s: s.date, reverse=True)

    def get_game(self, stream_id: str) -> str:
        stream = self.get(stream_id)
        return stream.game if stream else Game.UNSET.value

    def add(self, stream: HighlightedStream):
        self.store.apply(AddStream(stream))

    def update_progress(self, stream_id: str, progress: float):
        stream = self.get(stream_id)
        if stream is None or stream.state != DetectionState.IN_PROGRESS:
            return
        self.store.apply(UpdateStream(stream_id, {"progress": min(100.0, max(0.0, progress))}))

    def set_state(
        self,
        stream_id: str,
        state: DetectionState,
        error_code: Optional[int] = None,
    ):
        """Move a stream into a terminal detection state."""
        changes = {"state": state, "error_code": error_code}
        if state == DetectionState.FINISHED:
            changes["progress"] = 100.0
        self.store.apply(UpdateStream(stream_id, changes))
        logger.info(f"Stream {stream_id} is now {state.value}")

    def finalize(self, stream_id: str):
        """Drop the cancellation token once detection stopped."""
        self.store.apply(UpdateStream(stream_id, {"cancellation_token": None}))

    async def remove_stream(self, stream_id: str, delete_clips: bool = True):
        """Remove a stream and detach or delete its clips."""
        stream = self.get(stream_id)
        if stream is not None and stream.cancellation_token is not None:
            stream.cancellation_token.cancel()
        self.store.apply(RemoveStream(stream_id))

        for clip in await self.ledger.query(stream_id):
            await self.ledger.remove(clip.path, stream_id, delete_from_disk=delete_clips)

    def recover_interrupted(self) -> List[str]:
        """
        Mark streams left InProgress by a previous run as canceled.

        Detection never resumes across restarts. Running this again finds
        nothing to do.

        Returns:
            Ids of the streams that were recovered
        """
        recovered = []
        for stream in list(self.store.state.streams.values()):
            if stream.state != DetectionState.IN_PROGRESS:
                continue
            self.store.apply(UpdateStream(stream.id, {
                "state": DetectionState.CANCELED_BY_USER,
                "progress": 0.0,
                "cancellation_token": None,
            }))
            recovered.append(stream.id)
        if recovered:
            logger.info(f"Recovered {len(recovered)} interrupted detections")
        return recovered

"""Persisted state store: versioned snapshots keyed by namespace."""
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from highlighter.models.snapshot import StateSnapshot
from highlighter.models.state import SCHEMA_VERSION

logger = logging.getLogger(__name__)


@dataclass
class LoadedSnapshot:
    """Raw snapshot as stored, before migration."""
    schema_version: int
    payload: Dict[str, Any]


def _migrate_streams_to_dictionary(payload: Dict[str, Any]) -> Dict[str, Any]:
    """v0 -> v1: the stream list used to be an array, it is now keyed by id."""
    legacy = payload.pop("highlighted_streams", None)
    streams = payload.get("streams") or {}
    if isinstance(legacy, list) and legacy and not streams:
        streams = {s["id"]: s for s in legacy if isinstance(s, dict) and s.get("id")}
    payload["streams"] = streams
    return payload


def _migrate_ai_moments_to_inputs(payload: Dict[str, Any]) -> Dict[str, Any]:
    """v1 -> v2: AI clip `moments` were renamed to `inputs`."""
    for clip in (payload.get("clips") or {}).values():
        ai_info = clip.get("ai_info")
        if ai_info and "moments" in ai_info:
            ai_info["inputs"] = ai_info.pop("moments")
    return payload


# Index i migrates a payload from version i to i + 1
MIGRATIONS: List[Callable[[Dict[str, Any]], Dict[str, Any]]] = [
    _migrate_streams_to_dictionary,
    _migrate_ai_moments_to_inputs,
]


def migrate_snapshot(payload: Dict[str, Any], from_version: int) -> Dict[str, Any]:
    """
    Bring a stored payload up to SCHEMA_VERSION.

    Args:
        payload: Decoded snapshot document
        from_version: Schema version stored with the document

    Returns:
        Migrated payload (the input dict is modified in place)
    """
    if from_version > SCHEMA_VERSION:
        raise ValueError(
            f"Snapshot version {from_version} is newer than supported version {SCHEMA_VERSION}"
        )
    for version in range(from_version, SCHEMA_VERSION):
        logger.info(f"Migrating highlighter state from v{version} to v{version + 1}")
        payload = MIGRATIONS[version](payload)
    return payload


class SnapshotRepository:
    """Loads and saves state documents through SQLAlchemy."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def load(self, namespace: str) -> Optional[LoadedSnapshot]:
        """Get the stored snapshot for a namespace, if any."""
        async with self._session_maker() as session:
            row = await session.get(StateSnapshot, namespace)
            if row is None:
                return None
            try:
                payload = json.loads(row.payload)
            except json.JSONDecodeError:
                logger.error(f"Stored state for '{namespace}' is not valid JSON, starting fresh")
                return None
            return LoadedSnapshot(schema_version=row.schema_version, payload=payload)

    async def save(self, namespace: str, payload: Dict[str, Any], schema_version: int = SCHEMA_VERSION):
        """Insert or replace the snapshot for a namespace."""
        async with self._session_maker() as session:
            row = await session.get(StateSnapshot, namespace)
            if row is None:
                row = StateSnapshot(namespace=namespace)
                session.add(row)
            row.schema_version = schema_version
            row.payload = json.dumps(payload)
            await session.commit()

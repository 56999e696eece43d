"""Persisted state snapshot model."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text

from highlighter.db.database import Base


class StateSnapshot(Base):
    """One serialized state document per namespace."""

    __tablename__ = "state_snapshots"

    namespace = Column(String(255), primary_key=True)
    schema_version = Column(Integer, nullable=False, default=0)
    payload = Column(Text, nullable=False)  # JSON document
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<StateSnapshot(namespace='{self.namespace}', version={self.schema_version})>"

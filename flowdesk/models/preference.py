"""
Database model for per-workflow client preferences.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime
from sqlalchemy.types import JSON
from flowdesk.models.base import Base


def _utcnow():
    return datetime.now(timezone.utc)


class WorkflowPreference(Base):
    """
    Execution options and view mode remembered for one workflow.
    """
    __tablename__ = "workflow_preferences"

    workflow_id = Column(String(64), primary_key=True)
    execution_options = Column(JSON, nullable=True, doc="Serialized ExecutionOptions payload")
    mode = Column(String(16), nullable=True, doc="Last-used execution view mode")
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self):
        return f"<WorkflowPreference(workflow_id={self.workflow_id}, mode={self.mode})>"

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "workflow_id": self.workflow_id,
            "execution_options": self.execution_options,
            "mode": self.mode,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }

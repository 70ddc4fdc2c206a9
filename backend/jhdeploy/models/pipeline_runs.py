"""
Database models for pipeline runs
Tracks run history and per-stage outcomes
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Text,
    Integer,
    Float,
    JSON,
    ForeignKey,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from jhdeploy.db.session import Base
from jhdeploy.models.stage_results import PipelineStatus, StageOutcome


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineRun(Base):
    """One execution of the deployment pipeline."""

    __tablename__ = "pipeline_runs"

    id = Column(String(36), primary_key=True, default=_new_id)
    build_number = Column(Integer, nullable=False, unique=True, index=True)
    image_tag = Column(String(255), nullable=False)
    status = Column(
        SQLEnum(PipelineStatus),
        nullable=False,
        default=PipelineStatus.PENDING,
        index=True,
    )
    triggered_by = Column(String(255), nullable=False, default="cli")
    options = Column(JSON, nullable=True)  # skip list, policy override
    output = Column(Text, nullable=True)  # Final summary

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    stages = relationship(
        "PipelineStageRecord",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="PipelineStageRecord.position",
    )

    def to_dict(self, include_stages: bool = False):
        """Convert to dictionary for API responses"""
        data = {
            "id": self.id,
            "build_number": self.build_number,
            "image_tag": self.image_tag,
            "status": self.status.value if self.status else None,
            "triggered_by": self.triggered_by,
            "options": self.options,
            "output": self.output,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "duration": self._calculate_duration(),
        }
        if include_stages:
            data["stages"] = [stage.to_dict() for stage in self.stages]
        return data

    def _calculate_duration(self):
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class PipelineStageRecord(Base):
    """Outcome of one stage within a run."""

    __tablename__ = "pipeline_stage_records"

    id = Column(String(36), primary_key=True, default=_new_id)
    run_id = Column(
        String(36),
        ForeignKey("pipeline_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False)
    name = Column(String(100), nullable=False)  # e.g. "build", "deploy"
    outcome = Column(SQLEnum(StageOutcome), nullable=False)
    message = Column(Text)
    details = Column(JSON, nullable=False, default=dict)
    started_at = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Float, nullable=False, default=0.0)

    run = relationship("PipelineRun", back_populates="stages")

    def to_dict(self):
        return {
            "position": self.position,
            "name": self.name,
            "outcome": self.outcome.value if self.outcome else None,
            "message": self.message,
            "details": self.details or {},
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "duration": self.duration,
        }

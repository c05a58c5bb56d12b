"""Durable enhancement queue and deployment records backed by SQLAlchemy.

All status writes are single-row conditional updates (``UPDATE ... WHERE
id = :id AND status = :expected``); the affected row count tells the caller
whether it won.  Nothing here holds a row lock across calls.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    func,
    select,
    update,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from monitor_agent.errors import ConcurrentUpdateError
from monitor_agent.schemas import (
    ACTIVE_STATUSES,
    DeploymentStatus,
    DueDeployment,
    EnhancementRecord,
    EnhancementStatus,
)
from monitor_agent.state_machine import TERMINAL_STATUSES, validate_transition

logger = logging.getLogger(__name__)

Base = declarative_base()

# Columns a transition may set alongside the status.
_TRANSITION_FIELDS = frozenset(
    {"plan_json", "branch_name", "pr_number", "pr_url", "notes", "error_message"}
)


def utcnow() -> dt.datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class Enhancement(Base):
    __tablename__ = "enhancements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String(32), nullable=False, default=EnhancementStatus.PENDING.value, index=True)
    priority = Column(Integer, nullable=False, default=5)
    requested_by = Column(String(255), nullable=False, default="")
    assigned_to = Column(String(255), nullable=True)
    branch_name = Column(String(255), nullable=True)
    pr_number = Column(Integer, nullable=True)
    pr_url = Column(String(500), nullable=True)
    plan_json = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class Deployment(Base):
    __tablename__ = "deployments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    enhancement_id = Column(Integer, ForeignKey("enhancements.id"), nullable=False, index=True)
    scheduled_date = Column(DateTime, nullable=False)
    status = Column(String(32), nullable=False, default=DeploymentStatus.PENDING.value, index=True)
    deployed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Engine / session management
# ---------------------------------------------------------------------------


class Database:
    """Engine plus session factory for one database URL."""

    def __init__(self, url: str) -> None:
        self.url = url
        kwargs: dict[str, Any] = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
            if ":memory:" in url or url.rstrip("/") == "sqlite:":
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Enhancements
# ---------------------------------------------------------------------------


class EnhancementStore:
    """Queue of enhancement requests and the only writer of their rows."""

    def __init__(self, database: Database) -> None:
        self.db = database

    def create(
        self,
        title: str,
        description: str = "",
        *,
        requested_by: str = "",
        priority: int = 5,
        assigned_to: str | None = None,
    ) -> EnhancementRecord:
        now = utcnow()
        row = Enhancement(
            title=title,
            description=description,
            requested_by=requested_by,
            priority=priority,
            assigned_to=assigned_to,
            status=EnhancementStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        with self.db.session() as db:
            db.add(row)
            db.flush()
            record = EnhancementRecord.model_validate(row)
        logger.info("[#%s] Created enhancement: %s", record.id, title)
        return record

    def get(self, enhancement_id: int) -> EnhancementRecord | None:
        with self.db.session() as db:
            row = db.get(Enhancement, enhancement_id)
            return EnhancementRecord.model_validate(row) if row is not None else None

    def get_pending(self, limit: int | None = None) -> list[EnhancementRecord]:
        """Pending requests, highest priority first, oldest first within a priority."""
        stmt = (
            select(Enhancement)
            .where(Enhancement.status == EnhancementStatus.PENDING.value)
            .order_by(Enhancement.priority.desc(), Enhancement.created_at.asc(), Enhancement.id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.db.session() as db:
            return [EnhancementRecord.model_validate(r) for r in db.scalars(stmt)]

    def active_count(self) -> int:
        stmt = select(func.count(Enhancement.id)).where(
            Enhancement.status.in_([s.value for s in ACTIVE_STATUSES])
        )
        with self.db.session() as db:
            return int(db.scalar(stmt) or 0)

    def claim(self, enhancement_id: int) -> bool:
        """Move ``pending -> processing``; return True only for the caller that won."""
        now = utcnow()
        stmt = (
            update(Enhancement)
            .where(
                Enhancement.id == enhancement_id,
                Enhancement.status == EnhancementStatus.PENDING.value,
            )
            .values(
                status=EnhancementStatus.PROCESSING.value,
                started_at=now,
                updated_at=now,
            )
        )
        with self.db.session() as db:
            won = db.execute(stmt).rowcount > 0
        if won:
            logger.info("[#%s] Claimed for processing", enhancement_id)
        else:
            logger.debug("[#%s] Claim lost; already taken", enhancement_id)
        return won

    def transition(
        self,
        enhancement_id: int,
        current: EnhancementStatus,
        new: EnhancementStatus,
        **fields: Any,
    ) -> EnhancementRecord:
        """Compare-and-set the status from *current* to *new*.

        Extra keyword arguments set the matching columns in the same update.
        Raises :class:`StateTransitionError` for illegal moves and
        :class:`ConcurrentUpdateError` when the row is no longer in *current*.
        """
        validate_transition(current, new)
        now = utcnow()
        values: dict[str, Any] = {"status": new.value}
        if new is EnhancementStatus.PROCESSING:
            values["started_at"] = now
        if new is EnhancementStatus.COMPLETED:
            values["completed_at"] = now
        record = self._compare_and_set(enhancement_id, current, {**values, **fields}, now)
        logger.info("[#%s] %s -> %s", enhancement_id, current.value, new.value)
        return record

    def update_fields(
        self,
        enhancement_id: int,
        current: EnhancementStatus,
        **fields: Any,
    ) -> EnhancementRecord:
        """Set columns on a row that must still be in *current*, keeping its status."""
        return self._compare_and_set(enhancement_id, current, dict(fields), utcnow())

    def _compare_and_set(
        self,
        enhancement_id: int,
        current: EnhancementStatus,
        values: dict[str, Any],
        now: dt.datetime,
    ) -> EnhancementRecord:
        unknown = set(values) - _TRANSITION_FIELDS - {"status", "started_at", "completed_at"}
        if unknown:
            raise ValueError(f"Cannot set {sorted(unknown)} on an enhancement")
        stmt = (
            update(Enhancement)
            .where(Enhancement.id == enhancement_id, Enhancement.status == current.value)
            .values(updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        with self.db.session() as db:
            if db.execute(stmt).rowcount == 0:
                raise ConcurrentUpdateError(
                    f"Enhancement #{enhancement_id} is no longer '{current.value}'"
                )
            row = db.get(Enhancement, enhancement_id)
            return EnhancementRecord.model_validate(row)

    def mark_failed(self, enhancement_id: int, error_message: str) -> bool:
        """Record a failure from whatever non-terminal status the row is in.

        Returns False when the row is missing or already terminal.
        """
        for _ in range(3):
            record = self.get(enhancement_id)
            if record is None or record.status in TERMINAL_STATUSES:
                return False
            try:
                self.transition(
                    enhancement_id,
                    record.status,
                    EnhancementStatus.FAILED,
                    error_message=error_message,
                )
                return True
            except ConcurrentUpdateError:
                continue
        return False

    def fail_stale(self, older_than_minutes: int, *, now: dt.datetime | None = None) -> list[int]:
        """Fail active enhancements untouched for longer than *older_than_minutes*."""
        if older_than_minutes <= 0:
            return []
        cutoff = (now or utcnow()) - dt.timedelta(minutes=older_than_minutes)
        stmt = select(Enhancement.id, Enhancement.status).where(
            Enhancement.status.in_([s.value for s in ACTIVE_STATUSES]),
            Enhancement.updated_at < cutoff,
        )
        with self.db.session() as db:
            stale = list(db.execute(stmt).all())
        failed: list[int] = []
        for enhancement_id, status in stale:
            try:
                self.transition(
                    enhancement_id,
                    EnhancementStatus(status),
                    EnhancementStatus.FAILED,
                    error_message=(
                        f"Stale: no progress in '{status}' for over {older_than_minutes} minutes"
                    ),
                )
            except ConcurrentUpdateError:
                continue
            failed.append(enhancement_id)
            logger.warning("[#%s] Marked stale in status %s", enhancement_id, status)
        return failed


# ---------------------------------------------------------------------------
# Deployments
# ---------------------------------------------------------------------------


class DeploymentStore:
    """Scheduled deployments; status moves only through the scheduler."""

    def __init__(self, database: Database) -> None:
        self.db = database

    def create(
        self,
        enhancement_id: int,
        scheduled_date: dt.datetime,
        *,
        notes: str | None = None,
    ) -> int:
        row = Deployment(
            enhancement_id=enhancement_id,
            scheduled_date=scheduled_date,
            status=DeploymentStatus.PENDING.value,
            notes=notes,
        )
        with self.db.session() as db:
            db.add(row)
            db.flush()
            return int(row.id)

    def get(self, deployment_id: int) -> Deployment | None:
        with self.db.session() as db:
            row = db.get(Deployment, deployment_id)
            if row is not None:
                db.expunge(row)
            return row

    def due(self, now: dt.datetime | None = None) -> list[DueDeployment]:
        """Pending deployments scheduled at or before *now*, earliest first."""
        stmt = (
            select(Deployment, Enhancement)
            .join(Enhancement, Deployment.enhancement_id == Enhancement.id)
            .where(
                Deployment.status == DeploymentStatus.PENDING.value,
                Deployment.scheduled_date <= (now or utcnow()),
            )
            .order_by(Deployment.scheduled_date.asc(), Deployment.id.asc())
        )
        out: list[DueDeployment] = []
        with self.db.session() as db:
            for dep, enh in db.execute(stmt).all():
                out.append(
                    DueDeployment(
                        id=dep.id,
                        enhancement_id=dep.enhancement_id,
                        scheduled_date=dep.scheduled_date,
                        status=DeploymentStatus(dep.status),
                        notes=dep.notes,
                        title=enh.title,
                        description=enh.description or "",
                        requested_by=enh.requested_by or "",
                        branch_name=enh.branch_name,
                        pr_number=enh.pr_number,
                    )
                )
        return out

    def start(self, deployment_id: int) -> bool:
        """Move ``pending -> in-progress``; False when another run got there first."""
        stmt = (
            update(Deployment)
            .where(
                Deployment.id == deployment_id,
                Deployment.status == DeploymentStatus.PENDING.value,
            )
            .values(status=DeploymentStatus.IN_PROGRESS.value)
        )
        with self.db.session() as db:
            return db.execute(stmt).rowcount > 0

    def finish(
        self,
        deployment_id: int,
        status: DeploymentStatus,
        notes: str | None = None,
    ) -> bool:
        """Close an in-progress deployment as deployed or failed.

        ``notes=None`` keeps the existing notes; ``deployed_at`` is stamped
        only for ``deployed``.
        """
        if status not in (DeploymentStatus.DEPLOYED, DeploymentStatus.FAILED):
            raise ValueError(f"Deployment cannot finish as '{status.value}'")
        values: dict[str, Any] = {"status": status.value}
        if notes is not None:
            values["notes"] = notes
        if status is DeploymentStatus.DEPLOYED:
            values["deployed_at"] = utcnow()
        stmt = (
            update(Deployment)
            .where(
                Deployment.id == deployment_id,
                Deployment.status == DeploymentStatus.IN_PROGRESS.value,
            )
            .values(**values)
        )
        with self.db.session() as db:
            return db.execute(stmt).rowcount > 0

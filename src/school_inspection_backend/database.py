"""
Async SQL persistence for the user registry and inspection records.

This module provides:
- ``Database``: a lazily connected, process-wide engine holder
- ``UserRegistry``: lookup and registration of UDISE codes
- ``InspectionStore``: schema-validated creation and retrieval of inspections

The engine is opened on first use and shared by every request. Concurrent
first callers wait on the same connection attempt; a failed attempt is
forgotten so the next call tries again.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import ValidationError
from sqlalchemy import JSON, DateTime, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .errors import FailureKind, SubmissionFailure
from .models import InspectionDocument, InspectionRecord, UserRecord
from .utils import is_valid_udise_code

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    udise_code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    school_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class SchoolInspection(Base):
    __tablename__ = "school_inspections"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    school_name: Mapped[str] = mapped_column(String(255))
    board_file: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    state: Mapped[str] = mapped_column(String(255))
    district: Mapped[str] = mapped_column(String(255))
    block: Mapped[str] = mapped_column(String(255))
    udise_code: Mapped[str] = mapped_column(String(32), index=True)
    rooms: Mapped[List[Dict[str, List[str]]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class Database:
    """
    Process-wide database handle.

    Attributes:
        url: SQLAlchemy async connection URL (e.g. ``sqlite+aiosqlite:///data/inspections.db``)
        echo: Whether SQLAlchemy logs emitted SQL
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None
        self._pending: Optional[asyncio.Future[AsyncEngine]] = None

    @property
    def connected(self) -> bool:
        return self._engine is not None

    async def _open(self) -> AsyncEngine:
        engine = create_async_engine(self.url, echo=self.echo, pool_pre_ping=True)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception:
            await engine.dispose()
            raise
        logger.info("Database connection established")
        return engine

    async def connect(self) -> AsyncEngine:
        """
        Return the shared engine, opening it on first use.

        Only one connection attempt runs at a time. It is shielded so a caller
        cancelled by its own timeout does not abort the attempt for the others.
        """
        if self._engine is not None:
            return self._engine

        if self._pending is None:
            attempt = asyncio.ensure_future(self._open())
            attempt.add_done_callback(self._forget_failed_attempt)
            self._pending = attempt
        pending = self._pending

        try:
            engine = await asyncio.shield(pending)
        except Exception:
            if self._pending is pending:
                self._pending = None
            raise

        if self._engine is None:
            self._engine = engine
            self._sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
            self._pending = None
        return self._engine

    def _forget_failed_attempt(self, attempt: asyncio.Future[AsyncEngine]) -> None:
        # Runs even when every waiter was cancelled, so a failed attempt is never reused.
        if attempt.cancelled():
            failed = True
        else:
            failed = attempt.exception() is not None
        if failed:
            logger.warning("Database connection attempt failed; the next call will retry")
            if self._pending is attempt:
                self._pending = None

    async def session(self) -> AsyncSession:
        await self.connect()
        assert self._sessionmaker is not None
        return self._sessionmaker()

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        self._pending = None


def _user_to_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        udise_code=user.udise_code,
        school_name=user.school_name,
        created_at=user.created_at,
    )


def _inspection_to_record(row: SchoolInspection) -> InspectionRecord:
    return InspectionRecord(
        id=row.id,
        school_name=row.school_name,
        board_file=row.board_file,
        state=row.state,
        district=row.district,
        block=row.block,
        udise_code=row.udise_code,
        rooms=row.rooms,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def describe_validation_error(exc: ValidationError) -> str:
    """Summarize a pydantic error as ``field: reason`` pairs without input values."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "document"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def validate_document(document: Dict[str, Any]) -> InspectionDocument:
    """Check an inspection document's shape, raising ``VALIDATION_FAILED`` on rejection."""
    try:
        return InspectionDocument.model_validate(document)
    except ValidationError as exc:
        raise SubmissionFailure(
            FailureKind.VALIDATION_FAILED,
            f"Validation failed: {describe_validation_error(exc)}",
        ) from exc


class UserRegistry:
    """Registered users, keyed by UDISE code."""

    def __init__(self, database: Database) -> None:
        self.database = database

    async def find_by_udise_code(self, udise_code: str) -> Optional[UserRecord]:
        async with await self.database.session() as session:
            result = await session.execute(select(User).where(User.udise_code == udise_code))
            user = result.scalars().first()
            return _user_to_record(user) if user else None

    async def register(self, udise_code: str, school_name: Optional[str] = None) -> UserRecord:
        """
        Register a UDISE code so it may submit inspections.

        Raises:
            ValueError: If the code is malformed or already registered
        """
        if not is_valid_udise_code(udise_code):
            raise ValueError(f"Invalid UDISE code: {udise_code!r}")

        user = User(id=uuid4().hex, udise_code=udise_code, school_name=school_name, created_at=_utcnow())
        async with await self.database.session() as session:
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ValueError(f"UDISE code {udise_code} is already registered") from exc
        logger.info(f"Registered UDISE code {udise_code}")
        return _user_to_record(user)


class InspectionStore:
    """Inspection records. Records are only ever created, never updated."""

    def __init__(self, database: Database) -> None:
        self.database = database

    async def create(self, document: Dict[str, Any]) -> InspectionRecord:
        """
        Validate and persist an inspection document.

        Args:
            document: Inspection fields by name or camelCase alias

        Returns:
            The stored record including its id and timestamps

        Raises:
            SubmissionFailure: ``VALIDATION_FAILED`` if the document's shape is rejected
        """
        validated = validate_document(document)
        now = _utcnow()
        row = SchoolInspection(id=uuid4().hex, created_at=now, updated_at=now, **validated.model_dump())
        async with await self.database.session() as session:
            session.add(row)
            await session.commit()
        logger.info(f"Stored inspection {row.id} for UDISE code {row.udise_code} with {len(row.rooms)} room(s)")
        return _inspection_to_record(row)

    async def get(self, inspection_id: str) -> Optional[InspectionRecord]:
        async with await self.database.session() as session:
            row = await session.get(SchoolInspection, inspection_id)
            return _inspection_to_record(row) if row else None

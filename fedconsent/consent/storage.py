"""
Consent storage adapters for fedconsent
Database tables, row mapping and transactions for consents and consent hubs
"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Iterator, List, Optional
import threading

import structlog
from sqlalchemy import (
    create_engine, Column, Integer, String, DateTime, Boolean, ForeignKey, func
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import ConsentStatus
from ..audit import AuditEvent
from ..config import get_config
from ..constants import StorageDefaults
from ..exceptions import FedConsentError, StorageError

logger = structlog.get_logger(__name__)

Base = declarative_base()


class ConsentHubDB(Base):
    """SQLAlchemy model for consent hubs"""
    __tablename__ = "consent_hubs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, index=True)
    enforce_consents = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    created_by = Column(String, nullable=False)
    modified_at = Column(DateTime(timezone=True), nullable=False)
    modified_by = Column(String, nullable=False)


class ConsentHubFacilityDB(Base):
    """SQLAlchemy model for hub-facility associations"""
    __tablename__ = "consent_hubs_facilities"

    consent_hub_id = Column(Integer, ForeignKey("consent_hubs.id"), primary_key=True)
    # a facility is enforced by exactly one hub
    facility_id = Column(Integer, primary_key=True, unique=True)


class ConsentDB(Base):
    """SQLAlchemy model for consents"""
    __tablename__ = "consents"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    consent_hub_id = Column(Integer, ForeignKey("consent_hubs.id"), nullable=False, index=True)
    status = Column(String, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    created_by = Column(String, nullable=False)
    modified_at = Column(DateTime(timezone=True), nullable=False)
    modified_by = Column(String, nullable=False)


class ConsentAttrDefDB(Base):
    """SQLAlchemy model for the attribute snapshot of a consent"""
    __tablename__ = "consent_attr_defs"

    consent_id = Column(Integer, ForeignKey("consents.id"), primary_key=True)
    attr_id = Column(Integer, primary_key=True)


@dataclass(frozen=True)
class ConsentRow:
    """Typed view of a row in consents"""
    id: int
    user_id: int
    consent_hub_id: int
    status: ConsentStatus
    created_at: datetime
    created_by: str
    modified_at: datetime
    modified_by: str


@dataclass(frozen=True)
class ConsentHubRow:
    """Typed view of a row in consent_hubs"""
    id: int
    name: str
    enforce_consents: bool
    created_at: datetime
    created_by: str
    modified_at: datetime
    modified_by: str


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored here is UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _consent_row(db_consent: ConsentDB) -> ConsentRow:
    return ConsentRow(
        id=int(db_consent.id),
        user_id=int(db_consent.user_id),
        consent_hub_id=int(db_consent.consent_hub_id),
        status=ConsentStatus(db_consent.status),
        created_at=_as_utc(db_consent.created_at),
        created_by=str(db_consent.created_by),
        modified_at=_as_utc(db_consent.modified_at),
        modified_by=str(db_consent.modified_by),
    )


def _consent_hub_row(db_hub: ConsentHubDB) -> ConsentHubRow:
    return ConsentHubRow(
        id=int(db_hub.id),
        name=str(db_hub.name),
        enforce_consents=bool(db_hub.enforce_consents),
        created_at=_as_utc(db_hub.created_at),
        created_by=str(db_hub.created_by),
        modified_at=_as_utc(db_hub.modified_at),
        modified_by=str(db_hub.modified_by),
    )


class UnitOfWork:
    """Session of one transaction plus the audit events it produced"""

    def __init__(self, session: Session):
        self.session = session
        self.events: List[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)


def _build_engine(database_url: str, echo: bool):
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            # one shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


class ConsentStore:
    """Storage adapter for consents and consent hubs"""

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None,
                 lock_timeout: Optional[float] = None):
        config = get_config()
        self.database_url = database_url or config.database_url
        self.lock_timeout = config.lock_timeout_seconds if lock_timeout is None else lock_timeout
        self.engine = _build_engine(self.database_url, config.echo_sql if echo is None else echo)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        # Hub ids map onto a fixed set of stripes
        self._hub_locks: List[threading.RLock] = [
            threading.RLock() for _ in range(StorageDefaults.HUB_LOCK_STRIPES)
        ]
        # Sessions on a StaticPool share one connection and so one database transaction
        self._connection_lock: Optional[threading.RLock] = (
            threading.RLock() if isinstance(self.engine.pool, StaticPool) else None
        )

        # Create tables
        Base.metadata.create_all(bind=self.engine)

    def _hub_lock(self, consent_hub_id: int) -> threading.RLock:
        return self._hub_locks[consent_hub_id % len(self._hub_locks)]

    @contextmanager
    def _holding(self, lock: Optional[threading.RLock], what: str, **context) -> Iterator[None]:
        if lock is None:
            yield
            return
        if not lock.acquire(timeout=self.lock_timeout):
            logger.error("Timed out waiting for lock", lock=what, **context)
            raise StorageError(f"Timed out waiting for {what} lock",
                               reason=", ".join(f"{k}={v}" for k, v in context.items()) or None)
        try:
            yield
        finally:
            lock.release()

    @contextmanager
    def transaction(self, consent_hub_id: Optional[int] = None) -> Iterator[UnitOfWork]:
        """Run a block atomically, optionally serialized on one consent hub.

        Everything done through the yielded UnitOfWork commits together or
        not at all. Database failures surface as StorageError.
        """
        hub_lock = self._hub_lock(consent_hub_id) if consent_hub_id is not None else None
        with self._holding(hub_lock, "consent hub", consent_hub_id=consent_hub_id), \
                self._holding(self._connection_lock, "connection"):
            with self.SessionLocal() as session:
                try:
                    uow = UnitOfWork(session)
                    yield uow
                    session.commit()
                except SQLAlchemyError as e:
                    session.rollback()
                    logger.error("Transaction rolled back", error=str(e))
                    raise StorageError(reason=str(e)) from e
                except FedConsentError as e:
                    session.rollback()
                    if not e.expected:
                        logger.error("Transaction aborted", error_code=e.error_code, error=e.message)
                    raise
                except BaseException:
                    session.rollback()
                    raise

    @contextmanager
    def reading(self) -> Iterator[Session]:
        """Session for read-only queries"""
        with self._holding(self._connection_lock, "connection"), self.SessionLocal() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                logger.error("Query failed", error=str(e))
                raise StorageError(reason=str(e)) from e

    # =========================================================================
    # CONSENTS
    # =========================================================================

    def count_consents(self, session: Session, consent_id: int) -> int:
        return session.query(func.count(ConsentDB.id)).filter(ConsentDB.id == consent_id).scalar() or 0

    def get_consent_row(self, session: Session, consent_id: int) -> Optional[ConsentRow]:
        db_consent = session.query(ConsentDB).filter_by(id=consent_id).first()
        return _consent_row(db_consent) if db_consent else None

    def find_consent_rows(self, session: Session, user_id: Optional[int] = None,
                          consent_hub_id: Optional[int] = None,
                          status: Optional[ConsentStatus] = None) -> List[ConsentRow]:
        query = session.query(ConsentDB)
        if user_id is not None:
            query = query.filter(ConsentDB.user_id == user_id)
        if consent_hub_id is not None:
            query = query.filter(ConsentDB.consent_hub_id == consent_hub_id)
        if status is not None:
            query = query.filter(ConsentDB.status == status.value)
        return [_consent_row(c) for c in query.order_by(ConsentDB.id).all()]

    def insert_consent(self, session: Session, user_id: int, consent_hub_id: int,
                       status: ConsentStatus, attr_ids: List[int], actor: str,
                       consent_id: Optional[int] = None) -> ConsentRow:
        now = datetime.now(UTC)
        db_consent = ConsentDB(
            id=consent_id,
            user_id=user_id,
            consent_hub_id=consent_hub_id,
            status=status.value,
            created_at=now,
            created_by=actor,
            modified_at=now,
            modified_by=actor,
        )
        session.add(db_consent)
        session.flush()

        for attr_id in sorted(set(attr_ids)):
            session.add(ConsentAttrDefDB(consent_id=db_consent.id, attr_id=attr_id))
        session.flush()

        logger.info("Stored consent", consent_id=db_consent.id, user_id=user_id,
                    consent_hub_id=consent_hub_id, attributes=len(attr_ids))
        return _consent_row(db_consent)

    def update_consent_status(self, session: Session, consent_id: int,
                              status: ConsentStatus, actor: str) -> int:
        return session.query(ConsentDB).filter_by(id=consent_id).update(
            {"status": status.value, "modified_at": datetime.now(UTC), "modified_by": actor},
            synchronize_session="evaluate",
        )

    def delete_consent_row(self, session: Session, consent_id: int) -> int:
        """Delete a consent together with its attribute snapshot"""
        session.query(ConsentAttrDefDB).filter_by(consent_id=consent_id).delete(
            synchronize_session=False
        )
        return session.query(ConsentDB).filter_by(id=consent_id).delete(synchronize_session=False)

    def get_consent_attr_ids(self, session: Session, consent_id: int) -> List[int]:
        rows = session.query(ConsentAttrDefDB.attr_id).filter_by(consent_id=consent_id).all()
        return sorted(int(r.attr_id) for r in rows)

    # =========================================================================
    # CONSENT HUBS
    # =========================================================================

    def count_consent_hubs(self, session: Session, consent_hub_id: int) -> int:
        return session.query(func.count(ConsentHubDB.id)).filter(
            ConsentHubDB.id == consent_hub_id
        ).scalar() or 0

    def get_consent_hub_row(self, session: Session, consent_hub_id: int,
                            for_update: bool = False) -> Optional[ConsentHubRow]:
        query = session.query(ConsentHubDB).filter_by(id=consent_hub_id)
        if for_update:
            query = query.with_for_update()
        db_hub = query.first()
        return _consent_hub_row(db_hub) if db_hub else None

    def find_consent_hub_rows_by_name(self, session: Session, name: str) -> List[ConsentHubRow]:
        db_hubs = session.query(ConsentHubDB).filter_by(name=name).order_by(ConsentHubDB.id).all()
        return [_consent_hub_row(h) for h in db_hubs]

    def all_consent_hub_rows(self, session: Session) -> List[ConsentHubRow]:
        return [_consent_hub_row(h) for h in session.query(ConsentHubDB).order_by(ConsentHubDB.id).all()]

    def insert_consent_hub(self, session: Session, name: str, enforce_consents: bool,
                           actor: str, consent_hub_id: Optional[int] = None) -> ConsentHubRow:
        now = datetime.now(UTC)
        db_hub = ConsentHubDB(
            id=consent_hub_id or None,
            name=name,
            enforce_consents=enforce_consents,
            created_at=now,
            created_by=actor,
            modified_at=now,
            modified_by=actor,
        )
        session.add(db_hub)
        session.flush()

        logger.info("Stored consent hub", consent_hub_id=db_hub.id, name=name)
        return _consent_hub_row(db_hub)

    def update_consent_hub(self, session: Session, consent_hub_id: int, name: str,
                           enforce_consents: bool, actor: str) -> int:
        return session.query(ConsentHubDB).filter_by(id=consent_hub_id).update(
            {
                "name": name,
                "enforce_consents": enforce_consents,
                "modified_at": datetime.now(UTC),
                "modified_by": actor,
            },
            synchronize_session="evaluate",
        )

    def delete_consent_hub_row(self, session: Session, consent_hub_id: int) -> int:
        return session.query(ConsentHubDB).filter_by(id=consent_hub_id).delete(
            synchronize_session=False
        )

    def get_facility_ids(self, session: Session, consent_hub_id: int) -> List[int]:
        rows = session.query(ConsentHubFacilityDB.facility_id).filter_by(
            consent_hub_id=consent_hub_id
        ).order_by(ConsentHubFacilityDB.facility_id).all()
        return [int(r.facility_id) for r in rows]

    def get_consent_hub_id_for_facility(self, session: Session, facility_id: int) -> Optional[int]:
        row = session.query(ConsentHubFacilityDB.consent_hub_id).filter_by(
            facility_id=facility_id
        ).first()
        return int(row.consent_hub_id) if row else None

    def add_facility(self, session: Session, consent_hub_id: int, facility_id: int) -> None:
        session.add(ConsentHubFacilityDB(consent_hub_id=consent_hub_id, facility_id=facility_id))
        session.flush()

    def remove_facility(self, session: Session, consent_hub_id: int, facility_id: int) -> int:
        return session.query(ConsentHubFacilityDB).filter_by(
            consent_hub_id=consent_hub_id, facility_id=facility_id
        ).delete(synchronize_session=False)

    def remove_all_facilities(self, session: Session, consent_hub_id: int) -> int:
        return session.query(ConsentHubFacilityDB).filter_by(
            consent_hub_id=consent_hub_id
        ).delete(synchronize_session=False)

    def dispose(self) -> None:
        self.engine.dispose()

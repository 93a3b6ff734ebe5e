# ABOUTME: SQLite-backed registry store built on the SQLAlchemy ORM
# ABOUTME: Holds servers, bindings, source snapshots, activity log and pending conflicts
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker

from mcporbit.conflicts import ConflictGroup
from mcporbit.models import (
    Binding,
    ClientType,
    Enabled,
    HttpTransport,
    Server,
    ServerConfig,
    SourceSnapshot,
    StdioTransport,
    new_id,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_RETENTION = timedelta(days=7)


class Base(DeclarativeBase):
    pass


class ServerRow(Base):
    __tablename__ = "mcp_servers"
    __table_args__ = (
        UniqueConstraint("fingerprint", "name", name="uq_mcp_servers_fingerprint_name"),
        Index("idx_mcp_servers_fingerprint", "fingerprint"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(8), nullable=False)
    command: Mapped[Optional[str]] = mapped_column(Text)
    args: Mapped[Optional[list]] = mapped_column(JSON)
    cwd: Mapped[Optional[str]] = mapped_column(Text)
    url: Mapped[Optional[str]] = mapped_column(Text)
    headers: Mapped[Optional[dict]] = mapped_column(JSON)
    env: Mapped[Optional[dict]] = mapped_column(JSON)
    tags: Mapped[Optional[list]] = mapped_column(JSON)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    bindings: Mapped[list["BindingRow"]] = relationship(
        back_populates="server", cascade="all, delete-orphan", passive_deletes=True
    )


class BindingRow(Base):
    __tablename__ = "client_bindings"
    __table_args__ = (
        UniqueConstraint("server_id", "client", name="uq_client_bindings_server_client"),
        Index("idx_bindings_client", "client"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    server_id: Mapped[str] = mapped_column(
        ForeignKey("mcp_servers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client: Mapped[str] = mapped_column(String(32), nullable=False)
    enabled: Mapped[str] = mapped_column(String(3), nullable=False, default="on")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    server: Mapped[ServerRow] = relationship(back_populates="bindings")


class SnapshotRow(Base):
    __tablename__ = "source_snapshots"
    __table_args__ = (UniqueConstraint("client", "path", name="uq_source_snapshots_client_path"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    client: Mapped[str] = mapped_column(String(32), nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    mtime: Mapped[float] = mapped_column(Float, nullable=False)
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ActivityRow(Base):
    __tablename__ = "activity_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(36))
    entity_name: Mapped[Optional[str]] = mapped_column(Text)
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class PendingConflictRow(Base):
    __tablename__ = "pending_conflicts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    sources: Mapped[list] = mapped_column(JSON, nullable=False)
    differences: Mapped[list] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    resolution: Mapped[Optional[dict]] = mapped_column(JSON)


@dataclass(frozen=True)
class ActivityEntry:
    id: str
    action: str
    entity_type: str
    entity_id: str | None = None
    entity_name: str | None = None
    details: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utcnow)


def _set_sqlite_pragma(dbapi_conn, connection_record) -> None:
    """Turn on FK enforcement so binding rows cascade with their server."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _server_from_row(row: ServerRow) -> Server:
    transport: StdioTransport | HttpTransport
    if row.type == "http":
        transport = HttpTransport(url=row.url or "", headers=row.headers)
    else:
        transport = StdioTransport(command=row.command or "", args=row.args, cwd=row.cwd)
    return Server(
        id=row.id,
        config=ServerConfig(name=row.name, transport=transport, env=row.env),
        tags=frozenset(row.tags) if row.tags is not None else None,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _fill_server_row(row: ServerRow, server: Server) -> None:
    config = server.config
    row.name = config.name
    row.type = config.type
    row.command = config.field_value("command")
    row.args = config.field_value("args")
    row.cwd = config.field_value("cwd")
    row.url = config.field_value("url")
    row.headers = config.field_value("headers")
    row.env = config.env
    row.tags = sorted(server.tags) if server.tags is not None else None
    row.fingerprint = config.fingerprint


def _binding_from_row(row: BindingRow) -> Binding:
    return Binding(
        id=row.id,
        server_id=row.server_id,
        client=ClientType(row.client),
        enabled="off" if row.enabled == "off" else "on",
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _snapshot_from_row(row: SnapshotRow) -> SourceSnapshot:
    return SourceSnapshot(
        id=row.id,
        client=ClientType(row.client),
        path=Path(row.path),
        hash=row.hash,
        mtime=row.mtime,
        scanned_at=_aware(row.scanned_at),
    )


def _activity_from_row(row: ActivityRow) -> ActivityEntry:
    return ActivityEntry(
        id=row.id,
        action=row.action,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        entity_name=row.entity_name,
        details=row.details,
        created_at=_aware(row.created_at),
    )


def _conflict_from_row(row: PendingConflictRow) -> ConflictGroup:
    return ConflictGroup.from_dict({
        "id": row.id,
        "name": row.name,
        "sources": row.sources,
        "differences": row.differences,
        "createdAt": _aware(row.created_at).isoformat(),
    })


class Store:
    """Registry persistence.

    ABOUTME: Explicitly constructed and passed around; no module-level singleton
    ABOUTME: Every method runs in transaction(); nested calls share the outer one

    Example:
        >>> with Store.from_path(Path("~/.mcporbit/registry.db").expanduser()) as store:
        ...     store.list_servers()
    """

    def __init__(self, db_url: str) -> None:
        self.db_url = db_url
        self._engine: Engine | None = None
        self._sessionmaker: sessionmaker[Session] | None = None
        self._active: Session | None = None

    @classmethod
    def from_path(cls, path: Path) -> "Store":
        return cls(f"sqlite:///{path}")

    def init(self) -> "Store":
        """Create the engine and any missing tables."""
        if self._engine is not None:
            return self

        url = make_url(self.db_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        self._engine = create_engine(self.db_url)
        if url.get_backend_name() == "sqlite":
            event.listen(self._engine, "connect", _set_sqlite_pragma)

        Base.metadata.create_all(self._engine)
        self._sessionmaker = sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.debug(f"Opened registry store at {self.db_url}")
        return self

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    def __enter__(self) -> "Store":
        return self.init()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""
        if self._active is not None:
            yield self._active
            return

        if self._sessionmaker is None:
            self.init()
        assert self._sessionmaker is not None

        session = self._sessionmaker()
        self._active = session
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            self._active = None
            session.close()

    # Servers and bindings

    def clear_registry(self) -> None:
        """Delete all bindings, servers, snapshots and unresolved conflicts.

        ABOUTME: Resolved conflicts are kept as history until clear_resolved_conflicts()
        """
        with self.transaction() as session:
            session.execute(delete(BindingRow))
            session.execute(delete(ServerRow))
            session.execute(delete(SnapshotRow))
            session.execute(delete(PendingConflictRow).where(PendingConflictRow.resolved_at.is_(None)))

    def insert_server(self, server: Server) -> Server:
        with self.transaction() as session:
            row = ServerRow(id=server.id, created_at=server.created_at, updated_at=server.updated_at)
            _fill_server_row(row, server)
            session.add(row)
            session.flush()
        return server

    def insert_binding(self, binding: Binding) -> Binding:
        with self.transaction() as session:
            session.add(BindingRow(
                id=binding.id,
                server_id=binding.server_id,
                client=binding.client.value,
                enabled=binding.enabled,
                created_at=binding.created_at,
                updated_at=binding.updated_at,
            ))
            session.flush()
        return binding

    def get_server(self, server_id: str) -> Server | None:
        with self.transaction() as session:
            row = session.get(ServerRow, server_id)
            return _server_from_row(row) if row else None

    def find_server_by_fingerprint(self, fingerprint: str) -> Server | None:
        with self.transaction() as session:
            row = session.scalars(
                select(ServerRow).where(ServerRow.fingerprint == fingerprint).order_by(ServerRow.name)
            ).first()
            return _server_from_row(row) if row else None

    def find_server_by_name(self, name: str) -> Server | None:
        """Case-insensitive name lookup."""
        with self.transaction() as session:
            row = session.scalars(
                select(ServerRow).where(func.lower(ServerRow.name) == name.lower())
            ).first()
            return _server_from_row(row) if row else None

    def list_servers(self) -> list[Server]:
        with self.transaction() as session:
            rows = session.scalars(select(ServerRow).order_by(ServerRow.name, ServerRow.fingerprint))
            return [_server_from_row(row) for row in rows]

    def list_bindings(self, client: ClientType | None = None) -> list[Binding]:
        with self.transaction() as session:
            query = select(BindingRow).order_by(BindingRow.created_at, BindingRow.id)
            if client is not None:
                query = query.where(BindingRow.client == client.value)
            return [_binding_from_row(row) for row in session.scalars(query)]

    def list_servers_with_bindings(self) -> list[tuple[Server, list[Binding]]]:
        with self.transaction() as session:
            rows = session.scalars(select(ServerRow).order_by(ServerRow.name, ServerRow.fingerprint))
            return [
                (_server_from_row(row), [_binding_from_row(b) for b in row.bindings])
                for row in rows
            ]

    def update_server(self, server: Server) -> Server:
        """Overwrite a server's fields; the fingerprint is recomputed.

        Raises:
            LookupError: If the server doesn't exist
        """
        with self.transaction() as session:
            row = session.get(ServerRow, server.id)
            if row is None:
                raise LookupError(f"Server not found: {server.id}")
            _fill_server_row(row, server)
            row.updated_at = utcnow()
            session.flush()
            return _server_from_row(row)

    def delete_server(self, server_id: str) -> bool:
        with self.transaction() as session:
            row = session.get(ServerRow, server_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def get_binding(self, binding_id: str) -> Binding | None:
        with self.transaction() as session:
            row = session.get(BindingRow, binding_id)
            return _binding_from_row(row) if row else None

    def get_binding_for(self, server_id: str, client: ClientType) -> Binding | None:
        with self.transaction() as session:
            row = session.scalars(
                select(BindingRow).where(
                    BindingRow.server_id == server_id, BindingRow.client == client.value
                )
            ).first()
            return _binding_from_row(row) if row else None

    def update_binding_enabled(self, binding_id: str, enabled: Enabled) -> Binding:
        """Raises LookupError if the binding doesn't exist."""
        with self.transaction() as session:
            row = session.get(BindingRow, binding_id)
            if row is None:
                raise LookupError(f"Binding not found: {binding_id}")
            row.enabled = enabled
            row.updated_at = utcnow()
            session.flush()
            return _binding_from_row(row)

    def delete_binding(self, binding_id: str) -> bool:
        with self.transaction() as session:
            row = session.get(BindingRow, binding_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def delete_orphaned_servers(self) -> list[Server]:
        """Delete servers no binding references; returns what was deleted."""
        with self.transaction() as session:
            rows = session.scalars(select(ServerRow).where(~ServerRow.bindings.any())).all()
            deleted = [_server_from_row(row) for row in rows]
            for row in rows:
                session.delete(row)
            return deleted

    # Source snapshots

    def upsert_snapshot(self, snapshot: SourceSnapshot) -> SourceSnapshot:
        """Insert or update by (client, path); the stored id is kept on update."""
        with self.transaction() as session:
            row = session.scalars(
                select(SnapshotRow).where(
                    SnapshotRow.client == snapshot.client.value,
                    SnapshotRow.path == str(snapshot.path),
                )
            ).first()
            if row is None:
                row = SnapshotRow(
                    id=snapshot.id, client=snapshot.client.value, path=str(snapshot.path)
                )
                session.add(row)
            row.hash = snapshot.hash
            row.mtime = snapshot.mtime
            row.scanned_at = snapshot.scanned_at
            session.flush()
            return _snapshot_from_row(row)

    def get_snapshot(self, client: ClientType, path: Path) -> SourceSnapshot | None:
        with self.transaction() as session:
            row = session.scalars(
                select(SnapshotRow).where(
                    SnapshotRow.client == client.value, SnapshotRow.path == str(path)
                )
            ).first()
            return _snapshot_from_row(row) if row else None

    def list_snapshots(self) -> list[SourceSnapshot]:
        with self.transaction() as session:
            rows = session.scalars(select(SnapshotRow).order_by(SnapshotRow.client, SnapshotRow.path))
            return [_snapshot_from_row(row) for row in rows]

    # Activity log

    def log_activity(
        self,
        action: str,
        entity_type: str,
        entity_id: str | None = None,
        entity_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ActivityEntry:
        entry = ActivityEntry(
            id=new_id(),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            details=details,
        )
        with self.transaction() as session:
            session.add(ActivityRow(
                id=entry.id,
                action=entry.action,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                entity_name=entry.entity_name,
                details=entry.details,
                created_at=entry.created_at,
            ))
        return entry

    def recent_activities(self, limit: int = 20) -> list[ActivityEntry]:
        with self.transaction() as session:
            rows = session.scalars(
                select(ActivityRow).order_by(ActivityRow.created_at.desc()).limit(limit)
            )
            return [_activity_from_row(row) for row in rows]

    def clear_old_activities(self, older_than: timedelta = DEFAULT_ACTIVITY_RETENTION) -> int:
        cutoff = utcnow() - older_than
        with self.transaction() as session:
            result = session.execute(delete(ActivityRow).where(ActivityRow.created_at < cutoff))
            return result.rowcount or 0

    # Pending conflicts

    def insert_pending_conflict(self, conflict: ConflictGroup) -> str:
        data = conflict.to_dict()
        with self.transaction() as session:
            session.add(PendingConflictRow(
                id=conflict.id,
                name=conflict.name,
                sources=data["sources"],
                differences=data["differences"],
                created_at=conflict.created_at,
            ))
        return conflict.id

    def pending_conflicts(self) -> list[ConflictGroup]:
        """Unresolved conflicts, oldest first."""
        with self.transaction() as session:
            rows = session.scalars(
                select(PendingConflictRow)
                .where(PendingConflictRow.resolved_at.is_(None))
                .order_by(PendingConflictRow.created_at)
            )
            return [_conflict_from_row(row) for row in rows]

    def unresolved_conflict_count(self) -> int:
        with self.transaction() as session:
            return session.scalar(
                select(func.count()).select_from(PendingConflictRow).where(
                    PendingConflictRow.resolved_at.is_(None)
                )
            ) or 0

    def mark_conflict_resolved(self, conflict_id: str, resolution: dict[str, Any]) -> bool:
        with self.transaction() as session:
            row = session.get(PendingConflictRow, conflict_id)
            if row is None:
                return False
            row.resolved_at = utcnow()
            row.resolution = resolution
            return True

    def clear_pending_conflicts(self) -> None:
        with self.transaction() as session:
            session.execute(delete(PendingConflictRow))

    def clear_resolved_conflicts(self) -> int:
        with self.transaction() as session:
            result = session.execute(
                delete(PendingConflictRow).where(PendingConflictRow.resolved_at.is_not(None))
            )
            return result.rowcount or 0

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import (
    JSON,
    LargeBinary,
    String,
    Text,
    create_engine,
    delete,
    event,
    insert,
    select,
    type_coerce,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from snapvcs.base import RepoState, StateStore, StateTransaction
from snapvcs.errors import ErrorKind, VcsError
from snapvcs.impl.memory import (
    DEFAULT_BRANCH,
    SCHEMA_VERSION,
    MemoryContentStore,
    dump_state,
    restore_state,
)

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class BlobModel(Base):
    __tablename__ = "blobs"
    hash: Mapped[str] = mapped_column(String(40), primary_key=True)
    content: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)


class StructureModel(Base):
    __tablename__ = "structures"
    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    schema_version: Mapped[int] = mapped_column(default=SCHEMA_VERSION)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)


class SqlStateTransaction(StateTransaction):
    def __init__(self, session: Session, default_branch: str) -> None:
        self.session = session
        self.default_branch = default_branch

    def load(self) -> RepoState:
        # Payloads are read as raw text so a corrupted row only drops that
        # structure instead of failing the whole query.
        stmt = select(
            StructureModel.name,
            StructureModel.schema_version,
            type_coerce(StructureModel.payload, Text),
        )
        records = {
            name: {"schema_version": version, "payload": payload}
            for name, version, payload in self.session.execute(stmt)
        }
        blobs = {
            content_hash: content
            for content_hash, content in self.session.execute(
                select(BlobModel.hash, BlobModel.content)
            )
        }
        logger.debug("Loaded %s and %d blobs", sorted(records), len(blobs))
        return restore_state(records, blobs, self.default_branch)

    def save(self, state: RepoState) -> None:
        payloads = dump_state(state)
        # Rows are replaced wholesale; an unreadable old payload is never parsed.
        self.session.execute(
            delete(StructureModel).where(StructureModel.name.in_(list(payloads)))
        )
        self.session.execute(
            insert(StructureModel),
            [
                {"name": name, "schema_version": SCHEMA_VERSION, "payload": payload}
                for name, payload in payloads.items()
            ],
        )

        assert isinstance(state.store, MemoryContentStore)
        blobs = state.store.blobs
        existing = set(self.session.execute(select(BlobModel.hash)).scalars())

        added = blobs.keys() - existing
        if added:
            self.session.execute(
                insert(BlobModel),
                [{"hash": content_hash, "content": blobs[content_hash]} for content_hash in added],
            )
        removed = existing - blobs.keys()
        if removed:
            self.session.execute(delete(BlobModel).where(BlobModel.hash.in_(list(removed))))

        self.session.flush()
        logger.debug("Saved state: %d blobs added, %d removed", len(added), len(removed))


class SqlStateStore(StateStore):
    def __init__(
        self,
        session_maker: Callable[[], Session],
        default_branch: str = DEFAULT_BRANCH,
        engine: Engine | None = None,
    ) -> None:
        self.session_maker = session_maker
        self.default_branch = default_branch
        self.engine = engine

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("SqlStateStore(...)")
        else:
            p.text(f"SqlStateStore(engine={self.engine})")

    @contextmanager
    def transaction(self) -> Iterator[SqlStateTransaction]:
        try:
            with self.session_maker() as session:
                with session.begin():
                    yield SqlStateTransaction(session, self.default_branch)
        except SQLAlchemyError as e:
            raise VcsError(ErrorKind.STORAGE_IO, f"Repository storage failed: {e}") from e

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.dispose()


def create_sqlite_engine(db_path: str | Path, lock_timeout: float = 5.0) -> Engine:
    """
    Engine whose transactions start with BEGIN IMMEDIATE.

    The database write lock is then held from the first read of a
    load-mutate-persist cycle until it commits, so two invocations cannot
    interleave and drop each other's updates.
    """
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"timeout": lock_timeout})

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    return engine


def create_sql_state_store(
    db_path: str | Path,
    lock_timeout: float = 5.0,
    default_branch: str = DEFAULT_BRANCH,
) -> SqlStateStore:
    try:
        engine = create_sqlite_engine(db_path, lock_timeout)
    except SQLAlchemyError as e:
        raise VcsError(ErrorKind.STORAGE_IO, f"Cannot open {db_path}: {e}") from e
    return SqlStateStore(sessionmaker(bind=engine), default_branch, engine=engine)

"""
Relational store wrapper: engine, sessions and insert-or-ignore semantics.
"""

from contextlib import contextmanager
from typing import Iterator, Type

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models.orm import Base
from .config import DatabaseConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Custom exception for database errors."""
    pass


class Database:
    """SQLAlchemy engine and session factory for the social graph store."""

    def __init__(self, config: DatabaseConfig):
        """
        Initialize the database engine.

        Args:
            config: DatabaseConfig instance with connection parameters
        """
        self.config = config

        engine_kwargs = {'echo': config.echo, 'future': True}
        if config.url.startswith('sqlite'):
            engine_kwargs['connect_args'] = {'check_same_thread': False}
            if config.url in ('sqlite://', 'sqlite:///:memory:'):
                # Every session must see the same in-memory database
                engine_kwargs['poolclass'] = StaticPool

        self.engine = create_engine(config.url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

        logger.info(f'Initialized database engine for {self.engine.url.render_as_string(hide_password=True)}')

    def create_all(self) -> None:
        """Create missing tables. Safe to call on every startup."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise DatabaseError(f'Failed to create schema: {e}')

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session scope that commits on success and rolls back on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def health_check(self) -> bool:
        """
        Perform a health check on the database.

        Returns:
            True if a trivial query succeeds, False otherwise
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text('SELECT 1'))
            return True
        except SQLAlchemyError as e:
            logger.error(f'Database health check failed: {e}')
            return False

    def dispose(self) -> None:
        self.engine.dispose()


def insert_or_ignore(session: Session, model: Type[Base], **values) -> bool:
    """Insert a row, treating a unique-constraint conflict as success.

    Args:
        session: Active session; pending changes are flushed first
        model: ORM class of the target table
        **values: Attribute values; column defaults still apply

    Returns:
        True if the row was inserted, False if an equivalent row already existed

    Raises:
        DatabaseError: If the backend has no insert-or-ignore form
    """
    mapper = inspect(model)
    row = {mapper.get_property(name).columns[0].key: value for name, value in values.items()}
    table = mapper.local_table

    dialect = session.get_bind().dialect.name
    if dialect == 'sqlite':
        stmt = sqlite_insert(table).values(**row).on_conflict_do_nothing()
    elif dialect == 'postgresql':
        stmt = postgresql_insert(table).values(**row).on_conflict_do_nothing()
    elif dialect in ('mysql', 'mariadb'):
        stmt = mysql_insert(table).values(**row).prefix_with('IGNORE')
    else:
        raise DatabaseError(f'insert-or-ignore is not supported on {dialect}')

    session.flush()
    result = session.execute(stmt)
    inserted = bool(result.rowcount)
    if not inserted:
        logger.debug(f'Ignored duplicate {model.__name__}: {values}')
    return inserted

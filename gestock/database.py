"""Database configuration and initialization."""
import uuid
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None


def generate_id():
    """Return a new string identifier for a persisted row."""
    return uuid.uuid4().hex


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine_options = {
        'echo': app.config.get('SQLALCHEMY_ECHO', False),
        'pool_pre_ping': True,  # Enable connection health checks
    }
    if database_uri.startswith('sqlite'):
        # In-memory SQLite must share a single connection across the app
        engine_options['connect_args'] = {'check_same_thread': False}
        engine_options['poolclass'] = StaticPool
    else:
        engine_options['pool_size'] = 10
        engine_options['max_overflow'] = 20

    engine = create_engine(database_uri, **engine_options)

    db_session = scoped_session(
        sessionmaker(autoflush=False, bind=engine)
    )

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def get_session():
    """Get database session."""
    return db_session


def create_tables():
    """Create every table declared on Base."""
    # Import models so that they register on the metadata
    import gestock.models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def drop_tables():
    """Drop every table declared on Base."""
    import gestock.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


@contextmanager
def transaction(session):
    """
    Unit of work: commit when the block succeeds, rollback and re-raise otherwise.

    Ledger functions never commit; the document action that owns the
    transaction wraps its whole mutation in this block.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def enum_values(enum_cls):
    """Persist enum values ('in', 'out') rather than member names."""
    return [member.value for member in enum_cls]

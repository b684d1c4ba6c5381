import logging
from datetime import datetime, timezone
from typing import Generator

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, Session, declarative_base, aliased

from messagely.config import get_settings
from messagely.errors import DuplicateKeyError, NotFoundError

logger = logging.getLogger(__name__)

settings = get_settings()

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# check_same_thread=False is required for SQLite since sync route handlers
# run on FastAPI's worker threadpool
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


if _is_sqlite:
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        # SQLite leaves foreign key enforcement off unless asked per connection
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from messagely.models import User, Message  # noqa: F401

        logger.debug("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and both tables exist.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        inspector = inspect(engine)
        for table in ("users", "messages"):
            if not inspector.has_table(table):
                logger.error(f"Database schema not applied: '{table}' table not found")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# User Repository Functions
# =============================================================================

def register_user(
    db: Session,
    username: str,
    password_hash: str,
    first_name: str,
    last_name: str,
    phone: str,
):
    """
    Insert a new user. join_at and last_login_at both start at now.

    Args:
        db: Database session
        username: Unique username
        password_hash: Already-hashed credential (never plaintext)
        first_name, last_name, phone: Profile fields

    Returns:
        The created User row

    Raises:
        DuplicateKeyError: username already taken
    """
    from messagely.models import User

    logger.info(f"Registering user: {username}")

    now = _now()
    user = User(
        username=username,
        password=password_hash,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        join_at=now,
        last_login_at=now,
    )

    try:
        db.add(user)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Duplicate username rejected: {username}")
        raise DuplicateKeyError(f"Username {username} already exists")

    db.refresh(user)
    logger.info(f"User registered: {username}")
    return user


def find_credential_hash(db: Session, username: str) -> str:
    """
    Return the stored password hash for a username.

    Raises:
        NotFoundError: no such user
    """
    from messagely.models import User

    logger.debug(f"Looking up credential hash for: {username}")
    password_hash = db.query(User.password).filter(User.username == username).scalar()
    if password_hash is None:
        raise NotFoundError(f"No user: {username}")
    return password_hash


def touch_last_login(db: Session, username: str) -> datetime:
    """
    Set last_login_at to now and return it.

    Raises:
        NotFoundError: no such user
    """
    from messagely.models import User

    now = _now()
    updated = (
        db.query(User)
        .filter(User.username == username)
        .update({User.last_login_at: now}, synchronize_session=False)
    )
    if not updated:
        db.rollback()
        raise NotFoundError(f"User {username} not found")

    db.commit()
    logger.info(f"Login timestamp updated: {username}")
    return now


def list_users(db: Session) -> list[dict]:
    """Basic info on all users, ordered by username."""
    from messagely.models import User

    rows = (
        db.query(User.username, User.first_name, User.last_name)
        .order_by(User.username.asc())
        .all()
    )
    logger.debug(f"Listed {len(rows)} users")
    return [
        {"username": row.username, "first_name": row.first_name, "last_name": row.last_name}
        for row in rows
    ]


def get_user(db: Session, username: str) -> dict:
    """
    Full profile for one user, without the password hash.

    Raises:
        NotFoundError: no such user
    """
    from messagely.models import User

    user = db.query(User).filter(User.username == username).first()
    if user is None:
        raise NotFoundError(f"No user: {username}")

    return {
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
        "join_at": user.join_at,
        "last_login_at": user.last_login_at,
    }


# =============================================================================
# Message Repository Functions
# =============================================================================

def _profile(user) -> dict:
    return {
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
    }


def create_message(db: Session, from_username: str, to_username: str, body: str):
    """
    Store a new message. read_at starts unset.

    Raises:
        NotFoundError: sender or recipient does not exist
    """
    from messagely.models import Message

    logger.info(f"Creating message: from={from_username}, to={to_username}")

    message = Message(
        from_username=from_username,
        to_username=to_username,
        body=body,
        sent_at=_now(),
    )

    try:
        db.add(message)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Message rejected, unknown user: from={from_username}, to={to_username}")
        raise NotFoundError(f"Sender or recipient does not exist: {from_username} -> {to_username}")

    db.refresh(message)
    logger.info(f"Message created: {message.id}")
    return message


def list_messages_from(db: Session, username: str) -> list[dict]:
    """
    Messages sent by a user, each with the recipient's profile inlined.

    Ordered by sent_at ASC, id ASC. Returns [] when there are none.
    """
    from messagely.models import Message, User

    recipient = aliased(User)
    rows = (
        db.query(Message, recipient)
        .join(recipient, Message.to_username == recipient.username)
        .filter(Message.from_username == username)
        .order_by(Message.sent_at.asc(), Message.id.asc())
        .all()
    )
    logger.debug(f"Messages from {username}: {len(rows)}")

    return [
        {
            "id": message.id,
            "to_user": _profile(to_user),
            "body": message.body,
            "sent_at": message.sent_at,
            "read_at": message.read_at,
        }
        for message, to_user in rows
    ]


def list_messages_to(db: Session, username: str) -> list[dict]:
    """
    Messages received by a user, each with the sender's profile inlined.

    Ordered by sent_at ASC, id ASC. Returns [] when there are none.
    """
    from messagely.models import Message, User

    sender = aliased(User)
    rows = (
        db.query(Message, sender)
        .join(sender, Message.from_username == sender.username)
        .filter(Message.to_username == username)
        .order_by(Message.sent_at.asc(), Message.id.asc())
        .all()
    )
    logger.debug(f"Messages to {username}: {len(rows)}")

    return [
        {
            "id": message.id,
            "from_user": _profile(from_user),
            "body": message.body,
            "sent_at": message.sent_at,
            "read_at": message.read_at,
        }
        for message, from_user in rows
    ]

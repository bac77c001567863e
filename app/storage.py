import logging
from typing import Generator, Optional, Tuple

from sqlalchemy import create_engine, func, inspect, or_, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import settings
from app.errors import PersistenceFailure
from app.utils import utc_now_iso

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from app import models  # noqa: F401

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
    Check if the database is reachable and the messages table exists.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        if not inspect(engine).has_table("whatsapp_messages"):
            logger.error("Database schema not applied: 'whatsapp_messages' table not found")
            return False
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Partner Repository Functions
# =============================================================================

def get_partner_by_phone_number_id(db: Session, phone_number_id: str):
    """Partner whose configured WhatsApp phone number id matches, or None."""
    from app.models import Partner

    return (
        db.query(Partner)
        .filter(Partner.whatsapp_phone_number_id == phone_number_id)
        .first()
    )


def set_partner_whatsapp_status(db: Session, phone_number_id: str, active: bool) -> int:
    """
    Enable or disable the WhatsApp API flags of the partner owning a number.

    Returns:
        Number of partner rows updated
    """
    from app.models import Partner

    try:
        updated = (
            db.query(Partner)
            .filter(Partner.whatsapp_phone_number_id == phone_number_id)
            .update(
                {
                    Partner.whatsapp_api_enabled: active,
                    Partner.whatsapp_business_verified: active,
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(f"partner status update failed for {phone_number_id}: {e}") from e

    logger.info(f"Partner WhatsApp status set: phone_number_id={phone_number_id}, active={active}, rows={updated}")
    return updated


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_message(
    db: Session,
    message_id: str,
    partner_id: str,
    from_number: str,
    to_number: Optional[str],
    message_type: str,
    status: str,
    timestamp: str,
    direction: str = "inbound",
    text_content: Optional[str] = None,
    media_id: Optional[str] = None,
    caption: Optional[str] = None,
    file_name: Optional[str] = None,
    content: Optional[dict] = None,
    contact_name: Optional[str] = None,
) -> bool:
    """
    Insert a message keyed on message_id (idempotent).

    The unique constraint on message_id decides duplicates, so concurrent
    redeliveries of the same event store exactly one row.

    Returns:
        True if the message already existed (duplicate), False if created

    Raises:
        PersistenceFailure: any other database error
    """
    from app.models import WhatsAppMessage

    logger.debug(f"Creating message: id={message_id}, partner={partner_id}, type={message_type}")
    now = utc_now_iso()

    try:
        db.add(WhatsAppMessage(
            message_id=message_id,
            partner_id=partner_id,
            from_number=from_number,
            to_number=to_number,
            direction=direction,
            message_type=message_type,
            text_content=text_content,
            media_id=media_id,
            caption=caption,
            file_name=file_name,
            content=content,
            contact_name=contact_name,
            status=status,
            timestamp=timestamp,
            created_at=now,
            updated_at=now,
        ))
        db.commit()
        logger.info(f"Message created: {message_id}")
        return False

    except IntegrityError as e:
        db.rollback()
        if get_message_by_id(db, message_id) is not None:
            logger.info(f"Duplicate message detected: {message_id}")
            return True
        raise PersistenceFailure(f"integrity error storing {message_id}: {e}") from e

    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(f"failed to store {message_id}: {e}") from e


def get_message_by_id(db: Session, message_id: str, partner_id: Optional[str] = None):
    """
    Retrieve a message by its provider id, optionally within one partner.

    Returns:
        WhatsAppMessage if found, None otherwise
    """
    from app.models import WhatsAppMessage

    query = db.query(WhatsAppMessage).filter(WhatsAppMessage.message_id == message_id)
    if partner_id is not None:
        query = query.filter(WhatsAppMessage.partner_id == partner_id)
    return query.first()


def update_message_status(
    db: Session,
    message,
    status: str,
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
) -> None:
    """
    Set the status (and failure details) of a stored message.

    Raises:
        PersistenceFailure: database error during the update
    """
    message_id = message.message_id
    try:
        message.status = status
        if error_code is not None:
            message.error_code = error_code
        if error_message is not None:
            message.error_message = error_message
        message.updated_at = utc_now_iso()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(f"failed to update status of {message_id}: {e}") from e

    logger.info(f"Message status updated: {message_id} -> {status}")


def _partner_messages(db: Session, partner_id: str, phone_number: Optional[str] = None):
    from app.models import WhatsAppMessage

    query = db.query(WhatsAppMessage).filter(WhatsAppMessage.partner_id == partner_id)
    if phone_number:
        query = query.filter(or_(
            WhatsAppMessage.from_number == phone_number,
            WhatsAppMessage.to_number == phone_number,
        ))
    return query


def get_conversation(
    db: Session,
    partner_id: str,
    phone_number: Optional[str] = None,
    limit: int = 50,
) -> list:
    """
    Latest `limit` messages of a partner, returned in chronological order.

    Args:
        db: Database session
        partner_id: Owning partner
        phone_number: Optional counterpart number (matches from or to)
        limit: Maximum number of messages (1-100)
    """
    from app.models import WhatsAppMessage

    logger.info(f"Querying conversation: partner={partner_id}, phone={phone_number}, limit={limit}")

    latest = (
        _partner_messages(db, partner_id, phone_number)
        .order_by(WhatsAppMessage.timestamp.desc(), WhatsAppMessage.message_id.desc())
        .limit(limit)
        .all()
    )
    latest.reverse()
    return latest


def search_messages(
    db: Session,
    partner_id: str,
    limit: int = 25,
    offset: int = 0,
    phone_number: Optional[str] = None,
    message_type: Optional[str] = None,
    status: Optional[str] = None,
    direction: Optional[str] = None,
    since: Optional[str] = None,
    until: Optional[str] = None,
    q: Optional[str] = None,
) -> Tuple[list, int]:
    """
    Retrieve a partner's messages with pagination and filtering.

    Args:
        db: Database session
        partner_id: Owning partner
        limit: Maximum number of messages to return (1-100)
        offset: Number of messages to skip
        phone_number: Counterpart number (matches from or to)
        message_type: Exact message type (TEXT, IMAGE, ...)
        status: Exact status (RECEIVED, DELIVERED, ...)
        direction: inbound or outbound
        since: timestamp >= since (ISO-8601 UTC)
        until: timestamp <= until (ISO-8601 UTC)
        q: Case-insensitive substring of the text content

    Returns:
        Tuple of (messages list, total count matching filters)
    """
    from app.models import WhatsAppMessage

    logger.info(f"Searching messages: partner={partner_id}, limit={limit}, offset={offset}")
    logger.debug(
        f"Filters: phone={phone_number}, type={message_type}, status={status}, "
        f"direction={direction}, since={since}, until={until}, q={q}"
    )

    query = _partner_messages(db, partner_id, phone_number)

    if message_type:
        query = query.filter(WhatsAppMessage.message_type == message_type)
    if status:
        query = query.filter(WhatsAppMessage.status == status)
    if direction:
        query = query.filter(WhatsAppMessage.direction == direction)
    if since:
        query = query.filter(WhatsAppMessage.timestamp >= since)
    if until:
        query = query.filter(WhatsAppMessage.timestamp <= until)
    if q:
        query = query.filter(WhatsAppMessage.text_content.ilike(f"%{q}%"))

    # Total count before pagination
    total = query.count()

    # Ordering: timestamp ASC, message_id ASC (deterministic)
    messages = (
        query.order_by(WhatsAppMessage.timestamp.asc(), WhatsAppMessage.message_id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    logger.info(f"Retrieved {len(messages)} of {total} total messages")

    return messages, total


def get_analytics(
    db: Session,
    partner_id: str,
    since: Optional[str] = None,
    until: Optional[str] = None,
) -> dict:
    """
    Message counts for a partner over an optional time window.

    Returns:
        Dictionary with total_messages and by_type / by_status / by_direction
        lists of {"key", "count"} sorted by count (desc), then key
    """
    from app.models import WhatsAppMessage

    logger.info(f"Computing analytics: partner={partner_id}, since={since}, until={until}")

    filters = [WhatsAppMessage.partner_id == partner_id]
    if since:
        filters.append(WhatsAppMessage.timestamp >= since)
    if until:
        filters.append(WhatsAppMessage.timestamp <= until)

    total_messages = db.query(func.count(WhatsAppMessage.id)).filter(*filters).scalar() or 0

    def grouped(column) -> list:
        rows = (
            db.query(column, func.count(WhatsAppMessage.id).label("count"))
            .filter(*filters)
            .group_by(column)
            .order_by(func.count(WhatsAppMessage.id).desc(), column.asc())
            .all()
        )
        return [{"key": key, "count": count} for key, count in rows]

    stats = {
        "total_messages": total_messages,
        "by_type": grouped(WhatsAppMessage.message_type),
        "by_status": grouped(WhatsAppMessage.status),
        "by_direction": grouped(WhatsAppMessage.direction),
    }
    logger.info(f"Analytics computed: {total_messages} messages")
    return stats


# =============================================================================
# Webhook Log Repository Functions
# =============================================================================

def create_webhook_log(db: Session, webhook_type: str, payload: dict):
    """
    Store the raw delivery before it is processed.

    Raises:
        PersistenceFailure: database error
    """
    from app.models import WebhookLog

    try:
        log = WebhookLog(
            webhook_type=webhook_type,
            payload=payload,
            processed=False,
            created_at=utc_now_iso(),
        )
        db.add(log)
        db.commit()
        db.refresh(log)
        return log
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(f"failed to store webhook log: {e}") from e


def finish_webhook_log(db: Session, log, error: Optional[str] = None) -> None:
    """Mark a webhook log row processed, or attach the processing error."""
    try:
        if error is None:
            log.processed = True
        else:
            log.error = error
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(f"failed to update webhook log: {e}") from e

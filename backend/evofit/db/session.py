from evofit.db.base import engine, SessionLocal, Base
import logging

logger = logging.getLogger(__name__)


def get_db():
    """Yield a database session and always close it"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """Create protocol, version, assignment and customer tables"""
    # Import models so they are registered on the metadata
    from evofit.models import protocol as protocol_models  # noqa: F401

    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating tables: {e}")
        raise

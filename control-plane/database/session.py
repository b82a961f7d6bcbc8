# control-plane/database/session.py
"""
Database Session Management
"""

from sqlalchemy import create_engine, func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Dict, Generator
import logging

from config import settings
from .models import Base, ExtClient, Network, Node

logger = logging.getLogger(__name__)

# In-memory SQLite needs one shared connection across threads
if settings.DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        settings.DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=settings.DEBUG,
    )
else:
    engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, echo=settings.DEBUG)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create the network, node, ext client and audit tables"""
    logger.info("Initializing database...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized successfully")


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency for FastAPI
    Usage: db: Session = Depends(get_db)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class DatabaseManager:
    """Record store checks backing the health endpoint"""

    @staticmethod
    def check_connection(db: Session) -> bool:
        try:
            db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    @staticmethod
    def gateway_counts(db: Session) -> Dict[str, int]:
        """How many networks, nodes, gateways and ext clients are stored"""
        def count(model, *criteria) -> int:
            return db.query(func.count()).select_from(model).filter(*criteria).scalar() or 0

        return {
            "networks": count(Network),
            "nodes": count(Node),
            "egress_gateways": count(Node, Node.is_egress_gateway.is_(True)),
            "ingress_gateways": count(Node, Node.is_ingress_gateway.is_(True)),
            "ext_clients": count(ExtClient),
        }


db_manager = DatabaseManager()

"""
Database configuration and session management using SQLAlchemy.
"""
from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
import os

# Database URL - SQLite for development
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./notes.db")

# Create engine with SQLite-specific configuration
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False  # Set to True for SQL query logging
    )
else:
    engine = create_engine(DATABASE_URL)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db():
    """
    Dependency function to get database session.
    Use this in FastAPI route dependencies.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """
    Dependency returning the session factory itself.

    Streaming responses outlive the request-scoped session from `get_db`,
    so code that persists after the response has started opens its own.
    """
    return SessionLocal


def init_db():
    """
    Initialize database by creating all tables and running safe, idempotent
    schema migrations.

    Currently this will:
    - Ensure all chat/AI tables exist
    - Add the `model` and `scenario_dialog_id` columns to `chat_sessions`
      if they are missing (for databases created before sessions could pin
      a model or be bound to a scenario).
    """
    # Models must be imported so they register on Base.metadata
    import app.models  # noqa: F401

    # Create any missing tables first
    Base.metadata.create_all(bind=engine)

    # Lightweight migrations for SQLite
    if DATABASE_URL.startswith("sqlite"):
        with engine.connect() as conn:
            result = conn.execute(text("PRAGMA table_info(chat_sessions);"))
            chat_session_columns = {row[1] for row in result}  # row[1] = column name

            if chat_session_columns:
                if "model" not in chat_session_columns:
                    conn.execute(
                        text("ALTER TABLE chat_sessions ADD COLUMN model VARCHAR;")
                    )
                if "scenario_dialog_id" not in chat_session_columns:
                    conn.execute(
                        text(
                            "ALTER TABLE chat_sessions "
                            "ADD COLUMN scenario_dialog_id VARCHAR;"
                        )
                    )
                conn.commit()

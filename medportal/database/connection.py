import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
import mysql.connector
from mysql.connector import Error

from medportal.config import settings

logger = logging.getLogger(__name__)


def init_db(database_url: str = None):
    """Create the MySQL database named in the URL if it does not exist yet.

    Other backends are expected to be provisioned already.
    """
    url = make_url(database_url or settings.database_url)
    if not url.drivername.startswith("mysql"):
        return
    try:
        connection = mysql.connector.connect(
            host=url.host or "localhost",
            port=url.port or 3306,
            user=url.username,
            password=url.password,
        )
        cursor = connection.cursor()
        cursor.execute(f"CREATE DATABASE IF NOT EXISTS `{url.database}`")
        logger.info("Database '%s' is ready.", url.database)
        cursor.close()
        connection.close()
    except Error as e:
        logger.error("Error while creating database: %s", e)


def _engine_kwargs(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # a single shared connection keeps in-memory databases alive across sessions
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, echo=settings.database_echo, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

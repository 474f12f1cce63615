import os
from dotenv import load_dotenv
import logging

load_dotenv()


# Set Logger
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s:%(message)s"


class Config:
    """
    Initial parameters, overridable from the environment or a .env file
    """

    SECRET_KEY = os.getenv("PARKHUB_SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv("PARKHUB_DATABASE_URI", "sqlite:///parking.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Booking transactions
    BOOKING_MAX_RETRIES = int(os.getenv("PARKHUB_BOOKING_MAX_RETRIES", "3"))
    DB_LOCK_TIMEOUT = float(os.getenv("PARKHUB_DB_LOCK_TIMEOUT", "5"))

    # Seeded admin account
    ADMIN_USERNAME = os.getenv("PARKHUB_ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD = os.getenv("PARKHUB_ADMIN_PASSWORD", "admin123")

    LOG_LEVEL = os.getenv("PARKHUB_LOG_LEVEL", "INFO")

    # Callable returning the current UTC time; tests pin it
    CLOCK = None


def engine_options(app_config):
    """SQLAlchemy engine options bounding how long a request waits on a lock."""
    timeout = app_config["DB_LOCK_TIMEOUT"]
    uri = app_config["SQLALCHEMY_DATABASE_URI"]
    if uri.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout}}
    if uri.startswith("postgresql"):
        return {"connect_args": {"options": f"-c lock_timeout={int(timeout * 1000)}"}}
    return {}


def configure_logging(level):
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger.info("Logging configured at %s", level)

"""Database base classes and models."""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


# Import models so metadata.create_all sees every table
import pdfapp.db.models.user  # noqa: F401,E402
import pdfapp.db.models.notification_outbox  # noqa: F401,E402

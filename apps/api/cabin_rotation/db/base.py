import uuid
from datetime import datetime

from sqlalchemy import DateTime, Uuid
from sqlalchemy.orm import DeclarativeBase

from cabin_rotation.db.types import JSONType


class Base(DeclarativeBase):
    """
    Declarative base for the selection engine models.

    Timestamps are timezone-aware; ids are native UUIDs on PostgreSQL and
    CHAR(32) on SQLite; dict/list columns map to JSONB on PostgreSQL.
    """
    type_annotation_map = {
        datetime: DateTime(timezone=True),
        uuid.UUID: Uuid(),
        dict: JSONType,
        list: JSONType,
    }

"""Column types shared by the models.

PostgreSQL gets JSONB; every other dialect (SQLite in tests and local dev)
falls back to the generic JSON type.
"""

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

JSONType = JSON().with_variant(JSONB(), "postgresql")

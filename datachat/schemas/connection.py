"""Connection descriptor and schema snapshot types."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class Dialect(str, Enum):
    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLSERVER = "sqlserver"

    @classmethod
    def normalize(cls, value: Optional[str]) -> Optional["Dialect"]:
        """Map a stored dialect tag to a Dialect, or None when empty or unknown."""
        tag = (value or "").strip().lower()
        tag = _ALIASES.get(tag, tag)
        try:
            return cls(tag)
        except ValueError:
            return None

    @classmethod
    def parse(cls, value: Optional[str]) -> "Dialect":
        """Like normalize() but falls back to postgres."""
        return cls.normalize(value) or cls.POSTGRES


_ALIASES = {"postgresql": "postgres", "pg": "postgres", "mssql": "sqlserver", "sql server": "sqlserver"}


class ConnectionDescriptor(BaseModel):
    """Live connection parameters for one stored connection, password already decrypted."""

    id: str
    dialect: Optional[str] = None
    host: str
    port: Optional[int] = None
    database_name: str
    username: str
    password: str = Field(default="", repr=False)
    custom_instructions: Optional[str] = None


class ColumnDescriptor(BaseModel):
    """One row of a schema snapshot."""

    table_name: str
    column_name: str
    data_type: str
    is_nullable: Optional[bool] = None
    is_identity: Optional[bool] = None
    max_length: Optional[int] = None

    @field_validator("is_nullable", "is_identity", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> Optional[bool]:
        if v is None or isinstance(v, bool):
            return v
        if isinstance(v, (int, float)):
            return bool(v)
        text = str(v).strip().upper()
        if text in ("YES", "Y", "TRUE", "T", "1"):
            return True
        if text in ("NO", "N", "FALSE", "F", "0"):
            return False
        return None

    @field_validator("max_length", mode="before")
    @classmethod
    def _coerce_length(cls, v: Any) -> Optional[int]:
        if v is None or v == "":
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

"""
Database Models
===============
Pydantic models for the records the lifecycle components persist
or exchange: migration history, index definitions and backup metadata.
"""

from typing import Optional, List, Dict, Any, Tuple, Union
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.helpers import utc_now


class ConnectionState(str, Enum):
    """Connection manager state machine."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    RECONNECTING = "reconnecting"


# ==================== MIGRATIONS ====================

class MigrationRecord(BaseModel):
    """
    Applied migration, as stored in the tracking collection.

    Attributes:
        version: Unique, monotonically increasing version
        name: Human readable name derived from the filename
        filename: Source file name
        applied_at: When `up` completed
        checksum: MD5 of the unit's file at apply time
    """

    model_config = ConfigDict(populate_by_name=True)

    version: int = Field(..., ge=1)
    name: str
    filename: str
    applied_at: datetime = Field(default_factory=utc_now, alias="appliedAt")
    checksum: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        """Convert to dictionary for MongoDB."""
        return self.model_dump(by_alias=True)


# ==================== INDEXES ====================

IndexDirection = Union[int, str]


class IndexDefinition(BaseModel):
    """
    Declarative index definition.

    `fields` keeps declaration order, which is significant for
    compound indexes.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    fields: Tuple[Tuple[str, IndexDirection], ...]
    unique: bool = False
    sparse: bool = False
    expire_after_seconds: Optional[int] = None

    @field_validator('fields', mode='before')
    @classmethod
    def coerce_fields(cls, v: Any) -> Any:
        """Accept a dict or a list of pairs."""
        if isinstance(v, dict):
            return tuple(v.items())
        return tuple(tuple(pair) for pair in v)

    @property
    def keys(self) -> List[Tuple[str, IndexDirection]]:
        """Key list in the form pymongo's create_index expects."""
        return list(self.fields)

    def index_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"name": self.name}
        if self.unique:
            options["unique"] = True
        if self.sparse:
            options["sparse"] = True
        if self.expire_after_seconds is not None:
            options["expireAfterSeconds"] = self.expire_after_seconds
        return options


# ==================== BACKUPS ====================

class CollectionInfo(BaseModel):
    """Per-collection statistics captured at backup time."""

    name: str
    count: int = 0
    size: int = 0


class BackupMetadata(BaseModel):
    """
    Metadata sidecar written next to every dump.

    Serialized with camelCase keys so the file is readable by
    other tooling working on the same backup directory.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    timestamp: datetime = Field(default_factory=utc_now)
    environment: str
    database: str
    collections: List[CollectionInfo] = Field(default_factory=list)
    total_size_bytes: int = Field(0, alias="totalSizeBytes")
    server_version: Optional[str] = Field(None, alias="serverVersion")
    sanitized_connection_string: str = Field("", alias="sanitizedConnectionString")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)

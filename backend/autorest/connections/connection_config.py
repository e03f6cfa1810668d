"""
Connection configuration supplied by the connection-resolution collaborator
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
import enum
import hashlib
import json

from autorest.core.errors import UnsupportedDatabaseType


class DatabaseType(str, enum.Enum):
    """Supported backend families."""
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    MSSQL = "mssql"
    SQLITE = "sqlite"
    MONGODB = "mongodb"

    @classmethod
    def parse(cls, value: Any) -> "DatabaseType":
        """
        Resolve a backend type from a free-form discriminator.

        Raises:
            UnsupportedDatabaseType: If the value names no supported backend
        """
        if isinstance(value, DatabaseType):
            return value
        key = str(value or "").strip().lower()
        resolved = _TYPE_ALIASES.get(key)
        if resolved is None:
            raise UnsupportedDatabaseType(value)
        return resolved


_TYPE_ALIASES = {
    "postgresql": DatabaseType.POSTGRESQL,
    "postgres": DatabaseType.POSTGRESQL,
    "mysql": DatabaseType.MYSQL,
    "mariadb": DatabaseType.MYSQL,
    "mssql": DatabaseType.MSSQL,
    "sqlserver": DatabaseType.MSSQL,
    "sqlite": DatabaseType.SQLITE,
    "mongodb": DatabaseType.MONGODB,
    "mongo": DatabaseType.MONGODB,
}


@dataclass(frozen=True)
class ConnectionConfig:
    """Decrypted connection parameters for one target database."""
    db_type: DatabaseType
    database: str
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    ssl_enabled: bool = False
    pool_size: Optional[int] = None
    timeout_seconds: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionConfig":
        """Build a config from the collaborator's loosely-typed mapping."""
        port = data.get("port")
        return cls(
            db_type=DatabaseType.parse(data.get("type") or data.get("db_type")),
            database=data.get("database") or "",
            host=data.get("host"),
            port=int(port) if port not in (None, "") else None,
            username=data.get("username"),
            password=data.get("password"),
            ssl_enabled=bool(data.get("ssl_enabled", data.get("sslEnabled", False))),
            pool_size=data.get("pool_size"),
            timeout_seconds=data.get("timeout_seconds"),
        )

    def with_database(self, database: Optional[str]) -> "ConnectionConfig":
        """Return a copy pointing at another database on the same server."""
        if not database or database == self.database:
            return self
        return ConnectionConfig(
            db_type=self.db_type,
            database=database,
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            ssl_enabled=self.ssl_enabled,
            pool_size=self.pool_size,
            timeout_seconds=self.timeout_seconds,
        )

    def fingerprint(self) -> str:
        """
        Normalized, non-reversible pool key.

        Two configs pointing at the same physical database with the same
        credentials share a pool; the key never contains the credentials.
        """
        normalized = {
            "type": self.db_type.value,
            "host": (self.host or "").strip().lower(),
            "port": self.port,
            "database": self.database,
            "username": self.username or "",
            "password": hashlib.sha256((self.password or "").encode("utf-8")).hexdigest(),
            "ssl": self.ssl_enabled,
        }
        digest = hashlib.sha256(json.dumps(normalized, sort_keys=True).encode("utf-8"))
        return f"{self.db_type.value}:{digest.hexdigest()}"

    def __repr__(self) -> str:
        return (
            f"ConnectionConfig(db_type={self.db_type.value!r}, host={self.host!r}, "
            f"port={self.port!r}, database={self.database!r}, username={self.username!r})"
        )

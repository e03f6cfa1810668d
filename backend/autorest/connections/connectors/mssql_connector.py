"""
SQL Server Database Connector
"""
import math

from sqlalchemy.engine import URL

from autorest.connections.connectors.sql_connector import SQLAlchemyConnector


class MSSQLConnector(SQLAlchemyConnector):
    """SQL Server connector implementation (pymssql driver)."""

    excluded_schemas = ("sys", "INFORMATION_SCHEMA", "guest")

    def build_url(self) -> URL:
        return URL.create(
            "mssql+pymssql",
            username=self.config.username,
            password=self.config.password,
            host=self.config.host or "localhost",
            port=self.config.port or 1433,
            database=self.config.database,
        )

    def connect_args(self):
        args = {"login_timeout": self.timeout}
        if self.query_timeout is not None:
            args["timeout"] = max(1, math.ceil(self.query_timeout))
        return args

    def discovery_schemas(self, inspector):
        return [
            schema for schema in inspector.get_schema_names()
            if schema not in self.excluded_schemas and not schema.startswith("db_")
        ]

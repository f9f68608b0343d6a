"""Neo4j connection management.

This module provides the GraphConnection class used by the graph-backed
record store. It wraps the async Neo4j driver with connection pooling,
health checks, transactional query helpers, and schema bootstrap for the
natural-key constraints the pipeline relies on.
"""

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncSession
from neo4j.exceptions import Neo4jError, ServiceUnavailable

logger = structlog.get_logger(__name__)


class GraphConnectionError(Exception):
    """Exception raised for graph connection errors."""

    pass


# Uniqueness constraints back every MERGE used by the store; without them two
# concurrent MERGEs on the same natural key could both create a node.
SCHEMA_STATEMENTS = [
    "CREATE CONSTRAINT project_id_unique IF NOT EXISTS FOR (p:Project) REQUIRE p.id IS UNIQUE",
    "CREATE CONSTRAINT commit_key_unique IF NOT EXISTS "
    "FOR (c:Commit) REQUIRE (c.project_id, c.commit_hash) IS UNIQUE",
    "CREATE CONSTRAINT user_id_unique IF NOT EXISTS FOR (u:User) REQUIRE u.id IS UNIQUE",
    "CREATE CONSTRAINT credit_reference_unique IF NOT EXISTS "
    "FOR (d:CreditDeduction) REQUIRE d.reference IS UNIQUE",
    "CREATE INDEX project_repo_url IF NOT EXISTS FOR (p:Project) ON (p.repo_url)",
    "CREATE INDEX commit_project IF NOT EXISTS FOR (c:Commit) ON (c.project_id)",
]


class GraphConnection:
    """Manages connections to the Neo4j graph database.

    Attributes:
        uri: Neo4j connection URI.
        user: Neo4j username.
        password: Neo4j password.
        database: Neo4j database name.
    """

    def __init__(
        self,
        uri: str | None = None,
        user: str | None = None,
        password: str | None = None,
        database: str = "neo4j",
        max_connection_pool_size: int = 50,
        connection_acquisition_timeout: float = 60.0,
    ) -> None:
        """Initialize the graph connection.

        Args:
            uri: Neo4j connection URI. Defaults to NEO4J_URI env var.
            user: Neo4j username. Defaults to NEO4J_USER env var.
            password: Neo4j password. Defaults to NEO4J_PASSWORD env var.
            database: Neo4j database name.
            max_connection_pool_size: Maximum connections in the pool.
            connection_acquisition_timeout: Timeout for acquiring a connection.
        """
        self.uri = uri or os.getenv("NEO4J_URI", "bolt://localhost:7687")
        self.user = user or os.getenv("NEO4J_USER", "neo4j")
        self.password = password or os.getenv("NEO4J_PASSWORD", "password")
        self.database = database
        self._max_pool_size = max_connection_pool_size
        self._acquisition_timeout = connection_acquisition_timeout
        self._driver: AsyncDriver | None = None

    async def connect(self) -> None:
        """Establish connection to Neo4j.

        Raises:
            GraphConnectionError: If connection fails.
        """
        if self._driver is not None:
            return

        try:
            self._driver = AsyncGraphDatabase.driver(
                self.uri,
                auth=(self.user, self.password),
                max_connection_pool_size=self._max_pool_size,
                connection_acquisition_timeout=self._acquisition_timeout,
            )
            await self._driver.verify_connectivity()
            logger.info("neo4j_connected", uri=self.uri)
        except ServiceUnavailable as e:
            raise GraphConnectionError(f"Failed to connect to Neo4j: {e}") from e
        except Exception as e:
            raise GraphConnectionError(f"Unexpected error connecting to Neo4j: {e}") from e

    async def close(self) -> None:
        """Close the driver and release all resources."""
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
            logger.info("neo4j_disconnected")

    async def __aenter__(self) -> "GraphConnection":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @asynccontextmanager
    async def session(self, **kwargs: Any) -> AsyncGenerator[AsyncSession, None]:
        """Get a Neo4j session as an async context manager.

        Raises:
            GraphConnectionError: If not connected.
        """
        if self._driver is None:
            raise GraphConnectionError("Not connected to Neo4j. Call connect() first.")

        session = self._driver.session(database=self.database, **kwargs)
        try:
            yield session
        finally:
            await session.close()

    async def health_check(self) -> dict[str, Any]:
        """Check the health of the Neo4j connection.

        Returns:
            Dictionary with health status information.
        """
        if self._driver is None:
            return {"status": "disconnected", "message": "Driver not initialized"}

        try:
            await self._driver.verify_connectivity()
            return {"status": "healthy", "uri": self.uri, "database": self.database}
        except ServiceUnavailable as e:
            return {"status": "unhealthy", "message": f"Service unavailable: {e}"}
        except Neo4jError as e:
            return {"status": "unhealthy", "message": f"Neo4j error: {e}"}

    async def execute_write(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> list[dict[str, Any]]:
        """Execute a write query within a transaction.

        Args:
            query: Cypher query string.
            parameters: Query parameters.
            **kwargs: Additional session configuration.

        Returns:
            List of result records as dictionaries.
        """
        if parameters is None:
            parameters = {}

        async with self.session(**kwargs) as session:

            async def _write_tx(tx: Any) -> list[dict[str, Any]]:
                result = await tx.run(query, parameters)
                return await result.data()

            return await session.execute_write(_write_tx)

    async def execute_read(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> list[dict[str, Any]]:
        """Execute a read query within a transaction.

        Args:
            query: Cypher query string.
            parameters: Query parameters.
            **kwargs: Additional session configuration.

        Returns:
            List of result records as dictionaries.
        """
        if parameters is None:
            parameters = {}

        async with self.session(**kwargs) as session:

            async def _read_tx(tx: Any) -> list[dict[str, Any]]:
                result = await tx.run(query, parameters)
                return await result.data()

            return await session.execute_read(_read_tx)

    async def ensure_schema(self) -> None:
        """Create the constraints and indexes used by the record store."""
        for statement in SCHEMA_STATEMENTS:
            try:
                await self.execute_write(statement)
            except Neo4jError as e:
                logger.warning("schema_statement_failed", statement=statement, error=str(e))

        logger.info("graph_schema_verified")

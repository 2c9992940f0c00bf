"""FastMCP server initialization for dbnexus-mcp.

This module initializes the MCP server and manages shared resources via lifespan context.
All tool implementations are in the tools module.

Following the official Anthropic Python SDK patterns:
- Lifespan context manager for resource initialization and cleanup
- Context injection for tool access to shared resources
- FastMCP server with stdio transport
"""

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from .context import AppContext, AppContextType
from .engine import (
    BackendPool,
    ConnectionResolver,
    DatabaseService,
    EnvVarSecretProvider,
    SessionRegistry,
    YamlConnectionStore,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Shared Resources and Lifespan Management
# =============================================================================


def get_pool_size() -> int:
    """Get per-backend connection pool size from environment.

    Reads DBNEXUS_POOL_SIZE environment variable.
    Default: 5, Valid range: 1-100 (clamped automatically)
    """
    try:
        size = int(os.getenv("DBNEXUS_POOL_SIZE", "5"))
        return max(1, min(100, size))
    except ValueError:
        return 5


def get_query_timeout() -> int:
    """Get statement timeout in seconds from environment.

    Reads DBNEXUS_QUERY_TIMEOUT environment variable.
    Default: 30, Valid range: 1-3600 (clamped automatically)
    """
    try:
        timeout = int(os.getenv("DBNEXUS_QUERY_TIMEOUT", "30"))
        return max(1, min(3600, timeout))
    except ValueError:
        return 30


def create_app_context(connections_path: str | None = None) -> AppContext:
    """Wire the service and its collaborators.

    Args:
        connections_path: Explicit connections catalog path (optional);
            DBNEXUS_CONNECTIONS and ~/.dbnexus/connections.yml apply otherwise
    """
    store = YamlConnectionStore(connections_path)
    secret_provider = EnvVarSecretProvider()
    registry = SessionRegistry()
    pool = BackendPool({"pool_size": get_pool_size(), "timeout": get_query_timeout()})
    service = DatabaseService(ConnectionResolver(registry, pool), store, secret_provider)
    return AppContext(
        service=service,
        registry=registry,
        pool=pool,
        connection_store=store,
        secret_provider=secret_provider,
    )


@asynccontextmanager
async def app_lifespan(_server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle with resource initialization and cleanup.

    This lifespan context manager:
    1. Loads the saved connections catalog
    2. Initializes the credential provider
    3. Yields context to make resources available to tools
    4. Closes every session and pooled backend on shutdown

    Environment Variables:
        DBNEXUS_CONNECTIONS: Connections catalog path
        DBNEXUS_POOL_SIZE: Connections per backend (default: 5, range: 1-100)
        DBNEXUS_QUERY_TIMEOUT: Statement timeout in seconds (default: 30)
        DBNEXUS_SECRET_*: Connection passwords

    Args:
        _server: FastMCP server instance (unused, required by FastMCP signature)

    Yields:
        AppContext with initialized resources
    """
    logger.info("Initializing MCP server resources...")

    app_context = create_app_context()

    catalog = app_context.connection_store.load()
    logger.info(f"Saved connections: {len(catalog.connections)}")

    secret_keys = await app_context.secret_provider.list_secret_keys()
    logger.info(f"Secret provider: {app_context.secret_provider.__class__.__name__}")
    logger.info(f"Available secrets: {len(secret_keys)}")
    if secret_keys:
        # Log secret keys (not values!) for debugging
        logger.debug(f"Secret keys: {', '.join(sorted(secret_keys))}")

    try:
        yield app_context
    finally:
        logger.info("Shutting down MCP server...")
        await app_context.close()


# Initialize MCP server with lifespan management
# Following Python MCP naming convention: {service}_mcp
mcp = FastMCP("dbnexus_mcp", lifespan=app_lifespan)


# =============================================================================
# Server Entry Point
# =============================================================================


def main() -> None:
    """Entry point for running the MCP server.

    This function is called when the server is run directly via:
    - python -m dbnexus_mcp
    - dbnexus-mcp (console script entry point)

    Defaults to stdio transport for MCP protocol communication.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    log_level_str = os.getenv("DBNEXUS_LOG_LEVEL", "INFO").upper()

    if log_level_str not in valid_log_levels:
        print(
            f"Warning: Invalid DBNEXUS_LOG_LEVEL '{log_level_str}'. "
            f"Valid levels: {', '.join(sorted(valid_log_levels))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        log_level_str = "INFO"

    # Configure logging to stderr (MCP requirement)
    logging.basicConfig(
        level=getattr(logging, log_level_str),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    logger.info("Starting MCP server (press Ctrl+C to stop)...")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
    except Exception as e:
        logger.exception(f"Server error: {e}")
        sys.exit(1)

    logger.info("Server shutdown complete")


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    "mcp",
    "main",
    "AppContext",
    "AppContextType",
    "create_app_context",
]

"""MCP server giving tool access to one mailbox."""

import argparse
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from mcp.server.fastmcp import FastMCP

from imapbox import __version__
from imapbox.config import MailboxConfig, load_config
from imapbox.mailbox import Mailbox
from imapbox.tools import register_tools

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("imapbox")


@asynccontextmanager
async def server_lifespan(server: FastMCP) -> AsyncIterator[Dict]:
    """Server lifespan manager to handle the mailbox connection.

    Args:
        server: MCP server instance

    Yields:
        Context dictionary containing the mailbox
    """
    config = getattr(server, "_config", None)
    if not config:
        config = load_config()

    if not isinstance(config, MailboxConfig):
        raise TypeError("Invalid server configuration")

    mailbox = Mailbox.from_config(config)

    try:
        # Fail startup early if the server cannot be reached
        logger.info("Connecting to %s...", mailbox.server_string)
        mailbox.get_stream()

        context: Dict[str, Any] = {"mailbox": mailbox}
        yield context
    finally:
        logger.info("Disconnecting from mail server...")
        mailbox.close()


def create_server(config_path: Optional[str] = None, debug: bool = False) -> FastMCP:
    """Create and configure the MCP server.

    Args:
        config_path: Path to configuration file
        debug: Enable debug mode

    Returns:
        Configured MCP server instance
    """
    if debug:
        logger.setLevel(logging.DEBUG)

    config = load_config(config_path)

    server = FastMCP(
        name="imapbox",
        instructions="Read, search and clean up a mailbox over IMAP or POP3",
        lifespan=server_lifespan,
    )

    # Store config for access in the lifespan
    server._config = config

    register_tools(server)

    @server.tool()
    def server_status() -> str:
        """Get server status and configuration info."""
        status = {
            "server": "imapbox",
            "service": config.service,
            "host": config.host,
            "port": config.port,
            "user": config.username,
            "mailbox": config.mailbox,
            "flags": ", ".join(config.flags) or "none",
        }
        return "\n".join(f"{k}: {v}" for k, v in status.items())

    return server


def main() -> None:
    """Run the imapbox MCP server."""
    parser = argparse.ArgumentParser(description="imapbox MCP server")
    parser.add_argument(
        "--config",
        help="Path to configuration file",
        default=os.environ.get("IMAPBOX_CONFIG"),
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version information and exit",
    )
    args = parser.parse_args()

    if args.version:
        print(f"imapbox version {__version__}")
        return

    if args.debug:
        logger.setLevel(logging.DEBUG)

    server = create_server(args.config, args.debug)

    logger.info("Starting server...")
    server.run(transport="stdio")


if __name__ == "__main__":
    main()

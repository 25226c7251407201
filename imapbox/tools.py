"""MCP tools exposing mailbox operations."""

import json
import logging
from typing import Any, Dict, List

from mcp.server.fastmcp import Context, FastMCP

from imapbox.mailbox import Mailbox
from imapbox.message import Message

logger = logging.getLogger(__name__)


def get_mailbox_from_context(ctx: Context) -> Mailbox:
    """Return the mailbox opened by the server lifespan.

    Raises:
        RuntimeError: If the lifespan did not provide a mailbox.
    """
    mailbox = ctx.request_context.lifespan_context.get("mailbox")
    if mailbox is None:
        raise RuntimeError("Mailbox not available in server context")
    return mailbox


def _describe(message: Message) -> Dict[str, Any]:
    date = message.date
    return {
        "uid": message.uid,
        "subject": message.subject,
        "from": str(message.from_ or ""),
        "to": [str(address) for address in message.to],
        "date": date.isoformat() if date else None,
        "flags": message.flags,
    }


def _describe_all(messages: List[Message]) -> str:
    return json.dumps([_describe(message) for message in messages], indent=2)


def register_tools(mcp: FastMCP) -> None:
    """Register mailbox tools with the MCP server.

    Tools resolve the open mailbox from the request context, so they work
    with whichever mailbox the server lifespan opened.
    """

    @mcp.tool()
    async def count_messages(ctx: Context) -> str:
        """Count the messages in the current mailbox."""
        box = get_mailbox_from_context(ctx)
        try:
            return f"{box.mailbox}: {box.num_messages()} messages"
        except Exception as e:
            logger.error(f"Error counting messages: {e}")
            return f"Error: {e}"

    @mcp.tool()
    async def search_messages(ctx: Context, criteria: str = "ALL", limit: int = 20) -> str:
        """Search the current mailbox.

        Args:
            criteria: IMAP search criteria, e.g. 'UNSEEN' or 'FROM "alice"'
            limit: Maximum number of results
        """
        box = get_mailbox_from_context(ctx)
        try:
            return _describe_all(box.search(criteria, limit))
        except Exception as e:
            logger.error(f"Error searching messages: {e}")
            return f"Error: {e}"

    @mcp.tool()
    async def list_messages(ctx: Context, limit: int = 20) -> str:
        """List the first messages of the current mailbox in sequence order."""
        box = get_mailbox_from_context(ctx)
        try:
            return _describe_all(box.get_messages(limit))
        except Exception as e:
            logger.error(f"Error listing messages: {e}")
            return f"Error: {e}"

    @mcp.tool()
    async def recent_messages(ctx: Context, limit: int = 20) -> str:
        """List messages that arrived since the last session."""
        box = get_mailbox_from_context(ctx)
        try:
            return _describe_all(box.get_recent_messages(limit))
        except Exception as e:
            logger.error(f"Error listing recent messages: {e}")
            return f"Error: {e}"

    @mcp.tool()
    async def read_message(uid: str, ctx: Context, html: bool = False) -> str:
        """Read a message.

        Args:
            uid: Message UID
            html: Return the HTML body instead of plain text
        """
        box = get_mailbox_from_context(ctx)
        try:
            message = box.get_message(_parse_uid(uid))
            body = message.get_message_body(html=html)
            if body is None:
                body = message.get_message_body(html=not html) or ""
            return f"{message.summary()}\n\n{body}"
        except Exception as e:
            logger.error(f"Error reading message {uid}: {e}")
            return f"Error: {e}"

    @mcp.tool()
    async def list_attachments(uid: str, ctx: Context) -> str:
        """List the attachments of a message."""
        box = get_mailbox_from_context(ctx)
        try:
            attachments = box.get_message(_parse_uid(uid)).get_attachments()
            return json.dumps(
                [
                    {
                        "index": index,
                        "filename": attachment.filename,
                        "mime_type": attachment.mime_type,
                        "size": attachment.size,
                    }
                    for index, attachment in enumerate(attachments)
                ],
                indent=2,
            )
        except Exception as e:
            logger.error(f"Error listing attachments of {uid}: {e}")
            return f"Error: {e}"

    @mcp.tool()
    async def save_attachment(uid: str, index: int, directory: str, ctx: Context) -> str:
        """Save an attachment of a message into a directory.

        Args:
            uid: Message UID
            index: Attachment index as returned by list_attachments
            directory: Existing, writable directory
        """
        box = get_mailbox_from_context(ctx)
        try:
            attachments = box.get_message(_parse_uid(uid)).get_attachments()
            if not 0 <= index < len(attachments):
                return f"Error: message {uid} has no attachment {index}"
            attachment = attachments[index]
            if attachment.save_to_directory(directory):
                return f"Saved {attachment.filename} to {directory}"
            return f"Failed to save attachment {index} to {directory}"
        except Exception as e:
            logger.error(f"Error saving attachment of {uid}: {e}")
            return f"Error: {e}"

    @mcp.tool()
    async def delete_message(uid: str, ctx: Context) -> str:
        """Flag a message for deletion. Run expunge to remove it."""
        box = get_mailbox_from_context(ctx)
        try:
            box.get_message(_parse_uid(uid)).delete()
            return f"Message {uid} flagged for deletion"
        except Exception as e:
            logger.error(f"Error deleting message {uid}: {e}")
            return f"Error: {e}"

    @mcp.tool()
    async def expunge(ctx: Context) -> str:
        """Remove messages flagged for deletion from the current mailbox."""
        box = get_mailbox_from_context(ctx)
        try:
            box.expunge()
            return f"Expunged {box.mailbox}"
        except Exception as e:
            logger.error(f"Error expunging: {e}")
            return f"Error: {e}"


def _parse_uid(uid: str):
    """IMAP UIDs are integers, POP3 UIDLs are opaque strings."""
    return int(uid) if uid.isdigit() else uid

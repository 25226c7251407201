"""Exceptions raised by imapbox."""


class MailboxError(Exception):
    """Base error for mailbox operations."""


class MailboxConnectionError(MailboxError, ConnectionError):
    """The connection to the mail server could not be opened or reopened."""


class UnsupportedServiceError(MailboxError):
    """The requested service has no backend on this interpreter."""

    def __init__(self, service: str):
        super().__init__(f"Unsupported mail service: {service}")
        self.service = service

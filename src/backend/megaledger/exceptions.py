"""
Exception types raised by MegaLedger services.
"""


class MegaLedgerError(Exception):
    """Base class for MegaLedger errors."""


class TransportError(MegaLedgerError):
    """The chat gateway rejected a request or could not be reached."""


class PersistenceError(MegaLedgerError):
    """A state blob could not be read or written."""

"""
Custom exceptions for the structured key-value layer and its backing store.
"""


class StructuredKvError(Exception):
    """Base class for errors raised by this package."""


class InvalidKeyError(StructuredKvError, ValueError):
    """
    Raised when a logical or physical key is malformed.

    Logical keys must be non-empty sequences of string segments. Physical
    data keys must carry the DATA tag and a wrapped leaf segment.
    """

    def __init__(self, key: object, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid key {key!r}: {reason}")


class StoreClosedError(StructuredKvError, RuntimeError):
    """Raised when an operation is attempted on a closed store."""


class WALCorruptionError(StructuredKvError):
    """
    Raised when WAL record corruption is detected via checksum mismatch.

    This is a fail-fast error indicating data integrity issues.
    """

    def __init__(self, expected: int, actual: int, entry_offset: int):
        """
        Initialize corruption error.

        Args:
            expected: Expected CRC32 checksum.
            actual: Actual CRC32 checksum computed.
            entry_offset: File offset where corruption detected.
        """
        self.expected = expected
        self.actual = actual
        self.entry_offset = entry_offset
        super().__init__(
            f"WAL corruption detected at offset {entry_offset}: "
            f"expected CRC32 0x{expected:08x}, got 0x{actual:08x}"
        )

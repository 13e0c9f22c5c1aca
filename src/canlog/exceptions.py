"""
Exception types raised by the CAN log decoder
"""


class CanLogError(Exception):
    """Base class for all decoder errors"""

    pass


class FrameSourceError(CanLogError):
    """Raised when the raw frame sequence cannot be obtained or read"""

    pass


class SignalDecodeError(CanLogError):
    """Raised when a signal cannot be extracted from a frame payload"""

    pass


class TransportError(CanLogError):
    """Raised for ISO-TP protocol violations inside a single session"""

    pass


class CatalogError(CanLogError):
    """Raised when signal definitions are inconsistent"""

    pass


class ConfigValidationError(CanLogError, ValueError):
    """Raised when configuration values are invalid."""

    pass

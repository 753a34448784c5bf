# src/vdh/exceptions.py

"""
Application-specific exceptions.

Most failures in the daemon are local to one task or one client request and are
reported as return values. These exceptions cover the few cases that must stop a caller.
"""


class VdhError(Exception):
    """Base exception for all vdh errors."""


class StoreUnavailableError(VdhError):
    """Raised when the task database cannot be opened or initialized."""


class ControlClientError(VdhError):
    """Raised when a client cannot reach the control socket or read a reply."""

"""Shared helpers for scanledger."""

from .retry import (
    retry_on_transient_error,
    is_transient_network_error,
    is_transient_status,
)


__all__ = [
    'retry_on_transient_error',
    'is_transient_network_error',
    'is_transient_status',
]

"""
Service subpackage aggregating domain logic.

This package exposes the negotiation store, the conversation log, the
analysis delegate with its background dispatcher, the push broadcaster
and the identity boundary. See individual modules for details.
"""
from . import (  # noqa: F401
    analysis,
    auth,
    broadcast,
    conversations,
    dispatcher,
    negotiations,
)

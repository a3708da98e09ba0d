"""
Pydantic schemas package
"""

from .common import *
from .event import *
from .participant import *
from .scan import *

__all__ = [
    "StandardResponse",
    "ErrorResponse",
    "EventCreate",
    "EventResponse",
    "SheetSyncRequest",
    "WebhookParticipant",
    "DispatchRequest",
    "ImportResult",
    "VerifyRequest",
    "ParticipantCard",
    "ScanDetails",
    "ScanVerdict",
]

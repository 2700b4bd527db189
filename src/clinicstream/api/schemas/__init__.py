"""
API schemas package.
"""

from .common import ApiResponse, ErrorResponse
from .consultation import LiveSessionView, StructureConsultationRequest

__all__ = [
    "ApiResponse",
    "ErrorResponse",
    "LiveSessionView",
    "StructureConsultationRequest",
]

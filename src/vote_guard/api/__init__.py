"""Voting backend REST client and wire schemas."""

from .client import ApiClient
from .schemas import (
    CeremonyVerification,
    CurrentUser,
    DuplicateCheckResponse,
    FaceSignaturePayload,
    VoteRecord,
)

__all__ = [
    "ApiClient",
    "CeremonyVerification",
    "CurrentUser",
    "DuplicateCheckResponse",
    "FaceSignaturePayload",
    "VoteRecord",
]

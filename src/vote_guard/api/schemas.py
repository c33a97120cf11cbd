"""Pydantic schemas for the voting backend wire format."""

from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..biometrics.types import DESCRIPTOR_SIZE, DuplicateCheckResult, DuplicateMatch, FaceSignature


class WireModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# Biometric registry
# =============================================================================

class FaceSignaturePayload(WireModel):
    data: List[float]
    timestamp: int
    version: str = "1.0"

    @field_validator("data")
    @classmethod
    def check_length(cls, v: List[float]) -> List[float]:
        if len(v) != DESCRIPTOR_SIZE:
            raise ValueError(f"face signature must have {DESCRIPTOR_SIZE} values, got {len(v)}")
        return v

    @classmethod
    def from_signature(cls, signature: FaceSignature) -> "FaceSignaturePayload":
        return cls(data=list(signature.data), timestamp=signature.timestamp, version=signature.version)


class DuplicateCheckRequest(WireModel):
    face_signature: FaceSignaturePayload = Field(alias="faceSignature")
    award_id: str = Field(alias="awardId")


class DuplicateMatchPayload(WireModel):
    subject_id: str = Field(validation_alias=AliasChoices("userId", "subjectId", "subject_id"))
    confidence: float
    distance: float = 0.0
    timestamp: Optional[Union[int, str]] = None

    def to_match(self) -> DuplicateMatch:
        return DuplicateMatch(
            subject_id=self.subject_id,
            confidence=self.confidence,
            distance=self.distance,
            timestamp=self.timestamp if isinstance(self.timestamp, int) else 0,
        )


class DuplicateCheckResponse(WireModel):
    is_duplicate: bool = Field(alias="isDuplicate")
    confidence: float = 0.0
    matches: List[DuplicateMatchPayload] = Field(default_factory=list)

    def to_result(self) -> DuplicateCheckResult:
        matches = tuple(m.to_match() for m in self.matches)
        return DuplicateCheckResult(
            is_duplicate=self.is_duplicate,
            confidence=self.confidence,
            matches=matches,
            source="remote",
        )


class StoreBiometricRequest(WireModel):
    face_signature: FaceSignaturePayload = Field(alias="faceSignature")
    award_id: str = Field(alias="awardId")
    user_id: str = Field(alias="userId")


# =============================================================================
# Votes
# =============================================================================

class VoteRequest(WireModel):
    award_id: str = Field(alias="awardId")
    nominee_id: str = Field(alias="nomineeId")


class VoteRecord(WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    award_id: str = Field(alias="awardId")
    nominee_id: Optional[str] = Field(default=None, alias="nomineeId")
    vote_id: Optional[str] = Field(default=None, alias="_id")


class VoteHistoryResponse(WireModel):
    votes: List[VoteRecord] = Field(default_factory=list)


# =============================================================================
# Auth / WebAuthn
# =============================================================================

class CurrentUser(WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    user_id: str = Field(alias="_id")
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


class CeremonyVerification(WireModel):
    verified: bool = False
    message: Optional[str] = None

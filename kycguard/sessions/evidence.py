"""
Stage evidence schemas.

Evidence carries references to captured media (object-store keys,
upload ids), never the media itself. Unknown fields are rejected so a
typo cannot silently drop evidence.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

MAX_DOCUMENT_BYTES = 5 * 1024 * 1024
MAX_DOCUMENTS = 5


class StageEvidence(BaseModel):
    model_config = {"extra": "forbid", "frozen": True, "str_strip_whitespace": True}

    def digest(self) -> str:
        """SHA-256 over the canonical JSON form, used for replay detection."""
        json_str = json.dumps(self.model_dump(mode="json"), sort_keys=True, default=str)
        return hashlib.sha256(json_str.encode()).hexdigest()

    def evidence_flags(self) -> dict[str, bool]:
        """Flags raised by the evidence itself, before any provider runs."""
        return {}


class PersonalInfoEvidence(StageEvidence):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    date_of_birth: Optional[date] = None
    national_id_last4: Optional[str] = Field(default=None, pattern=r"^\d{4}$")


class DocumentRef(StageEvidence):
    name: str = Field(min_length=1, max_length=255)
    media_ref: str = Field(min_length=1)
    content_type: Literal["image/jpeg", "image/png", "application/pdf"]
    size_bytes: int = Field(gt=0, le=MAX_DOCUMENT_BYTES)
    doc_type: Optional[str] = Field(
        default=None,
        description="Declared document type, e.g. national_id, tax_card, passport",
    )


class DocumentsEvidence(StageEvidence):
    documents: list[DocumentRef] = Field(min_length=1, max_length=MAX_DOCUMENTS)

    @field_validator("documents")
    @classmethod
    def validate_unique_media(cls, v: list[DocumentRef]) -> list[DocumentRef]:
        refs = [d.media_ref for d in v]
        if len(set(refs)) != len(refs):
            raise ValueError("Each document must reference distinct media")
        return v


class SelfieEvidence(StageEvidence):
    frame_ref: str = Field(min_length=1)
    captured_at: Optional[datetime] = None


class LivenessChallenge(str, Enum):
    BLINK = "blink"
    SMILE = "smile"
    TURN_LEFT = "turn_left"
    TURN_RIGHT = "turn_right"
    OPEN_MOUTH = "open_mouth"


class LivenessEvidence(StageEvidence):
    challenges: list[LivenessChallenge] = Field(min_length=1, max_length=len(LivenessChallenge))
    completed: list[LivenessChallenge] = Field(default_factory=list)
    recording_ref: str = Field(min_length=1)

    @model_validator(mode="after")
    def validate_completed(self) -> "LivenessEvidence":
        if len(set(self.challenges)) != len(self.challenges):
            raise ValueError("Challenges must be distinct")
        extra = set(self.completed) - set(self.challenges)
        if extra:
            raise ValueError(
                f"Completed challenges were never issued: {sorted(c.value for c in extra)}"
            )
        return self

    def evidence_flags(self) -> dict[str, bool]:
        incomplete = set(self.challenges) != set(self.completed)
        flags = {"challenge_incomplete": incomplete}
        if incomplete:
            flags["spoof_flag"] = True
        return flags


class VoiceEvidence(StageEvidence):
    recording_ref: str = Field(min_length=1)
    phrase: str = Field(min_length=1, max_length=500)
    duration_ms: int = Field(gt=0)

"""
Intake Application DTOs
=======================
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from complaint_triage.intake.application.services import MAX_COMPLAINT_CHARS


class SubmitComplaintRequest(BaseModel):
    """Request model for a newly submitted complaint."""
    raw_text: str = Field(..., min_length=1, description="Complaint text as written by the consumer")
    business_id: Optional[str] = Field(None, description="Business the complaint is made against")
    business_name: Optional[str] = Field(None, max_length=255)
    business_status: Optional[str] = Field(None, max_length=50, description="e.g. active, dissolved")

    @field_validator("raw_text")
    @classmethod
    def validate_text_length(cls, v: str) -> str:
        """Ensure the text is not blank and not too long for the model."""
        if not v.strip():
            raise ValueError("Complaint text must not be blank")
        if len(v) > MAX_COMPLAINT_CHARS:
            raise ValueError(f"Complaint text too long (max {MAX_COMPLAINT_CHARS} characters)")
        return v


class SubmitComplaintResponse(BaseModel):
    complaint_id: str
    reference_number: str
    status: str
    queued: bool

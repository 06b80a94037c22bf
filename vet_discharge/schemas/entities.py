"""
Schemas - Structured Output Models for Clinical Extraction

Pydantic models used as LLM response formats. NormalizedEntities is the
shape every case's clinical data is normalized into, whether it came from
AI extraction of free text or from a mapped PIMS payload.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

Species = Literal["dog", "cat", "bird", "rabbit", "other", "unknown"]
VALID_SPECIES = ("dog", "cat", "bird", "rabbit", "other", "unknown")


class OwnerEntity(BaseModel):
    name: Optional[str] = Field(None, description="Full name of the pet owner.")
    phone: Optional[str] = Field(None, description="Owner phone number, as written.")
    email: Optional[str] = Field(None, description="Owner email address.")


class PatientEntity(BaseModel):
    name: str = Field("unknown", description="The animal's name, or 'unknown'.")
    species: Species = Field("unknown", description="Species of the animal.")
    breed: Optional[str] = None
    sex: Optional[str] = None
    age: Optional[str] = None
    weight: Optional[str] = Field(None, description="Weight including unit, e.g. '12 kg'.")
    owner: OwnerEntity = Field(default_factory=OwnerEntity)


class Medication(BaseModel):
    name: str
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    instructions: Optional[str] = None


class ClinicalEntity(BaseModel):
    visit_reason: Optional[str] = Field(None, description="Why the patient was seen.")
    diagnoses: List[str] = Field(default_factory=list)
    procedures: List[str] = Field(default_factory=list)
    medications: List[Medication] = Field(default_factory=list)
    follow_up_instructions: Optional[str] = Field(
        None, description="Home-care and follow-up instructions given to the owner."
    )
    warning_signs: List[str] = Field(
        default_factory=list,
        description="Symptoms that should make the owner contact the clinic.",
    )


class ExtractionConfidence(BaseModel):
    overall: float = Field(0.0, ge=0.0, le=1.0)
    patient: Optional[float] = Field(None, ge=0.0, le=1.0)
    clinical: Optional[float] = Field(None, ge=0.0, le=1.0)


class NormalizedEntities(BaseModel):
    """
    The strict JSON structure the LLM must generate when extracting a case.
    """
    patient: PatientEntity = Field(default_factory=PatientEntity)
    clinical: ClinicalEntity = Field(default_factory=ClinicalEntity)
    case_type: Optional[str] = Field(
        None,
        description="Visit category, e.g. 'checkup', 'surgery', 'emergency', 'euthanasia'.",
    )
    confidence: ExtractionConfidence = Field(default_factory=ExtractionConfidence)
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_usable(self) -> bool:
        """Pre-extracted entities are reused only with a patient name and a confidence score."""
        return bool(self.patient.name) and self.confidence.overall > 0


class DischargeSummaryDraft(BaseModel):
    """LLM response format for discharge summary generation."""

    content: str = Field(
        ...,
        description="Plain-text discharge instructions written for the pet owner.",
    )

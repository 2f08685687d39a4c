"""
Pydantic models for candidate selection, verification outcomes and assessment runs.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from copyguard import config
from .image import ImageRecord, utcnow


class AssessmentStatus(str, Enum):
    """Stages of an assessment run, in the only order they may be visited."""
    IDLE = "idle"
    INDEXING = "indexing"
    RETRIEVING = "retrieving"
    ANALYZING = "analyzing"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return list(AssessmentStatus).index(self)


class RiskScores(BaseModel):
    """Risk scores reported by the verification oracle.

    ``total`` is passed through as reported and is never recomputed from the
    components; ranking relies on it alone.
    """
    model_config = ConfigDict(frozen=True)

    semantic: float = Field(default=0.0, description="Core semantic overlap (0-40)")
    structure: float = Field(default=0.0, description="Composition and rendering overlap (0-40)")
    compliance: float = Field(default=0.0, description="Signs of derivative intent such as img2img (0-20)")
    total: float = Field(default=0.0, description="Overall risk (0-100)")


class Evidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    similarities: List[str] = Field(default_factory=list)
    differences: List[str] = Field(default_factory=list)


class DimensionScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = 0.0
    comment: str = ""


class Breakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    style: DimensionScore = Field(default_factory=DimensionScore)
    composition: DimensionScore = Field(default_factory=DimensionScore)
    elements: DimensionScore = Field(default_factory=DimensionScore)
    font: DimensionScore = Field(default_factory=DimensionScore)


class AssessmentResult(BaseModel):
    """Deep verification result for one target/reference pair."""
    model_config = ConfigDict(frozen=True)

    reference_id: str = Field(..., description="ID of the collection image compared against")
    fingerprint_match: bool = Field(default=False, description="Fingerprint pre-filter flagged this reference")
    is_match: bool = Field(default=False, description="Oracle reported a non-zero risk")
    vector_similarity: float = Field(default=0.0, description="Cosine similarity from retrieval")
    scores: RiskScores = Field(default_factory=RiskScores)
    evidence: Evidence = Field(default_factory=Evidence)
    analysis_text: str = ""
    breakdown: Breakdown = Field(default_factory=Breakdown)
    modification_suggestion: Optional[str] = None


class VerificationSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["success"] = "success"
    result: AssessmentResult

    @property
    def reference_id(self) -> str:
        return self.result.reference_id


class VerificationFailure(BaseModel):
    """A verification call that produced no usable result."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    reference_id: str
    fingerprint_match: bool = False
    reason: str = "service error"


VerificationOutcome = Annotated[
    Union[VerificationSuccess, VerificationFailure],
    Field(discriminator="kind"),
]


class Candidate(BaseModel):
    """A collection record short-listed for deep verification."""
    model_config = ConfigDict(frozen=True)

    record: ImageRecord
    fingerprint_match: bool = False
    fingerprint_distance: Optional[int] = Field(None, description="Hamming distance, None when unknown")
    vector_similarity: float = 0.0


class AssessmentOptions(BaseModel):
    """Retrieval and fan-out policy for an assessment run."""
    fingerprint_threshold: int = Field(default=config.FINGERPRINT_MATCH_THRESHOLD, ge=0,
                                       description="Max Hamming distance counted as a fingerprint match")
    max_candidates: int = Field(default=config.MAX_CANDIDATES, ge=1, description="Candidate list cap")
    batch_size: int = Field(default=config.VERIFICATION_BATCH_SIZE, ge=1,
                            description="Concurrent verification calls per batch")


class AssessmentRun(BaseModel):
    """State of one assessment, owned by the orchestrator until replaced."""
    run_id: str
    generation: int
    target: Optional[ImageRecord] = None
    status: AssessmentStatus = AssessmentStatus.IDLE
    progress: int = Field(default=0, ge=0, le=100)
    current_step: Optional[str] = None
    candidates: List[Candidate] = Field(default_factory=list)
    results: List[AssessmentResult] = Field(default_factory=list)
    failures: List[VerificationFailure] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class ProgressEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    generation: int
    status: AssessmentStatus
    progress: int
    current_step: Optional[str] = None


class HistoryRecord(BaseModel):
    """A completed assessment kept for later review."""
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime = Field(default_factory=utcnow)
    target: ImageRecord
    results: List[AssessmentResult] = Field(default_factory=list)

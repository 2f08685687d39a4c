"""
Interfaces of the external oracles the pipeline consumes, plus factories
that pick an implementation from configuration.

Every oracle fails open: it logs and returns an empty value or a
VerificationFailure instead of raising into the pipeline.
"""

from typing import Optional, Protocol

from copyguard import config
from copyguard.models.assessment import VerificationOutcome
from copyguard.models.image import IndexResult
from .doubao import DoubaoClient, DoubaoEmbeddingOracle, DoubaoRemediationOracle, DoubaoVerificationOracle


class EmbeddingOracle(Protocol):
    def index(self, data: bytes, mime_type: str) -> IndexResult:
        """Describe an image and embed it. Returns an empty IndexResult on any error."""


class VerificationOracle(Protocol):
    def assess(self, target_data: bytes, target_mime: str, reference_data: bytes, reference_mime: str,
               reference_id: str, fingerprint_match: bool) -> VerificationOutcome:
        """Score the copyright risk of the target against one reference image."""


class RemediationOracle(Protocol):
    def refine(self, suggestion: str) -> str:
        """Turn a modification suggestion into a generation prompt. Returns "" on any error."""


def create_embedding_oracle(provider: Optional[str] = None) -> EmbeddingOracle:
    """Build the embedding oracle named by EMBEDDING_PROVIDER."""
    provider = (provider or config.EMBEDDING_PROVIDER).lower()
    if provider == "doubao":
        return DoubaoEmbeddingOracle(DoubaoClient())
    if provider == "clip":
        # torch/transformers are an optional extra
        from .embedding import ClipEmbeddingOracle
        return ClipEmbeddingOracle()
    raise ValueError(f"Unknown embedding provider: {provider}")


def create_verification_oracle() -> VerificationOracle:
    return DoubaoVerificationOracle(DoubaoClient())


def create_remediation_oracle() -> RemediationOracle:
    return DoubaoRemediationOracle(DoubaoClient())

"""
Oracle adapters backed by the Doubao (Volcano Engine Ark) HTTP API.

One client handles transport, auth and retries; the oracles on top of it
build prompts, parse replies and convert every failure into the fail-open
value their interface promises.
"""

import base64
import json
from typing import Any, Dict, List, Optional

import requests
import structlog
from pydantic import ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from copyguard import config
from copyguard.errors import OracleError
from copyguard.models.assessment import (
    AssessmentResult, Breakdown, Evidence, RiskScores, VerificationFailure, VerificationOutcome,
    VerificationSuccess,
)
from copyguard.models.image import IndexResult

logger = structlog.get_logger()

DESCRIBE_PROMPT = (
    "Give a detailed visual description of this image, strictly describing the subject, "
    "composition, artistic style, colors and key elements. Do not analyze, just describe. "
    "Output plain text."
)

VERIFICATION_PROMPT = """
Role: you are an extremely strict forensic examiner for copyright disputes over AI-generated images.
Task: compare Image A (the submitted image) with Image B (a protected original) and assess the infringement risk.

Pixel fingerprint pre-check: {fingerprint_verdict}

Scoring rules (mandatory):
1. If the fingerprint pre-check MATCHED:
   - Treat this as physical evidence of copying and ignore minor compression noise or color shifts.
   - total MUST be >= 90, and semantic and structure MUST be at their maximum.
   - analysisText MUST state that pixel-level copying or extremely high similarity was detected.
2. If the fingerprint pre-check did NOT match, perform a full visual examination:
   - Only give a high score (>60) when composition, subject and style all coincide.
   - Similar style but different content (e.g. both anime) scores low (<30).
   - Similar content (e.g. both show a cat) with different composition and style scores 30-50.

Dimensions (total 100):
I.   semantic (max 40): is the narrative the same, are the core subjects or characters alike?
II.  structure (max 40): overlap of layout, viewpoint, object placement and lighting; brushwork, palette, materials.
III. compliance (max 20): visible img2img traces, lifted details.

Reply with JSON only, no markdown fences, in exactly this shape:
{{
  "scores": {{"semantic": 0-40, "structure": 0-40, "compliance": 0-20, "total": 0-100}},
  "evidence": {{"similarities": ["..."], "differences": ["..."]}},
  "analysisText": "professional summary of the risk level and its grounds",
  "breakdown": {{
    "style": {{"score": 0-40, "comment": "..."}},
    "composition": {{"score": 0-40, "comment": "..."}},
    "elements": {{"score": 0-40, "comment": "..."}},
    "font": {{"score": 0-20, "comment": "..."}}
  }},
  "modificationSuggestion": "how to change Image A to avoid the risk, or null"
}}

Evidence entries must name concrete visual facts (e.g. "the character's pose overlaps exactly",
"both have a red balloon in the top-left corner").
"""

FINGERPRINT_MATCHED = "MATCHED (very likely the same image or a lightly edited copy)"
FINGERPRINT_NOT_MATCHED = "NOT MATCHED (no direct pixel copying detected)"

REMEDIATION_PROMPT = (
    "Based on the following copyright avoidance advice, write a high quality Stable Diffusion or "
    "Midjourney prompt (in English) that keeps the user's intent while avoiding the risk, followed "
    "by a short explanation of which descriptors were replaced, removed or added.\n\n"
    "Advice: {suggestion}"
)


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the outermost JSON object in a model reply, tolerating markdown fences and chatter."""
    candidate = text.strip()
    first_brace = candidate.find('{')
    last_brace = candidate.rfind('}')
    if first_brace != -1 and last_brace > first_brace:
        candidate = candidate[first_brace:last_brace + 1]

    try:
        payload = json.loads(candidate)
    except ValueError as e:
        raise OracleError(f"Oracle reply is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise OracleError("Oracle reply is not a JSON object")
    return payload


def result_from_payload(payload: Dict[str, Any], reference_id: str, fingerprint_match: bool) -> AssessmentResult:
    """Build an AssessmentResult from the oracle's JSON, filling gaps with neutral defaults."""
    try:
        scores = RiskScores.model_validate(payload.get("scores") or {})
        return AssessmentResult(
            reference_id=reference_id,
            fingerprint_match=fingerprint_match,
            is_match=scores.total > 0,
            scores=scores,
            evidence=Evidence.model_validate(payload.get("evidence") or {}),
            analysis_text=payload.get("analysisText") or "Analysis complete",
            breakdown=Breakdown.model_validate(payload.get("breakdown") or {}),
            modification_suggestion=payload.get("modificationSuggestion") or None,
        )
    except (ValidationError, AttributeError, TypeError) as e:
        raise OracleError(f"Oracle reply has an unexpected shape: {e}") from e


class DoubaoClient:
    """Thin client for the Ark chat-completions and embeddings endpoints."""

    def __init__(self,
                 api_key: Optional[str] = None,
                 base_url: Optional[str] = None,
                 chat_model: Optional[str] = None,
                 vision_model: Optional[str] = None,
                 embedding_model: Optional[str] = None,
                 timeout: float = config.ORACLE_TIMEOUT,
                 max_retries: int = config.ORACLE_MAX_RETRIES,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key or config.DOUBAO_API_KEY
        self.base_url = (base_url or config.DOUBAO_BASE_URL).rstrip('/')
        self.chat_model = chat_model or config.DOUBAO_CHAT_MODEL
        self.vision_model = vision_model or config.DOUBAO_VISION_MODEL
        self.embedding_model = embedding_model or config.DOUBAO_EMBEDDING_MODEL
        self.timeout = timeout
        self.session = session or self._build_session(max_retries)

        if not self.api_key:
            logger.warning("DOUBAO_API_KEY is not set, oracle calls will fail")

    @staticmethod
    def _build_session(max_retries: int) -> requests.Session:
        """HTTP session that backs off on rate limits and transient server errors."""
        session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=2,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=frozenset({"POST"}),
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise OracleError("DOUBAO_API_KEY is not set")

        url = f"{self.base_url}/{path}"
        try:
            response = self.session.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise OracleError(f"Doubao request failed: {e}") from e

        if not response.ok:
            raise OracleError(f"Doubao API call failed: {response.status_code} {response.text[:500]}")

        try:
            return response.json()
        except ValueError as e:
            raise OracleError(f"Doubao API returned invalid JSON: {e}") from e

    def chat(self, messages: List[Dict[str, Any]], model: Optional[str] = None, temperature: float = 0.2,
             response_format: Optional[Dict[str, str]] = None) -> str:
        """Run a chat completion and return the text of the first choice."""
        payload: Dict[str, Any] = {
            "model": model or self.chat_model,
            "messages": messages,
            "temperature": temperature,
        }
        if response_format:
            payload["response_format"] = response_format

        data = self._post("chat/completions", payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise OracleError("Doubao chat returned empty content")
        return content

    def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        """Embed a text and return the vector."""
        data = self._post("embeddings", {"model": model or self.embedding_model, "input": text})
        try:
            embedding = data["data"][0]["embedding"]
            return [float(x) for x in embedding]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise OracleError(f"Doubao embeddings reply has an unexpected shape: {e}") from e


class DoubaoEmbeddingOracle:
    """Describes an image with the vision model, then embeds the description."""

    def __init__(self, client: DoubaoClient):
        self.client = client

    def index(self, data: bytes, mime_type: str) -> IndexResult:
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": DESCRIBE_PROMPT},
                {"type": "image_url", "image_url": {"url": to_data_url(data, mime_type)}},
            ],
        }]
        try:
            description = self.client.chat(messages, model=self.client.vision_model)
            embedding = self.client.embed(description)
        except OracleError as e:
            logger.error("Image indexing failed", mime_type=mime_type, error=str(e))
            return IndexResult()

        logger.debug("Image indexed", description_length=len(description), embedding_dim=len(embedding))
        return IndexResult(description=description, embedding=embedding)


class DoubaoVerificationOracle:
    """Forensic comparison of a target image against one reference image."""

    def __init__(self, client: DoubaoClient, temperature: float = 0.2):
        self.client = client
        self.temperature = temperature

    def assess(self, target_data: bytes, target_mime: str, reference_data: bytes, reference_mime: str,
               reference_id: str, fingerprint_match: bool) -> VerificationOutcome:
        verdict = FINGERPRINT_MATCHED if fingerprint_match else FINGERPRINT_NOT_MATCHED
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": VERIFICATION_PROMPT.format(fingerprint_verdict=verdict)},
                {"type": "image_url", "image_url": {"url": to_data_url(target_data, target_mime)}},
                {"type": "image_url", "image_url": {"url": to_data_url(reference_data, reference_mime)}},
            ],
        }]

        try:
            reply = self.client.chat(messages, model=self.client.vision_model, temperature=self.temperature,
                                     response_format={"type": "json_object"})
            result = result_from_payload(extract_json_object(reply), reference_id, fingerprint_match)
        except OracleError as e:
            logger.error("Verification failed", reference_id=reference_id, error=str(e))
            return VerificationFailure(reference_id=reference_id, fingerprint_match=fingerprint_match, reason=str(e))

        logger.info("Verification completed",
                    reference_id=reference_id,
                    fingerprint_match=fingerprint_match,
                    total=result.scores.total)
        return VerificationSuccess(result=result)


class DoubaoRemediationOracle:
    """Rewrites a modification suggestion into a generation prompt."""

    def __init__(self, client: DoubaoClient, temperature: float = 0.3):
        self.client = client
        self.temperature = temperature

    def refine(self, suggestion: str) -> str:
        if not suggestion or not suggestion.strip():
            return ""
        messages = [{"role": "user", "content": REMEDIATION_PROMPT.format(suggestion=suggestion)}]
        try:
            return self.client.chat(messages, temperature=self.temperature)
        except OracleError as e:
            logger.error("Prompt refinement failed", error=str(e))
            return ""

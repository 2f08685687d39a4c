"""
Assessment orchestration.

Drives one assessment run through idle -> indexing -> retrieving ->
analyzing -> complete, fans verification out to the oracle in bounded
batches, and ranks the results deterministically.

Every run is tagged with a generation number. Submitting a new target (or
resetting) bumps the generation; a run that finds its generation stale after
any suspension point drops whatever it was about to commit.
"""

import asyncio
from collections import deque
from typing import Callable, Deque, List, Optional, Sequence, Tuple

import structlog

from copyguard import config
from copyguard.errors import AssessmentInProgressError, DecodeError, FetchError, NoTargetError
from copyguard.models.assessment import (
    AssessmentOptions, AssessmentResult, AssessmentRun, AssessmentStatus, Candidate, HistoryRecord,
    ProgressEvent, VerificationFailure, VerificationOutcome, VerificationSuccess,
)
from copyguard.models.image import ImageRecord, IndexResult, utcnow
from copyguard.services import image_hash
from copyguard.services.oracles import EmbeddingOracle, VerificationOracle
from .collection import ImageCollection, StoredImage
from .selector import select_candidates
from .utils import batched, new_image_id

logger = structlog.get_logger()

ProgressListener = Callable[[ProgressEvent], None]

PROGRESS_INDEXING = 10
PROGRESS_RETRIEVING = 30
PROGRESS_ANALYZING = 50
PROGRESS_COMPLETE = 100


def rank_results(outcomes: Sequence[VerificationOutcome]) -> Tuple[List[AssessmentResult], List[VerificationFailure]]:
    """
    Split verification outcomes into surfaced results and failures.

    Results without a positive total are dropped, so a failed or empty
    verification never shows up as evidence of safety. A negative total lies
    outside the oracle's 0-100 scale and carries no risk signal either, so
    it is dropped like a zero. The remaining results are ordered fingerprint
    matches first, then by total score descending; ties keep candidate order.
    """
    results = [o.result for o in outcomes if isinstance(o, VerificationSuccess) and o.result.scores.total > 0]
    failures = [o for o in outcomes if isinstance(o, VerificationFailure)]
    results.sort(key=lambda r: (not r.fingerprint_match, -r.scores.total))
    return results, failures


class AssessmentOrchestrator:
    """Owns the current assessment run and the history of completed ones."""

    def __init__(self,
                 collection: ImageCollection,
                 embedding_oracle: EmbeddingOracle,
                 verification_oracle: VerificationOracle,
                 options: Optional[AssessmentOptions] = None,
                 history_limit: int = config.HISTORY_LIMIT):
        self.collection = collection
        self.embedding_oracle = embedding_oracle
        self.verification_oracle = verification_oracle
        self.options = options or AssessmentOptions()
        self._generation = 0
        self._target_blob: Optional[StoredImage] = None
        self._history: Deque[HistoryRecord] = deque(maxlen=history_limit)
        self._listeners: List[ProgressListener] = []
        self._run = AssessmentRun(run_id=new_image_id(), generation=self._generation)

    @property
    def run(self) -> AssessmentRun:
        return self._run

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def history(self) -> List[HistoryRecord]:
        """Completed assessments, newest first."""
        return list(self._history)

    def add_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_target(self, data: bytes, mime_type: str, name: str) -> AssessmentRun:
        """Submit a new target image. Any in-flight run becomes stale."""
        target = ImageRecord(id=new_image_id(), name=name, mime_type=mime_type)
        self._target_blob = StoredImage(data=data, mime_type=mime_type)
        return self._start_new_run(target)

    def reset(self) -> AssessmentRun:
        """Discard the current run and return a fresh idle run for the same target."""
        return self._start_new_run(self._run.target)

    def _start_new_run(self, target: Optional[ImageRecord]) -> AssessmentRun:
        self._generation += 1
        self._run = AssessmentRun(run_id=new_image_id(), generation=self._generation, target=target)
        logger.info("Assessment run created",
                    run_id=self._run.run_id,
                    generation=self._generation,
                    target=target.name if target else None)
        self._emit(self._run)
        return self._run

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    def _discard(self, run: AssessmentRun) -> AssessmentRun:
        logger.info("Discarding stale assessment run",
                    run_id=run.run_id, generation=run.generation, current_generation=self._generation)
        return run

    def _emit(self, run: AssessmentRun) -> None:
        event = ProgressEvent(run_id=run.run_id, generation=run.generation, status=run.status,
                              progress=run.progress, current_step=run.current_step)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("Progress listener failed", run_id=run.run_id, error=str(e))

    def _advance(self, run: AssessmentRun, status: AssessmentStatus, progress: int,
                 step: Optional[str] = None) -> None:
        if status.rank < run.status.rank:
            raise RuntimeError(f"Cannot move assessment from {run.status.value} back to {status.value}")
        run.status = status
        run.progress = max(run.progress, min(progress, PROGRESS_COMPLETE))
        run.current_step = step
        self._emit(run)

    async def run_assessment(self) -> AssessmentRun:
        """
        Run the current assessment to completion.

        A completed run is replaced by a fresh one for the same target first.
        Returns the run object; if a newer target arrived meanwhile, the
        returned (stale) run is left where it stopped and holds no results.

        Raises:
            NoTargetError: no target image has been submitted
            AssessmentInProgressError: the current run is already working
        """
        run = self._run
        if run.target is None or self._target_blob is None:
            raise NoTargetError("Submit a target image before starting an assessment")
        if run.status == AssessmentStatus.COMPLETE:
            run = self.reset()
        elif run.status != AssessmentStatus.IDLE:
            raise AssessmentInProgressError(f"Assessment {run.run_id} is {run.status.value}")

        generation = run.generation
        target_blob = self._target_blob
        logger.info("Assessment started", run_id=run.run_id, generation=generation, target=run.target.name)

        # Target features
        self._advance(run, AssessmentStatus.INDEXING, PROGRESS_INDEXING, "Extracting target image features")
        target = await self._index_target(run.target, target_blob)
        if self._is_stale(generation):
            return self._discard(run)
        run.target = target

        # Retrieval
        self._advance(run, AssessmentStatus.RETRIEVING, PROGRESS_RETRIEVING, "Searching the collection")
        records = self.collection.records()
        if not records:
            self._complete(run, [], [])
            return run

        candidates = select_candidates(
            target.fingerprint,
            target.embedding,
            records,
            max_candidates=self.options.max_candidates,
            fingerprint_threshold=self.options.fingerprint_threshold,
        )
        run.candidates = candidates

        # Deep verification
        self._advance(run, AssessmentStatus.ANALYZING, PROGRESS_ANALYZING,
                      f"Verifying {len(candidates)} candidates")
        outcomes: List[VerificationOutcome] = []
        done = 0
        for batch in batched(candidates, self.options.batch_size):
            batch_outcomes = await asyncio.gather(*(self._verify(c, target_blob) for c in batch))
            if self._is_stale(generation):
                return self._discard(run)

            for candidate, outcome in zip(batch, batch_outcomes):
                done += 1
                if outcome is not None:
                    outcomes.append(outcome)
                progress = PROGRESS_ANALYZING + (done * (PROGRESS_COMPLETE - PROGRESS_ANALYZING)) // len(candidates)
                self._advance(run, AssessmentStatus.ANALYZING, progress,
                              f"Verified {candidate.record.name} "
                              f"(similarity {candidate.vector_similarity * 100:.1f}%)")

        results, failures = rank_results(outcomes)
        self._complete(run, results, failures)
        return run

    async def _index_target(self, target: ImageRecord, blob: StoredImage) -> ImageRecord:
        """Reuse or compute the target fingerprint and embedding. Missing signals degrade retrieval, nothing more."""
        fingerprint = target.fingerprint
        if not fingerprint:
            try:
                fingerprint = await asyncio.to_thread(image_hash.fingerprint, blob.data)
            except DecodeError as e:
                logger.warning("Target fingerprint unavailable", target=target.name, error=str(e))
            except Exception as e:
                logger.error("Target fingerprinting raised", target=target.name, error=str(e))

        embedding = target.embedding
        description = target.description
        if not embedding:
            try:
                result = await asyncio.to_thread(self.embedding_oracle.index, blob.data, blob.mime_type)
            except Exception as e:
                logger.error("Embedding oracle raised", target=target.name, error=str(e))
                result = IndexResult()

            if result.embedding:
                embedding = result.embedding
                description = result.description or description
            else:
                logger.warning("Target embedding unavailable, retrieval falls back to fingerprints",
                               target=target.name)

        return target.model_copy(update={
            "fingerprint": fingerprint,
            "embedding": embedding or None,
            "description": description,
        })

    async def _verify(self, candidate: Candidate, target_blob: StoredImage) -> Optional[VerificationOutcome]:
        """Verify one candidate. Returns None when the candidate's bytes are unavailable."""
        record = candidate.record
        try:
            reference = self.collection.fetch(record.id)
        except FetchError as e:
            logger.warning("Skipping candidate without image data", reference_id=record.id, error=str(e))
            return None

        try:
            outcome = await asyncio.to_thread(
                self.verification_oracle.assess,
                target_blob.data,
                target_blob.mime_type,
                reference.data,
                reference.mime_type,
                record.id,
                candidate.fingerprint_match,
            )
        except Exception as e:
            logger.error("Verification oracle raised", reference_id=record.id, error=str(e))
            return VerificationFailure(reference_id=record.id, fingerprint_match=candidate.fingerprint_match,
                                       reason=str(e) or "service error")

        if isinstance(outcome, VerificationSuccess):
            result = outcome.result.model_copy(update={
                "vector_similarity": candidate.vector_similarity,
                "fingerprint_match": candidate.fingerprint_match,
            })
            return VerificationSuccess(result=result)
        return outcome

    def _complete(self, run: AssessmentRun, results: List[AssessmentResult],
                  failures: List[VerificationFailure]) -> None:
        run.results = results
        run.failures = failures
        run.completed_at = utcnow()
        self._advance(run, AssessmentStatus.COMPLETE, PROGRESS_COMPLETE,
                      f"{len(results)} risky matches found")

        self._history.appendleft(HistoryRecord(id=run.run_id, timestamp=run.completed_at,
                                               target=run.target, results=list(results)))

        logger.info("Assessment complete",
                    run_id=run.run_id,
                    generation=run.generation,
                    candidates=len(run.candidates),
                    results=len(results),
                    failures=len(failures))

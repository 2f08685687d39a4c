import io
import struct
import threading
import time
import zlib

import pytest
from PIL import Image

from copyguard.core.collection import ImageCollection
from copyguard.models.assessment import (
    AssessmentResult, RiskScores, VerificationFailure, VerificationSuccess,
)
from copyguard.models.image import IndexResult


def encode(image, fmt="PNG"):
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def image_from_rows(rows, mode="RGB"):
    """Build an image from a list of pixel rows."""
    height, width = len(rows), len(rows[0])
    image = Image.new(mode, (width, height))
    image.putdata([pixel for row in rows for pixel in row])
    return image


def png_from_rows(rows, mode="RGB"):
    return encode(image_from_rows(rows, mode))


def solid_png(color=(128, 128, 128), size=(32, 32)):
    return encode(Image.new("RGB", size, color))


def gradient_png(descending=False, size=(9, 8)):
    """Horizontal grayscale ramp; every left/right pair differs in the same direction."""
    width, height = size
    row = [int(255 * x / (width - 1)) for x in range(width)]
    if descending:
        row.reverse()
    return png_from_rows([[(v, v, v) for v in row]] * height)


def broken_png(size=(32, 32)):
    """
    PNG whose image data is split over two chunks, the second with a
    non-alphanumeric chunk type. Opening succeeds; load() hits the bad chunk.
    """
    width, height = size
    noise = Image.frombytes("RGB", size, bytes((x * 37 + y * 101) % 256 for y in range(height) for x in range(width * 3)))
    data = encode(noise)

    chunks = []
    pos = 8
    while pos < len(data):
        length, cid = struct.unpack(">I4s", data[pos:pos + 8])
        chunks.append((cid, data[pos + 8:pos + 8 + length]))
        pos += 12 + length

    def chunk(cid, body):
        return struct.pack(">I", len(body)) + cid + body + struct.pack(">I", zlib.crc32(cid + body) & 0xFFFFFFFF)

    idat = b"".join(body for cid, body in chunks if cid == b"IDAT")
    half = len(idat) // 2
    out = data[:8]
    for cid, body in chunks:
        if cid == b"IDAT":
            continue
        if cid == b"IEND":
            out += chunk(b"IDAT", idat[:half]) + chunk(b"\xc5b\xb1X", idat[half:])
        out += chunk(cid, body)
    return out


def result(reference_id, total, fingerprint_match=False):
    return AssessmentResult(
        reference_id=reference_id,
        fingerprint_match=fingerprint_match,
        is_match=total > 0,
        scores=RiskScores(total=total),
        analysis_text="fake",
    )


class FakeEmbeddingOracle:
    """Returns embeddings keyed by image bytes; unknown images get no embedding."""

    def __init__(self, embeddings=None, description="a test image"):
        self.embeddings = embeddings or {}
        self.description = description
        self.calls = []
        self._lock = threading.Lock()

    def index(self, data, mime_type):
        with self._lock:
            self.calls.append((data, mime_type))
        embedding = self.embeddings.get(data)
        if not embedding:
            return IndexResult()
        return IndexResult(description=self.description, embedding=list(embedding))


class FakeVerificationOracle:
    """
    Scores references from a {reference_id: total} table.

    A table value that is an exception instance is raised; ``None`` turns
    into a VerificationFailure. ``delays`` maps reference ids to a per-call
    sleep. Tracks peak concurrency and completion order of ``assess`` calls.
    """

    def __init__(self, totals=None, default_total=50.0, delay=0.0, delays=None, gate=None):
        self.totals = totals or {}
        self.default_total = default_total
        self.delay = delay
        self.delays = delays or {}
        self.finished = []
        self.gate = gate
        self.calls = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def assess(self, target_data, target_mime, reference_data, reference_mime, reference_id, fingerprint_match):
        with self._lock:
            self.calls.append((reference_id, fingerprint_match))
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            delay = self.delays.get(reference_id, self.delay)
            if delay:
                time.sleep(delay)

            total = self.totals.get(reference_id, self.default_total)
            if isinstance(total, Exception):
                raise total
            if total is None:
                return VerificationFailure(reference_id=reference_id, fingerprint_match=fingerprint_match)
            return VerificationSuccess(result=result(reference_id, total, fingerprint_match))
        finally:
            with self._lock:
                self.active -= 1
                self.finished.append(reference_id)

    @property
    def reference_ids(self):
        return [reference_id for reference_id, _ in self.calls]


class FakeRemediationOracle:
    def __init__(self, prompt="a watercolor fox, different pose"):
        self.prompt = prompt
        self.calls = []

    def refine(self, suggestion):
        self.calls.append(suggestion)
        return self.prompt


@pytest.fixture
def collection():
    return ImageCollection()


@pytest.fixture
def embedding_oracle():
    return FakeEmbeddingOracle()


@pytest.fixture
def verification_oracle():
    return FakeVerificationOracle()


def add_indexed(collection, name, fingerprint=None, embedding=None, data=None):
    """Add a record to the collection with precomputed features."""
    record = collection.add(name, data or solid_png(), "image/png")
    collection.finish_indexing(record.id, fingerprint=fingerprint, embedding=embedding)
    return collection.get(record.id)

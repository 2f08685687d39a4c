import pytest

torch = pytest.importorskip("torch")
pytest.importorskip("transformers")

from copyguard.services import embedding
from conftest import solid_png


def test_device_is_cached():
    assert embedding.get_device() is embedding.get_device()


def test_undecodable_image_fails_open():
    oracle = embedding.ClipEmbeddingOracle()
    result = oracle.index(b"not an image", "image/png")
    assert result.embedding == []


def test_model_failure_fails_open(monkeypatch):
    def broken(model_name=None):
        raise OSError("model unavailable")

    monkeypatch.setattr(embedding, "load_clip_model", broken)
    result = embedding.ClipEmbeddingOracle().index(solid_png(), "image/png")
    assert result.embedding == []
    assert result.description == ""

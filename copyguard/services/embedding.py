"""
Local CLIP image embeddings, an offline alternative to the remote embedding oracle.

Requires the optional ``clip`` extra (torch + transformers).
"""

from typing import Optional, Tuple

import structlog
import torch
from transformers import CLIPModel, CLIPProcessor

from copyguard import config
from copyguard.errors import DecodeError
from copyguard.models.image import IndexResult
from .image_hash import load_image

logger = structlog.get_logger()

# Global model and processor instances for reuse
_clip_model = None
_clip_processor = None
_device = None


def get_device() -> torch.device:
    """Get the best available device for inference."""
    global _device
    if _device is None:
        if torch.cuda.is_available():
            _device = torch.device("cuda")
            logger.info("Using CUDA GPU for embeddings")
        elif hasattr(torch.backends, 'mps') and torch.backends.mps.is_built() and torch.backends.mps.is_available():
            _device = torch.device("mps")
            logger.info("Using Apple Silicon MPS for embeddings")
        else:
            _device = torch.device("cpu")
            logger.info("Using CPU for embeddings")
    return _device


def load_clip_model(model_name: Optional[str] = None) -> Tuple[CLIPModel, CLIPProcessor]:
    """Load CLIP model and processor once per process."""
    global _clip_model, _clip_processor

    if _clip_model is None or _clip_processor is None:
        model_name = model_name or config.CLIP_MODEL_NAME
        device = get_device()

        logger.info("Loading CLIP model", model_name=model_name, device=str(device))

        _clip_processor = CLIPProcessor.from_pretrained(model_name)
        _clip_model = CLIPModel.from_pretrained(model_name)
        _clip_model.to(device)
        _clip_model.eval()

        logger.info("CLIP model loaded",
                    model_name=model_name,
                    parameters=sum(p.numel() for p in _clip_model.parameters()))

    return _clip_model, _clip_processor


class ClipEmbeddingOracle:
    """Embedding oracle producing L2-normalised CLIP image features and no description."""

    def __init__(self, model_name: Optional[str] = None):
        self.model_name = model_name

    def index(self, data: bytes, mime_type: str) -> IndexResult:
        try:
            image = load_image(data).convert("RGB")
            model, processor = load_clip_model(self.model_name)
            device = get_device()

            inputs = processor(images=image, return_tensors="pt")
            inputs = {k: v.to(device) for k, v in inputs.items()}

            with torch.no_grad():
                features = model.get_image_features(**inputs)
                features = torch.nn.functional.normalize(features, p=2, dim=1)

            embedding = features.cpu().numpy()[0].tolist()
        except DecodeError as e:
            logger.warning("CLIP embedding skipped, image not decodable", mime_type=mime_type, error=str(e))
            return IndexResult()
        except Exception as e:
            logger.error("CLIP embedding failed", mime_type=mime_type, error=str(e))
            return IndexResult()

        logger.debug("CLIP embedding generated", embedding_dim=len(embedding))
        return IndexResult(embedding=embedding)

"""
Embedding function factories for similarity indexes.

Every factory returns a callable mapping a single text to a vector. The
``embedder`` parameter of a similarity index URI selects one of them through
:func:`create_embedding_function`.
"""

from __future__ import annotations

import logging
import os
import threading
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple

try:
    import openai
    _OPENAI_AVAILABLE = True
except ImportError:
    _OPENAI_AVAILABLE = False

try:
    import requests
    _REQUESTS_AVAILABLE = True
except ImportError:
    _REQUESTS_AVAILABLE = False

try:
    from huggingface_hub import InferenceClient
    _HUGGINGFACE_HUB_AVAILABLE = True
except ImportError:
    _HUGGINGFACE_HUB_AVAILABLE = False

try:
    from sentence_transformers import SentenceTransformer
    _SENTENCE_TRANSFORMERS_AVAILABLE = True
except ImportError:
    _SENTENCE_TRANSFORMERS_AVAILABLE = False

from geodedupe.configuration import ConfigurationError
from geodedupe.observability import get_event_recorder

LOGGER = logging.getLogger(__name__)

EmbeddingFunction = Callable[[str], List[float]]

DEFAULT_LOCAL_MODEL = "all-MiniLM-L6-v2"
DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
DEFAULT_HUGGINGFACE_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


def _record_similarity_event(name: str, payload: Dict[str, Any]) -> None:
    get_event_recorder("similarity").record(name=name, payload=payload)


def create_sentence_transformer_embedding_function(
    model: str = DEFAULT_LOCAL_MODEL,
) -> EmbeddingFunction:
    """
    Create an embedding function backed by a local sentence-transformers model.

    The model is loaded once per name and shared by every index in the
    process, encoding is serialized on that model.

    Raises:
        ImportError: If sentence-transformers is not installed.
    """
    if not _SENTENCE_TRANSFORMERS_AVAILABLE:
        raise ImportError(
            "sentence-transformers is required for local embeddings. "
            "Install it with: pip install sentence-transformers>=2.2.0"
        )
    encoder, lock = _load_sentence_transformer(model)

    def embed(text: str) -> List[float]:
        with lock:
            return encoder.encode(text).tolist()

    return embed


_LOAD_LOCK = threading.Lock()


def _load_sentence_transformer(model: str) -> Tuple["SentenceTransformer", threading.Lock]:
    with _LOAD_LOCK:
        return _cached_sentence_transformer(model)


@lru_cache(maxsize=None)
def _cached_sentence_transformer(model: str) -> Tuple["SentenceTransformer", threading.Lock]:
    _record_similarity_event("embedder.load", {"embedder": "sentence-transformers", "model": model})
    return SentenceTransformer(model), threading.Lock()


def create_openai_embedding_function(
    model: str = DEFAULT_OPENAI_MODEL,
    api_key: Optional[str] = None,
) -> EmbeddingFunction:
    """
    Create an embedding function using OpenAI's API.

    Args:
        model: OpenAI embedding model name.
        api_key: OpenAI API key (defaults to the OPENAI_API_KEY env var).

    Raises:
        ImportError: If the openai package is not installed.
        ValueError: If no API key is available.
    """
    if not _OPENAI_AVAILABLE:
        raise ImportError(
            "OpenAI package is required for API embeddings. "
            "Install it with: pip install openai"
        )

    api_key = api_key or os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ValueError(
            "OpenAI API key required. Set OPENAI_API_KEY environment variable "
            "or pass api_key parameter."
        )

    client = openai.OpenAI(api_key=api_key)

    def embed(text: str) -> List[float]:
        response = client.embeddings.create(model=model, input=text)
        return response.data[0].embedding

    return embed


def create_huggingface_embedding_function(
    model: str = DEFAULT_HUGGINGFACE_MODEL,
    api_key: Optional[str] = None,
) -> EmbeddingFunction:
    """
    Create an embedding function using the Hugging Face Inference API.

    Uses ``huggingface_hub.InferenceClient`` when installed and falls back to
    plain HTTP through requests otherwise.

    Raises:
        ImportError: If neither huggingface_hub nor requests is installed.
        ValueError: If no API key is available.
    """
    api_key = api_key or os.getenv("HF_API_KEY") or os.getenv("HUGGINGFACE_API_KEY")
    if not api_key:
        raise ValueError(
            "Hugging Face API key required. Set HF_API_KEY environment variable "
            "or pass api_key parameter."
        )

    if _HUGGINGFACE_HUB_AVAILABLE:
        client = InferenceClient(token=api_key)

        def embed(text: str) -> List[float]:
            return _flatten_embedding(client.feature_extraction(text, model=model))

        return embed

    if not _REQUESTS_AVAILABLE:
        raise ImportError(
            "Hugging Face embeddings need huggingface_hub or requests. "
            "Install with: pip install huggingface_hub"
        )

    api_url = f"https://api-inference.huggingface.co/models/{model}"
    headers = {"Authorization": f"Bearer {api_key}"}

    def embed_http(text: str) -> List[float]:
        response = requests.post(api_url, headers=headers, json={"inputs": text}, timeout=30)
        response.raise_for_status()
        payload = response.json()
        if isinstance(payload, dict) and "embeddings" in payload:
            payload = payload["embeddings"]
        return _flatten_embedding(payload)

    return embed_http


def _flatten_embedding(result: Any) -> List[float]:
    if hasattr(result, "tolist"):
        result = result.tolist()
    # Some models return one vector per input, unwrap the single input case.
    if isinstance(result, list) and result and isinstance(result[0], (list, tuple)):
        result = result[0]
    return [float(value) for value in result]


def get_default_embedding_function(
    prefer_local: bool = True,
    openai_api_key: Optional[str] = None,
    hf_api_key: Optional[str] = None,
) -> Optional[EmbeddingFunction]:
    """
    Return the best available embedding function, or None.

    Priority: local sentence-transformers (when ``prefer_local``), then OpenAI,
    then Hugging Face, then local sentence-transformers as a last resort.
    """
    if prefer_local and _SENTENCE_TRANSFORMERS_AVAILABLE:
        return create_sentence_transformer_embedding_function()

    openai_key = openai_api_key or os.getenv("OPENAI_API_KEY")
    if openai_key and _OPENAI_AVAILABLE:
        try:
            return create_openai_embedding_function(api_key=openai_key)
        except Exception:
            LOGGER.warning("OpenAI embeddings unavailable", exc_info=True)

    hf_key = hf_api_key or os.getenv("HF_API_KEY") or os.getenv("HUGGINGFACE_API_KEY")
    if hf_key and (_HUGGINGFACE_HUB_AVAILABLE or _REQUESTS_AVAILABLE):
        try:
            return create_huggingface_embedding_function(api_key=hf_key)
        except Exception:
            LOGGER.warning("Hugging Face embeddings unavailable", exc_info=True)

    if _SENTENCE_TRANSFORMERS_AVAILABLE:
        return create_sentence_transformer_embedding_function()
    return None


_EMBEDDER_ALIASES = {
    "sentence-transformers": "sentence-transformers",
    "sentence_transformers": "sentence-transformers",
    "local": "sentence-transformers",
    "openai": "openai",
    "huggingface": "huggingface",
    "hf": "huggingface",
    "default": "default",
}

EMBEDDER_NAMES = frozenset(_EMBEDDER_ALIASES)


def validate_embedder_name(name: str) -> str:
    """Return the canonical embedder name or raise ConfigurationError."""
    try:
        return _EMBEDDER_ALIASES[name.lower()]
    except KeyError:
        known = ", ".join(sorted(_EMBEDDER_ALIASES))
        raise ConfigurationError(f"Unknown embedder {name!r} (known: {known})") from None


def validate_embedder(name: str, model: Optional[str] = None) -> Tuple[str, Optional[str]]:
    """
    Return the canonical ``(embedder, model)`` pair of an index URI.

    The default embedder picks its backend at runtime, so it takes no model.
    """
    canonical = validate_embedder_name(name)
    if model and canonical == "default":
        raise ConfigurationError(
            f"model={model!r} needs an explicit embedder (sentence-transformers, openai or huggingface)"
        )
    return canonical, model or None


def create_embedding_function(name: str = "default", model: Optional[str] = None) -> EmbeddingFunction:
    """
    Build the embedding function selected by a URI's ``embedder``/``model`` pair.

    Raises:
        ConfigurationError: If ``name`` is unknown or no embedder is available.
    """
    canonical, model = validate_embedder(name, model)
    if canonical == "sentence-transformers":
        return create_sentence_transformer_embedding_function(model or DEFAULT_LOCAL_MODEL)
    if canonical == "openai":
        return create_openai_embedding_function(model or DEFAULT_OPENAI_MODEL)
    if canonical == "huggingface":
        return create_huggingface_embedding_function(model or DEFAULT_HUGGINGFACE_MODEL)

    embed = get_default_embedding_function()
    if embed is None:
        raise ConfigurationError(
            "No embedding method available. Options:\n"
            "1. Install sentence-transformers: pip install sentence-transformers\n"
            "2. Set OPENAI_API_KEY environment variable for OpenAI embeddings\n"
            "3. Set HF_API_KEY environment variable for Hugging Face embeddings"
        )
    return embed


__all__ = [
    "EMBEDDER_NAMES",
    "EmbeddingFunction",
    "create_embedding_function",
    "create_huggingface_embedding_function",
    "create_openai_embedding_function",
    "create_sentence_transformer_embedding_function",
    "get_default_embedding_function",
    "validate_embedder",
    "validate_embedder_name",
]

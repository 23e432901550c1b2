"""
ChromaSimilarityIndex: ChromaDB implementation of SimilarityIndex.

Each instance owns one Chroma collection, which is deleted when the index is
closed. Results carry Chroma's *distance*; lower is more similar.

URI form::

    chroma://locations-{geohash}?embedder=sentence-transformers&model=all-MiniLM-L6-v2
        &max-results=10&max-distance=0.4&space=cosine&persist={tmp}

``persist`` is optional. Without it the collection lives in memory. The
``{tmp}`` placeholder is replaced by a temporary directory that is removed
on close.
"""

from __future__ import annotations

import json
import logging
import re
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import chromadb
    from chromadb.config import Settings
    _CHROMA_AVAILABLE = True
except ImportError:
    _CHROMA_AVAILABLE = False

from geodedupe.configuration import ConfigurationError
from geodedupe.errors import SimilarityIndexError
from geodedupe.location.model import Location
from geodedupe.observability import get_event_recorder
from geodedupe.registry import BackendURI
from geodedupe.similarity.base import QueryResult, SimilarityIndex, ThresholdDirection
from geodedupe.similarity.embeddings import (
    EmbeddingFunction,
    create_embedding_function,
    validate_embedder,
)

LOGGER = logging.getLogger(__name__)

TMP_PLACEHOLDER = "{tmp}"
DEFAULT_MAX_RESULTS = 10
SPACES = frozenset({"cosine", "l2", "ip"})

_COLLECTION_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{1,61}[A-Za-z0-9]$")
_SUFFIX_LENGTH = 8


def _validate_collection_name(name: str) -> str:
    if not _COLLECTION_NAME.match(name) or ".." in name:
        raise ConfigurationError(
            f"Invalid Chroma collection name {name!r}: use 3-63 characters from "
            "[A-Za-z0-9._-], starting and ending with a letter or digit"
        )
    return name


def _unique_collection_name(name: str) -> str:
    # Room for "-" plus the suffix within Chroma's 63 character limit.
    base = name[: 63 - _SUFFIX_LENGTH - 1].rstrip("._-")
    return f"{base}-{uuid.uuid4().hex[:_SUFFIX_LENGTH]}"


def _chroma_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce metadata into the scalar values Chroma accepts."""
    result: Dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            result[key] = value
        else:
            result[key] = json.dumps(value, sort_keys=True, default=str)
    return result


class ChromaSimilarityIndex(SimilarityIndex):
    """
    Chroma-backed similarity index for a single geohash shard.

    Example:
        >>> index = ChromaSimilarityIndex("locations-dr5ru")
        >>> index.add(location)
        >>> index.query(candidate)
        >>> index.close()
    """

    direction = ThresholdDirection.DISTANCE

    def __init__(
        self,
        collection_name: str,
        *,
        embedding_function: Optional[EmbeddingFunction] = None,
        embedder: str = "default",
        model: Optional[str] = None,
        max_results: int = DEFAULT_MAX_RESULTS,
        max_distance: Optional[float] = None,
        space: str = "cosine",
        persist: Optional[str] = None,
    ) -> None:
        if not _CHROMA_AVAILABLE:
            raise ImportError(
                "ChromaDB is required for ChromaSimilarityIndex. "
                "Install it with: pip install chromadb>=0.4.0"
            )
        _validate_collection_name(collection_name)
        self._recorder = get_event_recorder("similarity.chroma")
        self._max_results = max_results
        self._max_distance = max_distance
        self._lock = threading.RLock()
        self._ids: set[str] = set()
        self._closed = False
        self._tempdir: Optional[tempfile.TemporaryDirectory] = None

        persist_directory: Optional[str] = None
        if persist:
            if TMP_PLACEHOLDER in persist:
                self._tempdir = tempfile.TemporaryDirectory(
                    prefix="geodedupe-chroma-", ignore_cleanup_errors=True
                )
                persist = persist.replace(TMP_PLACEHOLDER, self._tempdir.name)
            persist_directory = str(Path(persist).expanduser())

        self._name = _unique_collection_name(collection_name)
        self._persist_directory = persist_directory
        try:
            with self._recorder.span(
                "init",
                {"collection_name": self._name, "persist_directory": persist_directory},
            ):
                self._embed = embedding_function or create_embedding_function(embedder, model)
                settings = Settings(anonymized_telemetry=False)
                if persist_directory:
                    Path(persist_directory).mkdir(parents=True, exist_ok=True)
                    self._client = chromadb.PersistentClient(path=persist_directory, settings=settings)
                else:
                    self._client = chromadb.Client(settings)
                self._collection = self._client.create_collection(
                    name=self._name,
                    metadata={"hnsw:space": space},
                )
        except Exception:
            self._cleanup_tempdir()
            raise

    @classmethod
    def parse_options(cls, uri: BackendURI) -> Dict[str, Any]:
        uri.check_params(
            frozenset({"embedder", "model", "max-results", "max-distance", "space", "persist"})
        )
        collection = uri.netloc or uri.path.strip("/")
        if not collection:
            raise ConfigurationError(f"Missing Chroma collection name in {uri.raw!r}")
        space = (uri.get("space") or "cosine").lower()
        if space not in SPACES:
            raise ConfigurationError(
                f"Unsupported Chroma space {space!r} in {uri.raw!r} (use one of {sorted(SPACES)})"
            )
        embedder, model = validate_embedder(uri.get("embedder", "default"), uri.get("model"))
        return {
            "collection_name": _validate_collection_name(collection),
            "embedder": embedder,
            "model": model,
            "max_results": uri.get_int("max-results", DEFAULT_MAX_RESULTS, minimum=1),
            "max_distance": uri.get_float("max-distance"),
            "space": space,
            "persist": uri.get("persist") or None,
        }

    @property
    def collection_name(self) -> str:
        return self._name

    def add(self, location: Location) -> None:
        self._check_open()
        try:
            embedding = self._embed(location.content())
            with self._lock:
                self._collection.upsert(
                    ids=[location.id],
                    embeddings=[embedding],
                    documents=[location.content()],
                    metadatas=[_chroma_metadata(location.metadata())],
                )
                self._ids.add(location.id)
        except Exception as exc:
            self._recorder.record(
                "add.error",
                {"collection_name": self._name, "location_id": location.id, "error": str(exc)},
            )
            raise SimilarityIndexError(
                f"Failed to add {location.id} to {self._name}: {exc}"
            ) from exc

    def query(self, location: Location) -> List[QueryResult]:
        self._check_open()
        with self._lock:
            size = len(self._ids)
        if size == 0:
            return []
        try:
            embedding = self._embed(location.content())
            with self._lock:
                raw = self._collection.query(
                    query_embeddings=[embedding],
                    n_results=min(self._max_results, size),
                    include=["documents", "metadatas", "distances"],
                )
        except Exception as exc:
            self._recorder.record(
                "query.error",
                {"collection_name": self._name, "location_id": location.id, "error": str(exc)},
            )
            raise SimilarityIndexError(
                f"Failed to query {self._name} for {location.id}: {exc}"
            ) from exc

        ids = raw["ids"][0] if raw.get("ids") else []
        documents = raw["documents"][0] if raw.get("documents") else [""] * len(ids)
        metadatas = raw["metadatas"][0] if raw.get("metadatas") else [{}] * len(ids)
        distances = raw["distances"][0] if raw.get("distances") else []

        results: List[QueryResult] = []
        for i, result_id in enumerate(ids):
            distance = float(distances[i])
            if self._max_distance is not None and distance > self._max_distance:
                continue
            results.append(
                QueryResult(
                    id=result_id,
                    content=documents[i] or "",
                    similarity=distance,
                    metadata=dict(metadatas[i] or {}),
                )
            )
        return results

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._client.delete_collection(self._name)
        except Exception:
            LOGGER.warning("Failed to delete Chroma collection %s", self._name, exc_info=True)
        finally:
            self._collection = None
            self._client = None
            self._cleanup_tempdir()
        self._recorder.record("close", {"collection_name": self._name, "size": len(self._ids)})

    def _check_open(self) -> None:
        if self._closed:
            raise SimilarityIndexError(f"Similarity index {self._name} is closed")

    def _cleanup_tempdir(self) -> None:
        if self._tempdir is not None:
            self._tempdir.cleanup()
            self._tempdir = None

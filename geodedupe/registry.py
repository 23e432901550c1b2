"""
Scheme-keyed registries that turn configuration strings into backends.

Registries are assembled explicitly by the ``default_*_registry`` functions
and handed to whoever needs them. They are read-only mappings, extending one
returns a new mapping::

    registry = build_registry(
        default_location_store_registry(),
        {"custom": MyLocationStore},
    )
    store = create_location_store("custom://...", registry)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlsplit

from geodedupe.configuration import ConfigurationError

if TYPE_CHECKING:
    from geodedupe.ingest import Parser
    from geodedupe.location.base import LocationStore

GEOHASH_PLACEHOLDER = "{geohash}"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


@dataclass(slots=True, frozen=True)
class BackendURI:
    """A parsed ``scheme://netloc/path?key=value`` configuration string."""

    scheme: str
    netloc: str = ""
    path: str = ""
    params: Mapping[str, str] = field(default_factory=dict, hash=False)
    raw: str = ""

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.params.get(name, default)

    def get_int(self, name: str, default: Optional[int] = None, *, minimum: int | None = None) -> Optional[int]:
        value = self.params.get(name)
        if value is None:
            return default
        try:
            result = int(value)
        except ValueError as exc:
            raise ConfigurationError(
                f"Parameter {name!r} must be an integer in {self.raw!r}, got {value!r}"
            ) from exc
        if minimum is not None and result < minimum:
            raise ConfigurationError(
                f"Parameter {name!r} must be at least {minimum} in {self.raw!r}, got {result}"
            )
        return result

    def get_float(self, name: str, default: Optional[float] = None) -> Optional[float]:
        value = self.params.get(name)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigurationError(
                f"Parameter {name!r} must be a number in {self.raw!r}, got {value!r}"
            ) from exc

    def get_bool(self, name: str, default: bool = False) -> bool:
        value = self.params.get(name)
        if value is None:
            return default
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ConfigurationError(
            f"Parameter {name!r} must be a boolean in {self.raw!r}, got {value!r}"
        )

    def check_params(self, allowed: set[str] | frozenset[str]) -> None:
        """Raise ConfigurationError if the URI carries parameters outside ``allowed``."""
        unknown = sorted(set(self.params) - set(allowed))
        if unknown:
            raise ConfigurationError(
                f"Unsupported parameter(s) {', '.join(unknown)} for {self.scheme}:// "
                f"in {self.raw!r}"
            )

    def substitute(self, placeholder: str, value: str) -> "BackendURI":
        """Return a copy with ``placeholder`` replaced in the netloc, path and values."""
        return replace(
            self,
            netloc=self.netloc.replace(placeholder, value),
            path=self.path.replace(placeholder, value),
            params={key: item.replace(placeholder, value) for key, item in self.params.items()},
        )

    def with_geohash(self, geohash: str) -> "BackendURI":
        return self.substitute(GEOHASH_PLACEHOLDER, geohash)


def parse_backend_uri(uri: str) -> BackendURI:
    """
    Parse a backend configuration string.

    Raises:
        ConfigurationError: If the string has no scheme or a malformed query.
    """
    if not isinstance(uri, str) or not uri.strip():
        raise ConfigurationError("Backend URI must be a non-empty string")
    try:
        parts = urlsplit(uri.strip())
        pairs = parse_qsl(parts.query, keep_blank_values=True, strict_parsing=bool(parts.query))
    except ValueError as exc:
        raise ConfigurationError(f"Malformed backend URI {uri!r}: {exc}") from exc
    if not parts.scheme:
        raise ConfigurationError(f"Backend URI {uri!r} is missing a scheme")

    params: Dict[str, str] = {}
    for key, value in pairs:
        if key in params:
            raise ConfigurationError(f"Parameter {key!r} given more than once in {uri!r}")
        params[key] = value

    return BackendURI(
        scheme=parts.scheme.lower(),
        netloc=parts.netloc,
        path=parts.path,
        params=params,
        raw=uri,
    )


def build_registry(base: Mapping[str, Any], extra: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
    """Return a new read-only registry holding ``base`` overlaid with ``extra``."""
    merged = dict(base)
    for scheme, constructor in (extra or {}).items():
        merged[scheme.lower()] = constructor
    return MappingProxyType(merged)


def resolve_backend(uri: str | BackendURI, registry: Mapping[str, Any], kind: str) -> tuple[BackendURI, Any]:
    """Return the parsed URI and the registered constructor for its scheme."""
    parsed = uri if isinstance(uri, BackendURI) else parse_backend_uri(uri)
    try:
        constructor = registry[parsed.scheme]
    except KeyError:
        known = ", ".join(sorted(registry)) or "none"
        raise ConfigurationError(
            f"Unknown {kind} scheme {parsed.scheme!r} in {parsed.raw!r} (known: {known})"
        ) from None
    return parsed, constructor


def default_location_store_registry() -> Mapping[str, Any]:
    from geodedupe.location.memory import MemoryLocationStore
    from geodedupe.location.null import NullLocationStore
    from geodedupe.location.sql import SQLLocationStore

    return MappingProxyType(
        {
            "sql": SQLLocationStore,
            "memory": MemoryLocationStore,
            "null": NullLocationStore,
        }
    )


def default_similarity_index_registry() -> Mapping[str, Any]:
    from geodedupe.similarity.chroma import ChromaSimilarityIndex
    from geodedupe.similarity.memory import MemorySimilarityIndex
    from geodedupe.similarity.null import NullSimilarityIndex

    return MappingProxyType(
        {
            "chroma": ChromaSimilarityIndex,
            "memory": MemorySimilarityIndex,
            "null": NullSimilarityIndex,
        }
    )


def default_parser_registry() -> Mapping[str, Any]:
    from geodedupe.ingest import LocationJSONParser

    return MappingProxyType({"json": LocationJSONParser})


def create_location_store(uri: str, registry: Mapping[str, Any] | None = None) -> "LocationStore":
    """Build a location store from a configuration string."""
    parsed, store_class = resolve_backend(
        uri, registry if registry is not None else default_location_store_registry(), "location store"
    )
    return store_class.from_uri(parsed)


def create_parser(uri: str, registry: Mapping[str, Any] | None = None) -> "Parser":
    parsed, parser_class = resolve_backend(
        uri, registry if registry is not None else default_parser_registry(), "parser"
    )
    return parser_class.from_uri(parsed)


__all__ = [
    "BackendURI",
    "GEOHASH_PLACEHOLDER",
    "build_registry",
    "create_location_store",
    "create_parser",
    "default_location_store_registry",
    "default_parser_registry",
    "default_similarity_index_registry",
    "parse_backend_uri",
    "resolve_backend",
]

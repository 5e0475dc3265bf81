"""
plugins/base.py — Endpoint handler descriptor and its documentation models.

Every endpoint module under the plugin root must expose a top-level
``handler`` object, either a :class:`PluginHandler` or a plain mapping with
the same keys.  The loader in ``plugins/__init__.py`` imports these by path
and routes them under ``/api/<category...>/<alias>``.

Minimal endpoint example::

    # src/endpoints/tools/ping.py
    from plugins.base import PluginHandler

    async def ping(request):
        return {"ok": True}

    handler = PluginHandler(
        name="Ping",
        description="Liveness check.",
        category=["tools"],
        method="GET",
        aliases=["ping"],
        exec=ping,
    )

``exec`` receives the Starlette ``Request`` and returns a ``Response`` or any
JSON-serialisable value.  It may be ``async def`` or a plain function.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")

DEFAULT_DISABLED_REASON = "This plugin has been disabled"
DEFAULT_DEPRECATED_REASON = "This plugin is deprecated and may be removed in future versions"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class FileConstraints(_CamelModel):
    max_size: int | None = None
    """Bytes, e.g. ``5 * 1024 * 1024`` for 5 MB."""
    accepted_types: list[str] | None = None
    """MIME types, e.g. ``["image/jpeg", "image/png"]``."""
    accepted_extensions: list[str] | None = None


class PluginParameter(_CamelModel):
    name: str
    type: Literal["string", "number", "boolean", "array", "object", "file"] = "string"
    required: bool = False
    description: str = ""
    example: Any = None
    default: Any = None
    enum: list[Any] | None = None
    pattern: str | None = None
    file_constraints: FileConstraints | None = None
    accept_url: bool | None = None


class PluginParameters(_CamelModel):
    query: list[PluginParameter] = Field(default_factory=list)
    body: list[PluginParameter] = Field(default_factory=list)
    headers: list[PluginParameter] = Field(default_factory=list)
    path: list[PluginParameter] = Field(default_factory=list)


class PluginResponse(_CamelModel):
    status: int
    description: str = ""
    example: Any = None


class PluginMetadata(_CamelModel):
    """Browsable description of one endpoint, as served by ``/api/plugins``."""

    name: str
    description: str = ""
    version: str = "1.0.0"
    category: list[str] = Field(default_factory=list)
    method: str
    endpoint: str
    aliases: list[str]
    tags: list[str] = Field(default_factory=list)
    parameters: PluginParameters = Field(default_factory=PluginParameters)
    responses: dict[int, PluginResponse] = Field(default_factory=dict)
    disabled: bool = False
    deprecated: bool = False
    disabled_reason: str | None = None
    deprecated_reason: str | None = None

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# Mapping keys accepted on top of the dataclass field names.
_KEY_ALIASES = {
    "alias": "aliases",
    "disabledReason": "disabled_reason",
    "deprecatedReason": "deprecated_reason",
}


@dataclass
class PluginHandler:
    """Declaration of one pluggable endpoint: metadata plus ``exec``."""

    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    category: list[str] = field(default_factory=list)
    method: str = ""
    aliases: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    parameters: PluginParameters | Mapping | None = None
    responses: Mapping[int, PluginResponse | Mapping] | None = None
    disabled: bool = False
    deprecated: bool = False
    disabled_reason: str | None = None
    deprecated_reason: str | None = None
    exec: Callable[..., Any] | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PluginHandler:
        """Build a handler from a dict declaration; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            key = _KEY_ALIASES.get(key, key)
            if key in known:
                kwargs[key] = value
        return cls(**kwargs)

    @property
    def primary_alias(self) -> str:
        return self.aliases[0]

    @property
    def effective_disabled_reason(self) -> str:
        return self.disabled_reason or DEFAULT_DISABLED_REASON

    @property
    def effective_deprecated_reason(self) -> str:
        return self.deprecated_reason or DEFAULT_DEPRECATED_REASON

    def validate(self) -> str | None:
        """Return why this handler cannot be routed, or ``None`` when it can."""
        if self.exec is None:
            return "missing handler or exec function"
        if not callable(self.exec):
            return "'exec' must be a function"
        if not self.method or not isinstance(self.method, str):
            return "missing 'method' field"
        if self.method.upper() not in HTTP_METHODS:
            return f"unsupported method {self.method!r}"
        if isinstance(self.aliases, str) or not self.aliases:
            return "missing 'alias' array"
        if not all(isinstance(a, str) and a.strip("/") for a in self.aliases):
            return "aliases must be non-empty strings"
        return None

    def documentation_gap(self, require_description: bool = False) -> str | None:
        """Return why this handler is hidden from listings, or ``None``."""
        if not isinstance(self.category, list) or not self.category:
            return "category is missing or empty"
        if not isinstance(self.name, str) or not self.name.strip():
            return "name is missing or empty"
        if require_description and (not isinstance(self.description, str) or not self.description.strip()):
            return "description is missing or empty"
        return None

    def build_metadata(self, endpoint: str) -> PluginMetadata:
        return PluginMetadata(
            name=self.name or "unnamed",
            description=self.description or "",
            version=self.version or "1.0.0",
            category=list(self.category or []),
            method=self.method.upper(),
            endpoint=endpoint,
            aliases=list(self.aliases),
            tags=list(self.tags or []),
            parameters=PluginParameters.model_validate(self.parameters or {}),
            responses={int(code): _response(int(code), resp) for code, resp in (self.responses or {}).items()},
            disabled=bool(self.disabled),
            deprecated=bool(self.deprecated),
            disabled_reason=self.disabled_reason,
            deprecated_reason=self.deprecated_reason,
        )

    def build_minimal_metadata(self, endpoint: str) -> PluginMetadata:
        """Metadata from the routing fields alone, for handlers whose docs do not validate."""
        return PluginMetadata(
            name=self.name if isinstance(self.name, str) and self.name else "unnamed",
            category=[str(c) for c in self.category] if isinstance(self.category, list) else [],
            method=self.method.upper(),
            endpoint=endpoint,
            aliases=list(self.aliases),
            disabled=bool(self.disabled),
            deprecated=bool(self.deprecated),
        )

    def __repr__(self) -> str:
        return (
            f"PluginHandler(name={self.name!r}, method={self.method!r}, "
            f"category={self.category!r}, aliases={self.aliases!r})"
        )


def _response(code: int, resp: PluginResponse | Mapping) -> PluginResponse:
    if isinstance(resp, Mapping) and "status" not in resp:
        resp = {**resp, "status": code}
    return PluginResponse.model_validate(resp)

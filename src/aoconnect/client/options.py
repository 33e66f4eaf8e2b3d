"""Per-call operation options.

Every dispatcher and poller operation accepts ``options``: either an
:class:`OperationOptions` or a plain mapping. Keys may be given in
camelCase (``processId``, ``endpointOverride``, ``timeoutMs``,
``maxRetries``) or snake_case. Unknown keys are rejected with
:class:`~aoconnect.core.errors.InvalidOptionsError` rather than ignored.

Examples:
    >>> OperationOptions.parse({"timeoutMs": 5000, "maxRetries": 2}).timeout_seconds
    5.0
    >>> OperationOptions.parse({"retries": 2})
    Traceback (most recent call last):
    ...
    InvalidOptionsError: invalid operation options: ...
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from aoconnect.core.errors import InvalidOptionsError
from aoconnect.protocol.signers import Signer, create_data_item_signer


class OperationOptions(BaseModel):
    """Caller options for one operation."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        arbitrary_types_allowed=True,
    )

    process_id: str | None = Field(default=None, min_length=1, description="Target process")
    tags: Any = Field(default=None, description="Caller tags, in any shape build_tags accepts")
    signer: Signer | None = Field(default=None, description="Signing identity for this call")
    endpoint_override: str | None = Field(
        default=None, description="Send here instead of the resolved unit URL"
    )
    timeout_ms: int | None = Field(default=None, gt=0, description="Per-request timeout")
    max_retries: int | None = Field(default=None, ge=1, description="Total attempts")

    @field_validator("signer", mode="before")
    @classmethod
    def _coerce_signer(cls, value: Any) -> Any:
        if value is None or isinstance(value, Signer):
            return value
        return create_data_item_signer(value)

    @field_validator("endpoint_override")
    @classmethod
    def _strip_endpoint(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if not value.startswith(("http://", "https://")):
            raise ValueError("endpoint_override must be an http(s) URL")
        return value.rstrip("/")

    @property
    def timeout_seconds(self) -> float | None:
        return self.timeout_ms / 1000 if self.timeout_ms is not None else None

    @classmethod
    def parse(cls, options: "OperationOptions | Mapping[str, Any] | None") -> "OperationOptions":
        """Normalise whatever the caller passed into an ``OperationOptions``."""
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        if not isinstance(options, Mapping):
            raise InvalidOptionsError(
                f"options must be a mapping, got {type(options).__name__}"
            )
        try:
            return cls.model_validate(dict(options))
        except ValidationError as e:
            raise InvalidOptionsError(f"invalid operation options: {e}", cause=e)


__all__ = ["OperationOptions"]

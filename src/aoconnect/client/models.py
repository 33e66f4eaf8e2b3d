"""Response models for the compute, scheduler and messenger units.

Pydantic v2 models that validate what the units send back. A response
that parses as JSON but fails these models is a protocol violation, never
a retryable condition.

Key Concepts:
    Result: The CU's evaluation of one message (``Messages``, ``Spawns``,
        ``Output``, ``Error``, ``GasUsed``). Field names on the wire are
        PascalCase; attributes are snake_case.
    ResultsPage: A cursor-paged slice of results for one process.
    SendResponse: The SU's acknowledgement of a data item or assignment.
    MonitorAck: The MU's acknowledgement of a monitor subscription change.

Tags:
    results, models, pydantic, compute-unit, aoconnect
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from aoconnect.core.errors import ProtocolViolationError

# A CU result carries at least one of these.
RESULT_FIELDS = ("Messages", "Spawns", "Output", "Error")


class Result(BaseModel):
    """Computed outcome of one message."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    messages: list[dict[str, Any]] = Field(default_factory=list, alias="Messages")
    spawns: list[dict[str, Any]] = Field(default_factory=list, alias="Spawns")
    output: Any = Field(default=None, alias="Output")
    error: Any = Field(default=None, alias="Error")
    gas_used: int | None = Field(default=None, alias="GasUsed")

    @model_validator(mode="before")
    @classmethod
    def _require_result_fields(cls, data: Any) -> Any:
        if isinstance(data, dict) and not any(
            key in data for key in (*RESULT_FIELDS, "messages", "spawns", "output", "error")
        ):
            raise ValueError(f"none of {', '.join(RESULT_FIELDS)} present")
        return data

    @property
    def ok(self) -> bool:
        return not self.error


class ResultEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    cursor: str
    node: Result


class ResultsPage(BaseModel):
    """One page of ``/results/<process>``."""

    model_config = ConfigDict(frozen=True)

    edges: list[ResultEdge] = Field(default_factory=list)

    @property
    def results(self) -> list[Result]:
        return [edge.node for edge in self.edges]

    @property
    def last_cursor(self) -> str | None:
        return self.edges[-1].cursor if self.edges else None

    def __len__(self) -> int:
        return len(self.edges)


class SendResponse(BaseModel):
    """SU acknowledgement: the id it stored, and when."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    timestamp: int | None = None


class MonitorAck(BaseModel):
    """MU acknowledgement of ``monitor`` / ``unmonitor``."""

    process_id: str
    message_id: str
    status_code: int
    body: str = ""


def parse_model(model: type[BaseModel], payload: Any, *, what: str) -> Any:
    """Validate *payload* against *model*, mapping failures to ``ProtocolViolationError``."""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ProtocolViolationError(f"{what} does not match the expected shape: {e}", cause=e)


__all__ = [
    "MonitorAck",
    "Result",
    "ResultEdge",
    "ResultsPage",
    "SendResponse",
    "parse_model",
]

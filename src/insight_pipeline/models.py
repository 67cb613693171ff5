"""Pydantic models for deployment records and insight rollup chunks.

These models define the read-only deployment facts consumed from the record
store, the per-bucket data points produced by the aggregators, and the chunk
structure persisted for every (application, metric kind) pair.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class DeploymentStatus(str, Enum):
    """Lifecycle status of a deployment; only SUCCESS/FAILURE are terminal."""
    PENDING = "PENDING"
    PLANNED = "PLANNED"
    RUNNING = "RUNNING"
    ROLLING_BACK = "ROLLING_BACK"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    CANCELLED = "CANCELLED"


class MetricKind(str, Enum):
    DEPLOYMENT_FREQUENCY = "DEPLOYMENT_FREQUENCY"
    CHANGE_FAILURE_RATE = "CHANGE_FAILURE_RATE"


class Step(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"

    @property
    def field_name(self) -> str:
        """Attribute name of this granularity's series on a chunk."""
        return self.value.lower()


class DeploymentRecord(BaseModel):
    """Schema for a deployment fact read from the record store.

    Attributes:
        id: Unique deployment id.
        application_id: Owning application.
        created_at: Creation time in seconds since epoch.
        status: Deployment status.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")
    id: str
    application_id: str
    created_at: int = Field(..., ge=0)
    status: DeploymentStatus = DeploymentStatus.PENDING


class DeployFrequency(BaseModel):
    """Number of deployments started inside one bucket."""
    model_config = ConfigDict(extra="forbid")
    timestamp: int = Field(..., ge=0)
    deploy_count: int = Field(0, ge=0)


class ChangeFailureRate(BaseModel):
    """Share of terminal deployments that failed inside one bucket."""
    model_config = ConfigDict(extra="forbid")
    timestamp: int = Field(..., ge=0)
    rate: float = Field(0.0, ge=0.0, le=1.0)
    success_count: int = Field(0, ge=0)
    failure_count: int = Field(0, ge=0)


DataPoint = Union[DeployFrequency, ChangeFailureRate]


def failure_rate(success_count: int, failure_count: int) -> float:
    """Return `failure / (success + failure)`, or 0.0 with no terminal deployments."""
    total = success_count + failure_count
    if total == 0:
        return 0.0
    return failure_count / total


def _check_series_order(points: object) -> None:
    for step in Step:
        series = getattr(points, step.field_name)
        for prev, cur in zip(series, series[1:]):
            if cur.timestamp <= prev.timestamp:
                raise ValueError(
                    f"{step.field_name} series is not strictly increasing "
                    f"at timestamp {cur.timestamp}"
                )


class DeployFrequencyDataPoints(BaseModel):
    model_config = ConfigDict(extra="forbid")
    daily: list[DeployFrequency] = Field(default_factory=list)
    weekly: list[DeployFrequency] = Field(default_factory=list)
    monthly: list[DeployFrequency] = Field(default_factory=list)
    yearly: list[DeployFrequency] = Field(default_factory=list)

    @model_validator(mode="after")
    def _ordered(self) -> "DeployFrequencyDataPoints":
        _check_series_order(self)
        return self


class ChangeFailureRateDataPoints(BaseModel):
    model_config = ConfigDict(extra="forbid")
    daily: list[ChangeFailureRate] = Field(default_factory=list)
    weekly: list[ChangeFailureRate] = Field(default_factory=list)
    monthly: list[ChangeFailureRate] = Field(default_factory=list)
    yearly: list[ChangeFailureRate] = Field(default_factory=list)

    @model_validator(mode="after")
    def _ordered(self) -> "ChangeFailureRateDataPoints":
        _check_series_order(self)
        return self


class _ChunkBase(BaseModel):
    """Fields and helpers shared by every chunk kind.

    Attributes:
        accumulated_to: Highest record timestamp folded into the chunk.
        file_path: Opaque storage handle assigned by the chunk store.
    """
    model_config = ConfigDict(extra="forbid")
    accumulated_to: int = Field(0, ge=0)
    file_path: str = ""

    def series(self, step: Step) -> list:
        """Return the data point list for `step` (the live list, not a copy)."""
        return getattr(self.data_points, Step(step).field_name)


class DeployFrequencyChunk(_ChunkBase):
    kind: Literal["DEPLOYMENT_FREQUENCY"] = "DEPLOYMENT_FREQUENCY"
    data_points: DeployFrequencyDataPoints = Field(default_factory=DeployFrequencyDataPoints)


class ChangeFailureRateChunk(_ChunkBase):
    kind: Literal["CHANGE_FAILURE_RATE"] = "CHANGE_FAILURE_RATE"
    data_points: ChangeFailureRateDataPoints = Field(default_factory=ChangeFailureRateDataPoints)


Chunk = Annotated[
    Union[DeployFrequencyChunk, ChangeFailureRateChunk],
    Field(discriminator="kind"),
]

CHUNK_ADAPTER: TypeAdapter[Chunk] = TypeAdapter(Chunk)


class CollectionRequest(BaseModel):
    """One (application, metric kind, step) walk over `[range_from, range_to)`."""
    model_config = ConfigDict(frozen=True, extra="forbid")
    application_id: str
    kind: MetricKind
    step: Step
    range_from: int = Field(..., ge=0)
    range_to: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _range_ordered(self) -> "CollectionRequest":
        if self.range_from > self.range_to:
            raise ValueError("range_from must not be after range_to")
        return self


def empty_chunk(kind: MetricKind, file_path: str = "") -> DeployFrequencyChunk | ChangeFailureRateChunk:
    """Return a chunk with no data points and a zero watermark for `kind`."""
    kind = MetricKind(kind)
    if kind is MetricKind.DEPLOYMENT_FREQUENCY:
        return DeployFrequencyChunk(file_path=file_path)
    return ChangeFailureRateChunk(file_path=file_path)

"""
Job parameter value objects.

Responsibility:
    Defines the closed tagged value used for job parameters (STRING, DATE,
    LONG, DOUBLE) and the ordered, read-only parameter set that identifies a
    job instance.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - A JobParameter's value always matches its ParameterType tag.
    - DATE values are timezone-aware (naive values are rejected so that the
      job key never depends on the host time zone).
    - JobParameters is immutable once built.

Failure modes:
    - InvalidJobParameterError on a value/tag mismatch or a None value.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from batch_kernel.exceptions import InvalidJobParameterError


class ParameterType(str, Enum):
    """Type tag of a job parameter. The value is the stored tag name."""

    STRING = "STRING"
    DATE = "DATE"
    LONG = "LONG"
    DOUBLE = "DOUBLE"


def _infer_type(value: Any) -> ParameterType:
    if isinstance(value, bool):
        raise InvalidJobParameterError(None, "bool is not a supported parameter type")
    if isinstance(value, str):
        return ParameterType.STRING
    if isinstance(value, datetime):
        return ParameterType.DATE
    if isinstance(value, int):
        return ParameterType.LONG
    if isinstance(value, float):
        return ParameterType.DOUBLE
    raise InvalidJobParameterError(
        None, f"unsupported parameter type {type(value).__name__}"
    )


@dataclass(frozen=True)
class JobParameter:
    """
    One tagged job parameter.

    Contract:
        ``value`` is a str, aware datetime, int or float matching
        ``parameter_type``. ``identifying`` parameters take part in the job
        key; non-identifying ones may vary freely between runs of the same
        instance.
    """

    value: str | datetime | int | float
    parameter_type: ParameterType
    identifying: bool = True

    def __post_init__(self) -> None:
        if self.value is None:
            raise InvalidJobParameterError(None, "value must not be None")
        if _infer_type(self.value) is not self.parameter_type:
            raise InvalidJobParameterError(
                None,
                f"value {self.value!r} does not match type {self.parameter_type.value}",
            )
        if self.parameter_type is ParameterType.DATE and self.value.tzinfo is None:
            raise InvalidJobParameterError(None, "DATE values must be timezone-aware")

    @classmethod
    def of(cls, value: str | datetime | int | float, identifying: bool = True) -> JobParameter:
        """Build a parameter, inferring the type tag from the value."""
        return cls(value=value, parameter_type=_infer_type(value), identifying=identifying)

    def key_string(self) -> str:
        """Value rendering used by the job key digest (dates as epoch millis)."""
        if self.parameter_type is ParameterType.DATE:
            return str(int(self.value.timestamp() * 1000))
        return str(self.value)


class JobParameters(Mapping[str, JobParameter]):
    """
    Ordered, read-only mapping of parameter name to JobParameter.

    Guarantees:
        - Insertion order is preserved.
        - Equality compares names, values, tags and identifying flags.
    """

    __slots__ = ("_parameters",)

    def __init__(self, parameters: Mapping[str, JobParameter] | None = None):
        self._parameters = MappingProxyType(dict(parameters or {}))

    def __getitem__(self, name: str) -> JobParameter:
        return self._parameters[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._parameters)

    def __len__(self) -> int:
        return len(self._parameters)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JobParameters):
            return NotImplemented
        return dict(self._parameters) == dict(other._parameters)

    def __hash__(self) -> int:
        return hash(tuple(sorted(self._parameters.items(), key=lambda kv: kv[0])))

    def __repr__(self) -> str:
        return f"JobParameters({dict(self._parameters)!r})"

    def identifying_parameters(self) -> dict[str, JobParameter]:
        return {k: v for k, v in self._parameters.items() if v.identifying}

    def has_identifying_parameters(self) -> bool:
        return any(p.identifying for p in self._parameters.values())

    def get_value(self, name: str, default: Any = None) -> Any:
        parameter = self._parameters.get(name)
        return default if parameter is None else parameter.value


class JobParametersBuilder:
    """Fluent builder for JobParameters."""

    def __init__(self) -> None:
        self._parameters: dict[str, JobParameter] = {}

    def add_string(self, name: str, value: str, identifying: bool = True) -> JobParametersBuilder:
        return self._add(name, value, ParameterType.STRING, identifying)

    def add_date(self, name: str, value: datetime, identifying: bool = True) -> JobParametersBuilder:
        return self._add(name, value, ParameterType.DATE, identifying)

    def add_long(self, name: str, value: int, identifying: bool = True) -> JobParametersBuilder:
        return self._add(name, value, ParameterType.LONG, identifying)

    def add_double(self, name: str, value: float, identifying: bool = True) -> JobParametersBuilder:
        return self._add(name, value, ParameterType.DOUBLE, identifying)

    def add_parameter(self, name: str, parameter: JobParameter) -> JobParametersBuilder:
        self._parameters[name] = parameter
        return self

    def to_job_parameters(self) -> JobParameters:
        return JobParameters(self._parameters)

    def _add(
        self, name: str, value: Any, parameter_type: ParameterType, identifying: bool
    ) -> JobParametersBuilder:
        try:
            self._parameters[name] = JobParameter(value, parameter_type, identifying)
        except InvalidJobParameterError as exc:
            raise InvalidJobParameterError(name, exc.reason) from exc
        return self

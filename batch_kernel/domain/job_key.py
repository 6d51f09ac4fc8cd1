"""
Deterministic job key generation.

The job key identifies a job instance: it is a digest of the *identifying*
parameters only, so two parameter sets that differ only in non-identifying
values map to the same key and therefore the same instance.

The default rendering (``name=value;`` for each identifying parameter sorted
by name, dates as epoch milliseconds, MD5 hex digest) matches keys already
stored by existing deployments, so it must not change.
"""

from __future__ import annotations

import hashlib
from typing import Protocol

from batch_kernel.domain.values import JobParameters


class JobKeyGenerator(Protocol):
    """Strategy that turns a parameter set into an instance key."""

    def generate_key(self, parameters: JobParameters) -> str:
        ...


class DefaultJobKeyGenerator:
    """MD5 digest of the sorted identifying parameters."""

    def generate_key(self, parameters: JobParameters) -> str:
        if parameters is None:
            raise ValueError("parameters must not be None")
        identifying = parameters.identifying_parameters()
        key_string = "".join(
            f"{name}={identifying[name].key_string()};" for name in sorted(identifying)
        )
        return hashlib.md5(key_string.encode("utf-8"), usedforsecurity=False).hexdigest()

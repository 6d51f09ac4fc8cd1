"""Selectors for the batch kernel (read side)."""

from batch_kernel.selectors.history_reader import HistoryReader, job_name_pattern

__all__ = [
    "HistoryReader",
    "job_name_pattern",
]

"""Reporting helpers."""

from .cycle import build_allocation_report, build_outcome_report

__all__ = ["build_allocation_report", "build_outcome_report"]

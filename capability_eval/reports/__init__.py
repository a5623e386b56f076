"""Human-readable exports of evaluation reports."""

from .generator import ReportGenerator

__all__ = ["ReportGenerator"]

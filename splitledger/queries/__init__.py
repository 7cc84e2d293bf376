"""Reporting views."""

from splitledger.queries.executor import CHART_COLORS, ReportQueryExecutor, chart_colors

__all__ = ["CHART_COLORS", "ReportQueryExecutor", "chart_colors"]

"""Observability package: logging setup and Prometheus metrics."""

from .logging import setup_logging, get_logger, get_structured_logger, StructuredLogger
from .metrics import (
    setup_prometheus_metrics,
    record_page,
    record_extraction,
    record_index_write,
    record_search,
    PrometheusMiddleware,
    studyindex_registry
)

__all__ = [
    'setup_logging',
    'get_logger',
    'get_structured_logger',
    'StructuredLogger',
    'setup_prometheus_metrics',
    'record_page',
    'record_extraction',
    'record_index_write',
    'record_search',
    'PrometheusMiddleware',
    'studyindex_registry'
]

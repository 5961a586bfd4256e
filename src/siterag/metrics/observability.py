"""Observability helpers for SiteRAG."""

from __future__ import annotations

import logging

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = "siterag") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    normalization_latency = Histogram(
        "siterag_normalization_duration_seconds",
        "Time spent normalizing a single document.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
    )
    normalization_chunks = Histogram(
        "siterag_normalization_chunk_count",
        "Chunks produced per normalized document.",
        buckets=(0, 1, 5, 10, 20, 40, 80, 160),
    )
    diagnostic_chunks = Counter(
        "siterag_diagnostic_chunks_total",
        "Documents that could not be normalized.",
    )
    assembly_latency = Histogram(
        "siterag_assembly_duration_seconds",
        "Time spent assembling prompt context.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0),
    )
    source_failures = Counter(
        "siterag_context_source_failures_total",
        "Context sources omitted because they could not be read.",
        ["source"],
    )
    generation_latency = Histogram(
        "siterag_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
    )
    stream_frames = Counter(
        "siterag_stream_frames_total",
        "Content frames written to streaming clients.",
    )
    stream_outcomes = Counter(
        "siterag_stream_outcomes_total",
        "Terminal outcome of streaming sessions.",
        ["outcome"],
    )

    @classmethod
    def observe_normalization(cls, duration_seconds: float, chunk_count: int, *, failed: bool = False) -> None:
        cls.normalization_latency.observe(duration_seconds)
        cls.normalization_chunks.observe(chunk_count)
        if failed:
            cls.diagnostic_chunks.inc()

    @classmethod
    def observe_assembly(cls, duration_seconds: float) -> None:
        cls.assembly_latency.observe(duration_seconds)

    @classmethod
    def record_source_failure(cls, source: str) -> None:
        cls.source_failures.labels(source=source).inc()

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def record_stream_outcome(cls, outcome: str) -> None:
        cls.stream_outcomes.labels(outcome=outcome).inc()


__all__ = [
    "PipelineMetrics",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_logger",
]

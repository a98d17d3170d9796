"""
Tip generation telemetry.

Prometheus metrics for LLM calls, generation outcomes and validation findings,
plus optional Sentry job tracking.
"""

from tipgen.telemetry.metrics import (
    record_job_run,
    record_llm_request,
    record_llm_retry,
    record_tip_generation,
    record_validation_issues,
)
from tipgen.telemetry.sentry import capture_exception, init_sentry, sentry_job_context

__all__ = [
    "record_job_run",
    "record_llm_request",
    "record_llm_retry",
    "record_tip_generation",
    "record_validation_issues",
    "capture_exception",
    "init_sentry",
    "sentry_job_context",
]

"""
Prometheus metrics for AI tip generation.

Labels are kept to small fixed sets:
- provider:   "ollama"
- status:     outcome of the call or attempt, listed on each metric
- direction:  "input" | "output"
- severity:   "error" | "warning"
- job:        job_id from tipgen.jobs.COMPETITION_JOBS

Never label by match id, batch id, team or model text; the [TIP_GEN] log
line carries those. Recording is best-effort and never raises into callers.
"""

import logging
import time

from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Ollama gateway
# -----------------------------------------------------------------------------

llm_requests_total = Counter(
    "tipgen_llm_requests_total",
    "Completed generate calls (after retries) by provider and outcome",
    ["provider", "status"],  # ok, api_error, connection_error, error
)

llm_latency_ms = Histogram(
    "tipgen_llm_latency_ms",
    "Successful generate call latency in ms, backoff included",
    ["provider"],
    buckets=[1000, 2500, 5000, 10000, 20000, 40000, 60000, 120000, 240000],
)

llm_retries_total = Counter(
    "tipgen_llm_retries_total",
    "Failed attempts that were followed by a retry",
    ["provider"],
)

llm_tokens_total = Counter(
    "tipgen_llm_tokens_total",
    "Prompt and completion tokens reported by the backend",
    ["provider", "direction"],
)

# -----------------------------------------------------------------------------
# Generation pipeline
# -----------------------------------------------------------------------------

tip_generation_total = Counter(
    "tipgen_generation_total",
    "Tip generation attempts by outcome",
    ["status"],  # ok, empty, parse_error, validation_error, llm_error, persistence_error, error
)

tip_generation_latency_ms = Histogram(
    "tipgen_generation_latency_ms",
    "End-to-end latency of one generation attempt in ms",
    buckets=[1000, 5000, 10000, 30000, 60000, 120000, 240000, 480000],
)

tip_validation_issues_total = Counter(
    "tipgen_validation_issues_total",
    "Validator findings on model output",
    ["severity"],
)

# -----------------------------------------------------------------------------
# Scheduled jobs
# -----------------------------------------------------------------------------

job_runs_total = Counter(
    "tipgen_job_batches_total",
    "Job batch outcomes by job",
    ["job", "status"],  # ok, empty, error, skipped
)

job_last_success_timestamp = Gauge(
    "tipgen_job_last_success_timestamp",
    "Unix time of the last batch that produced a tip",
    ["job"],
)


def record_llm_request(
    provider: str,
    status: str,
    latency_ms: float,
    input_tokens: int = 0,
    output_tokens: int = 0,
) -> None:
    """
    Record one generate call once retries are over.

    Args:
        provider: "ollama"
        status: "ok" or the OllamaError subclass status
        latency_ms: wall time of the call including backoff sleeps
        input_tokens: prompt_eval_count, 0 when not reported
        output_tokens: eval_count, 0 when not reported
    """
    try:
        llm_requests_total.labels(provider=provider, status=status).inc()
        if status == "ok" and latency_ms > 0:
            llm_latency_ms.labels(provider=provider).observe(latency_ms)
        for direction, count in (("input", input_tokens), ("output", output_tokens)):
            if count > 0:
                llm_tokens_total.labels(provider=provider, direction=direction).inc(count)
    except Exception as e:
        logger.warning(f"Could not record llm request ({provider}/{status}): {e}")


def record_llm_retry(provider: str) -> None:
    try:
        llm_retries_total.labels(provider=provider).inc()
    except Exception as e:
        logger.warning(f"Could not record llm retry ({provider}): {e}")


def record_tip_generation(status: str, latency_ms: float) -> None:
    """Outcome and latency of one generate_tip_for_matches() call."""
    try:
        tip_generation_total.labels(status=status).inc()
        if latency_ms > 0:
            tip_generation_latency_ms.observe(latency_ms)
    except Exception as e:
        logger.warning(f"Could not record tip generation ({status}): {e}")


def record_validation_issues(errors: int, warnings: int) -> None:
    try:
        for severity, count in (("error", errors), ("warning", warnings)):
            if count > 0:
                tip_validation_issues_total.labels(severity=severity).inc(count)
    except Exception as e:
        logger.warning(f"Could not record validation issues: {e}")


def record_job_run(job: str, status: str) -> None:
    try:
        job_runs_total.labels(job=job, status=status).inc()
        if status == "ok":
            job_last_success_timestamp.labels(job=job).set(time.time())
    except Exception as e:
        logger.warning(f"Could not record job batch ({job}/{status}): {e}")

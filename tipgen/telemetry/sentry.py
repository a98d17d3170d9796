"""
Optional Sentry reporting for tip generation jobs.

Nothing is sent unless SENTRY_DSN is set; without it every helper returns
immediately. Prompts and model output are never attached to events.
"""

import logging
from contextlib import contextmanager
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from tipgen.config import Settings, get_settings

logger = logging.getLogger(__name__)

_initialized = False


def init_sentry(settings: Optional[Settings] = None) -> bool:
    """Set up the SDK once. Returns whether reporting is active."""
    global _initialized

    if _initialized:
        return True

    settings = settings or get_settings()
    if not settings.SENTRY_DSN:
        logger.info("SENTRY_DSN empty, error reporting disabled")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENV,
        integrations=[
            SqlalchemyIntegration(),
            # error log records become events; lower levels stay breadcrumbs
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=0.0,
        send_default_pii=False,
        ignore_errors=[KeyboardInterrupt, SystemExit],
    )
    _initialized = True
    logger.info(f"Sentry reporting enabled (env={settings.SENTRY_ENV})")
    return True


@contextmanager
def sentry_job_context(job_id: str, **tags):
    """
    Scope a job run: events inside carry job_id and the given tags.

    An exception escaping the block is reported and re-raised.
    """
    if not _initialized:
        yield None
        return

    with sentry_sdk.new_scope() as scope:
        scope.set_tag("job_id", job_id)
        for key, value in tags.items():
            if value is not None:
                scope.set_tag(key, str(value))
        scope.set_context("tip_job", {"job_id": job_id, **tags})
        try:
            yield scope
        except Exception as e:
            sentry_sdk.capture_exception(e)
            raise


def capture_exception(exception: BaseException, job_id: Optional[str] = None, **extra) -> None:
    """Report an exception that a job caught and will not re-raise."""
    if not _initialized:
        return

    with sentry_sdk.new_scope() as scope:
        if job_id:
            scope.set_tag("job_id", job_id)
        for key, value in extra.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)

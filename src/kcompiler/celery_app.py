"""Celery application for the compilation pipeline.

Submitters and workers share one broker. The default is a SQLite file beside
the project database, reached through kombu's SQLAlchemy transport, so a
single machine needs no extra services. Set ``worker.broker_url`` (or
KCOMPILER_BROKER_URL) to point at Redis or RabbitMQ instead.

Messages are acknowledged only after a task finishes (``task_acks_late``), so
a task whose worker dies is delivered again instead of being lost mid-run.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from celery import Celery
from celery.signals import worker_ready

from kcompiler.config import DEFAULT_DB_NAME

logger = logging.getLogger(__name__)

TASK_QUEUE = "kcompiler"
RECOVERY_COUNTDOWN = 10


def broker_url_for(db_path: Path | str) -> str:
    """Return the SQLite broker URL that pairs with *db_path*.

    ``/work/.kcompiler.db`` -> ``sqla+sqlite:////work/.kcompiler.broker.db``
    """
    path = Path(db_path).resolve()
    return f"sqla+sqlite:///{path.with_name(path.stem + '.broker.db')}"


app = Celery(
    "kcompiler",
    broker=os.getenv("KCOMPILER_BROKER_URL") or broker_url_for(DEFAULT_DB_NAME),
    include=["kcompiler.pipeline.tasks"],
)

app.conf.update(
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_ignore_result=True,
    task_default_queue=TASK_QUEUE,
    task_serializer="json",
    accept_content=["json"],
    broker_connection_retry_on_startup=True,
    worker_hijack_root_logger=False,
    timezone="UTC",
)


def configure(broker_url: str | None = None, *, eager: bool = False) -> Celery:
    """Point the app at *broker_url* and choose inline or queued execution.

    In eager mode ``delay``/``apply_async`` run the task in the calling
    thread. ``task_eager_propagates`` stays off: eager retries only re-run
    when the failure is captured in the result.
    """
    if broker_url:
        app.conf.broker_url = broker_url
        if broker_url.startswith("sqla+sqlite"):
            app.conf.broker_transport_options = {"connect_args": {"timeout": 30}}
    app.conf.task_always_eager = eager
    return app


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    """Schedule a sweep for work a previous worker left half done."""
    # imported here: the task module imports this one
    from kcompiler.pipeline.tasks import current_context, recover_stalled

    cfg = current_context().services.config.worker
    if not cfg.recover_on_start:
        logger.info("worker.recovery_disabled")
        return
    recover_stalled.apply_async(
        kwargs={"max_age_minutes": cfg.stale_after_minutes, "limit": cfg.recover_limit},
        countdown=RECOVERY_COUNTDOWN,
    )
    logger.info("worker.recovery_scheduled countdown=%d", RECOVERY_COUNTDOWN)

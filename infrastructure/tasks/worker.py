"""Run a Celery worker with beat embedded, consuming both ZAVERA queues.

Use either this worker or the in-process sweeper runner (ENABLE_SWEEPERS),
not both, or every sweep runs twice.
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(
        argv=["worker", "--beat", "--queues=notifications,sweepers", "--hostname=zavera@%h", "--loglevel=INFO"]
    )


if __name__ == "__main__":
    main()

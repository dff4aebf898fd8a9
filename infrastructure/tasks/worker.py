"""Run a settlement worker (with embedded beat) without the Celery CLI."""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(
        argv=[
            "worker",
            "--hostname=settlement@%h",
            "--queues=high,default,low",
            "--beat",
            "--loglevel=INFO",
        ]
    )


if __name__ == "__main__":
    main()

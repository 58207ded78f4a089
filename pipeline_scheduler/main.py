#!/usr/bin/env python3
"""
Main entry point for the pipeline scheduler service.
"""

from __future__ import annotations

import sys

from pipeline_scheduler.config import Config
from pipeline_scheduler.container import get_container
from pipeline_scheduler.services import db_pool
from pipeline_scheduler.utils import get_logger, setup_logging
from pipeline_scheduler.web import create_app


def start_scheduling() -> int:
    """Rebuild timers from stored pipelines and start the cron loop.

    Timers do not survive restarts, so this runs once per serving process.
    Returns the number of registered timers.
    """
    logger = get_logger("main")
    container = get_container()
    container.ensure_schemas()
    timer_count = container.pipeline_service.on_startup()
    container.cron.start()
    logger.info(f"Cron registry started with {timer_count} timers")
    return timer_count


def stop_scheduling() -> None:
    get_container().cron.stop()
    db_pool.close_pool()


def main():
    """Run the pipeline scheduler service."""
    try:
        Config.ensure_directories()
        Config.validate()
    except Exception as exc:
        # Logging not yet configured, so use stderr for diagnostics
        print(
            f"FATAL: Configuration initialization failed: {exc.__class__.__name__}: {exc}",
            file=sys.stderr,
        )
        raise

    setup_logging(level=Config.LOG_LEVEL)
    app = create_app()

    print(f"\n{'=' * 60}")
    print("Pipeline Scheduler")
    print(f"{'=' * 60}")
    print(f"Running on: http://{Config.HOST}:{Config.PORT}")
    print(f"Debug mode: {'enabled' if Config.DEBUG else 'disabled'}")
    print(f"{'=' * 60}\n")

    if Config.DEBUG:
        start_scheduling()
        try:
            # The reloader would fork a second scheduling process
            app.run(host=Config.HOST, port=Config.PORT, debug=True, use_reloader=False)
        finally:
            stop_scheduling()
    else:
        from gunicorn.app.base import BaseApplication

        class StandaloneApplication(BaseApplication):
            def __init__(self, application, options=None):
                self.options = options or {}
                self.application = application
                super().__init__()

            def load_config(self):
                for key, value in self.options.items():
                    if key in self.cfg.settings and value is not None:
                        self.cfg.set(key.lower(), value)

            def load(self):
                # Runs inside the worker: threads started before the fork would be lost
                start_scheduling()
                return self.application

        # One worker: the cron registry must have a single owner
        options = {
            "bind": f"{Config.HOST}:{Config.PORT}",
            "workers": 1,
            "threads": 4,
            "worker_class": "gthread",
            "timeout": 120,
            "preload_app": False,
            "accesslog": "-",
            "errorlog": "-",
        }
        StandaloneApplication(app, options).run()


if __name__ == "__main__":
    main()

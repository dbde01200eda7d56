# Overview: Runs best-effort side effects after the owning transaction has committed.

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from flask import current_app

from ..extensions import db

EXTENSION_KEY = "orderflow.dispatch_executor"


def init_app(app) -> None:
    if app.config.get("CARRIER_DISPATCH", "thread") == "thread":
        app.extensions[EXTENSION_KEY] = ThreadPoolExecutor(
            max_workers=app.config.get("CARRIER_DISPATCH_WORKERS", 4),
            thread_name_prefix="orderflow-dispatch",
        )


def _invoke(app, func, args, kwargs):
    try:
        func(*args, **kwargs)
    except Exception:
        db.session.rollback()
        app.logger.exception("Background task %s failed", getattr(func, "__name__", func))


def _run_in_context(app, func, args, kwargs):
    with app.app_context():
        _invoke(app, func, args, kwargs)


def dispatch_after_commit(func, *args, **kwargs):
    """
    Run func outside the caller's transaction. Call only after commit.

    Thread mode hands the task to the app's worker pool with its own app
    context and session. Inline mode (no pool) runs it immediately on the
    caller's session. Failures are logged and never reach the caller.
    """
    app = current_app._get_current_object()
    executor = app.extensions.get(EXTENSION_KEY)
    if executor is None:
        _invoke(app, func, args, kwargs)
        return None
    return executor.submit(_run_in_context, app, func, args, kwargs)

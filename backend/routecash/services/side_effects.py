# Overview: Isolation wrapper for best-effort follow-up work after a committed mutation.

from __future__ import annotations

from flask import current_app

from ..extensions import db


def run_best_effort(name: str, func, *args, **kwargs):
    """
    Run follow-up work that must not undo the primary mutation.

    The primary change is already committed when this runs. A failure here is
    logged with its traceback, the follow-up's own partial work is rolled
    back, and None is returned so the caller can report success.
    Reconciliation jobs pick up anything that was skipped.
    """
    try:
        return func(*args, **kwargs)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Best-effort step '%s' failed", name)
        return None

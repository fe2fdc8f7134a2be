"""Identifier helpers for participants and tasks."""

from __future__ import annotations

import uuid


def new_participant_id() -> str:
    """Generate an opaque client-side participant id."""
    return uuid.uuid4().hex


def new_task_id() -> str:
    return uuid.uuid4().hex

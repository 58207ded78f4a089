"""
Cron expression helpers shared by document validation and the cron registry.

Two forms are accepted:
    - 5 fields: ``minute hour day month weekday``
    - 6 fields: ``second minute hour day month weekday``

croniter expects seconds as the *last* field, so 6-field expressions are
rotated before they are handed to it.
"""

from __future__ import annotations

from croniter import croniter  # type: ignore[import-untyped]

VALID_FIELD_COUNTS = (5, 6)


def normalize_cron(expression: str) -> str:
    """Clamp a leading ``*`` field to ``0``.

    ``"* 5 * * *"`` becomes ``"0 5 * * *"``. Step and range expressions in the
    leading field (``*/5``, ``0-30``) are kept as they are.
    """
    fields = expression.split()
    if fields and fields[0] == "*":
        fields[0] = "0"
    return " ".join(fields)


def to_croniter_expression(expression: str) -> str:
    """Convert a (normalized) expression into croniter's field order."""
    fields = expression.split()
    if len(fields) == 6:
        return " ".join(fields[1:] + fields[:1])
    return " ".join(fields)


def is_valid_cron(expression: str) -> bool:
    """Return True when the expression has 5/6 fields and croniter accepts it."""
    if not isinstance(expression, str):
        return False
    if len(expression.split()) not in VALID_FIELD_COUNTS:
        return False
    return bool(croniter.is_valid(to_croniter_expression(expression)))

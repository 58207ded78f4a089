"""
JSON schema validation for pipeline documents.
"""

from __future__ import annotations

from typing import Any, Dict, List

from jsonschema import Draft202012Validator

from pipeline_scheduler.utils.cron_expr import is_valid_cron


def _collect_errors(validator: Draft202012Validator, data: Any) -> List[str]:
    return [
        f"{error.message} (at {'/'.join(str(p) for p in error.absolute_path)})"
        for error in validator.iter_errors(data)
    ]


# Row ids: integers or digit-only strings ("" reads as unset)
NUMERIC_ID: Dict[str, Any] = {
    "type": ["string", "integer", "null"],
    "pattern": "^[0-9]*$",
}

TRIGGER_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id"],
    "properties": {
        "id": {"type": ["string", "integer"]},
        "title": {"type": ["string", "null"]},
        "type": {"type": ["string", "null"]},
        "props": {
            "type": ["object", "null"],
            "properties": {
                "cron": {"type": ["string", "null"]},
            },
            "additionalProperties": True,
        },
    },
    "additionalProperties": True,
}

PIPELINE_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": True,
    "properties": {
        "id": NUMERIC_ID,
        "title": {"type": ["string", "null"]},
        "disabled": {"type": ["boolean", "null"]},
        "userId": NUMERIC_ID,
        "stages": {
            "type": ["array", "null"],
            "items": {"type": "object"},
        },
        "triggers": {
            "type": ["array", "null"],
            "items": TRIGGER_SCHEMA,
        },
        "status": {"type": ["object", "null"]},
    },
}

_pipeline_validator = Draft202012Validator(PIPELINE_SCHEMA)


def validate_pipeline_document(data: Any) -> List[str]:
    """Return a list of validation errors; empty when the document is valid."""
    errors = _collect_errors(_pipeline_validator, data)
    if errors:
        return errors

    for index, trigger in enumerate(data.get("triggers") or []):
        cron = (trigger.get("props") or {}).get("cron")
        if cron is not None and not is_valid_cron(cron):
            errors.append(
                f"'{cron}' is not a valid 5 or 6 field cron expression "
                f"(at triggers/{index}/props/cron)"
            )
    return errors

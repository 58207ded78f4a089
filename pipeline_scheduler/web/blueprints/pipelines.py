"""API endpoints for pipeline management and manual runs."""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from pipeline_scheduler.container import get_container
from pipeline_scheduler.models import PipelineEntity
from pipeline_scheduler.services import db_pool
from pipeline_scheduler.utils import get_logger
from pipeline_scheduler.utils.errors import PipelineNotFoundError, ValidationError

bp = Blueprint("pipelines", __name__)
logger = get_logger("web.pipelines")


@bp.route("/api/pipelines/<int:pipeline_id>", methods=["GET"])
def api_pipeline_detail(pipeline_id):
    service = get_container().pipeline_service
    try:
        detail = service.detail(pipeline_id)
    except PipelineNotFoundError:
        return jsonify({"error": f"Pipeline not found: {pipeline_id}"}), 404
    except ValidationError as exc:
        return jsonify({"error": exc.message, "details": exc.errors}), 422
    return jsonify(detail.to_dict()), 200


@bp.route("/api/pipelines", methods=["POST"])
def api_save_pipeline():
    """
    Save a pipeline and (re)register its triggers.

    Body: {"id"?: int, "user_id"?: int, "content": str, "disabled"?: bool}
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Expected a JSON object"}), 400

    content = payload.get("content")
    if not isinstance(content, str):
        return jsonify({"error": "content must be a JSON string"}), 400

    try:
        raw_id = payload.get("id")
        raw_user = payload.get("user_id")
        entity = PipelineEntity(
            id=int(raw_id) if raw_id is not None else None,
            user_id=int(raw_user) if raw_user is not None else None,
            content=content,
            disabled=bool(payload.get("disabled", False)),
        )
    except (TypeError, ValueError):
        return jsonify({"error": "id and user_id must be integers"}), 400

    service = get_container().pipeline_service
    if entity.id is not None:
        existing = service.pipelines.get(entity.id)
        if existing is not None:
            # Orchestration-owned fields are never written by a save
            entity.status = existing.status
            entity.last_history_time = existing.last_history_time

    try:
        saved = service.save(entity)
    except ValidationError as exc:
        return jsonify({"error": exc.message, "details": exc.errors}), 422

    service.register_trigger_by_id(saved.id)
    logger.info(f"API: saved pipeline {saved.id}")
    return jsonify({"success": True, "id": saved.id, "title": saved.title}), 200


@bp.route("/api/pipelines/<int:pipeline_id>", methods=["DELETE"])
def api_delete_pipeline(pipeline_id):
    service = get_container().pipeline_service
    service.delete(pipeline_id)
    logger.info(f"API: deleted pipeline {pipeline_id}")
    return jsonify({"success": True}), 200


@bp.route("/api/pipelines/<int:pipeline_id>/trigger", methods=["POST"])
def api_trigger_pipeline(pipeline_id):
    """Queue a one-off manual run; it starts on the next cron tick."""
    service = get_container().pipeline_service
    try:
        service.info(pipeline_id)
    except PipelineNotFoundError:
        return jsonify({"error": f"Pipeline not found: {pipeline_id}"}), 404

    service.trigger(pipeline_id)
    return jsonify({
        "success": True,
        "pipeline_id": pipeline_id,
        "status": "queued",
    }), 202


@bp.route("/api/pipelines/<int:pipeline_id>/status", methods=["GET"])
def api_pipeline_status(pipeline_id):
    service = get_container().pipeline_service
    try:
        entity = service.info(pipeline_id)
    except PipelineNotFoundError:
        return jsonify({"error": f"Pipeline not found: {pipeline_id}"}), 404

    return jsonify({
        "pipeline_id": pipeline_id,
        "running": service.is_running(pipeline_id),
        "status": entity.status,
        "last_history_time": entity.last_history_time,
    }), 200


@bp.route("/api/scheduler/status", methods=["GET"])
def api_scheduler_status():
    container = get_container()
    status = container.cron.get_status()
    status["running_pipelines"] = container.tracker.running_ids()
    if db_pool.is_configured():
        status["db_pool"] = db_pool.get_stats()
    return jsonify(status), 200

"""HTTP entrypoint that controls a collection run (start/pause/resume/stop/export)."""

from __future__ import annotations

import atexit
import logging
import os
import threading
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify, request

from bizdata.core.config import ConfigError, get_settings
from bizdata.core.controller import CollectionController
from bizdata.etl.export import default_export_filename
from bizdata.jobs.run_query import build_controller
from bizdata.models import CollectionConfig, Query

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & controller ----------
app = Flask(__name__)
_controller: Optional[CollectionController] = None
_controller_lock = threading.Lock()


def get_controller() -> CollectionController:
    """Lazily build the process-wide controller (raises ConfigError without a key)."""
    global _controller
    with _controller_lock:
        if _controller is None:
            _controller = build_controller()
            atexit.register(_controller.shutdown, 5)
        return _controller


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "credential_configured": bool(settings.yelp_api_key),
            }
        ),
        200,
    )


def _parse_config(payload: Dict[str, Any], current: CollectionConfig) -> CollectionConfig:
    delay = payload.get("request_delay", current.request_delay_seconds)
    page_limit = payload.get("page_limit", current.page_limit)
    max_pages = payload.get("max_pages", current.max_pages)
    dedupe = payload.get("dedupe", current.dedupe)
    if not isinstance(dedupe, bool):
        raise ConfigError("dedupe must be a boolean")
    try:
        page_limit = int(page_limit)
        max_pages = int(max_pages) if max_pages is not None else None
    except (TypeError, ValueError) as exc:
        raise ConfigError("page_limit and max_pages must be integers") from exc
    return CollectionConfig(
        request_delay_seconds=delay,
        page_limit=page_limit,
        max_pages=max_pages,
        dedupe=dedupe,
    )


@app.post("/collect")
def start_collection() -> Any:
    """
    Start a collection run.
    Required JSON fields: category, location
    Optional: request_delay (float seconds), page_limit (int), max_pages (int), dedupe (bool)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    missing = [f for f in ("category", "location") if not str(payload.get(f) or "").strip()]
    if missing:
        return jsonify({"error": f"missing fields: {', '.join(missing)}"}), 400

    try:
        controller = get_controller()
        query = Query(category=str(payload["category"]), location=str(payload["location"]))
        config = _parse_config(payload, controller.config)
    except ConfigError as exc:
        return jsonify({"error": str(exc)}), 400

    if controller.state.is_active or not controller.update_config(config):
        return jsonify({"error": "a collection run is already active"}), 409

    try:
        started = controller.start(query)
    except ConfigError as exc:
        return jsonify({"error": str(exc)}), 400
    if not started:
        return jsonify({"error": "a collection run is already active"}), 409

    logger.info("Started collection: category=%s location=%s", query.category, query.location)
    return jsonify({"data": controller.snapshot().to_dict(include_listings=False)}), 202


def _transition(action: str) -> Any:
    try:
        controller = get_controller()
    except ConfigError as exc:
        return jsonify({"error": str(exc)}), 400

    applied = getattr(controller, action)()
    snapshot = controller.snapshot()
    if not applied:
        return jsonify({"error": f"cannot {action} while {snapshot.state.value}"}), 409
    return jsonify({"data": {"state": snapshot.state.value, "status_message": snapshot.status_message}}), 200


@app.post("/pause")
def pause_collection() -> Any:
    return _transition("pause")


@app.post("/resume")
def resume_collection() -> Any:
    return _transition("resume")


@app.post("/stop")
def stop_collection() -> Any:
    return _transition("stop")


@app.get("/status")
def collection_status() -> Any:
    try:
        controller = get_controller()
    except ConfigError as exc:
        return jsonify({"error": str(exc)}), 400
    include_listings = request.args.get("listings", "1").lower() not in {"0", "false", "no"}
    return jsonify({"data": controller.snapshot().to_dict(include_listings=include_listings)}), 200


@app.get("/export")
def export_listings() -> Any:
    try:
        controller = get_controller()
    except ConfigError as exc:
        return jsonify({"error": str(exc)}), 400

    if not controller.snapshot().listings:
        return jsonify({"error": "no listings collected yet"}), 409

    body = controller.export_csv()
    filename = default_export_filename()
    logger.info("Exporting listings as %s", filename)
    return Response(
        body.encode("utf-8"),
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def main() -> None:
    """Bind on PORT when provided, falling back to WORKER_PORT."""
    port = int(os.getenv("PORT") or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()

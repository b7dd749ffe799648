from __future__ import annotations

import logging
import os
from typing import Any, Mapping

from flask import Flask, jsonify, request

from .. import __version__
from ..comparator import ThresholdTable, compare_many
from ..config import as_dict as config_as_dict
from ..errors import ConfigError
from ..reports import REPORT_KINDS, build_force_plate_progression, build_report, classify_arm_care

logger = logging.getLogger(__name__)


def create_app() -> Flask:
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    app = Flask(__name__)
    register_api(app)
    return app


def _json_payload() -> Mapping[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object.")
    return payload


def _records(payload: Mapping[str, Any]) -> list[Any]:
    records = payload.get("records")
    if not isinstance(records, list):
        raise ValueError("'records' must be a list of record objects.")
    return records


def _tables(raw: Any) -> list[ThresholdTable]:
    if not isinstance(raw, dict) or not raw:
        raise ValueError("'tables' must map table names to {band: cutoff} objects.")
    return [ThresholdTable.from_mapping(name, cutoffs) for name, cutoffs in raw.items()]


def register_api(app: Flask) -> None:
    @app.get("/api/health")
    def api_health():
        return jsonify({"status": "ok", "version": __version__})

    @app.get("/api/config")
    def api_config():
        try:
            return jsonify(config_as_dict())
        except ConfigError as exc:
            return jsonify({"error": str(exc)}), 500

    @app.post("/api/reports/<kind>")
    def api_report(kind: str):
        if kind not in REPORT_KINDS:
            return jsonify({"error": f"Unknown report kind {kind!r}.", "kinds": list(REPORT_KINDS)}), 404
        try:
            payload = _json_payload()
            records = _records(payload)
            benchmarks_raw = payload.get("benchmarks") or {}
            if not isinstance(benchmarks_raw, dict):
                raise ValueError("'benchmarks' must map pitch types to table objects.")
            benchmarks = {pitch_type: _tables(tables) for pitch_type, tables in benchmarks_raw.items()}
            result = build_report(kind, records, benchmarks=benchmarks or None)
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify(result.to_dict())

    @app.post("/api/reports/force-plates")
    def api_force_plates():
        try:
            payload = _json_payload()
            records = _records(payload)
            metrics = payload.get("metrics")
            if not isinstance(metrics, list) or not metrics:
                raise ValueError("'metrics' must be a non-empty list of metric names.")
            benchmarks_raw = payload.get("benchmarks") or {}
            if not isinstance(benchmarks_raw, dict):
                raise ValueError("'benchmarks' must map metric names to table objects.")
            benchmarks = {metric: _tables(tables) for metric, tables in benchmarks_raw.items()}
            result = build_force_plate_progression(
                records,
                [str(metric) for metric in metrics],
                test_type=payload.get("test_type"),
                benchmarks=benchmarks,
            )
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify(result.to_dict())

    @app.post("/api/arm-care")
    def api_arm_care():
        try:
            payload = _json_payload()
            exam = payload.get("exam")
            if not isinstance(exam, dict):
                raise ValueError("'exam' must be an object.")
            result = classify_arm_care(exam, payload.get("body_weight"))
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify(result.to_dict())

    @app.post("/api/compare")
    def api_compare():
        try:
            payload = _json_payload()
            value = payload.get("value")
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError("'value' must be a number.")
            results = compare_many(value, _tables(payload.get("tables")))
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400
        logger.debug("Compared %s against %s table(s)", value, len(results))
        return jsonify({name: result.to_dict() for name, result in results.items()})

"""Flask JSON API over a sheet record store.

Every route answers with the store's envelope; the HTTP status mirrors
``envelope.status``.
"""

import asyncio
import logging
import os
from datetime import datetime
from typing import Any, Awaitable, Dict, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS

from envelope import Envelope, validate_required_fields
from record_filter import FilterOperator, RecordFilter, as_flag
from sheet_store import SheetStore
from store_config import LOG_FORMAT, SheetStoreConfig, build_store

load_dotenv()

logger = logging.getLogger(__name__)


def _flag(name: str, default: bool = False) -> bool:
    return as_flag(request.args.get(name), default)


def _respond(envelope: Envelope):
    return jsonify(envelope.to_json_dict()), envelope.status


def _run(coroutine: Awaitable[Envelope]) -> Envelope:
    return asyncio.run(coroutine)


def create_app(store: Optional[SheetStore] = None, include_inactive_default: bool = False) -> Flask:
    app = Flask(__name__)
    CORS(app)

    if store is None:
        config = SheetStoreConfig.from_env()
        include_inactive_default = config.include_inactive_default
        try:
            store = build_store(config)
            logger.info("Sheet store initialized for '%s'", store.sheet_name)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to initialize sheet store: %s", exc)
            store = None

    def _store_unavailable():
        return jsonify({"error": "Sheet store not initialized"}), 500

    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({
            "status": "ok",
            "store_initialized": store is not None,
            "store": store.describe() if store else None,
            "timestamp": datetime.now().isoformat(),
        })

    @app.route("/api/records", methods=["GET"])
    def list_records():
        if not store:
            return _store_unavailable()

        record_filter = None
        column = request.args.get("column")
        if column:
            record_filter = RecordFilter(
                column=column,
                value=request.args.get("value"),
                operator=FilterOperator.parse(request.args.get("operator")),
                multiple=_flag("multiple", True),
            )
        include_inactive = _flag("include_inactive", include_inactive_default)
        return _respond(_run(store.read(record_filter, include_inactive=include_inactive)))

    @app.route("/api/headers", methods=["GET"])
    def headers():
        if not store:
            return _store_unavailable()
        return _respond(_run(store.headers()))

    @app.route("/api/records", methods=["POST"])
    def insert_record():
        """
        Body:
        {
            "data": {"name": "Ana"},
            "user": {"alias": "ana"},
            "includeId": true
        }
        """
        if not store:
            return _store_unavailable()

        payload: Dict[str, Any] = request.get_json(silent=True) or {}
        missing = validate_required_fields(payload, ["data"])
        if missing:
            return _respond(missing)
        return _respond(_run(store.insert(
            payload["data"],
            user=payload.get("user"),
            include_id=bool(payload.get("includeId", False)),
        )))

    @app.route("/api/records/<col_name>/<record_id>", methods=["PATCH"])
    def update_record(col_name: str, record_id: str):
        if not store:
            return _store_unavailable()

        payload: Dict[str, Any] = request.get_json(silent=True) or {}
        missing = validate_required_fields(payload, ["values"])
        if missing:
            return _respond(missing)
        return _respond(_run(store.update(col_name, record_id, payload["values"])))

    @app.route("/api/records/<col_name>/<record_id>/deactivate", methods=["POST"])
    def deactivate_record(col_name: str, record_id: str):
        if not store:
            return _store_unavailable()
        return _respond(_run(store.deactivate(col_name, record_id)))

    @app.route("/api/records/<col_name>/<record_id>", methods=["DELETE"])
    def delete_record(col_name: str, record_id: str):
        if not store:
            return _store_unavailable()
        return _respond(_run(store.delete(col_name, record_id)))

    @app.route("/api/last-id", methods=["GET"])
    def last_id():
        if not store:
            return _store_unavailable()
        return _respond(_run(store.last_id()))

    @app.route("/api/records/by/<key>/<value>", methods=["GET"])
    def find_by_key(key: str, value: str):
        if not store:
            return _store_unavailable()
        if _flag("first"):
            return _respond(_run(store.find_one(key, value)))
        return _respond(_run(store.find_by_key(key, value)))

    return app


if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper(), format=LOG_FORMAT)
    port = int(os.getenv("PORT", "5000"))
    debug = os.getenv("FLASK_DEBUG", "false").lower() == "true"
    logger.info("Starting sheet store API on port %s", port)
    create_app().run(host="0.0.0.0", port=port, debug=debug)

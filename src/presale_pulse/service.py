"""Flask status service for the pulse feed."""

from __future__ import annotations

import logging
from typing import Any, Callable

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)

StatusProvider = Callable[[], dict[str, Any]]


def create_app(status_provider: StatusProvider) -> Flask:
    app = Flask(__name__)

    @app.after_request
    def _cors(response: Response) -> Response:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.before_request
    def _preflight() -> Any:
        if request.method == "OPTIONS":
            return Response(status=204)
        return None

    @app.get("/status")
    def status() -> Any:
        return jsonify(status_provider())

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException) -> Any:
        if exc.code == 404:
            return jsonify({"error": "Not Found"}), 404
        return jsonify({"error": exc.name}), exc.code or 500

    @app.errorhandler(Exception)
    def _internal_error(exc: Exception) -> Any:
        logger.error("Pulse status request failed error=%s", exc)
        return jsonify({"error": "Internal Server Error"}), 500

    return app

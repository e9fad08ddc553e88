"""Awning Visualizer — Flask web application."""

from __future__ import annotations

import logging
import os
import traceback
from dataclasses import dataclass
from typing import Callable, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS

load_dotenv()

import log_setup
log_setup.configure(os.environ.get("LOG_LEVEL", "INFO"))

from awning_core import AwningPipeline, AwningRequest
from config import Settings
from costs import CostTracker
from errors import RequestValidationError
from notifications import NotificationDispatcher
from oracles import OracleSet, build_oracles

log = logging.getLogger(__name__)

OracleFactory = Callable[[Settings, CostTracker], OracleSet]


@dataclass
class AppContext:
    """Per-process collaborators handed to every request."""

    settings: Settings
    dispatcher: Optional[NotificationDispatcher] = None
    oracle_factory: OracleFactory = build_oracles

    @classmethod
    def from_env(cls) -> "AppContext":
        settings = Settings.from_env()
        return cls(settings, NotificationDispatcher.from_settings(settings))


def _error(message: str, status: int, **extra):
    body = {"error": message}
    body.update(extra)
    return jsonify(body), status


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(context: Optional[AppContext] = None) -> Flask:
    ctx = context or AppContext.from_env()

    app = Flask(__name__)
    app.config["AWNING_CONTEXT"] = ctx
    CORS(app)

    def _run(pricing: bool):
        try:
            awning_request = AwningRequest.from_payload(request.get_json(silent=True), pricing=pricing)
        except RequestValidationError as exc:
            log.info("Rejected request: %s", exc)
            return _error(str(exc), 400)
        except Exception as exc:
            log.error("Request parsing failed: %s", exc, exc_info=True)
            return _error(str(exc), 500, details=traceback.format_exc())

        missing = ctx.settings.missing_keys()
        if missing:
            return _error(f"{', '.join(missing)} is not configured", 400)

        cost_tracker = CostTracker()
        try:
            pipeline = AwningPipeline(
                awning_request,
                ctx.settings,
                ctx.oracle_factory(ctx.settings, cost_tracker),
                dispatcher=ctx.dispatcher,
                cost_tracker=cost_tracker,
            )
            result = pipeline.run()
        except Exception as exc:
            log.error("Pipeline failed: %s", exc, exc_info=True)
            return _error(str(exc), 500, details=traceback.format_exc())
        return jsonify(result)

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------

    @app.post("/api/visualize")
    def api_visualize():
        return _run(pricing=False)

    @app.post("/api/price-indication")
    def api_price_indication():
        return _run(pricing=True)

    @app.get("/api/health")
    def api_health():
        settings = ctx.settings
        return jsonify({
            "status": "ok",
            "image_provider": settings.image_provider,
            "eval_provider": settings.eval_provider,
            "eval_model": settings.resolved_eval_model,
            "goal_policy": settings.goal_policy,
            "notifications_enabled": ctx.dispatcher is not None,
            "missing_keys": settings.missing_keys(),
        })

    @app.errorhandler(405)
    def method_not_allowed(_exc):
        return _error("Method not allowed", 405)

    return app


app = create_app()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    port = app.config["AWNING_CONTEXT"].settings.port
    print(f"\n  Awning Visualizer → http://localhost:{port}\n")
    app.run(host="0.0.0.0", port=port, debug=False, threaded=True)

"""Request ids, access logging, Sentry and OpenTelemetry wiring.

Carrier webhooks arrive with signature headers and bodies that identify
buyers; neither may leave the process through an error report.
"""
from __future__ import annotations

import hashlib
import os
import time
import uuid

from flask import g, has_request_context, request

REQUEST_ID_HEADER = "X-Request-Id"

_SCRUBBED_HEADERS = ("authorization", "cookie", "set-cookie", "x-signature")


def get_request_id() -> str:
    if not has_request_context():
        return ""
    return getattr(g, "request_id", "") or ""


def _client_fingerprint(secret: str) -> str:
    forwarded = (request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    ip = forwarded or request.remote_addr or ""
    return hashlib.sha256(f"{secret}:{ip}".encode("utf-8")).hexdigest()[:16]


def _scrub_event(event, hint):
    req = event.get("request") or {}
    headers = req.get("headers") or {}
    for name in list(headers.keys()):
        lowered = name.lower()
        if lowered in _SCRUBBED_HEADERS or lowered.endswith("-signature"):
            headers[name] = "[REDACTED]"
    if "/webhooks/" in str(req.get("url") or ""):
        req.pop("data", None)
    req["headers"] = headers
    event["request"] = req
    return event


def init_sentry(app) -> None:
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        app.logger.info("sentry_disabled_no_dsn")
        return
    try:
        sample_rate = float((os.getenv("SENTRY_TRACES_SAMPLE_RATE") or "0").strip() or 0)
    except ValueError:
        sample_rate = 0.0
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration()],
            environment=os.getenv("SENTRY_ENVIRONMENT") or os.getenv("HOMECHEFF_ENV") or "dev",
            release=os.getenv("GIT_SHA") or "unknown",
            traces_sample_rate=min(max(sample_rate, 0.0), 1.0),
            send_default_pii=False,
            before_send=_scrub_event,
        )
    except Exception as e:
        app.logger.warning("sentry_init_failed err=%s", e)
        return
    app.logger.info("sentry_enabled env=%s", os.getenv("HOMECHEFF_ENV") or "dev")


def init_otel(app, *, enabled: bool) -> None:
    """Trace Flask requests and SQLAlchemy queries when an OTLP endpoint is set."""
    if not enabled:
        return
    endpoint = (os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or "").strip()
    if not endpoint:
        app.logger.info("otel_disabled_no_endpoint")
        return
    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.flask import FlaskInstrumentor
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        from homecheff.extensions import db

        tracer_provider = TracerProvider(resource=Resource.create({"service.name": "homecheff-fulfillment"}))
        tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(tracer_provider)
        FlaskInstrumentor().instrument_app(app)
        SQLAlchemyInstrumentor().instrument(engine=db.engine)
    except Exception as e:
        app.logger.warning("otel_init_failed err=%s", e)
        return
    app.logger.info("otel_enabled endpoint=%s", endpoint)


def install_request_observers(app) -> None:
    """Tag every request with an id and write one access log line for it."""

    @app.before_request
    def _begin_request():
        incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()[:64]
        g.request_id = incoming or uuid.uuid4().hex
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _end_request(response):
        rid = get_request_id() or uuid.uuid4().hex
        response.headers[REQUEST_ID_HEADER] = rid
        started = getattr(g, "request_started_at", None)
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2) if started is not None else None
        app.logger.info(
            "http_request rid=%s method=%s path=%s status=%s ms=%s user_id=%s client=%s",
            rid,
            request.method,
            request.path,
            response.status_code,
            elapsed_ms,
            getattr(g, "auth_user_id", None),
            _client_fingerprint(app.config.get("SECRET_KEY") or "homecheff"),
        )
        return response

import time
from collections import Counter
from flask import Flask, Response, jsonify, render_template, request
from measurement_client.logger import logger
from measurement_client.config import load_config
from measurement_client.exceptions import FarolError, NotFoundError, ValidationError
from measurement_client.aggregator import DiagnosticAggregator
from measurement_client.globalping import GlobalpingService
from measurement_client.ripe_atlas import RipeAtlasService
from visualization.report import render_pdf
from web.storage import MemStorage


def build_aggregator(config, store):
    credentials = config.get("credentials", {})
    globalping = GlobalpingService(credentials.get("globalping_api_token"), config)
    ripe = RipeAtlasService(credentials.get("ripe_atlas_api_key"), config)
    return DiagnosticAggregator(globalping, ripe, store, config)


def _request_payload():
    payload = request.get_json(silent=True)
    if payload is None:
        payload = request.form.to_dict()
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _field(payload, name, alias, default=None):
    value = payload.get(name)
    if value is None:
        value = payload.get(alias, default)
    return value


def _pdf_response(pdf_bytes, domain):
    filename = f"diagnostic_{domain or 'report'}.pdf"
    return Response(
        pdf_bytes,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


def collect_metrics(store):
    metrics = []
    diagnostics = store.list(limit=len(store))

    metrics.append(f'farol_diagnostics_total {len(diagnostics)}')

    provider_states = Counter()
    for diagnostic in diagnostics:
        diagnostic_id = diagnostic.get("id")
        domain = diagnostic.get("domain")
        metrics.append(f'farol_diagnostic_probes{{id="{diagnostic_id}",domain="{domain}"}} {diagnostic.get("total_probes", 0)}')

        statuses = Counter(r.get("status") for r in diagnostic.get("results", []))
        for status in ("OK", "WARNING", "ERROR"):
            metrics.append(f'farol_diagnostic_probes_by_status{{id="{diagnostic_id}",domain="{domain}",status="{status}"}} {statuses.get(status, 0)}')

        for provider, outcome in (diagnostic.get("providers") or {}).items():
            provider_states[(provider, outcome.get("state"))] += 1

    for (provider, state), count in sorted(provider_states.items()):
        metrics.append(f'farol_provider_outcomes_total{{provider="{provider}",state="{state}"}} {count}')

    metrics.append(f'farol_exporter_last_scrape_timestamp {int(time.time())}')
    return "\n".join(metrics) + "\n"


def create_app(config=None, aggregator=None, store=None):
    """Build the Flask application.

    ``aggregator`` and ``store`` can be injected; by default real provider
    clients are built from ``config`` (loaded from YAML and the environment).
    """
    app = Flask(__name__)

    config = config or load_config()
    store = store if store is not None else MemStorage()
    aggregator = aggregator or build_aggregator(config, store)
    limits = config.get("limits", {})
    history_size = int(config.get("server", {}).get("history_size", 10))

    app.config["FAROL"] = config
    app.extensions["farol_store"] = store
    app.extensions["farol_aggregator"] = aggregator

    @app.errorhandler(FarolError)
    def handle_farol_error(error):
        logger.warning(f"{error.error_code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.route("/")
    def dashboard():
        history = store.list(history_size)
        latest = history[0] if history else None
        return render_template("dashboard.html", latest=latest, history=history, limits=limits)

    @app.route("/api/diagnose", methods=["POST"])
    @app.route("/api/diagnosticar", methods=["POST"])
    def diagnose():
        payload = _request_payload()
        domain = _field(payload, "domain", "dominio")
        scope = _field(payload, "scope", "escopo", "GLOBAL")
        limit = _field(payload, "limit", "limite", limits.get("default_probes", 50))

        logger.info(f"Diagnostic requested for {domain} (scope={scope}, limit={limit})")
        diagnostic = aggregator.run(domain, scope, limit)
        return jsonify(diagnostic)

    @app.route("/api/diagnostics", methods=["GET"])
    @app.route("/api/diagnosticos", methods=["GET"])
    def list_diagnostics():
        limit = request.args.get("limit", default=history_size, type=int)
        return jsonify(store.list(limit))

    @app.route("/api/diagnostics/<int:diagnostic_id>", methods=["GET"])
    def get_diagnostic(diagnostic_id):
        diagnostic = store.get(diagnostic_id)
        if diagnostic is None:
            raise NotFoundError(f"Diagnostic {diagnostic_id} not found")
        return jsonify(diagnostic)

    @app.route("/api/diagnostics/<int:diagnostic_id>/pdf", methods=["GET"])
    def diagnostic_pdf(diagnostic_id):
        diagnostic = store.get(diagnostic_id)
        if diagnostic is None:
            raise NotFoundError(f"Diagnostic {diagnostic_id} not found")
        pdf = render_pdf(diagnostic, thresholds=config.get("classification"))
        return _pdf_response(pdf, diagnostic.get("domain"))

    @app.route("/api/pdf", methods=["POST"])
    def pdf_from_payload():
        payload = _request_payload()
        results = _field(payload, "results", "resultados", [])
        if not isinstance(results, list):
            raise ValidationError("'results' must be a list")

        diagnostic = {
            "domain": _field(payload, "domain", "dominio"),
            "scope": _field(payload, "scope", "escopo"),
            "date": _field(payload, "date", "data"),
            "summary": _field(payload, "summary", "resumo"),
            "total_probes": _field(payload, "total_probes", "totalProbes"),
            "results": [r for r in results if isinstance(r, dict)],
        }
        pdf = render_pdf(diagnostic, thresholds=config.get("classification"))
        return _pdf_response(pdf, diagnostic["domain"])

    @app.route("/metrics")
    def metrics():
        return Response(collect_metrics(store), mimetype="text/plain")

    @app.route("/health")
    def health():
        return {"status": "healthy", "service": "farol", "diagnostics": len(store)}

    return app

import os
import logging
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request

from conversion_errors import FhirClientError, GraphConsistencyError, InvalidPlanDefinitionError
from fhir_client import FhirClient
from plandefinition_to_bpmn import convert

# --- 1. Konfiguration und Initialisierung ---
load_dotenv()
FHIR_BASE_URL = os.environ.get("FHIR_BASE_URL")
FHIR_AUTH_TOKEN = os.environ.get("FHIR_AUTH_TOKEN")
FHIR_TIMEOUT = float(os.environ.get("FHIR_TIMEOUT", "30"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

if not logging.getLogger().handlers:
    logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(levelname)s - %(message)s')

logger = logging.getLogger(__name__)

BPMN_MIMETYPE = "application/xml"


def _error(message: str, status: int, details=None):
    body = {"error": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def _bpmn_response(xml: str, process_id: str, download: bool, warnings=None) -> Response:
    response = Response(xml, mimetype=BPMN_MIMETYPE)
    if warnings:
        response.headers["X-Conversion-Warnings"] = "; ".join(warnings)
    if download:
        response.headers["Content-Disposition"] = f'attachment; filename="{process_id}.bpmn"'
    return response


def _wants_download() -> bool:
    return request.args.get("download", "").lower() in ("1", "true", "yes")


# --- 2. Flask-Routen ---
def create_app(fhir_client: Optional[FhirClient] = None) -> Flask:
    flask_app = Flask(__name__)

    if fhir_client is None and FHIR_BASE_URL:
        fhir_client = FhirClient(FHIR_BASE_URL, token=FHIR_AUTH_TOKEN, timeout=FHIR_TIMEOUT)
    flask_app.extensions["fhir_client"] = fhir_client

    @flask_app.errorhandler(InvalidPlanDefinitionError)
    def handle_invalid_plan_definition(e):
        logger.warning(f"Rejected PlanDefinition: {e}")
        return _error(str(e), 400, e.details)

    @flask_app.errorhandler(GraphConsistencyError)
    def handle_graph_consistency(e):
        logger.error(f"Internal graph error: {e}")
        return _error(f"Internal conversion error: {e}", 500)

    @flask_app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"})

    @flask_app.route("/convert", methods=["POST"])
    def convert_route():
        document = request.get_json(silent=True)
        if document is None:
            raise InvalidPlanDefinitionError("Request body must be a JSON PlanDefinition")
        result = convert(document)
        return _bpmn_response(result.xml, result.process_id, _wants_download(), result.warnings)

    @flask_app.route("/plandefinition/<plan_definition_id>/bpmn", methods=["GET"])
    def plan_definition_bpmn(plan_definition_id):
        client = flask_app.extensions.get("fhir_client")
        if client is None:
            return _error("No FHIR server configured. Set FHIR_BASE_URL.", 503)
        try:
            document = client.get_plan_definition(plan_definition_id)
        except FhirClientError as e:
            return _error(str(e), 502)
        result = convert(document)
        return _bpmn_response(result.xml, result.process_id, _wants_download(), result.warnings)

    return flask_app


flask_app = create_app()

if __name__ == "__main__":
    print("Flask-Server für die PlanDefinition-Konvertierung wird gestartet...")
    flask_app.run(port=int(os.environ.get("PORT", "5000")))

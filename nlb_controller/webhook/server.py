import os
import logging
from flask import Flask, request, jsonify

from ..annotations import is_valid_service, parse_service_annotations
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)

CONFIG_KEY = "NLB_CONTROLLER_CONFIG"


def create_error_response(message: str, uid: str = "") -> dict:
    """Create a standardized error response for the admission webhook."""
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "response": {
            "uid": uid,
            "allowed": False,
            "status": {"message": message}
        }
    }


def create_allowed_response(uid: str = "") -> dict:
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "response": {
            "uid": uid,
            "allowed": True
        }
    }


def start_webhook_server(cfg):
    """Start the webhook server with SSL configuration."""
    app.config[CONFIG_KEY] = cfg
    try:
        cert_path = os.environ.get('CERT_PATH', '/etc/webhook/certs/tls.crt')
        key_path = os.environ.get('KEY_PATH', '/etc/webhook/certs/tls.key')

        if not os.path.exists(cert_path) or not os.path.exists(key_path):
            logger.error("SSL certificate or key not found")
            raise FileNotFoundError("SSL certificate or key not found")

        app.run(
            host='0.0.0.0',
            port=8443,
            ssl_context=(cert_path, key_path),
            threaded=True
        )
    except Exception as e:
        logger.error(f"Failed to start webhook server: {str(e)}")
        raise


@app.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint for the webhook server."""
    return jsonify({"status": "healthy"}), 200


@app.route('/validate', methods=['POST'])
def validate():
    """
    Validate the annotations of Services handled by this controller.

    Services outside the controller's service class, and deletions, are
    always allowed.
    """
    uid = ""
    try:
        request_info = request.get_json(silent=True)
        if not request_info:
            logger.warning("Received empty request body")
            return jsonify(create_error_response("No request body", uid))

        request_data = request_info.get("request")
        if not request_data:
            logger.warning("No request data in admission review")
            return jsonify(create_error_response("No request data", uid))

        uid = request_data.get("uid", "")
        service = request_data.get("object")
        if request_data.get("operation", "").upper() == "DELETE" or not service:
            return jsonify(create_allowed_response(uid))

        cfg = app.config[CONFIG_KEY]
        if not is_valid_service(cfg.service_class, service):
            return jsonify(create_allowed_response(uid))

        name = (service.get("metadata") or {}).get("name", "unknown")
        try:
            parse_service_annotations((service.get("metadata") or {}).get("annotations"), cfg)
        except ConfigurationError as e:
            logger.info(f"Rejected service {name}: {str(e)}")
            return jsonify(create_error_response(str(e), uid))

        logger.info(f"Validated annotations of service {name}")
        return jsonify(create_allowed_response(uid))

    except Exception as e:
        error_msg = f"Error processing validation request: {str(e)}"
        logger.error(error_msg, exc_info=True)
        return jsonify(create_error_response(error_msg, uid))

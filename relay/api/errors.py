"""JSON error handlers for the application."""
from flask import jsonify
from werkzeug.exceptions import HTTPException

from relay.core.crm import CrmAPIError, CrmAuthError, CrmTransportError
from relay.core.errors import RelayError
from relay.core.mailer import MailerError


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(RelayError)
    def relay_error(error):
        """Service errors carry their own status and body."""
        if error.status >= 500:
            app.logger.error(f"{type(error).__name__}: {error.detail}")
        else:
            app.logger.info(f"{type(error).__name__}: {error.detail}")
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(CrmAPIError)
    def crm_api_error(error):
        """Salesforce rejected the call; 401 stays 401, anything else is a bad gateway."""
        app.logger.warning(f"Salesforce API error: {error}")
        if error.status_code == 401:
            return jsonify({"error": "Salesforce session expired or invalid", "message": error.message}), 401
        return jsonify({"error": error.message, "errorCode": error.error_code}), 502

    @app.errorhandler(CrmAuthError)
    def crm_auth_error(error):
        app.logger.warning(f"Salesforce login failed: {error}")
        return jsonify({"error": "Salesforce authentication failed", "message": str(error)}), 401

    @app.errorhandler(CrmTransportError)
    def crm_transport_error(error):
        app.logger.error(f"Salesforce unreachable: {error}")
        return jsonify({"error": "Salesforce unreachable", "message": error.message}), 504

    @app.errorhandler(MailerError)
    def mailer_error(error):
        app.logger.error(f"Mail delivery failed: {error}")
        return jsonify({"error": "Mail delivery failed", "message": str(error)}), 502

    @app.errorhandler(400)
    def bad_request(error):
        """Handle 400 Bad Request errors."""
        return jsonify({"error": "Bad Request", "message": error.description}), 400

    @app.errorhandler(401)
    def unauthorized(error):
        """Handle 401 Unauthorized errors."""
        return jsonify({"error": "Unauthorized"}), 401

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 Not Found errors."""
        return jsonify({"error": "Not Found", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method Not Allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 Internal Server Error."""
        # Log the full error; never return it to the client
        app.logger.error(f"Internal error: {error}", exc_info=True)
        return jsonify({"error": "Internal Server Error", "message": "An unexpected error occurred"}), 500

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        # Pass through HTTP errors
        if isinstance(error, HTTPException):
            return error

        app.logger.error(f"Unhandled exception: {error}", exc_info=True)
        return jsonify({"error": "Internal Server Error", "message": "An unexpected error occurred"}), 500

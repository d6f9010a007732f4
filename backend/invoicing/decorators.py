# Overview: Request helpers and the error-to-status decorator shared by API routes.

from functools import wraps

from flask import current_app, jsonify, request

from .extensions import db
from .services.invoice_service import InvoiceError
from .services.sequence_service import SequenceError
from .services.stock_service import StockError
from .validation import ConflictError, NotFoundError, ValidationError


def current_actor(payload: dict | None = None) -> str | None:
    """
    Who is acting: X-Actor-Id header first, then the body's actor_id.

    Authentication is handled upstream; the value is recorded verbatim.
    """
    actor = request.headers.get("X-Actor-Id")
    if not actor and payload:
        actor = payload.get("actor_id")
    if actor is None or str(actor).strip() == "":
        return None
    return str(actor).strip()


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def handle_service_errors(action: str):
    """
    Translate service exceptions into JSON responses.

    NotFoundError -> 404, ConflictError -> 409, validation and business
    rule errors -> 400, anything else is logged and becomes a 500.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except NotFoundError as e:
                db.session.rollback()
                return jsonify({"error": str(e)}), 404
            except ConflictError as e:
                db.session.rollback()
                return jsonify({"error": str(e)}), 409
            except InvoiceError as e:
                db.session.rollback()
                return jsonify({"error": str(e), "details": e.details}), 400
            except (ValidationError, StockError) as e:
                db.session.rollback()
                return jsonify({"error": str(e)}), 400
            except SequenceError:
                db.session.rollback()
                current_app.logger.exception("Sequence failure while trying to %s", action)
                return jsonify({"error": "Could not allocate a document number"}), 500
            except Exception:
                db.session.rollback()
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500
        return decorated_function
    return decorator

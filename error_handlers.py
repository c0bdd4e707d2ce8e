from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from errors import AppError
from models import db

error_handlers_bp = Blueprint('error_handlers', __name__)


@error_handlers_bp.app_errorhandler(AppError)
def handle_app_error(error):
    """Render rule violations as ``{"error": ..., "details"?, "field"?}``."""
    current_app.logger.warning(f"{type(error).__name__}: {error.message}")
    return jsonify(error.to_dict()), error.status_code


@error_handlers_bp.app_errorhandler(SQLAlchemyError)
def handle_db_error(error):
    current_app.logger.error(f"Database Error: {error}")
    db.session.rollback()
    # Raw database errors stay in the log.
    return jsonify({'error': 'Internal server error'}), 500


@error_handlers_bp.app_errorhandler(404)
def handle_404(error):
    return jsonify({'error': 'Not found'}), 404


@error_handlers_bp.app_errorhandler(500)
def handle_500(error):
    """Handles unexpected server errors."""
    current_app.logger.error(f"Internal Server Error: {error}")
    return jsonify({'error': 'Internal server error'}), 500


@error_handlers_bp.app_errorhandler(HTTPException)
def handle_http_error(error):
    current_app.logger.warning(f"HTTP {error.code}: {error.description}")
    return jsonify({'error': error.description or error.name}), error.code

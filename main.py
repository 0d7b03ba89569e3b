"""
Mail Relay
==========
Language  : Python
Framework : Flask + Gunicorn

HTTP-to-SMTP relay behind a single /send-email endpoint.
  config.py      — environment configuration, read once
  normalizer.py  — JSON / multipart request -> SendRequest
  transport.py   — SMTP dispatcher (the only module that speaks SMTP)
  pipeline.py    — normalize -> dispatch -> result

Run locally:   python main.py
Production:    gunicorn --threads 8 "main:create_app()"
"""

import os
import logging

from dotenv import load_dotenv
from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

import pipeline
from config import RelayConfig
from normalizer import ATTACHMENT_FIELD, MultipartRequest, StructuredRequest
from transport import MailDispatcher

load_dotenv()

logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s [mail-relay] %(levelname)s %(message)s'
)
log = logging.getLogger(__name__)

bp = Blueprint('relay', __name__)


def _relay_config() -> RelayConfig:
    return current_app.config['RELAY']


def _dispatcher() -> MailDispatcher:
    return current_app.extensions['mail_dispatcher']


def _inbound_from_request():
    """Content kind comes from the Content-Type header: JSON, or else form data."""
    if 'application/json' in (request.content_type or ''):
        return StructuredRequest(body=request.get_json(silent=True))
    return MultipartRequest(
        form=request.form,
        files=tuple(request.files.getlist(ATTACHMENT_FIELD)),
    )


def _status_payload() -> dict:
    dispatcher = _dispatcher()
    return {
        "status": "ok",
        "service": "mail-relay",
        "message": "Mail relay is running",
        "transport": dispatcher.config.summary(),
        "smtp": dispatcher.health().as_dict(),
        "maxAttachmentBytes": _relay_config().max_attachment_bytes,
    }


@bp.before_app_request
def log_request():
    log.info(f"{request.method} {request.path} content-type={request.content_type or '-'}")


@bp.route('/', methods=['GET'])
def index():
    return jsonify(_status_payload())


@bp.route('/health', methods=['GET'])
def health():
    return jsonify(_status_payload())


@bp.route('/send-email', methods=['POST'])
def send_email():
    inbound = _inbound_from_request()
    result = pipeline.process(inbound, _dispatcher(), _relay_config().max_attachment_bytes)

    body = {
        "success": result.status == pipeline.SENT,
        "message": result.message,
    }
    if result.message_id:
        body["messageId"] = result.message_id
    if result.error_detail:
        body["error"] = result.error_detail
    return jsonify(body), result.http_status


@bp.app_errorhandler(RequestEntityTooLarge)
def request_too_large(e):
    log.warning(f"Request body rejected by size limit on {request.path}")
    return jsonify({"success": False, "message": "Request too large"}), 400


@bp.app_errorhandler(Exception)
def unhandled(e):
    if isinstance(e, HTTPException):
        return e
    log.exception(f"Unhandled error on {request.method} {request.path}")
    return jsonify({"success": False, "message": "Internal server error"}), 500


def create_app(config: RelayConfig | None = None, dispatcher: MailDispatcher | None = None) -> Flask:
    config = config or RelayConfig.from_env()
    dispatcher = dispatcher or MailDispatcher(config.smtp)

    app = Flask(__name__)
    app.config['RELAY'] = config
    # Non-file form fields (text/html bodies) may be as large as one attachment
    app.config['MAX_FORM_MEMORY_SIZE'] = config.max_attachment_bytes
    app.extensions['mail_dispatcher'] = dispatcher

    CORS(app, origins="*", allow_headers="*")
    app.register_blueprint(bp)

    smtp = config.smtp.summary()
    log.info(f"  Transport: SMTP {smtp['host']}:{smtp['port']} from={smtp['from']} auth={smtp['auth']}")
    if config.verify_on_startup:
        dispatcher.start_verify()
    return app


if __name__ == '__main__':
    config = RelayConfig.from_env()
    log.info(f"Mail Relay (Python) starting on :{config.http_port}")
    app = create_app(config)
    app.run(host='0.0.0.0', port=config.http_port, threaded=True)

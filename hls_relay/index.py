import logging
from urllib.parse import unquote

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .config import Settings
from .credentials import decode_credentials, encode_credentials
from .discovery import PlaywrightDiscoverer, discover_stream
from .dispatch import dispatch, playlist_response
from .errors import InputError, ProxyError
from .upstream import BodyMode, build_upstream_headers, fetch

logger = logging.getLogger(__name__)

STREAM_BASE = "/stream"

CORS_ALLOW_HEADERS = ["Origin", "X-Requested-With", "Content-Type", "Accept", "Range", "Cookie"]
CORS_METHODS = ["GET", "OPTIONS"]
CORS_EXPOSE_HEADERS = ["Content-Length", "Content-Range", "Accept-Ranges"]

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def _settings():
    return current_app.config["HLS_RELAY_SETTINGS"]


def _discoverer():
    return current_app.config["HLS_RELAY_DISCOVERER"]


def _proxy_base(path):
    return _settings().public_base_url + path


def _required_arg(name):
    value = request.args.get(name)
    if not value:
        raise InputError(f"Missing {name} query parameter")
    return value


def _target_url(name):
    target = _required_arg(name)
    # Decode if double-encoded
    if "://" not in target and "%3A%2F%2F" in target.upper():
        target = unquote(target)
    return target


def index():
    return "HLS proxy is running. Use /proxy?url=YOUR_URL or /stream?url=PLAYER_PAGE_URL"


def proxy():
    target = _target_url("url")
    return dispatch(target, _proxy_base(request.path), request.headers, _settings())


def extract():
    page_url = _target_url("url")
    found = discover_stream(_discoverer(), page_url, _settings().discovery_retry_backoff)
    return jsonify(
        streamUrl=found.stream_url,
        credentialBundle=encode_credentials(found.credentials),
        cookies=[{"name": name, "value": value} for name, value in found.credentials.cookies],
    )


def stream():
    settings = _settings()
    page_url = _target_url("url")
    found = discover_stream(_discoverer(), page_url, settings.discovery_retry_backoff)
    headers = build_upstream_headers(request.headers, settings, found.credentials)
    upstream = fetch(found.stream_url, headers, BodyMode.BUFFERED, settings)
    return playlist_response(upstream, _proxy_base(STREAM_BASE), settings, found.credentials)


def stream_segment():
    segment_url = _target_url("segmentUrl")
    credentials = decode_credentials(_required_arg("cookies"))
    return dispatch(
        segment_url, _proxy_base(STREAM_BASE), request.headers, _settings(), credentials
    )


def handle_proxy_error(exc):
    return jsonify(exc.to_dict()), exc.status


def handle_http_error(exc):
    # Routing redirects (trailing slash) are HTTPExceptions too.
    if exc.code is None or exc.code < 400:
        return exc
    return jsonify(error=exc.name, details=exc.description), exc.code


def handle_unexpected_error(exc):
    logger.exception("Unhandled error while serving %s", request.url)
    return jsonify(error="Proxy error", details=str(exc)), 500


def add_cors_headers(resp):
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Headers"] = ", ".join(CORS_ALLOW_HEADERS)
    resp.headers["Access-Control-Allow-Methods"] = ", ".join(CORS_METHODS)
    return resp


def create_app(settings=None, discoverer=None):
    settings = settings or Settings.from_env()
    app = Flask(__name__)
    app.config["HLS_RELAY_SETTINGS"] = settings
    app.config["HLS_RELAY_DISCOVERER"] = discoverer or PlaywrightDiscoverer(settings)

    # Registered before CORS() so it runs last and the header set is fixed.
    app.after_request(add_cors_headers)
    CORS(
        app,
        origins="*",
        allow_headers=CORS_ALLOW_HEADERS,
        methods=CORS_METHODS,
        expose_headers=CORS_EXPOSE_HEADERS,
    )

    app.add_url_rule("/", view_func=index)
    app.add_url_rule("/proxy", view_func=proxy)
    app.add_url_rule("/extract", view_func=extract)
    app.add_url_rule(STREAM_BASE, view_func=stream)
    app.add_url_rule(f"{STREAM_BASE}/segment", view_func=stream_segment)

    app.register_error_handler(ProxyError, handle_proxy_error)
    app.register_error_handler(HTTPException, handle_http_error)
    app.register_error_handler(Exception, handle_unexpected_error)
    return app


# WSGI entry point. Settings come from the environment at import, so an
# invalid HEADER_POLICY or PORT fails the import; build other apps with
# create_app(settings).
app = create_app()


def main():
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    server = create_app(settings)
    logger.info("HLS proxy listening on %s:%s (%s headers)", settings.host, settings.port, settings.header_policy)
    server.run(host=settings.host, port=settings.port, threaded=True)


if __name__ == "__main__":
    main()

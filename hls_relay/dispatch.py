import logging

from flask import Response

from .playlist import (
    PLAYLIST_MIMETYPE,
    StreamKind,
    classify,
    is_playlist_content_type,
    rewrite_playlist,
)
from .upstream import BodyMode, build_upstream_headers, fetch

logger = logging.getLogger(__name__)

SEGMENT_MIMETYPE = "video/MP2T"
DEFAULT_MIMETYPE = "application/octet-stream"

# Upstream headers copied onto streamed responses.
PASSTHROUGH_HEADERS = ("Content-Length", "Content-Range", "Accept-Ranges")


def playlist_response(upstream, proxy_base, settings, credentials=None):
    # Resolve against the final URL so redirects keep relative paths right.
    rewritten = rewrite_playlist(
        upstream.text,
        upstream.url,
        proxy_base,
        credentials=credentials,
        rewrite_tag_uris=settings.rewrite_tag_uris,
    )
    return Response(
        rewritten,
        mimetype=PLAYLIST_MIMETYPE,
        headers={"Cache-Control": "no-cache"},
    )


def stream_response(upstream, default_mimetype):
    resp = Response(
        upstream.iter_chunks(),
        status=upstream.status,
        content_type=upstream.content_type or default_mimetype,
        direct_passthrough=True,
    )
    # iter_content decodes gzip/deflate, so a compressed length no longer applies.
    encoded = upstream.headers.get("Content-Encoding", "identity").lower() != "identity"
    for name in PASSTHROUGH_HEADERS:
        if name == "Content-Length" and encoded:
            continue
        if upstream.headers.get(name):
            resp.headers[name] = upstream.headers[name]
    # Covers a client that goes away before the first chunk is pulled.
    resp.call_on_close(upstream.close)
    return resp


def dispatch(target_url, proxy_base, client_headers, settings, credentials=None):
    """Fetch ``target_url`` and build the client response.

    Playlists are buffered and rewritten so nested references come back
    to ``proxy_base``; everything else is piped through unbuffered.
    """
    kind = classify(target_url)
    headers = build_upstream_headers(client_headers, settings, credentials)
    logger.info("Dispatching %s as %s", target_url, kind.value)

    if kind is StreamKind.PLAYLIST:
        upstream = fetch(target_url, headers, BodyMode.BUFFERED, settings)
        return playlist_response(upstream, proxy_base, settings, credentials)

    upstream = fetch(target_url, headers, BodyMode.STREAMED, settings)
    if kind is StreamKind.OTHER and is_playlist_content_type(upstream.content_type):
        logger.info("%s is served as a playlist, rewriting it", target_url)
        upstream.read_text()
        return playlist_response(upstream, proxy_base, settings, credentials)

    default = SEGMENT_MIMETYPE if kind is StreamKind.SEGMENT else DEFAULT_MIMETYPE
    return stream_response(upstream, default)

"""HLS playlist classification and URL rewriting.

Everything here is pure: no network access, no logging side effects that
matter for the result. Rewriting is line-oriented, so a playlist must be
read completely before it is handed to :func:`rewrite_playlist`.
"""
import enum
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urljoin, urlsplit

from .credentials import CredentialBundle, encode_credentials

logger = logging.getLogger(__name__)

PLAYLIST_MIMETYPE = "application/vnd.apple.mpegurl"

_URI_ATTR = re.compile(r'URI="([^"]+)"')
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_LINE = re.compile(r"[^\n]*\n|[^\n]+\Z")


class StreamKind(enum.Enum):
    PLAYLIST = "playlist"
    SEGMENT = "segment"
    OTHER = "other"


def classify(url: str) -> StreamKind:
    path = urlsplit(url).path.lower()
    if path.endswith(".m3u8"):
        return StreamKind.PLAYLIST
    if path.endswith(".ts"):
        return StreamKind.SEGMENT
    return StreamKind.OTHER


def is_playlist_content_type(content_type: Optional[str]) -> bool:
    ct = (content_type or "").lower()
    return "mpegurl" in ct or "m3u8" in ct


@dataclass(frozen=True)
class RewriteContext:
    origin_url: str
    proxy_base: str
    credentials: Optional[CredentialBundle] = None

    def resolve(self, reference: str) -> Optional[str]:
        """Absolute URL for ``reference``, or None when it is not a usable URL."""
        if not reference or _CONTROL_CHARS.search(reference):
            return None
        try:
            absolute = urljoin(self.origin_url, reference)
            parts = urlsplit(absolute)
        except ValueError:
            return None
        if parts.scheme not in ("http", "https") or not parts.netloc:
            return None
        return absolute

    def proxy_url(self, absolute: str) -> str:
        encoded = quote(absolute, safe="")
        if self.credentials is None:
            return f"{self.proxy_base}?url={encoded}"
        token = quote(encode_credentials(self.credentials), safe="")
        return f"{self.proxy_base}/segment?segmentUrl={encoded}&cookies={token}"

    def rewrite_reference(self, reference: str) -> Optional[str]:
        absolute = self.resolve(reference)
        if absolute is None:
            return None
        return self.proxy_url(absolute)


def _split_terminator(line):
    body = line.rstrip("\r\n")
    return body, line[len(body):]


def _rewrite_tag(line, context):
    def repl(match):
        rewritten = context.rewrite_reference(match.group(1))
        if rewritten is None:
            return match.group(0)
        return f'URI="{rewritten}"'

    return _URI_ATTR.sub(repl, line)


def rewrite_playlist(
    text: str,
    origin_url: str,
    proxy_base: str,
    credentials: Optional[CredentialBundle] = None,
    rewrite_tag_uris: bool = False,
) -> str:
    """Route every media reference in ``text`` back through ``proxy_base``.

    Blank lines and ``#`` lines (tags included) are copied unchanged
    unless ``rewrite_tag_uris`` is set, in which case only their
    ``URI="..."`` attributes are replaced. A URI line that cannot be
    resolved is copied unchanged as well.
    """
    context = RewriteContext(origin_url, proxy_base, credentials)
    out = []
    for match in _LINE.finditer(text):
        line = match.group(0)
        body, terminator = _split_terminator(line)
        stripped = body.strip(" \t")

        if not stripped:
            out.append(line)
            continue

        if stripped.startswith("#"):
            if rewrite_tag_uris and 'URI="' in body:
                out.append(_rewrite_tag(body, context) + terminator)
            else:
                out.append(line)
            continue

        rewritten = context.rewrite_reference(stripped)
        if rewritten is None:
            logger.debug("Leaving unresolvable playlist line as is: %r", stripped)
            out.append(line)
            continue
        out.append(rewritten + terminator)

    return "".join(out)

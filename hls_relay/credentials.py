"""Cookie/header bundle that travels inside proxied URLs.

The bundle is the only session state the proxy keeps, and it never lives
on the server: it is serialized into the ``cookies`` query parameter of
every rewritten reference and decoded again on the next request.
"""
import base64
import binascii
import json
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import CredentialError


@dataclass(frozen=True)
class CredentialBundle:
    cookies: Tuple[Tuple[str, str], ...] = ()
    user_agent: Optional[str] = None
    referer: Optional[str] = None

    def cookie_header(self) -> Optional[str]:
        if not self.cookies:
            return None
        return "; ".join(f"{name}={value}" for name, value in self.cookies)

    @classmethod
    def from_cookie_header(cls, header, user_agent=None, referer=None):
        pairs = []
        for part in (header or "").split(";"):
            part = part.strip()
            if not part:
                continue
            name, _, value = part.partition("=")
            pairs.append((name.strip(), value.strip()))
        return cls(tuple(pairs), user_agent, referer)

    @classmethod
    def from_browser_cookies(cls, cookies, user_agent=None, referer=None):
        """Build a bundle from Playwright cookie dicts, keeping their order."""
        pairs = tuple((c["name"], c["value"]) for c in cookies)
        return cls(pairs, user_agent, referer)


def encode_credentials(bundle: CredentialBundle) -> str:
    payload = {"c": [list(pair) for pair in bundle.cookies]}
    if bundle.user_agent is not None:
        payload["ua"] = bundle.user_agent
    if bundle.referer is not None:
        payload["ref"] = bundle.referer
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_credentials(token: str) -> CredentialBundle:
    if not token:
        raise CredentialError(details="empty credential token")
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeError, binascii.Error, ValueError) as exc:
        raise CredentialError(details=f"cannot decode credential token: {exc}") from exc

    if not isinstance(payload, dict) or not isinstance(payload.get("c"), list):
        raise CredentialError(details="credential token has the wrong shape")

    pairs = []
    for pair in payload["c"]:
        if (
            not isinstance(pair, list)
            or len(pair) != 2
            or not all(isinstance(item, str) for item in pair)
        ):
            raise CredentialError(details="cookie entries must be [name, value] strings")
        pairs.append((pair[0], pair[1]))

    user_agent = payload.get("ua")
    referer = payload.get("ref")
    for field in (user_agent, referer):
        if field is not None and not isinstance(field, str):
            raise CredentialError(details="user agent and referer must be strings")
    return CredentialBundle(tuple(pairs), user_agent, referer)

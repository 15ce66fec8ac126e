class ProxyError(Exception):
    """Base error carrying the HTTP status and JSON body shown to clients."""

    status = 500
    message = "Proxy error"

    def __init__(self, message=None, details=None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details

    def to_dict(self):
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InputError(ProxyError):
    status = 400
    message = "Bad request"


class CredentialError(InputError):
    message = "Malformed cookies parameter"


class UpstreamError(ProxyError):
    status = 500
    message = "Proxy error"

    def __init__(self, details=None, upstream_status=None):
        super().__init__(details=details)
        self.upstream_status = upstream_status


class DiscoveryNotFound(ProxyError):
    status = 404
    message = "No .m3u8 URL found on page"


class DiscoveryError(ProxyError):
    status = 500
    message = "Discovery error"

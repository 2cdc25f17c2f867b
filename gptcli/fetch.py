"""HTTP GET for the curl command: status line, blank line, raw body."""

import http.client
import urllib.error
import urllib.parse
import urllib.request

from .errors import CommandFailedError

DEFAULT_TIMEOUT = 30

HEADERS = {
    "User-Agent": "gpt-cli",
    "Accept": "*/*",
}


def _charset(content_type: str | None) -> str | None:
    for param in (content_type or "").split(";")[1:]:
        name, _, value = param.partition("=")
        if name.strip().lower() == "charset" and value.strip():
            return value.strip().strip("\"'")
    return None


def _decode_response(data: bytes, content_type: str | None) -> str:
    """Decode with the declared charset, then UTF-8; latin-1 never fails."""
    candidates = [_charset(content_type), "utf-8"]
    for encoding in filter(None, candidates):
        try:
            return data.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            pass
    return data.decode("latin-1")


def http_get(url: str, timeout: int = DEFAULT_TIMEOUT) -> str:
    """GET ``url`` and return ``"<status> <reason>\\n\\n<body>"``.

    Non-2xx responses are returned like any other; only connection and
    body-read failures raise CommandFailedError.
    """
    try:
        req = urllib.request.Request(url, headers=HEADERS)
        resp = urllib.request.urlopen(req, timeout=timeout)
    except urllib.error.HTTPError as e:
        # HTTPError doubles as the response for 4xx/5xx replies
        resp = e
    except (urllib.error.URLError, http.client.HTTPException, ValueError, OSError) as e:
        reason = getattr(e, "reason", e)
        host = urllib.parse.urlparse(url).hostname or url
        raise CommandFailedError(
            f"could not connect to {host}: {reason}",
            hint="Check the URL. Does this seem like a transient error? Maybe retry it?",
        ) from e

    try:
        status = f"{resp.status} {resp.reason}"
        try:
            data = resp.read()
        except (TimeoutError, OSError, http.client.HTTPException) as e:
            raise CommandFailedError(
                f"failed to read response body: {e}",
                hint="Does this seem like a transient error? Maybe retry it?",
            ) from e
        body = _decode_response(data, resp.headers.get("Content-Type"))
    finally:
        resp.close()

    return f"{status}\n\n{body}"

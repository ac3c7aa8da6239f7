"""HTTP fetching with SSRF protection.

Security requirements:
- SSRF guard: ipaddress module blocks private/loopback/link-local ranges before
  any connection is established, and again on every redirect hop.
- Allowed URL schemes: https:// and http:// only.
- Max response body: ``fetch.max_bytes`` (5 MB default).
- Timeout: ``fetch.timeout`` seconds (connect + read); HEAD uses ``fetch.head_timeout``.
- Max redirects: ``fetch.max_redirects``.
"""

from __future__ import annotations

import ipaddress
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime
from email.message import Message
from http.client import HTTPResponse

from kbindex import timestamps
from kbindex.config import FetchCfg
from kbindex.errors import FetchError, SsrfError
from kbindex.ingest.content_store import ContentStore
from kbindex.logging import get_logger

_ALLOWED_SCHEMES = {"https", "http"}
_PAGE_CONTENT_TYPES = {"text/html", "application/xhtml+xml", "text/plain"}


@dataclass
class HttpResponse:
    url: str
    status: int
    body: bytes
    content_type: str
    headers: Message = field(repr=False, default_factory=Message)

    def text(self) -> str:
        charset = self.headers.get_content_charset() or "utf-8"
        try:
            return self.body.decode(charset, errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")


@dataclass
class FetchedContent:
    url: str
    body: str
    content_type: str = "text/html"
    internal: bool = False  # served by the content store, not the network


class Fetcher:
    """Retrieve raw markup for a source URL.

    Internal pages come from the injected ``ContentStore`` when one is
    configured; everything else goes over HTTP(S).
    """

    def __init__(
        self,
        config: FetchCfg | None = None,
        content_store: ContentStore | None = None,
        logger=None,
    ) -> None:
        self._config = config or FetchCfg()
        self._store = content_store
        self._log = logger or get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch(self, url: str) -> FetchedContent:
        """Return the raw markup (or plain text) of *url*.

        Raises:
            FetchError: Non-2xx status, timeout, empty body, unsupported content type.
            SsrfError: The host resolves to a blocked address.
        """
        if self._store is not None:
            page = self._store.get_page_by_url(url)
            if page is not None:
                return FetchedContent(url=url, body=page.to_html(), internal=True)

        response = self.request(url)
        if response.content_type not in _PAGE_CONTENT_TYPES:
            raise FetchError(
                f"Unsupported Content-Type '{response.content_type}' for URL '{url}'. "
                f"Accepted: {', '.join(sorted(_PAGE_CONTENT_TYPES))}",
                url=url,
                status=response.status,
            )
        return FetchedContent(url=url, body=response.text(), content_type=response.content_type)

    def request(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        data: bytes | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        """Perform one guarded HTTP request and return the full response.

        Raises:
            FetchError: On any transport failure, non-2xx status, oversized or
                empty body.
        """
        self._validate_scheme(url)
        self._check_ssrf(url)

        all_headers = {"User-Agent": self._config.user_agent}
        all_headers.update(headers or {})
        req = urllib.request.Request(url, data=data, headers=all_headers, method=method)
        opener = urllib.request.build_opener(
            _LimitedRedirectHandler(self._config.max_redirects, self._redirect_guard)
        )
        wait = timeout if timeout is not None else self._config.timeout

        try:
            response: HTTPResponse = opener.open(req, timeout=wait)
        except urllib.error.HTTPError as exc:
            self._log.warning("fetch_failed", url=url, status=exc.code)
            raise FetchError(
                f"Failed to fetch content. Status code: {exc.code}", url=url, status=exc.code
            ) from exc
        except urllib.error.URLError as exc:
            self._log.warning("fetch_failed", url=url, error=str(exc.reason))
            raise FetchError(f"Failed to fetch URL '{url}': {exc.reason}", url=url) from exc
        except (TimeoutError, socket.timeout) as exc:
            self._log.warning("fetch_timeout", url=url, timeout=wait)
            raise FetchError(f"Timed out after {wait}s fetching '{url}'", url=url) from exc
        except OSError as exc:
            raise FetchError(f"Failed to fetch URL '{url}': {exc}", url=url) from exc

        with response:
            status = response.status
            if not 200 <= status < 300:
                raise FetchError(
                    f"Failed to fetch content. Status code: {status}", url=url, status=status
                )
            raw_ct = response.headers.get("Content-Type", "text/html")
            content_type = raw_ct.split(";")[0].strip().lower()
            if method == "HEAD":
                body = b""
            else:
                try:
                    body = response.read(self._config.max_bytes + 1)
                except (TimeoutError, OSError) as exc:
                    raise FetchError(f"Failed reading body of '{url}': {exc}", url=url) from exc
                if len(body) > self._config.max_bytes:
                    raise FetchError(
                        f"Response body exceeds {self._config.max_bytes // (1024 * 1024)} MB "
                        f"limit for URL '{url}'.",
                        url=url,
                        status=status,
                    )
                if not body.strip():
                    raise FetchError(f"Empty response body from '{url}'", url=url, status=status)
            return HttpResponse(
                url=response.geturl(),
                status=status,
                body=body,
                content_type=content_type,
                headers=response.headers,
            )

    def last_modified(self, url: str) -> datetime | None:
        """``Last-Modified`` of *url* via a HEAD request, or None if unavailable.

        Never raises: any failure means "cannot determine".
        """
        try:
            response = self.request(url, method="HEAD", timeout=self._config.head_timeout)
        except FetchError as exc:
            self._log.debug("last_modified_unavailable", url=url, error=str(exc))
            return None
        except ValueError as exc:
            self._log.debug("last_modified_unavailable", url=url, error=str(exc))
            return None
        return timestamps.parse(response.headers.get("Last-Modified"))

    def exists(self, url: str) -> bool:
        """True if a HEAD request for *url* succeeds. Never raises."""
        try:
            self.request(url, method="HEAD", timeout=self._config.head_timeout)
        except (FetchError, ValueError) as exc:
            self._log.debug("head_failed", url=url, error=str(exc))
            return False
        return True

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_scheme(url: str) -> None:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in _ALLOWED_SCHEMES:
            raise FetchError(
                f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed.",
                url=url,
            )

    def _check_ssrf(self, url: str) -> None:
        """Resolve the hostname and block private/reserved IP ranges.

        Raises SsrfError if any resolved address is private, loopback,
        link-local, or otherwise reserved.
        """
        parsed = urllib.parse.urlparse(url)
        hostname = parsed.hostname
        if not hostname:
            raise FetchError(f"URL has no hostname: {url}", url=url)
        if self._config.allow_private_hosts:
            return

        try:
            addrinfos = socket.getaddrinfo(hostname, None)
        except socket.gaierror as exc:
            raise FetchError(f"DNS resolution failed for '{hostname}': {exc}", url=url) from exc

        for addrinfo in addrinfos:
            addr_str = addrinfo[4][0]
            try:
                ip = ipaddress.ip_address(addr_str)
            except ValueError:
                continue
            if (
                ip.is_private
                or ip.is_loopback
                or ip.is_link_local
                or ip.is_reserved
                or ip.is_multicast
                or ip.is_unspecified
            ):
                raise SsrfError(
                    f"URL resolves to private address ({ip}). "
                    "Access to internal network addresses is not allowed.",
                    url=url,
                )

    def _redirect_guard(self, url: str) -> None:
        self._validate_scheme(url)
        self._check_ssrf(url)


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Raise an error after more than *max_redirects* redirects; guard every hop."""

    def __init__(self, max_redirects: int, guard) -> None:
        self._max_redirects = max_redirects
        self._guard = guard
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise FetchError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'.",
                url=req.full_url,
            )
        self._guard(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)

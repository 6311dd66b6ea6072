from __future__ import annotations

import ipaddress
import re
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional
from urllib.parse import urlsplit as _urlsplit

import dns.resolver
import requests
import urllib3
from bs4 import BeautifulSoup
from curl_cffi import requests as curl_requests

from .base import BaseStage
from .config import DEFAULT_MAX_BODY_BYTES
from .limiter import StageLimiter
from .models import ProbeResult, ResolveResult, Stage, TextResult

_DOTTED_QUAD_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")
_WHITESPACE_RE = re.compile(r"\s+")
_STRIPPED_TAGS = ["script", "style", "noscript"]
_CHUNK_BYTES = 16 * 1024


@dataclass(frozen=True)
class HttpResponse:
    final_url: str
    status_code: int
    text: str


class HttpFetcher:
    """Issues one GET with a bounded timeout, redirect limit and body size.

    Uses requests by default. With an ``impersonate`` profile (e.g.
    "chrome120") it goes through curl_cffi instead, so hosts that refuse
    non-browser TLS fingerprints still answer.

    Responses are always streamed. ``get(url, read_body=False)`` returns as
    soon as the final status is known and never downloads the body;
    otherwise at most ``max_body_bytes`` are read. With requests the
    timeout applies to each socket read, so the body loop also checks a
    deadline for the whole request. libcurl's timeout already covers it.
    """

    def __init__(
        self,
        timeout_secs: float,
        max_redirects: int,
        user_agent: str,
        impersonate: Optional[str] = None,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    ) -> None:
        self._timeout = timeout_secs
        self._max_redirects = max_redirects
        self._headers = {"User-Agent": user_agent}
        self._impersonate = impersonate
        self._max_body_bytes = max_body_bytes

    def get(self, url: str, read_body: bool = True) -> HttpResponse:
        if self._impersonate:
            return self._get_impersonated(url, read_body)
        deadline = time.monotonic() + self._timeout
        # sessions are not shared between threads
        with requests.Session() as session:
            session.max_redirects = self._max_redirects
            resp = session.get(
                url,
                headers=self._headers,
                timeout=self._timeout,
                allow_redirects=True,
                stream=True,
            )
            try:
                text = _decode(self._read_body(resp, deadline), resp.encoding) if read_body else ""
                if time.monotonic() > deadline:
                    raise requests.Timeout(f"{url} took longer than {self._timeout}s")
                return HttpResponse(final_url=str(resp.url), status_code=int(resp.status_code), text=text)
            finally:
                resp.close()

    def _read_body(self, resp: requests.Response, deadline: float) -> bytes:
        body = bytearray()
        while len(body) < self._max_body_bytes:
            try:
                chunk = resp.raw.read1(_CHUNK_BYTES, decode_content=True)
            except urllib3.exceptions.ReadTimeoutError as exc:
                raise requests.ReadTimeout(exc) from exc
            except urllib3.exceptions.ProtocolError as exc:
                raise requests.exceptions.ChunkedEncodingError(exc) from exc
            if time.monotonic() > deadline:
                raise requests.Timeout(f"Body of {resp.url} not received within {self._timeout}s")
            if not chunk:
                break
            body.extend(chunk)
        return bytes(body[: self._max_body_bytes])

    def _get_impersonated(self, url: str, read_body: bool) -> HttpResponse:
        session = curl_requests.Session()
        try:
            resp = session.request(
                method="GET",
                url=url,
                headers=self._headers,
                timeout=self._timeout,
                allow_redirects=True,
                max_redirects=self._max_redirects,
                impersonate=self._impersonate,
                stream=True,
            )
            try:
                text = ""
                if read_body:
                    text = _decode(_take(resp.iter_content(), self._max_body_bytes), resp.encoding)
                return HttpResponse(final_url=str(resp.url), status_code=int(resp.status_code), text=text)
            finally:
                resp.close()
        finally:
            session.close()


def _take(chunks: Iterable[bytes], limit: int) -> bytes:
    body = bytearray()
    for chunk in chunks:
        body.extend(chunk)
        if len(body) >= limit:
            break
    return bytes(body[:limit])


def _decode(body: bytes, encoding: Optional[str]) -> str:
    try:
        return body.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        # unknown charset label in Content-Type
        return body.decode("utf-8", errors="replace")


class DnsResolveStage(BaseStage):
    """IPv4 lookup against exactly one configured nameserver, no retry."""

    stage = Stage.DNS

    def __init__(
        self,
        limiter: StageLimiter,
        nameserver: str,
        port: int = 53,
        timeout_secs: float = 5.0,
    ) -> None:
        super().__init__(limiter)
        self._timeout = timeout_secs
        self._resolver = dns.resolver.Resolver(configure=False)
        # port first: nameservers pick it up when assigned
        self._resolver.port = port
        self._resolver.nameservers = [nameserver]
        self._resolver.timeout = timeout_secs
        self._resolver.lifetime = timeout_secs

    def execute(self, domain: str) -> ResolveResult:
        answer = self._resolver.resolve(domain, "A", lifetime=self._timeout, search=False)
        ips = tuple(rr.address for rr in answer)
        if not ips:
            return self.failed("NoAddress")
        return ResolveResult(has_dns=True, dns_ips=ips)

    def failed(self, error_type: str) -> ResolveResult:
        return ResolveResult.failed(error_type)


class HttpProbeStage(BaseStage):
    """Finds the first candidate homepage URL that answers with 2xx/3xx."""

    stage = Stage.HTTP

    def __init__(self, limiter: StageLimiter, fetcher: HttpFetcher) -> None:
        super().__init__(limiter)
        self._fetcher = fetcher

    def execute(self, domain: str) -> ProbeResult:
        last_error = None
        for url in candidate_urls(domain):
            try:
                resp = self._fetcher.get(url, read_body=False)
            except Exception as exc:  # noqa: BLE001
                last_error = type(exc).__name__
                continue
            if not is_success_status(resp.status_code):
                last_error = f"HTTP_{resp.status_code}"
                continue
            # a site that lands on a bare IP is not identifiable, stop here
            if is_ip_host(resp.final_url):
                return self.failed("BareIpHost")
            return ProbeResult(
                http_ok=True,
                final_url=resp.final_url,
                status_code=resp.status_code,
                used_https=_urlsplit(resp.final_url).scheme == "https",
            )
        return self.failed(last_error or "NoCandidate")

    def failed(self, error_type: str) -> ProbeResult:
        return ProbeResult.failed(error_type)


class TextExtractStage(BaseStage):
    stage = Stage.TEXT

    def __init__(
        self,
        limiter: StageLimiter,
        fetcher: HttpFetcher,
        min_chars: int = 200,
        max_chars: int = 10000,
    ) -> None:
        super().__init__(limiter)
        self._fetcher = fetcher
        self._min_chars = min_chars
        self._max_chars = max_chars

    def execute(self, url: str) -> TextResult:
        resp = self._fetcher.get(url)
        if not is_success_status(resp.status_code):
            return self.failed(f"HTTP_{resp.status_code}")
        text = extract_visible_text(resp.text)
        if text is None:
            return self.failed("NoBody")
        if len(text) < self._min_chars:
            return self.failed("TextTooShort")
        return TextResult(text_ok=True, homepage_text=text[: self._max_chars])

    def failed(self, error_type: str) -> TextResult:
        return TextResult.failed(error_type)


def candidate_urls(domain: str) -> List[str]:
    return [
        f"https://{domain}/",
        f"https://www.{domain}/",
        f"http://{domain}/",
        f"http://www.{domain}/",
    ]


def is_success_status(status_code: Optional[int]) -> bool:
    return status_code is not None and 200 <= int(status_code) < 400


def is_ip_host(url: str) -> bool:
    """True when the URL's host is a literal IPv4 or IPv6 address."""
    try:
        host = _urlsplit(url).hostname
    except ValueError:
        return False
    if not host:
        return False
    if _DOTTED_QUAD_RE.match(host):
        return True
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def extract_visible_text(html: str) -> Optional[str]:
    """Body text without script/style/noscript, whitespace collapsed.

    Returns None when the document has no body.
    """
    soup = BeautifulSoup(html, "lxml")
    body = soup.body
    if body is None:
        return None
    for tag in body.find_all(_STRIPPED_TAGS):
        tag.decompose()
    return _WHITESPACE_RE.sub(" ", body.get_text(separator=" ")).strip()

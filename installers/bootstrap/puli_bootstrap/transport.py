"""Proxy- and gzip-aware HTTP(S) fetch with explicit trust anchors."""

from __future__ import annotations

import base64
import gzip
import http.client
import urllib.request
from dataclasses import dataclass
from typing import Callable
from urllib.parse import unquote, urlsplit

from puli_core.config import USER_AGENT, InstallerEnvironment
from puli_core.logging_setup import get_logger

from .errors import ConfigError, TransportError, capture_errors
from .truststore import TrustConfig, resolve_trust

try:
    import ssl
except ImportError:  # pragma: no cover - interpreter built without OpenSSL
    ssl = None

try:
    import zlib
except ImportError:  # pragma: no cover - interpreter built without zlib
    zlib = None


logger = get_logger("transport")

TrustResolver = Callable[[], TrustConfig]

_DEFAULT_PORTS = {"http": 80, "https": 443}
_TRANSPORT_SCHEMES = {"http": "tcp", "https": "ssl"}


def _fulluri_enabled(value: str | None) -> bool:
    if value is None or value == "":
        return True
    if value.strip().lower() in ("false", "0", "no", "off"):
        return False
    return True


@dataclass(frozen=True)
class ProxySettings:
    transport: str
    host: str
    port: int
    username: str | None = None
    password: str | None = None
    http_fulluri: bool = True
    https_fulluri: bool = True

    @classmethod
    def from_env(cls, env: InstallerEnvironment) -> "ProxySettings | None":
        if not env.http_proxy:
            return None

        raw = env.http_proxy if "://" in env.http_proxy else f"http://{env.http_proxy}"
        parts = urlsplit(raw)
        scheme = parts.scheme.lower()
        if scheme not in _TRANSPORT_SCHEMES or not parts.hostname:
            raise ConfigError(f"The proxy URL ({env.http_proxy}) is not a valid http(s) proxy.")

        transport = _TRANSPORT_SCHEMES[scheme]
        if transport == "ssl" and ssl is None:
            raise ConfigError("You must enable the ssl module to use a proxy over https")

        try:
            port = parts.port or _DEFAULT_PORTS[scheme]
        except ValueError as exc:
            raise ConfigError(f"The proxy URL ({env.http_proxy}) has an invalid port.") from exc

        return cls(
            transport=transport,
            host=parts.hostname,
            port=port,
            username=unquote(parts.username) if parts.username is not None else None,
            password=unquote(parts.password) if parts.password is not None else None,
            http_fulluri=_fulluri_enabled(env.http_proxy_request_fulluri),
            https_fulluri=_fulluri_enabled(env.https_proxy_request_fulluri),
        )

    @property
    def endpoint(self) -> str:
        return f"{self.transport}://{self.host}:{self.port}"

    @property
    def hostport(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def proxy_type(self) -> str:
        return "https" if self.transport == "ssl" else "http"

    def authorization_header(self) -> str | None:
        if self.username is None:
            return None
        auth = self.username
        if self.password is not None:
            auth += ":" + self.password
        return "Basic " + base64.b64encode(auth.encode("utf-8")).decode("ascii")

    def request_fulluri(self, target_scheme: str) -> bool:
        if target_scheme == "https":
            return self.https_fulluri
        return self.http_fulluri


class ProxyProcessor(urllib.request.BaseHandler):
    """Routes every request, redirects included, through the configured proxy."""

    handler_order = 100

    def __init__(self, settings: ProxySettings) -> None:
        self.settings = settings

    def http_request(self, req: urllib.request.Request) -> urllib.request.Request:
        target_scheme = req.type
        origin_host = req.host
        origin_selector = req.selector
        full_url = req.full_url

        if target_scheme == "https":
            # urllib opens CONNECT tunnels over plain TCP only.
            if self.settings.transport == "ssl":
                raise ConfigError(
                    f"Cannot tunnel {full_url} through the TLS proxy {self.settings.endpoint}; "
                    "use an http:// proxy URL for HTTPS downloads."
                )
            req.set_proxy(self.settings.hostport, "https")
        else:
            req.set_proxy(self.settings.hostport, self.settings.proxy_type)

        if self.settings.request_fulluri(target_scheme):
            req.selector = full_url
        else:
            req.selector = origin_selector
            req.add_unredirected_header("Host", origin_host)

        auth = self.settings.authorization_header()
        if auth is not None:
            req.add_unredirected_header("Proxy-Authorization", auth)
        return req

    https_request = http_request


if ssl is not None:

    class TrustedHTTPSHandler(urllib.request.HTTPSHandler):
        """HTTPS handler whose SSL context comes from the installer's trust configuration.

        The context is requested per connection, so trust is only resolved once
        an HTTPS request (a redirect included) is actually made.
        """

        def __init__(self, context_factory: Callable[[], "ssl.SSLContext"]) -> None:
            super().__init__()
            self.context_factory = context_factory

        def https_open(self, req: urllib.request.Request):
            return self.do_open(http.client.HTTPSConnection, req, context=self.context_factory())


class SecureTransport:
    """Single-shot HTTP(S) fetches for the installer.

    The trust configuration is resolved lazily on the first HTTPS request and
    reused for the lifetime of the transport.
    """

    def __init__(
        self,
        trust_resolver: TrustResolver | None = None,
        env: InstallerEnvironment | None = None,
        timeout_s: float = 60.0,
    ) -> None:
        self.env = env or InstallerEnvironment.from_environ()
        self._trust_resolver = trust_resolver or (lambda: resolve_trust(env=self.env))
        self._trust: TrustConfig | None = None
        self._context: "ssl.SSLContext | None" = None
        self.timeout_s = timeout_s
        self.proxy = ProxySettings.from_env(self.env)

    @property
    def trust(self) -> TrustConfig:
        if self._trust is None:
            self._trust = self._trust_resolver()
        return self._trust

    def _ssl_context(self) -> "ssl.SSLContext":
        if ssl is None:
            raise ConfigError("The ssl module is missing, which means that secure HTTPS transfers are impossible.")
        if self._context is None:
            trust = self.trust
            try:
                self._context = trust.create_ssl_context()
            except OSError as exc:
                raise ConfigError(f"The CA source ({trust.ca_path}) could not be loaded: {exc}") from exc
        return self._context

    def _build_opener(self) -> urllib.request.OpenerDirector:
        # An explicit empty ProxyHandler keeps urllib from reading proxies itself.
        handlers: list[urllib.request.BaseHandler] = [urllib.request.ProxyHandler({})]
        if ssl is not None:
            handlers.append(TrustedHTTPSHandler(self._ssl_context))
        if self.proxy is not None:
            handlers.append(ProxyProcessor(self.proxy))
        return urllib.request.build_opener(*handlers)

    def request_headers(self) -> dict[str, str]:
        headers = {"Connection": "close"}
        if zlib is not None:
            headers["Accept-Encoding"] = "gzip"
        headers["User-Agent"] = USER_AGENT
        return headers

    def fetch(self, url: str) -> bytes:
        if urlsplit(url).scheme.lower() == "https" and ssl is None:
            raise ConfigError("The ssl module is missing, which means that secure HTTPS transfers are impossible.")
        opener = self._build_opener()
        request = urllib.request.Request(url, headers=self.request_headers())

        body = b""
        encoding = ""
        with capture_errors(OSError, http.client.HTTPException) as captured:
            with opener.open(request, timeout=self.timeout_s) as response:
                encoding = (response.headers.get("Content-Encoding") or "").strip().lower()
                body = response.read()

        if captured.failed:
            logger.warning("download of %s failed: %s", url, "; ".join(captured.messages))
            raise TransportError(f"Download failed: {url}", captured.messages)
        if captured.messages:
            logger.debug("warnings while downloading %s: %s", url, "; ".join(captured.messages))

        if encoding == "gzip":
            body = self._decode_gzip(url, body)

        return body

    @staticmethod
    def _decode_gzip(url: str, body: bytes) -> bytes:
        if zlib is None:
            raise TransportError(f"Cannot decode gzip response from {url}", ["zlib is not available"])
        with capture_errors(OSError, EOFError, zlib.error) as captured:
            return gzip.decompress(body)
        raise TransportError("Failed to decode zlib stream", captured.messages)

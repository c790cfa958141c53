"""Protocol logging for provider traffic.

Every HTTP exchange with the identity provider (discovery, code exchange,
refresh) is captured and written to the ``authsession.protocol`` logger,
with sensitive values redacted unless TRACE is explicitly enabled.

Log levels:
- ERROR: Only log failed exchanges
- INFO: One line per exchange (method, URL, status, duration)
- DEBUG: Add request/response headers and redirects
- TRACE: Add request/response bodies (requires explicit enable)
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

import httpx

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger("authsession.protocol")


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR
    INFO = logging.INFO
    DEBUG = logging.DEBUG
    TRACE = TRACE


_FORM_FIELDS = (
    "client_secret",
    "code",
    "code_verifier",
    "access_token",
    "refresh_token",
    "id_token",
    "id_token_hint",
)

SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    *[(re.compile(rf"(?<![\w])({name}=)[^&\s]+", re.IGNORECASE), r"\1[REDACTED]") for name in _FORM_FIELDS],
    *[
        (re.compile(rf'"({name})"\s*:\s*"[^"]+"', re.IGNORECASE), r'"\1": "[REDACTED]"')
        for name in (*_FORM_FIELDS, "password")
    ],
    (re.compile(r"(Authorization:\s*(?:Bearer|Basic)\s+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^((?:Bearer|Basic)\s+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"((?:Set-)?Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
]


_COOKIE_HEADERS = frozenset({"cookie", "set-cookie"})


def redact_sensitive(text: str) -> str:
    """Redact tokens, codes, secrets and cookies from text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with sensitive values replaced by ``[REDACTED]``.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


@dataclass
class HTTPExchange:
    """A single HTTP request/response exchange with the provider."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str]
    request_body: str | None = None
    response_status: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    redirects: list[dict[str, Any]] = field(default_factory=list)

    def _clean(self, value: str | None, include_sensitive: bool) -> str | None:
        if value is None or include_sensitive:
            return value
        return redact_sensitive(value)

    def _clean_headers(self, headers: dict[str, str], include_sensitive: bool) -> dict[str, str]:
        cleaned = {}
        for name, value in headers.items():
            if not include_sensitive and name.lower() in _COOKIE_HEADERS:
                cleaned[name] = "[REDACTED]"
            else:
                cleaned[name] = self._clean(value, include_sensitive) or ""
        return cleaned

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to a dictionary, redacting sensitive data by default."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "url": self._clean(self.url, include_sensitive),
            "request_headers": self._clean_headers(self.request_headers, include_sensitive),
            "request_body": self._clean(self.request_body, include_sensitive),
            "response_status": self.response_status,
            "response_headers": self._clean_headers(self.response_headers, include_sensitive),
            "response_body": self._clean(self.response_body, include_sensitive),
            "duration_ms": self.duration_ms,
            "error": self.error,
            "redirects": [
                {"url": self._clean(r["url"], include_sensitive), "status": r.get("status")}
                for r in self.redirects
            ],
        }

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the exchange for the protocol logger.

        Args:
            level: Effective level; lower levels include more detail.
            include_sensitive: Whether raw sensitive values may be written.

        Returns:
            Multi-line log text.
        """
        data = self.to_dict(include_sensitive)
        lines = [f"HTTP {self.method} {data['url']} -> {self.response_status or 'ERROR'}"]
        if self.duration_ms is not None:
            lines.append(f"  Duration: {self.duration_ms:.1f}ms")
        if self.error:
            lines.append(f"  Error: {self.error}")

        if level <= LogLevel.DEBUG:
            lines.append("  Request Headers:")
            lines.extend(f"    {name}: {value}" for name, value in data["request_headers"].items())
            if data["response_headers"]:
                lines.append("  Response Headers:")
                lines.extend(f"    {name}: {value}" for name, value in data["response_headers"].items())
            for redirect in data["redirects"]:
                lines.append(f"  Redirect: {redirect.get('status', '???')} {redirect['url']}")

        if level <= LogLevel.TRACE:
            for label, body in (("Request Body", data["request_body"]), ("Response Body", data["response_body"])):
                if body:
                    lines.append(f"  {label}:")
                    lines.append(f"    {body[:2000]}{'...' if len(body) > 2000 else ''}")

        return "\n".join(lines)


class ProtocolLogger:
    """Records provider HTTP exchanges and writes them to the protocol log.

    Keeps a bounded history of recent exchanges for inspection (for example
    by the ``discover`` command or tests).
    """

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        trace_enabled: bool = False,
        history_size: int = 100,
    ) -> None:
        self._level = level
        self._trace_enabled = trace_enabled
        self._history: deque[HTTPExchange] = deque(maxlen=history_size)
        self._counter = 0
        self._lock = threading.Lock()

    @property
    def level(self) -> LogLevel:
        """Configured log level."""
        return self._level

    @level.setter
    def level(self, value: LogLevel) -> None:
        self._level = value

    @property
    def trace_enabled(self) -> bool:
        """Whether TRACE (sensitive bodies) is allowed."""
        return self._trace_enabled

    @trace_enabled.setter
    def trace_enabled(self, value: bool) -> None:
        self._trace_enabled = value

    @property
    def effective_level(self) -> LogLevel:
        """Effective level; TRACE degrades to DEBUG unless explicitly enabled."""
        if self._level == LogLevel.TRACE and not self._trace_enabled:
            return LogLevel.DEBUG
        return self._level

    @property
    def history(self) -> list[HTTPExchange]:
        """Recent exchanges, oldest first."""
        return list(self._history)

    def next_exchange_id(self) -> str:
        """Allocate a sequential exchange id."""
        with self._lock:
            self._counter += 1
            return f"http_{self._counter:04d}"

    def log_exchange(self, exchange: HTTPExchange) -> None:
        """Record an exchange and write it at the configured level."""
        self._history.append(exchange)

        effective = self.effective_level
        include_sensitive = self._trace_enabled and self._level <= LogLevel.TRACE

        if effective <= LogLevel.DEBUG:
            logger.debug(exchange.format_log(effective, include_sensitive))
        elif effective <= LogLevel.INFO:
            logger.info(exchange.format_log(effective, include_sensitive))

        if exchange.error:
            logger.error(f"HTTP error: {exchange.method} {redact_sensitive(exchange.url)}: {exchange.error}")

    def clear(self) -> None:
        """Forget recorded exchanges."""
        self._history.clear()


class LoggingClient(httpx.Client):
    """HTTPX client that reports every exchange to a ProtocolLogger.

    Redirects are followed manually so the redirect chain can be recorded.
    """

    max_redirects = 10

    def __init__(
        self,
        protocol_logger: ProtocolLogger | None = None,
        **kwargs: Any,
    ) -> None:
        self._protocol_logger = protocol_logger or get_protocol_logger()
        kwargs.setdefault("follow_redirects", False)
        super().__init__(**kwargs)

    @property
    def protocol_logger(self) -> ProtocolLogger:
        """The protocol logger receiving exchanges."""
        return self._protocol_logger

    def _build_exchange(self, request: httpx.Request) -> HTTPExchange:
        request_body = None
        if request.content:
            try:
                request_body = request.content.decode("utf-8")
            except UnicodeDecodeError:
                request_body = "<binary content>"

        return HTTPExchange(
            id=self._protocol_logger.next_exchange_id(),
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
            request_body=request_body,
        )

    def request(self, method: str, url: str | httpx.URL, **kwargs: Any) -> httpx.Response:  # type: ignore[override]
        """Send a request, following and recording redirects."""
        auth = kwargs.pop("auth", httpx.USE_CLIENT_DEFAULT)
        kwargs.pop("follow_redirects", None)

        start_time = time.perf_counter()
        request = self.build_request(method, url, **kwargs)
        exchange = self._build_exchange(request)

        try:
            response = self.send(request, auth=auth)
            while response.is_redirect and len(exchange.redirects) < self.max_redirects:
                location = response.headers.get("location", "")
                exchange.redirects.append({"url": location, "status": response.status_code})
                if not location:
                    break
                response = self.send(self.build_request("GET", request.url.join(location)), auth=auth)
        except httpx.HTTPError as e:
            exchange.duration_ms = (time.perf_counter() - start_time) * 1000
            exchange.error = str(e) or type(e).__name__
            self._protocol_logger.log_exchange(exchange)
            raise

        exchange.duration_ms = (time.perf_counter() - start_time) * 1000
        exchange.response_status = response.status_code
        exchange.response_headers = dict(response.headers)
        try:
            exchange.response_body = response.text
        except UnicodeDecodeError:
            exchange.response_body = "<binary content>"

        self._protocol_logger.log_exchange(exchange)
        return response


_global_logger: ProtocolLogger | None = None


def get_protocol_logger() -> ProtocolLogger:
    """Get the process-wide protocol logger, creating it on first use."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ProtocolLogger()
    return _global_logger


def set_protocol_logger(logger_instance: ProtocolLogger) -> None:
    """Replace the process-wide protocol logger."""
    global _global_logger
    _global_logger = logger_instance


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure the ``authsession`` loggers and the protocol logger.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or its name.
        trace_enabled: Whether TRACE may write sensitive values.
        log_file: Optional file path to also write logs to.

    Returns:
        The newly installed ProtocolLogger.
    """
    if isinstance(level, str):
        level = LogLevel.__members__.get(level.upper(), LogLevel.INFO)

    package_logger = logging.getLogger("authsession")
    package_logger.setLevel(level)
    package_logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    protocol_logger = ProtocolLogger(level=level, trace_enabled=trace_enabled)
    set_protocol_logger(protocol_logger)

    if trace_enabled:
        package_logger.warning("TRACE logging enabled - tokens and secrets will be logged!")

    return protocol_logger

"""Session transport - a cookie-carrying HTTP conversation with the catalog."""

import asyncio
import json
import logging
import os
import random
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import httpx
from pydantic import BaseModel

from webpac.config import ILSConfig
from webpac.exceptions import SessionContractError

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"

_STATUS_LINE = re.compile(r"^HTTP/\d(?:\.\d)? (\d{3})")


class Page(BaseModel):
    """A fetched page: status code, headers and decoded body."""

    code: int
    headers: dict[str, str] = {}
    body: str = ""

    @classmethod
    def from_response(cls, response: httpx.Response) -> "Page":
        # Repeated headers (Set-Cookie) are folded into one value
        headers = {name: "\n".join(response.headers.get_list(name)) for name in response.headers.keys()}
        return cls(code=response.status_code, headers=headers, body=response.text)

    @classmethod
    def parse(cls, raw: str) -> "Page":
        """Split a raw HTTP capture into status code, headers and body."""
        raw = raw.replace("\r\n", "\n")
        head, _, body = raw.partition("\n\n")
        lines = head.split("\n")

        code = 0
        match = _STATUS_LINE.match(lines[0])
        if match:
            code = int(match.group(1))

        headers: dict[str, str] = {}
        for line in lines[1:]:
            name, sep, value = line.partition(":")
            if not sep:
                continue
            name = name.strip().lower()
            value = value.strip()
            headers[name] = f"{headers[name]}\n{value}" if name in headers else value

        return cls(code=code, headers=headers, body=body)


class TransportFailure(BaseModel):
    """Terminal result of a request whose retry budget ran out."""

    reason: str = "unreachable"
    target: str


def exponential_backoff(
    retries: int,
    *,
    max_time: float | None = 5.0,
    factor: float = 0.25,
    base: float = 2.0,
    jitter: float = 0.3,
) -> float:
    """Seconds to wait before retry number ``retries`` (0 for the first).

    ``factor * base ** retries``, scaled by a random factor within
    ``1 +/- jitter`` and capped at ``max_time``.
    """
    if retries < 0:
        raise ValueError("retries must be non-negative")
    delay = factor * (base**retries) * random.uniform(1 - jitter, 1 + jitter)
    if max_time is not None:
        delay = min(delay, max_time)
    return delay


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts a request gets and how long to wait between them."""

    max_attempts: int = 10
    backoff: Callable[[int], float] | None = field(default=exponential_backoff)

    def delay(self, retries: int) -> float:
        return self.backoff(retries) if self.backoff else 0.0


class CookieStore:
    """Mirrors a session's cookie jar into a JSON file."""

    def __init__(self, directory: Path, session_id: str):
        session_id = re.sub(r"[^\w.-]", "_", session_id)
        self.path = Path(directory) / f"cookies.{session_id}.json"

    def load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable cookie file %s", self.path)
            return {}
        return data.get("cookies", {})

    def save(self, cookies: httpx.Cookies):
        # Owner-only: the cookies carry a logged in patron session
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump({"cookies": {c.name: c.value for c in cookies.jar}}, f)

    def remove(self):
        self.path.unlink(missing_ok=True)


class Transport:
    """One HTTP conversation with the catalog.

    The underlying client's cookie jar is the session identity: every
    request replays it, and it is mirrored to disk after each call.
    """

    def __init__(
        self,
        config: ILSConfig,
        session_id: str | None = None,
        retry_policy: RetryPolicy | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy()
        self.cookie_store = CookieStore(config.cookie_dir, session_id or secrets.token_hex(8))
        self._http_transport = http_transport
        self._http_client: httpx.AsyncClient | None = None
        self._closed = False

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client, seeded from any saved cookies."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                cookies=self.cookie_store.load(),
                headers={
                    "User-Agent": USER_AGENT,
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                },
                follow_redirects=True,
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
                transport=self._http_transport,
            )
        return self._http_client

    def url_for(self, path: str, secure: bool = True) -> str:
        base = self.config.secure_url if secure else self.config.insecure_url
        if path.startswith("/"):
            path = path[1:]
        return f"{base}/{path}"

    async def execute(
        self,
        path: str,
        form: dict | None = None,
        *,
        params: dict | None = None,
        timeout: float | None = None,
        secure: bool = True,
        retry: bool = True,
    ) -> Page | TransportFailure:
        """Fetch ``path``, POSTing ``form`` when given.

        Empty bodies and network errors are retried under the retry policy;
        once it is exhausted a ``TransportFailure`` is returned. A closed
        transport raises ``SessionContractError``.
        """
        if self._closed:
            raise SessionContractError("Transport is closed")
        url = self.url_for(path, secure=secure)
        method = "GET" if form is None else "POST"
        attempts = self.retry_policy.max_attempts if retry else 1
        timeout = timeout if timeout is not None else self.config.timeout

        for attempt in range(attempts):
            if attempt:
                await asyncio.sleep(self.retry_policy.delay(attempt - 1))

            logger.debug("%s %s (attempt %d/%d)", method, url, attempt + 1, attempts)
            try:
                response = await self.http_client.request(
                    method, url, params=params, data=form, timeout=timeout
                )
            except httpx.HTTPError as e:
                logger.warning("%s %s failed: %s", method, url, e)
                continue

            self.cookie_store.save(self.http_client.cookies)
            if response.content:
                return Page.from_response(response)
            logger.warning("%s %s returned an empty body", method, url)

        logger.warning("Giving up on %s after %d attempt(s)", url, attempts)
        return TransportFailure(target=url)

    async def close(self):
        """Release the HTTP client and remove the cookie file."""
        if self._closed:
            return
        self._closed = True
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        self.cookie_store.remove()

"""
Authentication injection for outgoing requests and browser contexts.

AuthInjector computes headers and cookies from an AuthSpec without doing any
I/O. Adapters apply them to an httpx client or a Playwright browser context.
"""

import base64
import re
from typing import MutableMapping, Optional, TYPE_CHECKING
from urllib.parse import urlparse

import httpx

from .errors import AuthConfigInvalidError
from .logging_conf import get_logger
from .models import AuthSpec, AuthType

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext

logger = get_logger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_cookie(cookie: Optional[str]) -> str:
    """Strip line breaks, wrapping quotes and control characters from a cookie string."""
    if not cookie:
        return ""
    sanitized = re.sub(r"[\r\n\t]", "", cookie)
    sanitized = re.sub(r"^['\"]|['\"]$", "", sanitized)
    sanitized = _CONTROL_CHARS.sub("", sanitized)
    return sanitized.strip()


def parse_cookie_string(cookie: Optional[str]) -> list[tuple[str, str]]:
    """
    Split a ``name=value; name2=value2`` string into discrete cookies.

    Pairs without a name or without ``=`` are skipped. Values may contain
    ``=`` (base64 padding is common).
    """
    cookies = []
    for pair in sanitize_cookie(cookie).split(";"):
        name, sep, value = pair.strip().partition("=")
        name = name.strip()
        value = value.strip()
        if not sep or not name or not value:
            if pair.strip():
                logger.debug("cookie_pair_skipped", pair=pair.strip()[:40])
            continue
        cookies.append((name, value))
    return cookies


class AuthInjector:
    """
    Attaches credentials for one AuthSpec.

    Malformed credential fields are logged and skipped individually; use
    ``validate()`` to fail fast instead.
    """

    def __init__(self, auth: Optional[AuthSpec], source_id: Optional[str] = None):
        self.auth = auth or AuthSpec()
        self.source_id = source_id

    @property
    def active(self) -> bool:
        return self.auth.active

    def problems(self) -> list[str]:
        """Describe every malformed credential field."""
        if not self.active:
            return []

        auth = self.auth
        problems = []
        if auth.auth_type == AuthType.COOKIE:
            if not parse_cookie_string(auth.cookie):
                problems.append("cookie: no name=value pairs")
        elif auth.auth_type == AuthType.BASIC:
            if not auth.basic_auth or not auth.basic_auth.username:
                problems.append("basicAuth: username is required")
            elif ":" in auth.basic_auth.username:
                problems.append("basicAuth: username may not contain ':'")
        elif auth.auth_type == AuthType.BEARER:
            if not (auth.bearer_token or "").strip():
                problems.append("bearerToken: token is empty")
        elif auth.auth_type == AuthType.CUSTOM:
            for name, value in (auth.custom_headers or {}).items():
                if not isinstance(value, str):
                    problems.append(f"customHeaders[{name}]: value must be a string")
                elif _CONTROL_CHARS.search(value.replace("\t", "")):
                    problems.append(f"customHeaders[{name}]: control characters in value")
        return problems

    def validate(self) -> None:
        """Raise AuthConfigInvalidError if any credential field is malformed."""
        problems = self.problems()
        if problems:
            raise AuthConfigInvalidError(problems, source_id=self.source_id)

    def _invalid(self, problem: str) -> None:
        logger.warning(
            "auth_config_invalid",
            source=self.source_id,
            auth_type=self.auth.auth_type.value,
            problem=problem,
        )

    def headers(self) -> dict[str, str]:
        """Headers to add to every request (cookies excluded)."""
        if not self.active:
            return {}

        auth = self.auth
        if auth.auth_type == AuthType.BASIC:
            creds = auth.basic_auth
            if not creds or not creds.username:
                self._invalid("basicAuth: username is required")
                return {}
            token = base64.b64encode(
                f"{creds.username}:{creds.password}".encode("utf-8")
            ).decode("ascii")
            return {"Authorization": f"Basic {token}"}

        if auth.auth_type == AuthType.BEARER:
            token = (auth.bearer_token or "").strip()
            if not token:
                self._invalid("bearerToken: token is empty")
                return {}
            return {"Authorization": f"Bearer {token}"}

        if auth.auth_type == AuthType.CUSTOM:
            headers = {}
            for name, value in (auth.custom_headers or {}).items():
                if not isinstance(value, str):
                    self._invalid(f"customHeaders[{name}]: value must be a string")
                    continue
                headers[name] = value
            return headers

        return {}

    def cookies(self) -> list[tuple[str, str]]:
        """Discrete (name, value) cookies for cookie auth."""
        if not self.active or self.auth.auth_type != AuthType.COOKIE:
            return []
        cookies = parse_cookie_string(self.auth.cookie)
        if not cookies:
            self._invalid("cookie: no name=value pairs")
        return cookies

    def apply(
        self,
        headers: MutableMapping[str, str],
        cookie_jar: Optional[httpx.Cookies] = None,
        domain: str = "",
    ) -> None:
        """
        Add credentials to a header mapping in place.

        Cookies go into ``cookie_jar`` when one is given, otherwise into a
        ``Cookie`` header. Applying twice yields the same result.
        """
        headers.update(self.headers())

        cookies = self.cookies()
        if not cookies:
            return
        if cookie_jar is not None:
            for name, value in cookies:
                cookie_jar.set(name, value, domain=domain)
        else:
            headers["Cookie"] = "; ".join(f"{n}={v}" for n, v in cookies)

    def apply_to_client(self, client: httpx.AsyncClient, url: str) -> None:
        """Attach credentials to an httpx client before fetching ``url``."""
        self.apply(client.headers, client.cookies, domain=urlparse(url).hostname or "")

    def playwright_cookies(self, url: str) -> list[dict]:
        """Cookies in the shape ``BrowserContext.add_cookies`` expects, scoped to ``url``."""
        return [
            {"name": name, "value": value, "url": url}
            for name, value in self.cookies()
        ]

    async def apply_to_context(self, context: "BrowserContext", url: str) -> None:
        """Attach credentials to a fresh Playwright browser context."""
        if not self.active:
            return
        headers = self.headers()
        if headers:
            await context.set_extra_http_headers(headers)
        cookies = self.playwright_cookies(url)
        if cookies:
            await context.add_cookies(cookies)

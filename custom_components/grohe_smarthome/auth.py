"""Session engine for the Grohe ONDUS cloud.

The identity provider does not follow a client-library-friendly contract,
so the login is driven by hand:

1. GET the login address and follow every redirect manually, collecting the
   cookies set on each hop into an explicit jar.
2. Parse the first form of the resulting page and POST username and
   password to its target, without following the answer.
3. Follow redirects until one points at the private ``ondus://`` scheme.
4. Rewrite that address to ``https://`` and GET it to obtain the tokens.

Access tokens are renewed with the refresh token through a separate
endpoint.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from .const import (
    DEFAULT_LOGIN_ERROR_MARKERS,
    DEFAULT_TOKEN_LIFETIME,
    LOGIN_ATTEMPTS,
    LOGIN_RETRY_DELAY,
    LOGIN_TIMEOUT,
    LOGIN_URL,
    MAX_LOGIN_REDIRECTS,
    MAX_TOKEN_REDIRECTS,
    REASON_FORM_REDISPLAYED,
    REFRESH_URL,
    REQUEST_TIMEOUT,
    TOKEN_EXPIRY_MARGIN,
    USER_AGENT,
)
from .exceptions import (
    GroheAuthenticationFailedError,
    GroheEmptyResponseError,
    GroheFormNotFoundError,
    GroheInvalidCredentialError,
    GroheInvalidInputError,
    GroheLoginError,
    GroheLoginRejectedError,
    GroheNoCredentialError,
    GroheNotAuthenticatedError,
    GroheRedirectChainFailedError,
    GroheRenewalFailedError,
    GroheTokenResponseInvalidError,
    GroheTooManyRedirectsError,
)
from .models import GroheSession, RedirectTarget, TokenExchange, classify_location

_LOGGER = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401

HTML_ACCEPT = "text/html,application/xhtml+xml"

TokenUpdateCallback = Callable[[str], Awaitable[None]]
LoginClientFactory = Callable[[], httpx.AsyncClient]


@dataclass
class LoginCookieJar:
    """Cookies collected during a single login attempt, keyed by name."""

    cookies: dict[str, str] = field(default_factory=dict)

    def merge(self, response: httpx.Response) -> None:
        """Merge every Set-Cookie header of a response; last write wins."""
        for raw in response.headers.get_list("set-cookie"):
            parsed = parse_set_cookie(raw)
            if parsed is not None:
                name, value = parsed
                self.cookies[name] = value

    def header(self) -> str:
        """Render the jar as a Cookie header value."""
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())


@dataclass(frozen=True)
class LoginPage:
    """The page reached after following the login redirects."""

    url: str
    status: int
    html: str


def parse_set_cookie(raw: str) -> tuple[str, str] | None:
    """Extract the name and value from a Set-Cookie header value.

    Args:
        raw: Header value, e.g. ``"KC_RESTART=abc; Path=/; HttpOnly"``.

    Returns:
        Tuple of (name, value), or None if the header carries no pair.

    """
    pair = raw.split(";", 1)[0]
    name, separator, value = pair.partition("=")
    name = name.strip()
    if not separator or not name:
        return None
    return name, value.strip()


def create_login_client() -> httpx.AsyncClient:
    """Create the HTTP client used for one login attempt."""
    return httpx.AsyncClient(timeout=LOGIN_TIMEOUT, follow_redirects=False)


def create_login_headers(
    jar: LoginCookieJar,
    *,
    referer: str | None = None,
    accept: str = HTML_ACCEPT,
) -> dict[str, str]:
    """Create browser-like headers carrying the collected cookies.

    Args:
        jar: Cookies collected so far in this attempt.
        referer: Optional Referer header value.
        accept: Accept header value.

    Returns:
        Dictionary containing HTTP headers for login requests.

    """
    headers = {
        "accept": accept,
        "user-agent": USER_AGENT,
    }
    cookie = jar.header()
    if cookie:
        headers["cookie"] = cookie
    if referer:
        headers["referer"] = referer
    return headers


def is_redirect(response: httpx.Response) -> bool:
    """Return True for a 3xx response that carries a Location header."""
    return 300 <= response.status_code < 400 and "location" in response.headers


def _is_textual(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "")
    if not content_type:
        return True
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type.startswith("text/") or "html" in media_type or "xml" in media_type


def _without_query(url: str) -> str:
    return url.split("?", 1)[0]


def check_markup_errors(html: str, markers: Mapping[str, str]) -> None:
    """Raise if the provider markup contains a known failure marker.

    Args:
        html: Page markup.
        markers: Mapping of marker text to failure reason.

    Raises:
        GroheLoginRejectedError: If a marker is found.

    """
    for marker, reason in markers.items():
        if marker in html:
            error_msg = f"Login page reports: {marker}"
            raise GroheLoginRejectedError(error_msg, reason)


def parse_form_action(html: str, base_url: str) -> str:
    """Return the absolute submission target of the first form.

    Args:
        html: Login page markup.
        base_url: Address the relative target is resolved against.

    Returns:
        Absolute form action URL.

    Raises:
        GroheFormNotFoundError: If there is no form or it has no action.

    """
    soup = BeautifulSoup(html, "html.parser")
    form = soup.find("form")
    action = form.get("action") if form is not None else None
    if not action:
        error_msg = "Login form action not found in page"
        raise GroheFormNotFoundError(error_msg)
    return urljoin(base_url, str(action))


def compute_expiry(expires_in: Any, now: datetime) -> datetime:
    """Return the instant an access token must be considered expired."""
    try:
        lifetime = int(expires_in) if expires_in else DEFAULT_TOKEN_LIFETIME
    except (TypeError, ValueError):
        lifetime = DEFAULT_TOKEN_LIFETIME
    return now + timedelta(seconds=lifetime - TOKEN_EXPIRY_MARGIN)


async def async_fetch_login_page(
    client: httpx.AsyncClient,
    jar: LoginCookieJar,
    start_url: str = LOGIN_URL,
    max_redirects: int = MAX_LOGIN_REDIRECTS,
) -> LoginPage:
    """Load the login page, following redirects by hand.

    Args:
        client: HTTP client of this login attempt.
        jar: Cookie jar of this login attempt, updated on every hop.
        start_url: Login initiation address.
        max_redirects: Number of redirects that may be followed.

    Returns:
        The final page with its address and markup.

    Raises:
        GroheTooManyRedirectsError: If more redirects are issued.
        GroheEmptyResponseError: If the final body is empty or not markup.

    """
    url = start_url
    redirects = 0
    while True:
        response = await client.get(
            url,
            headers=create_login_headers(jar),
            follow_redirects=False,
        )
        jar.merge(response)
        if not is_redirect(response):
            break

        redirects += 1
        if redirects > max_redirects:
            error_msg = f"More than {max_redirects} redirects loading the login page"
            raise GroheTooManyRedirectsError(error_msg)
        url = urljoin(url, response.headers["location"])
        _LOGGER.debug("Login page redirect %d -> %s", redirects, _without_query(url))

    html = response.text if _is_textual(response) else ""
    if not html.strip():
        error_msg = "Login page returned no markup"
        raise GroheEmptyResponseError(error_msg)
    return LoginPage(url=url, status=response.status_code, html=html)


async def async_submit_credentials(
    client: httpx.AsyncClient,
    jar: LoginCookieJar,
    action_url: str,
    email: str,
    password: str,
    markers: Mapping[str, str],
    referer: str = LOGIN_URL,
) -> RedirectTarget:
    """Post the credentials to the login form target.

    Args:
        client: HTTP client of this login attempt.
        jar: Cookie jar of this login attempt.
        action_url: Absolute form target.
        email: Account email.
        password: Account password.
        markers: Failure markers to scan a re-rendered page for.
        referer: Referer header value.

    Returns:
        The redirect target the provider answered with.

    Raises:
        GroheLoginRejectedError: If the provider renders the form again.
        GroheLoginError: If the provider answers with any other status.

    """
    response = await client.post(
        action_url,
        data={"username": email, "password": password},
        headers=create_login_headers(jar, referer=referer),
        follow_redirects=False,
    )
    jar.merge(response)
    _LOGGER.debug("Credential submission answered %d", response.status_code)

    if is_redirect(response):
        return classify_location(response.headers["location"], action_url)

    if response.status_code == HTTP_OK:
        check_markup_errors(response.text, markers)
        error_msg = "Provider re-displayed the login form"
        raise GroheLoginRejectedError(error_msg, REASON_FORM_REDISPLAYED)

    error_msg = f"Unexpected response to credential submission: {response.status_code}"
    raise GroheLoginError(error_msg)


async def async_follow_token_redirects(
    client: httpx.AsyncClient,
    jar: LoginCookieJar,
    target: RedirectTarget,
    max_redirects: int = MAX_TOKEN_REDIRECTS,
) -> TokenExchange:
    """Follow intermediate redirects until the token exchange address.

    Args:
        client: HTTP client of this login attempt.
        jar: Cookie jar of this login attempt, resent on every hop.
        target: Target returned by the credential submission.
        max_redirects: Number of further redirects that may be followed.

    Returns:
        The token exchange target.

    Raises:
        GroheRedirectChainFailedError: If the chain breaks or is too long.

    """
    for hop in range(1, max_redirects + 1):
        if isinstance(target, TokenExchange):
            return target

        _LOGGER.debug("Following login redirect %d -> %s", hop, _without_query(target.url))
        response = await client.get(
            target.url,
            headers=create_login_headers(jar, accept="text/html,application/json"),
            follow_redirects=False,
        )
        jar.merge(response)
        if not is_redirect(response):
            error_msg = (
                f"Login redirect chain broke at step {hop} "
                f"with status {response.status_code}"
            )
            raise GroheRedirectChainFailedError(error_msg)
        target = classify_location(response.headers["location"], target.url)

    if isinstance(target, TokenExchange):
        return target
    error_msg = f"No token redirect within {max_redirects} hops"
    raise GroheRedirectChainFailedError(error_msg)


async def async_exchange_token(
    client: httpx.AsyncClient,
    target: TokenExchange,
) -> dict[str, Any]:
    """Fetch the tokens from the rewritten ``ondus://`` address.

    Raises:
        GroheTokenResponseInvalidError: If the answer lacks a token.

    """
    _LOGGER.debug("Exchanging login code for tokens")
    response = await client.get(
        target.url,
        headers={"accept": "application/json"},
        timeout=REQUEST_TIMEOUT,
    )
    if response.status_code >= HTTP_BAD_REQUEST:
        error_msg = f"Token exchange failed: {response.status_code}"
        raise GroheTokenResponseInvalidError(error_msg)

    try:
        data = response.json()
    except ValueError as err:
        error_msg = "Token exchange returned no JSON"
        raise GroheTokenResponseInvalidError(error_msg) from err

    if (
        not isinstance(data, dict)
        or not data.get("access_token")
        or not data.get("refresh_token")
    ):
        error_msg = "Token response lacks access_token or refresh_token"
        raise GroheTokenResponseInvalidError(error_msg)
    return data


def _utcnow() -> datetime:
    return datetime.now(UTC)


class GroheAuthSession:
    """Owns the Grohe tokens and hands out a valid access token on demand.

    Renewal is serialized with a lock. Callers that waited for the lock
    re-check the token first, so concurrent callers share one renewal.
    """

    def __init__(
        self,
        session: httpx.AsyncClient,
        *,
        login_client_factory: LoginClientFactory = create_login_client,
        error_markers: Mapping[str, str] | None = None,
        token_update_callback: TokenUpdateCallback | None = None,
    ) -> None:
        """Initialize the session engine.

        Args:
            session: HTTP client used for token renewal.
            login_client_factory: Creates a fresh client per login attempt.
            error_markers: Login failure markers, marker text to reason.
            token_update_callback: Awaited with the refresh token whenever
                its value changes.

        """
        self._session = session
        self._login_client_factory = login_client_factory
        self._error_markers = dict(
            DEFAULT_LOGIN_ERROR_MARKERS if error_markers is None else error_markers
        )
        self._token_update_callback = token_update_callback
        self._state = GroheSession()
        self._lock = asyncio.Lock()

    @property
    def access_token(self) -> str | None:
        """Return the cached access token, valid or not."""
        return self._state.access_token

    @property
    def refresh_token(self) -> str | None:
        """Return the current refresh token."""
        return self._state.refresh_token

    @property
    def expires_at(self) -> datetime | None:
        """Return the instant the access token expires."""
        return self._state.expires_at

    @property
    def has_valid_access_token(self) -> bool:
        """Return True if an unexpired access token is cached."""
        return self._state.has_valid_access_token(_utcnow())

    async def async_login(self, email: str, password: str) -> str:
        """Log in with email and password.

        Args:
            email: Account email.
            password: Account password.

        Returns:
            The refresh token obtained.

        Raises:
            GroheInvalidInputError: If email or password is empty.
            GroheAuthenticationFailedError: If every attempt failed.

        """
        if not email or not password:
            error_msg = "Email and password are required"
            raise GroheInvalidInputError(error_msg)

        last_error: Exception | None = None
        for attempt in range(1, LOGIN_ATTEMPTS + 1):
            _LOGGER.debug("Login attempt %d/%d", attempt, LOGIN_ATTEMPTS)
            try:
                tokens = await self._async_login_attempt(email, password)
            except (GroheLoginError, httpx.HTTPError) as err:
                last_error = err
                _LOGGER.warning("Login attempt %d failed: %s", attempt, err)
                if attempt < LOGIN_ATTEMPTS:
                    await asyncio.sleep(attempt * LOGIN_RETRY_DELAY)
            else:
                async with self._lock:
                    await self._async_apply_tokens(tokens)
                _LOGGER.info("Logged in to Grohe cloud")
                return tokens["refresh_token"]

        error_msg = f"Login failed after {LOGIN_ATTEMPTS} attempts: {last_error}"
        raise GroheAuthenticationFailedError(
            error_msg, getattr(last_error, "reason", None)
        ) from last_error

    async def _async_login_attempt(self, email: str, password: str) -> dict[str, Any]:
        jar = LoginCookieJar()
        async with self._login_client_factory() as client:
            page = await async_fetch_login_page(client, jar)
            check_markup_errors(page.html, self._error_markers)
            if page.status >= HTTP_BAD_REQUEST:
                error_msg = f"Login page request failed: {page.status}"
                raise GroheLoginError(error_msg)

            action_url = parse_form_action(page.html, LOGIN_URL)
            _LOGGER.debug("Login form target %s", _without_query(action_url))
            target = await async_submit_credentials(
                client, jar, action_url, email, password, self._error_markers
            )
            exchange = await async_follow_token_redirects(client, jar, target)
            return await async_exchange_token(client, exchange)

    def adopt_refresh_token(self, refresh_token: str) -> None:
        """Install a persisted refresh token without contacting the cloud.

        The cached access token is dropped so the next access renews.
        """
        self._state.refresh_token = refresh_token.strip() or None
        self._state.access_token = None
        self._state.expires_at = None

    async def async_renew(self, stale_token: str | None = None) -> str:
        """Exchange the refresh token for a new access token.

        Args:
            stale_token: Access token the caller saw rejected. If another
                caller already replaced it, that renewal is reused.

        Returns:
            The new access token.

        Raises:
            GroheNoCredentialError: If no refresh token is held.
            GroheInvalidCredentialError: If the provider rejects it.
            GroheRenewalFailedError: For any other failure.

        """
        async with self._lock:
            current = self._state.access_token
            if (
                stale_token is not None
                and current is not None
                and current != stale_token
                and self._state.has_valid_access_token(_utcnow())
            ):
                return current
            return await self._async_renew_locked()

    async def async_get_valid_token(self) -> str:
        """Return a valid access token, renewing it first if needed.

        Raises:
            GroheNotAuthenticatedError: If there is no refresh token.

        """
        token = self._state.access_token
        if token is not None and self._state.has_valid_access_token(_utcnow()):
            return token

        async with self._lock:
            token = self._state.access_token
            if token is not None and self._state.has_valid_access_token(_utcnow()):
                return token
            if not self._state.refresh_token:
                error_msg = "Not logged in to Grohe cloud"
                raise GroheNotAuthenticatedError(error_msg)
            return await self._async_renew_locked()

    async def _async_renew_locked(self) -> str:
        refresh_token = self._state.refresh_token
        if not refresh_token:
            error_msg = "No refresh token available"
            raise GroheNoCredentialError(error_msg)

        _LOGGER.debug("Renewing Grohe access token")
        try:
            response = await self._session.post(
                REFRESH_URL,
                json={"refresh_token": refresh_token},
                headers={"accept": "application/json"},
                timeout=REQUEST_TIMEOUT,
            )
        except httpx.HTTPError as err:
            error_msg = f"Token renewal request failed: {err}"
            raise GroheRenewalFailedError(error_msg) from err

        if response.status_code in (HTTP_BAD_REQUEST, HTTP_UNAUTHORIZED):
            error_msg = f"Refresh token rejected: {response.status_code}"
            raise GroheInvalidCredentialError(error_msg)
        if response.status_code >= HTTP_BAD_REQUEST:
            error_msg = f"Token renewal failed: {response.status_code}"
            raise GroheRenewalFailedError(error_msg)

        try:
            data = response.json()
        except ValueError as err:
            error_msg = "Token renewal returned no JSON"
            raise GroheRenewalFailedError(error_msg) from err
        if not isinstance(data, dict) or not data.get("access_token"):
            error_msg = "Token renewal returned no access_token"
            raise GroheRenewalFailedError(error_msg)

        await self._async_apply_tokens(data)
        _LOGGER.debug(
            "Access token renewed, valid until %s", self._state.expires_at.isoformat()
        )
        return data["access_token"]

    async def _async_apply_tokens(self, data: dict[str, Any]) -> None:
        previous_refresh_token = self._state.refresh_token
        self._state.access_token = data["access_token"]
        if data.get("refresh_token"):
            self._state.refresh_token = data["refresh_token"]
        self._state.expires_at = compute_expiry(data.get("expires_in"), _utcnow())

        if (
            self._token_update_callback is not None
            and self._state.refresh_token
            and self._state.refresh_token != previous_refresh_token
        ):
            await self._token_update_callback(self._state.refresh_token)

"""Tests for the Grohe session engine."""

import asyncio
import json
import re
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, call, patch

import httpx
import pytest
from pytest_httpx import HTTPXMock

from custom_components.grohe_smarthome import auth
from custom_components.grohe_smarthome.auth import GroheAuthSession, LoginCookieJar
from custom_components.grohe_smarthome.const import (
    LOGIN_URL,
    REASON_FORM_REDISPLAYED,
    REASON_INVALID_CREDENTIALS,
    REFRESH_URL,
)
from custom_components.grohe_smarthome.exceptions import (
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
from custom_components.grohe_smarthome.models import (
    HttpsRedirect,
    TokenExchange,
    classify_location,
)

from .conftest import create_login_page

HOST = "https://idp2-apigw.cloud.grohe.com"
AUTH_URL = f"{HOST}/v1/sso/auth/realms/idm-apigw/protocol/openid-connect/auth"
ACTION_URL = f"{HOST}/v1/sso/auth/realms/idm-apigw/login-actions/authenticate"
CALLBACK_URL = f"{HOST}/v3/iot/oidc/callback"
TOKEN_URL = f"{HOST}/v3/iot/oidc/token"
ONDUS_TOKEN_URL = "ondus://idp2-apigw.cloud.grohe.com/v3/iot/oidc/token"

EMAIL = "user@example.com"
PASSWORD = "secret"
TOKEN_LIFETIME = 3600
EXPIRY_MARGIN = 60


def add_login_flow(
    httpx_mock: HTTPXMock, token_response: dict, extra_hops: int = 0
) -> None:
    """Register the responses of one successful login.

    With extra_hops, the callback redirects through that many further
    provider addresses before the token redirect.
    """
    hops = [f"{HOST}/v3/iot/oidc/step/{n}" for n in range(1, extra_hops + 1)]
    locations = [*hops, f"{ONDUS_TOKEN_URL}?code=final"]
    httpx_mock.add_response(
        method="GET",
        url=LOGIN_URL,
        status_code=302,
        headers=[
            ("location", f"{AUTH_URL}?client_id=iot"),
            ("set-cookie", "AUTH_SESSION_ID=one; Path=/; HttpOnly"),
        ],
    )
    httpx_mock.add_response(
        method="GET",
        url=re.compile(re.escape(AUTH_URL) + r".*"),
        status_code=200,
        headers=[
            ("set-cookie", "AUTH_SESSION_ID=two; Path=/"),
            ("set-cookie", "KC_RESTART=restart; Path=/"),
        ],
        html=create_login_page(
            "/v1/sso/auth/realms/idm-apigw/login-actions/authenticate"
            "?session_code=abc&amp;tab_id=x"
        ),
    )
    httpx_mock.add_response(
        method="POST",
        url=re.compile(re.escape(ACTION_URL) + r".*"),
        status_code=302,
        headers=[
            ("location", f"{CALLBACK_URL}?code=first"),
            ("set-cookie", "KEYCLOAK_IDENTITY=identity; Path=/"),
        ],
    )
    httpx_mock.add_response(
        method="GET",
        url=re.compile(re.escape(CALLBACK_URL) + r".*"),
        status_code=302,
        headers={"location": locations[0]},
    )
    for hop, location in zip(hops, locations[1:], strict=True):
        httpx_mock.add_response(
            method="GET", url=hop, status_code=302, headers={"location": location}
        )
    httpx_mock.add_response(
        method="GET",
        url=re.compile(re.escape(TOKEN_URL) + r".*"),
        json=token_response,
    )


@pytest.fixture
def session() -> httpx.AsyncClient:
    """Create the shared HTTP client."""
    return httpx.AsyncClient()


class TestLoginCookieJar:
    """Tests for LoginCookieJar."""

    def test_merge_keeps_latest_value_per_name(self) -> None:
        """Test that later Set-Cookie headers overwrite earlier values."""
        jar = LoginCookieJar()
        jar.merge(
            httpx.Response(
                200,
                headers=[("set-cookie", "a=1; Path=/"), ("set-cookie", "b=2")],
            )
        )
        jar.merge(httpx.Response(200, headers=[("set-cookie", "a=3; HttpOnly")]))

        assert jar.cookies == {"a": "3", "b": "2"}
        assert jar.header() == "a=3; b=2"

    def test_merge_ignores_headers_without_pair(self) -> None:
        """Test that malformed Set-Cookie values are skipped."""
        jar = LoginCookieJar()
        jar.merge(httpx.Response(200, headers=[("set-cookie", "garbage")]))
        assert jar.header() == ""

    def test_parse_set_cookie_splits_on_first_equals(self) -> None:
        """Test that values may contain equals signs."""
        assert auth.parse_set_cookie("token=a=b; Path=/") == ("token", "a=b")


class TestLoginHelpers:
    """Tests for the stateless login helpers."""

    def test_parse_form_action_resolves_relative_target(self) -> None:
        """Test that a relative action is resolved against the login address."""
        html = create_login_page("login-actions/authenticate?code=1")
        assert (
            auth.parse_form_action(html, LOGIN_URL)
            == f"{HOST}/v3/iot/oidc/login-actions/authenticate?code=1"
        )

    def test_parse_form_action_raises_without_form(self) -> None:
        """Test that a page without a form is rejected."""
        with pytest.raises(GroheFormNotFoundError):
            auth.parse_form_action("<html><body>nothing</body></html>", LOGIN_URL)

    def test_check_markup_errors_reports_reason(self) -> None:
        """Test that a known marker yields its reason."""
        with pytest.raises(GroheLoginRejectedError) as exc_info:
            auth.check_markup_errors(
                "<span>Invalid username or password.</span>",
                {"Invalid username or password": REASON_INVALID_CREDENTIALS},
            )
        assert exc_info.value.reason == REASON_INVALID_CREDENTIALS

    def test_compute_expiry_subtracts_margin(self) -> None:
        """Test that expiry is lifetime minus the safety margin."""
        now = datetime(2026, 1, 1, tzinfo=UTC)
        assert auth.compute_expiry(600, now) == now + timedelta(seconds=540)

    def test_compute_expiry_defaults_lifetime(self) -> None:
        """Test that a missing lifetime falls back to one hour."""
        now = datetime(2026, 1, 1, tzinfo=UTC)
        assert auth.compute_expiry(None, now) == now + timedelta(
            seconds=TOKEN_LIFETIME - EXPIRY_MARGIN
        )

    @pytest.mark.asyncio
    async def test_fetch_login_page_raises_after_too_many_redirects(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that the 21st redirect aborts the login."""
        httpx_mock.add_response(
            url=LOGIN_URL, status_code=302, headers={"location": f"{HOST}/hop/1"}
        )
        for hop in range(1, 21):
            httpx_mock.add_response(
                url=f"{HOST}/hop/{hop}",
                status_code=302,
                headers={"location": f"{HOST}/hop/{hop + 1}"},
            )

        async with httpx.AsyncClient() as client:
            with pytest.raises(GroheTooManyRedirectsError):
                await auth.async_fetch_login_page(client, LoginCookieJar())

    @pytest.mark.asyncio
    async def test_fetch_login_page_follows_twenty_redirects(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that exactly twenty redirects still reach the login form."""
        httpx_mock.add_response(
            url=LOGIN_URL, status_code=302, headers={"location": f"{HOST}/hop/1"}
        )
        for hop in range(1, 20):
            httpx_mock.add_response(
                url=f"{HOST}/hop/{hop}",
                status_code=302,
                headers={"location": f"{HOST}/hop/{hop + 1}"},
            )
        httpx_mock.add_response(
            url=f"{HOST}/hop/20", html=create_login_page(ACTION_URL)
        )

        async with httpx.AsyncClient() as client:
            page = await auth.async_fetch_login_page(client, LoginCookieJar())

        assert page.url == f"{HOST}/hop/20"
        assert "<form" in page.html

    @pytest.mark.asyncio
    async def test_fetch_login_page_raises_on_empty_body(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that an empty login page is rejected."""
        httpx_mock.add_response(url=LOGIN_URL, status_code=200, text="")

        async with httpx.AsyncClient() as client:
            with pytest.raises(GroheEmptyResponseError):
                await auth.async_fetch_login_page(client, LoginCookieJar())

    @pytest.mark.asyncio
    async def test_fetch_login_page_raises_on_non_markup(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that a binary login page is rejected."""
        httpx_mock.add_response(
            url=LOGIN_URL,
            status_code=200,
            content=b"\x89PNG",
            headers={"content-type": "image/png"},
        )

        async with httpx.AsyncClient() as client:
            with pytest.raises(GroheEmptyResponseError):
                await auth.async_fetch_login_page(client, LoginCookieJar())

    @pytest.mark.asyncio
    async def test_submit_credentials_detects_redisplayed_form(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that a form shown again without a marker is a rejection."""
        httpx_mock.add_response(
            method="POST", url=ACTION_URL, html=create_login_page(ACTION_URL)
        )

        async with httpx.AsyncClient() as client:
            with pytest.raises(GroheLoginRejectedError) as exc_info:
                await auth.async_submit_credentials(
                    client, LoginCookieJar(), ACTION_URL, EMAIL, PASSWORD, {}
                )
        assert exc_info.value.reason == REASON_FORM_REDISPLAYED

    @pytest.mark.asyncio
    async def test_submit_credentials_rejects_other_status(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that a server error on submission is a login error."""
        httpx_mock.add_response(method="POST", url=ACTION_URL, status_code=500)

        async with httpx.AsyncClient() as client:
            with pytest.raises(GroheLoginError):
                await auth.async_submit_credentials(
                    client, LoginCookieJar(), ACTION_URL, EMAIL, PASSWORD, {}
                )

    @pytest.mark.asyncio
    async def test_follow_token_redirects_returns_immediately_for_ondus(self) -> None:
        """Test that a direct ondus target needs no further requests."""
        target = TokenExchange(url=f"{TOKEN_URL}?code=1")
        async with httpx.AsyncClient() as client:
            assert (
                await auth.async_follow_token_redirects(client, LoginCookieJar(), target)
                == target
            )

    @pytest.mark.asyncio
    async def test_follow_token_redirects_fails_on_non_redirect(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that a chain ending in a page fails."""
        httpx_mock.add_response(url=CALLBACK_URL, status_code=200, text="done")

        async with httpx.AsyncClient() as client:
            with pytest.raises(GroheRedirectChainFailedError):
                await auth.async_follow_token_redirects(
                    client, LoginCookieJar(), HttpsRedirect(url=CALLBACK_URL)
                )

    @staticmethod
    def add_redirect_chain(
        httpx_mock: HTTPXMock, hops: int, final_location: str
    ) -> None:
        """Register hops that redirect from one to the next."""
        for hop in range(1, hops + 1):
            location = f"{HOST}/chain/{hop + 1}" if hop < hops else final_location
            httpx_mock.add_response(
                url=f"{HOST}/chain/{hop}",
                status_code=302,
                headers={"location": location},
            )

    @pytest.mark.asyncio
    async def test_follow_token_redirects_accepts_fifteen_hops(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that fifteen intermediate hops may precede the token address."""
        self.add_redirect_chain(httpx_mock, 15, f"{ONDUS_TOKEN_URL}?code=final")

        async with httpx.AsyncClient() as client:
            target = await auth.async_follow_token_redirects(
                client, LoginCookieJar(), HttpsRedirect(url=f"{HOST}/chain/1")
            )

        assert target == TokenExchange(url=f"{TOKEN_URL}?code=final")
        assert len(httpx_mock.get_requests()) == 15

    @pytest.mark.asyncio
    async def test_follow_token_redirects_rejects_sixteen_hops(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that a sixteenth intermediate hop is not followed."""
        self.add_redirect_chain(httpx_mock, 15, f"{HOST}/chain/16")

        async with httpx.AsyncClient() as client:
            with pytest.raises(GroheRedirectChainFailedError, match="15 hops"):
                await auth.async_follow_token_redirects(
                    client, LoginCookieJar(), HttpsRedirect(url=f"{HOST}/chain/1")
                )

        assert len(httpx_mock.get_requests()) == 15

    @pytest.mark.asyncio
    async def test_exchange_token_requires_both_tokens(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that a token response without refresh token is rejected."""
        httpx_mock.add_response(url=TOKEN_URL, json={"access_token": "a"})

        async with httpx.AsyncClient() as client:
            with pytest.raises(GroheTokenResponseInvalidError):
                await auth.async_exchange_token(client, TokenExchange(url=TOKEN_URL))


class TestGroheAuthSessionLogin:
    """Tests for GroheAuthSession.async_login."""

    @pytest.mark.asyncio
    async def test_login_obtains_tokens(
        self,
        httpx_mock: HTTPXMock,
        session: httpx.AsyncClient,
        sample_token_response: dict,
    ) -> None:
        """Test a complete login through every redirect."""
        add_login_flow(httpx_mock, sample_token_response)
        callback = AsyncMock()
        grohe_auth = GroheAuthSession(session, token_update_callback=callback)

        before = datetime.now(UTC)
        refresh_token = await grohe_auth.async_login(EMAIL, PASSWORD)
        after = datetime.now(UTC)

        assert refresh_token == "refresh-1"
        assert grohe_auth.access_token == "access-1"
        assert grohe_auth.has_valid_access_token is True
        lifetime = timedelta(seconds=TOKEN_LIFETIME - EXPIRY_MARGIN)
        assert before + lifetime <= grohe_auth.expires_at <= after + lifetime
        callback.assert_awaited_once_with("refresh-1")

    @pytest.mark.asyncio
    async def test_login_follows_several_intermediate_hops(
        self,
        httpx_mock: HTTPXMock,
        session: httpx.AsyncClient,
        sample_token_response: dict,
    ) -> None:
        """Test a login whose callback redirects through further provider pages."""
        add_login_flow(httpx_mock, sample_token_response, extra_hops=2)
        grohe_auth = GroheAuthSession(session)

        assert await grohe_auth.async_login(EMAIL, PASSWORD) == "refresh-1"

        requests = httpx_mock.get_requests()
        assert [str(r.url) for r in requests[4:6]] == [
            f"{HOST}/v3/iot/oidc/step/1",
            f"{HOST}/v3/iot/oidc/step/2",
        ]
        assert "KEYCLOAK_IDENTITY=identity" in requests[5].headers["cookie"]
        assert str(requests[6].url) == f"{TOKEN_URL}?code=final"

    @pytest.mark.asyncio
    async def test_login_sends_accumulated_cookies(
        self,
        httpx_mock: HTTPXMock,
        session: httpx.AsyncClient,
        sample_token_response: dict,
    ) -> None:
        """Test that every hop carries the union of cookies seen so far."""
        add_login_flow(httpx_mock, sample_token_response)
        grohe_auth = GroheAuthSession(session)

        await grohe_auth.async_login(EMAIL, PASSWORD)

        requests = httpx_mock.get_requests()
        assert "cookie" not in requests[0].headers
        assert requests[1].headers["cookie"] == "AUTH_SESSION_ID=one"
        assert requests[2].headers["cookie"] == "AUTH_SESSION_ID=two; KC_RESTART=restart"
        assert requests[3].headers["cookie"] == (
            "AUTH_SESSION_ID=two; KC_RESTART=restart; KEYCLOAK_IDENTITY=identity"
        )

    @pytest.mark.asyncio
    async def test_login_posts_credentials_to_form_target(
        self,
        httpx_mock: HTTPXMock,
        session: httpx.AsyncClient,
        sample_token_response: dict,
    ) -> None:
        """Test the credential submission request."""
        add_login_flow(httpx_mock, sample_token_response)
        grohe_auth = GroheAuthSession(session)

        await grohe_auth.async_login(EMAIL, PASSWORD)

        post = httpx_mock.get_requests(method="POST")[0]
        assert str(post.url) == f"{ACTION_URL}?session_code=abc&tab_id=x"
        assert post.headers["referer"] == LOGIN_URL
        assert post.headers["content-type"] == "application/x-www-form-urlencoded"
        assert post.content == b"username=user%40example.com&password=secret"

    @pytest.mark.asyncio
    async def test_login_exchanges_rewritten_ondus_address(
        self,
        httpx_mock: HTTPXMock,
        session: httpx.AsyncClient,
        sample_token_response: dict,
    ) -> None:
        """Test that the ondus scheme is replaced by https."""
        add_login_flow(httpx_mock, sample_token_response)
        grohe_auth = GroheAuthSession(session)

        await grohe_auth.async_login(EMAIL, PASSWORD)

        assert str(httpx_mock.get_requests()[-1].url) == f"{TOKEN_URL}?code=final"

    @pytest.mark.asyncio
    async def test_login_rejects_empty_input(self, session: httpx.AsyncClient) -> None:
        """Test that empty credentials fail without any request."""
        grohe_auth = GroheAuthSession(session)
        with pytest.raises(GroheInvalidInputError):
            await grohe_auth.async_login("", PASSWORD)

    @pytest.mark.asyncio
    async def test_login_retries_three_times_with_growing_delay(
        self, httpx_mock: HTTPXMock, session: httpx.AsyncClient
    ) -> None:
        """Test that a failing login is tried three times, sleeping 2 s then 4 s."""
        for _ in range(3):
            httpx_mock.add_response(
                url=LOGIN_URL, status_code=500, html="<html>Server error</html>"
            )
        grohe_auth = GroheAuthSession(session)

        with patch(
            "custom_components.grohe_smarthome.auth.asyncio.sleep",
            new_callable=AsyncMock,
        ) as mock_sleep:
            with pytest.raises(GroheAuthenticationFailedError) as exc_info:
                await grohe_auth.async_login(EMAIL, PASSWORD)

        assert mock_sleep.await_args_list == [call(2), call(4)]
        assert len(httpx_mock.get_requests()) == 3
        assert isinstance(exc_info.value.__cause__, GroheLoginError)

    @pytest.mark.asyncio
    async def test_login_reports_invalid_credentials(
        self, httpx_mock: HTTPXMock, session: httpx.AsyncClient
    ) -> None:
        """Test that the provider's invalid credential marker is surfaced."""
        for _ in range(3):
            httpx_mock.add_response(url=LOGIN_URL, html=create_login_page(ACTION_URL))
            httpx_mock.add_response(
                method="POST",
                url=ACTION_URL,
                html=(
                    create_login_page(ACTION_URL)
                    + "<span>Invalid username or password.</span>"
                ),
            )
        grohe_auth = GroheAuthSession(session)

        with patch(
            "custom_components.grohe_smarthome.auth.asyncio.sleep",
            new_callable=AsyncMock,
        ):
            with pytest.raises(GroheAuthenticationFailedError) as exc_info:
                await grohe_auth.async_login(EMAIL, PASSWORD)

        assert exc_info.value.reason == REASON_INVALID_CREDENTIALS
        assert grohe_auth.refresh_token is None

    @pytest.mark.asyncio
    async def test_login_uses_injected_markers(
        self, httpx_mock: HTTPXMock, session: httpx.AsyncClient
    ) -> None:
        """Test that failure markers can be configured."""
        for _ in range(3):
            httpx_mock.add_response(
                url=LOGIN_URL, html="<html>Konto gesperrt</html>"
            )
        grohe_auth = GroheAuthSession(
            session, error_markers={"Konto gesperrt": "account_locked"}
        )

        with patch(
            "custom_components.grohe_smarthome.auth.asyncio.sleep",
            new_callable=AsyncMock,
        ):
            with pytest.raises(GroheAuthenticationFailedError) as exc_info:
                await grohe_auth.async_login(EMAIL, PASSWORD)

        assert exc_info.value.reason == "account_locked"


class TestGroheAuthSessionRenew:
    """Tests for token renewal."""

    @pytest.mark.asyncio
    async def test_renew_without_refresh_token_raises(
        self, session: httpx.AsyncClient
    ) -> None:
        """Test that renewal needs a refresh token."""
        grohe_auth = GroheAuthSession(session)
        with pytest.raises(GroheNoCredentialError):
            await grohe_auth.async_renew()

    @pytest.mark.asyncio
    async def test_renew_keeps_refresh_token_when_not_rotated(
        self, httpx_mock: HTTPXMock, session: httpx.AsyncClient
    ) -> None:
        """Test that the old refresh token stays when none is returned."""
        httpx_mock.add_response(
            method="POST",
            url=REFRESH_URL,
            json={"access_token": "access-2", "expires_in": 1800},
        )
        callback = AsyncMock()
        grohe_auth = GroheAuthSession(session, token_update_callback=callback)
        grohe_auth.adopt_refresh_token("refresh-1")

        assert await grohe_auth.async_renew() == "access-2"
        assert grohe_auth.refresh_token == "refresh-1"
        callback.assert_not_awaited()

        request = httpx_mock.get_requests()[0]
        assert json.loads(request.content) == {"refresh_token": "refresh-1"}

    @pytest.mark.asyncio
    async def test_renew_adopts_rotated_refresh_token(
        self, httpx_mock: HTTPXMock, session: httpx.AsyncClient
    ) -> None:
        """Test that a rotated refresh token is kept and persisted."""
        httpx_mock.add_response(
            method="POST",
            url=REFRESH_URL,
            json={"access_token": "access-2", "refresh_token": "refresh-2"},
        )
        callback = AsyncMock()
        grohe_auth = GroheAuthSession(session, token_update_callback=callback)
        grohe_auth.adopt_refresh_token("refresh-1")

        await grohe_auth.async_renew()

        assert grohe_auth.refresh_token == "refresh-2"
        callback.assert_awaited_once_with("refresh-2")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401])
    async def test_renew_rejected_refresh_token(
        self, httpx_mock: HTTPXMock, session: httpx.AsyncClient, status: int
    ) -> None:
        """Test that 400 and 401 mean the refresh token is invalid."""
        httpx_mock.add_response(method="POST", url=REFRESH_URL, status_code=status)
        grohe_auth = GroheAuthSession(session)
        grohe_auth.adopt_refresh_token("refresh-1")

        with pytest.raises(GroheInvalidCredentialError):
            await grohe_auth.async_renew()

    @pytest.mark.asyncio
    async def test_renew_server_error(
        self, httpx_mock: HTTPXMock, session: httpx.AsyncClient
    ) -> None:
        """Test that other failures are renewal failures."""
        httpx_mock.add_response(method="POST", url=REFRESH_URL, status_code=502)
        grohe_auth = GroheAuthSession(session)
        grohe_auth.adopt_refresh_token("refresh-1")

        with pytest.raises(GroheRenewalFailedError):
            await grohe_auth.async_renew()

    @pytest.mark.asyncio
    async def test_renew_without_access_token_in_response(
        self, httpx_mock: HTTPXMock, session: httpx.AsyncClient
    ) -> None:
        """Test that a response without access token is a renewal failure."""
        httpx_mock.add_response(method="POST", url=REFRESH_URL, json={})
        grohe_auth = GroheAuthSession(session)
        grohe_auth.adopt_refresh_token("refresh-1")

        with pytest.raises(GroheRenewalFailedError):
            await grohe_auth.async_renew()

    @pytest.mark.asyncio
    async def test_renew_transport_error(
        self, httpx_mock: HTTPXMock, session: httpx.AsyncClient
    ) -> None:
        """Test that a transport error is a renewal failure."""
        httpx_mock.add_exception(httpx.ConnectError("boom"), url=REFRESH_URL)
        grohe_auth = GroheAuthSession(session)
        grohe_auth.adopt_refresh_token("refresh-1")

        with pytest.raises(GroheRenewalFailedError):
            await grohe_auth.async_renew()

    @pytest.mark.asyncio
    async def test_renew_reuses_renewal_done_by_other_caller(
        self, session: httpx.AsyncClient
    ) -> None:
        """Test that a stale token does not trigger a second renewal."""
        grohe_auth = GroheAuthSession(session)
        grohe_auth.adopt_refresh_token("refresh-1")
        grohe_auth._state.access_token = "fresh"  # noqa: SLF001
        grohe_auth._state.expires_at = datetime.now(UTC) + timedelta(minutes=30)  # noqa: SLF001

        assert await grohe_auth.async_renew(stale_token="stale") == "fresh"


class TestGroheAuthSessionGetValidToken:
    """Tests for async_get_valid_token."""

    @pytest.mark.asyncio
    async def test_returns_cached_token(self, session: httpx.AsyncClient) -> None:
        """Test that a valid token is returned without renewal."""
        grohe_auth = GroheAuthSession(session)
        grohe_auth.adopt_refresh_token("refresh-1")
        grohe_auth._state.access_token = "cached"  # noqa: SLF001
        grohe_auth._state.expires_at = datetime.now(UTC) + timedelta(minutes=5)  # noqa: SLF001

        assert await grohe_auth.async_get_valid_token() == "cached"

    @pytest.mark.asyncio
    async def test_expired_token_renews_exactly_once(
        self, httpx_mock: HTTPXMock, session: httpx.AsyncClient
    ) -> None:
        """Test that concurrent callers share a single renewal."""
        httpx_mock.add_response(
            method="POST", url=REFRESH_URL, json={"access_token": "renewed"}
        )
        grohe_auth = GroheAuthSession(session)
        grohe_auth.adopt_refresh_token("refresh-1")
        grohe_auth._state.access_token = "expired"  # noqa: SLF001
        grohe_auth._state.expires_at = datetime.now(UTC) - timedelta(seconds=1)  # noqa: SLF001

        tokens = await asyncio.gather(
            grohe_auth.async_get_valid_token(),
            grohe_auth.async_get_valid_token(),
        )

        assert tokens == ["renewed", "renewed"]
        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_without_refresh_token_raises(
        self, session: httpx.AsyncClient
    ) -> None:
        """Test that a session that never logged in cannot hand out tokens."""
        grohe_auth = GroheAuthSession(session)
        with pytest.raises(GroheNotAuthenticatedError):
            await grohe_auth.async_get_valid_token()

    def test_adopt_refresh_token_drops_access_token(
        self, session: httpx.AsyncClient
    ) -> None:
        """Test that adopting a token forces the next access to renew."""
        grohe_auth = GroheAuthSession(session)
        grohe_auth._state.access_token = "old"  # noqa: SLF001
        grohe_auth.adopt_refresh_token("refresh-9")

        assert grohe_auth.refresh_token == "refresh-9"
        assert grohe_auth.access_token is None
        assert grohe_auth.has_valid_access_token is False


class TestClassifyLocation:
    """Tests for classify_location function."""

    def test_ondus_location_becomes_token_exchange(self) -> None:
        """Test that the private scheme is rewritten to https."""
        target = classify_location(f"{ONDUS_TOKEN_URL}?code=abc", CALLBACK_URL)
        assert target == TokenExchange(url=f"{TOKEN_URL}?code=abc")

    def test_absolute_location_is_followed(self) -> None:
        """Test that ordinary addresses are plain redirects."""
        assert classify_location(AUTH_URL, CALLBACK_URL) == HttpsRedirect(url=AUTH_URL)

    def test_relative_location_is_resolved(self) -> None:
        """Test that relative addresses resolve against the current one."""
        target = classify_location("/v3/iot/oidc/token", CALLBACK_URL)
        assert target == HttpsRedirect(url=TOKEN_URL)

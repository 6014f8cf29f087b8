"""Exceptions raised by the Grohe Smarthome API and session layers."""

from __future__ import annotations


class GroheError(Exception):
    """Base exception for Grohe Smarthome errors."""


class GroheInvalidInputError(GroheError):
    """Exception raised when a caller passes invalid arguments."""


class GroheAuthError(GroheError):
    """Base exception for session errors that need a fresh login."""


class GroheAuthenticationFailedError(GroheAuthError):
    """Exception raised when login or an authorized request is rejected."""

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class GroheInvalidCredentialError(GroheAuthError):
    """Exception raised when the provider rejects the refresh token."""


class GroheNoCredentialError(GroheAuthError):
    """Exception raised when renewal is requested without a refresh token."""


class GroheNotAuthenticatedError(GroheAuthError):
    """Exception raised when no refresh token exists to renew from."""


class GroheLoginError(GroheError):
    """Base exception for login and renewal protocol errors."""


class GroheRenewalFailedError(GroheLoginError):
    """Exception raised when token renewal fails for a non-auth reason."""


class GroheTooManyRedirectsError(GroheLoginError):
    """Exception raised when the login page redirect chain is too long."""


class GroheFormNotFoundError(GroheLoginError):
    """Exception raised when the login page carries no form target."""


class GroheRedirectChainFailedError(GroheLoginError):
    """Exception raised when the post-login chain never reaches the token URL."""


class GroheTokenResponseInvalidError(GroheLoginError):
    """Exception raised when the token exchange lacks a token."""


class GroheEmptyResponseError(GroheLoginError):
    """Exception raised when the login page body is empty or not markup."""


class GroheLoginRejectedError(GroheLoginError):
    """Exception raised when the provider markup reports a failed login."""

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class GroheApiClientError(GroheError):
    """Exception raised for unsuccessful API responses."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class GroheRateLimitedError(GroheApiClientError):
    """Exception raised when the cloud answers 403 Forbidden."""


class GroheNotFoundError(GroheApiClientError):
    """Exception raised when the requested resource does not exist."""

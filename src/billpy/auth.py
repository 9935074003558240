"""Session authentication for Bill.com API."""

from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod

import httpx

from billpy.client_base import ClientConfig, check_response, response_data
from billpy.exceptions import BillAPIError, BillAuthError

logger = logging.getLogger(__name__)

# Bill.com answers with this code once a session has expired
SESSION_INVALID_CODE = "BDC_1109"


class BaseAuth(ABC):
    """Base authentication class.

    Bill.com carries the session in the form body of every call rather than
    in a header.
    """

    dev_key: str

    @abstractmethod
    def get_form_fields(self) -> dict[str, str]:
        """Get the ``sessionId``/``devKey`` fields for a request."""
        pass

    def invalidate(self, session_id: str | None = None) -> bool:
        """Forget a failed session. Returns True if a new one can be obtained.

        Args:
            session_id: The session the failed request carried; a newer
                session obtained meanwhile is kept
        """
        return False


class SessionAuth(BaseAuth):
    """Authentication with an existing session id."""

    def __init__(self, session_id: str, dev_key: str) -> None:
        """Initialize session authentication.

        Args:
            session_id: Session id returned by a previous login
            dev_key: Developer key issued by Bill.com
        """
        self.session_id = session_id
        self.dev_key = dev_key

    def get_form_fields(self) -> dict[str, str]:
        """Get authentication fields."""
        return {"sessionId": self.session_id, "devKey": self.dev_key}


def _login_form(user_name: str, password: str, org_id: str, dev_key: str) -> dict[str, str]:
    return {
        "userName": user_name,
        "password": password,
        "orgId": org_id,
        "devKey": dev_key,
    }


def _session_from_response(response: httpx.Response) -> str:
    try:
        check_response(response)
    except BillAPIError as e:
        raise BillAuthError(
            f"Unable to log in to Bill.com: {e.message}",
            status_code=e.status_code,
            response_data=e.response_data,
            error_code=e.error_code,
        ) from e
    data = response_data(response) or {}
    session_id = data.get("sessionId") if isinstance(data, dict) else None
    if not session_id:
        raise BillAuthError("Unable to log in to Bill.com: no session id returned")
    return session_id


class LoginAuth(BaseAuth):
    """Authentication with user credentials; logs in lazily and on expiry."""

    def __init__(
        self,
        user_name: str,
        password: str,
        org_id: str,
        dev_key: str,
        base_url: str = ClientConfig.BASE_URL,
        timeout: float = ClientConfig.DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize login authentication.

        Args:
            user_name: Bill.com user name
            password: Bill.com password
            org_id: Organization id
            dev_key: Developer key issued by Bill.com
            base_url: Base URL for API
            timeout: Login request timeout in seconds
        """
        self.user_name = user_name
        self.password = password
        self.org_id = org_id
        self.dev_key = dev_key
        self.login_url = f"{base_url.rstrip('/')}/Login.json"
        self.timeout = timeout
        self.session_id: str | None = None
        self._lock = threading.Lock()

    def get_form_fields(self) -> dict[str, str]:
        """Get authentication fields, logging in first if needed."""
        with self._lock:
            if self.session_id is None:
                self.session_id = self._login()
            return {"sessionId": self.session_id, "devKey": self.dev_key}

    def invalidate(self, session_id: str | None = None) -> bool:
        """Drop the session so the next request logs in again."""
        with self._lock:
            if session_id is None or self.session_id == session_id:
                self.session_id = None
        return True

    def _login(self) -> str:
        """Log in and return the new session id."""
        try:
            response = httpx.post(
                self.login_url,
                data=_login_form(self.user_name, self.password, self.org_id, self.dev_key),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise BillAuthError(f"Unable to send login request: {e}") from e
        session_id = _session_from_response(response)
        logger.info("Logged in to Bill.com as %s", self.user_name)
        return session_id


class AsyncLoginAuth(BaseAuth):
    """Async authentication with user credentials."""

    def __init__(
        self,
        user_name: str,
        password: str,
        org_id: str,
        dev_key: str,
        base_url: str = ClientConfig.BASE_URL,
        timeout: float = ClientConfig.DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize async login authentication.

        Args:
            user_name: Bill.com user name
            password: Bill.com password
            org_id: Organization id
            dev_key: Developer key issued by Bill.com
            base_url: Base URL for API
            timeout: Login request timeout in seconds
        """
        self.user_name = user_name
        self.password = password
        self.org_id = org_id
        self.dev_key = dev_key
        self.login_url = f"{base_url.rstrip('/')}/Login.json"
        self.timeout = timeout
        self.session_id: str | None = None
        self._lock = asyncio.Lock()

    async def get_form_fields_async(self) -> dict[str, str]:
        """Get authentication fields, logging in first if needed (async)."""
        async with self._lock:
            if self.session_id is None:
                self.session_id = await self._login()
            return {"sessionId": self.session_id, "devKey": self.dev_key}

    def get_form_fields(self) -> dict[str, str]:
        """Get authentication fields (sync fallback, doesn't log in)."""
        if self.session_id is None:
            raise BillAuthError("Not logged in; use get_form_fields_async()")
        return {"sessionId": self.session_id, "devKey": self.dev_key}

    def invalidate(self, session_id: str | None = None) -> bool:
        """Drop the session so the next request logs in again."""
        if session_id is None or self.session_id == session_id:
            self.session_id = None
        return True

    async def _login(self) -> str:
        """Log in and return the new session id."""
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.login_url,
                    data=_login_form(
                        self.user_name, self.password, self.org_id, self.dev_key
                    ),
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            raise BillAuthError(f"Unable to send login request: {e}") from e
        session_id = _session_from_response(response)
        logger.info("Logged in to Bill.com as %s", self.user_name)
        return session_id

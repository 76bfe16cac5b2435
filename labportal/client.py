"""HTTP client for the two portal services.

Mirrors what the portal web pages do: sign in against the auth service, keep
the bearer token, and talk to the logbook service with it. Submissions go
through the same total calculation and row checks as the browser form.
"""

import logging
from typing import Any

import httpx

from labportal.core import config
from labportal.records.forms import fill_totals, logbook_to_form, validate_row_completeness

logger = logging.getLogger(__name__)

AUTH_API = '/api/auth'
LOGBOOK_API = '/api/logbook'


class PortalError(Exception):
    """A request the portal answered with ``success: false``."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f'{status_code}: {message}')


class LabPortalClient:
    def __init__(
        self,
        auth_url: str | None = None,
        logbook_url: str | None = None,
        *,
        auth_http: httpx.Client | None = None,
        logbook_http: httpx.Client | None = None,
        timeout: float = 10.0,
    ):
        self.auth_http = auth_http or httpx.Client(
            base_url=auth_url or f'http://localhost:{config.AUTH_PORT}',
            timeout=timeout,
        )
        self.logbook_http = logbook_http or httpx.Client(
            base_url=logbook_url or f'http://localhost:{config.LOGBOOK_PORT}',
            timeout=timeout,
        )
        self.token: str | None = None
        self.user: dict | None = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self) -> None:
        self.auth_http.close()
        self.logbook_http.close()

    @property
    def is_logged_in(self) -> bool:
        return bool(self.token)

    @property
    def role(self) -> str | None:
        return (self.user or {}).get('role')

    def _headers(self) -> dict:
        if not self.token:
            return {}
        return {'Authorization': f'Bearer {self.token}'}

    def _request(self, http: httpx.Client, method: str, path: str, **kwargs) -> dict:
        response = http.request(method, path, headers=self._headers(), **kwargs)
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.is_error or not payload.get('success', False):
            message = payload.get('error') or response.reason_phrase or 'Request failed'
            raise PortalError(response.status_code, message)
        return payload

    def _remember(self, payload: dict) -> dict:
        self.token = payload['token']
        self.user = payload['user']
        return self.user

    # Auth service

    def register(self, name: str, rgno: int, password: str, **details: Any) -> dict:
        body = {'name': name, 'rgno': rgno, 'password': password, **details}
        return self._remember(self._request(self.auth_http, 'POST', f'{AUTH_API}/register', json=body))

    def login(self, rgno: int, password: str) -> dict:
        body = {'rgno': rgno, 'password': password}
        return self._remember(self._request(self.auth_http, 'POST', f'{AUTH_API}/login', json=body))

    def logout(self) -> None:
        try:
            self._request(self.auth_http, 'POST', f'{AUTH_API}/logout')
        except (httpx.HTTPError, PortalError) as exc:
            logger.warning('Logout request failed: %s', exc)
        finally:
            self.token = None
            self.user = None

    def verify(self) -> dict:
        return self._request(self.auth_http, 'POST', f'{AUTH_API}/verify')['user']

    def profile(self) -> dict:
        return self._request(self.auth_http, 'GET', f'{AUTH_API}/profile')['user']

    def change_password(self, current_password: str, new_password: str) -> None:
        body = {'currentPassword': current_password, 'newPassword': new_password}
        self._request(self.auth_http, 'POST', f'{AUTH_API}/change-password', json=body)

    # Logbook service

    def submit_logbook(self, form: dict) -> dict:
        """Fill in derived totals, check row completeness and save the form.

        Returns the service reply, whose ``isUpdate`` tells a merge from a
        first save. Raises IncompleteRowError before sending anything.
        """
        validate_row_completeness(form)
        return self._request(self.logbook_http, 'POST', f'{LOGBOOK_API}/create', json=fill_totals(form))

    def my_logbooks(self) -> list[dict]:
        return self._request(self.logbook_http, 'GET', f'{LOGBOOK_API}/my-logbooks')['data']

    def all_logbooks(self) -> list[dict]:
        return self._request(self.logbook_http, 'GET', f'{LOGBOOK_API}/all')['data']

    def load_logbook(self, logbook_id: int) -> dict:
        return self._request(self.logbook_http, 'GET', f'{LOGBOOK_API}/{logbook_id}')['data']

    def load_form(self, logbook_id: int) -> dict:
        return logbook_to_form(self.load_logbook(logbook_id))

    def logbooks_by_roll(self, rollno: int) -> list[dict]:
        return self._request(self.logbook_http, 'GET', f'{LOGBOOK_API}/roll/{rollno}')['data']

    def logbooks_by_register(self, rgno: int) -> list[dict]:
        return self._request(self.logbook_http, 'GET', f'{LOGBOOK_API}/register/{rgno}')['data']

    def delete_logbook(self, logbook_id: int) -> None:
        self._request(self.logbook_http, 'DELETE', f'{LOGBOOK_API}/{logbook_id}')

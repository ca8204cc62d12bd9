# idcard/services.py
"""HTTP collaborators: OTP delivery/verification and application submission."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from .errors import ServiceError
from .form_data_builder import Role
from .submission import SubmissionPackage

logger = logging.getLogger(__name__)

class BackendClient:
    """
    One httpx client per wizard session. The backend keeps the verified
    session in a cookie, so OTP confirmation and submission must share it.
    """

    def __init__(self, base_url: str, timeout: float = 15.0,
                 transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = base_url.rstrip('/')
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.post(path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"POST {path} failed: {e}")
            raise ServiceError("Could not reach the server. Please try again.") from e

        if response.is_error:
            message = _error_message(response)
            logger.warning(f"POST {path} returned {response.status_code}: {message}")
            raise ServiceError(message, status_code=response.status_code)
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {'data': body}

    async def aclose(self) -> None:
        await self._client.aclose()

def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get('message'):
        return str(body['message'])
    return f"Request failed with status {response.status_code}"

class AuthService:
    def __init__(self, client: BackendClient) -> None:
        self._client = client

    async def request_otp(self, identifier: str, role: Role) -> None:
        key = 'rollNo' if role is Role.STUDENT else 'email'
        await self._client.post('/auth/send-otp', json={key: identifier, 'userType': role.value})

    async def confirm_otp(self, identifier: str, code: str, role: Role) -> dict[str, Any]:
        return await self._client.post(
            '/auth/verify-email', json={'email': identifier, 'otp': code, 'userType': role.value},
        )

    async def end_session(self) -> None:
        await self._client.post('/auth/logout')

class ApplicationService:
    def __init__(self, client: BackendClient) -> None:
        self._client = client

    async def submit(self, package: SubmissionPackage) -> dict[str, Any]:
        data, files = package.as_multipart()
        result = await self._client.post('/applications', data=data, files=files)
        logger.info(f"Application {package.provisional_id} accepted by the server.")
        return result

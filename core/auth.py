import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Header, Request

from domains.payment.errors import Unauthorized

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedUser:
    id: str


class SupabaseAuthClient:
    """Resolves a bearer token to a user through the Supabase Auth REST API."""

    def __init__(
        self,
        supabase_url: str,
        service_role_key: str,
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=f"{supabase_url}/auth/v1",
            headers={"apikey": service_role_key},
            timeout=timeout,
            transport=transport,
        )

    def get_user(self, token: str) -> Optional[AuthenticatedUser]:
        try:
            response = self._client.get(
                "/user", headers={"Authorization": f"Bearer {token}"}
            )
        except httpx.HTTPError as e:
            logger.error(f"❌ [Auth] Identity service unreachable: {e}")
            return None

        if response.status_code != 200:
            logger.warning(f"⚠️ [Auth] Token rejected ({response.status_code})")
            return None

        data = response.json()
        user_id = data.get("id")
        if not user_id:
            return None
        return AuthenticatedUser(id=str(user_id))

    def close(self) -> None:
        self._client.close()


def get_current_user(
    request: Request, authorization: Optional[str] = Header(default=None)
) -> AuthenticatedUser:
    """
    FastAPI dependency: ``Authorization: Bearer <token>`` -> AuthenticatedUser.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("Unauthorized")

    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise Unauthorized("Unauthorized")

    user = request.app.state.auth_client.get_user(token)
    if user is None:
        raise Unauthorized("Unauthorized")
    return user

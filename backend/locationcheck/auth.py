"""Bearer credential dependencies for HTTP routes and the realtime socket."""
from typing import Optional

from fastapi import Depends, Request, WebSocket
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import Unauthenticated

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_device(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    Resolve the device id from the Authorization bearer token.

    Raises:
        Unauthenticated: no bearer token was sent.
        Unauthorized: the token is invalid, expired or has been rotated.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated()
    return await request.app.state.services.registry.authenticate(credentials.credentials)


def websocket_token(websocket: WebSocket) -> Optional[str]:
    """Token from the handshake: `token` query parameter or Authorization header."""
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None

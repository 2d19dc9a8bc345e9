"""Device credential issuance and verification (signed JWTs)."""
import logging
import uuid
from datetime import datetime, timedelta, timezone

import jwt

from ..errors import CredentialExpired, CredentialInvalid

logger = logging.getLogger(__name__)


class CredentialService:
    """Issues and verifies bearer tokens bound to a device id."""

    def __init__(self, secret: str, algorithm: str = "HS256", expires_days: int = 30):
        self._secret = secret
        self.algorithm = algorithm
        self.expires = timedelta(days=expires_days)

    def issue(self, device_id: str) -> str:
        """Sign a new token for device_id.

        Every token carries a random jti so two tokens issued for the same
        device in the same second are still distinct.
        """
        now = datetime.now(timezone.utc)
        claims = {
            "deviceId": device_id,
            "iat": now,
            "exp": now + self.expires,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> str:
        """Return the device id embedded in a valid token.

        Raises:
            CredentialExpired: the token's exp has passed.
            CredentialInvalid: bad signature, malformed, or no deviceId claim.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "deviceId"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise CredentialExpired() from e
        except jwt.InvalidTokenError as e:
            logger.debug(f"Token rejected: {e}")
            raise CredentialInvalid() from e

        device_id = claims.get("deviceId")
        if not isinstance(device_id, str) or not device_id:
            raise CredentialInvalid()
        return device_id

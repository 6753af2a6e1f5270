"""
Identity verification for the handshake
"""

from typing import Any, Dict, Optional

import jwt

from .logger import get_logger, log_security_event
from .models import Identity

logger = get_logger()


class IdentityVerifier:
    """Validates signed credential tokens issued by the login service"""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self._secret = secret
        self._algorithm = algorithm

    def verify(self, token: str) -> Optional[Identity]:
        """
        Resolve a token to the caller identity

        Args:
            token: Opaque credential from the ``hi`` event

        Returns:
            Identity, or None if the token is invalid
        """
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.PyJWTError as e:
            log_security_event("token_rejected", {"reason": type(e).__name__})
            return None

        return _identity_from_claims(claims)

    def create_token(self, identity: Identity) -> str:
        """Sign the claims the login service issues; used by tooling and tests"""
        return jwt.encode(
            {"id": identity.id, "username": identity.username},
            self._secret,
            algorithm=self._algorithm,
        )


def _identity_from_claims(claims: Dict[str, Any]) -> Optional[Identity]:
    user_id = claims.get("id")
    username = claims.get("username")

    if isinstance(user_id, bool) or not isinstance(user_id, int) or not isinstance(username, str):
        log_security_event("token_claims_invalid", {"claims": sorted(claims.keys())})
        return None

    return Identity(id=user_id, username=username)

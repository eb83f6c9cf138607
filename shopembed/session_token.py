"""
The session token lets later requests skip the oauth dance.

It is not signed.  Instead every presentation is checked against the
credential store, so the token is only as good as the access token it
carries: rotating or deleting a shop's credential invalidates every token
already handed out for it.
"""
import logging
from dataclasses import dataclass, field

from .cookieserializer import get_default_session_token_serializer
from .errors import SessionTokenError
from .models import Credential

logger = logging.getLogger(__name__)


SESSION_TOKEN_COOKIE_NAME = "session-token"


HOUR_IN_SECONDS = 60 * 60


@dataclass(frozen=True)
class SessionToken:
    shop: str
    credential: Credential

    def to_dict(self):
        return {"shop": self.shop, "oauth_token": self.credential.to_dict()}

    @classmethod
    def from_dict(cls, token_dict):
        shop = token_dict["shop"]
        if not isinstance(shop, str) or not shop:
            raise TypeError("shop must be a non-empty string")
        return cls(shop=shop, credential=Credential.from_dict(token_dict["oauth_token"]))


@dataclass
class SessionTokenCodec:
    # Interface of webob.cookies.Base64Serializer.
    serializer: object = field(default_factory=get_default_session_token_serializer)

    def encode(self, session_token):
        return self.serializer.dumps(session_token.to_dict()).decode("ascii")

    def decode(self, value):
        try:
            return SessionToken.from_dict(self.serializer.loads(value.encode("utf8")))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise SessionTokenError(f"Malformed session token: {e}") from e

    def verify(self, value, credential_store):
        """
        Decode the cookie value and check it against the stored credential.

        Returns a SessionToken holding the credential currently on file.
        Errors from the store itself are not caught.
        """
        if not value:
            raise SessionTokenError("Missing session token.")
        session_token = self.decode(value)
        current = credential_store.get(session_token.shop)
        if current is None:
            raise SessionTokenError(f"Unknown shop `{session_token.shop}`.")
        if not current.matches(session_token.credential):
            raise SessionTokenError(
                f"Session token credential is stale for `{session_token.shop}`."
            )
        return SessionToken(shop=session_token.shop, credential=current)

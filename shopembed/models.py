from dataclasses import dataclass
import hmac

from .scopes import format_scope, parse_scope


@dataclass(frozen=True)
class Credential:
    """
    The access token shopify granted a shop on install, and the granted scopes.
    """

    access_token: str
    # Ordered, as shopify returned them.
    scope: tuple = ()

    def matches(self, other):
        """
        Check that `other` holds the same access token.

        The scope is informational only, rotating the token is what revokes.
        """
        if other is None:
            return False
        return hmac.compare_digest(
            self.access_token.encode("utf8"), other.access_token.encode("utf8")
        )

    def to_dict(self):
        return {"access_token": self.access_token, "scope": format_scope(self.scope)}

    @classmethod
    def from_dict(cls, credential_dict):
        access_token = credential_dict["access_token"]
        if not isinstance(access_token, str):
            raise TypeError("access_token must be a string")
        return cls(
            access_token=access_token,
            scope=parse_scope(credential_dict.get("scope") or ""),
        )


@dataclass(frozen=True)
class ShopContext:
    """
    Set once a request is known to come from an installed shop and passed
    down to every later stage and the protected handler.
    """

    # The shop host, ie. "some-shop.myshopify.com".
    shop: str
    credential: Credential

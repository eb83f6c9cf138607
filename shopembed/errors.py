class ShopEmbedError(Exception):
    """Base for errors raised by shopembed."""


class SignatureError(ShopEmbedError, ValueError):
    """The request parameters could not be verified."""


class SignatureMissingError(SignatureError):
    """Neither an `hmac` nor a `signature` parameter was supplied."""


class SignatureMismatchError(SignatureError):
    pass


class StaleRequestError(SignatureMismatchError):
    """The signed timestamp is missing or outside of the replay window."""


class SessionTokenError(ShopEmbedError, ValueError):
    pass


class AdminAPIError(ShopEmbedError):
    """The shop's admin api answered with something we can't use."""

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UnexpectedContentTypeError(AdminAPIError):
    """
    Usually an html error page returned in place of json.
    """

"""
Verify that query parameters were signed by shopify with our api secret.

Shopify uses two schemes depending on where the request comes from:

hmac: admin and oauth requests, HMAC-SHA256 hex digest of the canonical params.
signature: app proxy requests (legacy), same digest but the canonical params
    are concatenated without the "&" separators.
"""
import base64
import hashlib
import hmac
import logging
import secrets
import time
from urllib.parse import unquote_plus, urlencode

from .errors import SignatureMismatchError, SignatureMissingError, StaleRequestError

logger = logging.getLogger(__name__)


HMAC_PARAM = "hmac"


SIGNATURE_PARAM = "signature"


# In bytes, before encoding.
STATE_SIZE = 16


def encode_params(param_items):
    """
    Build the canonical string shopify signs.

    Sort by key only so repeated keys keep their order, urlencode and then
    decode the result once.  The decode is what makes "a%3D%3D" and "a=="
    sign the same, shopify signs unescaped values.
    """
    items = sorted(param_items, key=lambda item: item[0])
    return unquote_plus(urlencode(items))


def compute_hmac(api_secret, param_items):
    return _hexdigest(api_secret, encode_params(param_items))


def compute_signature(api_secret, param_items):
    return _hexdigest(api_secret, encode_params(param_items).replace("&", ""))


def _hexdigest(api_secret, message):
    return hmac.new(
        api_secret.encode("utf8"), message.encode("utf8"), hashlib.sha256
    ).hexdigest()


SCHEMES = {
    HMAC_PARAM: compute_hmac,
    SIGNATURE_PARAM: compute_signature,
}


def sign_params(api_secret, params):
    """Return a copy of `params` with a valid `hmac` param added."""
    signed = {k: v for k, v in params.items() if k != HMAC_PARAM}
    signed[HMAC_PARAM] = compute_hmac(api_secret, signed.items())
    return signed


def signatures_match(expected, supplied):
    if not supplied:
        return False
    return hmac.compare_digest(expected.encode("utf8"), supplied.encode("utf8"))


def verify_params(api_secret, param_items, replay_window_seconds=None, now=None):
    """
    Check the signature of a request's params, raise if it does not verify.

    param_items:
        (key, value) pairs of the query, repeated keys allowed.
    replay_window_seconds:
        If given the signed `timestamp` must be at most this old.

    raise:
        SignatureMissingError if there is nothing to verify against,
        SignatureMismatchError if the signature is wrong or stale.
    """
    param_items = list(param_items)
    keys = [k for k, _ in param_items]
    if HMAC_PARAM in keys:
        scheme_param = HMAC_PARAM
    elif SIGNATURE_PARAM in keys:
        scheme_param = SIGNATURE_PARAM
    else:
        raise SignatureMissingError(f"Missing `{HMAC_PARAM}` parameter.")
    supplied = next(v for k, v in param_items if k == scheme_param)
    if not supplied:
        raise SignatureMissingError(f"Missing `{scheme_param}` parameter.")

    remaining = [(k, v) for k, v in param_items if k != scheme_param]
    expected = SCHEMES[scheme_param](api_secret, remaining)
    if not signatures_match(expected, supplied):
        raise SignatureMismatchError(f"The `{scheme_param}` parameter does not match.")

    if replay_window_seconds is not None:
        check_for_replay(
            dict(remaining).get("timestamp"),
            replay_window_seconds,
            now=now if now is not None else time.time(),
        )
    return scheme_param


def check_for_replay(timestamp, allow_seconds, now):
    try:
        timestamp = int(timestamp)
    except (TypeError, ValueError):
        raise StaleRequestError("Missing or malformed `timestamp` parameter.")
    if timestamp < now - allow_seconds:
        raise StaleRequestError("Likely replay attack, timestamp is too old.")


def generate_state(size=STATE_SIZE):
    """
    Random value tying the install redirect to its callback.

    Errors from the entropy source are not caught, this is our csrf defense.
    """
    return base64.urlsafe_b64encode(secrets.token_bytes(size)).decode("ascii")

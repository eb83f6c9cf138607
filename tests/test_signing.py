import base64

import pytest

from shopembed.errors import (
    SignatureMismatchError,
    SignatureMissingError,
    StaleRequestError,
)
from shopembed.signing import (
    compute_hmac,
    compute_signature,
    encode_params,
    generate_state,
    sign_params,
    verify_params,
)


SECRET = "abcdefgh"


PARAMS = [
    ("code", "0907a61c0c8d55e99db179b68161bc00"),
    ("shop", "some-shop.myshopify.com"),
    ("state", "0.6784241404160823"),
    ("timestamp", "1337178173"),
]


PARAMS_HMAC = "26015c6ad20dccdc7017bc4ad3b7c7b239a18db8c79e26945e13d0ca551ae996"


def test_encode_params_sorts_by_key():
    assert encode_params(reversed(PARAMS)) == (
        "code=0907a61c0c8d55e99db179b68161bc00&shop=some-shop.myshopify.com"
        "&state=0.6784241404160823&timestamp=1337178173"
    )


def test_encode_params_keeps_order_of_repeated_keys():
    assert encode_params([("ids", "2"), ("a", "x"), ("ids", "1")]) == "a=x&ids=2&ids=1"


def test_compute_hmac_known_value():
    assert compute_hmac(SECRET, PARAMS) == PARAMS_HMAC


def test_compute_hmac_escaped_and_unescaped_values_agree():
    unescaped = [(k, "a==" if k == "state" else v) for k, v in PARAMS]
    expected = "02efe8e8d299cb8d403022a485b6685cd186f499258110568c9af306a3598083"
    assert compute_hmac(SECRET, unescaped) == expected


def test_compute_signature_known_value():
    assert compute_signature(SECRET, PARAMS) == (
        "730d741f7232339b0d50e2500bdb0e8d29c820c17479a8b8b94ae9b863db79c1"
    )


def test_verify_params_hmac():
    assert verify_params(SECRET, PARAMS + [("hmac", PARAMS_HMAC)]) == "hmac"


def test_verify_params_hmac_anywhere_in_the_query():
    assert verify_params(SECRET, [("hmac", PARAMS_HMAC)] + PARAMS) == "hmac"


def test_verify_params_legacy_signature():
    signature = compute_signature(SECRET, PARAMS)
    assert verify_params(SECRET, PARAMS + [("signature", signature)]) == "signature"


def test_verify_params_changed_param_fails():
    params = [(k, "2337178173" if k == "timestamp" else v) for k, v in PARAMS]
    with pytest.raises(SignatureMismatchError):
        verify_params(SECRET, params + [("hmac", PARAMS_HMAC)])


def test_verify_params_wrong_secret_fails():
    with pytest.raises(SignatureMismatchError):
        verify_params("hgfedcba", PARAMS + [("hmac", PARAMS_HMAC)])


def test_verify_params_uppercase_hex_fails():
    with pytest.raises(SignatureMismatchError):
        verify_params(SECRET, PARAMS + [("hmac", PARAMS_HMAC.upper())])


@pytest.mark.parametrize("params", [PARAMS, PARAMS + [("hmac", "")]])
def test_verify_params_missing(params):
    with pytest.raises(SignatureMissingError):
        verify_params(SECRET, params)


def test_sign_params_verifies():
    signed = sign_params(SECRET, {"shop": "a.myshopify.com", "timestamp": "1"})
    assert verify_params(SECRET, signed.items()) == "hmac"


def test_sign_params_replaces_existing_hmac():
    signed = sign_params(SECRET, {"shop": "a.myshopify.com", "hmac": "junk"})
    assert signed["hmac"] != "junk"
    assert verify_params(SECRET, signed.items()) == "hmac"


def test_replay_window():
    signed = sign_params(SECRET, {"shop": "a.myshopify.com", "timestamp": "1000"})
    verify_params(SECRET, signed.items(), replay_window_seconds=60, now=1050)
    with pytest.raises(StaleRequestError):
        verify_params(SECRET, signed.items(), replay_window_seconds=60, now=1061)


def test_replay_window_requires_timestamp():
    signed = sign_params(SECRET, {"shop": "a.myshopify.com"})
    with pytest.raises(StaleRequestError):
        verify_params(SECRET, signed.items(), replay_window_seconds=60, now=1000)


def test_generate_state():
    state = generate_state()
    assert len(base64.urlsafe_b64decode(state)) == 16
    assert generate_state() != state


def test_generate_state_entropy_failure_propagates(monkeypatch):
    def fail(size):
        raise OSError("no entropy")

    monkeypatch.setattr("shopembed.signing.secrets.token_bytes", fail)
    with pytest.raises(OSError):
        generate_state()

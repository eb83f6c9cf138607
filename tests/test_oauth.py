from urllib.parse import parse_qsl, urlsplit

import pytest

from shopembed import INTERNAL_ERROR_MESSAGE, VERIFICATION_FAILED_MESSAGE
from shopembed.errors import UnexpectedContentTypeError
from shopembed.models import Credential
from shopembed.session_token import SessionToken, SessionTokenCodec
from shopembed.signing import sign_params, verify_params

from .conftest import API_SECRET, SHOP
from .fakes import CALLBACK_URL, DummyWebShim, RecordingInstallHandler


def signed(params, secret=API_SECRET):
    return sign_params(secret, params)


def test_missing_shop(make_service):
    shop_context, response = make_service(DummyWebShim(signed({"timestamp": "1"}))).negotiate()
    assert shop_context is None
    assert response.status == 400
    assert response.body == "Missing `shop` parameter."


def test_new_shop_redirects_to_install(make_service):
    web_shim = DummyWebShim(signed({"shop": SHOP, "timestamp": "1"}))
    service = make_service(web_shim, state_generator=lambda: "nonce")
    shop_context, response = service.negotiate()

    assert shop_context is None
    assert response.status == 302
    url = urlsplit(response.location)
    assert (url.scheme, url.netloc, url.path) == ("https", SHOP, "/admin/oauth/authorize")
    assert parse_qsl(url.query) == [
        ("client_id", "test-api-key"),
        ("redirect_uri", CALLBACK_URL),
        ("scope", "read_products,write_script_tags"),
        ("state", "nonce"),
    ]
    assert web_shim.cookies_set["state"] == dict(
        value="nonce", httponly=True, samesite="lax", secure=True, max_age=600
    )
    assert "session-token" not in web_shim.cookies_set


def test_install_redirect_uses_fresh_state(make_service):
    states = []
    for _ in range(2):
        web_shim = DummyWebShim(signed({"shop": SHOP, "timestamp": "1"}))
        make_service(web_shim).negotiate()
        states.append(web_shim.cookies_set["state"]["value"])
    assert states[0] != states[1]


def test_state_generator_failure_is_internal_error(make_service, error_handler):
    def fail():
        raise OSError("no entropy")

    web_shim = DummyWebShim(signed({"shop": SHOP, "timestamp": "1"}))
    _, response = make_service(web_shim, state_generator=fail).negotiate()
    assert response.status == 500
    assert "state" not in web_shim.cookies_set
    assert len(error_handler.errors) == 1


def test_embedded_install_breaks_out_of_iframe(make_service, config):
    config.embedded = True
    web_shim = DummyWebShim(signed({"shop": SHOP, "timestamp": "1"}))
    _, response = make_service(web_shim, state_generator=lambda: "nonce").negotiate()
    assert response.status == 200
    assert "window.top.location.href = redirectUrl;" in response.body
    assert f'"https://{SHOP}/admin/oauth/authorize?client_id=test-api-key' in response.body


def test_client_redirect_escapes_script_end(make_service, config):
    config.embedded = True
    service = make_service(DummyWebShim())
    response = service.client_redirect("https://x.example.com/</script><script>")
    assert "</script><script>" not in response.body
    assert '"https://x.example.com/<\\/script><script>"' in response.body


def test_installed_shop_gets_context(make_service, credential_store, credential):
    credential_store.update(SHOP, credential)
    web_shim = DummyWebShim(signed({"shop": SHOP, "timestamp": "1"}))
    shop_context, response = make_service(web_shim).negotiate()

    assert response is None
    assert shop_context.shop == SHOP
    assert shop_context.credential == credential
    cookie = web_shim.cookies_set["session-token"]
    assert cookie["secure"] and cookie["max_age"] == 3600
    assert SessionTokenCodec().decode(cookie["value"]) == SessionToken(SHOP, credential)
    assert web_shim.response_headers["Content-Security-Policy"] == "frame-ancestors 'none';"


def test_embedded_installed_shop_may_be_framed_by_admin(make_service, config, credential_store, credential):
    config.embedded = True
    credential_store.update(SHOP, credential)
    web_shim = DummyWebShim(signed({"shop": SHOP, "timestamp": "1"}))
    make_service(web_shim).negotiate()
    assert web_shim.response_headers["Content-Security-Policy"] == (
        f"frame-ancestors https://{SHOP} https://admin.shopify.com;"
    )


def test_store_error_is_generic_500(make_service, error_handler):
    class BrokenStore:
        def get(self, shop):
            raise RuntimeError("password=hunter2")

    web_shim = DummyWebShim(signed({"shop": SHOP, "timestamp": "1"}))
    _, response = make_service(web_shim, credential_store=BrokenStore()).negotiate()
    assert response.status == 500
    assert response.body == INTERNAL_ERROR_MESSAGE
    assert "hunter2" not in response.body
    assert [shop for shop, _ in error_handler.errors] == [SHOP]


def test_scope_change_reinstalls_when_enabled(make_service, config, credential_store):
    credential_store.update(SHOP, Credential("shpat_abc", ("read_products",)))
    web_shim = DummyWebShim(signed({"shop": SHOP, "timestamp": "1"}))
    shop_context, response = make_service(web_shim).negotiate()
    assert shop_context is not None

    config.reinstall_on_scope_change = True
    shop_context, response = make_service(web_shim).negotiate()
    assert shop_context is None
    assert response.status == 302


def test_scope_implied_by_write_does_not_reinstall(make_service, config, credential_store):
    config.reinstall_on_scope_change = True
    config.access_scopes = ("read_script_tags",)
    credential_store.update(SHOP, Credential("shpat_abc", ("write_script_tags",)))
    web_shim = DummyWebShim(signed({"shop": SHOP, "timestamp": "1"}))
    shop_context, _ = make_service(web_shim).negotiate()
    assert shop_context is not None


def callback_shim(state="nonce", code="the-code", state_cookie="nonce"):
    params = {"shop": SHOP, "state": state, "timestamp": "1"}
    if code is not None:
        params["code"] = code
    cookies = {"state": state_cookie} if state_cookie is not None else {}
    return DummyWebShim(signed(params), cookies=cookies)


def test_callback_stores_credential(make_service, admin_client, credential_store, credential):
    web_shim = callback_shim()
    installs = RecordingInstallHandler()
    shop_context, response = make_service(
        web_shim, app_installed_handler=installs
    ).negotiate()

    assert shop_context is None
    assert admin_client.exchanges == [(SHOP, "test-api-key", API_SECRET, "the-code")]
    assert credential_store.get(SHOP) == credential
    assert installs.installs == [(SHOP, credential)]
    assert web_shim.cookies_expired == ["state"]

    assert response.status == 302
    url = urlsplit(response.location)
    assert (url.scheme, url.netloc, url.path) == ("https", "app.example.com", "/")
    params = parse_qsl(url.query)
    assert dict(params)["shop"] == SHOP
    assert dict(params)["timestamp"] == "1700000000"
    assert verify_params(API_SECRET, params) == "hmac"


def test_public_url_keeps_its_own_query(make_service, config):
    config.public_url = "https://app.example.com/app?lang=en"
    url = urlsplit(make_service(DummyWebShim()).get_public_url(SHOP))
    assert url.path == "/app"
    assert url.query.startswith("lang=en&shop=")


@pytest.mark.parametrize(
    "state, state_cookie",
    [
        ("nonce", None),
        ("nonce", ""),
        ("nonce", "nonc"),
        ("nonce", "NONCE"),
        ("nonce", "other"),
        ("nonce ", "nonce"),
    ],
)
def test_callback_state_mismatch(make_service, admin_client, credential_store, state, state_cookie):
    web_shim = callback_shim(state=state, state_cookie=state_cookie)
    shop_context, response = make_service(web_shim).negotiate()
    assert shop_context is None
    assert response.status == 403
    assert admin_client.exchanges == []
    assert credential_store.get(SHOP) is None


def test_callback_missing_code(make_service, admin_client):
    _, response = make_service(callback_shim(code=None)).negotiate()
    assert response.status == 400
    assert response.body == "Missing `code` parameter."
    assert admin_client.exchanges == []


def test_callback_exchange_failure(make_service, admin_client, credential_store, error_handler):
    admin_client.exchange_error = UnexpectedContentTypeError("text/html")
    web_shim = callback_shim()
    _, response = make_service(web_shim).negotiate()
    assert response.status == 500
    assert response.body == INTERNAL_ERROR_MESSAGE
    assert credential_store.get(SHOP) is None
    assert error_handler.errors == [(SHOP, admin_client.exchange_error)]
    assert web_shim.cookies_expired == []


def test_verify_signature(make_service):
    assert make_service(DummyWebShim(signed({"shop": SHOP, "timestamp": "1"}))).verify_signature() is None


def test_verify_signature_bad(make_service):
    params = signed({"shop": SHOP, "timestamp": "1"})
    params["timestamp"] = "2"
    response = make_service(DummyWebShim(params)).verify_signature()
    assert response.status == 403


def test_verify_signature_missing(make_service):
    response = make_service(DummyWebShim({"shop": SHOP})).verify_signature()
    assert response.status == 400


def test_verify_signature_replay_window(make_service, config):
    config.replay_window_seconds = 60
    params = signed({"shop": SHOP, "timestamp": "1000"})
    assert make_service(DummyWebShim(params), clock=lambda: 1030).verify_signature() is None
    response = make_service(DummyWebShim(params), clock=lambda: 2000).verify_signature()
    assert response.status == 403


def session_token_shim(credential, shop=SHOP):
    value = SessionTokenCodec().encode(SessionToken(shop, credential))
    return DummyWebShim(cookies={"session-token": value})


def test_verify_session_token(make_service, credential_store, credential):
    credential_store.update(SHOP, credential)
    web_shim = session_token_shim(credential)
    shop_context, response = make_service(web_shim).verify_session_token()
    assert response is None
    assert shop_context.shop == SHOP
    assert "session-token" in web_shim.cookies_set


def test_verify_session_token_missing(make_service):
    shop_context, response = make_service(DummyWebShim()).verify_session_token()
    assert shop_context is None
    assert response.status == 403


def test_verify_session_token_after_uninstall(make_service, credential_store, credential):
    credential_store.update(SHOP, credential)
    web_shim = session_token_shim(credential)
    credential_store.delete(SHOP)
    _, response = make_service(web_shim).verify_session_token()
    assert response.status == 403


def test_verify_session_token_rotated(make_service, credential_store, credential):
    credential_store.update(SHOP, Credential("shpat_new", credential.scope))
    _, response = make_service(session_token_shim(credential)).verify_session_token()
    assert response.status == 403


def test_verify_session_token_store_error(make_service, credential, error_handler):
    class BrokenStore:
        def get(self, shop):
            raise RuntimeError("db down")

    service = make_service(session_token_shim(credential), credential_store=BrokenStore())
    _, response = service.verify_session_token()
    assert response.status == 500
    assert len(error_handler.errors) == 1


def test_verify_proxy_access(make_service, credential_store, credential):
    credential_store.update(SHOP, credential)
    shop_context, response = make_service(DummyWebShim({"shop": SHOP})).verify_proxy_access()
    assert response is None
    assert shop_context.credential == credential


def test_verify_proxy_access_unknown_shop(make_service):
    shop_context, response = make_service(DummyWebShim({"shop": SHOP})).verify_proxy_access()
    assert shop_context is None
    assert response.status == 403


def test_verify_proxy_access_missing_shop(make_service):
    _, response = make_service(DummyWebShim()).verify_proxy_access()
    assert response.status == 400


def test_session_token_cookie_samesite_none_when_embedded(make_service, config, credential_store, credential):
    config.embedded = True
    credential_store.update(SHOP, credential)
    web_shim = DummyWebShim(signed({"shop": SHOP, "timestamp": "1"}))
    make_service(web_shim).negotiate()
    cookie = web_shim.cookies_set["session-token"]
    assert cookie["samesite"] == "none"
    assert cookie["secure"] is True


def test_session_token_cookie_samesite_not_embedded(make_service, credential_store, credential):
    credential_store.update(SHOP, credential)
    web_shim = session_token_shim(credential)
    make_service(web_shim).verify_session_token()
    assert web_shim.cookies_set["session-token"]["samesite"] is None


def test_session_token_cookie_samesite_configured(make_service, config, credential_store, credential):
    config.embedded = True
    config.session_token_samesite = "strict"
    credential_store.update(SHOP, credential)
    web_shim = session_token_shim(credential)
    make_service(web_shim).verify_session_token()
    assert web_shim.cookies_set["session-token"]["samesite"] == "strict"


def test_failed_checks_share_one_body(make_service):
    params = signed({"shop": SHOP, "timestamp": "1"})
    params["timestamp"] = "2"
    bodies = [
        make_service(DummyWebShim(params)).verify_signature().body,
        make_service(callback_shim(state_cookie="other")).negotiate()[1].body,
        make_service(DummyWebShim()).verify_session_token()[1].body,
        make_service(DummyWebShim({"shop": SHOP})).verify_proxy_access()[1].body,
    ]
    assert bodies == [VERIFICATION_FAILED_MESSAGE] * 4

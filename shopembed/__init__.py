"""
@NOTE: Resolution for shop naming.

shop: The shop host provided by shopify in the `shop` param,
    ie. "some-shop.myshopify.com".  Used as the key everywhere, never parsed.

@NOTE: Resolution for the cookies we set.

state: Short lived, carries the nonce from our redirect to shopify's consent
    screen until shopify calls us back.  Expired as soon as it is used.
session-token: The shop and its credential, refreshed on every request that
    verifies.  It is checked against the credential store each time so it does
    not need to be signed, see `session_token`.
"""
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from urllib.parse import urlencode, urlsplit, urlunsplit

from .admin_api import AdminAPIClient
from .errors import SessionTokenError, SignatureError, SignatureMissingError
from .interfaces import (
    IAdminAPIClient,
    IAppInstalledHandler,
    ICredentialStore,
    IErrorHandler,
    IWebShim,
)
from .models import Credential, ShopContext
from .pipeline import (
    compose,
    ensure_script_tags,
    negotiate_oauth,
    verify_proxy_access,
    verify_session_token,
    verify_signature,
)
from .scopes import WRITE_SCRIPT_TAGS, format_scope, scopes_have_changed
from .script_tags import ScriptTagReconciler
from .session_token import (
    HOUR_IN_SECONDS,
    SESSION_TOKEN_COOKIE_NAME,
    SessionToken,
    SessionTokenCodec,
)
from .signing import generate_state, sign_params, verify_params

logger = logging.getLogger(__name__)


MINUTE_IN_SECONDS = 60


INTERNAL_ERROR_MESSAGE = (
    "Internal server error: you may contact the application administrator."
)


# Same body for every failed check, the client is not told which one.
VERIFICATION_FAILED_MESSAGE = "Verification failed."


@dataclass
class ShopEmbedConfig:
    """
    Mechanism to provide configuration to ShopEmbedService.
    """

    api_key: str
    api_secret: str
    # Where the app is served, we send the shop back here after install.
    public_url: str
    # The shopify access scopes that our app needs, such as read_orders, write_orders, etc.
    access_scopes: tuple
    # If the app will be embedded in an iframe in the admin.
    embedded: bool = True
    state_cookie_name: str = "state"
    state_cookie_max_age: int = 10 * MINUTE_IN_SECONDS
    session_token_cookie_name: str = SESSION_TOKEN_COOKIE_NAME
    session_token_max_age: int = HOUR_IN_SECONDS
    # Defaults to "none" when embedded so the cookie comes back inside the
    # admin iframe, otherwise left to the browser.
    session_token_samesite: str = None
    # Reject signed requests whose timestamp is older than this, off if None.
    replay_window_seconds: int = None
    # Send shops back through install when they granted less than we need now.
    reinstall_on_scope_change: bool = False


@dataclass
class ShopEmbedService:
    """
    Negotiate shopify oauth for the current request and guard the app behind it.

    One of these is made per request around the request's web shim.  Methods
    return either a result and no response, or a response to send as is.
    """

    config: ShopEmbedConfig
    web_shim: IWebShim
    credential_store: ICredentialStore
    admin_client: IAdminAPIClient
    error_handler: IErrorHandler = None
    # Optional handler for app installs.
    app_installed_handler: IAppInstalledHandler = None
    script_tag_reconciler: ScriptTagReconciler = None
    session_token_codec: SessionTokenCodec = field(default_factory=SessionTokenCodec)
    state_generator: callable = field(default=generate_state)
    clock: callable = field(default=time.time)
    client_redirect_html_content_fmt: str = """<!DOCTYPE html>
<html>
  <head>
    <script>
      var redirectUrl = %s;
      if (window.top === window.self) {
        window.location.href = redirectUrl;
      } else {
        window.top.location.href = redirectUrl;
      }
    </script>
  </head>
  <body></body>
</html>"""

    def __post_init__(self):
        if self.script_tag_reconciler is None:
            self.script_tag_reconciler = ScriptTagReconciler(self.admin_client)

    def verify_signature(self):
        """Return an error response unless the params are signed by shopify."""
        try:
            verify_params(
                self.config.api_secret,
                self.web_shim.get_param_items(),
                replay_window_seconds=self.config.replay_window_seconds,
                now=self.clock(),
            )
        except SignatureMissingError as e:
            return self.web_shim.response_bad_request(f"{e}")
        except SignatureError as e:
            # Don't tell the client which check failed.
            logger.warning(
                f"Signature verification failed for {self.web_shim.get_param('shop')}: {e}"
            )
            return self.web_shim.response_403(VERIFICATION_FAILED_MESSAGE)
        return None

    def negotiate(self):
        """
        Decide between serving the app, starting install or finishing it.

        Returns a 2-tuple of (shop_context, response).
        """
        shop = self.web_shim.get_param("shop")
        if not shop:
            return None, self.web_shim.response_bad_request("Missing `shop` parameter.")

        # If we have a state, assume we are being called back after an install/update.
        if self.web_shim.get_param("state"):
            return None, self.auth_callback(shop)

        try:
            credential = self.credential_store.get(shop)
        except Exception as e:
            return None, self.handle_error(shop, e)

        if credential is None:
            logger.info(f"No credential for {shop}, redirecting to install.")
            return None, self.redirect_to_install(shop)
        elif self.config.reinstall_on_scope_change and scopes_have_changed(
            installed_scopes=credential.scope,
            expected_scopes=self.config.access_scopes,
        ):
            logger.info(f"Scopes have changed for {shop}, redirecting to re-install.")
            return None, self.redirect_to_install(shop)

        shop_context = ShopContext(shop=shop, credential=credential)
        self.set_session_token_cookie(shop_context)
        self.set_app_headers(shop)
        return shop_context, None

    def redirect_to_install(self, shop):
        """
        Stash a fresh state in a cookie and send the browser to shopify's consent screen.
        """
        try:
            state = self.state_generator()
        except Exception as e:
            return self.handle_error(shop, e)

        # Checked against the state param when shopify calls us back.
        self.web_shim.set_cookie(
            self.config.state_cookie_name,
            state,
            max_age=self.config.state_cookie_max_age,
            secure=True,
            httponly=True,
            samesite="lax",
        )
        query_string = urlencode(
            sorted(
                {
                    "client_id": self.config.api_key,
                    # The scopes our app needs, like write_orders, read_orders, etc.
                    "scope": format_scope(self.config.access_scopes),
                    # This tells shopify where to send the callback with our grant code.
                    "redirect_uri": self.web_shim.get_auth_callback_url(),
                    "state": state,
                }.items()
            )
        )
        return self.client_redirect(
            f"https://{shop}/admin/oauth/authorize?{query_string}"
        )

    def auth_callback(self, shop):
        """
        Validate the oauth callback, exchange the code for a credential and
        send the browser back to the app.
        """
        state_cookie = self.web_shim.get_cookie(self.config.state_cookie_name)
        if not state_cookie:
            logger.debug("No state cookie, cookie probably expired...")
            return self.web_shim.response_403(VERIFICATION_FAILED_MESSAGE)
        state = self.web_shim.get_param("state") or ""
        if not self.states_match(state_cookie, state):
            logger.warning(f"State does not match the cookie for {shop}.")
            return self.web_shim.response_403(VERIFICATION_FAILED_MESSAGE)

        code = self.web_shim.get_param("code")
        if not code:
            return self.web_shim.response_bad_request("Missing `code` parameter.")

        try:
            credential = self.admin_client.exchange_code_for_token(
                shop, self.config.api_key, self.config.api_secret, code
            )
            self.credential_store.update(shop, credential)
            if self.app_installed_handler:
                self.app_installed_handler.on_app_installed(self, shop, credential)
        except Exception as e:
            return self.handle_error(shop, e)
        logger.info(f"Stored credential for {shop}.")

        # Clear state cookie because it served its purpose and is now invalid.
        self.web_shim.expire_cookie(self.config.state_cookie_name)
        return self.client_redirect(self.get_public_url(shop))

    def states_match(self, state_cookie, state):
        # Exact match only, this is the csrf check.
        return hmac.compare_digest(state_cookie.encode("utf8"), state.encode("utf8"))

    def get_public_url(self, shop):
        """
        The app's url with signed params so the next request passes verification.
        """
        params = sign_params(
            self.config.api_secret,
            {"shop": shop, "timestamp": str(int(self.clock()))},
        )
        parts = urlsplit(self.config.public_url)
        query = "&".join(q for q in (parts.query, urlencode(params)) if q)
        return urlunsplit(
            (parts.scheme, parts.netloc, parts.path or "/", query, parts.fragment)
        )

    def verify_session_token(self):
        """
        Check the session token cookie for requests made by the app itself.

        Returns a 2-tuple of (shop_context, error_response).
        """
        cookie_value = self.web_shim.get_cookie(self.config.session_token_cookie_name)
        try:
            session_token = self.session_token_codec.verify(
                cookie_value, self.credential_store
            )
        except SessionTokenError as e:
            logger.info(f"Session token rejected: {e}")
            return None, self.web_shim.response_403(VERIFICATION_FAILED_MESSAGE)
        except Exception as e:
            return None, self.handle_error(None, e)

        shop_context = ShopContext(
            shop=session_token.shop, credential=session_token.credential
        )
        # Slide the expiry forward.
        self.set_session_token_cookie(shop_context)
        return shop_context, None

    def verify_proxy_access(self):
        """
        Load the credential of the shop an app proxy request is made for.

        The signature must already have been verified.
        Returns a 2-tuple of (shop_context, error_response).
        """
        shop = self.web_shim.get_param("shop")
        if not shop:
            return None, self.web_shim.response_bad_request("Missing `shop` parameter.")
        try:
            credential = self.credential_store.get(shop)
        except Exception as e:
            return None, self.handle_error(shop, e)
        if credential is None:
            logger.info(f"Proxy request for {shop} which is not installed.")
            return None, self.web_shim.response_403(VERIFICATION_FAILED_MESSAGE)
        return ShopContext(shop=shop, credential=credential), None

    def ensure_script_tags(self, shop_context, script_tags):
        """Register each script tag for the shop, return an error response on failure."""
        for script_tag in script_tags:
            try:
                self.script_tag_reconciler.ensure(
                    shop_context.shop, shop_context.credential.access_token, script_tag
                )
            except Exception as e:
                return self.handle_error(shop_context.shop, e)
        return None

    def set_session_token_cookie(self, shop_context):
        value = self.session_token_codec.encode(
            SessionToken(shop=shop_context.shop, credential=shop_context.credential)
        )
        self.web_shim.set_cookie(
            self.config.session_token_cookie_name,
            value,
            max_age=self.config.session_token_max_age,
            secure=True,
            samesite=self.get_session_token_samesite(),
        )

    def get_session_token_samesite(self):
        if self.config.session_token_samesite:
            return self.config.session_token_samesite
        return "none" if self.config.embedded else None

    def set_app_headers(self, shop):
        """Only let the shop's admin frame us."""
        if self.config.embedded:
            self.web_shim.set_header(
                "Content-Security-Policy",
                f"frame-ancestors https://{shop} https://admin.shopify.com;",
            )
        else:
            self.web_shim.set_header(
                "Content-Security-Policy", "frame-ancestors 'none';"
            )

    def client_redirect(self, url):
        """
        Redirect, breaking out of the admin iframe when embedded.
        """
        if not self.config.embedded:
            return self.web_shim.redirect_302_url(url)
        return self.web_shim.response_200_string(
            self.get_client_redirect_html_content(url)
        )

    def get_client_redirect_html_content(self, url):
        # Dump the url as a js string, keeping "</script>" out of it.
        # Use % so we don't have to escape "{" and "}".
        url_json_str = json.dumps(url).replace("</", "<\\/")
        return self.client_redirect_html_content_fmt % (url_json_str,)

    def handle_error(self, shop, error):
        """Report the error and answer with a generic 500, details stay here."""
        logger.error(f"Unexpected error for {shop}: {error}", exc_info=error)
        if self.error_handler:
            self.error_handler.on_error(self, shop, error)
        return self.web_shim.response_500(INTERNAL_ERROR_MESSAGE)


@dataclass
class ShopEmbedApp:
    """
    Everything shared between requests, makes a ShopEmbedService per request
    and composes the standard pipelines.
    """

    config: ShopEmbedConfig
    credential_store: ICredentialStore
    admin_client: IAdminAPIClient = field(default_factory=AdminAPIClient)
    error_handler: IErrorHandler = None
    app_installed_handler: IAppInstalledHandler = None

    def make_service(self, web_shim):
        return ShopEmbedService(
            config=self.config,
            web_shim=web_shim,
            credential_store=self.credential_store,
            admin_client=self.admin_client,
            error_handler=self.error_handler,
            app_installed_handler=self.app_installed_handler,
        )

    def oauth_pipeline(self, handler, script_tags=()):
        """
        For pages shopify loads: verify, install if needed, sync script tags.
        """
        if script_tags and WRITE_SCRIPT_TAGS not in self.config.access_scopes:
            logger.warning(
                f"Script tags are configured but {WRITE_SCRIPT_TAGS} is not requested."
            )
        return compose(
            handler,
            verify_signature,
            negotiate_oauth,
            ensure_script_tags(*script_tags),
        )

    def api_pipeline(self, handler):
        """For the app's own endpoints called from a page that went through oauth."""
        return compose(handler, verify_session_token)

    def proxy_pipeline(self, handler):
        """For requests shopify forwards through an app proxy."""
        return compose(handler, verify_signature, verify_proxy_access)


__all__ = [
    "Credential",
    "ShopContext",
    "ShopEmbedApp",
    "ShopEmbedConfig",
    "ShopEmbedService",
]

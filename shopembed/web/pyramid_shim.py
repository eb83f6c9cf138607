from dataclasses import dataclass

from pyramid.request import Request
from pyramid.httpexceptions import (
    HTTPBadRequest,
    HTTPForbidden,
    HTTPFound,
    HTTPInternalServerError,
)
from pyramid.settings import asbool, aslist
import zope.interface

from .. import ShopEmbedConfig
from ..interfaces import IWebShim


@dataclass
class PyramidWebShimConfig:
    auth_callback_route: str


def config_from_settings(settings, prefix="shopembed."):
    """
    Build a ShopEmbedConfig from pyramid settings, ie. from the ini file.

    shopembed.api_key, shopembed.api_secret, shopembed.public_url and
    shopembed.access_scopes (whitespace or comma separated) are required.
    """

    def setting(name, default=None):
        return settings.get(prefix + name, default)

    kwargs = dict(
        api_key=setting("api_key"),
        api_secret=setting("api_secret"),
        public_url=setting("public_url"),
        access_scopes=tuple(
            scope
            for scope in aslist(setting("access_scopes", "").replace(",", " "))
            if scope
        ),
        embedded=asbool(setting("embedded", True)),
        reinstall_on_scope_change=asbool(setting("reinstall_on_scope_change", False)),
    )
    missing = [name for name in ("api_key", "api_secret", "public_url") if not kwargs[name]]
    if missing:
        raise ValueError(f"Missing settings: {', '.join(prefix + name for name in missing)}")
    replay_window_seconds = setting("replay_window_seconds")
    if replay_window_seconds:
        kwargs["replay_window_seconds"] = int(replay_window_seconds)
    samesite = setting("session_token_samesite")
    if samesite:
        kwargs["session_token_samesite"] = samesite
    return ShopEmbedConfig(**kwargs)


@zope.interface.implementer(IWebShim)
@dataclass
class PyramidWebShim:
    """Shim between shopembed and pyramid for web tasks.

    Cookies and headers are applied in a response callback so they end up on
    whatever response the view returns, redirects included.
    """

    # Configuration params that describe how we should behave.
    config: PyramidWebShimConfig
    # The current request.
    request: Request

    def _on_response(self, callback):
        self.request.add_response_callback(
            lambda request, response: callback(response)
        )

    def set_cookie(
        self,
        name,
        value,
        httponly=None,
        samesite=None,
        secure=True,
        max_age=None,
    ):
        self._on_response(
            lambda response: response.set_cookie(
                name,
                value,
                httponly=httponly,
                samesite=samesite,
                secure=secure,
                max_age=max_age,
            )
        )

    def expire_cookie(self, name):
        self._on_response(lambda response: response.delete_cookie(name))

    def get_cookie(self, name, default=None):
        return self.request.cookies.get(name, default)

    def get_auth_callback_url(self):
        return self.request.route_url(self.config.auth_callback_route)

    def response_403(self, message=None):
        return HTTPForbidden(message)

    def response_500(self, message=None):
        return HTTPInternalServerError(message)

    def redirect_302_url(self, url):
        return HTTPFound(url)

    def get_header(self, name, default=None):
        return self.request.headers.get(name, default)

    def set_header(self, name, value):
        def set_on(response):
            response.headers[name] = value

        self._on_response(set_on)

    def get_param(self, name, default=None):
        return self.request.GET.get(name, default)

    def get_param_items(self):
        # Every value of repeated params, in order.
        return list(self.request.GET.items())

    def response_200_string(self, content, content_type="text/html"):
        response = self.request.response
        response.content_type = content_type
        response.text = content
        return response

    def response_bad_request(self, message):
        return HTTPBadRequest(message)

    def get_request_body(self):
        return self.request.body

    def get_request_json_body(self):
        return self.request.json_body


def make_pyramid_view(app, pipeline, web_shim_config):
    """
    Turn a pipeline from ShopEmbedApp into a pyramid view callable.

        config.add_view(
            make_pyramid_view(app, app.oauth_pipeline(home), shim_config),
            route_name="home",
        )
    """

    def view(request):
        web_shim = PyramidWebShim(config=web_shim_config, request=request)
        return pipeline(app.make_service(web_shim), None)

    return view

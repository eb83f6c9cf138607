from zope.interface import Attribute, Interface


class IWebShim(Interface):
    """Everything the services need from the web framework's request/response."""


class ICredentialStore(Interface):
    """
    Keeps one credential per shop.

    Implementations must serialize concurrent calls for the same shop.
    """

    def get(shop):
        """Return the shop's credential or None, absence is not an error."""

    def update(shop, credential):
        """Create or replace the shop's credential."""

    def delete(shop):
        """Remove the shop's credential, a no-op if there is none."""


class IAdminAPIClient(Interface):
    """The slice of shopify's admin api used during auth and script tag sync."""


class IErrorHandler(Interface):
    def on_error(service, shop, error):
        """Called before an internal error is turned into a generic 500."""


class IAppInstalledHandler(Interface):
    def on_app_installed(service, shop, credential):
        """Called after a new credential has been stored for the shop."""


class IWebhookHandlerRegistry(Interface):
    registrations = Attribute("Handler registrations in insertion order.")

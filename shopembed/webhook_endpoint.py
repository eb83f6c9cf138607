import logging
import hmac
import hashlib
import base64
from dataclasses import dataclass, field
from typing import Callable

import zope.interface

from .interfaces import ICredentialStore, IWebShim, IWebhookHandlerRegistry


logger = logging.getLogger(__name__)


APP_UNINSTALLED_TOPIC = "app/uninstalled"


@dataclass
class HandlerRegistration:
    handler: Callable
    topic: str = None
    # higher gets called first
    priority: int = 0


@zope.interface.implementer(IWebhookHandlerRegistry)
@dataclass
class HandlerRegistry:
    registrations: list = field(default_factory=list)

    def add(self, webhook_handler, topic=None, priority=0):
        self.registrations.append(HandlerRegistration(webhook_handler, topic, priority))

    def matches(self, topic):
        """
        Get registered handlers that match the given topic, high priority first.
        """
        regs = filter(
            lambda reg: reg.topic == topic or not reg.topic, self.registrations
        )
        return sorted(regs, key=lambda reg: reg.priority, reverse=True)


@dataclass
class CredentialRevocationHandler:
    """
    Forget the shop's credential when it uninstalls the app.

    Any session token handed out for the shop stops verifying at once.
    """

    credential_store: ICredentialStore

    def __call__(self, shop, topic, params, state):
        if topic != APP_UNINSTALLED_TOPIC:
            return
        logger.info(f"App uninstalled from {shop}, deleting its credential.")
        self.credential_store.delete(shop)


def compute_webhook_hmac(secret, data):
    digest = hmac.new(secret.encode("utf-8"), data, digestmod=hashlib.sha256).digest()
    return base64.b64encode(digest)


@dataclass
class WebhookEndpointService:
    """
    Help with receiving webhooks from shopify.

    @NOTE: This doesn't handle processing webhooks in the correct order.
        ie. ProductUpdate before ProductCreate for the same product.
    @NOTE: This doesn't handle processing webhooks that are sent more than once.
        ie. ProductCreate x 2 for the same product.
    """

    web_shim: IWebShim

    registry: IWebhookHandlerRegistry

    # Allow state to be made and passed to chain of handlers called for a
    # webhook.
    handler_state_maker: Callable = field(default=dict)

    logger: object = field(default=logger)

    def validate_hmac(self, hmac_to_verify, secret, data):
        return hmac.compare_digest(compute_webhook_hmac(secret, data), hmac_to_verify)

    def process_webhook(self, api_secret):
        hmac_header = self.web_shim.get_header("X-Shopify-Hmac-SHA256")
        # The shop and topic are not part of the hmac, only the body is.
        shop = self.web_shim.get_header("X-Shopify-Shop-Domain")
        topic = self.web_shim.get_header("X-Shopify-Topic")

        if not shop or not topic or not hmac_header:
            return self.web_shim.response_bad_request("Missing webhook headers.")
        verified = self.validate_hmac(
            hmac_header.encode("utf-8"), api_secret, self.web_shim.get_request_body()
        )
        if not verified:
            self.logger.warning(f"Webhook {topic} for {shop} failed verification.")
            return self.web_shim.response_403("Verification failed.")

        regs = self.registry.matches(topic)
        if not regs:
            self.logger.warning(f"No handler registrations matched topic: {topic}")
        # The contents here is undocumented AFAIK, it just will look kind of like what
        # you send to shopify when registering the hook with them.
        params = self.web_shim.get_request_json_body()
        state = self.handler_state_maker()
        for reg in regs:
            reg.handler(shop, topic, params, state)
        return self.web_shim.response_200_string("")

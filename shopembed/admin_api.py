from dataclasses import dataclass, field, asdict
import json
import logging

import requests
import zope.interface

from .errors import AdminAPIError, UnexpectedContentTypeError
from .interfaces import IAdminAPIClient
from .models import Credential
from .scopes import parse_scope

logger = logging.getLogger(__name__)


ACCESS_TOKEN_HEADER = "X-Shopify-Access-Token"


# Limits as specified by shopify.
DEFAULT_LIMIT = 50


MAX_LIMIT = 250


ONLOAD_EVENT = "onload"


# Only on the web storefront.
ONLINE_STORE_DISPLAY_SCOPE = "online_store"
# Only on the order status page.
ORDER_STATUS_DISPLAY_SCOPE = "order_status"
ALL_DISPLAY_SCOPE = "all"


DISPLAY_SCOPES = (
    ONLINE_STORE_DISPLAY_SCOPE,
    ORDER_STATUS_DISPLAY_SCOPE,
    ALL_DISPLAY_SCOPE,
)


@dataclass
class ScriptTag:
    """
    A script shopify injects into the shop's pages.

    An id of 0 means the tag only exists on our side so far.
    """

    src: str
    event: str = ONLOAD_EVENT
    display_scope: str = None
    id: int = 0
    created_at: str = None
    updated_at: str = None

    @classmethod
    def from_dict(cls, script_tag_dict):
        return cls(
            src=script_tag_dict["src"],
            event=script_tag_dict.get("event") or ONLOAD_EVENT,
            display_scope=script_tag_dict.get("display_scope"),
            id=script_tag_dict.get("id") or 0,
            created_at=script_tag_dict.get("created_at"),
            updated_at=script_tag_dict.get("updated_at"),
        )

    def to_dict(self):
        # Shopify owns the timestamps, don't send empty ones.
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class Pagination:
    limit: int = DEFAULT_LIMIT
    page: int = 1
    since_id: int = None

    def __post_init__(self):
        if not 0 < self.limit <= MAX_LIMIT:
            raise ValueError(f"The limit {self.limit} must be between 1 and {MAX_LIMIT}")
        if self.page < 1:
            raise ValueError(f"The page {self.page} must be at least 1")

    def to_params(self):
        params = {"limit": self.limit, "page": self.page}
        if self.since_id:
            params["since_id"] = self.since_id
        return params


def log_http_exchange(response, *args, **kwargs):
    """Response hook that logs traffic, installed when debugging."""
    request = response.request
    logger.debug("%s %s -> %s", request.method, request.url, response.status_code)
    logger.debug("Response body: %s", response.text)


@dataclass
class AdminAPIConfig:
    # Use the versioned api, ie. /admin/api/2024-01/script_tags.json
    api_version: str = None
    # Seconds, applied to every call.
    timeout: float = 10.0
    # Log every request and response at debug level.
    debug: bool = False


@zope.interface.implementer(IAdminAPIClient)
@dataclass
class AdminAPIClient:
    """Helps with interacting with shopify's oauth and script tag apis."""

    config: AdminAPIConfig = field(default_factory=AdminAPIConfig)
    # The transport, pass a preconfigured session to add adapters or hooks.
    session: requests.Session = None

    json_api: object = json

    def __post_init__(self):
        if self.session is None:
            self.session = requests.Session()
        if self.config.debug:
            self.session.hooks["response"].append(log_http_exchange)

    def get_api_url(self, shop, resource):
        if self.config.api_version:
            return f"https://{shop}/admin/api/{self.config.api_version}/{resource}"
        return f"https://{shop}/admin/{resource}"

    def request(
        self,
        method,
        url,
        access_token=None,
        params=None,
        payload=None,
        expected_statuses=(requests.codes.ok,),
    ):
        headers = {"Accept": "application/json"}
        if access_token:
            headers[ACCESS_TOKEN_HEADER] = access_token
        data = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            data = self.json_api.dumps(payload)
        response = self.session.request(
            method,
            url,
            headers=headers,
            params=params,
            data=data,
            timeout=self.config.timeout,
        )
        if response.status_code not in expected_statuses:
            raise AdminAPIError(
                f"Unexpected status {response.status_code} for {method} {url}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    def read_json(self, response):
        try:
            return response.json()
        except ValueError as e:
            raise AdminAPIError(
                f"Unable to parse response: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e

    def exchange_code_for_token(self, shop, client_id, client_secret, code):
        """
        Use grant code from shopify to fetch the access token using a post request.

        This access token can be used to perform operations using the shopify api.
        """
        response = self.request(
            "POST",
            f"https://{shop}/admin/oauth/access_token",
            payload={
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
            },
        )
        content_type = response.headers.get("Content-Type", "")
        media_type = content_type.split(";")[0].strip().lower()
        if media_type != "application/json":
            raise UnexpectedContentTypeError(
                f"Unexpected content-type `{media_type}`",
                status_code=response.status_code,
                body=response.text,
            )
        json_payload = self.read_json(response)
        try:
            access_token = json_payload["access_token"]
            scope = json_payload["scope"]
        except (KeyError, TypeError) as e:
            raise AdminAPIError(f"Access token response is missing {e}") from e
        if not access_token:
            raise AdminAPIError("Access token response has an empty access_token")
        return Credential(access_token=access_token, scope=parse_scope(scope))

    def get_script_tags(self, shop, access_token, pagination=None, fields=None):
        """Get one page of script tags, see `get_all_script_tags` for the rest."""
        params = pagination.to_params() if pagination else {}
        if fields:
            params["fields"] = ",".join(fields)
        response = self.request(
            "GET",
            self.get_api_url(shop, "script_tags.json"),
            access_token=access_token,
            params=params,
        )
        d = self.read_json(response)
        return [ScriptTag.from_dict(tag_dict) for tag_dict in d["script_tags"]]

    def get_script_tags_count(self, shop, access_token):
        response = self.request(
            "GET",
            self.get_api_url(shop, "script_tags/count.json"),
            access_token=access_token,
        )
        return int(self.read_json(response)["count"])

    def get_all_script_tags(self, shop, access_token, fields=None):
        """Count the tags then fetch every page of the largest size, in order."""
        count = self.get_script_tags_count(shop, access_token)
        if count == 0:
            return []
        page_count = (count - 1) // MAX_LIMIT + 1
        script_tags = []
        for page in range(1, page_count + 1):
            script_tags.extend(
                self.get_script_tags(
                    shop,
                    access_token,
                    pagination=Pagination(limit=MAX_LIMIT, page=page),
                    fields=fields,
                )
            )
        return script_tags

    def get_script_tag(self, shop, access_token, script_tag_id, fields=None):
        """Return the script tag or None if shopify does not know it."""
        params = {"fields": ",".join(fields)} if fields else None
        response = self.request(
            "GET",
            self.get_api_url(shop, f"script_tags/{script_tag_id}.json"),
            access_token=access_token,
            params=params,
            expected_statuses=(requests.codes.ok, requests.codes.not_found),
        )
        if response.status_code == requests.codes.not_found:
            return None
        return ScriptTag.from_dict(self.read_json(response)["script_tag"])

    def create_or_update_script_tag(self, shop, access_token, script_tag):
        """POST a new script tag, or PUT it when it already has an id."""
        payload = {"script_tag": script_tag.to_dict()}
        if script_tag.id:
            response = self.request(
                "PUT",
                self.get_api_url(shop, f"script_tags/{script_tag.id}.json"),
                access_token=access_token,
                payload=payload,
            )
        else:
            payload["script_tag"].pop("id", None)
            response = self.request(
                "POST",
                self.get_api_url(shop, "script_tags.json"),
                access_token=access_token,
                payload=payload,
                expected_statuses=(requests.codes.created,),
            )
        return ScriptTag.from_dict(self.read_json(response)["script_tag"])

    def delete_script_tag(self, shop, access_token, script_tag_id):
        self.request(
            "DELETE",
            self.get_api_url(shop, f"script_tags/{script_tag_id}.json"),
            access_token=access_token,
        )

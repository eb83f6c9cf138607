import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from urllib.parse import urlsplit, urlunsplit

from .admin_api import ALL_DISPLAY_SCOPE, ONLOAD_EVENT
from .interfaces import IAdminAPIClient

logger = logging.getLogger(__name__)


def normalize_script_tag(shop, script_tag):
    """
    Fill in what shopify would otherwise fill in for us so we can compare.

    Shopify requires absolute https urls, a relative src is taken to be
    relative to the shop itself (ie. served through an app proxy).
    """
    parts = urlsplit(script_tag.src)
    src = urlunsplit(
        (
            parts.scheme or "https",
            parts.netloc or shop,
            parts.path,
            parts.query,
            parts.fragment,
        )
    )
    return replace(
        script_tag,
        src=src,
        event=script_tag.event or ONLOAD_EVENT,
        display_scope=script_tag.display_scope or ALL_DISPLAY_SCOPE,
    )


def select_script_tags(desired, script_tags):
    """
    Split the remote tags sharing the desired src into (kept, stale).

    The kept tag is the one that also has the desired display scope, lowest
    id first when there are several.  Everything else with the same src is
    stale, including tags that only differ by display scope.
    """
    same_src = [tag for tag in script_tags if tag.src == desired.src]
    exact = sorted(
        (tag for tag in same_src if tag.display_scope == desired.display_scope),
        key=lambda tag: tag.id,
    )
    kept = exact[0] if exact else None
    stale = [tag for tag in same_src if tag is not kept]
    return kept, stale


@dataclass
class ScriptTagReconciler:
    """
    Make sure a script tag is registered exactly once for a shop.
    """

    admin_client: IAdminAPIClient
    # Upper bound of concurrent deletions of duplicates.
    max_workers: int = 4

    logger: object = field(default=logger)

    def ensure(self, shop, access_token, script_tag):
        """
        Return the remote script tag matching `script_tag`, creating it if needed.

        If the tag has an id it is fetched first and returned as is when it
        still exists, duplicates are not looked for in that case.  Otherwise
        all the shop's tags are scanned, one match is kept and the others
        deleted before we return.
        """
        desired = normalize_script_tag(shop, script_tag)

        if desired.id:
            existing = self.admin_client.get_script_tag(shop, access_token, desired.id)
            if existing:
                return existing
            self.logger.info(
                f"Script tag {desired.id} is gone from {shop}, looking for a match."
            )
            desired = replace(desired, id=0)

        remote_tags = self.admin_client.get_all_script_tags(shop, access_token)
        kept, stale = select_script_tags(desired, remote_tags)
        self.delete_script_tags(shop, access_token, stale)
        if kept:
            return kept

        self.logger.info(f"Creating script tag {desired.src} for {shop}")
        return self.admin_client.create_or_update_script_tag(shop, access_token, desired)

    def delete_script_tags(self, shop, access_token, script_tags):
        """
        Delete the tags concurrently and wait for all of them.

        This is cleanup, failures are logged and otherwise ignored.
        """
        if not script_tags:
            return
        # Workers share the admin client and its requests.Session, which relies
        # on urllib3's connection pool being thread safe.
        workers = min(self.max_workers, len(script_tags))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(
                    self.admin_client.delete_script_tag, shop, access_token, tag.id
                ): tag
                for tag in script_tags
            }
            for future in as_completed(futures):
                error = future.exception()
                if error:
                    self.logger.warning(
                        f"Failed to delete duplicate script tag {futures[future].id} "
                        f"from {shop}: {error}"
                    )

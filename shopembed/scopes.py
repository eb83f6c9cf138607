UNAUTHENTICATED_WRITE_PREFIX = "unauthenticated_write_"


UNAUTHENTICATED_READ_PREFIX = "unauthenticated_read_"


WRITE_PREFIX = "write_"


READ_PREFIX = "read_"


READ_CONTENT = "read_content"
WRITE_CONTENT = "write_content"
READ_THEMES = "read_themes"
WRITE_THEMES = "write_themes"
READ_PRODUCTS = "read_products"
WRITE_PRODUCTS = "write_products"
READ_PRODUCT_LISTINGS = "read_product_listings"
READ_CUSTOMERS = "read_customers"
WRITE_CUSTOMERS = "write_customers"
READ_ORDERS = "read_orders"
WRITE_ORDERS = "write_orders"
READ_ALL_ORDERS = "read_all_orders"
READ_DRAFT_ORDERS = "read_draft_orders"
WRITE_DRAFT_ORDERS = "write_draft_orders"
READ_INVENTORY = "read_inventory"
WRITE_INVENTORY = "write_inventory"
READ_LOCATIONS = "read_locations"
READ_SCRIPT_TAGS = "read_script_tags"
WRITE_SCRIPT_TAGS = "write_script_tags"
READ_FULFILLMENTS = "read_fulfillments"
WRITE_FULFILLMENTS = "write_fulfillments"
READ_SHIPPING = "read_shipping"
WRITE_SHIPPING = "write_shipping"
READ_ANALYTICS = "read_analytics"
READ_CHECKOUTS = "read_checkouts"
WRITE_CHECKOUTS = "write_checkouts"
READ_PRICE_RULES = "read_price_rules"
WRITE_PRICE_RULES = "write_price_rules"


def parse_scope(scope_str):
    """Parse comma separated permissions, dropping blanks but keeping order."""
    return tuple(perm.strip() for perm in scope_str.split(",") if perm.strip())


def format_scope(scopes):
    return ",".join(scopes)


def get_implied_scopes(scopes):
    implied_scopes = set()
    for scope in scopes:
        if scope.startswith(UNAUTHENTICATED_WRITE_PREFIX):
            implied_scopes.add(
                UNAUTHENTICATED_READ_PREFIX
                + scope.removeprefix(UNAUTHENTICATED_WRITE_PREFIX)
            )
        elif scope.startswith(WRITE_PREFIX):
            implied_scopes.add(READ_PREFIX + scope.removeprefix(WRITE_PREFIX))
    return implied_scopes


def scopes_have_changed(installed_scopes, expected_scopes):
    # @NOTE: The app does not need to re-install if the expected scopes are
    # still a subset of the initial installed scopes.
    return (
        not set(expected_scopes)
        .union(get_implied_scopes(expected_scopes))
        .issubset(set(installed_scopes).union(get_implied_scopes(installed_scopes)))
    )

import pytest

from shopembed import ShopEmbedConfig, ShopEmbedService
from shopembed.models import Credential
from shopembed.storage.memory import MemoryCredentialStore

from .fakes import FakeAdminClient, RecordingErrorHandler


API_SECRET = "abcdefgh"


SHOP = "some-shop.myshopify.com"


@pytest.fixture
def config():
    return ShopEmbedConfig(
        api_key="test-api-key",
        api_secret=API_SECRET,
        public_url="https://app.example.com/",
        access_scopes=("read_products", "write_script_tags"),
        embedded=False,
    )


@pytest.fixture
def credential():
    return Credential(access_token="shpat_abc", scope=("read_products", "write_script_tags"))


@pytest.fixture
def credential_store():
    return MemoryCredentialStore()


@pytest.fixture
def admin_client(credential):
    return FakeAdminClient(credential=credential)


@pytest.fixture
def error_handler():
    return RecordingErrorHandler()


@pytest.fixture
def make_service(config, credential_store, admin_client, error_handler):
    def make(web_shim, **kwargs):
        service_kwargs = dict(
            config=config,
            credential_store=credential_store,
            admin_client=admin_client,
            error_handler=error_handler,
            clock=lambda: 1700000000,
        )
        service_kwargs.update(kwargs)
        return ShopEmbedService(web_shim=web_shim, **service_kwargs)

    return make

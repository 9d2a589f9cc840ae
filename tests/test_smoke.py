import importlib

MODULES = (
    "server",
    "auth.oauth_server",
    "auth.session_store",
    "bexio_sync.proxy",
    "bexio_sync.client.api",
    "bexio_sync.client.oauth_flow",
    "bexio_sync.client.token_manager",
)


def test_import_modules() -> None:
    for name in MODULES:
        assert importlib.import_module(name) is not None

from __future__ import annotations

import contextlib

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth.oauth_server import OAuthServer
from auth.session_store import SessionStore, build_session_store
from bexio_sync.constants import APP_VERSION, LOGGER, SERVICE_NAME
from bexio_sync.env import Settings, load_env, load_settings, setup_logging, validate_env
from bexio_sync.http import create_proxy_client
from bexio_sync.proxy import ApiProxy


async def health_route(request: Request) -> Response:
    del request
    return JSONResponse(
        {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": APP_VERSION,
        }
    )


def create_app(
    settings: Settings | None = None,
    *,
    session_store: SessionStore | None = None,
    proxy_transport: httpx.AsyncBaseTransport | None = None,
    debug_enabled: bool | None = None,
    **oauth_overrides,
) -> Starlette:
    if settings is None:
        load_env()
        settings = load_settings()
    if debug_enabled is None:
        debug_enabled = setup_logging()
    validate_env(settings)

    if session_store is None:
        session_store = build_session_store(
            settings.session_store_path,
            ttl_seconds=settings.session_ttl_seconds,
        )
    LOGGER.info("Using %s for OAuth sessions", type(session_store).__name__)

    oauth_server = OAuthServer(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        session_store=session_store,
        scopes=list(settings.scopes),
        authorize_url=settings.authorize_url,
        token_url=settings.token_url,
        api_base_url=settings.api_base_url,
        app_scheme=settings.app_scheme,
        web_complete_url=settings.web_complete_url,
        cors_origins=set(settings.cors_origins),
        **oauth_overrides,
    )
    proxy = ApiProxy(
        create_proxy_client(
            base_url=settings.api_base_url,
            timeout=settings.proxy_timeout,
            debug_enabled=debug_enabled,
            transport=proxy_transport,
        ),
        cors_origins=set(settings.cors_origins),
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        yield
        await proxy.aclose()

    routes = [Route("/health", health_route, methods=["GET"])]
    routes.extend(oauth_server.routes())
    routes.extend(proxy.routes())

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.oauth_server = oauth_server
    app.state.proxy = proxy
    app.state.settings = settings
    return app


def main() -> None:
    import uvicorn

    load_env()
    settings = load_settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")


if __name__ == "__main__":
    main()

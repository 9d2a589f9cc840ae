from __future__ import annotations

import json
import secrets
import time
from datetime import datetime, timezone

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from auth import provider
from auth import state as packed_state
from auth.claims import decode_claims, extract_company_id, extract_email, missing_scopes
from auth.cors import (
    DEFAULT_CORS_ORIGINS,
    apply_cors_response,
    cors_error_response,
    preflight_route,
)
from auth.models import OAuthSession, TokenSet, normalize_platform
from auth.pages import mobile_complete_page, web_complete_page
from auth.pkce import derive_challenge, generate_pkce_pair
from auth.session_store import SessionStore
from auth.urls import app_link, append_query_params
from bexio_sync.constants import (
    ALLOWED_SCOPES,
    BEXIO_API_BASE_URL,
    BEXIO_AUTHORIZE_URL,
    BEXIO_TOKEN_URL,
    DEFAULT_APP_SCHEME,
    DEFAULT_SCOPES,
    OAUTH_LOGGER,
)
from bexio_sync.errors import (
    BexioSyncError,
    ConfigurationError,
    RemoteRejection,
    TransientNetworkError,
    ValidationError,
)
from bexio_sync.schemas import (
    AuthorizeRequest,
    ExchangeRequest,
    Invalid,
    ProviderTokenPayload,
    RefreshRequest,
    parse_payload,
)

OAUTH_PREFIX = "/api/bexio-oauth"


class OAuthServer:
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        session_store: SessionStore,
        scopes: list[str] | None = None,
        authorize_url: str = BEXIO_AUTHORIZE_URL,
        token_url: str = BEXIO_TOKEN_URL,
        api_base_url: str = BEXIO_API_BASE_URL,
        app_scheme: str = DEFAULT_APP_SCHEME,
        web_complete_url: str = "/oauth-complete.html",
        cors_origins: set[str] | None = None,
        exchange_code_fn=provider.exchange_code,
        refresh_token_fn=provider.refresh_token,
        fetch_profile_fn=provider.fetch_user_profile,
        clock=time.time,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.session_store = session_store
        self.scopes = scopes or list(DEFAULT_SCOPES)
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.api_base_url = api_base_url
        self.app_scheme = app_scheme
        self.web_complete_url = web_complete_url
        self.cors_origins = set(DEFAULT_CORS_ORIGINS)
        if cors_origins:
            self.cors_origins.update(cors_origins)

        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn
        self._fetch_profile_fn = fetch_profile_fn
        self._clock = clock

    # -- routes ----------------------------------------------------------------

    def routes(self) -> list[Route]:
        routes = [
            Route(f"{OAUTH_PREFIX}/auth", self._handle_authorize, methods=["POST"]),
            Route(f"{OAUTH_PREFIX}/exchange", self._handle_exchange, methods=["POST"]),
            Route(f"{OAUTH_PREFIX}/callback", self._handle_callback, methods=["GET"]),
            Route(f"{OAUTH_PREFIX}/mobile-callback", self._handle_callback, methods=["GET"]),
            Route(f"{OAUTH_PREFIX}/refresh", self._handle_refresh, methods=["POST"]),
            Route(f"{OAUTH_PREFIX}/status/{{session_id}}", self._handle_status, methods=["GET"]),
        ]
        paths = (
            f"{OAUTH_PREFIX}/auth",
            f"{OAUTH_PREFIX}/exchange",
            f"{OAUTH_PREFIX}/refresh",
            f"{OAUTH_PREFIX}/status/{{session_id}}",
        )
        routes.extend(preflight_route(path, self.cors_origins) for path in paths)
        return routes

    # -- handlers --------------------------------------------------------------

    async def _handle_authorize(self, request: Request) -> Response:
        try:
            self._require_client_config()
        except ConfigurationError as error:
            OAUTH_LOGGER.error("Authorization request rejected: %s", error)
            return self._error_from(request, error)

        parsed = parse_payload(AuthorizeRequest, await self._read_json(request))
        if isinstance(parsed, Invalid):
            return self._error(request, "invalid_request", parsed.message, 400)
        body = parsed.value

        try:
            pair = generate_pkce_pair()
            if pair.degraded:
                OAUTH_LOGGER.warning("Issuing authorization with a degraded PKCE verifier")

            session_id = secrets.token_urlsafe(24)
            platform = normalize_platform(body.platform)
            state = packed_state.encode(
                packed_state.PackedState(
                    session_id=session_id,
                    verifier_hash=pair.challenge,
                    client_state=body.state,
                    platform=platform,
                    return_url=body.return_url,
                )
            )
            await self.session_store.create(
                OAuthSession(
                    session_id=session_id,
                    code_verifier=pair.verifier,
                    redirect_uri=body.redirect_uri,
                    platform=platform,
                    created_at=self._clock(),
                    return_url=body.return_url,
                )
            )
            authorization_url = provider.build_authorization_url(
                client_id=self.client_id,
                redirect_uri=body.redirect_uri,
                scopes=self._resolve_scopes(body.scope),
                state=state,
                code_challenge=pair.challenge,
                authorize_url=self.authorize_url,
            )
        except Exception as error:
            OAUTH_LOGGER.exception("Authorization initiation failed")
            return self._error(request, "authorization_failed", str(error), 500)

        OAUTH_LOGGER.info("Started OAuth session %s (platform=%s)", session_id, platform)
        return apply_cors_response(
            request,
            JSONResponse(
                {
                    "authorizationUrl": authorization_url,
                    "codeVerifier": pair.verifier,
                    "state": state,
                    "sessionId": session_id,
                }
            ),
            self.cors_origins,
        )

    async def _handle_callback(self, request: Request) -> Response:
        params = request.query_params
        raw_state = params.get("state")
        session_id = self._session_id_from_state(raw_state)

        try:
            oauth_error = params.get("error")
            if oauth_error:
                description = params.get("error_description") or "Authorization was not granted."
                OAUTH_LOGGER.warning("Provider returned error %s: %s", oauth_error, description)
                return await self._fail_callback(session_id, oauth_error, description)

            code = params.get("code")
            if not code or not raw_state:
                return await self._fail_callback(
                    session_id,
                    "missing_parameters",
                    "Missing authorization code or state parameter.",
                )

            if session_id is None:
                return await self._fail_callback(None, "invalid_state", "State parameter could not be decoded.")

            session = await self.session_store.get(session_id)
            if session is None:
                return await self._fail_callback(
                    None, "session_not_found", "Authorization session not found or expired."
                )

            decoded = packed_state.decode(raw_state)
            if decoded.verifier_hash != derive_challenge(session.code_verifier):
                OAUTH_LOGGER.warning(
                    "State verifier material does not match session %s; continuing with stored verifier",
                    session_id,
                )

            try:
                payload = await self._exchange_code_fn(
                    client_id=self.client_id,
                    client_secret=self.client_secret,
                    code=code,
                    redirect_uri=session.redirect_uri,
                    code_verifier=session.code_verifier,
                    token_url=self.token_url,
                )
            except (RemoteRejection, TransientNetworkError) as error:
                OAUTH_LOGGER.warning("Token exchange failed for session %s: %s", session_id, error)
                return await self._fail_callback(session_id, "token_exchange_failed", str(error))

            tokens, company_id, user_email = await self._collect_identity(payload)
            completed = await self.session_store.update(
                session_id,
                expected_status="pending",
                status="completed",
                tokens=tokens,
                company_id=company_id,
                user_email=user_email,
            )
            if completed is None:
                OAUTH_LOGGER.warning("Session %s is no longer pending; not overwriting", session_id)
                return await self._fail_callback(None, "session_already_used", "Session already finalized.")
        except Exception as error:
            OAUTH_LOGGER.exception("OAuth callback processing failed")
            return await self._fail_callback(session_id, "internal_error", f"Failed to process OAuth callback: {error}")

        OAUTH_LOGGER.info("OAuth session %s completed (platform=%s)", session_id, session.platform)
        if session.platform == "mobile":
            target = app_link(self.app_scheme, {"sessionId": session_id})
            return HTMLResponse(mobile_complete_page(target, session_id))

        target = append_query_params(session.return_url or self.web_complete_url, {"sessionId": session_id})
        return HTMLResponse(web_complete_page(target, session_id))

    async def _handle_exchange(self, request: Request) -> Response:
        try:
            self._require_client_config()
        except ConfigurationError as error:
            return self._error_from(request, error)

        parsed = parse_payload(ExchangeRequest, await self._read_json(request))
        if isinstance(parsed, Invalid):
            return self._error(request, "invalid_request", parsed.message, 400)
        body = parsed.value

        try:
            payload = await self._exchange_code_fn(
                client_id=self.client_id,
                client_secret=self.client_secret,
                code=body.code,
                redirect_uri=body.redirect_uri,
                code_verifier=body.code_verifier,
                token_url=self.token_url,
            )
        except RemoteRejection as error:
            OAUTH_LOGGER.warning("Token exchange rejected with status %s", error.status_code)
            return self._error(request, "token_exchange_failed", error.body, error.status_code)
        except BexioSyncError as error:
            return self._error_from(request, error)
        except Exception as error:
            OAUTH_LOGGER.exception("Token exchange failed")
            return self._error(request, "token_exchange_failed", str(error), 500)

        tokens, company_id, user_email = await self._collect_identity(payload)
        response = tokens.to_payload()
        response.update({"companyId": company_id, "userEmail": user_email})
        return apply_cors_response(request, JSONResponse(response), self.cors_origins)

    async def _handle_refresh(self, request: Request) -> Response:
        try:
            self._require_client_config()
        except ConfigurationError as error:
            return self._error_from(request, error)

        parsed = parse_payload(RefreshRequest, await self._read_json(request))
        if isinstance(parsed, Invalid):
            return self._error(request, "invalid_request", parsed.message, 400)
        body = parsed.value

        try:
            payload = await self._refresh_token_fn(
                client_id=self.client_id,
                client_secret=self.client_secret,
                refresh_token=body.refresh_token,
                token_url=self.token_url,
            )
        except RemoteRejection as error:
            OAUTH_LOGGER.warning("Token refresh rejected with status %s", error.status_code)
            return self._error(request, "token_refresh_failed", error.body, error.status_code)
        except BexioSyncError as error:
            return self._error_from(request, error)
        except Exception as error:
            OAUTH_LOGGER.exception("Token refresh failed")
            return self._error(request, "token_refresh_failed", str(error), 500)

        return apply_cors_response(
            request,
            JSONResponse(
                {
                    "accessToken": payload.access_token,
                    "refreshToken": payload.refresh_token or body.refresh_token,
                    "expiresIn": payload.expires_in,
                }
            ),
            self.cors_origins,
        )

    async def _handle_status(self, request: Request) -> Response:
        session_id = request.path_params["session_id"]
        try:
            session = await self.session_store.get(session_id)
            if session is None:
                return self._error(request, "session_not_found", "Session not found or expired.", 404)

            payload: dict = {
                "status": session.status,
                "platform": session.platform,
                "createdAt": datetime.fromtimestamp(session.created_at, tz=timezone.utc).isoformat(),
            }
            if session.status == "completed" and session.tokens is not None:
                data = session.tokens.to_payload()
                data.update({"companyId": session.company_id, "userEmail": session.user_email})
                payload["data"] = data
                await self.session_store.delete(session_id)
                OAUTH_LOGGER.info("OAuth session %s reported as completed and removed", session_id)
            elif session.status == "error":
                payload["data"] = {"error": session.error, "description": session.error_description}
        except Exception as error:
            OAUTH_LOGGER.exception("Session status lookup failed")
            return self._error(request, "status_failed", str(error), 500)

        return apply_cors_response(request, JSONResponse(payload), self.cors_origins)

    # -- helpers ---------------------------------------------------------------

    def _require_client_config(self) -> None:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("OAuth client is not configured (BEXIO_CLIENT_ID/BEXIO_CLIENT_SECRET).")

    def _resolve_scopes(self, requested: str | None) -> list[str]:
        if not requested:
            return list(self.scopes)
        allowed = [scope for scope in requested.split() if scope in ALLOWED_SCOPES]
        return allowed or list(self.scopes)

    async def _read_json(self, request: Request):
        try:
            return await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None

    def _session_id_from_state(self, raw_state: str | None) -> str | None:
        if not raw_state:
            return None
        try:
            return packed_state.decode(raw_state).session_id
        except ValidationError:
            OAUTH_LOGGER.warning("Callback state could not be decoded")
            return None

    async def _collect_identity(self, payload: ProviderTokenPayload) -> tuple[TokenSet, str | None, str | None]:
        tokens = TokenSet.from_expires_in(
            access_token=payload.access_token,
            refresh_token=payload.refresh_token or "",
            expires_in=payload.expires_in,
            token_type=payload.token_type,
            scope=payload.scope,
            now=self._clock(),
        )

        claims = decode_claims(payload.access_token)
        company_id = extract_company_id(claims)
        missing = missing_scopes(claims)
        if missing:
            OAUTH_LOGGER.warning("Access token is missing required scopes: %s", ", ".join(missing))

        user_email = None
        profile = await self._fetch_profile_fn(payload.access_token, api_base_url=self.api_base_url)
        if profile is not None:
            user_email = profile.email
        if not user_email:
            user_email = extract_email(decode_claims(payload.id_token)) or extract_email(claims)

        return tokens, company_id, user_email

    async def _fail_callback(self, session_id: str | None, code: str, description: str) -> Response:
        if session_id is not None:
            await self.session_store.update(
                session_id,
                expected_status="pending",
                status="error",
                error=code,
                error_description=description,
            )
        return RedirectResponse(
            url=app_link(self.app_scheme, {"error": code, "description": description}),
            status_code=302,
        )

    def _error_from(self, request: Request, error: BexioSyncError) -> Response:
        return self._error(request, error.code, error.message, error.status_code)

    def _error(self, request: Request, code: str, description: str, status_code: int) -> Response:
        return cors_error_response(
            request=request,
            allowed_origins=self.cors_origins,
            code=code,
            description=description,
            status_code=status_code,
        )

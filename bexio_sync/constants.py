from __future__ import annotations

import logging

LOGGER = logging.getLogger("bexio_sync")
OAUTH_LOGGER = logging.getLogger("bexio_sync.oauth")
PROXY_LOGGER = logging.getLogger("bexio_sync.proxy")
CLIENT_LOGGER = logging.getLogger("bexio_sync.client")

APP_VERSION = "0.1.0"
SERVICE_NAME = "bexio-sync"

BEXIO_AUTHORIZE_URL = "https://auth.bexio.com/realms/bexio/protocol/openid-connect/auth"
BEXIO_TOKEN_URL = "https://auth.bexio.com/realms/bexio/protocol/openid-connect/token"
BEXIO_API_BASE_URL = "https://api.bexio.com"
BEXIO_PROFILE_PATH = "/3.0/users/me"

DEFAULT_APP_SCHEME = "bexio-sync"
CREDENTIALS_STORAGE_KEY = "bexio_credentials"

SESSION_TTL_SECONDS = 600
PROVIDER_TIMEOUT_SECONDS = 30.0
# Tokens expiring within this window are refreshed before use.
REFRESH_SKEW_SECONDS = 300

ALLOWED_SCOPES = (
    "openid",
    "profile",
    "email",
    "offline_access",
    "company_profile",
    "contact_show",
    "contact_edit",
    "project_show",
    "project_edit",
    "timesheet_show",
    "timesheet_edit",
    "accounting",
    "monitoring_show",
    "monitoring_edit",
)
DEFAULT_SCOPES = (
    "openid",
    "profile",
    "email",
    "offline_access",
    "contact_show",
    "project_show",
    "timesheet_show",
    "timesheet_edit",
)
REQUIRED_SCOPES = ("contact_show", "project_show", "timesheet_show")

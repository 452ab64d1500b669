"""
Klaviyo Connector

OAuth (authorization code + PKCE) and the REST endpoints the hub needs:
accounts and paginated profiles with their subscription state.
"""
import base64
import hashlib
import secrets
import time
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import requests

from klaviyo_hub.config import Settings, get_settings
from klaviyo_hub.connectors.base import (
    AuthError,
    BaseProvider,
    ConfigError,
    ProfilePage,
    TokenSet,
    UpstreamError,
)
from klaviyo_hub.utils.logger import log
from klaviyo_hub.utils.retry import retry_sync

KLAVIYO_AUTHORIZE_URL = "https://www.klaviyo.com/oauth/authorize"
KLAVIYO_TOKEN_URL = "https://a.klaviyo.com/oauth/token"
KLAVIYO_API_URL = "https://a.klaviyo.com/api"

CALLBACK_PATH = "/api/auth/klaviyo/callback"


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def generate_state(length: int = 32) -> str:
    """Random anti-CSRF state value"""
    return _b64url(secrets.token_bytes(length))


def generate_code_verifier() -> str:
    """PKCE verifier (86 chars, within the 43-128 range)"""
    return _b64url(secrets.token_bytes(64))


def generate_code_challenge(code_verifier: str) -> str:
    """S256 challenge for a verifier"""
    return _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())


def normalize_page_cursor(value: Optional[str]) -> Optional[str]:
    """
    Extract the bare page[cursor] token from whatever the caller holds.

    Klaviyo's `links.next` is a full URL; callers may also pass a query
    fragment or the bare token.
    """
    if not value:
        return None
    if value.startswith("http://") or value.startswith("https://"):
        params = parse_qs(urlparse(value).query)
        found = params.get("page[cursor]")
        return found[0] if found else None
    marker = "page[cursor]="
    idx = value.find(marker)
    if idx != -1:
        return value[idx + len(marker):]
    return value


def account_display_name(account: Optional[Dict[str, Any]]) -> Optional[str]:
    """Best-effort organization name from an account resource"""
    attrs = (account or {}).get("attributes") or {}
    contact = attrs.get("contact_information") or {}
    return contact.get("organization_name") or attrs.get("name") or attrs.get("company_name") or None


class KlaviyoClient(BaseProvider):
    """
    Klaviyo OAuth + REST client

    One instance serves every connected account; the access token is passed
    per call.
    """

    name = "klaviyo"

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or get_settings()
        self.session = session or requests.Session()
        self.timeout = self.settings.klaviyo_http_timeout

    # ── OAuth ────────────────────────────────────────────────

    @property
    def client_id(self) -> str:
        if not self.settings.klaviyo_client_id:
            raise ConfigError("KLAVIYO_CLIENT_ID is not set")
        return self.settings.klaviyo_client_id

    @property
    def client_secret(self) -> str:
        return self.settings.klaviyo_client_secret or ""

    def build_redirect_uri(self, origin: str) -> str:
        """Explicit override wins so it matches the provider allowlist exactly"""
        if self.settings.klaviyo_redirect_uri:
            return self.settings.klaviyo_redirect_uri
        return f"{origin.rstrip('/')}{CALLBACK_PATH}"

    def build_authorize_url(self, origin: str, state: str, code_challenge: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.build_redirect_uri(origin),
            "scope": self.settings.klaviyo_oauth_scopes.strip(),
            "state": state,
            "code_challenge_method": "S256",
            "code_challenge": code_challenge,
        }
        return f"{KLAVIYO_AUTHORIZE_URL}?{urlencode(params)}"

    def _basic_auth_header(self) -> Dict[str, str]:
        if not self.client_secret:
            return {}
        raw = f"{self.client_id}:{self.client_secret}".encode("utf-8")
        return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}

    def _token_set(self, payload: Dict[str, Any]) -> TokenSet:
        return TokenSet(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or None,
            expires_in=int(payload.get("expires_in") or 3600),
        )

    def _post_token(self, message: str, **kwargs) -> requests.Response:
        try:
            return self.session.post(KLAVIYO_TOKEN_URL, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise UpstreamError(f"{message}: {e}", None) from e

    def exchange_code(self, code: str, code_verifier: str, redirect_uri: str) -> TokenSet:
        """
        Exchange an authorization code for tokens

        Sends the client secret in the body first; on 401 (invalid_client)
        retries with HTTP Basic, which also covers PKCE-only apps without a
        secret.
        """
        body = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id,
            "code_verifier": code_verifier,
        }

        if self.client_secret:
            response = self._post_token(
                "Token exchange failed",
                data={**body, "client_secret": self.client_secret},
            )
            if response.ok:
                return self._token_set(response.json())
            if response.status_code != 401:
                raise UpstreamError(
                    f"Token exchange failed: {response.status_code} {response.text}",
                    response.status_code,
                )
            log.warning("Token exchange rejected client_secret in body, retrying with Basic auth")

        response = self._post_token(
            "Token exchange failed",
            data=body,
            headers=self._basic_auth_header(),
        )
        self._raise_for_status(response, "Token exchange failed")
        return self._token_set(response.json())

    def refresh(self, refresh_token: str) -> TokenSet:
        response = self._post_token(
            "Token refresh failed",
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
            },
            headers=self._basic_auth_header(),
        )
        self._raise_for_status(response, "Token refresh failed")
        return self._token_set(response.json())

    # ── REST ─────────────────────────────────────────────────

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            "revision": self.settings.klaviyo_api_revision,
        }

    @staticmethod
    def _raise_for_status(response: requests.Response, message: str):
        if response.ok:
            return
        detail = f"{message}: {response.status_code} {response.text}"
        if response.status_code == 401:
            raise AuthError(detail)
        raise UpstreamError(detail, response.status_code)

    @retry_sync(max_attempts=3, sleep=lambda delay: time.sleep(delay))
    def _get_with_retry(self, path: str, access_token: str, params: Dict[str, str], message: str) -> Dict[str, Any]:
        response = self.session.get(
            f"{KLAVIYO_API_URL}/{path}",
            headers=self._headers(access_token),
            params=params,
            timeout=self.timeout,
        )
        self._raise_for_status(response, message)
        return response.json()

    def _get(self, path: str, access_token: str, params: Dict[str, str], message: str) -> Dict[str, Any]:
        """Retried GET; network failures that outlast the retries surface as UpstreamError"""
        try:
            return self._get_with_retry(path, access_token, params, message)
        except requests.RequestException as e:
            raise UpstreamError(f"{message}: {e}", None) from e

    def list_accounts(self, access_token: str) -> List[Dict[str, Any]]:
        # organization_name lives under contact_information
        payload = self._get(
            "accounts",
            access_token,
            {"fields[account]": "contact_information"},
            "Failed to fetch accounts",
        )
        data = payload.get("data")
        return data if isinstance(data, list) else []

    def list_profiles(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        page_size: int = 100
    ) -> ProfilePage:
        params = {
            "fields[profile]": "email,phone_number,external_id",
            "additional-fields[profile]": "subscriptions",
        }
        if page_size:
            params["page[size]"] = str(page_size)
        page_cursor = normalize_page_cursor(cursor)
        if page_cursor:
            params["page[cursor]"] = page_cursor

        payload = self._get("profiles", access_token, params, "Failed to fetch profiles")

        items = payload.get("data")
        links = payload.get("links") or {}
        meta = payload.get("meta") or {}
        return ProfilePage(
            items=items if isinstance(items, list) else [],
            next_cursor=links.get("next") or links.get("next_url") or links.get("nextPage") or None,
            total=meta.get("total") or meta.get("count") or None,
        )

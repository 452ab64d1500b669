"""Klaviyo OAuth (authorization code + PKCE) endpoints."""
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from klaviyo_hub.config import get_settings
from klaviyo_hub.connectors.base import BaseProvider, ConfigError
from klaviyo_hub.connectors.klaviyo import (
    CALLBACK_PATH,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from klaviyo_hub.dependencies import get_backfill_submitter, get_provider, get_store
from klaviyo_hub.services import connection_service
from klaviyo_hub.services.profile_service import BackfillSubmitter
from klaviyo_hub.store.base import ProfileStore
from klaviyo_hub.utils.logger import log

router = APIRouter(prefix="/api/auth/klaviyo", tags=["auth"])

STATE_COOKIE = "kl_state"
VERIFIER_COOKIE = "kl_verifier"
COOKIE_MAX_AGE = 300


def _origin(request: Request) -> str:
    return f"{request.url.scheme}://{request.url.netloc}"


def _dashboard_redirect(request: Request, **params) -> RedirectResponse:
    query = "&".join(f"{k}={quote(str(v), safe='')}" for k, v in params.items())
    return RedirectResponse(f"{_origin(request)}{get_settings().dashboard_path}?{query}", status_code=307)


@router.get("/authorize")
async def authorize(
    request: Request,
    dry_run: bool = Query(False, alias="dryRun"),
    provider: BaseProvider = Depends(get_provider),
):
    """Start the OAuth flow: set state/verifier cookies and redirect to Klaviyo."""
    origin = _origin(request)
    state = generate_state()
    code_verifier = generate_code_verifier()

    try:
        url = provider.build_authorize_url(origin, state, generate_code_challenge(code_verifier))
    except ConfigError as e:
        log.error(f"OAuth authorize misconfigured: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    if dry_run:
        # Exposes the exact redirect URI and URL without touching cookies
        return JSONResponse(content={
            "origin": origin,
            "redirect_uri_env": get_settings().klaviyo_redirect_uri,
            "redirect_uri_fallback": f"{origin}{CALLBACK_PATH}",
            "redirect_uri_effective": provider.build_redirect_uri(origin),
            "authorize_url": url,
        })

    response = RedirectResponse(url, status_code=307)
    secure = request.url.scheme == "https"
    for name, value in ((STATE_COOKIE, state), (VERIFIER_COOKIE, code_verifier)):
        response.set_cookie(
            name,
            value,
            max_age=COOKIE_MAX_AGE,
            httponly=True,
            secure=secure,
            samesite="lax",
            path="/",
        )
    return response


@router.get("/callback")
def callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    store: ProfileStore = Depends(get_store),
    provider: BaseProvider = Depends(get_provider),
    submit_backfill: BackfillSubmitter = Depends(get_backfill_submitter),
):
    """Finish the OAuth flow and send the browser back to the dashboard."""
    if error:
        return _dashboard_redirect(request, error=error)
    if not code or not state:
        return _dashboard_redirect(request, error="missing_code_or_state")

    stored_state = request.cookies.get(STATE_COOKIE)
    code_verifier = request.cookies.get(VERIFIER_COOKIE)

    if not stored_state or stored_state != state or not code_verifier:
        response = _dashboard_redirect(request, error="invalid_state")
    else:
        try:
            connection = connection_service.complete_authorization(
                store,
                provider,
                code=code,
                code_verifier=code_verifier,
                redirect_uri=provider.build_redirect_uri(_origin(request)),
                submit_backfill=submit_backfill,
            )
            response = _dashboard_redirect(request, connected=connection.account_id)
        except Exception as e:
            log.error(f"OAuth callback failed: {str(e)}")
            response = _dashboard_redirect(request, error=str(e))

    # One-shot cookies
    response.delete_cookie(STATE_COOKIE, path="/")
    response.delete_cookie(VERIFIER_COOKIE, path="/")
    return response

"""
FastAPI routes for the site authorization broker.
"""

from __future__ import annotations

import html
import logging
from datetime import datetime, timedelta, timezone
from http import HTTPStatus
from typing import Annotated, Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from site_auth.clients.google_auth import build_authorization_url
from site_auth.core.config import AppSettings
from site_auth.core.errors import (
    AuthorizationRequestError,
    BrokerError,
    ErrorCategory,
    StateMismatchError,
    TokenExchangeError,
    TokenNotFoundError,
)
from site_auth.dependencies import (
    SettingsDependency,
    get_google_oauth_client,
    get_google_token_service,
    get_message_channel,
    get_oauth_settings,
    get_oauth_state_encoder,
    get_resource_enumerator,
    get_shared_slot,
    get_token_exchange_broker,
    get_token_store,
)
from site_auth.flow.relay import build_callback_payload, publish_callback_result
from site_auth.models.oauth import Provider
from site_auth.schemas import (
    AuthorizationStartResponse,
    ExchangeRequest,
    ExchangeResponse,
    ResourceListResponse,
    TokenView,
)
from site_auth.services.expiry import is_valid

router = APIRouter()
logger = logging.getLogger(__name__)


_STATUS_BY_CATEGORY = {
    ErrorCategory.RETRY: HTTPStatus.BAD_REQUEST,
    ErrorCategory.FLOW_DEFECT: HTTPStatus.BAD_REQUEST,
    ErrorCategory.REAUTHORIZE: HTTPStatus.UNAUTHORIZED,
    ErrorCategory.TRANSIENT: HTTPStatus.SERVICE_UNAVAILABLE,
}

_CALLBACK_PAGE = """<!doctype html>
<html>
  <head><meta charset="utf-8"><title>{title}</title></head>
  <body>
    <p>{message}</p>
    <p>You can close this window.</p>
  </body>
</html>
"""


def _http_error(exc: BrokerError) -> HTTPException:
    """Translate a classified error into an HTTP response."""
    if isinstance(exc, TokenNotFoundError):
        status = HTTPStatus.NOT_FOUND
    elif isinstance(exc, TokenExchangeError):
        status = HTTPStatus.BAD_REQUEST
    else:
        status = _STATUS_BY_CATEGORY[exc.category]
    return HTTPException(status_code=status, detail=exc.to_dict())


def _parse_provider(value: str) -> Provider:
    try:
        return Provider.parse(value)
    except ValueError as exc:
        raise _http_error(AuthorizationRequestError(str(exc))) from exc


def _state_expired(state_data: dict, ttl_seconds: int) -> bool:
    issued_at_raw = state_data.get("issued_at")
    if not issued_at_raw:
        return True
    try:
        issued_at = datetime.fromisoformat(issued_at_raw)
    except ValueError:
        return True
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) - issued_at > timedelta(seconds=ttl_seconds)


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/auth/{provider}/authorize", status_code=HTTPStatus.OK)
async def start_oauth_flow(
    provider: str,
    request: Request,
    oauth_client: Annotated[Any, Depends(get_google_oauth_client)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    oauth_settings: Annotated[Any, Depends(get_oauth_settings)],
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Google consent screen.",
    ),
):
    """
    Kick off the OAuth flow by generating a state token and authorization URL.
    """
    selected = _parse_provider(provider)
    state = state_encoder.issue(selected)
    try:
        authorization_url = build_authorization_url(
            selected,
            client_id=oauth_client.client_id,
            redirect_target=oauth_client.redirect_uri,
            scopes=oauth_settings.scopes_for(selected.value),
            offline=oauth_settings.offline_access,
            state=state,
        )
    except AuthorizationRequestError as exc:
        logger.error("Cannot build %s authorization URL: %s", selected.value, exc)
        raise _http_error(exc) from exc

    accept_header = request.headers.get("accept", "")
    wants_html = "text/html" in accept_header.lower()
    if redirect or wants_html:
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)

    return AuthorizationStartResponse(authorization_url=authorization_url, state=state)


@router.get("/oauth/callback", response_class=HTMLResponse)
async def handle_oauth_callback(
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    messages: Annotated[Any, Depends(get_message_channel)],
    slot: Annotated[Any, Depends(get_shared_slot)],
    settings: AppSettings = SettingsDependency,
    code: Optional[str] = Query(default=None, description="Authorization code."),
    error: Optional[str] = Query(default=None, description="Provider error code."),
    state: Optional[str] = Query(default=None, description="OAuth state token."),
) -> HTMLResponse:
    """Landing page for the provider redirect.

    Publishes the outcome on the message channel and the shared slot so the
    waiting controller sees it whichever channel it reads first.
    """
    for_provider = None
    if state:
        try:
            state_data = state_encoder.decode(state)
        except StateMismatchError:
            logger.warning("Callback carried an unsigned state token")
        else:
            for_provider = state_encoder.provider_of(state)
            if not error and _state_expired(state_data, settings.oauth.state_ttl_seconds):
                error = "state_expired"

    payload = build_callback_payload(
        code=code, error=error, state=state, for_provider=for_provider
    )
    publish_callback_result(payload, origin=settings.origin, messages=messages, slot=slot)

    if payload.is_success:
        title, message = "Authorization complete", "Authorization complete."
    else:
        title = "Authorization failed"
        message = f"Authorization failed: {html.escape(payload.error or 'unknown_error')}."
    return HTMLResponse(_CALLBACK_PAGE.format(title=title, message=message))


@router.post("/auth/exchange", response_model=ExchangeResponse)
async def exchange_authorization_code(
    payload: ExchangeRequest,
    broker: Annotated[Any, Depends(get_token_exchange_broker)],
) -> ExchangeResponse:
    """Exchange a one-time code and persist the resulting tokens."""
    try:
        result = await broker.exchange(
            code=payload.code,
            provider=payload.provider,
            redirect_target=payload.redirect_target,
            owner_id=payload.owner_id,
            account_label=payload.account_label,
        )
    except BrokerError as exc:
        raise _http_error(exc) from exc
    return ExchangeResponse(**result.model_dump())


@router.get("/tokens", response_model=List[TokenView])
async def list_tokens(
    token_store: Annotated[Any, Depends(get_token_store)],
    owner_id: Optional[str] = Query(default=None, description="Filter by owner."),
) -> List[TokenView]:
    records = token_store.list_records(owner_id=owner_id)
    return [TokenView.from_record(record, valid=is_valid(record)) for record in records]


@router.get("/tokens/{token_id}", response_model=TokenView)
async def get_token(
    token_id: str,
    token_store: Annotated[Any, Depends(get_token_store)],
) -> TokenView:
    try:
        record = token_store.require(token_id)
    except BrokerError as exc:
        raise _http_error(exc) from exc
    return TokenView.from_record(record, valid=is_valid(record))


@router.post("/tokens/{token_id}/refresh", response_model=TokenView)
async def refresh_token(
    token_id: str,
    token_service: Annotated[Any, Depends(get_google_token_service)],
) -> TokenView:
    """Mint a new access token from the stored refresh token."""
    try:
        record = await token_service.refresh(token_id)
    except BrokerError as exc:
        raise _http_error(exc) from exc
    return TokenView.from_record(record, valid=is_valid(record))


@router.delete("/tokens/{token_id}")
async def disconnect_token(
    token_id: str,
    token_store: Annotated[Any, Depends(get_token_store)],
) -> dict:
    if not token_store.delete(token_id):
        raise _http_error(TokenNotFoundError(f"No token stored for {token_id}."))
    return {"status": "disconnected", "token_id": token_id}


@router.get("/tokens/{token_id}/resources", response_model=ResourceListResponse)
async def list_token_resources(
    token_id: str,
    token_store: Annotated[Any, Depends(get_token_store)],
    enumerator: Annotated[Any, Depends(get_resource_enumerator)],
) -> ResourceListResponse:
    """List every property or site the token can see."""
    try:
        record = token_store.require(token_id)
        resources = await enumerator.list_resources(token_id)
    except BrokerError as exc:
        raise _http_error(exc) from exc
    return ResourceListResponse(
        token_id=token_id, provider=record.provider.value, resources=resources
    )


__all__ = ["router"]

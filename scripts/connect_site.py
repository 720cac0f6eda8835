"""Connect a GA4 or Search Console account from the command line.

Runs the broker API in-process so the provider can redirect back to
``/api/oauth/callback``, opens the consent screen in a browser, exchanges the
returned code through the broker and prints every property or site the new
token can see.

The callback is always served locally, because the popup controller listens on
this process's relay channels. ``--backend-url`` only moves the code exchange
and the resource listing to a remote broker, which must be configured with the
same ``GOOGLE_REDIRECT_URI``.

Example usages::

    python -m scripts.connect_site ga4 --owner-id alice
    python -m scripts.connect_site gsc --backend-url https://broker.example.com
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional
from urllib.parse import urlsplit

import httpx
import uvicorn

from site_auth.clients import BackendExchangeClient
from site_auth.core.config import AppSettings, get_settings
from site_auth.core.errors import BrokerError
from site_auth.core.logging import configure_logging
from site_auth.dependencies import (
    get_message_channel,
    get_oauth_state_encoder,
    get_shared_slot,
)
from site_auth.flow import BrowserSurface, PopupLifecycleController, SiteConnector
from site_auth.models.oauth import Provider

EXIT_OK = 0
EXIT_AUTH_ERROR = 1
EXIT_USAGE_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Connect a site data provider.")
    parser.add_argument("provider", choices=[provider.value for provider in Provider])
    parser.add_argument("--owner-id", default=None, help="Local user owning the token.")
    parser.add_argument(
        "--backend-url",
        default=None,
        help="Broker used for the exchange and resource listing. Defaults to the in-process server.",
    )
    parser.add_argument("--browser", default=None, help="Browser name for webbrowser.get().")
    parser.add_argument(
        "--no-resources",
        action="store_true",
        help="Skip listing resources after connecting.",
    )
    return parser


def _local_server(settings: AppSettings) -> tuple[uvicorn.Server, str]:
    redirect = urlsplit(settings.google.redirect_uri)
    host = redirect.hostname or "127.0.0.1"
    port = redirect.port or (443 if redirect.scheme == "https" else 80)
    config = uvicorn.Config(
        "site_auth.main:app",
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )
    return uvicorn.Server(config), f"{redirect.scheme}://{redirect.netloc}"


def _exchange_url(backend_url: Optional[str], local_url: str) -> str:
    """Broker used for the exchange; the callback always stays on ``local_url``."""
    return (backend_url or local_url).rstrip("/")


async def _list_resources(base_url: str, token_id: str) -> int:
    async with httpx.AsyncClient(base_url=base_url, timeout=60.0) as client:
        response = await client.get(f"/api/tokens/{token_id}/resources")
    if response.status_code != 200:
        print(f"Resource listing failed: {response.text}", file=sys.stderr)
        return EXIT_AUTH_ERROR
    for item in response.json()["resources"]:
        parent = item.get("parent_grouping_id") or "-"
        print(f"  {item['resource_id']}\t{item['display_name']}\t{parent}")
    return EXIT_OK


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings.log_level)

    server, local_url = _local_server(settings)
    server_task = asyncio.create_task(server.serve())
    while not server.started:
        if server_task.done():
            return EXIT_USAGE_ERROR
        await asyncio.sleep(0.1)
    base_url = _exchange_url(args.backend_url, local_url)

    controller = PopupLifecycleController(
        surface=BrowserSurface(args.browser),
        messages=get_message_channel(),
        slot=get_shared_slot(),
        origin=settings.origin,
        timeout_seconds=settings.oauth.flow_timeout_seconds,
        poll_interval_seconds=settings.oauth.poll_interval_seconds,
    )
    connector = SiteConnector(
        controller=controller,
        exchanger=BackendExchangeClient(base_url),
        state_encoder=get_oauth_state_encoder(),
        oauth_settings=settings.oauth,
        client_id=settings.google.client_id,
        redirect_target=settings.google.redirect_uri,
        caller_origin=settings.origin,
    )

    try:
        result = await connector.connect(args.provider, owner_id=args.owner_id)
        print(
            f"Connected {result.provider.value} as {result.account_label} "
            f"(token {result.token_id}, expires {result.expires_at.isoformat()})"
        )
        if args.no_resources:
            return EXIT_OK
        return await _list_resources(base_url, result.token_id)
    except BrokerError as exc:
        print(f"{exc.code} [{exc.category.value}]: {exc}", file=sys.stderr)
        return EXIT_AUTH_ERROR
    finally:
        controller.abort_all()
        server.should_exit = True
        await server_task


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())

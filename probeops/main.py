"""Application entrypoint and dashboard wiring."""

from __future__ import annotations

import asyncio
import json
from typing import Awaitable, Callable

import click
import httpx

from probeops.config import ProbeOpsSettings, get_settings
from probeops.i18n import I18nService
from probeops.logging import configure_logging, logger
from probeops.services.api import ApiClient
from probeops.services.api_keys import ApiKeyService
from probeops.services.auth_client import AuthClient
from probeops.services.auth_state import AuthStateMachine
from probeops.services.exceptions import ServiceError
from probeops.services.notifications import Notification, Notifier
from probeops.services.probes import ProbeService
from probeops.services.rate_limit import RateLimitCache
from probeops.services.rbac import RbacView
from probeops.services.route_guard import RouteGuard
from probeops.services.session_store import FileStorage, KeyValueStorage, SessionStore


class Dashboard:
    """Owns one profile's session and everything that hangs off it."""

    def __init__(
        self,
        settings: ProbeOpsSettings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        storage: KeyValueStorage | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(transport=transport)
        self.store = SessionStore(storage or FileStorage(self.settings.storage.session_path))
        self.notifier = Notifier(I18nService(default_locale=self.settings.default_language))
        self.api = ApiClient(self.http, self.settings.api, token_provider=self.store.token)
        self.auth = AuthStateMachine(AuthClient(self.api), self.store, self.notifier)
        self.rbac = RbacView(self.auth)
        self.rate_limits = RateLimitCache(self.api, self.auth, self.settings.rate_limits, self.notifier)
        self.guard = RouteGuard(self.auth, self.settings.routes, self.notifier)
        self.api_keys = ApiKeyService(self.api)
        self.probes = ProbeService(self.api, self.rate_limits)

    async def start(self) -> None:
        self.rate_limits.start()
        await self.auth.init()
        logger.info("dashboard_started", environment=self.settings.environment, status=self.auth.status.value)

    async def close(self) -> None:
        await self.rate_limits.stop()
        self.auth.teardown()
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "Dashboard":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


Action = Callable[[Dashboard], Awaitable[int]]


def _print_notification(notification: Notification) -> None:
    click.echo(
        f"{notification.title}: {notification.description}",
        err=notification.variant == "destructive",
    )


def _dump(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


async def _with_dashboard(settings: ProbeOpsSettings, action: Action) -> int:
    async with Dashboard(settings) as dashboard:
        dashboard.notifier.subscribe(_print_notification)
        return await action(dashboard)


def _execute(ctx: click.Context, action: Action) -> None:
    """Run one command against a started dashboard and exit with its status."""

    settings: ProbeOpsSettings = ctx.obj
    try:
        code = asyncio.run(_with_dashboard(settings, action))
    except ServiceError as exc:
        logger.error("command_failed", command=ctx.info_name, error=str(exc))
        raise click.ClickException(str(exc)) from exc
    if code:
        ctx.exit(code)


@click.group()
@click.version_option(version="0.1.0", prog_name="probeops")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """ProbeOps account tools."""
    settings = get_settings()
    configure_logging(settings.log_level)
    ctx.obj = settings


@cli.command()
@click.option("--email", required=True, help="Account email address.")
@click.option("--password", prompt=True, hide_input=True, help="Account password.")
@click.pass_context
def login(ctx: click.Context, email: str, password: str) -> None:
    """Sign in and store the session."""

    async def action(dashboard: Dashboard) -> int:
        await dashboard.auth.login({"email": email, "password": password})
        return 0

    _execute(ctx, action)


@cli.command()
@click.option("--username", required=True, help="Display name for the new account.")
@click.option("--email", required=True, help="Account email address.")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True, help="Account password.")
@click.pass_context
def register(ctx: click.Context, username: str, email: str, password: str) -> None:
    """Create an account."""

    async def action(dashboard: Dashboard) -> int:
        result = await dashboard.auth.register({"username": username, "email": email, "password": password})
        if result.api_key:
            click.echo(f"First API key: {dashboard.store.pop_first_api_key()}")
        return 0

    _execute(ctx, action)


@cli.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """End the stored session."""

    async def action(dashboard: Dashboard) -> int:
        await dashboard.auth.logout()
        return 0

    _execute(ctx, action)


@cli.command()
@click.pass_context
def whoami(ctx: click.Context) -> None:
    """Show the verified session user."""

    async def action(dashboard: Dashboard) -> int:
        user = dashboard.auth.user
        if user is None:
            click.echo("Not logged in.")
            return 1
        _dump(user.model_dump(mode="json"))
        return 0

    _execute(ctx, action)


@cli.command()
@click.pass_context
def limits(ctx: click.Context) -> None:
    """Show current usage limits."""

    async def action(dashboard: Dashboard) -> int:
        snapshot = await dashboard.rate_limits.refresh()
        view = dashboard.rate_limits.view
        if snapshot is None or view is None:
            click.echo("Not logged in.")
            return 1
        _dump(
            {
                **snapshot.model_dump(mode="json"),
                "daily_usage_percent": view.daily_usage_percent,
                "monthly_usage_percent": view.monthly_usage_percent,
                "approaching_daily_limit": view.is_approaching_daily_limit,
                "approaching_monthly_limit": view.is_approaching_monthly_limit,
            }
        )
        return 0

    _execute(ctx, action)


@cli.command()
@click.pass_context
def keys(ctx: click.Context) -> None:
    """List API keys."""

    async def action(dashboard: Dashboard) -> int:
        api_keys = await dashboard.api_keys.list()
        _dump([key.model_dump(mode="json") for key in api_keys])
        return 0

    _execute(ctx, action)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

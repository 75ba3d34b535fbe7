"""Auth commands -- acquire, inspect and clear credentials for targets.

Provides the ``credgate auth`` sub-command group:

* ``login`` -- run the OAuth authorization code + PKCE flow for a target
  and store the tokens.
* ``browser-login`` -- sign in inside an embedded browser and extract a
  credential from the authenticated page.
* ``status`` -- show what is stored for a target (secrets masked).
* ``clear`` -- forget tokens, client registration and metadata.

Typical workflow::

    credgate auth login linear
    credgate auth status linear
    credgate auth browser-login supabase
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import typer

from credgate.output import error, info, print_record, success, suggest, warning


auth_app = typer.Typer(no_args_is_help=True)


@auth_app.command("login")
def auth_login(
    target_name: str = typer.Argument(help="Target to authorize."),
    port: Optional[int] = typer.Option(
        None, "--port", help="Callback listener port (0 picks a free port)."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the authorization callback."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Re-authorize even if tokens are stored."
    ),
) -> None:
    """Authorize a target in the system browser and store its tokens.

    Scopes are discovered from the target's metadata when possible. A client
    is registered dynamically when the target has no static client id and
    no earlier registration is stored.

    Example::

        credgate auth login linear
        credgate auth login linear --port 0 --force
    """
    from credgate.auth import AuthorizationFlow, OAuthSessionCoordinator
    from credgate.config import load_target, resolve_settings
    from credgate.exceptions import CredgateError
    from credgate.store import JsonServerStore

    try:
        target = load_target(target_name)
        settings = resolve_settings(callback_port=port, listener_timeout=timeout)
        coordinator = OAuthSessionCoordinator(
            target, target_name, JsonServerStore(), settings=settings
        )
        info(f"Opening browser to authorize {target_name}...")
        tokens = asyncio.run(AuthorizationFlow(coordinator, force=force).run())
    except CredgateError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    success(f'Authorized "{target_name}".')
    if tokens.scope:
        info(f"Granted scopes: {tokens.scope}")
    suggest(f"Inspect it: credgate auth status {target_name}")


@auth_app.command("browser-login")
def auth_browser_login(
    provider_name: str = typer.Argument(help="Browser provider, e.g. 'supabase'."),
    target: Optional[str] = typer.Option(
        None, "--target", "-t", help="Record id to store the credential under (defaults to the provider name)."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for a credential."
    ),
) -> None:
    """Sign in inside an embedded browser and store the extracted credential.

    A browser window opens at the provider's sign-in page. Navigation is
    restricted to the provider's own hosts. Once an authenticated page is
    reached, the credential is read from it and stored as environment
    variables for the target.

    Example::

        credgate auth browser-login supabase --target my-supabase
    """
    from credgate.browser import BrowserExtractionEngine, PlaywrightContext, get_provider
    from credgate.browser.providers import PROVIDERS
    from credgate.config import resolve_settings
    from credgate.exceptions import AuthError, CredgateError, InvalidUsageError
    from credgate.output import mask_secret
    from credgate.store import JsonServerStore

    async def _extract() -> Any:
        async with PlaywrightContext(provider.navigation_allowed) as context:
            engine = BrowserExtractionEngine(provider, context, settings=settings)
            await engine.navigate(provider.login_url)
            credential = await engine.poll()
            return engine, credential

    try:
        provider = get_provider(provider_name)
        if provider is None:
            raise InvalidUsageError(
                f"Unknown browser provider '{provider_name}'. "
                f"Available: {', '.join(sorted(PROVIDERS))}"
            )
        server_id = target or provider.name
        settings = resolve_settings(poll_timeout=timeout)
        info(f"Sign in to {provider.display_name or provider.name} in the browser window...")
        engine, credential = asyncio.run(_extract())
        if credential is None:
            raise AuthError(
                "No credential was found before the browser closed or the wait timed out."
            )
        env = engine.persist(server_id, credential, JsonServerStore())
    except CredgateError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    success(f'Credential stored for "{server_id}".')
    print_record(
        {name: mask_secret(value) for name, value in env.items()},
        title=server_id,
    )


@auth_app.command("status")
def auth_status(target_name: str = typer.Argument(help="Target or record id.")) -> None:
    """Show the credentials stored for a target, with secrets masked."""
    from credgate.exceptions import CredgateError
    from credgate.output import mask_secret
    from credgate.store import JsonServerStore

    try:
        record = JsonServerStore().get_by_id(target_name)
    except CredgateError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    if record is None:
        info(f'Nothing stored for "{target_name}".')
        suggest(f"Authorize it: credgate auth login {target_name}")
        return

    tokens = record.oauth_tokens
    client = record.oauth_client_info
    status: dict[str, Any] = {
        "id": record.id,
        "access_token": mask_secret(tokens.access_token) if tokens else None,
        "token_type": tokens.token_type if tokens else None,
        "refresh_token": "stored" if tokens and tokens.refresh_token else None,
        "expires_in": tokens.expires_in if tokens else None,
        "scope": tokens.scope if tokens else None,
        "client_id": client.client_id if client else None,
        "server_metadata": "stored" if record.oauth_server_metadata else None,
        "resource_metadata": "stored" if record.oauth_resource_metadata else None,
    }
    for name, value in sorted(record.env.items()):
        status[f"env.{name}"] = mask_secret(value)
    print_record(status, title=target_name)


@auth_app.command("clear")
def auth_clear(
    target_name: str = typer.Argument(help="Target to clear."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Forget a target's tokens, client registration and discovered metadata."""
    from credgate.auth import OAuthSessionCoordinator
    from credgate.config import load_target
    from credgate.exceptions import CredgateError
    from credgate.store import JsonServerStore

    try:
        target = load_target(target_name)
    except CredgateError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    if not yes and not typer.confirm(f'Clear stored credentials for "{target_name}"?'):
        warning("Aborted.")
        raise typer.Exit(code=1)

    OAuthSessionCoordinator(target, target_name, JsonServerStore()).clear()
    success(f'Cleared stored credentials for "{target_name}".')

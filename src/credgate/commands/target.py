"""Target commands -- manage OAuth-protected services.

Provides the ``credgate target`` sub-command group. Each target is one
:class:`~credgate.models.OAuthServerConfig` stored as
``<config_dir>/targets/<name>.json``.

Typical workflow::

    credgate target add linear --server-url https://mcp.linear.app \\
        --default-scope read --default-scope write
    credgate target list
    credgate target show linear
"""

from __future__ import annotations

from typing import List, Optional

import typer

from credgate.output import error, get_output, info, print_record, print_table, success, suggest


target_app = typer.Typer(no_args_is_help=True)


@target_app.command("add")
def target_add(
    name: str = typer.Argument(help="Target name (also the stored record id)."),
    server_url: str = typer.Option(..., "--server-url", help="Base URL of the protected resource."),
    client_id: str = typer.Option("", "--client-id", help="Static client id; omit for dynamic registration."),
    client_secret_source: Optional[str] = typer.Option(
        None, "--client-secret-source", help="Client secret source: env:VAR or file:/path."
    ),
    scopes: Optional[List[str]] = typer.Option(None, "--scope", help="Requested scope (repeatable)."),
    default_scopes: Optional[List[str]] = typer.Option(
        None, "--default-scope", help="Fallback scope when discovery finds none (repeatable)."
    ),
    well_known_url: Optional[str] = typer.Option(
        None, "--well-known-url", help="Authorization server metadata URL."
    ),
    authorization_endpoint: Optional[str] = typer.Option(None, "--authorization-endpoint"),
    token_endpoint: Optional[str] = typer.Option(None, "--token-endpoint"),
    registration_endpoint: Optional[str] = typer.Option(None, "--registration-endpoint"),
    redirect_uris: Optional[List[str]] = typer.Option(
        None, "--redirect-uri", help="Registered redirect URI (repeatable)."
    ),
    resource_metadata: bool = typer.Option(
        False,
        "--resource-metadata/--no-resource-metadata",
        help="Discover scopes from protected resource metadata.",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing target."),
) -> None:
    """Add or replace a target configuration.

    Example::

        credgate target add linear --server-url https://mcp.linear.app
        credgate target add github --server-url https://api.githubcopilot.com \\
            --client-id Iv1.abc --client-secret-source env:GITHUB_SECRET
    """
    from credgate.config import save_target, target_exists
    from credgate.exceptions import CredgateError, InvalidUsageError
    from credgate.models import OAuthServerConfig

    data = {
        "name": name,
        "server_url": server_url,
        "client_id": client_id,
        "client_secret_source": client_secret_source,
        "scopes": scopes or list(default_scopes or []),
        "default_scopes": default_scopes or [],
        "well_known_url": well_known_url,
        "authorization_endpoint": authorization_endpoint,
        "token_endpoint": token_endpoint,
        "registration_endpoint": registration_endpoint,
        "supports_resource_metadata": resource_metadata,
    }
    if redirect_uris:
        data["redirect_uris"] = redirect_uris

    try:
        if target_exists(name) and not force:
            raise InvalidUsageError(f"Target '{name}' already exists. Use --force to overwrite.")
        try:
            target = OAuthServerConfig.model_validate(data)
        except ValueError as exc:
            raise InvalidUsageError(f"Invalid target: {exc}") from exc
        save_target(target)
    except CredgateError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    success(f'Target "{name}" saved.')
    suggest(f"Authorize it: credgate auth login {name}")


@target_app.command("list")
def target_list() -> None:
    """List configured targets.

    Example::

        credgate target list
        credgate --json target list
    """
    from credgate.config import list_targets, load_target
    from credgate.exceptions import ConfigError

    names = list_targets()
    if not names:
        info("No targets configured.")
        suggest("Add one: credgate target add <name> --server-url <url>")
        return

    rows: list[list[str]] = []
    for name in names:
        try:
            target = load_target(name)
        except ConfigError:
            rows.append([name, "error", "-", "-"])
            continue
        client = "static" if target.client_id else "dynamic"
        rows.append([name, target.server_url, client, " ".join(target.scopes) or "-"])
    get_output().print_table(["Name", "Server", "Client", "Scopes"], rows, title="Targets")


@target_app.command("show")
def target_show(name: str = typer.Argument(help="Target name.")) -> None:
    """Show one target's configuration (the client secret is never printed)."""
    from credgate.config import load_target
    from credgate.exceptions import ConfigError

    try:
        target = load_target(name)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    record = target.model_dump(mode="json", exclude={"client_secret"})
    record["redirect_uris"] = " ".join(record["redirect_uris"])
    record["scopes"] = " ".join(record["scopes"]) or None
    record["default_scopes"] = " ".join(record["default_scopes"]) or None
    print_record(record, title=name)


@target_app.command("remove")
def target_remove(
    name: str = typer.Argument(help="Target name."),
    keep_credentials: bool = typer.Option(
        False, "--keep-credentials", help="Keep stored tokens and client registration."
    ),
) -> None:
    """Remove a target and, unless told otherwise, its stored credentials."""
    from credgate.config import delete_target
    from credgate.exceptions import ConfigError
    from credgate.store import JsonServerStore

    try:
        delete_target(name)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    if not keep_credentials:
        JsonServerStore().delete(name)
    success(f'Target "{name}" removed.')

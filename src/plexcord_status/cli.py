"""CLI commands for plexcord-status."""

import click


@click.group()
@click.version_option(package_name="plexcord-status")
def main() -> None:
    """Inspect the connection status orchestrator's catalog and settings."""
    pass


@main.command()
@click.argument("code", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def errors(code: str | None, as_json: bool) -> None:
    """Describe error codes.

    With CODE, shows that code's record; otherwise lists the whole catalog.
    """
    import json

    from plexcord_status import logging as plog
    from plexcord_status.errors import (
        ERROR_CATALOG,
        is_auth_error,
        is_connection_error,
        lookup_error_info,
    )

    if code is not None:
        code = code.upper()
        if code not in ERROR_CATALOG:
            plog.unknown_error_code(code)
        info = lookup_error_info(code)

        if as_json:
            click.echo(json.dumps(info.to_dict(), indent=2))
            return

        click.echo(f"{info.code}: {info.title}")
        click.echo(f"  {info.description}")
        click.echo(f"  Suggestion: {info.suggestion}")
        click.echo(f"  Retryable: {'yes' if info.retryable else 'no'}")
        if is_auth_error(info.code):
            click.echo("  Requires re-authentication")
        elif is_connection_error(info.code):
            click.echo("  Connection error")
        return

    if as_json:
        click.echo(json.dumps([info.to_dict() for info in ERROR_CATALOG.values()], indent=2))
        return

    click.echo(f"{'Code':28}  {'Retry':>5}  Title")
    click.echo("-" * 70)
    for info in ERROR_CATALOG.values():
        retry = "yes" if info.retryable else "no"
        click.echo(f"{info.code:28}  {retry:>5}  {info.title}")


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from plexcord_status import logging as plog
    from plexcord_status.config import Config

    try:
        cfg = Config.load()
    except ValueError as e:
        plog.config_invalid(str(e))
        raise SystemExit(1)

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[reconnect]")
    click.echo(f"  enabled = {str(cfg.reconnect.enabled).lower()}")
    click.echo(f"  settle_delay = {cfg.reconnect.settle_delay}")
    click.echo()
    click.echo("[refresh]")
    click.echo(f"  fence_stale_refresh = {str(cfg.refresh.fence_stale_refresh).lower()}")
    click.echo()
    click.echo("[logging]")
    click.echo(f"  level = {cfg.logging.level}")
    click.echo(f"  log_max_bytes = {cfg.logging.log_max_bytes}")
    click.echo(f"  log_backup_count = {cfg.logging.log_backup_count}")


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def config_init(force: bool) -> None:
    """Write a config file with default values."""
    from plexcord_status import logging as plog
    from plexcord_status.config import Config

    cfg = Config()
    if cfg.config_path.exists() and not force:
        plog.config_exists(str(cfg.config_path))
        return

    cfg.save()
    plog.config_created(str(cfg.config_path))


if __name__ == "__main__":
    main()

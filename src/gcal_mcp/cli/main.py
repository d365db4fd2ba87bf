"""Command-line interface for gcal-mcp."""

import asyncio
import sys
from datetime import timezone

import click

from gcal_mcp.__version__ import __version__
from gcal_mcp.errors import GCalMCPError


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """Google Calendar MCP Server - Connect Claude to Google Calendar.

    Provides two tools:
    - list_calendars
    - create_event
    """
    pass


@main.command()
def setup() -> None:
    """Set up Google Calendar OAuth authentication.

    This will:
    1. Read OAuth client credentials from $GCAL_CREDENTIALS_PATH
    2. Open browser for OAuth2 consent flow
    3. Store the token encrypted at ~/.config/gcal_mcp/token.enc
    """
    from gcal_mcp.auth import OAuthManager, TokenStorage, ensure_config_dir
    from gcal_mcp.config import load_client_config

    try:
        client_config = load_client_config()
    except GCalMCPError as e:
        click.echo(f"❌ Error: {e}")
        click.echo("")
        click.echo("Point GCAL_CREDENTIALS_PATH at a JSON file containing")
        click.echo("client_id, client_secret and redirect_url:")
        click.echo("  export GCAL_CREDENTIALS_PATH=~/.config/gcal_mcp/credentials.json")
        sys.exit(1)

    ensure_config_dir()
    manager = OAuthManager(storage=TokenStorage(), client_config=client_config)

    if manager.has_valid_tokens():
        click.echo("✓ Already authenticated!")
        click.echo(f"Token stored at: {manager.token_path}")
        click.echo("")

        if not click.confirm("Re-authenticate?"):
            return

    click.echo("Starting OAuth authentication flow...")
    click.echo("Browser will open for Google consent...")
    click.echo("")

    try:
        asyncio.run(manager.authenticate())
        click.echo("✓ Authentication successful!")
        click.echo(f"Token stored at: {manager.token_path}")
        click.echo("")
        click.echo("Run 'gcal-mcp doctor' to verify setup.")
    except GCalMCPError as e:
        click.echo(f"❌ Authentication failed: {e}")
        sys.exit(1)


@main.command()
def mcp() -> None:
    """Start the MCP server for Claude Desktop integration.

    Authentication is required before starting the server.
    Run 'gcal-mcp setup' if not already authenticated.
    """
    from gcal_mcp.auth import OAuthManager, TokenStatus, TokenStorage
    from gcal_mcp.config import load_client_config
    from gcal_mcp.server import main as server_main

    try:
        client_config = load_client_config()
    except GCalMCPError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(1)

    manager = OAuthManager(storage=TokenStorage(), client_config=client_config)
    status, _ = manager.get_status()

    if status == TokenStatus.MISSING:
        click.echo("❌ Not authenticated. Run 'gcal-mcp setup' first.", err=True)
        sys.exit(1)

    if status == TokenStatus.INVALID:
        click.echo("❌ Token file unreadable. Run 'gcal-mcp setup' to re-authenticate.", err=True)
        sys.exit(1)

    try:
        click.echo("Starting Google Calendar MCP server...", err=True)
        server_main(client_config=client_config)
    except KeyboardInterrupt:
        click.echo("\nServer stopped.", err=True)
    except GCalMCPError as e:
        click.echo(f"❌ Server error: {e}", err=True)
        sys.exit(1)


@main.command()
def doctor() -> None:
    """Check configuration and authentication status.

    Verifies:
    1. OAuth client credentials file
    2. Token file decryption
    3. Token validity
    """
    from gcal_mcp.auth import OAuthManager, TokenStatus, TokenStorage
    from gcal_mcp.config import load_client_config

    click.echo("Google Calendar MCP Status:")
    click.echo("")

    click.echo("Configuration:")
    try:
        client_config = load_client_config()
        click.echo("  ✓ Client credentials loaded")
    except GCalMCPError as e:
        click.echo(f"  ❌ {e}")
        client_config = None

    click.echo("")

    manager = OAuthManager(storage=TokenStorage(), client_config=client_config)
    status, stored = manager.get_status()

    click.echo("Authentication:")
    click.echo(f"  Token file: {manager.token_path}")

    if status == TokenStatus.MISSING:
        click.echo("  ❌ Not authenticated")
        click.echo("")
        click.echo("Run 'gcal-mcp setup' to authenticate.")
        sys.exit(1)
    elif status == TokenStatus.INVALID:
        click.echo("  ❌ Token file cannot be decrypted")
        click.echo("")
        click.echo("Run 'gcal-mcp setup' to re-authenticate.")
        sys.exit(1)
    elif status == TokenStatus.EXPIRED:
        click.echo("  ⚠️  Token expired (will refresh automatically on use)")
    elif status == TokenStatus.VALID:
        click.echo("  ✓ Authenticated")
        if stored:
            click.echo(
                f"  Token expires: {stored.expires_at.astimezone(timezone.utc):%Y-%m-%d %H:%M:%S UTC}"
            )

    click.echo("")

    if client_config is None:
        click.echo("❌ Configuration required. Set GCAL_CREDENTIALS_PATH.")
        sys.exit(1)
    click.echo("✓ Ready to use!")


if __name__ == "__main__":
    main()

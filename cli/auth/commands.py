import base64
import getpass
import re
from pathlib import Path

import typer

from cli.core import config
from cli.core.session import save_token, load_token, load_username, clear_token, is_logged_in
from cli.core.api import api_get_captcha, api_get_status, api_login, api_logout


app = typer.Typer(help="Authentication commands (login, logout, status)")

# Identities are opaque to us; the SSO decides what is valid
SSO_USERNAME = re.compile(r"^\S{1,64}$")

# A parked attempt that expired comes back as a fresh challenge; give up after this many
CAPTCHA_ATTEMPTS = 3


def _show_captcha(challenge: dict) -> Path:
    """
    Writes the captcha image next to the session file and returns its path.
    """
    captcha = challenge.get("captcha") or {}
    image = None
    if captcha.get("base64_image"):
        try:
            image = base64.b64decode(captcha["base64_image"])
        except ValueError:
            image = None
    if image is None:
        image = api_get_captcha(captcha.get("id", ""), challenge.get("client_id"))
    if image is None:
        typer.echo("Could not fetch the captcha image.")
        raise typer.Exit(code=1)

    config.APP_DIR.mkdir(parents=True, exist_ok=True)
    path = config.APP_DIR / "captcha.jpg"
    path.write_bytes(image)
    return path


@app.command("login")
def login(
    username: str = typer.Option(None, "--username", "-u", help="SSO username (student / staff id)"),
):
    """
    Login through the university SSO. Refused while a local session token exists.
    """
    if is_logged_in():
        typer.echo(f"Session already active for '{load_username() or '?'}'. Run 'ubaa auth logout' first.")
        raise typer.Exit(code=1)

    username = username or typer.prompt("SSO username")
    if not SSO_USERNAME.match(username):
        typer.echo("Invalid username: expected 1 to 64 characters without spaces.")
        raise typer.Exit(code=1)

    # Sent to the backend once, never stored
    password = getpass.getpass("SSO password: ")
    if not password:
        typer.echo("Password cannot be empty.")
        raise typer.Exit(code=1)

    result, error = api_login(username, password)
    attempts = 0
    while result is not None and "captcha" in result:
        attempts += 1
        if attempts > CAPTCHA_ATTEMPTS:
            typer.echo("Login failed: too many captcha attempts.")
            raise typer.Exit(code=1)
        path = _show_captcha(result)
        answer = typer.prompt(f"Captcha required, open {path} and type the characters")
        result, error = api_login(
            username,
            password,
            captcha=answer,
            execution=result.get("execution"),
            client_id=result.get("client_id"),
        )

    if result is None:
        typer.echo(f"Login failed: {error}")
        raise typer.Exit(code=1)

    save_token(result["token"], username)
    user = result.get("user", {})
    typer.echo(f"Login successful as '{username}' ({user.get('name', '-')}).")


@app.command("logout")
def logout():
    """
    End the backend session and forget the local token.
    """
    token = load_token()
    if token and not api_logout(token):
        typer.echo("Warning: backend did not confirm the logout, the session may have expired already.")
    elif token:
        typer.echo("Backend session closed.")

    clear_token()
    typer.echo("Session ended.")


@app.command("status")
def status():
    token = load_token()
    if not token:
        typer.echo("No active session. Please login first.")
        raise typer.Exit(code=1)

    info = api_get_status(token)
    if info is None:
        typer.echo("Session is no longer valid on the backend. Please login again.")
        raise typer.Exit(code=1)

    user = info.get("user", {})
    rows = [
        ("Username", load_username() or "-"),
        ("Name", user.get("name", "-")),
        ("School ID", user.get("schoolid", "-")),
        ("Authenticated at", info.get("authenticated_at", "-")),
        ("Last activity", info.get("last_activity", "-")),
    ]
    for label, value in rows:
        typer.echo(f"{label + ':':<18}{value}")

# cli/user/commands.py
"""
Current user commands
"""
import typer
from cli.core.session import load_token
from cli.core.api import api_get_user_info

app = typer.Typer(help="Current user commands (info)")


@app.command("info")
def info():
    """
    Show the user center profile of the logged in user.
    """
    token = load_token()
    if not token:
        typer.echo("No active session. Please login first.")
        raise typer.Exit(code=1)

    data = api_get_user_info(token)
    if not data:
        typer.echo("Failed to get user information.")
        raise typer.Exit(code=1)

    typer.echo("\nUser Information:")
    typer.echo(f"   Username:  {data.get('username') or '-'}")
    typer.echo(f"   Name:      {data.get('name') or '-'}")
    typer.echo(f"   School ID: {data.get('schoolid') or '-'}")
    typer.echo(f"   Email:     {data.get('email') or '-'}")
    typer.echo(f"   Phone:     {data.get('phone') or '-'}")

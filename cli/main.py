# cli/main.py


import typer
from cli.auth.commands import app as auth_app
from cli.user.commands import app as user_app

app = typer.Typer(help="UBAA command line client")
app.add_typer(auth_app, name="auth")
app.add_typer(user_app, name="user")

if __name__ == "__main__":
    app()

"""Commandes de maintenance exposées par `flask auth ...`"""

import click
from flask.cli import with_appcontext

from authcore import db
from authcore.models import UserRole
from authcore.services import get_auth_services


@click.group(help="Auth core maintenance commands")
def auth_cli():
    """Groupe enregistré sous `flask auth`"""


@auth_cli.command("cleanup", help="Delete expired OTP codes and dead sessions")
@with_appcontext
def cleanup():
    deleted = get_auth_services().auth.cleanup()
    click.echo(f"Deleted {deleted['otp_codes']} OTP code(s) and {deleted['sessions']} session(s).")


@auth_cli.command("revoke-sessions", help="Invalidate every session of an account")
@click.argument("email")
@with_appcontext
def revoke_sessions(email):
    services = get_auth_services()
    user = services.auth.find_by_email(email)
    if not user:
        click.secho(f"No account for {email}", fg="red")
        raise SystemExit(1)
    count = services.sessions.invalidate_all_sessions(user.id, 'cli_revoke')
    click.secho(f"{count} session(s) revoked for {user.email}", fg="green")


@auth_cli.command("create-user", help="Create an account")
@click.argument("email")
@click.option("--role", type=click.Choice(UserRole.values()), default=UserRole.USER.value,
              show_default=True, help="Account role")
@click.option("--first-name", default=None)
@click.option("--last-name", default=None)
@with_appcontext
def create_user(email, role, first_name, last_name):
    try:
        user = get_auth_services().auth.create_user(
            email, role=role, first_name=first_name, last_name=last_name, method='cli'
        )
    except ValueError as exc:
        click.secho(str(exc), fg="red")
        raise SystemExit(1)
    click.secho(f"User created with id {user.id} ({user.role})", fg="green")


@auth_cli.command("init-db", help="Create missing tables (without Flask-Migrate history)")
@with_appcontext
def init_db():
    db.create_all()
    click.echo("Database tables created.")

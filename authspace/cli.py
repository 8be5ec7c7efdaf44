"""``authspace`` administration CLI."""

from pathlib import Path

import typer

import authspace.models  # noqa: F401  registers every table on Base.metadata
from authspace.bootstrap.fixtures import FixtureError, load_fixtures_file
from authspace.core.database import Base, SessionLocal, engine
from authspace.core.security import get_token_signer
from authspace.services import user_service

app = typer.Typer(add_completion=False, help="authspace administration CLI.")
user_app = typer.Typer(add_completion=False, help="Manage user accounts.")
fixtures_app = typer.Typer(add_completion=False, help="Seed the database.")
app.add_typer(user_app, name="user")
app.add_typer(fixtures_app, name="fixtures")


@app.callback()
def main() -> None:
    Base.metadata.create_all(bind=engine)


@user_app.command(name="create", help="Create a user non-interactively.")
def create_user(
    username: str = typer.Option(..., "--username", help="Unique login name."),
    firstname: str = typer.Option("", "--firstname", help="First name."),
    lastname: str = typer.Option("", "--lastname", help="Last name."),
    email: str = typer.Option(..., "--email", help="Unique email address."),
    password: str = typer.Option(..., "--password", help="Initial password."),
    staff: bool = typer.Option(False, "--staff", help="Grant superuser rights."),
) -> None:
    with SessionLocal() as db:
        outcome = user_service.create_user(
            db,
            username=username,
            first_name=firstname,
            last_name=lastname,
            email=email,
            password=password,
            is_superuser=staff,
        )
    if not outcome.ok:
        typer.echo(f"error: {outcome.detail}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"User {username} created (id={outcome.value})")


@fixtures_app.command(name="load", help="Wipe the database and load a YAML dataset (destructive).")
def load_fixtures(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="YAML dataset."),
    yes: bool = typer.Option(False, "--yes", help="Confirm destructive load."),
) -> None:
    if not yes:
        typer.echo("error: loading fixtures wipes all data; pass --yes", err=True)
        raise typer.Exit(code=1)
    with SessionLocal() as db:
        try:
            summary = load_fixtures_file(db, path, get_token_signer())
        except FixtureError as exc:
            db.rollback()
            typer.echo(f"error: {exc}", err=True)
            raise typer.Exit(code=1)
    typer.echo(
        f"Fixtures loaded: {summary.spaces} spaces, {summary.users} users, "
        f"{len(summary.invitation_tokens)} invitations, {summary.resources} resources"
    )


if __name__ == "__main__":
    app()

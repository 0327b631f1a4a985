"""Authorization engine CLI tool (authzctl)."""

import json
import logging

import typer

from authz.core.config import settings

app = typer.Typer(name="authzctl", help="Permission resolution engine CLI")
db_app = typer.Typer(help="Database management commands")
app.add_typer(db_app, name="db")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _session_factory(database_url=None):
    from authz.db.session import create_db_engine, make_session_factory

    return make_session_factory(create_db_engine(database_url))


def _decision_engine(database_url=None):
    from authz.services.decision_engine import DecisionEngine
    from authz.services.store import AuthorizationStore

    # One-shot process: nothing to gain from a cache.
    return DecisionEngine(AuthorizationStore(_session_factory(database_url)))


@db_app.command("create")
def db_create(
    database_url: str = typer.Option(None, "--database-url", help="Override DATABASE_URL"),
):
    """Create the authorization tables if they don't exist."""
    from authz.db.base import Base
    from authz.db.session import create_db_engine
    import authz.models  # noqa: F401

    Base.metadata.create_all(create_db_engine(database_url))
    typer.echo("✅ Authorization tables created (or already exist)")


@db_app.command("seed")
def db_seed(
    database_url: str = typer.Option(None, "--database-url", help="Override DATABASE_URL"),
):
    """Seed the permission catalog, default roles and the owner user."""
    from authz.db.seeds.seed_permissions import seed_permissions
    from authz.db.seeds.seed_roles import seed_roles
    from authz.db.seeds.seed_owner import seed_owner

    db = _session_factory(database_url)()
    try:
        seed_permissions(db)
        seed_roles(db)
        seed_owner(db)
    finally:
        db.close()
    typer.echo("✅ All seeds applied")


@app.command("check")
def check(
    principal: str = typer.Argument(..., help="User id or email"),
    capability: str = typer.Argument(..., help="Permission name, e.g. users.create"),
    database_url: str = typer.Option(None, "--database-url", help="Override DATABASE_URL"),
):
    """Decide one permission. Exit code 1 when denied."""
    decision = _decision_engine(database_url).decide(principal, capability)
    icon = "✅" if decision.allowed else "❌"
    line = f"{icon} {capability} for {principal}: {decision.reason.value}"
    if decision.detail:
        line += f" ({decision.detail})"
    typer.echo(line)
    if not decision.allowed:
        raise typer.Exit(code=1)


@app.command("list")
def list_permissions(
    principal: str = typer.Argument(..., help="User id or email"),
    database_url: str = typer.Option(None, "--database-url", help="Override DATABASE_URL"),
):
    """List every permission a principal currently holds."""
    from authz.core.exceptions import AuthzError

    try:
        names = _decision_engine(database_url).list_granted_capabilities(principal)
    except AuthzError as e:
        typer.echo(f"❌ {e.message}", err=True)
        raise typer.Exit(code=2)
    for name in names:
        typer.echo(f"  {name}")
    typer.echo(f"{len(names)} permissions")


@app.command("explain")
def explain(
    principal: str = typer.Argument(..., help="User id or email"),
    capability: str = typer.Argument(..., help="Permission name"),
    database_url: str = typer.Option(None, "--database-url", help="Override DATABASE_URL"),
):
    """Print why a permission is granted or denied, as JSON."""
    explanation = _decision_engine(database_url).explain(principal, capability)
    typer.echo(json.dumps(explanation, indent=2, default=str))


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Auto-reload"),
):
    """Start the FastAPI server."""
    import uvicorn
    uvicorn.run("authz.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()

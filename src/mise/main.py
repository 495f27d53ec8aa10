"""
Mise - CLI Entry Point.

Usage:
    mise ask "something quick with chicken"   Send one message
    mise health                                 Check configuration and database
    mise warm-cache                             Load the reference tables
    mise --help                                 Show help
"""

import asyncio
import logging

import typer
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.spinner import Spinner
from rich.table import Table

app = typer.Typer(
    name="mise",
    help="Mise - Your kitchen assistant.",
    add_completion=False,
)
console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Route logging through Rich at the configured level."""
    from mise.config import settings

    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(message)s",
        datefmt="%H:%M:%S",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    # Quiet down noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


@app.command()
def ask(
    message: str = typer.Argument(..., help="Message to send to Mise"),
    user_id: str | None = typer.Option(None, "--user-id", "-u", help="User id (defaults to the dev user)"),
    session_id: str | None = typer.Option(None, "--session-id", "-s", help="Continue an existing chat session"),
    voice: bool = typer.Option(False, "--voice", help="Answer as the voice surface would"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Send a single message to Mise."""
    from mise.chat import run_turn
    from mise.config import settings
    from mise.memory.sessions import SessionOwnershipError

    setup_logging(verbose)

    try:
        with Live(Spinner("dots", text="Thinking..."), console=console, transient=True):
            result = asyncio.run(
                run_turn(
                    user_id=user_id or settings.dev_user_id,
                    message=message,
                    session_id=session_id,
                    voice=voice,
                )
            )
    except SessionOwnershipError as e:
        console.print(f"\n[red]{e}[/red]")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"\n[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold green]Mise:[/bold green] {result.message}")

    if result.recipes:
        table = Table(title="Recipes")
        table.add_column("Name")
        table.add_column("Time", justify="right")
        table.add_column("Difficulty")
        table.add_column("Portions", justify="right")
        for recipe in result.recipes:
            table.add_row(
                recipe["name"],
                f"{recipe['total_time']} min",
                recipe["difficulty"],
                str(recipe["portions"]),
            )
        console.print(table)

    if result.custom_recipe:
        console.print(f"\n[bold]{result.custom_recipe['suggested_name']}[/bold]")
        for ingredient in result.custom_recipe.get("ingredients", []):
            unit = f" {ingredient['unit']}" if ingredient.get("unit") else ""
            console.print(f"  • {ingredient['quantity']:g}{unit} {ingredient['name']}")

    warning = (result.safety_flags or {}).get("allergen_warning")
    if warning:
        console.print(f"\n[yellow]⚠️  {warning}[/yellow]")

    console.print(f"\n[dim]Session: {result.session_id}[/dim]")


@app.command()
def health() -> None:
    """Check configuration and database reachability."""
    from mise.config import get_settings

    console.print("\n[bold]Mise Health Check[/bold]\n")

    try:
        settings = get_settings()
        console.print("✅ Configuration loaded")
        console.print(f"   Environment: {settings.mise_env}")
        console.print(f"   Log level: {settings.log_level}")
        console.print(f"   Chat model: {settings.mise_chat_model}")

        if settings.openai_api_key.startswith("sk-"):
            console.print("✅ OpenAI API key configured")
        else:
            console.print("⚠️  OpenAI API key may be invalid")

        if settings.supabase_url.startswith("https://"):
            console.print("✅ Supabase URL configured")
        else:
            console.print("❌ Supabase URL missing or invalid")

    except Exception as e:
        console.print(f"\n[red]❌ Configuration error: {e}[/red]")
        console.print("[dim]Make sure you have a .env file with required variables.[/dim]")
        raise typer.Exit(1)

    from mise.db import get_client

    tables = ["ingredient_aliases", "allergen_groups", "food_safety_rules", "recipes"]
    failed = False

    console.print("\n[bold]Reference Tables:[/bold]")
    client = get_client()
    for table in tables:
        try:
            result = client.table(table).select("*", count="exact").limit(0).execute()
            count = result.count if result.count is not None else "?"
            console.print(f"  ✅ {table}: {count} rows")
        except Exception as e:
            failed = True
            console.print(f"  ❌ {table}: {e}")

    if failed:
        raise typer.Exit(1)

    console.print("\n[green]All checks passed![/green]")


@app.command("warm-cache")
def warm_cache() -> None:
    """Load every reference table into memory and report sizes."""
    from mise.reference.tables import alias_cache, allergen_cache, safety_rule_cache

    async def _warm() -> dict[str, int]:
        aliases, groups, rules = await asyncio.gather(
            alias_cache.get(), allergen_cache.get(), safety_rule_cache.get()
        )
        return {
            "ingredient aliases": len(aliases),
            "allergen entries": sum(len(entries) for entries in groups.values()),
            "food safety rules": len(rules),
        }

    setup_logging()
    sizes = asyncio.run(_warm())

    for name, size in sizes.items():
        marker = "✅" if size else "⚠️ "
        console.print(f"{marker} {name}: {size}")

    if not all(sizes.values()):
        console.print("\n[yellow]Some reference data is empty; safety checks will report it as unverified.[/yellow]")


@app.command()
def version() -> None:
    """Show version information."""
    from mise import __version__

    console.print(f"Mise version {__version__}")


if __name__ == "__main__":
    app()

"""Main Typer application for the tamaclient CLI."""

import asyncio
import os
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.table import Table

from tamaclient.scenario import DEFAULT_BATH_ITEM, DEFAULT_PERSONA, DEFAULT_PET, run_scenario
from tamaclient.utils.api_client import AsyncPetClient
from tamaclient.utils.config import ClientConfig
from tamaclient.utils.confirmation import ConfirmationResult
from tamaclient.utils.errors import TamaClientError
from tamaclient.utils.messages import COMMANDS, CommandKind, Pet, SubmissionRecord

T = TypeVar("T")

console = Console()

app = typer.Typer(
    name="tama",
    help="Pet game client - play and confirm transactions from the terminal.",
    rich_markup_mode="rich",
)

EmailOption = typer.Option(..., "--email", envvar="TAMA_EMAIL", help="Account email")
PasswordOption = typer.Option(
    ..., "--password", envvar="TAMA_PASSWORD", hide_input=True, help="Account password"
)


def make_client() -> AsyncPetClient:
    return AsyncPetClient(ClientConfig.from_env())


def parse_fields(fields: List[str]) -> Dict[str, Any]:
    """Turn ``key=value`` pairs into a payload dict; integers are converted."""
    payload: Dict[str, Any] = {}
    for entry in fields:
        if "=" not in entry:
            raise typer.BadParameter(f"{entry!r} must be formatted as key=value")
        key, value = (piece.strip() for piece in entry.split("=", 1))
        if not key:
            raise typer.BadParameter("field name cannot be empty")
        try:
            payload[key] = int(value)
        except ValueError:
            payload[key] = value
    return payload


def _run(
    email: str,
    password: str,
    action: Callable[[AsyncPetClient], Awaitable[T]],
) -> T:
    async def _main() -> T:
        async with make_client() as client:
            await client.authenticate(email, password)
            return await action(client)

    try:
        return asyncio.run(_main())
    except TamaClientError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1)


def _pets_table(title: str, pets: List[Pet]) -> Table:
    table = Table(title=title)
    table.add_column("Nickname")
    table.add_column("Owner")
    table.add_column("Level", justify="right")
    table.add_column("XP", justify="right")
    table.add_column("Born", justify="right")
    for pet in pets:
        table.add_row(pet.nickname, pet.persona_tag, str(pet.level), str(pet.xp), str(pet.born_tick))
    return table


def _print_confirmation(command: str, result: ConfirmationResult) -> None:
    note = " [yellow](soft timeout)[/yellow]" if result.soft_timeout else ""
    console.print(
        f"[bold]{command}[/bold] tx={result.submission.tx_hash} "
        f"tick={result.submission.tick} status={result.status.value}{note}"
    )
    for receipt in result.receipts:
        if receipt.errors:
            console.print(f"  tick {receipt.tick}: [red]{'; '.join(receipt.errors)}[/red]")
        else:
            console.print(f"  tick {receipt.tick}: {receipt.result}")


@app.callback()
def main(
    env_file: Optional[str] = typer.Option(
        None, "--env", "-e", help="Environment file to load before connecting"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure environment and logging for every command."""
    if env_file:
        load_dotenv(env_file, override=True)
    else:
        load_dotenv()
    level = "DEBUG" if verbose else os.getenv("LOGURU_LEVEL", "WARNING").upper()
    logger.configure(handlers=[{"sink": sys.stderr, "level": level}])


@app.command()
def scenario(
    email: str = EmailOption,
    password: str = PasswordOption,
    persona: str = typer.Option(DEFAULT_PERSONA, "--persona", help="Persona tag to claim"),
    pet: str = typer.Option(DEFAULT_PET, "--pet", help="Pet nickname to create"),
    item: str = typer.Option(DEFAULT_BATH_ITEM, "--item", help="Item used for the bath"),
) -> None:
    """Run the demo flow: claim persona, create a pet, buy an item and bathe it."""

    async def _main():
        async with make_client() as client:
            return await run_scenario(
                client,
                email=email,
                password=password,
                persona_tag=persona,
                pet_name=pet,
                bath_item=item,
            )

    try:
        report = asyncio.run(_main())
    except TamaClientError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1)

    console.print(f"Persona [bold]{report.persona_tag}[/bold] at tick {report.tick}")
    console.print(f"{report.pet_name}: energy={report.energy} health={report.health}")
    console.print(_pets_table("Pets", report.pets))
    for command, result in report.confirmations.items():
        _print_confirmation(command, result)


@app.command()
def tick(email: str = EmailOption, password: str = PasswordOption) -> None:
    """Print the backend's current tick."""
    value = _run(email, password, lambda client: client.current_tick())
    console.print(value)


@app.command()
def pets(email: str = EmailOption, password: str = PasswordOption) -> None:
    """List every pet in the world."""
    console.print(_pets_table("Pets", _run(email, password, lambda client: client.pets())))


@app.command()
def leaderboard(email: str = EmailOption, password: str = PasswordOption) -> None:
    """Show the pet leaderboard."""
    console.print(
        _pets_table("Leaderboard", _run(email, password, lambda client: client.leaderboard()))
    )


@app.command()
def items(
    email: str = EmailOption,
    password: str = PasswordOption,
    persona: Optional[str] = typer.Option(None, "--persona", help="Defaults to the bound persona"),
) -> None:
    """List the items owned by a persona."""

    async def _action(client: AsyncPetClient):
        tag = persona or (await client.identity.require()).persona_tag
        return await client.persona_items(tag)

    table = Table(title="Items")
    for column in ("Name", "Kind", "Price", "Description"):
        table.add_column(column)
    for owned in _run(email, password, _action):
        table.add_row(owned.name, owned.kind, f"{owned.price:.2f}", owned.description)
    console.print(table)


@app.command()
def act(
    command: str = typer.Argument(..., help="Transaction command, e.g. feed-pet"),
    field: List[str] = typer.Option([], "--field", "-f", help="Payload entry as key=value"),
    confirm: bool = typer.Option(True, "--confirm/--no-confirm", help="Wait for receipts"),
    email: str = EmailOption,
    password: str = PasswordOption,
) -> None:
    """Submit any transaction command and optionally wait for its receipts."""
    spec = COMMANDS.get(command)
    if spec is None or spec.kind is not CommandKind.TRANSACTION:
        names = ", ".join(n for n, s in COMMANDS.items() if s.kind is CommandKind.TRANSACTION)
        raise typer.BadParameter(f"unknown transaction {command!r}; choose from {names}")
    payload = parse_fields(field)

    async def _action(client: AsyncPetClient):
        record = await client.dispatch(command, payload)
        if not confirm:
            return record
        return await client.wait_for_receipt(record)

    try:
        outcome = _run(email, password, _action)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    if isinstance(outcome, SubmissionRecord):
        console.print(f"[bold]{command}[/bold] tx={outcome.tx_hash} tick={outcome.tick}")
    else:
        _print_confirmation(command, outcome)

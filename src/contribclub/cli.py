import asyncio
import json
import logging

import typer

from contribclub.api import GithubClient
from contribclub.config import get_settings
from contribclub.core.aggregator import Aggregator
from contribclub.core.blog import BlogEngine
from contribclub.core.contact import submit_contact
from contribclub.core.reactions import ReactionError, ReactionService, client_ip
from contribclub.db import Store

app = typer.Typer()


@app.callback()
def main(log_level: str = typer.Option(None, help="Override LOG_LEVEL.")):
    level = (log_level or get_settings().log_level).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO))


def _echo(body: dict) -> None:
    typer.echo(json.dumps(body, indent=2, ensure_ascii=False))


@app.command()
def aggregate():
    """Run one aggregation pass and print the payload."""
    payload = asyncio.run(Aggregator(store=Store.from_settings()).run())
    _echo(payload.to_dict())


@app.command()
def blog(slug: str):
    """Print one blog post, from the store or the wiki."""
    settings = get_settings()

    async def _load():
        async with GithubClient(settings.github_token, settings=settings) as gh:
            return await BlogEngine(gh, Store.from_settings(), settings=settings).load(slug)

    entry = asyncio.run(_load())
    if entry is None:
        typer.echo(f"Blog post not found: {slug}", err=True)
        raise typer.Exit(code=1)
    _echo(entry.model_dump(mode="json", by_alias=True))


def _reaction_call(fn, *args) -> None:
    try:
        result = fn(*args)
    except ReactionError as e:
        typer.echo(f"{e.status_code}: {e.message}", err=True)
        raise typer.Exit(code=1)
    _echo({"status": result.status_code, **result.to_dict()})


def _headers(values: list[str] | None) -> dict[str, str]:
    """Parse repeated ``Name: value`` options into a header map."""
    headers = {}
    for value in values or []:
        name, _, content = value.partition(":")
        headers[name.strip()] = content.strip()
    return headers


IP_OPTION = typer.Option(None, "--ip", help="Peer address of the reader.")
HEADER_OPTION = typer.Option(
    None, "--header", "-H", help="Proxy header as 'Name: value', e.g. 'X-Forwarded-For: 203.0.113.7'."
)


@app.command()
def reactions(slug: str, ip: str = IP_OPTION, header: list[str] = HEADER_OPTION):
    """Show reaction counts for a post."""
    _reaction_call(ReactionService(Store.from_settings()).get, slug, client_ip(ip, _headers(header)))


@app.command()
def react(slug: str, emoji: str, ip: str = IP_OPTION, header: list[str] = HEADER_OPTION):
    """React to a post; the same emoji again removes the reaction."""
    _reaction_call(ReactionService(Store.from_settings()).react, slug, emoji, client_ip(ip, _headers(header)))


@app.command()
def contact(name: str, email: str, github: str):
    """Record a request to join the club."""
    result = submit_contact(Store.from_settings(), name, email, github)
    _echo({"status": result.status_code, **result.body})
    if result.status_code != 200:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

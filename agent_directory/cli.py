import asyncio
import logging
from datetime import datetime
from typing import Optional

import typer
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from agent_directory.config import Config
from agent_directory.feeds import DirectoryFeed, DirectoryState
from agent_directory.models import Agent, Post
from agent_directory.services import Services

app = typer.Typer(help="Browse the agent directory from the local cache, refreshing when online.")
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level")):
    level = "DEBUG" if verbose else Config.from_env().log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _agents_table(agents: list[Agent]) -> Table:
    table = Table(show_lines=False)
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Username")
    table.add_column("Email")
    table.add_column("Company")
    for a in agents:
        table.add_row(str(a.id), a.full_name, a.username, a.email, a.company.name if a.company and a.company.name else "")
    return table


def _print_posts(posts: list[Post]) -> None:
    for p in posts:
        tags = f" [dim]#{' #'.join(p.tags)}[/]" if p.tags else ""
        console.print(f"[bold]{p.title}[/] [cyan]({p.total_reactions} reactions)[/]{tags}")
        console.print(f"  {p.body}")


def _format_time(epoch_ms: int) -> str:
    if not epoch_ms:
        return "never"
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


# ── Listing / profile ────────────────────────────────────────────────────────

@app.command()
def agents(
    query: str = typer.Option("", "--query", "-q", help="Filter by name, email or username"),
    limit: int = typer.Option(20, "--limit", "-l", help="Agents to fetch per page"),
    skip: int = typer.Option(0, "--skip", "-s", help="Agents to skip"),
    refresh: bool = typer.Option(True, "--refresh/--no-refresh", help="Try the network before showing the cache"),
):
    """List cached agents, refreshing from the API first when allowed."""
    asyncio.run(_agents(query, limit, skip, refresh))


async def _agents(query: str, limit: int, skip: int, refresh: bool) -> None:
    async with Services() as services:
        coordinator = services.coordinator
        result = None
        if refresh:
            with console.status("[bold green]Refreshing from the API..."):
                if query.strip():
                    result = await coordinator.refresh_agents_by_search(query)
                else:
                    result = await coordinator.refresh_agents(limit, skip)

        async with await coordinator.live_agents(query) as live:
            rows = await anext(live)

        if rows:
            console.print(_agents_table(rows))
        elif result is not None and not result.ok:
            console.print(f"[bold red]Error:[/] {result.error}")
        else:
            console.print("[dim]No agents cached.[/]")


@app.command()
def search(
    query: str = typer.Argument(help="Name, email or username fragment"),
    refresh: bool = typer.Option(True, "--refresh/--no-refresh", help="Search the API before showing the cache"),
):
    """Search agents remotely, then show the cached matches."""
    asyncio.run(_agents(query, 20, 0, refresh))


@app.command()
def refresh(
    limit: int = typer.Option(20, "--limit", "-l", help="Agents to fetch"),
    skip: int = typer.Option(0, "--skip", "-s", help="Agents to skip"),
):
    """Fetch a page of agents from the API into the cache."""
    asyncio.run(_refresh(limit, skip))


async def _refresh(limit: int, skip: int) -> None:
    async with Services() as services:
        with console.status("[bold green]Refreshing from the API..."):
            result = await services.coordinator.refresh_agents(limit, skip)
        if not result.ok:
            console.print(f"[bold red]Error:[/] {result.error}")
            raise typer.Exit(1)
        console.print(f"[bold green]✓[/] refreshed {len(result.value)} agent(s)")


@app.command()
def agent(
    agent_id: int = typer.Argument(help="Agent id"),
    posts: bool = typer.Option(True, "--posts/--no-posts", help="Show the agent's posts"),
):
    """Show one agent from the cache, then their posts."""
    asyncio.run(_agent(agent_id, posts))


async def _agent(agent_id: int, show_posts: bool) -> None:
    async with Services() as services:
        coordinator = services.coordinator
        cached = await coordinator.get_agent_cache_first(agent_id)
        found = cached.value if cached.ok else None
        if found is None:
            # Nothing cached yet; give the background refresh a chance.
            await coordinator.join()
            found = await services.store.get_agent_by_id(agent_id)
        if found is None:
            console.print(f"[bold red]Error:[/] agent {agent_id} is not cached")
            raise typer.Exit(1)

        console.rule(f"[bold]{found.full_name}[/] [dim]@{found.username}[/]")
        console.print(f"[dim]email:[/] {found.email}  [dim]phone:[/] {found.phone}")
        if found.company:
            console.print(f"[dim]company:[/] {found.company.name} · {found.company.title}")
        if found.address:
            console.print(f"[dim]city:[/] {found.address.city}, {found.address.state}")
        console.print(f"[dim]cached:[/] {_format_time(found.cached_at)}")

        if not show_posts:
            return
        result = await coordinator.refresh_posts_for_agent(agent_id)
        async with await coordinator.live_posts(agent_id) as live:
            rows = await anext(live)
        console.rule("Posts")
        if rows:
            _print_posts(rows)
        elif not result.ok:
            console.print(f"[bold red]Error:[/] {result.error}")
        else:
            console.print("[dim]No posts.[/]")


@app.command()
def browse(
    debounce: float = typer.Option(0.5, "--debounce", help="Seconds of quiet before a remote search"),
):
    """Interactive search over the directory. Empty line shows everyone, ':r' refreshes."""
    asyncio.run(_browse(debounce))


def _render(state: DirectoryState) -> None:
    label = f"'{state.query}'" if state.query.strip() else "all agents"
    console.print(f"[dim]{label}: {len(state.agents)} result(s)[/]")
    for a in state.agents[:10]:
        console.print(f"  [bold]{a.full_name}[/] [dim]@{a.username} · {a.email}[/]")
    if state.error:
        console.print(f"[bold red]Error:[/] {state.error}")


async def _browse(debounce: float) -> None:
    async with Services() as services:
        feed = DirectoryFeed(services.coordinator, debounce=debounce)
        await feed.start()
        await feed.settle()
        _render(feed.state)

        prompt_session = PromptSession()
        console.print("[bold green]Agent directory[/] [dim](type 'exit' to quit)[/]\n")
        try:
            while True:
                try:
                    text = await prompt_session.prompt_async(HTML("<ansigreen><b>Search</b></ansigreen>: "))
                except (EOFError, KeyboardInterrupt):
                    break
                if text.strip().lower() in ("exit", "quit", "q"):
                    break
                if text.strip() == ":r":
                    await feed.refresh()
                else:
                    await feed.set_query(text)
                    await feed.settle()
                _render(feed.state)
        finally:
            await feed.close()
        console.print("[dim]Goodbye![/]")


# ── Settings / maintenance ───────────────────────────────────────────────────

@app.command()
def settings():
    """Show the offline / auto-refresh settings and the network status."""
    asyncio.run(_settings())


async def _settings() -> None:
    async with Services() as services:
        snap = await services.settings.snapshot()
        reachable = services.connectivity.is_reachable()
        console.print(f"offline only:      {'on' if snap.offline_only else 'off'}")
        console.print(f"auto refresh:      {'on' if snap.auto_refresh_enabled else 'off'}")
        console.print(f"last refresh:      {_format_time(snap.last_refresh_time)}")
        console.print(f"network:           {'[green]reachable[/]' if reachable else '[red]unreachable[/]'}")
        console.print(f"cached agents:     {await services.store.count_agents()}")


@app.command("set-offline")
def set_offline(state: str = typer.Argument(help="'on' forbids all network calls, 'off' allows them")):
    """Turn offline-only mode on or off."""
    asyncio.run(_set_flag("offline", _parse_switch(state)))


@app.command("set-auto-refresh")
def set_auto_refresh(state: str = typer.Argument(help="'on' or 'off'")):
    """Turn periodic background refresh on or off."""
    asyncio.run(_set_flag("auto_refresh", _parse_switch(state)))


def _parse_switch(state: str) -> bool:
    if state.lower() not in ("on", "off"):
        console.print(f"[bold red]Error:[/] expected 'on' or 'off', got '{state}'")
        raise typer.Exit(1)
    return state.lower() == "on"


async def _set_flag(flag: str, enable: bool) -> None:
    async with Services() as services:
        if flag == "offline":
            await services.settings.set_offline_only(enable)
        else:
            await services.settings.set_auto_refresh_enabled(enable)
        console.print(f"[bold green]✓[/] {flag.replace('_', ' ')} {'on' if enable else 'off'}")


@app.command("clear-cache")
def clear_cache():
    """Delete every cached agent and post."""
    asyncio.run(_clear_cache())


async def _clear_cache() -> None:
    async with Services() as services:
        result = await services.coordinator.clear_cache()
        if not result.ok:
            console.print(f"[bold red]Error:[/] {result.error}")
            raise typer.Exit(1)
        console.print("[bold green]✓[/] cache cleared")


@app.command("run-scheduler")
def run_scheduler(
    interval: Optional[int] = typer.Option(None, "--interval", "-i", help="Minutes between refreshes"),
):
    """Run the periodic background refresh in the foreground until interrupted."""
    try:
        asyncio.run(_run_scheduler(interval))
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/]")


async def _run_scheduler(interval: int | None) -> None:
    config = Config.from_env()
    if interval is not None:
        config.refresh_interval_minutes = interval
    async with Services(config) as services:
        if not await services.restore_background_refresh():
            console.print("[yellow]Auto refresh is off; nothing to schedule.[/]")
            return
        console.print(
            f"[bold green]Refreshing every {config.refresh_interval_minutes} min[/] [dim](Ctrl-C to stop)[/]"
        )
        watch = await services.settings.live_last_refresh_time()
        async with watch:
            async for stamp in watch:
                if stamp:
                    console.print(f"[dim]last refresh:[/] {_format_time(stamp)}")


if __name__ == "__main__":
    app()

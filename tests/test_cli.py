"""Command surface, run through typer's CliRunner over a temporary cache."""

from unittest.mock import AsyncMock

import httpx
import pytest
from typer.testing import CliRunner

from agent_directory import cli
from agent_directory.config import Config
from agent_directory.errors import RemoteTransportFailure
from agent_directory.fetchers.dummyjson import RemoteSource
from agent_directory.models import Agent, AgentPage, Company
from agent_directory.network import ConnectivityMonitor
from agent_directory.services import Services

runner = CliRunner()

EMILY = Agent(id=1, first_name="Emily", last_name="Johnson", username="emilys", company=Company(name="Acme"))
BOB = Agent(id=2, first_name="Bob", last_name="Stone", username="bobs")


@pytest.fixture
def remote(monkeypatch, tmp_path):
    """Point every command at a tmp cache, a mocked API and an always-up network."""
    fake = AsyncMock(spec=RemoteSource)
    fake.fetch_agents.return_value = AgentPage(users=[EMILY, BOB])
    fake.search_agents.return_value = AgentPage(users=[EMILY])
    config = Config(
        db_path=str(tmp_path / "cache.db"),
        settings_db_path=str(tmp_path / "settings.db"),
        settings_backend="sqlite",
    )

    def build(_config=None):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(204)))
        monitor = ConnectivityMonitor(
            "http://probe.test/", client=client, link_check=lambda: True, poll_interval=3600
        )
        return Services(config, remote=fake, connectivity=monitor)

    monkeypatch.setattr(cli, "Services", build)
    return fake


def test_refresh_fills_cache_then_agents_lists_it(remote):
    result = runner.invoke(cli.app, ["refresh", "--limit", "2"])
    assert result.exit_code == 0, result.output
    assert "refreshed 2 agent(s)" in result.output
    remote.fetch_agents.assert_awaited_with(2, 0)

    listing = runner.invoke(cli.app, ["agents", "--no-refresh"])
    assert listing.exit_code == 0, listing.output
    assert "Emily Johnson" in listing.output
    assert "Bob Stone" in listing.output


def test_refresh_failure_exits_nonzero(remote):
    remote.fetch_agents.side_effect = RemoteTransportFailure("connect failed")

    result = runner.invoke(cli.app, ["refresh"])

    assert result.exit_code == 1
    assert "connect failed" in result.output


def test_agents_with_empty_cache(remote):
    result = runner.invoke(cli.app, ["agents", "--no-refresh"])

    assert result.exit_code == 0
    assert "No agents cached." in result.output


def test_search_queries_api_and_shows_matches(remote):
    result = runner.invoke(cli.app, ["search", "emi"])

    assert result.exit_code == 0, result.output
    remote.search_agents.assert_awaited_once_with("emi")
    assert "Emily Johnson" in result.output
    assert "Bob" not in result.output


def test_agent_shows_profile(remote):
    runner.invoke(cli.app, ["refresh"])

    result = runner.invoke(cli.app, ["agent", "1", "--no-posts"])

    assert result.exit_code == 0, result.output
    assert "Emily Johnson" in result.output
    assert "Acme" in result.output


def test_unknown_agent_exits_nonzero(remote):
    result = runner.invoke(cli.app, ["agent", "404", "--no-posts"])

    assert result.exit_code == 1
    assert "not cached" in result.output


def test_set_offline_persists_and_gates_refresh(remote):
    result = runner.invoke(cli.app, ["set-offline", "on"])
    assert result.exit_code == 0, result.output

    shown = runner.invoke(cli.app, ["settings"])
    assert "offline only:      on" in shown.output

    refreshed = runner.invoke(cli.app, ["refresh"])
    assert refreshed.exit_code == 1
    assert "Network unavailable or offline mode enabled" in refreshed.output
    remote.fetch_agents.assert_not_awaited()


def test_set_switch_rejects_other_words(remote):
    result = runner.invoke(cli.app, ["set-auto-refresh", "maybe"])

    assert result.exit_code == 1
    assert "expected 'on' or 'off'" in result.output


def test_run_scheduler_with_auto_refresh_off(remote):
    assert runner.invoke(cli.app, ["set-auto-refresh", "off"]).exit_code == 0

    result = runner.invoke(cli.app, ["run-scheduler"])

    assert result.exit_code == 0, result.output
    assert "Auto refresh is off" in result.output


def test_clear_cache_empties_listing(remote):
    runner.invoke(cli.app, ["refresh"])

    result = runner.invoke(cli.app, ["clear-cache"])
    assert result.exit_code == 0, result.output
    assert "cache cleared" in result.output

    listing = runner.invoke(cli.app, ["agents", "--no-refresh"])
    assert "No agents cached." in listing.output

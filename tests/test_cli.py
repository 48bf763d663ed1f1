"""Tests for the command line interface."""

import jwt
import pytest

from cleanmeter.cli.main import build_parser, main, run_command
from cleanmeter.config.settings import Settings
from cleanmeter.errors import NotFoundError
from cleanmeter.storage.memory import InMemoryEntitlementStore


@pytest.fixture
def settings():
    return Settings(jwt_secret="cli-secret")


@pytest.fixture
def cli_store():
    return InMemoryEntitlementStore()


def run(argv, settings, store):
    return run_command(build_parser().parse_args(argv), settings, store)


class TestCommands:
    """Test store-backed commands against the in-memory store."""

    def test_create_user_then_upgrade(self, settings, cli_store):
        created = run(["create-user", "u1", "Dana@Example.com"], settings, cli_store)
        assert created["email"] == "dana@example.com"
        assert created["plan"]["type"] == "free"

        result = run(
            ["upgrade", "dana@example.com", "--plan", "trial", "--duration", "annual", "--actor", "ops"],
            settings,
            cli_store,
        )

        assert result["success"] is True
        assert result["userId"] == "u1"
        assert result["expiresAt"] is not None

        usage = run(["usage", "u1"], settings, cli_store)
        assert usage["plan"] == "trial"
        assert usage["dailyScans"] is None

    def test_init_db_skips_memory_store(self, settings, cli_store):
        assert run(["init-db"], settings, cli_store)["status"] == "skipped"

    def test_token(self, settings, cli_store):
        result = run(["token", "u1", "--admin"], settings, cli_store)

        claims = jwt.decode(result["token"], "cli-secret", algorithms=["HS256"])
        assert claims["sub"] == "u1"
        assert claims["admin"] is True

    def test_upgrade_requires_actor(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["upgrade", "u1"])


class TestMain:
    """Test the entry point."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "Available commands" in capsys.readouterr().out

    def test_unknown_user(self, settings, cli_store):
        with pytest.raises(NotFoundError):
            run(["usage", "ghost"], settings, cli_store)

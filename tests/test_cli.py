import json

import pytest

from monitoring_fakes import make_config
from order_watch import cli
from order_watch.models import Order
from order_watch.scraper import ScrapeResult


@pytest.fixture
def patched_cli(monkeypatch, logger):
    monkeypatch.setattr(cli, "load_config", lambda: make_config())
    monkeypatch.setattr(cli, "get_logger", lambda: logger)
    return cli


def test_parser_reads_monitor_options() -> None:
    args = cli._build_parser().parse_args(["monitor", "--email", "shop@example.com", "--max-cycles", "3", "--no-db"])

    assert args.command == "monitor"
    assert args.email == "shop@example.com"
    assert args.max_cycles == 3
    assert args.no_db is True


@pytest.mark.parametrize("command", ["monitor", "scrape"])
def test_missing_credentials_exit_with_usage_code(patched_cli, log_stream, command) -> None:
    assert patched_cli.main([command, "--no-db"]) == 2
    assert "Portal credentials missing" in log_stream.getvalue()


def test_scrape_prints_orders_as_json_lines(patched_cli, monkeypatch, capsys) -> None:
    async def _fake_scrape(email, password, *, config, logger):
        assert (email, password) == ("shop@example.com", "pw")
        return ScrapeResult(success=True, orders=[Order(order_id="A-1", total_amount=900)])

    monkeypatch.setattr(patched_cli, "scrape_orders", _fake_scrape)

    code = patched_cli.main(["scrape", "--email", "shop@example.com", "--password", "pw", "--no-db"])

    assert code == 0
    payload = json.loads(capsys.readouterr().out.strip())
    assert payload["orders"][0]["orderId"] == "A-1"
    assert payload["orders"][0]["totalAmount"] == 900


def test_failed_scrape_exits_non_zero(patched_cli, monkeypatch) -> None:
    async def _fake_scrape(email, password, *, config, logger):
        return ScrapeResult(success=False, error="Login failed: rejected")

    monkeypatch.setattr(patched_cli, "scrape_orders", _fake_scrape)

    assert patched_cli.main(["scrape", "--email", "a@b.c", "--password", "x", "--no-db"]) == 1

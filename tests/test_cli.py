from contextlib import asynccontextmanager

import pyarrow.parquet as pq
import pytest
from typer.testing import CliRunner

from streamscan.application.use_cases import ScanContext
from streamscan.domain.schema_fields import compute_schema_id
from streamscan.presentation import cli

from conftest import REGISTRY, SHAPES, FakeLedger, FakeRegistry, make_log, word

runner = CliRunner()


@pytest.fixture
def wire(monkeypatch, tmp_path):
    """Point the CLI at in-memory fakes instead of a live endpoint."""
    def _wire(ledger, registry=None):
        @asynccontextmanager
        async def fake_open(settings):
            yield ScanContext(settings=settings, reader=ledger, registry=registry or FakeRegistry())
        monkeypatch.setattr(cli, "open_context", fake_open)
        monkeypatch.delenv("STREAMSCAN_RPC_URL", raising=False)
        monkeypatch.delenv("STREAMSCAN_REGISTRY", raising=False)
        return ["--config", str(tmp_path / "missing.yaml")]
    return _wire


def test_events_lists_known_shapes():
    result = runner.invoke(cli.app, ["events"])
    assert result.exit_code == 0
    assert "DataSchemaRegistered" in result.stdout
    assert "RoleRevoked" in result.stdout


def test_scan_prints_summary(wire):
    ledger = FakeLedger([make_log("0x1", 0, 9000), make_log("0x2", 0, 9500)], failing_ranges=[(801, 1600)])
    args = wire(ledger)
    result = runner.invoke(cli.app, ["scan", REGISTRY, *args])
    assert result.exit_code == 0, result.output
    assert "records=2" in result.stdout
    assert "skipped 1 chunk" in result.stdout


def test_scan_search_and_export(wire, tmp_path):
    ledger = FakeLedger([make_log("0x1", 0, 9000), make_log("0x2", 0, 9500, topics=(word(1),))])
    args = wire(ledger)
    out = tmp_path / "snap.parquet"
    result = runner.invoke(cli.app, ["scan", REGISTRY, *args, "--search", "raw", "--out", str(out)])
    assert result.exit_code == 0, result.output
    assert "shown=1/1" in result.stdout
    assert pq.read_table(str(out)).num_rows == 2


def test_scan_event_filter_rejects_unknown_name(wire):
    args = wire(FakeLedger())
    result = runner.invoke(cli.app, ["scan", REGISTRY, *args, "--event", "Nope"])
    assert result.exit_code != 0


def test_scan_fatal_failure_exits_1(wire):
    args = wire(FakeLedger(latest_fails=True))
    result = runner.invoke(cli.app, ["scan", REGISTRY, *args])
    assert result.exit_code == 1


def test_schemas_lists_names(wire):
    schema = "bool flag"
    sid = compute_schema_id(schema)
    ledger = FakeLedger([make_log("0x1", 0, 9000, topics=(SHAPES["DataSchemaRegistered"].topic0, sid))])
    args = wire(ledger, FakeRegistry([schema], names={sid: "flags"}))
    result = runner.invoke(cli.app, ["schemas", *args])
    assert result.exit_code == 0, result.output
    assert "flags" in result.stdout
    assert "schemas=1" in result.stdout


def test_bad_config_exits_2(tmp_path):
    p = tmp_path / "bad.yaml"
    p.write_text("scan:\n  chunk_width: 0\n")
    result = runner.invoke(cli.app, ["scan", REGISTRY, "--config", str(p)])
    assert result.exit_code == 2


def test_watch_stops_after_ticks(wire):
    ledger = FakeLedger([make_log("0x1", 0, 9000)])
    args = wire(ledger)
    result = runner.invoke(cli.app, ["watch", REGISTRY, *args, "--interval-ms", "100", "--ticks", "2"])
    assert result.exit_code == 0, result.output
    assert "1 new" in result.stdout
    assert "after 2 refresh(es)" in result.stdout


def test_scan_details_shows_args_and_raw_fields(wire):
    ledger = FakeLedger([
        make_log("0x1", 0, 9000),
        make_log("0x2", 0, 9500, topics=(word(1),), data="0xdead"),
    ])
    args = wire(ledger)
    result = runner.invoke(cli.app, ["scan", REGISTRY, *args, "--details"], env={"COLUMNS": "240"})
    assert result.exit_code == 0, result.output
    assert "schemaId: " + word(9_000_000) in result.stdout
    assert "topic0: " + word(1) in result.stdout
    assert "data: 0xdead" in result.stdout
    assert "reason: unknown topic0" in result.stdout


def test_scan_details_off_by_default(wire):
    args = wire(FakeLedger([make_log("0x1", 0, 9000)]))
    result = runner.invoke(cli.app, ["scan", REGISTRY, *args])
    assert result.exit_code == 0, result.output
    assert "schemaId" not in result.stdout


@pytest.mark.parametrize("bad", [["--lookback", "-1"], ["--chunk-width", "0"], ["--limit", "-5"]])
def test_scan_rejects_out_of_range_options(wire, bad):
    ledger = FakeLedger([make_log("0x1", 0, 9000)])
    args = wire(ledger)
    result = runner.invoke(cli.app, ["scan", REGISTRY, *args, *bad])
    assert result.exit_code == 2
    assert ledger.log_calls == []
    assert not isinstance(result.exception, ValueError)

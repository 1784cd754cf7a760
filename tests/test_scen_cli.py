import json

import pytest

from scen.__main__ import main, parse_args

from conftest import ADMIN, BZRX, COMPTROLLER

CONFIG = f"""
accounts:
  Admin: "{ADMIN}"
contracts:
  - {{name: Comptroller, kind: Comptroller, address: "{COMPTROLLER}"}}
  - {{name: bZRX, kind: BToken, address: "{BZRX}"}}
"""


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.delenv("PROVIDER", raising=False)
    monkeypatch.delenv("SCEN_DRY_RUN", raising=False)
    path = tmp_path / "scen.yaml"
    path.write_text(CONFIG)
    return str(path)


def test_parse_args():
    args = parse_args(["run.scen", "--dry-run", "--dump", "out.json"])
    assert (args.script, args.dry_run, args.dump, args.config) == ("run.scen", True, "out.json", None)


@pytest.mark.asyncio
async def test_run_script_dry_run_and_dump(tmp_path, config_path, capsys):
    script = tmp_path / "support.scen"
    script.write_text("-- support a market\nComptroller SupportMarket bZRX\nPrint done\n")
    dump = tmp_path / "world.json"

    await main([str(script), "--config", config_path, "--dry-run", "--dump", str(dump)])

    # side effects first, then the value of the last instruction
    assert capsys.readouterr().out.splitlines() == ["done", "Printed: done"]
    data = json.loads(dump.read_text())
    assert data['dry_run'] is True
    assert [a['description'] for a in data['actions']] == [
        "Dry run: skipped Supported market bZRX",
        "Printed: done",
    ]
    assert data['actions'][0]['result']['status'] == 'skipped'


@pytest.mark.asyncio
async def test_run_script_prints_final_value(tmp_path, config_path, capsys):
    script = tmp_path / "help.scen"
    script.write_text("Help Nope\n")
    await main([str(script), "--config", config_path])
    out = capsys.readouterr().out.splitlines()
    assert out == ["No commands in scope 'Nope'. Scopes: Comptroller", "[]"]


@pytest.mark.asyncio
async def test_failing_script_exits_nonzero(tmp_path, config_path, capsys):
    script = tmp_path / "bad.scen"
    script.write_text("Print ok\nBogus\n")
    with pytest.raises(SystemExit) as exc:
        await main([str(script), "--config", config_path])
    assert exc.value.code == 1
    captured = capsys.readouterr()
    assert captured.out.splitlines() == ["ok"]
    assert "Error on line 2: NoMatchingOverload" in captured.err


@pytest.mark.asyncio
async def test_missing_script(tmp_path, config_path, capsys):
    with pytest.raises(SystemExit):
        await main([str(tmp_path / "nope.scen"), "--config", config_path])
    assert "file not found" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_bad_config(tmp_path, capsys):
    path = tmp_path / "bad.yaml"
    path.write_text("colour: blue\n")
    with pytest.raises(SystemExit):
        await main(["x.scen", "--config", str(path)])
    assert "unknown configuration key(s): colour" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_report_flag_prints_run_summary(tmp_path, config_path, capsys):
    script = tmp_path / "support.scen"
    script.write_text("Comptroller SupportMarket bZRX\nPrint done\n")
    await main([str(script), "--config", config_path, "--dry-run", "--report"])
    out = capsys.readouterr().out.splitlines()
    assert out[:2] == ["done", "Printed: done"]
    assert out[2] == "Scenario succeeded"
    assert "1. Dry run: skipped Supported market bZRX [skipped]" in out
    assert "2. Printed: done" in out


@pytest.mark.asyncio
async def test_report_flag_on_failure(tmp_path, config_path, capsys):
    script = tmp_path / "bad.scen"
    script.write_text("Bogus\n")
    with pytest.raises(SystemExit):
        await main([str(script), "--config", config_path, "--report"])
    out = capsys.readouterr().out
    assert out.startswith("Scenario failed")
    assert "(no actions)" in out

import argparse
import asyncio
import sys
from pathlib import Path

from scen.scen_config import ScenarioConfig, load_config
from scen.scen_errors import ConfigError
from scen.scen_printer import Printer, render_report
from scen.scen_runtime import ExecutionResult, ScenarioRunner
from scen.scen_serialize import serialize, world_to_data, detect_format

PROMPT = "scen> "


def fail(message: str):
    print(f"Error: {message}", file=sys.stderr)
    raise SystemExit(1)


async def read_line(prompt: str) -> str:
    # stdin is read on the default executor so the event loop stays free
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await asyncio.get_running_loop().run_in_executor(None, sys.stdin.readline)


def show_result(result: ExecutionResult, printer: Printer, topic: str = 'stdout') -> bool:
    """
    Prints a result's side effects for `topic`, then either its error (to
    stderr) or its final value. Returns False when the result is an error.
    """
    for effect in result.side_effects:
        if effect.get('topics') == [topic]:
            print(effect.get('message', ''))
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return False
    if result.value is not None:
        print(printer.pformat(result.value))
    return True


def dump_world(world, path: str):
    text = serialize(world_to_data(world), fmt=detect_format(path=path) or 'json')
    Path(path).write_text(text, encoding="utf-8")


def build_runner(args) -> ScenarioRunner:
    config = load_config(args.config) if args.config else ScenarioConfig().apply_env()
    if args.dry_run:
        config.dry_run = True
    return ScenarioRunner(config=config)


async def run_script_file(runner: ScenarioRunner, file_path: str, dump: str = None,
                          summary: bool = False):
    """Runs one scenario file; a failing scenario exits with status 1."""
    try:
        source = Path(file_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        fail(f"file not found: {file_path}")
    result = await runner.handle_script(source)
    ok = show_result(result, Printer())
    if summary:
        print(render_report(result))
    if dump:
        dump_world(result.world, dump)
    if not ok:
        raise SystemExit(1)


async def repl(runner: ScenarioRunner):
    """
    Interactive session. Each line runs against the world left by the
    previous one; errors are reported and the session carries on.
    """
    print("scen interactive mode. Enter instructions; 'quit' or Ctrl+D to leave.")
    printer = Printer()
    while True:
        raw = await read_line(PROMPT)
        if raw == "":
            print()
            return
        line = raw.strip()
        if line in ("quit", "exit"):
            return
        if line:
            show_result(await runner.handle_script(line), printer)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="scen", description="Run a scenario script, or start a REPL.")
    parser.add_argument("script", nargs="?", help="scenario file to run")
    parser.add_argument("--config", help="YAML or JSON configuration file")
    parser.add_argument("--dry-run", action="store_true", help="skip every state-changing call")
    parser.add_argument("--dump", metavar="FILE", help="write the final world (.json or .yaml)")
    parser.add_argument("--report", action="store_true", help="print a summary of the run's actions")
    return parser.parse_args(argv)


async def main(argv=None):
    args = parse_args(argv)
    try:
        runner = build_runner(args)
    except ConfigError as e:
        fail(str(e))
    if args.script:
        await run_script_file(runner, args.script, args.dump, args.report)
        return
    await repl(runner)
    if args.dump:
        dump_world(runner.world, args.dump)


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print()


if __name__ == "__main__":
    cli()

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from config_validator import format_issues, load_sequence_config, validate_config
from execution_log import save_execution_log
from input_collectors import ConsoleInputCollector
from sequence_errors import ConfigError
from sequence_logging import configure_logging, logger
from sequence_models import RunOptions, RunResult, SequenceConfig
from sequence_runner import SequenceRunner


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sequence-runner", description="Run an HTTP request sequence from a JSON config file")
    parser.add_argument("config_file", help="Path to sequence config JSON file")
    parser.add_argument(
        "--start-step",
        dest="start_step",
        type=int,
        default=1,
        help="Start execution from step N (1-indexed); earlier steps are skipped",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    save = parser.add_mutually_exclusive_group()
    save.add_argument("--save-log", dest="save_log", action="store_true", default=None, help="Save the execution log without asking")
    save.add_argument("--no-save-log", dest="save_log", action="store_false", help="Never save the execution log")
    parser.add_argument("--log-dir", dest="log_dir", default="logs", help="Directory for saved execution logs")
    parser.add_argument(
        "--no-browser",
        dest="launch_browser",
        action="store_false",
        help="Do not open URLs requested by launchBrowser",
    )
    parser.add_argument(
        "--validate-only",
        dest="validate_only",
        action="store_true",
        help="Validate the config file and exit",
    )
    return parser.parse_args(argv)


def load_config_file(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _should_save(save_log: Optional[bool]) -> bool:
    if save_log is not None:
        return save_log
    if not sys.stdin.isatty():
        return False
    answer = input("Save execution log? (y/n): ").strip().lower()
    return answer in ("y", "yes")


async def run_sequence(config: SequenceConfig, options: RunOptions) -> RunResult:
    runner = SequenceRunner(config, options, input_collector=ConsoleInputCollector())
    return await runner.run()


def main(argv=None) -> int:
    args = parse_args(argv)
    config_path = Path(args.config_file)

    try:
        data = load_config_file(config_path)
    except FileNotFoundError:
        print(f"Error: config file not found: {config_path}", file=sys.stderr)
        return 1
    except json.JSONDecodeError as e:
        print(f"Error: {config_path} is not valid JSON: {e}", file=sys.stderr)
        return 1

    if args.validate_only:
        issues = validate_config(data)
        print(format_issues(issues))
        return 1 if issues else 0

    try:
        config = load_sequence_config(data)
    except ConfigError as e:
        print(format_issues(e.issues) if e.issues else str(e), file=sys.stderr)
        return 1

    if args.start_step < 1 or args.start_step > len(config.nodes):
        print(f"Error: --start-step must be between 1 and {len(config.nodes)}", file=sys.stderr)
        return 1

    configure_logging(args.debug or config.enableDebug)
    options = RunOptions(start_step=args.start_step - 1, debug=args.debug, launch_browser=args.launch_browser)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(run_sequence(config, options))
    except KeyboardInterrupt:
        print("Stopping sequence...")
        return 130
    finally:
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()

    print(
        f"\nSummary: {result.steps_executed} executed, {result.steps_skipped} skipped, "
        f"{result.steps_failed} failed"
    )

    if _should_save(args.save_log):
        try:
            save_execution_log(result, str(config_path), args.log_dir, start_step=options.start_step)
        except OSError as e:
            logger.error(f"Could not save execution log: {e}")

    return 0 if result.success else 1


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()

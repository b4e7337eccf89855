from __future__ import annotations

import argparse
import logging
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
import uvicorn
from snippet_sandbox import Denied, ExecutionRequest, ExecutionService, load_constraints, to_result
from snippet_sandbox.api import create_app

_CONSOLE = Console(no_color=False)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m sbx")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser for running, checking and serving snippets.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m sbx",
        description=(
            "snippet-sandbox CLI\n"
            "Run untrusted snippets under time and output ceilings.\n"
            "The source gate is a deterrent, not an isolation boundary."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m sbx run hello.py\n"
            "  python -m sbx check suspicious.py\n"
            "  python -m sbx sweep\n"
            "  python -m sbx serve --port 8000\n\n"
            "Config Examples:\n"
            "  python -m sbx --config sandbox.toml run hello.py\n"
            "  python -m sbx --log-level DEBUG sweep"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--config",
        help=(
            "Path to a TOML file with a [constraints] table.\n"
            "Missing keys fall back to the bundled defaults."
        ),
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level for service diagnostics (default: WARNING).",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Execute one source file through the full pipeline.",
        description=(
            "Validate, gate, execute and clean up one source file.\n"
            "Prints the same success/output/error triple the HTTP endpoint returns."
        ),
        epilog=(
            "Examples:\n"
            "  python -m sbx run hello.py\n"
            "  python -m sbx run hello.py --language python"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("file")
    run_cmd.add_argument(
        "--language",
        default="python",
        help="Declared language of the file (default: python).",
    )

    check_cmd = sub.add_parser(
        "check",
        help="Run only the source gate on a file.",
        description="Report whether the deny-pattern gate allows a file, without running it.",
        formatter_class=_HELP_FORMATTER,
    )
    check_cmd.add_argument("file")

    sub.add_parser(
        "sweep",
        help="Run one reaper cycle over the artifact directory.",
        description=(
            "Delete artifacts older than the configured retention.\n"
            "Safe to run repeatedly; a clean directory is a no-op."
        ),
        formatter_class=_HELP_FORMATTER,
    )

    serve_cmd = sub.add_parser(
        "serve",
        help="Serve the HTTP endpoint with uvicorn.",
        description=(
            "Start the POST /api/execute-code endpoint.\n"
            "The reaper runs for as long as the server does."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    serve_cmd.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1).")
    serve_cmd.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000).")

    return parser


def configure_logging(level: str) -> None:
    """Route library logging through a Rich handler.

    Example:
        ```python
        configure_logging("INFO")
        ```
    """
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def build_service(args: argparse.Namespace) -> ExecutionService:
    """Create an ExecutionService from the global CLI flags.

    Example:
        ```python
        service = build_service(args)
        ```
    """
    return ExecutionService(load_constraints(args.config))


def _print_result(payload: dict[str, Any]) -> None:
    """Render an execution result as a rich table.

    Example:
        ```python
        _print_result({"success": True, "output": "hi\\n", "error": None})
        ```
    """
    table = Table(title="Execution Result")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key in ("success", "output", "error"):
        value = payload.get(key)
        table.add_row(key, "null" if value is None else str(value))
    _CONSOLE.print(table)


def _read_source(parser: argparse.ArgumentParser, file: str) -> str:
    """Read a source file or exit through the parser on failure.

    Example:
        ```python
        code = _read_source(parser, "hello.py")
        ```
    """
    try:
        return Path(file).read_text(encoding="utf-8")
    except OSError as exc:
        parser.error(f"Cannot read {file}: {exc.strerror or exc}")
    except UnicodeDecodeError:
        parser.error(f"Cannot read {file}: not valid UTF-8 text")


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `sbx` CLI command handler.

    Example:
        ```python
        code = main(["run", "hello.py"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(args.log_level)
    try:
        service = build_service(args)
    except (OSError, ValueError) as exc:
        parser.error(f"Cannot load config {args.config}: {exc}")

    if args.command == "run":
        code = _read_source(parser, args.file)
        outcome = service.execute(ExecutionRequest(code=code, language=args.language))
        result = to_result(outcome)
        _print_result({"success": result.success, "output": result.output, "error": result.error})
        return 0 if result.success else 1
    if args.command == "check":
        verdict = service.gate.evaluate(_read_source(parser, args.file))
        if isinstance(verdict, Denied):
            _CONSOLE.print(
                Panel.fit(
                    f"{verdict.reason}\nline {verdict.line}: {verdict.match}",
                    title="Denied",
                    style="bold red",
                )
            )
            return 1
        _CONSOLE.print(Panel.fit("No deny pattern matched.", title="Allowed", style="bold green"))
        return 0
    if args.command == "sweep":
        summary = service.reaper.sweep()
        _CONSOLE.print(Panel.fit(Pretty(summary), title="Sweep Summary", border_style="green"))
        return 0
    if args.command == "serve":
        uvicorn.run(create_app(service), host=args.host, port=args.port, log_config=None)
        return 0

    parser.error("Unhandled command")

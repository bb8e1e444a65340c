"""pywitr - command line entry point."""

import argparse
import logging
import sys

from rich.console import Console

from pywitr.backend import Backend, get_backend
from pywitr.config import load_config
from pywitr.errors import AmbiguousMatchError, WitrError
from pywitr.inspector import describe_candidates, inspect, inspect_env
from pywitr.models import Target, TargetKind
from pywitr.render import (
    clean,
    render_candidates,
    render_env,
    render_short,
    render_standard,
    render_tree,
    render_warnings,
    to_json,
)

VERSION = "0.1.0"

log = logging.getLogger("pywitr")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pywitr",
        description="pywitr - Why is this running? Explains where a process, port or file owner came from.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("name", nargs="?", help="Process or service name to look up")
    parser.add_argument("-p", "--pid", help="PID to look up")
    parser.add_argument("-o", "--port", help="Port to look up")
    parser.add_argument("-f", "--file", help="File to find the holding process for")
    parser.add_argument("-x", "--exact", action="store_true", help="Use exact name matching")
    parser.add_argument("-s", "--short", action="store_true", help="Show only the ancestry on one line")
    parser.add_argument("-t", "--tree", action="store_true", help="Show the ancestry as a tree")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--warnings", action="store_true", help="Show only warnings")
    parser.add_argument("--env", action="store_true", help="Show only environment variables")
    parser.add_argument("--verbose", action="store_true", help="Show memory, IO, file and thread details")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    parser.add_argument("--tui", action="store_true", help="Open the interactive viewer")
    parser.add_argument("--debug", action="store_true", help="Log diagnostic details to stderr")
    parser.add_argument("-v", "--version", action="version", version=f"pywitr {VERSION}")
    return parser


def target_from_args(args: argparse.Namespace) -> Target | None:
    """Build the single Target the arguments ask about, or None if zero or several were given."""
    given = [
        (kind, value)
        for kind, value in (
            (TargetKind.PID, args.pid),
            (TargetKind.PORT, args.port),
            (TargetKind.FILE, args.file),
            (TargetKind.NAME, args.name),
        )
        if value is not None
    ]
    if len(given) != 1:
        return None
    kind, value = given[0]
    return Target(kind, value.strip())


def _json_mode(args: argparse.Namespace) -> str:
    if args.short:
        return "short"
    if args.tree:
        return "tree"
    if args.warnings:
        return "warnings"
    if args.env:
        return "env"
    return "full"


def _report_error(err: Console, exc: WitrError, backend: Backend | None, env_mode: bool) -> None:
    if isinstance(exc, AmbiguousMatchError) and backend is not None:
        err.print(render_candidates(describe_candidates(exc.pids, backend), env_mode=env_mode))
        return
    err.print(f"[red]error:[/red] {clean(str(exc))}")
    if exc.remediation:
        err.print(clean(exc.remediation))


def main(argv: list[str] | None = None) -> int:
    """Entry point for pywitr. Returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config()
    logging.basicConfig(
        level=logging.DEBUG if args.debug else config.log_level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    out = Console(no_color=args.no_color, highlight=False, soft_wrap=True)
    err = Console(stderr=True, no_color=args.no_color, highlight=False, soft_wrap=True)

    target = target_from_args(args)
    if target is None:
        parser.print_help(sys.stderr)
        return 1

    backend = None
    try:
        backend = get_backend(config)
        if args.env:
            result = inspect_env(target, exact=args.exact, backend=backend)
        else:
            result = inspect(
                target,
                exact=args.exact,
                backend=backend,
                verbose=args.verbose,
                with_children=args.tree,
            )
    except WitrError as exc:
        log.debug("inspection of %s %r failed", target.kind.value, target.value, exc_info=True)
        _report_error(err, exc, backend, env_mode=args.env)
        return 1

    if args.tui:
        from pywitr.app import WitrApp

        def refresh():
            return inspect(target, exact=args.exact, backend=backend, verbose=args.verbose, with_children=True)

        WitrApp(result, inspect_fn=refresh).run()
        return 0

    if args.json:
        print(to_json(result, _json_mode(args)))
    elif args.env:
        out.print(render_env(result))
    elif args.warnings:
        out.print(render_warnings(result))
    elif args.short:
        out.print(render_short(result))
    elif args.tree:
        out.print(render_tree(result))
    else:
        out.print(render_standard(result, verbose=args.verbose))
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()

from __future__ import annotations

"""
cli.py — точка входа `npm-statistic`.

    npm-statistic                    # = update
    npm-statistic add react
    npm-statistic set maxOpen 4
    npm-statistic show 5 react
    npm-statistic last day week

Рабочая папка (config.json, stats/, npm-statistic.log): --home, иначе ENV NPM_STATISTIC_HOME, иначе текущая.
"""

import argparse
import sys
from typing import Optional, Sequence

from .commands import HOME_ENV, Workspace, dispatch
from .errors import NpmStatisticError
from .log_setup import configure_logging


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="npm-statistic",
        description="Collect npm package statistics into monthly JSON history files.",
    )
    p.add_argument("--home", default=None, help=f"work dir with config.json and stats/ (overrides ENV {HOME_ENV})")
    p.add_argument("--pretty", action="store_true", help="pretty JSON output")
    p.add_argument("--verbose", action="store_true", help="debug logging (every request)")
    p.add_argument("command", nargs="?", default="update", help="update | get | set | add | show | last | logs | help")
    p.add_argument("args", nargs=argparse.REMAINDER, help="command arguments")
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    ws = Workspace.from_home(args.home, pretty=bool(args.pretty))
    ws.home.mkdir(parents=True, exist_ok=True)
    configure_logging(ws.log_path, verbose=bool(args.verbose))

    try:
        return int(dispatch([args.command, *args.args], ws) or 0)
    except NpmStatisticError as e:
        print(str(e), file=sys.stderr)
        return int(e.exit_code)


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

"""
commands.py — команды CLI: update | get | set | add | show | last | logs | help.

Каждая команда — функция cmd_*(args, config, ws) -> int, таблица COMMANDS
собирается один раз при импорте. dispatch() готовит рабочую папку (config.json, stats/),
читает конфиг и вызывает обработчик; неизвестная команда — сообщение в stderr, код 0.
"""

import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from .config_store import CONFIG_NAME, ConfigStore, UpdateSettings, active_packages, find_package, packages_of
from .errors import PathError
from .extract import ExtractRules
from .history_store import STATS_DIR, SnapshotStore, check_package_name
from .http_client import PageFetcher
from .json_path import MISSING, delete_by_path, get_by_path, set_by_path
from .log_setup import LOG_NAME, read_log
from .scheduler import Fetch, FetchScheduler

logger = logging.getLogger(__name__)

UPDATE = "update"
UNDEFINED = "undefined"
HOME_ENV = "NPM_STATISTIC_HOME"

HELP_TEXT = """\
Usage: npm-statistic [--home DIR] [--pretty] [--verbose] [command] [args...]

Commands:
  update                      fetch all active packages and record snapshots (default)
  get [path]                  print config value by dot-path (whole config without path)
  set <path> <value>          set config value (JSON or plain string; "undefined" deletes the key)
  add <name>                  start tracking package <name>
  show [count] <name> [month] print history of <name> for month MM.YYYY (default: current),
                              count = only the last <count> snapshots
  last [fields...]            print fields (default: day) of the latest snapshot of every active package
  logs [count]                print the log (only the last <count> lines)
  help                        print this help
"""


@dataclass
class Workspace:
    """Рабочая папка: config.json, stats/, npm-statistic.log."""
    home: Path
    pretty: bool = False
    fetch: Optional[Fetch] = None

    @classmethod
    def from_home(cls, home: Optional[str] = None, **kw: Any) -> "Workspace":
        return cls(home=Path(home or os.environ.get(HOME_ENV) or "."), **kw)

    @property
    def config_path(self) -> Path:
        return self.home / CONFIG_NAME

    @property
    def stats_dir(self) -> Path:
        return self.home / STATS_DIR

    @property
    def log_path(self) -> Path:
        return self.home / LOG_NAME

    @property
    def config_store(self) -> ConfigStore:
        return ConfigStore(self.config_path)

    @property
    def snapshot_store(self) -> SnapshotStore:
        return SnapshotStore(self.stats_dir)

    def dump(self, value: Any) -> str:
        return json.dumps(value, ensure_ascii=False, indent=(2 if self.pretty else None))


Handler = Callable[[list[str], dict[str, Any], Workspace], int]


def render_value(value: Any) -> str:
    """Значение поля для last: строки как есть, остальное — JSON, отсутствие — undefined."""
    if value is MISSING:
        return UNDEFINED
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def parse_value(raw: str) -> Any:
    """Аргумент set: JSON, если парсится, иначе строка; "undefined" => MISSING (удалить ключ)."""
    if raw == UNDEFINED:
        return MISSING
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _is_int_literal(s: str) -> bool:
    try:
        return str(int(s)) == s
    except ValueError:
        return False


# ----------------------------
# Команды
# ----------------------------

def cmd_get(args: list[str], config: dict[str, Any], ws: Workspace) -> int:
    if not args:
        print(ws.dump(config))
        return 0
    value = get_by_path(config, args[0])
    print(UNDEFINED if value is MISSING else ws.dump(value))
    return 0


def cmd_set(args: list[str], config: dict[str, Any], ws: Workspace) -> int:
    if len(args) < 2:
        print("Usage: set <path> <value>")
        return 0
    path, value = args[0], parse_value(args[1])
    try:
        if value is MISSING:
            delete_by_path(config, path)
        else:
            set_by_path(config, path, value)
    except PathError as e:
        print(str(e))
        return 0

    ws.config_store.save(config)
    print(f"{path} = {UNDEFINED if value is MISSING else ws.dump(value)}")
    return 0


def cmd_add(args: list[str], config: dict[str, Any], ws: Workspace) -> int:
    if not args:
        print("Usage: add <name>")
        return 0
    name = check_package_name(args[0])
    existing = find_package(config, name)
    if existing is not None:
        print(f'Package "{name}" already added: {ws.dump(existing)}')
        return 0

    packages = packages_of(config)
    packages.append({"name": name})
    config["packages"] = packages
    ws.config_store.save(config)
    print(f'Package "{name}" added.')
    return 0


def cmd_update(args: list[str], config: dict[str, Any], ws: Workspace) -> int:
    settings = UpdateSettings.from_config(config)
    rules = ExtractRules.from_dict(config.get("patterns"))
    names = active_packages(config)
    store = ws.snapshot_store

    if not names:
        logger.info("no active packages")
        return 0

    fetcher: Optional[PageFetcher] = None
    fetch = ws.fetch
    if fetch is None:
        fetcher = PageFetcher(url_template=settings.url, headers=settings.headers)
        fetch = fetcher

    try:
        report = FetchScheduler(fetch, store.record_snapshot, settings, rules=rules).run(names)
    finally:
        if fetcher is not None:
            fetcher.close()

    logger.info(report.summary())
    if report.skipped:
        logger.error("skipped: %s", ", ".join(report.skipped))
    if report.dropped:
        logger.warning("dropped: %s", ", ".join(report.dropped))
    return 0


def cmd_show(args: list[str], config: dict[str, Any], ws: Workspace) -> int:
    count: Optional[int] = None
    if len(args) > 1 and _is_int_literal(args[0]):
        count = int(args[0])
        args = args[1:]
    if not args:
        print("Usage: show [count] <name> [month]")
        return 0

    name = args[0]
    store = ws.snapshot_store
    month = args[1] if len(args) > 1 else store.current_month()

    if not store.has_package(name):
        print(f'No statistic for package "{name}".')
        return 0
    history = store.read_history(name, month)
    if history is None:
        months = store.list_months(name)
        hint = f" Available: {', '.join(months)}." if months else ""
        print(f'No statistic for package "{name}" in {month}.{hint}')
        return 0

    shots = history["shots"]
    if count is not None:
        shots = shots[-count:]
    for shot in shots:
        print(ws.dump(shot))
    return 0


def cmd_last(args: list[str], config: dict[str, Any], ws: Workspace) -> int:
    fields = args or ["day"]
    store = ws.snapshot_store
    month = store.current_month()
    for name in active_packages(config):
        history = store.read_history(name, month)
        shots = history["shots"] if history else []
        last = shots[-1] if shots and isinstance(shots[-1], dict) else {}
        print(" ".join(render_value(last.get(f, MISSING)) for f in fields))
    return 0


def cmd_logs(args: list[str], config: dict[str, Any], ws: Workspace) -> int:
    count: Optional[int] = None
    if args:
        if not _is_int_literal(args[0]):
            print("Usage: logs [count]")
            return 0
        count = int(args[0])
    for line in read_log(ws.log_path, count):
        print(line)
    return 0


def cmd_help(args: list[str], config: dict[str, Any], ws: Workspace) -> int:
    print(HELP_TEXT, end="")
    return 0


COMMANDS: dict[str, Handler] = {
    "update": cmd_update,
    "get": cmd_get,
    "set": cmd_set,
    "add": cmd_add,
    "show": cmd_show,
    "last": cmd_last,
    "logs": cmd_logs,
    "help": cmd_help,
}


def resolve_command(verb: str) -> Optional[Handler]:
    return COMMANDS.get(verb)


def dispatch(argv: list[str], ws: Workspace) -> int:
    args = list(argv)
    verb = (args.pop(0) if args else "") or UPDATE

    store = ws.config_store
    if store.ensure():
        print(f'Cannot find config ("{store.path}"). Create new empty config.')
    ws.stats_dir.mkdir(parents=True, exist_ok=True)

    config = store.load()

    handler = resolve_command(verb)
    if handler is None:
        print(f'Unknown command: "{verb}".', file=sys.stderr)
        return 0
    return handler(args, config, ws)

"""npm_statistic package.

Periodic snapshots of npm package pages (downloads, version, publisher, dependencies)
into per-package, per-month JSON history files, plus a small CLI around the config.

Entry point: `npm-statistic` (console script).
"""

__version__ = "0.1.0"

__all__ = [
    "cli",
    "scheduler",
]

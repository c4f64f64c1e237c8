"""
pg-advisory-lock CLI

Run a command while holding a named advisory lock, so that cron jobs or
workers on different hosts never run the same job at once.

Usage:
    pg-advisory-lock --config locks.yaml list
    pg-advisory-lock --config locks.yaml run nightly_report -- ./build_report.sh
    pg-advisory-lock run customer_sync --id 42 --no-wait -- python sync.py 42
"""

import argparse
import logging
import subprocess
import sys
from typing import List, Optional, Union

import psycopg2

from .config import build_registry, create_sql_caller, load_config
from .exceptions import AdvisoryLockError, ConfigurationError, LockNotObtained
from .lock import AdvisoryLock
from .observability import init_observability

# sysexits.h
EX_USAGE = 2
EX_UNAVAILABLE = 69
EX_TEMPFAIL = 75


def _parse_id(value: str) -> Union[int, str]:
    try:
        return int(value)
    except ValueError:
        return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pg-advisory-lock',
        description='Named PostgreSQL advisory locks for cross-process jobs',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split('Usage:', 1)[1] if __doc__ else None,
    )
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='YAML configuration file (default: $PG_ADVISORY_LOCK_CONFIG)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug output'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('list', help='List registered lock names and keys')

    run_parser = subparsers.add_parser('run', help='Run a command while holding a lock')
    run_parser.add_argument('name', help='Registered lock name')
    run_parser.add_argument(
        '--id',
        type=_parse_id,
        default=None,
        help='Sub-identifier paired with the lock key (integer or text)'
    )
    run_parser.add_argument(
        '--shared',
        action='store_true',
        help='Take a shared lock instead of an exclusive one'
    )
    run_parser.add_argument(
        '--no-wait',
        action='store_true',
        help=f'Exit with code {EX_TEMPFAIL} instead of waiting if the lock is held'
    )
    return parser


def _list_locks(config) -> int:
    registry = build_registry(config)
    if not len(registry):
        print("No locks registered")
        return 0
    for name, keys in registry.items():
        print(f"{name}\t{', '.join(str(key) for key in keys)}")
    return 0


def _run_locked(args, cmd: List[str], config) -> int:
    if not cmd:
        print("✗ No command given, use: run NAME -- COMMAND...", file=sys.stderr)
        return EX_USAGE

    registry = build_registry(config)
    if args.name not in registry:
        print(f"✗ Unknown lock name '{args.name}'", file=sys.stderr)
        return EX_USAGE

    init_observability(config)
    try:
        sql_caller = create_sql_caller(config)
    except psycopg2.OperationalError as e:
        print(f"✗ Cannot connect to PostgreSQL: {e}", file=sys.stderr)
        return EX_UNAVAILABLE

    try:
        locker = AdvisoryLock(registry, sql_caller)
        acquire = locker.with_lock if not args.no_wait else locker.try_lock
        return acquire(
            args.name,
            lambda: subprocess.call(cmd),
            transaction=False,
            shared=args.shared,
            id=args.id,
        )
    except LockNotObtained as e:
        print(f"✗ {e}", file=sys.stderr)
        return EX_TEMPFAIL
    finally:
        sql_caller.close()


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    # Everything after -- is the command to run
    cmd: List[str] = []
    if '--' in argv:
        separator = argv.index('--')
        argv, cmd = argv[:separator], argv[separator + 1:]

    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    try:
        config = load_config(args.config)
        if args.command == 'list':
            return _list_locks(config)
        return _run_locked(args, cmd, config)
    except ConfigurationError as e:
        print(f"✗ Configuration error: {e}", file=sys.stderr)
        return EX_USAGE
    except AdvisoryLockError as e:
        print(f"✗ {e}", file=sys.stderr)
        return EX_USAGE

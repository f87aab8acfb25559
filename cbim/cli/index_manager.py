#!/usr/bin/env python3
# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
CLI tool for declarative management of Couchbase GSI indexes

Usage:
    python -m cbim.cli.index_manager --help
    python -m cbim.cli.index_manager validate ./indexes
    python -m cbim.cli.index_manager validate ./indexes --validate-syntax travel-sample
    python -m cbim.cli.index_manager -c couchbase://db1 -u admin -p secret sync travel-sample ./indexes
    cat indexes.yaml | python -m cbim.cli.index_manager sync travel-sample -
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from cbim import __version__
from cbim.config import settings
from cbim.connection import ConnectionInfo, ConnectionManager
from cbim.sync import Sync, SyncOptions
from cbim.validator import Validator

logger = logging.getLogger("cbim")


async def confirm(prompt: str) -> bool:
    """Asks the user a yes/no question on the terminal, defaulting to no"""
    answer = await asyncio.to_thread(input, f"{prompt} [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def get_connection_info(args: argparse.Namespace, bucket_name: str) -> ConnectionInfo:
    return ConnectionInfo(
        cluster=args.cluster,
        username=args.username,
        password=args.password,
        bucket_name=bucket_name,
    )


async def run_validate(args: argparse.Namespace):
    """Validate definition files, optionally checking syntax against the cluster"""
    validator = Validator(args.paths, logger)

    if not args.validate_syntax:
        await validator.execute()
        return

    async with ConnectionManager(get_connection_info(args, args.validate_syntax)) as store:
        await validator.execute(store)


async def run_sync(args: argparse.Namespace):
    """Sync definition files to the bucket"""
    options = SyncOptions(
        interactive=not args.quiet,
        confirm_sync=None if args.force else confirm,
        dry_run=args.dry_run,
        safe=args.safe,
        build_timeout=args.build_timeout or None,
        build_delay=settings.build_delay,
        logger=logger,
    )

    async with ConnectionManager(get_connection_info(args, args.bucket)) as store:
        await Sync(store, args.paths, options).execute()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cbim", description="Couchbase Index Manager")
    parser.add_argument('-c', '--cluster', default=settings.cluster, help='Cluster hostname or connection string')
    parser.add_argument('-u', '--username', default=settings.username, help='Username')
    parser.add_argument('-p', '--password', default=settings.password, help='Password')
    parser.add_argument('-q', '--quiet', action='store_true', help='Only log warnings and errors, never prompt')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Validate command
    validate_parser = subparsers.add_parser('validate', help='Validate index definition files')
    validate_parser.add_argument('paths', nargs='+', help='Files or directories, "-" reads from stdin')
    validate_parser.add_argument('--validate-syntax', metavar='BUCKET',
                                 help='Validate index syntax against the cluster using this bucket')

    # Sync command
    sync_parser = subparsers.add_parser('sync', help='Sync index definitions to a bucket')
    sync_parser.add_argument('bucket', help='Name of the bucket')
    sync_parser.add_argument('paths', nargs='+', help='Files or directories, "-" reads from stdin')
    sync_parser.add_argument('-t', '--build-timeout', type=float, default=settings.build_timeout,
                             help='Seconds to wait for indexes to build, 0 waits forever')
    sync_parser.add_argument('-f', '--force', action='store_true', help='Execute the plan without confirmation')
    sync_parser.add_argument('--dry-run', action='store_true', help='Print the plan without executing it')
    sync_parser.add_argument('--safe', action='store_true',
                             help='Skip mutations which could lose data or availability, such as drops')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING if args.quiet else getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command == 'validate':
            asyncio.run(run_validate(args))
        elif args.command == 'sync':
            asyncio.run(run_sync(args))
        else:
            print(f"Unknown command: {args.command}")
            return 1
    except Exception as e:
        logger.error(f"Command failed: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())

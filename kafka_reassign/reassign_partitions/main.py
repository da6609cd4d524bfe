# Copyright 2016 Yelp Inc.
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
from __future__ import annotations

import argparse
import configparser
import logging
import sys
from logging.config import fileConfig
from types import TracebackType

from kafka_reassign import __version__
from kafka_reassign.reassign_partitions.cmds.cancel import CancelCmd
from kafka_reassign.reassign_partitions.cmds.plan import PlanCmd
from kafka_reassign.reassign_partitions.cmds.throttle import ThrottleCmd
from kafka_reassign.reassign_partitions.cmds.track import TrackCmd
from kafka_reassign.util import config
from kafka_reassign.util.error import ConfigurationError

_log = logging.getLogger()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse the arguments."""
    parser = argparse.ArgumentParser(
        description='Plan, throttle and follow the reassignment of partitions '
        'over the brokers of a cluster.',
    )
    parser.add_argument(
        '--version',
        action='version',
        version="%(prog)s {}".format(__version__),
    )
    parser.add_argument(
        '--cluster-type',
        '-t',
        dest='cluster_type',
        help='Type of the cluster.',
        type=str,
        required=True,
    )
    parser.add_argument(
        '--cluster-name',
        '-c',
        dest='cluster_name',
        help='Name of the cluster (Default to local cluster).',
    )
    parser.add_argument(
        '--discovery-base-path',
        dest='discovery_base_path',
        type=str,
        help='Path of the directory containing the <cluster_type>.yaml config',
    )
    parser.add_argument(
        '--logconf',
        type=str,
        help='Path to logging configuration file. Default: log to console.',
    )
    parser.add_argument(
        '-v',
        '--verbose',
        action='store_true',
        help='Log debug messages.',
    )

    subparsers = parser.add_subparsers()
    PlanCmd().add_subparser(subparsers)
    TrackCmd().add_subparser(subparsers)
    CancelCmd().add_subparser(subparsers)
    ThrottleCmd().add_subparser(subparsers)

    args = parser.parse_args(argv)
    if not hasattr(args, 'command'):
        parser.print_help()
        sys.exit(2)
    return args


def exception_logger(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
) -> None:
    """Log unhandled exceptions"""
    if not issubclass(exc_type, KeyboardInterrupt):  # do not log Ctrl-C
        _log.critical(
            "Uncaught exception:",
            exc_info=(exc_type, exc_value, exc_traceback)
        )
    sys.__excepthook__(exc_type, exc_value, exc_traceback)


def configure_logging(
    log_conf: str | None = None,
    verbose: bool = False,
    log_unhandled_exceptions: bool = True,
) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    if log_conf:
        try:
            fileConfig(log_conf, disable_existing_loggers=False)
        except configparser.NoSectionError:
            logging.basicConfig(level=level)
            _log.error(
                'Failed to load {logconf} file.'
                .format(logconf=log_conf),
            )
    else:
        logging.basicConfig(level=level)
    if log_unhandled_exceptions:
        sys.excepthook = exception_logger


def run() -> None:
    args = parse_args()

    configure_logging(args.logconf, args.verbose)

    try:
        topology = config.get_topology_configuration(
            args.cluster_type,
            args.discovery_base_path,
        )
        if args.cluster_name:
            cluster_config = topology.get_cluster_by_name(args.cluster_name)
        else:
            cluster_config = topology.get_local_cluster()
        settings = topology.get_reassignment_config()
    except ConfigurationError as e:
        _log.error(str(e))
        sys.exit(1)

    args.command(cluster_config, settings, args)

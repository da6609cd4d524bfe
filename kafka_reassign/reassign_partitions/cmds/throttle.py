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
import logging
from typing import Any

from .command import ReassignCmd
from kafka_reassign.reassign_partitions.cluster_info.display import display_broker_throttles
from kafka_reassign.reassign_partitions.cluster_info.display import display_reassignment_throttles
from kafka_reassign.reassign_partitions.session import ReassignmentSession


class ThrottleCmd(ReassignCmd):

    def __init__(self) -> None:
        super().__init__()
        self.log = logging.getLogger(self.__class__.__name__)

    def build_subparser(self, subparsers: Any) -> argparse.ArgumentParser:
        subparser = subparsers.add_parser(
            'throttle',
            description='Show or change the replication throttle.',
            help='This command shows the replication throttle of the brokers, '
            'whether the reassignments in progress are throttled and the '
            'throttled topics that are not being reassigned.',
        )
        action = subparser.add_mutually_exclusive_group()
        action.add_argument(
            '--clear',
            action='store_true',
            help='Remove the throttled replicas of the topics and the rate of '
            'every broker.',
        )
        action.add_argument(
            '--throttle-reassignment',
            metavar='TOPIC',
            help='Throttle the replicas of the reassignment of TOPIC in progress.',
        )
        action.add_argument(
            '--unthrottle-reassignment',
            metavar='TOPIC',
            help='Remove the throttled replicas of the reassignment of TOPIC '
            'in progress. Broker rates are left in place.',
        )
        subparser.add_argument(
            '--topics',
            nargs='+',
            help='Topics to unthrottle with --clear. Defaults to the throttled '
            'topics that are not being reassigned.',
        )
        return subparser

    async def run_command(self, session: ReassignmentSession) -> None:
        assert self.args is not None and session.topology is not None
        print("Reading current replication throttles.")
        display_broker_throttles(
            await session.throttle.read_broker_throttles(session.topology.broker_ids),
        )

        await session.tracker.refresh()
        if self.args.throttle_reassignment:
            await session.set_reassignment_throttle(self.args.throttle_reassignment, True)
        elif self.args.unthrottle_reassignment:
            await session.set_reassignment_throttle(self.args.unthrottle_reassignment, False)
        display_reassignment_throttles(await session.reassignment_throttles())

        leftover = await session.find_leftover_throttles()
        if leftover:
            print("Throttled topics not being reassigned: {}".format(", ".join(leftover)))

        if not self.args.clear:
            return
        if session.tracker.active_topics:
            self.log.warning(
                "Reassignments of %s are in progress and will no longer be throttled",
                ", ".join(session.tracker.active_topics),
            )
        topics = await session.reset_throttle(self.args.topics or leftover)
        print("Replication throttle removed from {} broker(s) and {} topic(s).".format(
            len(session.topology.broker_ids),
            len(topics),
        ))

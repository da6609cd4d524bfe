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
from kafka_reassign.reassign_partitions.cluster_info.display import display_moves
from kafka_reassign.reassign_partitions.cluster_info.display import display_target_brokers
from kafka_reassign.reassign_partitions.cluster_info.display import display_traffic_summary
from kafka_reassign.reassign_partitions.cluster_info.error import InputError
from kafka_reassign.reassign_partitions.cluster_info.error import InvalidSelectionError
from kafka_reassign.reassign_partitions.session import ReassignmentSession
from kafka_reassign.util import byte_rate
from kafka_reassign.util import positive_int


def partition_selector(string: str) -> tuple[str, list[int] | None]:
    """Parse "topic" (every partition) or "topic:0,1,4-6"."""
    topic, sep, partitions = string.partition(':')
    error_msg = f'Expected topic or topic:partitions, {string} given.'
    if not topic:
        raise argparse.ArgumentTypeError(error_msg)
    if not sep:
        return topic, None
    ids: set[int] = set()
    try:
        for part in partitions.split(','):
            first, _, last = part.strip().partition('-')
            ids.update(range(int(first), int(last or first) + 1))
    except ValueError:
        raise argparse.ArgumentTypeError(error_msg)
    if not ids or min(ids) < 0:
        raise argparse.ArgumentTypeError(error_msg)
    return topic, sorted(ids)


class PlanCmd(ReassignCmd):

    def __init__(self) -> None:
        super().__init__()
        self.log = logging.getLogger(self.__class__.__name__)

    def build_subparser(self, subparsers: Any) -> argparse.ArgumentParser:
        subparser = subparsers.add_parser(
            'plan',
            description='Move partitions to a set of brokers.',
            help='This command computes new replicas for the selected '
            'partitions, spread over the target brokers and their racks, '
            'shows the replicas to move and the expected traffic, and '
            'submits the reassignment when --apply is given.',
        )
        subparser.add_argument(
            '--partitions',
            action='append',
            type=partition_selector,
            required=True,
            metavar='TOPIC[:PARTITIONS]',
            help='Partitions to move, e.g. "orders" or "orders:0,1,4-6". '
            'Can be repeated.',
        )
        subparser.add_argument(
            '--brokers',
            nargs='+',
            type=positive_int,
            required=True,
            help='Ids of the brokers receiving the replicas.',
        )
        subparser.add_argument(
            '--max-replication-traffic',
            type=byte_rate,
            help='Throttle the replication at this rate per broker, e.g. '
            '"50MiB". Defaults to the configured max_replication_traffic.',
        )
        subparser.add_argument(
            '--apply',
            action='store_true',
            help='Proposed-plan will be executed on confirmation.',
        )
        subparser.add_argument(
            '--no-confirm',
            action='store_true',
            help='Proposed-plan will be executed without confirmation.'
                 ' --apply flag also required.',
        )
        subparser.add_argument(
            '--write-to-file',
            dest='proposed_plan_file',
            metavar='<reassignment-plan-file-path>',
            type=str,
            help='Write the partition reassignment plan to a json file.',
        )
        return subparser

    async def run_command(self, session: ReassignmentSession) -> None:
        assert self.args is not None and session.topology is not None
        for topic, partition_ids in self.args.partitions:
            if session.topology.find_topic(topic) is None:
                raise InvalidSelectionError(f"Topic {topic} not found", [topic])
            session.select_partitions(topic, partition_ids)
        session.select_brokers(self.args.brokers)

        blocker = session.next_step_blocker()
        if blocker:
            raise InputError(blocker)
        warning = session.rack_warning()
        if warning:
            self.log.warning(warning)

        plan = session.compute_plan()
        display_target_brokers(session.target_broker_ids, session.brokers)
        display_moves(session.moves)
        display_traffic_summary(session.review(self.args.max_replication_traffic))

        if self.args.proposed_plan_file:
            self.log.info('Storing proposed-plan in %s', self.args.proposed_plan_file)
            self.write_json_plan(plan.to_request(), self.args.proposed_plan_file)

        if not any(move.any_change for move in session.moves):
            self.log.info('The selected partitions already have the planned replicas.')
            return

        if not self.should_execute():
            self.log.info('Proposed plan won\'t be executed (--apply and confirmation needed).')
            return

        await session.tracker.refresh()
        if session.tracker.active_topics:
            raise InputError(
                "Previous reassignment pending for {}".format(
                    ", ".join(session.tracker.active_topics),
                ),
            )
        results = await session.submit(self.args.max_replication_traffic)
        self.log.info('Reassignment of %d partition(s) started.', len(results))
        if self.args.max_replication_traffic or session.settings.max_replication_traffic:
            print("NOTE: Do not forget to clear the throttle once the reassignment completes "
                  "(track --reset-throttle or throttle --clear).")

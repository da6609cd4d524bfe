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
from kafka_reassign.reassign_partitions.cluster_info.display import display_reassignments
from kafka_reassign.reassign_partitions.cluster_info.tracker import EventKind
from kafka_reassign.reassign_partitions.session import ReassignmentSession
from kafka_reassign.util import positive_float


class TrackCmd(ReassignCmd):

    def __init__(self) -> None:
        super().__init__()
        self.log = logging.getLogger(self.__class__.__name__)

    def build_subparser(self, subparsers: Any) -> argparse.ArgumentParser:
        subparser = subparsers.add_parser(
            'track',
            description='Follow the reassignments in progress.',
            help='This command polls the reassignments in progress and shows '
            'their progress, speed and estimated completion time until they '
            'all completed.',
        )
        subparser.add_argument(
            '--interval',
            type=positive_float,
            help='Seconds between two polls. Defaults to the configured '
            'refresh_interval.',
        )
        subparser.add_argument(
            '--once',
            action='store_true',
            help='Show the reassignments in progress and exit.',
        )
        subparser.add_argument(
            '--reset-throttle',
            action='store_true',
            help='Remove the replication throttle once every reassignment '
            'completed.',
        )
        return subparser

    async def run_command(self, session: ReassignmentSession) -> None:
        assert self.args is not None
        tracker = session.tracker
        if self.args.interval:
            tracker.refresh_interval = self.args.interval

        if self.args.once:
            await tracker.refresh()
            display_reassignments(tracker.reassignments, tracker.wall_clock())
            return

        events = tracker.subscribe()
        tracker.start()
        try:
            while True:
                event = await events.get()
                if event.kind == EventKind.COMPLETED:
                    assert event.view is not None
                    print(f"Reassignment of {event.view.topic} partitions {event.view.partition_ids} completed.")
                elif event.kind == EventKind.ERROR:
                    self.log.warning("%s, retrying in %.1fs", event.error, tracker.refresh_interval)
                elif event.kind == EventKind.REFRESHED:
                    display_reassignments(tracker.reassignments, tracker.wall_clock())
                    if not tracker.reassignments:
                        break
        finally:
            tracker.unsubscribe(events)
            await tracker.close()

        if self.args.reset_throttle:
            topics = await session.reset_throttle()
            self.log.info("Replication throttle removed, unthrottled topics: %s", topics)

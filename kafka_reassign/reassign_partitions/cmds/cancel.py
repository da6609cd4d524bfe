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
from kafka_reassign.reassign_partitions.session import ReassignmentSession


class CancelCmd(ReassignCmd):

    def __init__(self) -> None:
        super().__init__()
        self.log = logging.getLogger(self.__class__.__name__)

    def build_subparser(self, subparsers: Any) -> argparse.ArgumentParser:
        subparser = subparsers.add_parser(
            'cancel',
            description='Cancel the reassignment of a topic.',
            help='This command asks the cluster to abort the reassignment of '
            'the partitions of a topic and to restore their original replicas.',
        )
        subparser.add_argument(
            '--topic',
            required=True,
            help='Topic whose reassignment is cancelled.',
        )
        return subparser

    async def run_command(self, session: ReassignmentSession) -> None:
        assert self.args is not None
        tracker = session.tracker
        await tracker.refresh()
        await tracker.cancel(self.args.topic)
        display_reassignments(tracker.reassignments, tracker.wall_clock())

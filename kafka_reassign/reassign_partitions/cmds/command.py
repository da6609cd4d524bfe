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
import asyncio
import json
import logging
import sys
from typing import Any

from kafka_reassign.reassign_partitions.session import ReassignmentSession
from kafka_reassign.util.cluster_admin import ZKClusterAdmin
from kafka_reassign.util.config import ClusterConfig
from kafka_reassign.util.config import ReassignmentConfig
from kafka_reassign.util.error import KafkaReassignError


class ReassignCmd:
    """Interface used by all kafka-reassign-partitions commands
    The attributes cluster_config, settings, args and session are
    initialized on run().
    """

    log = logging.getLogger("ReassignPartitions")

    def __init__(self) -> None:
        self.cluster_config: ClusterConfig | None = None
        self.settings: ReassignmentConfig | None = None
        self.args: argparse.Namespace | None = None
        self.session: ReassignmentSession | None = None

    def build_subparser(self, subparsers: Any) -> argparse.ArgumentParser:
        """Build the command subparser.

        :param subparsers: argpars subparsers
        :returns: subparser
        """
        raise NotImplementedError("Implement in subclass")

    async def run_command(self, session: ReassignmentSession) -> None:
        """Implement the command logic.
        When run_command is called cluster_config, settings and args are
        already initialized and the session holds a fresh topology.
        """
        raise NotImplementedError("Implement in subclass")

    def add_subparser(self, subparsers: Any) -> None:
        self.build_subparser(subparsers).set_defaults(command=self.run)

    def create_admin(self) -> ZKClusterAdmin:
        assert self.cluster_config is not None
        return ZKClusterAdmin(self.cluster_config)

    def run(
        self,
        cluster_config: ClusterConfig,
        settings: ReassignmentConfig,
        args: argparse.Namespace,
    ) -> None:
        """Initialize cluster_config, settings and args then run the command."""
        self.cluster_config = cluster_config
        self.settings = settings
        self.args = args
        try:
            asyncio.run(self._run())
        except KafkaReassignError as e:
            self.log.error(str(e))
            sys.exit(1)

    async def _run(self) -> None:
        assert self.cluster_config is not None
        async with self.create_admin() as admin:
            self.log.debug(
                'Starting %s for cluster: %s and zookeeper: %s',
                self.__class__.__name__,
                self.cluster_config.name,
                self.cluster_config.zookeeper,
            )
            self.session = ReassignmentSession(admin, self.settings)
            await self.session.refresh_topology()
            try:
                await self.run_command(self.session)
            finally:
                await self.session.tracker.close()

    def should_execute(self) -> bool:
        """Confirm if proposed-plan should be executed."""
        assert self.args is not None
        return self.args.apply and (self.args.no_confirm or self.confirm_execution())

    def confirm_execution(self) -> bool:
        """Confirm from your if proposed-plan be executed."""
        permit = ''
        while permit.lower() not in ('yes', 'no'):
            permit = input('Execute Proposed Plan? [yes/no] ')
        return permit.lower() == 'yes'

    def write_json_plan(self, proposed_layout: Any, proposed_plan_file: str) -> None:
        """Dump proposed json plan to given output file for future usage."""
        with open(proposed_plan_file, 'w') as output:
            json.dump(proposed_layout, output)

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

from datetime import datetime
from datetime import timedelta
from datetime import timezone

from kafka_reassign.reassign_partitions.cluster_info.topology import create_topology
from kafka_reassign.util.admin import BrokerMetadata
from kafka_reassign.util.admin import ConfigOp
from kafka_reassign.util.admin import LogDirSize
from kafka_reassign.util.admin import PartitionMetadata
from kafka_reassign.util.admin import PartitionReassignmentResult
from kafka_reassign.util.admin import PatchResult
from kafka_reassign.util.admin import ResourceType
from kafka_reassign.util.error import ClusterAdminError

EPOCH = datetime(2020, 1, 1, tzinfo=timezone.utc)


def broker(broker_id, rack=None):
    return BrokerMetadata(broker_id, f'broker{broker_id}', 9092, rack)


def broker_range(count, racks=None):
    """Brokers 1..count, racks[i] being the rack of broker i + 1."""
    return [
        broker(broker_id, racks[broker_id - 1] if racks else None)
        for broker_id in range(1, count + 1)
    ]


def partitions_of(assignment):
    """PartitionMetadata from a (topic, partition) -> replicas mapping."""
    return [
        PartitionMetadata(topic, partition_id, replicas[0], tuple(replicas))
        for (topic, partition_id), replicas in sorted(assignment.items())
    ]


def log_dirs_of(assignment, sizes):
    """Every replica of a partition gets the size of the partition."""
    return [
        LogDirSize(topic, partition_id, broker_id, sizes.get((topic, partition_id), 0))
        for (topic, partition_id), replicas in sorted(assignment.items())
        for broker_id in replicas
    ]


def make_topology(brokers, assignment, sizes=None):
    return create_topology(
        brokers,
        partitions_of(assignment),
        log_dirs_of(assignment, sizes or {}),
    )


class FakeClock:
    """Monotonic and wall clocks moved by hand."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def wall(self):
        return EPOCH + timedelta(seconds=self.now)

    def advance(self, seconds):
        self.now += seconds


class FakeClusterAdmin:
    """In memory ClusterAdmin.

    reassignment_errors and config_errors make single resources fail,
    failing_calls makes whole calls raise.
    """

    def __init__(self, brokers=(), assignment=None, sizes=None):
        self.brokers = list(brokers)
        self.assignment = dict(assignment or {})
        self.sizes = dict(sizes or {})
        self.log_dirs = None
        self.active = []
        self.configs = {ResourceType.BROKER: {}, ResourceType.TOPIC: {}}
        self.reassignment_errors = {}
        self.config_errors = {}
        self.failing_calls = set()
        self.submitted = []
        self.patches = []
        self.entered = False

    async def __aenter__(self):
        self.entered = True
        return self

    async def __aexit__(self, type, value, traceback):
        self.entered = False

    def _check(self, call):
        if call in self.failing_calls:
            raise ClusterAdminError(f"{call} failed")

    async def describe_cluster(self):
        self._check('describe_cluster')
        return list(self.brokers)

    async def describe_partitions(self, topics=None):
        self._check('describe_partitions')
        return [
            p for p in partitions_of(self.assignment)
            if topics is None or p.topic in topics
        ]

    async def describe_log_dirs(self, topics=None):
        self._check('describe_log_dirs')
        log_dirs = self.log_dirs
        if log_dirs is None:
            log_dirs = log_dirs_of(self.assignment, self.sizes)
        return [d for d in log_dirs if topics is None or d.topic in topics]

    async def alter_partition_reassignments(self, requests):
        self._check('alter_partition_reassignments')
        self.submitted.append(list(requests))
        return [
            PartitionReassignmentResult(
                r.topic,
                r.partition,
                self.reassignment_errors.get((r.topic, r.partition)),
            )
            for r in requests
        ]

    async def list_partition_reassignments(self):
        self._check('list_partition_reassignments')
        return list(self.active)

    async def alter_configs(self, patches):
        self._check('alter_configs')
        self.patches.append(list(patches))
        results = []
        for patch in patches:
            error = self.config_errors.get((patch.resource_type, patch.name))
            if error is None:
                config = self.configs[patch.resource_type].setdefault(patch.name, {})
                for entry in patch.configs:
                    if entry.op == ConfigOp.SET:
                        config[entry.name] = entry.value
                    else:
                        config.pop(entry.name, None)
            results.append(PatchResult(patch.resource_type, patch.name, error))
        return results

    async def describe_configs(self, resource_type, names):
        self._check('describe_configs')
        return {
            name: dict(self.configs[resource_type].get(name, {}))
            for name in names
        }

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
"""Compare the current and the planned replicas of partitions."""
from __future__ import annotations

import logging
from typing import Iterable
from typing import NamedTuple

from kafka_reassign.util import groupsortby

from .plan import PartitionSelection
from .plan import ReassignmentPlan
from .topology import TopologySnapshot

_log = logging.getLogger(__name__)


class MoveDelta(NamedTuple):
    """Difference between the current and the planned replicas of a partition."""
    topic: str
    partition: int
    old_replicas: tuple[int, ...]
    new_replicas: tuple[int, ...]
    added_brokers: tuple[int, ...]
    removed_brokers: tuple[int, ...]
    leader_changed: bool
    any_change: bool
    replica_size: int = 0

    @property
    def moved_replica_count(self) -> int:
        return len(self.added_brokers)

    @property
    def estimated_bytes(self) -> int:
        return self.moved_replica_count * self.replica_size


class TopicMoves(NamedTuple):
    topic: str
    partitions: tuple[MoveDelta, ...]

    @property
    def moved_replica_count(self) -> int:
        return sum(p.moved_replica_count for p in self.partitions)

    @property
    def estimated_bytes(self) -> int:
        return sum(p.estimated_bytes for p in self.partitions)

    @property
    def any_change(self) -> bool:
        return any(p.any_change for p in self.partitions)


class PartitionTraffic(NamedTuple):
    topic: str
    partition: int
    total_bytes: int
    potential_bandwidth: float
    estimated_seconds: float


class TrafficEstimate(NamedTuple):
    """Expected replication traffic of a plan.

    estimated_seconds is None when the traffic is not throttled.
    """
    moved_replica_count: int
    total_bytes: int
    max_bytes_per_second: int | None
    estimated_seconds: float | None
    partitions: tuple[PartitionTraffic, ...] = ()


def diff_replicas(
    topic: str,
    partition: int,
    old_replicas: Iterable[int],
    new_replicas: Iterable[int],
    replica_size: int = 0,
) -> MoveDelta:
    old = tuple(old_replicas)
    new = tuple(new_replicas)
    leader_changed = (old[:1] != new[:1])
    return MoveDelta(
        topic=topic,
        partition=partition,
        old_replicas=old,
        new_replicas=new,
        added_brokers=tuple(b for b in new if b not in old),
        removed_brokers=tuple(b for b in old if b not in new),
        leader_changed=leader_changed,
        any_change=leader_changed or old != new,
        replica_size=replica_size,
    )


def compute_moved_replicas(
    selection: PartitionSelection,
    plan: ReassignmentPlan,
    topology: TopologySnapshot,
) -> list[MoveDelta]:
    """Return the move of every selected partition covered by the plan.

    Partitions missing from the plan or from the topology are skipped.
    """
    deltas = []
    for topic, partition_id in selection:
        new_replicas = plan.replicas(topic, partition_id)
        if new_replicas is None:
            continue
        partition = topology.find_partition(topic, partition_id)
        if partition is None:
            _log.warning("Partition %s-%d is no longer in the cluster", topic, partition_id)
            continue
        deltas.append(diff_replicas(
            topic,
            partition_id,
            partition.replicas,
            new_replicas,
            partition.size_bytes,
        ))
    return deltas


def group_by_topic(deltas: Iterable[MoveDelta]) -> list[TopicMoves]:
    return [
        TopicMoves(topic, tuple(partitions))
        for topic, partitions in groupsortby(deltas, key=lambda d: d.topic)
    ]


def remove_redundant_reassignments(
    plan: ReassignmentPlan,
    topology: TopologySnapshot,
) -> ReassignmentPlan:
    """Return a new plan without the partitions that keep their replicas.

    Topics left without partitions are dropped. Partitions that are unknown
    to the topology or whose replication factor differs are kept.
    """
    assignments: dict[str, dict[int, tuple[int, ...]]] = {}
    for topic, partition_id, new_replicas in plan.items():
        partition = topology.find_partition(topic, partition_id)
        if partition is None:
            _log.warning(
                "Partition %s-%d is unknown, keeping its reassignment", topic, partition_id,
            )
        elif len(partition.replicas) != len(new_replicas):
            _log.warning(
                "Replicas of %s-%d changed from %s to %s, keeping its reassignment",
                topic,
                partition_id,
                list(partition.replicas),
                list(new_replicas),
            )
        elif partition.replicas == new_replicas:
            continue
        assignments.setdefault(topic, {})[partition_id] = new_replicas
    return ReassignmentPlan(assignments)


def estimate_traffic(
    deltas: Iterable[MoveDelta],
    max_bytes_per_second: int | None = None,
) -> TrafficEstimate:
    """Estimate the data to copy and the time the copy takes.

    A partition is copied from the brokers losing a replica to the brokers
    gaining one, each sender and receiver pair at most at
    max_bytes_per_second.
    """
    partitions = []
    moved = 0
    for delta in deltas:
        moved += delta.moved_replica_count
        total_bytes = delta.estimated_bytes
        if total_bytes == 0 or not max_bytes_per_second:
            partitions.append(PartitionTraffic(delta.topic, delta.partition, total_bytes, 0, 0))
            continue
        pairs = min(len(delta.removed_brokers), len(delta.added_brokers))
        bandwidth = float(pairs * max_bytes_per_second)
        seconds = total_bytes / bandwidth if bandwidth > 0 else 0.0
        partitions.append(PartitionTraffic(
            delta.topic, delta.partition, total_bytes, bandwidth, seconds,
        ))
    return TrafficEstimate(
        moved_replica_count=moved,
        total_bytes=sum(p.total_bytes for p in partitions),
        max_bytes_per_second=max_bytes_per_second,
        estimated_seconds=(
            sum(p.estimated_seconds for p in partitions)
            if max_bytes_per_second else None
        ),
        partitions=tuple(partitions),
    )

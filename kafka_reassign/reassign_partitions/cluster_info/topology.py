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
"""Read-only view of the cluster used to plan and review a reassignment."""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Iterable
from typing import Iterator
from typing import NamedTuple

from kafka_reassign.util.admin import BrokerMetadata
from kafka_reassign.util.admin import ClusterAdmin
from kafka_reassign.util.admin import LogDirSize
from kafka_reassign.util.admin import PartitionMetadata

_log = logging.getLogger(__name__)


class Broker(NamedTuple):
    id: int
    address: str
    rack: str | None = None
    used_bytes: int = 0


class Topic(NamedTuple):
    name: str
    partition_count: int
    replication_factor: int


class Partition(NamedTuple):
    """A partition of a topic. replicas[0] is the preferred leader."""
    topic: str
    id: int
    leader: int
    replicas: tuple[int, ...]
    size_bytes: int = 0
    offline_replicas: tuple[int, ...] = ()


class TopologySnapshot:
    """Immutable snapshot of brokers, topics and partitions.

    Lookups return None for unknown ids.

    :param brokers: brokers of the cluster
    :param partitions: all the partitions of the cluster
    """

    def __init__(self, brokers: Iterable[Broker], partitions: Iterable[Partition]) -> None:
        self._brokers = {broker.id: broker for broker in brokers}
        self._partitions = {(p.topic, p.id): p for p in partitions}
        topic_partitions: dict[str, list[Partition]] = {}
        for partition in self._partitions.values():
            topic_partitions.setdefault(partition.topic, []).append(partition)
        self._topics = {
            name: Topic(
                name=name,
                partition_count=len(partitions),
                replication_factor=max(len(p.replicas) for p in partitions),
            )
            for name, partitions in topic_partitions.items()
        }
        self._topic_partitions = {
            name: tuple(sorted(partitions, key=lambda p: p.id))
            for name, partitions in topic_partitions.items()
        }

    @property
    def brokers(self) -> list[Broker]:
        return [self._brokers[b_id] for b_id in sorted(self._brokers)]

    @property
    def broker_ids(self) -> list[int]:
        return sorted(self._brokers)

    @property
    def topics(self) -> list[Topic]:
        return [self._topics[name] for name in sorted(self._topics)]

    @property
    def racks(self) -> set[str]:
        return {b.rack for b in self._brokers.values() if b.rack is not None}

    def partitions(self, topic: str | None = None) -> Iterator[Partition]:
        if topic is not None:
            yield from self._topic_partitions.get(topic, ())
            return
        for name in sorted(self._topic_partitions):
            yield from self._topic_partitions[name]

    def find_broker(self, broker_id: int) -> Broker | None:
        return self._brokers.get(broker_id)

    def find_topic(self, name: str) -> Topic | None:
        return self._topics.get(name)

    def find_partition(self, topic: str, partition_id: int) -> Partition | None:
        return self._partitions.get((topic, partition_id))

    def __repr__(self) -> str:
        return "TopologySnapshot(brokers={}, topics={}, partitions={})".format(
            len(self._brokers),
            len(self._topics),
            len(self._partitions),
        )


def replica_sizes(log_dirs: Iterable[LogDirSize]) -> dict[tuple[str, int], dict[int, int]]:
    """Group replica sizes by partition: (topic, partition) -> broker -> size."""
    sizes: dict[tuple[str, int], dict[int, int]] = {}
    for log_dir in log_dirs:
        sizes.setdefault((log_dir.topic, log_dir.partition), {})[log_dir.broker_id] = log_dir.size
    return sizes


def create_topology(
    brokers: Iterable[BrokerMetadata],
    partitions: Iterable[PartitionMetadata],
    log_dirs: Iterable[LogDirSize],
) -> TopologySnapshot:
    """Combine the cluster description into a snapshot.

    The size of a partition is the size of its largest replica. The used
    space of a broker is the sum of the sizes of the replicas it hosts.
    """
    sizes = replica_sizes(log_dirs)
    used_bytes: dict[int, int] = {}
    for per_broker in sizes.values():
        for broker_id, size in per_broker.items():
            used_bytes[broker_id] = used_bytes.get(broker_id, 0) + size

    snapshot = TopologySnapshot(
        brokers=[
            Broker(
                id=b.broker_id,
                address=b.address,
                rack=b.rack,
                used_bytes=used_bytes.get(b.broker_id, 0),
            )
            for b in brokers
        ],
        partitions=[
            Partition(
                topic=p.topic,
                id=p.partition,
                leader=p.leader,
                replicas=tuple(p.replicas),
                size_bytes=max(sizes.get((p.topic, p.partition), {}).values(), default=0),
                offline_replicas=tuple(p.offline_replicas),
            )
            for p in partitions
        ],
    )
    _log.debug("Built %r", snapshot)
    return snapshot


async def fetch_topology(admin: ClusterAdmin) -> TopologySnapshot:
    """Describe the cluster and return a new snapshot."""
    brokers = await admin.describe_cluster()
    partitions = await admin.describe_partitions()
    log_dirs = await admin.describe_log_dirs()
    return create_topology(brokers, partitions, log_dirs)


class BrokerLookupCache:
    """Bounded read-through cache of broker lookups.

    Entries are read from the snapshot they were cached with; binding a new
    snapshot drops them all. Unknown brokers are cached too.

    :param max_size: maximum number of cached brokers
    """

    def __init__(self, max_size: int, snapshot: TopologySnapshot | None = None) -> None:
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, {max_size} given")
        self.max_size = max_size
        self._snapshot = snapshot
        self._entries: OrderedDict[int, Broker | None] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def bind(self, snapshot: TopologySnapshot) -> None:
        """Invalidate the cache and read from snapshot from now on."""
        self._snapshot = snapshot
        self._entries.clear()

    def get(self, broker_id: int) -> Broker | None:
        if broker_id in self._entries:
            self.hits += 1
            self._entries.move_to_end(broker_id)
            return self._entries[broker_id]
        self.misses += 1
        broker = self._snapshot.find_broker(broker_id) if self._snapshot else None
        self._entries[broker_id] = broker
        if len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
        return broker

    def label(self, broker_id: int) -> str:
        """Human readable name of a broker: id, address and rack."""
        broker = self.get(broker_id)
        if broker is None:
            return f"{broker_id} (unknown)"
        if broker.rack:
            return f"{broker_id} ({broker.address}, {broker.rack})"
        return f"{broker_id} ({broker.address})"

    def __len__(self) -> int:
        return len(self._entries)

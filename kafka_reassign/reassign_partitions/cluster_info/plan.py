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

from types import MappingProxyType
from typing import Iterable
from typing import Iterator
from typing import Mapping
from typing import Sequence

from kafka_reassign.util.admin import PartitionReassignmentRequest
from kafka_reassign.util.validation import assignment_to_request
from kafka_reassign.util.validation import ReassignmentRequestDict
from kafka_reassign.util.validation import request_to_assignment

from .topology import TopologySnapshot


class PartitionSelection:
    """Partitions chosen by the operator, grouped by topic."""

    def __init__(self, partitions: Mapping[str, Iterable[int]] | None = None) -> None:
        self._partitions: dict[str, set[int]] = {}
        for topic, partition_ids in (partitions or {}).items():
            self.select(topic, partition_ids)

    def select(self, topic: str, partition_ids: Iterable[int]) -> None:
        ids = set(partition_ids)
        if ids:
            self._partitions.setdefault(topic, set()).update(ids)

    def deselect(self, topic: str, partition_ids: Iterable[int] | None = None) -> None:
        if partition_ids is None:
            self._partitions.pop(topic, None)
            return
        remaining = self._partitions.get(topic, set()) - set(partition_ids)
        if remaining:
            self._partitions[topic] = remaining
        else:
            self._partitions.pop(topic, None)

    def clear(self) -> None:
        self._partitions.clear()

    @property
    def topics(self) -> list[str]:
        return sorted(self._partitions)

    def partition_ids(self, topic: str) -> list[int]:
        return sorted(self._partitions.get(topic, ()))

    def unknown_partitions(self, topology: TopologySnapshot) -> list[tuple[str, int]]:
        """Selected partitions that are missing from topology."""
        return [
            (topic, partition_id) for topic, partition_id in self
            if topology.find_partition(topic, partition_id) is None
        ]

    def as_dict(self) -> dict[str, list[int]]:
        return {topic: self.partition_ids(topic) for topic in self.topics}

    def __contains__(self, item: object) -> bool:
        if not isinstance(item, tuple) or len(item) != 2:
            return False
        topic, partition_id = item
        return partition_id in self._partitions.get(topic, ())

    def __iter__(self) -> Iterator[tuple[str, int]]:
        for topic in self.topics:
            for partition_id in self.partition_ids(topic):
                yield topic, partition_id

    def __len__(self) -> int:
        return sum(len(ids) for ids in self._partitions.values())

    def __bool__(self) -> bool:
        return bool(self._partitions)

    def __repr__(self) -> str:
        return f"PartitionSelection({self.as_dict()})"


class ReassignmentPlan:
    """New replicas of a set of partitions: topic -> partition -> replicas.

    A plan is immutable, transformations return a new plan.
    """

    def __init__(self, assignments: Mapping[str, Mapping[int, Sequence[int]]]) -> None:
        self._topics: dict[str, Mapping[int, tuple[int, ...]]] = {
            topic: MappingProxyType({
                partition_id: tuple(replicas)
                for partition_id, replicas in sorted(partitions.items())
            })
            for topic, partitions in sorted(assignments.items())
        }

    @classmethod
    def from_request(cls, request: ReassignmentRequestDict) -> ReassignmentPlan:
        """Build a plan from a request. Cancellations are ignored."""
        assignments: dict[str, dict[int, list[int]]] = {}
        for (topic, partition_id), replicas in request_to_assignment(request).items():
            if replicas is not None:
                assignments.setdefault(topic, {})[partition_id] = replicas
        return cls(assignments)

    @property
    def topics(self) -> list[str]:
        return list(self._topics)

    @property
    def partition_count(self) -> int:
        return sum(len(partitions) for partitions in self._topics.values())

    def replicas(self, topic: str, partition_id: int) -> tuple[int, ...] | None:
        return self._topics.get(topic, {}).get(partition_id)

    def items(self) -> Iterator[tuple[str, int, tuple[int, ...]]]:
        for topic, partitions in self._topics.items():
            for partition_id, replicas in partitions.items():
                yield topic, partition_id, replicas

    def to_request(self) -> ReassignmentRequestDict:
        """The plan in the wire format."""
        return assignment_to_request({
            (topic, partition_id): list(replicas)
            for topic, partition_id, replicas in self.items()
        })

    def to_reassignment_requests(self) -> list[PartitionReassignmentRequest]:
        return [
            PartitionReassignmentRequest(topic, partition_id, replicas)
            for topic, partition_id, replicas in self.items()
        ]

    def __getitem__(self, topic: str) -> Mapping[int, tuple[int, ...]]:
        return self._topics[topic]

    def __contains__(self, topic: object) -> bool:
        return topic in self._topics

    def __iter__(self) -> Iterator[str]:
        return iter(self._topics)

    def __len__(self) -> int:
        return len(self._topics)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ReassignmentPlan):
            return NotImplemented
        return {t: dict(p) for t, p in self._topics.items()} == \
            {t: dict(p) for t, p in other._topics.items()}

    def __repr__(self) -> str:
        return "ReassignmentPlan({})".format(
            {t: dict(p) for t, p in self._topics.items()},
        )

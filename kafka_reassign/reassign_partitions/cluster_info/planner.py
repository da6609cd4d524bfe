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
"""Compute the new replicas of a set of partitions over a set of brokers.

Replicas are placed one at a time on the best candidate broker according
to, in order:
    - the racks already used by the partition (first criterion when the
      target brokers span at least replication-factor racks, second
      otherwise). Brokers without a rack do not count towards the racks
      spanned and are grouped together as if they shared one rack,
    - the replicas already given to the broker by this plan,
    - the replicas of the same topic given to the broker by this plan,
    - the replicas the broker would host once the plan is executed,
    - whether the broker already hosts the partition,
    - whether the broker is in a rack already hosting the partition,
    - the disk space the broker would use once the plan is executed,
    - the broker id.
The preferred leaders are then balanced over the target brokers.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable
from typing import NamedTuple

from .error import InsufficientBrokersError
from .error import InvalidSelectionError
from .plan import PartitionSelection
from .plan import ReassignmentPlan
from .topology import Broker
from .topology import Partition
from .topology import TopologySnapshot

MAX_LEADER_BALANCING_ROUNDS = 10


def compute_optimum(groups: int, elements: int) -> tuple[int, int]:
    """Compute the number of elements per group and the remainder.

        :param elements: total number of elements
        :param groups: total number of groups
    """
    return elements // groups, elements % groups


class RiskyPartition(NamedTuple):
    """A partition whose planned replicas all live in a single rack."""
    topic: str
    partition: int
    rack: str


class BrokerLoad:
    """Replica, leader and disk accounting of a broker while planning.

    actual: what the broker hosts now.
    initial: what the broker keeps once the selected partitions left it.
    assigned: what the plan being computed gives to the broker.
    planned: initial + assigned.
    """

    def __init__(self, broker: Broker) -> None:
        self.broker = broker
        self.actual_replicas = 0
        self.actual_leaders = 0
        self.initial_replicas = 0
        self.initial_leaders = 0
        self.initial_size = broker.used_bytes
        self.assigned_replicas = 0
        self.assigned_leaders = 0
        self.assigned_size = 0

    @property
    def id(self) -> int:
        return self.broker.id

    @property
    def rack(self) -> str | None:
        return self.broker.rack

    @property
    def planned_replicas(self) -> int:
        return self.initial_replicas + self.assigned_replicas

    @property
    def planned_leaders(self) -> int:
        return self.initial_leaders + self.assigned_leaders

    @property
    def planned_size(self) -> int:
        return self.initial_size + self.assigned_size

    def __repr__(self) -> str:
        return "BrokerLoad({id}, replicas={replicas}, leaders={leaders})".format(
            id=self.id,
            replicas=self.planned_replicas,
            leaders=self.planned_leaders,
        )


class AssignmentPlanner:
    """Compute reassignment plans over a topology snapshot.

    :param topology: the snapshot the plans are computed from
    """

    def __init__(self, topology: TopologySnapshot) -> None:
        self.topology = topology
        self.log = logging.getLogger(self.__class__.__name__)
        self.risky_partitions: list[RiskyPartition] = []

    def required_broker_count(self, selection: PartitionSelection) -> tuple[int, list[str]]:
        """Return the highest replication factor among the selected topics
        and the topics having it.
        """
        factors = {}
        for topic_name in selection.topics:
            topic = self.topology.find_topic(topic_name)
            if topic is not None:
                factors[topic_name] = topic.replication_factor
        if not factors:
            return 0, []
        required = max(factors.values())
        return required, sorted(t for t, rf in factors.items() if rf == required)

    def check_arguments(
        self,
        selection: PartitionSelection,
        target_broker_ids: Iterable[int],
    ) -> list[int]:
        """Validate the selection and the target brokers before planning.

        :returns: the sorted distinct target broker ids
        :raises InvalidSelectionError: when nothing is selected or when the
            selection refers to unknown partitions or brokers
        :raises InsufficientBrokersError: when there are fewer target brokers
            than the replication factor of a selected topic
        """
        if not selection:
            raise InvalidSelectionError("No partitions selected")
        unknown_partitions = selection.unknown_partitions(self.topology)
        if unknown_partitions:
            raise InvalidSelectionError(
                "Unknown partition(s): {}".format(
                    ", ".join(f"{t}-{p}" for t, p in unknown_partitions),
                ),
                unknown_partitions,
            )
        targets = sorted(set(target_broker_ids))
        unknown_brokers = [b for b in targets if self.topology.find_broker(b) is None]
        if unknown_brokers:
            raise InvalidSelectionError(
                "Unknown broker(s): {}".format(", ".join(map(str, unknown_brokers))),
                unknown_brokers,
            )
        required, topics = self.required_broker_count(selection)
        if len(targets) < required:
            raise InsufficientBrokersError(required, len(targets), topics)
        return targets

    def compute(
        self,
        selection: PartitionSelection,
        target_broker_ids: Iterable[int],
    ) -> ReassignmentPlan:
        """Compute the new replicas of every selected partition.

        The result only depends on the arguments and the snapshot.
        """
        targets = self.check_arguments(selection, target_broker_ids)
        loads = self._build_loads(selection)
        target_loads = [loads[broker_id] for broker_id in targets]

        total_replicas = 0
        assignments: dict[str, dict[int, list[int]]] = {}
        for topic_name in selection.topics:
            topic = self.topology.find_topic(topic_name)
            assert topic is not None
            rack_aware = self._is_rack_aware(target_loads, topic.replication_factor)
            if not rack_aware:
                self.log.info(
                    "Target brokers span fewer racks than the replication factor "
                    "of %s, replicas are spread on a best effort basis",
                    topic_name,
                )
            topic_counts: Counter[int] = Counter()
            for partition_id in selection.partition_ids(topic_name):
                partition = self.topology.find_partition(topic_name, partition_id)
                assert partition is not None
                assignments.setdefault(topic_name, {})[partition_id] = self._assign_partition(
                    partition,
                    topic.replication_factor,
                    loads,
                    target_loads,
                    topic_counts,
                    rack_aware,
                )
                total_replicas += topic.replication_factor

        optimum, extra = compute_optimum(len(target_loads), total_replicas)
        self.log.debug(
            "Assigned %d replicas, expecting %d to %d per target broker: %s",
            total_replicas,
            optimum,
            optimum + (1 if extra else 0),
            {load.id: load.assigned_replicas for load in target_loads},
        )
        self._balance_leaders(assignments, loads, target_loads)
        self.risky_partitions = self._find_risky_partitions(assignments, loads, target_loads)
        return ReassignmentPlan(assignments)

    def _build_loads(self, selection: PartitionSelection) -> dict[int, BrokerLoad]:
        loads = {broker.id: BrokerLoad(broker) for broker in self.topology.brokers}
        for partition in self.topology.partitions():
            selected = (partition.topic, partition.id) in selection
            for index, broker_id in enumerate(partition.replicas):
                load = loads.get(broker_id)
                if load is None:
                    continue
                load.actual_replicas += 1
                load.actual_leaders += 1 if index == 0 else 0
                if selected:
                    load.initial_size = max(load.initial_size - partition.size_bytes, 0)
                else:
                    load.initial_replicas += 1
                    load.initial_leaders += 1 if index == 0 else 0
        return loads

    def _is_rack_aware(self, targets: list[BrokerLoad], replication_factor: int) -> bool:
        racks = {load.rack for load in targets if load.rack is not None}
        return len(racks) >= replication_factor

    def _assign_partition(
        self,
        partition: Partition,
        replication_factor: int,
        loads: dict[int, BrokerLoad],
        targets: list[BrokerLoad],
        topic_counts: Counter[int],
        rack_aware: bool,
    ) -> list[int]:
        source_racks = {
            loads[b].rack for b in partition.replicas
            if b in loads and loads[b].rack is not None
        }
        chosen: list[BrokerLoad] = []
        for _ in range(replication_factor):
            used_racks = Counter(load.rack for load in chosen)

            def placement_key(load: BrokerLoad) -> tuple[int, ...]:
                rack_usage = used_racks[load.rack]
                if rack_aware:
                    spread = (rack_usage, load.assigned_replicas)
                else:
                    spread = (load.assigned_replicas, rack_usage)
                return spread + (
                    topic_counts[load.id],
                    load.planned_replicas,
                    load.id not in partition.replicas,
                    load.rack is None or load.rack not in source_racks,
                    load.planned_size,
                    load.id,
                )

            chosen.append(min(
                (load for load in targets if load not in chosen),
                key=placement_key,
            ))

        replicas = [load.id for load in chosen]
        if set(replicas) == set(partition.replicas):
            replicas = list(partition.replicas)
        for index, broker_id in enumerate(replicas):
            load = loads[broker_id]
            load.assigned_replicas += 1
            load.assigned_size += partition.size_bytes
            load.assigned_leaders += 1 if index == 0 else 0
            topic_counts[broker_id] += 1
        return replicas

    def _balance_leaders(
        self,
        assignments: dict[str, dict[int, list[int]]],
        loads: dict[int, BrokerLoad],
        targets: list[BrokerLoad],
    ) -> None:
        """Move the preferred leader of partitions to the replica leading the
        fewest partitions, until the leader skew stops improving.
        """
        def leader_skew() -> int:
            leaders = [load.planned_leaders for load in targets]
            return max(leaders) - min(leaders)

        skew = leader_skew()
        for balancing_round in range(MAX_LEADER_BALANCING_ROUNDS):
            if skew == 0:
                break
            for partitions in assignments.values():
                for replicas in partitions.values():
                    leader = loads[replicas[0]]
                    candidate = min((loads[b] for b in replicas), key=lambda load: load.planned_leaders)
                    if candidate.planned_leaders + 1 < leader.planned_leaders:
                        index = replicas.index(candidate.id)
                        replicas[0], replicas[index] = replicas[index], replicas[0]
                        leader.assigned_leaders -= 1
                        candidate.assigned_leaders += 1
            new_skew = leader_skew()
            self.log.debug("Leader balancing round %d: skew %d -> %d", balancing_round, skew, new_skew)
            if new_skew >= skew:
                break
            skew = new_skew

    def _find_risky_partitions(
        self,
        assignments: dict[str, dict[int, list[int]]],
        loads: dict[int, BrokerLoad],
        targets: list[BrokerLoad],
    ) -> list[RiskyPartition]:
        target_racks = {load.rack for load in targets if load.rack is not None}
        if len(target_racks) < 2:
            return []
        risky = []
        for topic, partitions in assignments.items():
            for partition_id, replicas in partitions.items():
                racks = {loads[b].rack for b in replicas}
                if len(replicas) > 1 and len(racks) == 1 and None not in racks:
                    rack = racks.pop()
                    assert rack is not None
                    risky.append(RiskyPartition(topic, partition_id, rack))
        for entry in risky:
            self.log.warning(
                "All replicas of %s-%d are in rack %s",
                entry.topic,
                entry.partition,
                entry.rack,
            )
        return risky

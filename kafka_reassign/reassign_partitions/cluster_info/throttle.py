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
"""Replication throttling scoped to the replicas of a reassignment.

More details can be found in:
    https://kafka.apache.org/documentation/#rep-throttle
"""
from __future__ import annotations

import logging
import math
from typing import Iterable
from typing import Mapping
from typing import NamedTuple
from typing import Sequence

from kafka_reassign.util.admin import ActiveReassignment
from kafka_reassign.util.admin import ClusterAdmin
from kafka_reassign.util.admin import ConfigOp
from kafka_reassign.util.admin import ConfigPatch
from kafka_reassign.util.admin import PatchResult
from kafka_reassign.util.admin import ResourcePatch
from kafka_reassign.util.admin import ResourceType

from .error import PartialApplyError
from .plan import ReassignmentPlan
from .topology import TopologySnapshot


LEADER_THROTTLE_RATE_CONFIGURATION = "leader.replication.throttled.rate"
FOLLOWER_THROTTLE_RATE_CONFIGURATION = "follower.replication.throttled.rate"
LEADER_THROTTLED_REPLICAS_CONFIGURATION = "leader.replication.throttled.replicas"
FOLLOWER_THROTTLED_REPLICAS_CONFIGURATION = "follower.replication.throttled.replicas"
ALL_REPLICAS = "*"

BROKER_RATE_PHASE = "broker rate phase"
TOPIC_REPLICAS_PHASE = "topic replicas phase"


class BrokerThrottle(NamedTuple):
    leader_rate: int
    follower_rate: int


class TopicThrottle(NamedTuple):
    leader_replicas: frozenset[tuple[int, int]]
    follower_replicas: frozenset[tuple[int, int]]


class ThrottleSpec(NamedTuple):
    """Replicas to throttle per topic and the brokers to set a rate on."""
    broker_ids: tuple[int, ...]
    topics: Mapping[str, TopicThrottle]

    def broker_throttles(self, max_bytes_per_second: float) -> dict[int, BrokerThrottle]:
        rate = int(math.ceil(max_bytes_per_second))
        return {broker_id: BrokerThrottle(rate, rate) for broker_id in self.broker_ids}


def format_throttled_replicas(replicas: Iterable[tuple[int, int]]) -> str:
    return ",".join(f"{partition}:{broker}" for partition, broker in sorted(replicas))


def parse_throttled_replicas(value: str | None) -> set[tuple[int, int]]:
    """Parse a "partition:broker,..." list. Malformed entries are skipped."""
    replicas = set()
    for entry in (value or "").split(","):
        parts = entry.strip().split(":")
        if len(parts) != 2:
            continue
        try:
            replicas.add((int(parts[0]), int(parts[1])))
        except ValueError:
            continue
    return replicas


def _topic_throttle(
    moves: Iterable[tuple[int, Sequence[int], Sequence[int]]],
) -> TopicThrottle:
    """moves holds (partition, current replicas, brokers receiving a copy)."""
    leader = set()
    follower = set()
    for partition_id, sources, receivers in moves:
        leader.update((partition_id, b) for b in sources)
        follower.update((partition_id, b) for b in receivers)
    return TopicThrottle(frozenset(leader), frozenset(follower))


def compute_throttle_spec(plan: ReassignmentPlan, topology: TopologySnapshot) -> ThrottleSpec:
    """Throttle every current replica of a moved partition as leader and
    every broker receiving a new replica as follower.

    The rate is set on every broker of the cluster.
    """
    moves: dict[str, list[tuple[int, Sequence[int], Sequence[int]]]] = {}
    for topic, partition_id, new_replicas in plan.items():
        partition = topology.find_partition(topic, partition_id)
        old_replicas: tuple[int, ...] = partition.replicas if partition is not None else ()
        if old_replicas == new_replicas:
            continue
        moves.setdefault(topic, []).append((
            partition_id,
            old_replicas,
            [b for b in new_replicas if b not in old_replicas],
        ))
    return ThrottleSpec(
        broker_ids=tuple(topology.broker_ids),
        topics={topic: _topic_throttle(topic_moves) for topic, topic_moves in moves.items()},
    )


def compute_reassignment_throttle(reassignments: Iterable[ActiveReassignment]) -> dict[str, TopicThrottle]:
    """Throttled replicas of reassignments already in flight."""
    moves: dict[str, list[tuple[int, Sequence[int], Sequence[int]]]] = {}
    for r in reassignments:
        sources = [b for b in r.replicas if b not in r.adding_replicas]
        moves.setdefault(r.topic, []).append((r.partition, sources, r.adding_replicas))
    return {topic: _topic_throttle(topic_moves) for topic, topic_moves in moves.items()}


def is_throttled(
    topic_config: Mapping[str, str],
    reassignments: Iterable[ActiveReassignment],
) -> bool:
    """Whether a replica of the in-flight reassignments is throttled by
    the topic configuration.
    """
    leader_value = topic_config.get(LEADER_THROTTLED_REPLICAS_CONFIGURATION) or ""
    follower_value = topic_config.get(FOLLOWER_THROTTLED_REPLICAS_CONFIGURATION) or ""
    leader = parse_throttled_replicas(leader_value)
    follower = parse_throttled_replicas(follower_value)
    for r in reassignments:
        if leader_value.strip() == ALL_REPLICAS and r.replicas:
            return True
        if follower_value.strip() == ALL_REPLICAS and r.adding_replicas:
            return True
        if any((r.partition, b) in leader for b in r.replicas):
            return True
        if any((r.partition, b) in follower for b in r.adding_replicas):
            return True
    return False


def has_throttled_replicas(topic_config: Mapping[str, str]) -> bool:
    return bool(
        topic_config.get(LEADER_THROTTLED_REPLICAS_CONFIGURATION) or
        topic_config.get(FOLLOWER_THROTTLED_REPLICAS_CONFIGURATION)
    )


class ThrottleController:
    """Apply and remove the replication throttle of reassignments.

    :param admin: the cluster to configure
    """

    def __init__(self, admin: ClusterAdmin) -> None:
        self.admin = admin
        self.log = logging.getLogger(self.__class__.__name__)

    async def apply(self, spec: ThrottleSpec, max_bytes_per_second: float) -> None:
        """Set the rate on the brokers, then scope it to the replicas of
        the topics. The topic replicas phase only starts once every broker
        has its rate.

        :raises PartialApplyError: naming the resources of the failed phase
        """
        broker_patches = [
            ResourcePatch(ResourceType.BROKER, str(broker_id), (
                ConfigPatch(LEADER_THROTTLE_RATE_CONFIGURATION, ConfigOp.SET, str(throttle.leader_rate)),
                ConfigPatch(FOLLOWER_THROTTLE_RATE_CONFIGURATION, ConfigOp.SET, str(throttle.follower_rate)),
            ))
            for broker_id, throttle in sorted(spec.broker_throttles(max_bytes_per_second).items())
        ]
        failed = await self._alter(broker_patches)
        if failed:
            raise PartialApplyError(BROKER_RATE_PHASE, failed)
        self.log.info(
            "Replication rate set to %d B/s on %d broker(s)",
            int(math.ceil(max_bytes_per_second)),
            len(broker_patches),
        )

        failed = await self.throttle_topics(spec.topics)
        if failed:
            raise PartialApplyError(TOPIC_REPLICAS_PHASE, failed)

    async def throttle_topics(self, topics: Mapping[str, TopicThrottle]) -> list[PatchResult]:
        """Set the throttled replicas of topics, return the failures."""
        topic_patches = [
            ResourcePatch(ResourceType.TOPIC, topic, (
                ConfigPatch(
                    LEADER_THROTTLED_REPLICAS_CONFIGURATION,
                    ConfigOp.SET,
                    format_throttled_replicas(throttle.leader_replicas),
                ),
                ConfigPatch(
                    FOLLOWER_THROTTLED_REPLICAS_CONFIGURATION,
                    ConfigOp.SET,
                    format_throttled_replicas(throttle.follower_replicas),
                ),
            ))
            for topic, throttle in sorted(topics.items())
        ]
        failed = await self._alter(topic_patches)
        self.log.info("Throttled replicas set on %d topic(s)", len(topic_patches) - len(failed))
        return failed

    async def unthrottle_topics(self, topic_names: Iterable[str]) -> list[PatchResult]:
        """Remove the throttled replicas of topics, return the failures."""
        return await self._alter([
            ResourcePatch(ResourceType.TOPIC, topic, (
                ConfigPatch(LEADER_THROTTLED_REPLICAS_CONFIGURATION, ConfigOp.DELETE),
                ConfigPatch(FOLLOWER_THROTTLED_REPLICAS_CONFIGURATION, ConfigOp.DELETE),
            ))
            for topic in sorted(set(topic_names))
        ])

    async def reset(self, topic_names: Iterable[str], broker_ids: Iterable[int]) -> None:
        """Remove the throttled replicas of the topics, then the rate of
        the brokers. Every resource is attempted.

        :raises PartialApplyError: naming every resource that failed
        """
        failed = await self.unthrottle_topics(topic_names)
        failed += await self._alter([
            ResourcePatch(ResourceType.BROKER, str(broker_id), (
                ConfigPatch(LEADER_THROTTLE_RATE_CONFIGURATION, ConfigOp.DELETE),
                ConfigPatch(FOLLOWER_THROTTLE_RATE_CONFIGURATION, ConfigOp.DELETE),
            ))
            for broker_id in sorted(set(broker_ids))
        ])
        if failed:
            raise PartialApplyError("reset", failed)
        self.log.info("Replication throttle removed")

    async def _alter(self, patches: list[ResourcePatch]) -> list[PatchResult]:
        """Apply patches, return the failed ones. A call failing as a whole
        fails every patch.
        """
        if not patches:
            return []
        try:
            results = await self.admin.alter_configs(patches)
        except Exception as e:
            self.log.exception("Failed to update %d configuration(s)", len(patches))
            return [PatchResult(p.resource_type, p.name, repr(e)) for p in patches]
        return [r for r in results if r.error]

    async def read_broker_throttles(self, broker_ids: Iterable[int]) -> dict[int, tuple[str | None, str | None]]:
        """Read leader/follower replication throttles for the given brokers

        :returns : a mapping of broker id -> (leader throttle, follower throttle) pairs.
                        throttles are in B/s, None if no value is configured
        """
        configs = await self.admin.describe_configs(
            ResourceType.BROKER,
            [str(b) for b in sorted(broker_ids)],
        )
        return {
            int(name): (
                config.get(LEADER_THROTTLE_RATE_CONFIGURATION),
                config.get(FOLLOWER_THROTTLE_RATE_CONFIGURATION),
            )
            for name, config in configs.items()
        }

    async def find_throttled_topics(
        self,
        topic_names: Iterable[str],
        exclude: Iterable[str] = (),
    ) -> list[str]:
        """Topics with throttled replicas, ignoring the excluded ones.

        Pass the topics being reassigned as exclude to find the throttles
        left over by finished reassignments.
        """
        excluded = set(exclude)
        candidates = sorted(set(topic_names) - excluded)
        if not candidates:
            return []
        configs = await self.admin.describe_configs(ResourceType.TOPIC, candidates)
        return sorted(
            name for name, config in configs.items()
            if has_throttled_replicas(config)
        )

    async def find_throttled_reassignments(
        self,
        reassignments: Iterable[ActiveReassignment],
    ) -> dict[str, bool]:
        """Whether the in-flight reassignments of each topic are throttled."""
        by_topic: dict[str, list[ActiveReassignment]] = {}
        for r in reassignments:
            by_topic.setdefault(r.topic, []).append(r)
        if not by_topic:
            return {}
        configs = await self.admin.describe_configs(ResourceType.TOPIC, sorted(by_topic))
        return {
            topic: is_throttled(configs.get(topic, {}), topic_reassignments)
            for topic, topic_reassignments in sorted(by_topic.items())
        }

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
"""State of an operator preparing, submitting and following a reassignment.

A session goes through: select partitions, select target brokers, compute
and review the plan, submit it. Every collaborator is injected so that a
session can be driven against any ClusterAdmin.
"""
from __future__ import annotations

import logging
from typing import Iterable

from kafka_reassign.reassign_partitions.cluster_info.error import InputError
from kafka_reassign.reassign_partitions.cluster_info.error import InvalidSelectionError
from kafka_reassign.reassign_partitions.cluster_info.error import PartialApplyError
from kafka_reassign.reassign_partitions.cluster_info.error import SubmissionError
from kafka_reassign.reassign_partitions.cluster_info.move_diff import compute_moved_replicas
from kafka_reassign.reassign_partitions.cluster_info.move_diff import estimate_traffic
from kafka_reassign.reassign_partitions.cluster_info.move_diff import MoveDelta
from kafka_reassign.reassign_partitions.cluster_info.move_diff import remove_redundant_reassignments
from kafka_reassign.reassign_partitions.cluster_info.move_diff import TrafficEstimate
from kafka_reassign.reassign_partitions.cluster_info.plan import PartitionSelection
from kafka_reassign.reassign_partitions.cluster_info.plan import ReassignmentPlan
from kafka_reassign.reassign_partitions.cluster_info.planner import AssignmentPlanner
from kafka_reassign.reassign_partitions.cluster_info.planner import RiskyPartition
from kafka_reassign.reassign_partitions.cluster_info.throttle import compute_reassignment_throttle
from kafka_reassign.reassign_partitions.cluster_info.throttle import compute_throttle_spec
from kafka_reassign.reassign_partitions.cluster_info.throttle import ThrottleController
from kafka_reassign.reassign_partitions.cluster_info.throttle import TOPIC_REPLICAS_PHASE
from kafka_reassign.reassign_partitions.cluster_info.topology import BrokerLookupCache
from kafka_reassign.reassign_partitions.cluster_info.topology import fetch_topology
from kafka_reassign.reassign_partitions.cluster_info.topology import TopologySnapshot
from kafka_reassign.reassign_partitions.cluster_info.tracker import ReassignmentTracker
from kafka_reassign.util.admin import ActiveReassignment
from kafka_reassign.util.admin import ClusterAdmin
from kafka_reassign.util.admin import PartitionReassignmentResult
from kafka_reassign.util.config import ReassignmentConfig


class ReassignmentSession:
    """Operator session over one cluster.

    :param admin: the cluster
    :param settings: console settings
    :param tracker: tracker of the running reassignments, created from
        settings when not given
    :param throttle: throttle controller, created when not given
    """

    def __init__(
        self,
        admin: ClusterAdmin,
        settings: ReassignmentConfig | None = None,
        tracker: ReassignmentTracker | None = None,
        throttle: ThrottleController | None = None,
    ) -> None:
        self.admin = admin
        self.settings = settings or ReassignmentConfig()
        self.tracker = tracker or ReassignmentTracker(admin, self.settings.refresh_interval)
        self.throttle = throttle or ThrottleController(admin)
        self.brokers = BrokerLookupCache(self.settings.broker_cache_size)
        self.log = logging.getLogger(self.__class__.__name__)
        self.topology: TopologySnapshot | None = None
        self.selection = PartitionSelection()
        self.target_broker_ids: list[int] = []
        self.plan: ReassignmentPlan | None = None
        self.moves: list[MoveDelta] = []
        self.risky_partitions: list[RiskyPartition] = []
        self.submission_in_progress = False

    async def refresh_topology(self) -> bool:
        """Fetch a new snapshot of the cluster.

        When a selected partition or broker disappeared, the selection, the
        target brokers and the plan are reset.

        :returns: False when the selection was reset
        """
        self.set_topology(await fetch_topology(self.admin))
        return self._check_selection()

    def set_topology(self, topology: TopologySnapshot) -> None:
        self.topology = topology
        self.brokers.bind(topology)

    def _check_selection(self) -> bool:
        assert self.topology is not None
        missing_partitions = self.selection.unknown_partitions(self.topology)
        missing_brokers = [b for b in self.target_broker_ids if self.brokers.get(b) is None]
        if not missing_partitions and not missing_brokers:
            return True
        self.log.warning(
            "Selection reset, partitions %s and brokers %s are no longer in the cluster",
            missing_partitions,
            missing_brokers,
        )
        self.selection.clear()
        self.target_broker_ids = []
        self.discard_plan()
        return False

    def _require_topology(self) -> TopologySnapshot:
        if self.topology is None:
            raise InputError("The cluster topology has not been fetched yet")
        return self.topology

    def select_partitions(self, topic: str, partition_ids: Iterable[int] | None = None) -> None:
        """Select partitions of topic, all of them when partition_ids is None."""
        topology = self._require_topology()
        if partition_ids is None:
            partition_ids = [p.id for p in topology.partitions(topic)]
        self.selection.select(topic, partition_ids)
        self.discard_plan()

    def deselect_partitions(self, topic: str, partition_ids: Iterable[int] | None = None) -> None:
        self.selection.deselect(topic, partition_ids)
        self.discard_plan()

    def select_brokers(self, broker_ids: Iterable[int]) -> None:
        self.target_broker_ids = sorted(set(broker_ids))
        self.discard_plan()

    def discard_plan(self) -> None:
        self.plan = None
        self.moves = []
        self.risky_partitions = []

    def next_step_blocker(self) -> str | None:
        """Reason preventing to compute a plan, None when it can be computed."""
        try:
            AssignmentPlanner(self._require_topology()).check_arguments(
                self.selection,
                self.target_broker_ids,
            )
        except InputError as e:
            return str(e)
        return None

    def rack_warning(self) -> str | None:
        """Warn when the target brokers all share a rack although the
        cluster spans several racks.
        """
        topology = self._require_topology()
        racks = {
            broker.rack for broker in map(self.brokers.get, self.target_broker_ids)
            if broker is not None
        }
        if len(racks) == 1 and None not in racks and len(topology.racks) > 1:
            return (
                "All selected brokers are in rack {rack} while the cluster spans "
                "{count} racks, the replicas will not be spread over racks".format(
                    rack=racks.pop(),
                    count=len(topology.racks),
                )
            )
        return None

    def compute_plan(self) -> ReassignmentPlan:
        """Compute the plan of the selected partitions over the target brokers.

        :raises InputError: when the selection does not allow a plan
        """
        topology = self._require_topology()
        planner = AssignmentPlanner(topology)
        self.plan = planner.compute(self.selection, self.target_broker_ids)
        self.risky_partitions = planner.risky_partitions
        self.moves = compute_moved_replicas(self.selection, self.plan, topology)
        self.log.info(
            "Computed plan for %d partition(s), %d replica(s) to move",
            self.plan.partition_count,
            sum(m.moved_replica_count for m in self.moves),
        )
        return self.plan

    def review(self, max_bytes_per_second: int | None = None) -> TrafficEstimate:
        if self.plan is None:
            raise InputError("No plan computed")
        if max_bytes_per_second is None:
            max_bytes_per_second = self.settings.max_replication_traffic
        return estimate_traffic(self.moves, max_bytes_per_second)

    async def submit(self, max_bytes_per_second: int | None = None) -> list[PartitionReassignmentResult]:
        """Throttle and submit the plan without its no-op partitions.

        The plan is discarded once every partition is accepted. It is kept
        when the submission failed so that it can be retried.

        :raises InputError: when there is no plan or a submission is in flight
        :raises PartialApplyError: when the throttle could not be applied,
            nothing has been submitted
        :raises SubmissionError: when a partition was rejected
        """
        if self.plan is None:
            raise InputError("No plan computed")
        if self.submission_in_progress:
            raise InputError("A submission is already in progress")
        topology = self._require_topology()
        if max_bytes_per_second is None:
            max_bytes_per_second = self.settings.max_replication_traffic

        self.submission_in_progress = True
        try:
            plan = remove_redundant_reassignments(self.plan, topology)
            if not plan:
                self.log.info("The plan does not change any partition, nothing to submit")
                self.discard_plan()
                return []
            if max_bytes_per_second:
                await self.throttle.apply(compute_throttle_spec(plan, topology), max_bytes_per_second)
            results = await self.admin.alter_partition_reassignments(plan.to_reassignment_requests())
            errors = [r for r in results if r.error]
            if errors:
                raise SubmissionError(errors, started=len(results) - len(errors))
            self.log.info("Reassignment of %d partition(s) submitted", len(results))
            self.selection.clear()
            self.target_broker_ids = []
            self.discard_plan()
            return results
        finally:
            self.submission_in_progress = False

    async def reset_throttle(self, topic_names: Iterable[str] | None = None) -> list[str]:
        """Remove the throttle left over by finished reassignments.

        Topics default to the throttled topics not being reassigned. The
        rate is removed from every broker.

        :returns: the topics that were unthrottled
        """
        topology = self._require_topology()
        if topic_names is None:
            topic_names = await self.find_leftover_throttles()
        topics = sorted(topic_names)
        await self.throttle.reset(topics, topology.broker_ids)
        return topics

    async def find_leftover_throttles(self) -> list[str]:
        """Throttled topics that are not being reassigned."""
        topology = self._require_topology()
        return await self.throttle.find_throttled_topics(
            [t.name for t in topology.topics],
            exclude=self.tracker.active_topics,
        )

    def _active_partitions(self, topic: str) -> list[ActiveReassignment]:
        return [
            partition
            for view in self.tracker.reassignments if view.topic == topic
            for partition in view.partitions
        ]

    async def reassignment_throttles(self) -> dict[str, bool]:
        """Whether each tracked reassignment is throttled, by topic."""
        return await self.throttle.find_throttled_reassignments(
            partition for view in self.tracker.reassignments for partition in view.partitions
        )

    async def set_reassignment_throttle(self, topic: str, throttled: bool) -> None:
        """Throttle or unthrottle the in-flight reassignment of topic.

        Only the throttled replicas of the topic change, the broker rates
        are left as they are.

        :raises InvalidSelectionError: when topic is not being reassigned
        :raises PartialApplyError: when the topic could not be updated
        """
        partitions = self._active_partitions(topic)
        if not partitions:
            raise InvalidSelectionError(f"No reassignment in progress for topic {topic}", [topic])
        if throttled:
            failed = await self.throttle.throttle_topics(compute_reassignment_throttle(partitions))
        else:
            failed = await self.throttle.unthrottle_topics([topic])
        if failed:
            raise PartialApplyError(TOPIC_REPLICAS_PHASE, failed)
        self.log.info("Reassignment of %s %s", topic, "throttled" if throttled else "unthrottled")

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
"""Cluster operations backed by zookeeper and prometheus.

Broker, topic and reassignment state is read from and written to the kafka
zookeeper. Replica sizes come from the prometheus series of the kafka
Log.Size JMX metric.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from types import TracebackType
from typing import Any
from typing import Callable
from typing import Iterable
from typing import Sequence
from typing import TypeVar

import requests
import tenacity
from kazoo.exceptions import KazooException

from kafka_reassign.util.admin import ActiveReassignment
from kafka_reassign.util.admin import BrokerMetadata
from kafka_reassign.util.admin import ConfigOp
from kafka_reassign.util.admin import LogDirSize
from kafka_reassign.util.admin import PartitionMetadata
from kafka_reassign.util.admin import PartitionReassignmentRequest
from kafka_reassign.util.admin import PartitionReassignmentResult
from kafka_reassign.util.admin import PatchResult
from kafka_reassign.util.admin import ResourcePatch
from kafka_reassign.util.admin import ResourceType
from kafka_reassign.util.config import ClusterConfig
from kafka_reassign.util.error import ClusterAdminError
from kafka_reassign.util.validation import assignment_to_request
from kafka_reassign.util.zookeeper import EntityConfigDict
from kafka_reassign.util.zookeeper import ZK

T = TypeVar('T')

PROMETHEUS_RETRY_ATTEMPTS = 3
PROMETHEUS_WAIT_BEFORE_RETRYING = 1
PROMETHEUS_TIMEOUT = 10
DEFAULT_BROKER_LABEL = 'broker_id'
LOG_SIZE_QUERY = 'sum(kafka_log_Log_Size_Value) by (topic, partition, {broker_label})'

CANCEL_NOT_SUPPORTED = "cancellation is not supported by the zookeeper reassignment path"
REASSIGNMENT_IN_PROGRESS = "a reassignment is already in progress"
REASSIGNMENT_REJECTED = "reassignment request rejected by validation"

_log = logging.getLogger(__name__)


@tenacity.retry(
    retry=tenacity.retry_if_exception_type(requests.RequestException),
    stop=tenacity.stop_after_attempt(PROMETHEUS_RETRY_ATTEMPTS),
    wait=tenacity.wait_fixed(PROMETHEUS_WAIT_BEFORE_RETRYING),
    reraise=True,
)
def query_prom(prom_url: str, query: str) -> list[dict[str, Any]]:
    """Run an instant query and return the result vector."""
    response = requests.get(
        prom_url.rstrip('/') + '/api/v1/query',
        params={'query': query},
        timeout=PROMETHEUS_TIMEOUT,
    )
    response.raise_for_status()
    payload = response.json()
    if payload.get('status') != 'success':
        raise ClusterAdminError(
            "Prometheus query failed: {}".format(payload.get('error', payload)),
        )
    return payload['data']['result']


class ZKClusterAdmin:
    """Asynchronous cluster operations for a zookeeper based kafka cluster.

    To be used in an 'async with' statement. Zookeeper and HTTP calls are
    blocking and run in the loop's default executor.

    :param cluster_config: the cluster to operate on
    :param broker_label: the prometheus label holding the broker id
    """

    def __init__(
        self,
        cluster_config: ClusterConfig,
        broker_label: str = DEFAULT_BROKER_LABEL,
    ) -> None:
        self.cluster_config = cluster_config
        self.broker_label = broker_label
        self.zk = ZK(cluster_config)
        self.log = logging.getLogger(self.__class__.__name__)
        self._warned_no_metrics = False

    async def __aenter__(self) -> ZKClusterAdmin:
        await self._run(self.zk.__enter__)
        return self

    async def __aexit__(
        self,
        type: type | None,
        value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self._run(self.zk.__exit__, type, value, traceback)

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def describe_cluster(self) -> list[BrokerMetadata]:
        return await self._run(self._describe_cluster)

    def _describe_cluster(self) -> list[BrokerMetadata]:
        brokers = self.zk.get_brokers()
        result = []
        for broker_id, metadata in sorted(brokers.items()):
            assert metadata is not None
            result.append(BrokerMetadata(
                broker_id=broker_id,
                host=metadata['host'],
                port=metadata.get('port'),
                rack=metadata.get('rack'),
            ))
        return result

    async def describe_partitions(
        self,
        topics: Iterable[str] | None = None,
    ) -> list[PartitionMetadata]:
        return await self._run(
            self._describe_partitions,
            sorted(topics) if topics is not None else None,
        )

    def _describe_partitions(self, topics: list[str] | None) -> list[PartitionMetadata]:
        if topics is not None and not topics:
            return []
        topics_data = self.zk.get_multiple_topics(topics, fetch_partition_state=True)
        assert isinstance(topics_data, dict)
        live_brokers = set(self.zk.get_brokers(names_only=True))
        result = []
        for topic, topic_data in sorted(topics_data.items()):
            for p_id, p_data in topic_data['partitions'].items():
                replicas = tuple(p_data['replicas'])
                result.append(PartitionMetadata(
                    topic=topic,
                    partition=int(p_id),
                    leader=p_data.get('leader', -1),
                    replicas=replicas,
                    offline_replicas=tuple(r for r in replicas if r not in live_brokers),
                ))
        return sorted(result)

    async def describe_log_dirs(
        self,
        topics: Iterable[str] | None = None,
    ) -> list[LogDirSize]:
        if not self.cluster_config.metric_url:
            if not self._warned_no_metrics:
                self.log.warning(
                    "No metric_url configured for cluster %s, replica sizes are unknown",
                    self.cluster_config.name,
                )
                self._warned_no_metrics = True
            return []
        wanted = set(topics) if topics is not None else None
        samples = await self._run(
            query_prom,
            self.cluster_config.metric_url,
            LOG_SIZE_QUERY.format(broker_label=self.broker_label),
        )
        return self._parse_log_sizes(samples, wanted)

    def _parse_log_sizes(
        self,
        samples: list[dict[str, Any]],
        topics: set[str] | None,
    ) -> list[LogDirSize]:
        result = []
        for sample in samples:
            metric = sample.get('metric', {})
            try:
                topic = metric['topic']
                partition = int(metric['partition'])
                broker_id = int(metric[self.broker_label])
                size = int(float(sample['value'][1]))
            except (KeyError, IndexError, TypeError, ValueError):
                self.log.debug("Skipping malformed log size sample %s", sample)
                continue
            if topics is not None and topic not in topics:
                continue
            result.append(LogDirSize(topic, partition, broker_id, size))
        return sorted(result)

    async def alter_partition_reassignments(
        self,
        requests: Sequence[PartitionReassignmentRequest],
    ) -> list[PartitionReassignmentResult]:
        return await self._run(self._alter_partition_reassignments, list(requests))

    def _alter_partition_reassignments(
        self,
        requests: list[PartitionReassignmentRequest],
    ) -> list[PartitionReassignmentResult]:
        results = [
            PartitionReassignmentResult(r.topic, r.partition, CANCEL_NOT_SUPPORTED)
            for r in requests if r.replicas is None
        ]
        moves = [r for r in requests if r.replicas is not None]
        if not moves:
            return results

        error = None
        if self.zk.get_pending_plan():
            error = REASSIGNMENT_IN_PROGRESS
        else:
            request = assignment_to_request({
                (r.topic, r.partition): list(r.replicas)
                for r in moves
                if r.replicas is not None
            })
            if not self.zk.execute_plan(request):
                error = REASSIGNMENT_REJECTED
        results.extend(
            PartitionReassignmentResult(r.topic, r.partition, error)
            for r in moves
        )
        return results

    async def list_partition_reassignments(self) -> list[ActiveReassignment]:
        return await self._run(self._list_partition_reassignments)

    def _list_partition_reassignments(self) -> list[ActiveReassignment]:
        """Derive the active reassignments from the pending plan.

        Brokers of the target replicas that are not in sync yet are still
        being added. Brokers hosting a replica outside of the target
        replicas are being removed.
        """
        pending = self.zk.get_pending_plan()
        if not pending or not pending.get('partitions'):
            return []
        topics = sorted({p['topic'] for p in pending['partitions']})
        topics_data = self.zk.get_multiple_topics(topics, fetch_partition_state=True)
        assert isinstance(topics_data, dict)

        result = []
        for p_data in pending['partitions']:
            topic, partition = p_data['topic'], p_data['partition']
            target = list(p_data['replicas'])
            state = topics_data.get(topic, {'partitions': {}})['partitions'].get(str(partition), {})
            current = list(state.get('replicas', []))
            in_sync = state.get('isr', current)
            result.append(ActiveReassignment(
                topic=topic,
                partition=partition,
                replicas=tuple(current + [b for b in target if b not in current]),
                adding_replicas=tuple(b for b in target if b not in in_sync),
                removing_replicas=tuple(b for b in current if b not in target),
            ))
        return sorted(result)

    async def alter_configs(self, patches: Sequence[ResourcePatch]) -> list[PatchResult]:
        return await self._run(self._alter_configs, list(patches))

    def _alter_configs(self, patches: list[ResourcePatch]) -> list[PatchResult]:
        results = []
        for patch in patches:
            try:
                self._apply_patch(patch)
            except (KazooException, ValueError) as e:
                self.log.error(
                    "Failed to update %s %s: %r",
                    patch.resource_type.value,
                    patch.name,
                    e,
                )
                results.append(PatchResult(patch.resource_type, patch.name, repr(e)))
            else:
                results.append(PatchResult(patch.resource_type, patch.name))
        return results

    def _read_config(self, resource_type: ResourceType, name: str) -> EntityConfigDict:
        if resource_type == ResourceType.BROKER:
            return self.zk.get_broker_config(int(name))
        return self.zk.get_topic_config(name)

    def _apply_patch(self, patch: ResourcePatch) -> None:
        config = self._read_config(patch.resource_type, patch.name)
        entries = config.setdefault('config', {})
        changed = False
        for entry in patch.configs:
            if entry.op == ConfigOp.SET:
                assert entry.value is not None
                changed = changed or entries.get(entry.name) != entry.value
                entries[entry.name] = entry.value
            elif entries.pop(entry.name, None) is not None:
                changed = True
        if not changed:
            return
        if patch.resource_type == ResourceType.BROKER:
            self.zk.set_broker_config(int(patch.name), config)
        else:
            self.zk.set_topic_config(patch.name, config)

    async def describe_configs(
        self,
        resource_type: ResourceType,
        names: Iterable[str],
    ) -> dict[str, dict[str, str]]:
        return await self._run(self._describe_configs, resource_type, list(names))

    def _describe_configs(
        self,
        resource_type: ResourceType,
        names: list[str],
    ) -> dict[str, dict[str, str]]:
        configs = {}
        for name in names:
            try:
                configs[name] = dict(self._read_config(resource_type, name).get('config', {}))
            except KazooException:
                self.log.warning("No configuration for %s %s", resource_type.value, name)
        return configs

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

import logging
import re
from types import TracebackType
from typing import Any
from typing import Callable
from typing import Sequence

from kazoo.client import KazooClient
from kazoo.exceptions import NodeExistsError
from kazoo.exceptions import NoNodeError
from kazoo.protocol.states import ZnodeStat
from kazoo.retry import KazooRetry
from kazoo.security import ACL
from typing_extensions import TypedDict

from kafka_reassign.util.config import ClusterConfig
from kafka_reassign.util.serialization import dump_json
from kafka_reassign.util.serialization import load_json
from kafka_reassign.util.validation import Assignment
from kafka_reassign.util.validation import ReassignmentRequestDict
from kafka_reassign.util.validation import request_to_assignment
from kafka_reassign.util.validation import validate_request

ADMIN_PATH = "/admin"
REASSIGNMENT_NODE = "reassign_partitions"
REASSIGNMENT_PATH = f"{ADMIN_PATH}/{REASSIGNMENT_NODE}"
_log = logging.getLogger('kafka-zookeeper-manager')


class TopicDataPartitionDict(TypedDict, total=False):
    replicas: list[int]
    isr: list[int]
    controller_epoch: int
    leader_epoch: int
    version: int
    leader: int
    ctime: float


class TopicDataDict(TypedDict):
    version: int
    partitions: dict[str, TopicDataPartitionDict]


class ClusterPlanPartitionDict(TypedDict):
    topic: str
    partition: int
    replicas: list[int]


class ClusterPlanDict(TypedDict):
    version: int
    partitions: list[ClusterPlanPartitionDict]


class EntityConfigDict(TypedDict):
    version: int
    config: dict[str, str]


class ZK:
    """Opens a connection to a kafka zookeeper. "
    "To be used in the 'with' statement."""

    def __init__(self, cluster_config: ClusterConfig) -> None:
        self.cluster_config = cluster_config

    def __enter__(self) -> ZK:
        kazoo_retry = KazooRetry(
            max_tries=5,
        )
        self.zk = KazooClient(
            hosts=self.cluster_config.zookeeper,
            connection_retry=kazoo_retry,
        )
        _log.debug(
            "ZK: Creating new zookeeper connection: %s",
            self.cluster_config.zookeeper,
        )
        self.zk.start()
        return self

    def __exit__(self, type: type | None, value: BaseException | None, traceback: TracebackType | None) -> None:
        self.zk.stop()

    def get_children(self, path: str) -> list[str]:
        """Returns the children of the specified node."""
        _log.debug("ZK: Getting children of %s", path)
        return self.zk.get_children(path)

    def get(self, path: str) -> tuple[bytes, ZnodeStat]:
        """Returns the data of the specified node."""
        _log.debug("ZK: Getting %s", path)
        return self.zk.get(path)

    def set(self, path: str, value: bytes) -> ZnodeStat:
        """Sets and returns new data for the specified node."""
        _log.debug("ZK: Setting %s to %r", path, value)
        return self.zk.set(path, value)

    def create(
        self,
        path: str,
        value: bytes = b'',
        acl: Sequence[ACL] | None = None,
        ephemeral: bool = False,
        sequence: bool = False,
        makepath: bool = False,
    ) -> str:
        """Creates a Zookeeper node.

        :param: path: The zookeeper node path
        :param: value: Zookeeper node value
        :param: acl: ACL list
        :param: ephemeral: Boolean indicating where this node is tied to
          this session.
        :param: sequence:  Boolean indicating whether path is suffixed
          with a unique index.
        :param: makepath: Whether the path should be created if it doesn't
          exist.
        """
        _log.debug("ZK: Creating node %s", path)
        return self.zk.create(path, value, acl, ephemeral, sequence, makepath)

    def get_broker_metadata(self, broker_id: str) -> dict[str, Any]:
        try:
            broker_json = load_json(self.get(
                f"/brokers/ids/{broker_id}"
            )[0])
            if broker_json.get('host') is None and broker_json.get('endpoints'):
                pattern = '(?:[A-Z_]+://)?(?P<host>[^:/ ]+):?(?P<port>[0-9]*).*'
                result = re.search(pattern, broker_json['endpoints'][0])
                assert result is not None
                broker_json['host'] = result.group('host')
                if result.group('port'):
                    broker_json['port'] = int(result.group('port'))
        except NoNodeError:
            _log.error("broker '%s' not found.", broker_id)
            raise
        return broker_json

    def get_brokers(self, names_only: bool = False) -> dict[int, dict[str, Any] | None]:
        """Get information on all the available brokers.

        :rtype : dict of brokers
        """
        try:
            broker_ids = self.get_children("/brokers/ids")
        except NoNodeError:
            _log.info("cluster is empty.")
            return {}
        if names_only:
            return {int(b_id): None for b_id in broker_ids}
        return {int(b_id): self.get_broker_metadata(b_id) for b_id in broker_ids}

    def get_topic_config(self, topic: str) -> EntityConfigDict:
        """Get configuration information for specified topic.

        :rtype : dict of configuration
        """
        return self._get_entity_config(
            "topics",
            topic,
            lambda topic: len(self.get_topics(topic_name=topic, fetch_partition_state=False)) > 0,
        )

    def set_topic_config(self, topic: str, value: EntityConfigDict) -> ZnodeStat | str:
        """Set configuration information for specified topic.

        :topic : topic whose configuration needs to be changed
        :value : the whole configuration document, as returned by
            get_topic_config
        """
        return self._set_entity_config("topics", topic, value)

    def get_broker_config(self, broker_id: int) -> EntityConfigDict:
        """Get configuration information for specified broker.

        :rtype : dict of configuration
        """
        return self._get_entity_config(
            "brokers",
            str(broker_id),
            lambda broker_id: int(broker_id) in self.get_brokers(names_only=True)
        )

    def set_broker_config(self, broker_id: int, value: EntityConfigDict) -> ZnodeStat | str:
        """Set configuration information for specified broker.

        :broker_id : broker whose configuration needs to be changed
        :value : the whole configuration document, as returned by
            get_broker_config
        """
        return self._set_entity_config("brokers", str(broker_id), value)

    def _get_entity_config(
        self,
        entity_type: str,
        entity_name: str,
        entity_exists: Callable[[str], bool],
    ) -> EntityConfigDict:
        """Get configuration information for specified entity.

        :entity_type : "brokers" or "topics"
        :entity_name : broker id or topic name
        :entity_exists : fn(entity_name) -> bool to determine whether an entity
                            exists. used to determine whether to throw an exception
                            when a configuration cannot be found for the given entity_name
        :rtype : dict of configuration
        """
        assert entity_type in ("brokers", "topics"), "Supported entities are brokers and topics"

        try:
            config_data = load_json(
                self.get(f"/config/{entity_type}/{entity_name}")[0]
            )
        except NoNodeError:
            if entity_exists(entity_name):
                _log.info("Configuration not available for %s %s.", entity_type, entity_name)
                config_data = {"version": 1, "config": {}}
            else:
                _log.error("%s %s not found", entity_type, entity_name)
                raise
        return config_data

    def _set_entity_config(self, entity_type: str, entity_name: str, value: EntityConfigDict) -> ZnodeStat | str:
        """Set configuration information for specified entity and
        notify the brokers through a config change node.

        :entity_type : "brokers" or "topics"
        :entity_name : broker id or topic name
        :value : the whole configuration document
        """
        assert entity_type in ("brokers", "topics"), "Supported entities are brokers and topics"

        config_path = f"/config/{entity_type}/{entity_name}"
        config_data = dump_json(value)
        try:
            return_value: ZnodeStat | str = self.set(config_path, config_data)
        except NoNodeError:
            # Brokers without dynamic configuration have no node yet
            return_value = self.create(config_path, config_data, makepath=True)

        change_node = dump_json({
            "version": 2,
            "entity_path": f"{entity_type}/{entity_name}",
        })
        self.create(
            '/config/changes/config_change_',
            change_node,
            sequence=True,
            makepath=True,
        )
        return return_value

    def get_topics(
        self,
        topic_name: str | None = None,
        names_only: bool = False,
        fetch_partition_state: bool = True,
    ) -> dict[str, TopicDataDict] | list[str]:
        topic_names = [topic_name] if topic_name else None
        return self.get_multiple_topics(topic_names, names_only, fetch_partition_state)

    def get_multiple_topics(
        self,
        topic_names: list[str] | None = None,
        names_only: bool = False,
        fetch_partition_state: bool = True,
    ) -> dict[str, TopicDataDict] | list[str]:
        """Get information on all the available topics.

        Topic-data format with fetch_partition_state as False :-
        topic_data = {
            'version': 1,
            'partitions': {
                <p_id>: {
                    replicas: <broker-ids>
                }
            }
        }

        Topic-data format with fetch_partition_state as True:-
        topic_data = {
            'version': 1,
            'partitions': {
                <p_id>:{
                    replicas: [<broker_id>, <broker_id>, ...],
                    isr: [<broker_id>, <broker_id>, ...],
                    controller_epoch: <val>,
                    leader_epoch: <val>,
                    version: 1,
                    leader: <broker-id>,
                }
            }
        }
        Unknown topics are skipped.
        """
        try:
            if not topic_names:
                topic_names = self.get_children("/brokers/topics")
        except NoNodeError:
            _log.error("Cluster is empty.")
            return {}

        if names_only:
            return topic_names
        topics_data: dict[str, TopicDataDict] = {}
        for topic_id in topic_names:
            try:
                topic_data = load_json(self.get(f"/brokers/topics/{topic_id}")[0])
            except NoNodeError:
                _log.info("topic '%s' not found.", topic_id)
                continue
            partitions_data: dict[str, TopicDataPartitionDict] = {}
            for p_id, replicas in topic_data['partitions'].items():
                partitions_data[p_id] = {}
                if fetch_partition_state:
                    partitions_data[p_id] = self._fetch_partition_state(topic_id, p_id)
                partitions_data[p_id]['replicas'] = replicas
            topic_data['partitions'] = partitions_data
            topics_data[topic_id] = topic_data
        return topics_data

    def _fetch_partition_state(self, topic_id: str, partition_id: str) -> TopicDataPartitionDict:
        """Fetch partition-state for given topic-partition."""
        state_path = f"/brokers/topics/{topic_id}/partitions/{partition_id}/state"
        try:
            return load_json(self.get(state_path)[0])
        except NoNodeError:
            return {}  # The partition has no data

    def get_cluster_plan(self, topic_names: list[str] | None = None) -> ClusterPlanDict:
        """Fetch cluster plan from zookeeper."""
        _log.info('Fetching current cluster-topology from Zookeeper...')
        cluster_layout = self.get_multiple_topics(topic_names, fetch_partition_state=False)
        assert isinstance(cluster_layout, dict)
        partitions: list[ClusterPlanPartitionDict] = [
            {
                'topic': topic_id,
                'partition': int(p_id),
                'replicas': partitions_data['replicas']
            }
            for topic_id, topic_info in cluster_layout.items()
            for p_id, partitions_data in topic_info['partitions'].items()
        ]
        return {
            'version': 1,
            'partitions': partitions
        }

    def get_cluster_assignment(self, topic_names: list[str] | None = None) -> Assignment:
        """Fetch the cluster layout in form of assignment from zookeeper"""
        plan = self.get_cluster_plan(topic_names)
        return {
            (elem['topic'], elem['partition']): elem['replicas']
            for elem in plan['partitions']
        }

    def get_pending_plan(self) -> ClusterPlanDict | None:
        """Read the currently running plan on reassign_partitions node."""
        try:
            return load_json(self.get(REASSIGNMENT_PATH)[0])
        except NoNodeError:
            return None

    def execute_plan(self, request: ReassignmentRequestDict) -> bool:
        """Submit a reassignment request for execution.

        The request is validated against the current assignment and then
        written to the reassign_partitions node in the format read by the
        kafka controller. Returns False when the request is invalid or a
        reassignment is already running.
        """
        topic_names = sorted({topic['topicName'] for topic in request['topics']})
        base_assignment = self.get_cluster_assignment(topic_names=topic_names)
        if not validate_request(request, base_assignment, allow_cancel=False):
            _log.error('Given request is invalid. Aborting new reassignment request... %s', request)
            return False

        plan: ClusterPlanDict = {
            'version': 1,
            'partitions': [
                {'topic': topic, 'partition': partition, 'replicas': replicas}
                for (topic, partition), replicas in sorted(request_to_assignment(request).items())
                if replicas is not None
            ],
        }
        try:
            _log.info('Sending plan to Zookeeper...')
            self.create(REASSIGNMENT_PATH, dump_json(plan), makepath=True)
            _log.info(
                'Re-assign partitions node in Zookeeper updated successfully '
                'with %s', plan,
            )
            return True
        except NodeExistsError:
            _log.warning('Previous plan in progress. Aborting new reassignment plan... %s', plan)
            in_progress_plan = self.get_pending_plan() or {'partitions': []}
            in_progress_partitions = [
                '{topic}-{p_id}'.format(
                    topic=p_data['topic'],
                    p_id=str(p_data['partition']),
                )
                for p_data in in_progress_plan['partitions']
            ]
            _log.warning(
                '%d partition(s) reassignment currently in progress: %s',
                len(in_progress_partitions),
                ', '.join(in_progress_partitions),
            )
            return False

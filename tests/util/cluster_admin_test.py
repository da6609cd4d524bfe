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
from unittest import mock

import pytest
import requests
from kazoo.exceptions import NoNodeError

from kafka_reassign.util.admin import ActiveReassignment
from kafka_reassign.util.admin import BrokerMetadata
from kafka_reassign.util.admin import ConfigOp
from kafka_reassign.util.admin import ConfigPatch
from kafka_reassign.util.admin import LogDirSize
from kafka_reassign.util.admin import PartitionMetadata
from kafka_reassign.util.admin import PartitionReassignmentRequest
from kafka_reassign.util.admin import PartitionReassignmentResult
from kafka_reassign.util.admin import PatchResult
from kafka_reassign.util.admin import ResourcePatch
from kafka_reassign.util.admin import ResourceType
from kafka_reassign.util.cluster_admin import CANCEL_NOT_SUPPORTED
from kafka_reassign.util.cluster_admin import query_prom
from kafka_reassign.util.cluster_admin import REASSIGNMENT_IN_PROGRESS
from kafka_reassign.util.cluster_admin import REASSIGNMENT_REJECTED
from kafka_reassign.util.cluster_admin import ZKClusterAdmin
from kafka_reassign.util.config import ClusterConfig
from kafka_reassign.util.error import ClusterAdminError
from kafka_reassign.util.zookeeper import ZK

LEADER_RATE = "leader.replication.throttled.rate"

cluster_config = ClusterConfig(
    type='mytype',
    name='some_cluster',
    broker_list=['some_list'],
    zookeeper='some_ip',
    metric_url='http://prometheus:9090',
)


@pytest.fixture
def admin():
    admin = ZKClusterAdmin(cluster_config)
    admin.zk = mock.MagicMock(spec=ZK)
    return admin


def mock_response(payload):
    response = mock.Mock(spec=requests.Response)
    response.json.return_value = payload
    return response


class TestQueryProm:

    def test_query_prom(self):
        result = [{'metric': {'topic': 't'}, 'value': [0, '1']}]
        with mock.patch(
            'kafka_reassign.util.cluster_admin.requests.get',
            return_value=mock_response({'status': 'success', 'data': {'result': result}}),
        ) as mock_get:
            assert query_prom('http://prometheus:9090/', 'up') == result
            mock_get.assert_called_once_with(
                'http://prometheus:9090/api/v1/query',
                params={'query': 'up'},
                timeout=10,
            )

    def test_query_prom_error_status(self):
        with mock.patch(
            'kafka_reassign.util.cluster_admin.requests.get',
            return_value=mock_response({'status': 'error', 'error': 'bad query'}),
        ):
            with pytest.raises(ClusterAdminError):
                query_prom('http://prometheus:9090', 'up{')

    def test_query_prom_retries(self):
        result = [{'metric': {}, 'value': [0, '1']}]
        with mock.patch(
            'kafka_reassign.util.cluster_admin.requests.get',
            side_effect=[
                requests.ConnectionError(),
                mock_response({'status': 'success', 'data': {'result': result}}),
            ],
        ) as mock_get:
            assert query_prom('http://prometheus:9090', 'up') == result
            assert mock_get.call_count == 2


class TestZKClusterAdmin:

    @pytest.mark.asyncio
    async def test_context_manager(self, admin):
        async with admin as entered:
            assert entered is admin
            admin.zk.__enter__.assert_called_once_with()
        admin.zk.__exit__.assert_called_once_with(None, None, None)

    @pytest.mark.asyncio
    async def test_describe_cluster(self, admin):
        admin.zk.get_brokers.return_value = {
            2: {'host': 'broker2', 'port': 9092, 'rack': 'rack-b'},
            1: {'host': 'broker1'},
        }

        assert await admin.describe_cluster() == [
            BrokerMetadata(1, 'broker1'),
            BrokerMetadata(2, 'broker2', 9092, 'rack-b'),
        ]

    @pytest.mark.asyncio
    async def test_describe_partitions(self, admin):
        admin.zk.get_multiple_topics.return_value = {
            'topic1': {
                'version': 1,
                'partitions': {
                    '1': {'replicas': [2, 3], 'leader': 2, 'isr': [2]},
                    '0': {'replicas': [1, 2], 'leader': 1, 'isr': [1, 2]},
                },
            },
        }
        admin.zk.get_brokers.return_value = {1: None, 2: None}

        assert await admin.describe_partitions() == [
            PartitionMetadata('topic1', 0, 1, (1, 2), ()),
            PartitionMetadata('topic1', 1, 2, (2, 3), (3,)),
        ]
        admin.zk.get_multiple_topics.assert_called_once_with(None, fetch_partition_state=True)

    @pytest.mark.asyncio
    async def test_describe_partitions_no_topics(self, admin):
        assert await admin.describe_partitions([]) == []
        assert not admin.zk.get_multiple_topics.called

    @pytest.mark.asyncio
    async def test_describe_log_dirs(self, admin):
        samples = [
            {'metric': {'topic': 'topic1', 'partition': '0', 'broker_id': '1'}, 'value': [0, '1000']},
            {'metric': {'topic': 'topic2', 'partition': '0', 'broker_id': '1'}, 'value': [0, '5']},
            {'metric': {'topic': 'topic1', 'partition': '1'}, 'value': [0, '5']},
            {'metric': {'topic': 'topic1', 'partition': '1', 'broker_id': '2'}, 'value': [0, 'NaN?']},
        ]
        with mock.patch(
            'kafka_reassign.util.cluster_admin.query_prom',
            return_value=samples,
        ) as mock_query:
            assert await admin.describe_log_dirs(['topic1']) == [
                LogDirSize('topic1', 0, 1, 1000),
            ]
            mock_query.assert_called_once_with(
                'http://prometheus:9090',
                'sum(kafka_log_Log_Size_Value) by (topic, partition, broker_id)',
            )

    @pytest.mark.asyncio
    async def test_describe_log_dirs_without_metrics(self):
        admin = ZKClusterAdmin(cluster_config._replace(metric_url=None))
        with mock.patch('kafka_reassign.util.cluster_admin.query_prom') as mock_query:
            assert await admin.describe_log_dirs() == []
            assert await admin.describe_log_dirs() == []
            assert not mock_query.called

    @pytest.mark.asyncio
    async def test_alter_partition_reassignments(self, admin):
        admin.zk.get_pending_plan.return_value = None
        admin.zk.execute_plan.return_value = True

        results = await admin.alter_partition_reassignments([
            PartitionReassignmentRequest('topic1', 1, (3, 4)),
            PartitionReassignmentRequest('topic1', 0, (2, 3)),
        ])

        assert results == [
            PartitionReassignmentResult('topic1', 1),
            PartitionReassignmentResult('topic1', 0),
        ]
        admin.zk.execute_plan.assert_called_once_with({
            'topics': [{
                'topicName': 'topic1',
                'partitions': [
                    {'partitionId': 0, 'replicas': [2, 3]},
                    {'partitionId': 1, 'replicas': [3, 4]},
                ],
            }],
        })

    @pytest.mark.asyncio
    async def test_alter_partition_reassignments_cancel(self, admin):
        results = await admin.alter_partition_reassignments([
            PartitionReassignmentRequest('topic1', 0, None),
        ])

        assert results == [PartitionReassignmentResult('topic1', 0, CANCEL_NOT_SUPPORTED)]
        assert not admin.zk.execute_plan.called

    @pytest.mark.asyncio
    async def test_alter_partition_reassignments_in_progress(self, admin):
        admin.zk.get_pending_plan.return_value = {
            'version': 1,
            'partitions': [{'topic': 'topic2', 'partition': 0, 'replicas': [1]}],
        }

        results = await admin.alter_partition_reassignments([
            PartitionReassignmentRequest('topic1', 0, (2, 3)),
        ])

        assert results == [PartitionReassignmentResult('topic1', 0, REASSIGNMENT_IN_PROGRESS)]
        assert not admin.zk.execute_plan.called

    @pytest.mark.asyncio
    async def test_alter_partition_reassignments_rejected(self, admin):
        admin.zk.get_pending_plan.return_value = None
        admin.zk.execute_plan.return_value = False

        results = await admin.alter_partition_reassignments([
            PartitionReassignmentRequest('topic1', 0, (2, 3)),
        ])

        assert results == [PartitionReassignmentResult('topic1', 0, REASSIGNMENT_REJECTED)]

    @pytest.mark.asyncio
    async def test_list_partition_reassignments(self, admin):
        admin.zk.get_pending_plan.return_value = {
            'version': 1,
            'partitions': [{'topic': 'topic1', 'partition': 0, 'replicas': [3, 4]}],
        }
        admin.zk.get_multiple_topics.return_value = {
            'topic1': {
                'version': 1,
                'partitions': {'0': {'replicas': [1, 2, 3, 4], 'isr': [1, 2, 3]}},
            },
        }

        assert await admin.list_partition_reassignments() == [
            ActiveReassignment('topic1', 0, (1, 2, 3, 4), (4,), (1, 2)),
        ]

    @pytest.mark.asyncio
    async def test_list_partition_reassignments_none(self, admin):
        admin.zk.get_pending_plan.return_value = None

        assert await admin.list_partition_reassignments() == []

    @pytest.mark.asyncio
    async def test_alter_configs(self, admin):
        admin.zk.get_broker_config.return_value = {'version': 1, 'config': {'other': '1'}}

        results = await admin.alter_configs([
            ResourcePatch(ResourceType.BROKER, '1', (
                ConfigPatch(LEADER_RATE, ConfigOp.SET, '10'),
            )),
        ])

        assert results == [PatchResult(ResourceType.BROKER, '1')]
        admin.zk.set_broker_config.assert_called_once_with(
            1,
            {'version': 1, 'config': {'other': '1', LEADER_RATE: '10'}},
        )

    @pytest.mark.asyncio
    async def test_alter_configs_delete_absent_key(self, admin):
        admin.zk.get_topic_config.return_value = {'version': 1, 'config': {}}

        results = await admin.alter_configs([
            ResourcePatch(ResourceType.TOPIC, 'topic1', (
                ConfigPatch("leader.replication.throttled.replicas", ConfigOp.DELETE),
            )),
        ])

        assert results == [PatchResult(ResourceType.TOPIC, 'topic1')]
        assert not admin.zk.set_topic_config.called

    @pytest.mark.asyncio
    async def test_alter_configs_partial_failure(self, admin):
        def get_topic_config(topic):
            if topic == 'missing':
                raise NoNodeError()
            return {'version': 1, 'config': {}}
        admin.zk.get_topic_config.side_effect = get_topic_config

        results = await admin.alter_configs([
            ResourcePatch(ResourceType.TOPIC, name, (
                ConfigPatch("leader.replication.throttled.replicas", ConfigOp.SET, "0:1"),
            ))
            for name in ('missing', 'topic1')
        ])

        assert results[0].name == 'missing' and results[0].error
        assert results[1] == PatchResult(ResourceType.TOPIC, 'topic1')
        admin.zk.set_topic_config.assert_called_once_with(
            'topic1',
            {'version': 1, 'config': {"leader.replication.throttled.replicas": "0:1"}},
        )

    @pytest.mark.asyncio
    async def test_describe_configs(self, admin):
        def get_topic_config(topic):
            if topic == 'missing':
                raise NoNodeError()
            return {'version': 1, 'config': {'retention.ms': '1000'}}
        admin.zk.get_topic_config.side_effect = get_topic_config

        assert await admin.describe_configs(ResourceType.TOPIC, ['topic1', 'missing']) == {
            'topic1': {'retention.ms': '1000'},
        }

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
import pytest

from kafka_reassign.util.validation import assignment_to_request
from kafka_reassign.util.validation import request_to_assignment
from kafka_reassign.util.validation import validate_request


def make_request(*topics):
    return {
        'topics': [
            {
                'topicName': topic,
                'partitions': [
                    {'partitionId': p_id, 'replicas': replicas}
                    for p_id, replicas in partitions
                ],
            }
            for topic, partitions in topics
        ]
    }


def test_request_to_assignment():
    request = make_request(
        ('t1', [(0, [1, 2]), (1, None)]),
        ('t2', [(0, [3])]),
    )

    assert request_to_assignment(request) == {
        ('t1', 0): [1, 2],
        ('t1', 1): None,
        ('t2', 0): [3],
    }


def test_assignment_to_request_sorted():
    assignment = {
        ('t2', 0): [3],
        ('t1', 1): None,
        ('t1', 0): [1, 2],
    }

    assert assignment_to_request(assignment) == make_request(
        ('t1', [(0, [1, 2]), (1, None)]),
        ('t2', [(0, [3])]),
    )


def test_validate_request_valid():
    request = make_request(('t1', [(0, [1, 2]), (1, [2, 3])]))

    assert validate_request(request) is True


def test_validate_request_cancellation():
    request = make_request(('t1', [(0, None)]))

    assert validate_request(request) is True
    assert validate_request(request, allow_cancel=False) is False


@pytest.mark.parametrize("request_data", [
    {},
    {'topics': []},
    {'topics': [], 'version': 1},
    {'topics': [{'topicName': 't1'}]},
    {'topics': [{'topicName': '', 'partitions': [{'partitionId': 0, 'replicas': [1]}]}]},
    {'topics': [{'topicName': 't1', 'partitions': []}]},
    {'topics': [{'topicName': 't1', 'partitions': [{'partitionId': -1, 'replicas': [1]}]}]},
    {'topics': [{'topicName': 't1', 'partitions': [{'partitionId': '0', 'replicas': [1]}]}]},
    {'topics': [{'topicName': 't1', 'partitions': [{'partitionId': 0, 'replicas': []}]}]},
    {'topics': [{'topicName': 't1', 'partitions': [{'partitionId': 0, 'replicas': ['1']}]}]},
    {'topics': [{'topicName': 't1', 'partitions': [{'partitionId': 0}]}]},
])
def test_validate_request_invalid_format(request_data):
    assert validate_request(request_data) is False


def test_validate_request_duplicate_partitions():
    request = make_request(('t1', [(0, [1, 2]), (0, [2, 3])]))

    assert validate_request(request) is False


def test_validate_request_duplicate_brokers():
    request = make_request(('t1', [(0, [1, 1])]))

    assert validate_request(request) is False


def test_validate_request_replication_factor_mismatch():
    request = make_request(('t1', [(0, [1, 2]), (1, [1, 2, 3])]))

    assert validate_request(request) is False


def test_validate_request_base_assignment():
    base = {('t1', 0): [1, 2], ('t1', 1): [2, 3]}

    assert validate_request(make_request(('t1', [(0, [3, 4])])), base) is True
    # Unknown partition
    assert validate_request(make_request(('t1', [(2, [3, 4])])), base) is False
    # Replication factor changed
    assert validate_request(make_request(('t1', [(0, [3])])), base) is False

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
"""Provide functions to validate and convert reassignment requests.

A reassignment request has the following shape:
{
    "topics": [
        {
            "topicName": "orders",
            "partitions": [
                {"partitionId": 0, "replicas": [1, 2, 3]},
                {"partitionId": 1, "replicas": null},
            ]
        },
        ...
    ]
}
A null replicas list cancels the in-flight reassignment of the partition.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

from typing_extensions import TypedDict


_log = logging.getLogger(__name__)

Assignment = Dict[Tuple[str, int], Optional[List[int]]]


class PartitionRequestDict(TypedDict):
    partitionId: int
    replicas: list[int] | None


class TopicRequestDict(TypedDict):
    topicName: str
    partitions: list[PartitionRequestDict]


class ReassignmentRequestDict(TypedDict):
    topics: list[TopicRequestDict]


def request_to_assignment(request: ReassignmentRequestDict) -> Assignment:
    """Flatten a request into a (topic, partition) -> replicas mapping."""
    assignment: Assignment = {}
    for topic in request['topics']:
        for partition in topic['partitions']:
            assignment[
                (topic['topicName'], partition['partitionId'])
            ] = partition['replicas']
    return assignment


def assignment_to_request(assignment: Assignment) -> ReassignmentRequestDict:
    """Group a (topic, partition) -> replicas mapping into a request.
    Topics and partitions are sorted.
    """
    topics: dict[str, list[PartitionRequestDict]] = {}
    for (topic, partition), replicas in sorted(assignment.items()):
        topics.setdefault(topic, []).append({
            'partitionId': partition,
            'replicas': list(replicas) if replicas is not None else None,
        })
    return {
        'topics': [
            {'topicName': topic, 'partitions': partitions}
            for topic, partitions in topics.items()
        ]
    }


def validate_request(
    request: ReassignmentRequestDict,
    base_assignment: Assignment | None = None,
    allow_cancel: bool = True,
) -> bool:
    """Verify that the reassignment request is valid for submission.

    Given request should affirm with following rules:
    - Request should have at least one partition
    - No duplicate partitions, no duplicate broker-ids in each replicas
    - Replication-factor for each partition of same topic is same
    - Partitions are a subset of the base assignment and keep their
      replication-factor, when a base assignment is given
    """
    if not _validate_format(request, allow_cancel):
        _log.error('Invalid reassignment request.')
        return False
    if not _validate_consistency(request):
        _log.error('Inconsistent reassignment request.')
        return False
    if base_assignment is not None:
        return _validate_base(request_to_assignment(request), base_assignment)
    return True


def _validate_base(assignment: Assignment, base_assignment: Assignment) -> bool:
    invalid_partitions = sorted(set(assignment) - set(base_assignment))
    if invalid_partitions:
        _log.error(
            'Invalid partition(s) found: {p_list}'.format(
                p_list=invalid_partitions,
            )
        )
        return False

    invalid_replication_factor = False
    for partition, replicas in assignment.items():
        base_replicas = base_assignment[partition]
        if replicas is None or base_replicas is None:
            continue
        if len(replicas) != len(base_replicas):
            invalid_replication_factor = True
            _log.error(
                'Replication-factor Mismatch: Partition: {partition}: '
                'Base-replicas: {expected}, Proposed-replicas: {actual}'
                .format(
                    partition=partition,
                    expected=base_replicas,
                    actual=replicas,
                ),
            )
    return not invalid_replication_factor


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_format(request: Any, allow_cancel: bool) -> bool:
    """Validate the keys and value types of the request."""
    if not isinstance(request, dict) or set(request.keys()) != {'topics'}:
        _log.error('Invalid or incomplete keys in given request. Expected: "topics".')
        return False
    if not isinstance(request['topics'], list) or not request['topics']:
        _log.error('"topics" of type non-empty list expected.')
        return False

    for topic in request['topics']:
        if not isinstance(topic, dict) or set(topic.keys()) != {'topicName', 'partitions'}:
            _log.error(f'Invalid keys in topic-data {topic}')
            return False
        if not isinstance(topic['topicName'], str) or not topic['topicName']:
            _log.error(f'"topicName" of type string expected {topic}')
            return False
        if not isinstance(topic['partitions'], list) or not topic['partitions']:
            _log.error(f'Non-empty "partitions" list expected for {topic["topicName"]}')
            return False
        for p_data in topic['partitions']:
            if not isinstance(p_data, dict) or set(p_data.keys()) != {'partitionId', 'replicas'}:
                _log.error(f'Invalid keys in partition-data {p_data}')
                return False
            if not _is_int(p_data['partitionId']) or p_data['partitionId'] < 0:
                _log.error(f'"partitionId" of type int expected {p_data}')
                return False
            replicas = p_data['replicas']
            if replicas is None:
                if not allow_cancel:
                    _log.error(f'Cancellation not allowed in this request {p_data}')
                    return False
                continue
            if not isinstance(replicas, list) or not replicas:
                _log.error(f'Non-empty "replicas" list expected {p_data}')
                return False
            if not all(_is_int(broker) for broker in replicas):
                _log.error(f'"replicas" of type integer list expected {p_data}')
                return False
    return True


def _validate_consistency(request: ReassignmentRequestDict) -> bool:
    """Validate duplicates and replication-factor of a well formed request."""
    partition_names = [
        (topic['topicName'], p_data['partitionId'])
        for topic in request['topics']
        for p_data in topic['partitions']
    ]
    duplicate_partitions = [
        partition for partition, count in Counter(partition_names).items()
        if count > 1
    ]
    if duplicate_partitions:
        _log.error(f'Duplicate partitions in request {duplicate_partitions}')
        return False

    topic_replication_factor: dict[str, int] = {}
    for topic in request['topics']:
        for p_data in topic['partitions']:
            replicas = p_data['replicas']
            if replicas is None:
                continue
            if len(set(replicas)) != len(replicas):
                _log.error(
                    'Duplicate brokers: ({topic}, {p_id}) in replicas {replicas}'
                    .format(
                        topic=topic['topicName'],
                        p_id=p_data['partitionId'],
                        replicas=replicas,
                    )
                )
                return False
            expected = topic_replication_factor.setdefault(topic['topicName'], len(replicas))
            if expected != len(replicas):
                _log.error(
                    'Mismatch in replication-factor of partitions for topic '
                    '{topic}'.format(topic=topic['topicName']),
                )
                return False
    return True

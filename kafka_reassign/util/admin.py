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
"""Operations and records exchanged with the cluster.

Every operation that can fail for a single resource reports the failure in
the returned record instead of raising, so that callers can act on the
resources that succeeded. An exception means the call failed as a whole.
"""
from __future__ import annotations

from enum import Enum
from typing import Iterable
from typing import NamedTuple
from typing import Sequence

from typing_extensions import Protocol


class ResourceType(Enum):
    BROKER = 'broker'
    TOPIC = 'topic'


class ConfigOp(Enum):
    SET = 'set'
    DELETE = 'delete'


class BrokerMetadata(NamedTuple):
    broker_id: int
    host: str
    port: int | None = None
    rack: str | None = None

    @property
    def address(self) -> str:
        if self.port is None:
            return self.host
        return f"{self.host}:{self.port}"


class PartitionMetadata(NamedTuple):
    topic: str
    partition: int
    leader: int
    replicas: tuple[int, ...]
    offline_replicas: tuple[int, ...] = ()


class LogDirSize(NamedTuple):
    """On-disk size of one replica of a partition."""
    topic: str
    partition: int
    broker_id: int
    size: int


class PartitionReassignmentRequest(NamedTuple):
    """New replicas of a partition. None cancels the partition's
    in-flight reassignment.
    """
    topic: str
    partition: int
    replicas: tuple[int, ...] | None


class PartitionReassignmentResult(NamedTuple):
    topic: str
    partition: int
    error: str | None = None


class ActiveReassignment(NamedTuple):
    """A partition being reassigned.

    replicas holds the union of the current and the target replicas.
    """
    topic: str
    partition: int
    replicas: tuple[int, ...]
    adding_replicas: tuple[int, ...]
    removing_replicas: tuple[int, ...]


class ConfigPatch(NamedTuple):
    name: str
    op: ConfigOp
    value: str | None = None


class ResourcePatch(NamedTuple):
    resource_type: ResourceType
    name: str
    configs: tuple[ConfigPatch, ...]


class PatchResult(NamedTuple):
    resource_type: ResourceType
    name: str
    error: str | None = None


class ClusterAdmin(Protocol):

    async def describe_cluster(self) -> list[BrokerMetadata]:
        ...

    async def describe_partitions(
        self,
        topics: Iterable[str] | None = None,
    ) -> list[PartitionMetadata]:
        ...

    async def describe_log_dirs(
        self,
        topics: Iterable[str] | None = None,
    ) -> list[LogDirSize]:
        ...

    async def alter_partition_reassignments(
        self,
        requests: Sequence[PartitionReassignmentRequest],
    ) -> list[PartitionReassignmentResult]:
        ...

    async def list_partition_reassignments(self) -> list[ActiveReassignment]:
        ...

    async def alter_configs(
        self,
        patches: Sequence[ResourcePatch],
    ) -> list[PatchResult]:
        """Apply config patches. Deleting an absent key is a no-op."""
        ...

    async def describe_configs(
        self,
        resource_type: ResourceType,
        names: Iterable[str],
    ) -> dict[str, dict[str, str]]:
        ...

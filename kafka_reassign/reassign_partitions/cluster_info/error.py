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

from typing import Iterable
from typing import Sequence

from kafka_reassign.util.admin import PartitionReassignmentResult
from kafka_reassign.util.admin import PatchResult
from kafka_reassign.util.error import KafkaReassignError


class InputError(KafkaReassignError):
    """Raised when the partition selection or the target brokers do not
    allow to compute a plan. Nothing has been sent to the cluster.
    """
    pass


class InvalidSelectionError(InputError):
    """Raised when the selection refers to topics, partitions or brokers
    missing from the cluster.
    """

    def __init__(self, message: str, unknown: Iterable[object] = ()) -> None:
        super().__init__(message)
        self.unknown = list(unknown)


class InsufficientBrokersError(InputError):
    """Raised when fewer target brokers are selected than the replication
    factor of a selected topic.
    """

    def __init__(self, required: int, selected: int, topics: Sequence[str]) -> None:
        self.required = required
        self.selected = selected
        self.topics = list(topics)
        super().__init__(
            "You selected {selected} target brokers, but {topics} {verb} a "
            "replication factor of {required}: select at least {required} "
            "brokers".format(
                selected=selected,
                topics=", ".join(self.topics),
                verb="has" if len(self.topics) == 1 else "have",
                required=required,
            )
        )


class PartialApplyError(KafkaReassignError):
    """Raised when some broker or topic configurations could not be
    updated. Configurations updated before the failure are left in place.
    """

    def __init__(self, phase: str, failed: Sequence[PatchResult]) -> None:
        self.phase = phase
        self.failed = list(failed)
        super().__init__(
            "Failed to update {count} configuration(s) during {phase}: {resources}".format(
                count=len(self.failed),
                phase=phase,
                resources=", ".join(
                    f"{r.resource_type.value} {r.name} ({r.error})" for r in self.failed
                ),
            )
        )


class SubmissionError(KafkaReassignError):
    """Raised when the cluster rejected the reassignment of at least one
    partition. The whole submission is considered failed.
    """

    def __init__(self, errors: Sequence[PartitionReassignmentResult], started: int = 0) -> None:
        self.errors = list(errors)
        self.started = started
        super().__init__(
            "Reassignment of {count} partition(s) failed ({started} started): {partitions}".format(
                count=len(self.errors),
                started=started,
                partitions=", ".join(
                    f"{r.topic}-{r.partition} ({r.error})" for r in self.errors
                ),
            )
        )


class TrackingError(KafkaReassignError):
    """Raised when a poll of the active reassignments failed."""
    pass

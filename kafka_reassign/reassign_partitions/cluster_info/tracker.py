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
"""Follow the progress of the reassignments running on the cluster."""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from enum import Enum
from typing import Callable
from typing import Iterable
from typing import NamedTuple
from typing import Tuple

from kafka_reassign.util import groupsortby
from kafka_reassign.util.admin import ActiveReassignment
from kafka_reassign.util.admin import ClusterAdmin
from kafka_reassign.util.admin import PartitionReassignmentRequest

from .error import InvalidSelectionError
from .error import SubmissionError
from .error import TrackingError
from .topology import replica_sizes

DEFAULT_REFRESH_INTERVAL = 4.0
DEFAULT_COMPLETED_RETENTION = 10.0
MAX_IN_FLIGHT_PROGRESS = 99.9

Signature = Tuple[str, Tuple[int, ...]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def reassignment_signature(topic: str, partition_ids: Iterable[int]) -> Signature:
    return topic, tuple(sorted(set(partition_ids)))


class ReassignmentPhase(Enum):
    STARTING = 'starting'
    IN_PROGRESS = 'in_progress'
    COMPLETE = 'complete'


class ReassignmentView(NamedTuple):
    """Read-only snapshot of the progress of a topic reassignment."""
    topic: str
    partitions: tuple[ActiveReassignment, ...]
    phase: ReassignmentPhase
    total_transfer_bytes: int | None = None
    remaining_bytes: int | None = None
    progress_percent: float | None = None
    estimated_speed: float | None = None
    estimated_completion_time: datetime | None = None
    completed_at: datetime | None = None

    @property
    def signature(self) -> Signature:
        return reassignment_signature(self.topic, self.partition_ids)

    @property
    def partition_ids(self) -> list[int]:
        return sorted(p.partition for p in self.partitions)


class EventKind(Enum):
    ADDED = 'added'
    UPDATED = 'updated'
    COMPLETED = 'completed'
    REFRESHED = 'refreshed'
    ERROR = 'error'


class TrackerEvent(NamedTuple):
    kind: EventKind
    view: ReassignmentView | None = None
    error: TrackingError | None = None


class ReassignmentState:
    """Progress of the reassignment of a set of partitions of a topic.

    The transfer size is fixed by the first observation having the size of
    every partition: the size of the largest replica of each partition
    times the number of brokers receiving it. The bytes transferred are
    the sizes of the replicas on the receiving brokers.
    """

    def __init__(self, topic: str, partitions: Iterable[ActiveReassignment]) -> None:
        self.topic = topic
        self.partitions = tuple(sorted(partitions))
        self.signature = reassignment_signature(topic, (p.partition for p in self.partitions))
        self.phase = ReassignmentPhase.STARTING
        self.total_transfer_bytes: int | None = None
        self.remaining_bytes: int | None = None
        self.estimated_speed: float | None = None
        self.estimated_completion_time: datetime | None = None
        self.completed_at: datetime | None = None
        self._receivers = {p.partition: set(p.adding_replicas) for p in self.partitions}
        self._transferred: dict[int, int] = {}
        self._samples: deque[tuple[float, int]] = deque(maxlen=2)

    def update_partitions(self, partitions: Iterable[ActiveReassignment]) -> None:
        """Refresh the replica lists. Receiving brokers are remembered once
        they caught up.
        """
        self.partitions = tuple(sorted(partitions))
        for p in self.partitions:
            self._receivers.setdefault(p.partition, set()).update(p.adding_replicas)

    def observe(
        self,
        sizes: dict[tuple[str, int], dict[int, int]],
        now: float,
        wall_now: datetime,
    ) -> None:
        """Take a sample of the remaining bytes.

        :param sizes: (topic, partition) -> broker -> replica size
        :param now: monotonic time of the sample, in seconds
        :param wall_now: current time, used for the completion time
        """
        partition_sizes = {
            p.partition: sizes[(self.topic, p.partition)]
            for p in self.partitions
            if sizes.get((self.topic, p.partition))
        }
        if self.total_transfer_bytes is None:
            if len(partition_sizes) < len(self.partitions):
                return
            self.total_transfer_bytes = sum(
                max(per_broker.values()) * len(self._receivers[partition_id])
                for partition_id, per_broker in partition_sizes.items()
            )

        for partition_id, per_broker in partition_sizes.items():
            max_size = max(per_broker.values())
            self._transferred[partition_id] = sum(
                min(per_broker.get(broker_id, 0), max_size)
                for broker_id in self._receivers[partition_id]
            )
        remaining = max(self.total_transfer_bytes - sum(self._transferred.values()), 0)
        self.record_remaining(remaining, now, wall_now)

    def record_remaining(self, remaining: int, now: float, wall_now: datetime) -> None:
        """Record a remaining bytes sample. Repeated values are not new samples."""
        assert self.total_transfer_bytes is not None
        self.phase = ReassignmentPhase.IN_PROGRESS
        self.remaining_bytes = remaining
        if not self._samples or self._samples[-1][1] != remaining:
            self._samples.append((now, remaining))
            self.estimated_speed = self._estimate_speed()
        if self.estimated_speed:
            self.estimated_completion_time = wall_now + timedelta(
                seconds=remaining / self.estimated_speed,
            )
        else:
            self.estimated_completion_time = None

    def _estimate_speed(self) -> float | None:
        if len(self._samples) < 2:
            return None
        (previous_time, previous), (current_time, current) = self._samples
        elapsed = current_time - previous_time
        if elapsed <= 0 or current > previous:
            return None
        return (previous - current) / elapsed

    @property
    def progress_percent(self) -> float | None:
        if self.phase == ReassignmentPhase.COMPLETE:
            return 100.0
        if self.total_transfer_bytes is None or self.remaining_bytes is None:
            return None
        if self.total_transfer_bytes == 0:
            return MAX_IN_FLIGHT_PROGRESS
        progress = 100 * (1 - self.remaining_bytes / self.total_transfer_bytes)
        return min(max(progress, 0.0), MAX_IN_FLIGHT_PROGRESS)

    def complete(self, wall_now: datetime) -> None:
        self.phase = ReassignmentPhase.COMPLETE
        self.remaining_bytes = 0
        self.estimated_completion_time = None
        self.completed_at = wall_now

    def view(self) -> ReassignmentView:
        return ReassignmentView(
            topic=self.topic,
            partitions=self.partitions,
            phase=self.phase,
            total_transfer_bytes=self.total_transfer_bytes,
            remaining_bytes=self.remaining_bytes,
            progress_percent=self.progress_percent,
            estimated_speed=self.estimated_speed,
            estimated_completion_time=self.estimated_completion_time,
            completed_at=self.completed_at,
        )


class ReassignmentTracker:
    """Poll the active reassignments and the replica sizes of the cluster.

    Updates are published to the queues returned by subscribe. Views of the
    tracked reassignments are available through reassignments.

    :param admin: the cluster to poll
    :param refresh_interval: seconds between the end of a refresh and the
        start of the next one
    :param completed_retention: seconds a completed reassignment stays
        listed by completed_reassignments
    :param clock: monotonic clock, in seconds
    :param wall_clock: current time
    """

    def __init__(
        self,
        admin: ClusterAdmin,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        completed_retention: float = DEFAULT_COMPLETED_RETENTION,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.admin = admin
        self.refresh_interval = refresh_interval
        self.completed_retention = completed_retention
        self.clock = clock
        self.wall_clock = wall_clock
        self.log = logging.getLogger(self.__class__.__name__)
        self.last_error: TrackingError | None = None
        self._states: dict[Signature, ReassignmentState] = {}
        self._completed: dict[Signature, ReassignmentView] = {}
        self._subscribers: list[asyncio.Queue[TrackerEvent]] = []
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._refreshing = False

    @property
    def running(self) -> bool:
        return self._task is not None

    @property
    def reassignments(self) -> list[ReassignmentView]:
        return [self._states[s].view() for s in sorted(self._states)]

    @property
    def completed_reassignments(self) -> list[ReassignmentView]:
        return [self._completed[s] for s in sorted(self._completed)]

    @property
    def active_topics(self) -> list[str]:
        return sorted({state.topic for state in self._states.values()})

    def subscribe(self) -> asyncio.Queue[TrackerEvent]:
        queue: asyncio.Queue[TrackerEvent] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[TrackerEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _publish(self, event: TrackerEvent) -> None:
        for queue in self._subscribers:
            queue.put_nowait(event)

    def start(self) -> None:
        """Start polling. Has no effect when already started."""
        if self._task is not None:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._poll(self._stop_event))
        self.log.debug("Tracker started, refreshing every %.1fs", self.refresh_interval)

    def stop(self) -> asyncio.Task[None] | None:
        """Stop polling. A refresh in flight runs to completion, no
        refresh starts afterwards. Has no effect when already stopped.

        :returns: the polling task, which ends after the refresh in flight
        """
        task = self._task
        if task is None:
            return None
        assert self._stop_event is not None
        self._stop_event.set()
        self._task = None
        self._stop_event = None
        self.log.debug("Tracker stopped")
        return task

    async def close(self) -> None:
        task = self.stop()
        if task is not None:
            await task

    async def _poll(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            await self.refresh()
            if stop_event.is_set():
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.refresh_interval)
            except asyncio.TimeoutError:
                pass

    async def refresh(self) -> bool:
        """Refresh the tracked reassignments once.

        Skipped when another refresh is in flight. A failure is logged and
        published, the next refresh tries again.

        :returns: whether a refresh completed
        """
        if self._refreshing:
            self.log.debug("Refresh already in flight, skipping")
            return False
        self._refreshing = True
        try:
            await self._refresh()
        except Exception as e:
            error = TrackingError(f"Failed to refresh the active reassignments: {e!r}")
            self.last_error = error
            self.log.exception("Failed to refresh the active reassignments")
            self._publish(TrackerEvent(EventKind.ERROR, error=error))
            return False
        finally:
            self._refreshing = False
        self.last_error = None
        return True

    async def _refresh(self) -> None:
        active = await self.admin.list_partition_reassignments()
        live: dict[Signature, list[ActiveReassignment]] = {}
        for topic, partitions in groupsortby(active, key=lambda r: r.topic):
            topic_partitions = list(partitions)
            live[reassignment_signature(topic, (p.partition for p in topic_partitions))] = topic_partitions

        topics = sorted({signature[0] for signature in live})
        sizes = replica_sizes(await self.admin.describe_log_dirs(topics)) if topics else {}
        now = self.clock()
        wall_now = self.wall_clock()

        for signature in sorted(set(self._states) - set(live)):
            state = self._states.pop(signature)
            state.complete(wall_now)
            view = state.view()
            self._completed[signature] = view
            self.log.info("Reassignment of %s partitions %s completed", state.topic, list(signature[1]))
            self._publish(TrackerEvent(EventKind.COMPLETED, view))

        for signature, partitions in sorted(live.items()):
            state = self._states.get(signature)
            if state is None:
                state = ReassignmentState(signature[0], partitions)
                self._states[signature] = state
                kind = EventKind.ADDED
                self.log.info("Tracking reassignment of %s partitions %s", state.topic, list(signature[1]))
            else:
                state.update_partitions(partitions)
                kind = EventKind.UPDATED
            state.observe(sizes, now, wall_now)
            self._publish(TrackerEvent(kind, state.view()))

        self._expire_completed(wall_now)
        self._publish(TrackerEvent(EventKind.REFRESHED))

    def _expire_completed(self, wall_now: datetime) -> None:
        for signature, view in list(self._completed.items()):
            assert view.completed_at is not None
            if (wall_now - view.completed_at).total_seconds() > self.completed_retention:
                del self._completed[signature]

    async def cancel(self, topic: str) -> None:
        """Cancel the reassignment of topic and refresh.

        The reassignment stays tracked until the cluster no longer reports it.

        :raises InvalidSelectionError: when topic is not being reassigned
        :raises SubmissionError: when the cluster rejected the cancellation
            of a partition
        """
        partition_ids = sorted({
            partition_id
            for signature, state in self._states.items()
            if state.topic == topic
            for partition_id in signature[1]
        })
        if not partition_ids:
            raise InvalidSelectionError(f"No reassignment in progress for topic {topic}", [topic])
        results = await self.admin.alter_partition_reassignments([
            PartitionReassignmentRequest(topic, partition_id, None)
            for partition_id in partition_ids
        ])
        errors = [r for r in results if r.error]
        if errors:
            raise SubmissionError(errors, started=len(results) - len(errors))
        self.log.info("Cancelled the reassignment of %s partitions %s", topic, partition_ids)
        await self.refresh()

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

from datetime import datetime
from typing import Iterable
from typing import Sequence

import humanfriendly

from kafka_reassign.util import human_bytes
from kafka_reassign.util import human_rate

from .move_diff import group_by_topic
from .move_diff import MoveDelta
from .move_diff import TrafficEstimate
from .topology import BrokerLookupCache
from .tracker import ReassignmentView


def display_table(headers: list[str], table: list[list[str]]) -> None:
    """Print a formatted table.

    :param headers: A list of header objects that are displayed in the first
        row of the table.
    :param table: A list of lists where each sublist is a row of the table.
        The number of elements in each row should be equal to the number of
        headers.
    """
    assert all(len(row) == len(headers) for row in table)

    str_headers = [str(header) for header in headers]
    str_table = [[str(cell) for cell in row] for row in table]
    column_lengths = [
        max([len(header)] + [len(row[i]) for row in str_table])
        for i, header in enumerate(str_headers)
    ]

    print(
        " | ".join(
            str(header).ljust(length)
            for header, length in zip(str_headers, column_lengths)
        )
    )
    print("-+-".join("-" * length for length in column_lengths))
    for row in str_table:
        print(
            " | ".join(
                str(cell).ljust(length)
                for cell, length in zip(row, column_lengths)
            )
        )


def _brokers(broker_ids: Iterable[int]) -> str:
    return ",".join(str(b) for b in broker_ids) or "-"


def display_moves(deltas: Sequence[MoveDelta]) -> None:
    """Print the replica changes of every partition, grouped by topic."""
    rows = []
    for topic_moves in group_by_topic(deltas):
        for delta in topic_moves.partitions:
            rows.append([
                delta.topic,
                str(delta.partition),
                _brokers(delta.old_replicas),
                _brokers(delta.new_replicas),
                _brokers(delta.added_brokers),
                _brokers(delta.removed_brokers),
                "yes" if delta.leader_changed else "no",
                human_bytes(delta.estimated_bytes),
            ])
        print(
            "Topic {topic}: {moved} replica(s) moved, ~{size}".format(
                topic=topic_moves.topic,
                moved=topic_moves.moved_replica_count,
                size=human_bytes(topic_moves.estimated_bytes),
            )
        )
    if rows:
        display_table(
            ["Topic", "Partition", "Current", "Planned", "Added", "Removed", "Leader change", "Traffic"],
            rows,
        )


def display_target_brokers(broker_ids: Iterable[int], brokers: BrokerLookupCache) -> None:
    print("Target brokers: {}".format(", ".join(brokers.label(b) for b in broker_ids)))


def format_duration(seconds: float | None) -> str:
    if seconds is None:
        return "-"
    if seconds < 10:
        return "< 10 seconds"
    return humanfriendly.format_timespan(seconds, max_units=2)


def display_traffic_summary(estimate: TrafficEstimate) -> None:
    display_table(
        ["Moved replicas", "Total traffic", "Traffic throttle", "Estimated time"],
        [[
            str(estimate.moved_replica_count),
            "~" + human_bytes(estimate.total_bytes),
            human_rate(estimate.max_bytes_per_second) if estimate.max_bytes_per_second else "disabled",
            format_duration(estimate.estimated_seconds),
        ]],
    )


def _format_eta(eta: datetime | None, now: datetime) -> str:
    if eta is None:
        return "-"
    return format_duration(max((eta - now).total_seconds(), 0.0))


def display_reassignments(views: Sequence[ReassignmentView], now: datetime) -> None:
    """Print the progress of reassignments."""
    if not views:
        print("No reassignment in progress.")
        return
    display_table(
        ["Topic", "Partitions", "Phase", "Progress", "Remaining", "Speed", "ETA"],
        [
            [
                view.topic,
                _brokers(view.partition_ids),
                view.phase.value,
                f"{view.progress_percent:.1f}%" if view.progress_percent is not None else "-",
                human_bytes(view.remaining_bytes),
                human_rate(view.estimated_speed),
                _format_eta(view.estimated_completion_time, now),
            ]
            for view in views
        ],
    )


def display_broker_throttles(throttles: dict[int, tuple[str | None, str | None]]) -> None:
    """Print the current replication throttles.

    Throttles are written in B/s, and as a human readable format.
    """
    display_table(
        ["Broker", "Leader throttle", "Follower throttle"],
        [
            [
                str(broker_id),
                f"{leader} ({human_rate(int(leader))})" if leader else "N/A",
                f"{follower} ({human_rate(int(follower))})" if follower else "N/A",
            ]
            for broker_id, (leader, follower) in sorted(throttles.items())
        ],
    )


def display_reassignment_throttles(throttles: dict[str, bool]) -> None:
    if not throttles:
        return
    display_table(
        ["Reassigned topic", "Throttled"],
        [[topic, "yes" if throttled else "no"] for topic, throttled in sorted(throttles.items())],
    )

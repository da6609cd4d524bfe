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

from argparse import ArgumentTypeError
from itertools import groupby
from typing import Callable
from typing import Iterable
from typing import Iterator
from typing import TypeVar
from typing import Union

import humanfriendly
from typing_extensions import Protocol

T = TypeVar('T')


def positive_int(string: str) -> int:
    """Convert string to positive integer."""
    error_msg = f'Positive integer required, {string} given.'
    try:
        value = int(string)
    except ValueError:
        raise ArgumentTypeError(error_msg)
    if value < 0:
        raise ArgumentTypeError(error_msg)
    return value


def positive_float(string: str) -> float:
    """Convert string to positive float."""
    error_msg = f'Positive float required, {string} given.'
    try:
        value = float(string)
    except ValueError:
        raise ArgumentTypeError(error_msg)
    if value < 0:
        raise ArgumentTypeError(error_msg)
    return value


def byte_rate(string: str) -> int:
    """Convert a byte rate such as "10MiB" or "1048576" to bytes per second."""
    try:
        value = humanfriendly.parse_size(string, binary=True)
    except humanfriendly.InvalidSize:
        raise ArgumentTypeError(f'Byte rate required, {string} given.')
    if value <= 0:
        raise ArgumentTypeError(f'Positive non-zero byte rate required, {string} given.')
    return value


class SupportsLessThan(Protocol):
    def __lt__(self: T, __other: T) -> bool:
        ...


class SupportsGreaterThan(Protocol):
    def __gt__(self: T, __other: T) -> bool:
        ...


R = TypeVar('R', bound=Union[SupportsLessThan, SupportsGreaterThan])


def groupsortby(data: Iterable[T], key: Callable[[T], R]) -> Iterator[tuple[R, Iterator[T]]]:
    """Sort and group by the same key."""
    return groupby(sorted(data, key=key), key)


def human_bytes(num: float | None) -> str:
    """Converts a byte value in human readable form."""
    if num is None:
        return "unknown"
    return humanfriendly.format_size(num, binary=True)


def human_rate(rate: float | None) -> str:
    """Converts a bytes per second value in human readable form."""
    if rate is None:
        return "N/A"
    return humanfriendly.format_size(rate, binary=True) + "/s"

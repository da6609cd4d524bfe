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
from argparse import ArgumentTypeError

import pytest

from kafka_reassign.util import byte_rate
from kafka_reassign.util import groupsortby
from kafka_reassign.util import human_bytes
from kafka_reassign.util import human_rate
from kafka_reassign.util import positive_float
from kafka_reassign.util import positive_int
from kafka_reassign.util.serialization import dump_json
from kafka_reassign.util.serialization import load_json


def test_positive_int_valid():
    assert positive_int('123') == 123


def test_positive_int_not_int():
    with pytest.raises(ArgumentTypeError):
        positive_int('not_an_int')


def test_positive_int_negative_int():
    with pytest.raises(ArgumentTypeError):
        positive_int('-5')


def test_positive_float_valid():
    assert positive_float('123.0') == 123.0


def test_positive_float_negative_float():
    with pytest.raises(ArgumentTypeError):
        positive_float('-1.45')


@pytest.mark.parametrize("string,expected", [
    ('1048576', 1048576),
    ('10MiB', 10 * 1024 * 1024),
    ('1 KiB', 1024),
])
def test_byte_rate_valid(string, expected):
    assert byte_rate(string) == expected


@pytest.mark.parametrize("string", ['fast', '0'])
def test_byte_rate_invalid(string):
    with pytest.raises(ArgumentTypeError):
        byte_rate(string)


def test_human_bytes():
    assert human_bytes(None) == 'unknown'
    assert human_bytes(1024) == '1 KiB'


def test_human_rate():
    assert human_rate(None) == 'N/A'
    assert human_rate(1024 * 1024) == '1 MiB/s'


def test_groupsortby():
    data = [('b', 1), ('a', 2), ('b', 3)]

    result = [(key, list(group)) for key, group in groupsortby(data, key=lambda x: x[0])]

    assert result == [('a', [('a', 2)]), ('b', [('b', 1), ('b', 3)])]


def test_json_serialization():
    assert dump_json({'b': 1, 'a': [1, 2]}) == b'{"a": [1, 2], "b": 1}'
    assert load_json(b'{"a": null}') == {'a': None}
    assert load_json('{"a": 1}') == {'a': 1}

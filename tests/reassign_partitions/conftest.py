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

from .helper import broker_range
from .helper import FakeClock
from .helper import FakeClusterAdmin
from .helper import make_topology


RACKS = ['rack-a', 'rack-a', 'rack-b', 'rack-b', 'rack-c', 'rack-c']


@pytest.fixture
def default_brokers():
    return broker_range(6, RACKS)


@pytest.fixture
def default_assignment():
    return {
        ('orders', 0): [1, 2, 3],
        ('orders', 1): [2, 3, 1],
        ('orders', 2): [3, 1, 2],
        ('payments', 0): [1, 2],
        ('payments', 1): [2, 3],
    }


@pytest.fixture
def default_sizes():
    return {
        ('orders', 0): 1000,
        ('orders', 1): 1000,
        ('orders', 2): 1000,
        ('payments', 0): 500,
        ('payments', 1): 500,
    }


@pytest.fixture
def default_topology(default_brokers, default_assignment, default_sizes):
    return make_topology(default_brokers, default_assignment, default_sizes)


@pytest.fixture
def admin(default_brokers, default_assignment, default_sizes):
    return FakeClusterAdmin(default_brokers, default_assignment, default_sizes)


@pytest.fixture
def clock():
    return FakeClock()

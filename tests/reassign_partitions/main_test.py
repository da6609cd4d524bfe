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
import logging
from unittest import mock

import pytest

from kafka_reassign.reassign_partitions import main


def test_parse_plan_args():
    args = main.parse_args([
        '-t', 'standard',
        'plan',
        '--partitions', 'orders',
        '--partitions', 'payments:0-2',
        '--brokers', '4', '5', '6',
        '--max-replication-traffic', '50MiB',
        '--apply',
    ])

    assert args.cluster_type == 'standard'
    assert args.cluster_name is None
    assert args.partitions == [('orders', None), ('payments', [0, 1, 2])]
    assert args.brokers == [4, 5, 6]
    assert args.max_replication_traffic == 50 * 1024 * 1024
    assert args.apply is True
    assert args.no_confirm is False
    assert callable(args.command)


def test_parse_track_args():
    args = main.parse_args(['-t', 'standard', '-c', 'cluster1', 'track', '--once'])

    assert args.cluster_name == 'cluster1'
    assert args.once is True
    assert args.interval is None
    assert args.reset_throttle is False


def test_throttle_actions_are_exclusive():
    with pytest.raises(SystemExit):
        main.parse_args([
            '-t', 'standard',
            'throttle', '--clear', '--throttle-reassignment', 'orders',
        ])


def test_missing_command():
    with pytest.raises(SystemExit) as excinfo:
        main.parse_args(['-t', 'standard'])

    assert excinfo.value.code == 2


@mock.patch('kafka_reassign.reassign_partitions.main.logging.basicConfig', autospec=True)
def test_configure_logging_verbose(mock_basic_config):
    main.configure_logging(verbose=True, log_unhandled_exceptions=False)

    mock_basic_config.assert_called_once_with(level=logging.DEBUG)

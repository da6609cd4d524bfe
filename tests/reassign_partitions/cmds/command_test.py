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
import argparse
from unittest import mock

import pytest
from pytest import fixture
from pytest import raises

from kafka_reassign.reassign_partitions.cmds.command import ReassignCmd
from kafka_reassign.reassign_partitions.cmds.plan import PlanCmd
from kafka_reassign.util.config import ClusterConfig
from kafka_reassign.util.config import ReassignmentConfig


@fixture
def cluster_config():
    return ClusterConfig(
        type='test',
        name='cluster1',
        broker_list=['broker1:9092'],
        zookeeper='zookeeper1:2181/kafka',
    )


@fixture
def plan_args():
    return argparse.Namespace(
        partitions=[('orders', [0])],
        brokers=[1, 2, 4],
        max_replication_traffic=None,
        apply=True,
        no_confirm=True,
        proposed_plan_file=None,
    )


class TestReassignCmd:

    def test_run(self, admin, cluster_config, plan_args):
        cmd = PlanCmd()
        cmd.create_admin = mock.Mock(return_value=admin)

        cmd.run(cluster_config, ReassignmentConfig(), plan_args)

        assert cmd.session.topology is not None
        assert len(admin.submitted) == 1
        assert cmd.session.tracker.running is False
        assert admin.entered is False

    def test_run_error_exits(self, admin, cluster_config, plan_args):
        plan_args.partitions = [('unknown', None)]
        cmd = PlanCmd()
        cmd.create_admin = mock.Mock(return_value=admin)

        with raises(SystemExit) as excinfo:
            cmd.run(cluster_config, ReassignmentConfig(), plan_args)

        assert excinfo.value.code == 1
        assert admin.submitted == []

    def test_build_subparser_not_implemented(self):
        cmd = ReassignCmd()

        with raises(NotImplementedError):
            cmd.build_subparser(None)

    @pytest.mark.parametrize("apply,no_confirm,answers,expected", [
        (False, True, [], False),
        (True, True, [], True),
        (True, False, ['maybe', 'yes'], True),
        (True, False, ['NO'], False),
    ])
    def test_should_execute(self, apply, no_confirm, answers, expected):
        cmd = ReassignCmd()
        cmd.args = argparse.Namespace(apply=apply, no_confirm=no_confirm)

        with mock.patch('builtins.input', side_effect=answers) as mock_input:
            assert cmd.should_execute() is expected

        assert mock_input.call_count == len(answers)

    def test_write_json_plan(self, tmp_path):
        path = tmp_path / 'plan.json'

        ReassignCmd().write_json_plan({'topics': []}, str(path))

        assert path.read_text() == '{"topics": []}'

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
import json

import pytest
from pytest import fixture
from pytest import raises

from kafka_reassign.reassign_partitions.cluster_info.error import InputError
from kafka_reassign.reassign_partitions.cluster_info.error import InvalidSelectionError
from kafka_reassign.reassign_partitions.cmds.plan import partition_selector
from kafka_reassign.reassign_partitions.cmds.plan import PlanCmd
from kafka_reassign.reassign_partitions.session import ReassignmentSession
from kafka_reassign.util.admin import ActiveReassignment
from kafka_reassign.util.config import ReassignmentConfig


@fixture
def session(admin, default_topology):
    session = ReassignmentSession(admin, ReassignmentConfig(max_replication_traffic=1000))
    session.set_topology(default_topology)
    return session


def make_cmd(**kwargs):
    args = dict(
        partitions=[('orders', None)],
        brokers=[4, 5, 6],
        max_replication_traffic=None,
        apply=True,
        no_confirm=True,
        proposed_plan_file=None,
    )
    args.update(kwargs)
    cmd = PlanCmd()
    cmd.args = argparse.Namespace(**args)
    return cmd


@pytest.mark.parametrize("string,expected", [
    ('orders', ('orders', None)),
    ('orders:0', ('orders', [0])),
    ('orders:2,0,1', ('orders', [0, 1, 2])),
    ('orders:0,4-6', ('orders', [0, 4, 5, 6])),
    ('orders:3-3,3', ('orders', [3])),
])
def test_partition_selector(string, expected):
    assert partition_selector(string) == expected


@pytest.mark.parametrize("string", [
    '',
    ':0',
    'orders:',
    'orders:a',
    'orders:1-a',
    'orders:-1',
    'orders:5-3',
])
def test_partition_selector_invalid(string):
    with raises(argparse.ArgumentTypeError):
        partition_selector(string)


class TestPlanCmd:

    @pytest.mark.asyncio
    async def test_apply(self, session, admin, capsys):
        await make_cmd().run_command(session)

        assert len(admin.submitted) == 1
        assert [(r.topic, r.partition) for r in admin.submitted[0]] == [
            ('orders', 0), ('orders', 1), ('orders', 2),
        ]
        assert 'clear the throttle' in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_dry_run(self, session, admin):
        await make_cmd(apply=False).run_command(session)

        assert admin.submitted == []
        assert session.plan is not None

    @pytest.mark.asyncio
    async def test_nothing_to_move(self, session, admin):
        await make_cmd(brokers=[1, 2, 3]).run_command(session)

        assert admin.submitted == []

    @pytest.mark.asyncio
    async def test_write_to_file(self, session, tmp_path):
        path = tmp_path / 'plan.json'

        await make_cmd(apply=False, proposed_plan_file=str(path)).run_command(session)

        request = json.loads(path.read_text())
        assert [t['topicName'] for t in request['topics']] == ['orders']
        assert len(request['topics'][0]['partitions']) == 3

    @pytest.mark.asyncio
    async def test_unknown_topic(self, session):
        with raises(InvalidSelectionError):
            await make_cmd(partitions=[('unknown', None)]).run_command(session)

    @pytest.mark.asyncio
    async def test_insufficient_brokers(self, session, admin):
        with raises(InputError) as excinfo:
            await make_cmd(brokers=[4, 5]).run_command(session)

        assert 'replication factor of 3' in str(excinfo.value)
        assert admin.submitted == []

    @pytest.mark.asyncio
    async def test_pending_reassignment(self, session, admin):
        admin.active = [ActiveReassignment('payments', 0, (1, 2, 3), (3,), ())]

        with raises(InputError) as excinfo:
            await make_cmd().run_command(session)

        assert 'payments' in str(excinfo.value)
        assert admin.submitted == []

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

import logging
import os
from typing import NamedTuple

import yaml
from typing_extensions import TypedDict

from kafka_reassign.util.error import ConfigurationError
from kafka_reassign.util.error import InvalidConfigurationError
from kafka_reassign.util.error import MissingConfigurationError


DEFAULT_KAFKA_TOPOLOGY_BASE_PATH = '/etc/kafka_discovery'
HOME_OVERRIDE = '.kafka_discovery'

DEFAULT_REFRESH_INTERVAL = 4.0
DEFAULT_BROKER_CACHE_SIZE = 1024


class ClusterConfig(NamedTuple):
    """Cluster configuration.
    :param name: cluster name
    :param broker_list: list of kafka brokers
    :param zookeeper: zookeeper connection string
    :param metric_url: prometheus endpoint exposing the kafka log size metric
    """
    type: str
    name: str
    broker_list: list[str]
    zookeeper: str
    metric_url: str | None = None

    def __ne__(self, other: object) -> bool:
        return self.__hash__() != other.__hash__()

    def __eq__(self, other: object) -> bool:
        return self.__hash__() == other.__hash__()

    def __hash__(self) -> int:
        if isinstance(self.broker_list, list):
            broker_list = self.broker_list
        else:
            broker_list = self.broker_list.split(',')  # type: ignore[unreachable]
        zk_list = self.zookeeper.split(',')
        return hash((
            self.type,
            self.name,
            ",".join(sorted([_f for _f in broker_list if _f])),
            ",".join(sorted([_f for _f in zk_list if _f])),
            self.metric_url,
        ))


class ReassignmentConfig(NamedTuple):
    """Settings of the reassignment console.

    :param refresh_interval: seconds between two polls of the active
        reassignments
    :param max_replication_traffic: default throttle in bytes per second,
        None to submit without throttling
    :param broker_cache_size: size of the broker lookup cache
    """
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    max_replication_traffic: int | None = None
    broker_cache_size: int = DEFAULT_BROKER_CACHE_SIZE


class ClusterConfigDict(TypedDict, total=False):
    broker_list: list[str]
    zookeeper: str
    metric_url: str


class LocalConfigDict(TypedDict):
    cluster: str


class ReassignmentConfigDict(TypedDict, total=False):
    refresh_interval: float
    max_replication_traffic: int | None
    broker_cache_size: int


class TopologyConfigurationDict(TypedDict, total=False):
    clusters: dict[str, ClusterConfigDict]
    local_config: LocalConfigDict
    reassignment: ReassignmentConfigDict


def load_yaml_config(config_path: str) -> TopologyConfigurationDict:
    with open(config_path) as config_file:
        return yaml.safe_load(config_file)


class TopologyConfiguration:
    """Topology configuration for a kafka cluster.

    Read a cluster_type.yaml from the kafka_topology_path.
    Example config file:
    .. code-block:: yaml

       clusters:
         cluster1:
             broker_list:
               - "broker1:9092"
               - "broker2:9092"
             zookeeper: "zookeeper1:2181/mykafka"
             metric_url: "http://prometheus1:9090"
         cluster2:
             broker_list:
               - "broker3:9092"
               - "broker4:9092"
             zookeeper: "zookeeper2:2181/mykafka"
       local_config:
         cluster: cluster1
       reassignment:
         refresh_interval: 4
         max_replication_traffic: 52428800


    :param cluster_type: kafka cluster type.
    :type cluster_type: string
    :param kafka_topology_path: path of the directory containing
        the kafka topology.yaml config
    :type kafka_topology_path: string
    """

    def __init__(
        self,
        cluster_type: str,
        kafka_topology_path: str = DEFAULT_KAFKA_TOPOLOGY_BASE_PATH,
    ):
        self.kafka_topology_path = kafka_topology_path
        self.cluster_type = cluster_type
        self.log = logging.getLogger(self.__class__.__name__)
        self.clusters: dict[str, ClusterConfigDict] | None = None
        self.local_config: LocalConfigDict | None = None
        self.reassignment: ReassignmentConfigDict = {}
        self.load_topology_config()

    def __eq__(self, other: object) -> bool:
        assert isinstance(other, TopologyConfiguration)
        return all([
            self.cluster_type == other.cluster_type,
            self.clusters == other.clusters,
            self.local_config == other.local_config,
            self.reassignment == other.reassignment,
        ])

    def __ne__(self, other: object) -> bool:
        return not self.__eq__(other)

    def load_topology_config(self) -> None:
        """Load the topology configuration"""
        config_path = os.path.join(
            self.kafka_topology_path,
            f'{self.cluster_type}.yaml',
        )
        self.log.debug("Loading configuration from %s", config_path)
        if os.path.isfile(config_path):
            topology_config = load_yaml_config(config_path)
        else:
            raise MissingConfigurationError(
                "Topology configuration {} for cluster {} "
                "does not exist".format(
                    config_path,
                    self.cluster_type,
                )
            )
        self.log.debug("Topology configuration %s", topology_config)
        try:
            self.clusters = topology_config['clusters']
        except (KeyError, TypeError):
            self.log.exception("Invalid topology file")
            raise InvalidConfigurationError("Invalid topology file {}".format(
                config_path))
        if 'local_config' in topology_config:
            self.local_config = topology_config['local_config']
        if topology_config.get('reassignment'):
            self.reassignment = topology_config['reassignment']

    def _build_cluster_config(self, name: str, cluster: ClusterConfigDict) -> ClusterConfig:
        return ClusterConfig(
            type=self.cluster_type,
            name=name,
            broker_list=cluster['broker_list'],
            zookeeper=cluster['zookeeper'],
            metric_url=cluster.get('metric_url'),
        )

    def get_all_clusters(self) -> list[ClusterConfig]:
        assert self.clusters is not None
        return [
            self._build_cluster_config(name, cluster)
            for name, cluster in self.clusters.items()
        ]

    def get_cluster_by_name(self, name: str) -> ClusterConfig:
        assert self.clusters is not None
        if name in self.clusters:
            return self._build_cluster_config(name, self.clusters[name])
        raise ConfigurationError(f"No cluster with name: {name}")

    def get_local_cluster(self) -> ClusterConfig:
        if self.local_config:
            try:
                assert self.clusters is not None
                name = self.local_config['cluster']
                return self._build_cluster_config(name, self.clusters[name])
            except KeyError:
                self.log.exception("Invalid topology file")
                raise InvalidConfigurationError("Invalid topology file")
        else:
            raise ConfigurationError("No default local cluster configured")

    def get_reassignment_config(self) -> ReassignmentConfig:
        """Return the console settings, falling back to defaults for
        the missing keys.
        """
        settings = self.reassignment
        try:
            config = ReassignmentConfig(
                refresh_interval=float(settings.get('refresh_interval', DEFAULT_REFRESH_INTERVAL)),
                max_replication_traffic=(
                    int(settings['max_replication_traffic'])
                    if settings.get('max_replication_traffic') is not None
                    else None
                ),
                broker_cache_size=int(settings.get('broker_cache_size', DEFAULT_BROKER_CACHE_SIZE)),
            )
        except (TypeError, ValueError):
            self.log.exception("Invalid reassignment settings")
            raise InvalidConfigurationError(
                f"Invalid reassignment settings {settings}",
            )
        if config.refresh_interval <= 0 or config.broker_cache_size <= 0:
            raise InvalidConfigurationError(
                "refresh_interval and broker_cache_size must be positive",
            )
        if config.max_replication_traffic is not None and config.max_replication_traffic <= 0:
            raise InvalidConfigurationError(
                "max_replication_traffic must be positive",
            )
        return config

    def __repr__(self) -> str:
        return ("TopologyConfig: cluster_type {}, clusters: {},"
                "local_config {}, reassignment {}".format(
                    self.cluster_type,
                    self.clusters,
                    self.local_config,
                    self.reassignment,
                ))


def get_conf_dirs() -> list[str]:
    config_dirs = []
    if os.environ.get("KAFKA_DISCOVERY_DIR"):
        config_dirs.append(os.environ["KAFKA_DISCOVERY_DIR"])
    if os.environ.get("HOME"):
        home_config = os.path.join(
            os.path.abspath(os.environ['HOME']),
            HOME_OVERRIDE,
        )
        if os.path.isdir(home_config):
            config_dirs.append(home_config)
    config_dirs.append(DEFAULT_KAFKA_TOPOLOGY_BASE_PATH)
    return config_dirs


def get_topology_configuration(
    cluster_type: str,
    kafka_topology_base_path: str | None = None,
) -> TopologyConfiguration:
    """Return the first topology configuration found for cluster_type.

    :param cluster_type: the type of the cluster
    :param kafka_topology_base_path: base path to look for <cluster_type>.yaml
    :raises MissingConfigurationError: when no directory holds the file
    """
    if not kafka_topology_base_path:
        config_dirs = get_conf_dirs()
    else:
        config_dirs = [kafka_topology_base_path]

    for config_dir in config_dirs:
        try:
            return TopologyConfiguration(cluster_type, config_dir)
        except MissingConfigurationError:
            pass
    raise MissingConfigurationError(
        f"No available configuration for type {cluster_type}",
    )

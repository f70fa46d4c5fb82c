#
# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.
#
"""
Prometheus metrics intended to emulate Stepfunction CloudWatch metrics.
https://docs.aws.amazon.com/step-functions/latest/dg/procedure-cw-metrics.html

Metrics are optional and enabled by the "metrics" option, e.g.
{"implementation": "Prometheus", "namespace": "my_app"}
They are created in the aioprometheus default registry, so it is up to the
application embedding the simulator to expose that registry if it wishes.

With aioprometheus the "obvious" Summary uses quantile.Estimator, which
retains *all* observations so over time its insert and query time degrades.
BasicSummary instead provides a simple sum + observation count, as per the
"official" prometheus Python client.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

from aioprometheus import Counter, Summary

from asl_simulator.logger import init_logging

# Collectors may only be registered once, so they are cached per namespace.
_execution_metrics = {}
_task_metrics = {}


class BasicEstimator(object):
    """
    Follows the same API as quantile.Estimator but only keeps a sum and count.
    """
    def __init__(self):
        self._invariants = []  # Deliberately empty, but required by Summary.get()
        self._observations = 0
        self._sum = 0

    def observe(self, value):
        self._observations += 1
        self._sum += value


class BasicSummary(Summary):
    """
    Extend aioprometheus Summary to use our basic Estimator.
    """
    def observe(self, labels, value):
        if type(value) not in (float, int):
            raise TypeError("Summary only works with digits (int, float)")

        try:
            e = self.get_value(labels)
        except KeyError:
            e = BasicEstimator()
            self.set_value(labels, e)

        e.observe(float(value))


def prefix(namespace):
    return namespace + "_" if namespace else ""


def create_execution_metrics(namespace=""):
    if namespace not in _execution_metrics:
        init_logging(log_name="asl_simulator").info(
            "Creating execution metrics, namespace: {}".format(namespace)
        )
        ns = prefix(namespace)
        _execution_metrics[namespace] = {
            "ExecutionTime": BasicSummary(
                ns + "ExecutionTime",
                "The interval, in milliseconds, between the time the " +
                "execution starts and the time it closes."
            ),
            "ExecutionsFailed": Counter(
                ns + "ExecutionsFailed",
                "The number of failed executions."
            ),
            "ExecutionsStarted": Counter(
                ns + "ExecutionsStarted",
                "The number of started executions."
            ),
            "ExecutionsSucceeded": Counter(
                ns + "ExecutionsSucceeded",
                "The number of successfully completed executions."
            ),
        }
    return _execution_metrics[namespace]


def create_task_metrics(namespace=""):
    if namespace not in _task_metrics:
        ns = prefix(namespace)
        _task_metrics[namespace] = {
            "LambdaFunctionsFailed": Counter(
                ns + "LambdaFunctionsFailed",
                "The number of failed Lambda functions."
            ),
            "LambdaFunctionsSucceeded": Counter(
                ns + "LambdaFunctionsSucceeded",
                "The number of successfully completed Lambda functions."
            ),
            "ServiceIntegrationsFailed": Counter(
                ns + "ServiceIntegrationsFailed",
                "The number of failed Service Integrations."
            ),
            "ServiceIntegrationsSucceeded": Counter(
                ns + "ServiceIntegrationsSucceeded",
                "The number of successfully completed Service Integrations."
            ),
        }
    return _task_metrics[namespace]


def metrics_namespace(options):
    """
    Return the namespace if Prometheus metrics are enabled in the options,
    otherwise None.
    """
    metrics_config = options.get("metrics") or {}
    if metrics_config.get("implementation", "") == "Prometheus":
        return metrics_config.get("namespace", "")
    return None

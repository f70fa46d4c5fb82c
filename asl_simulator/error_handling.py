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
https://states-language.net/spec.html#errors

Task States, Parallel States, and Map States MAY have a field named Retry,
whose value MUST be an array of objects, called Retriers, and a field named
Catch, whose value MUST be an array of objects, called Catchers.

with_retry() wraps the executor of such a state so that when the state
reports an error the Retriers and then the Catchers are applied.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import functools

from asl_simulator import timestamps
from asl_simulator.asl_exceptions import ERROR_WILDCARD, error_name, error_output
from asl_simulator.data_flow import get_state_data_flow
from asl_simulator.logger import init_logging

logger = init_logging(log_name="asl_simulator")


def matches_error(error_equals, name):
    return name in error_equals or ERROR_WILDCARD in error_equals


class Retrier(object):
    """
    A Retrier's counters are mutated as attempts are made, so Retriers are
    created afresh from the state's Retry field each time the state is entered.
    Default values are taken from the ASL specification.
    """

    def __init__(self, retrier):
        self.error_equals = retrier.get("ErrorEquals", [])
        self.remaining_attempts = retrier.get("MaxAttempts", 3)
        self.interval = retrier.get("IntervalSeconds", 1)
        self.backoff_rate = retrier.get("BackoffRate", 2)
        self.max_delay = retrier.get("MaxDelaySeconds")

    def matches(self, name):
        return matches_error(self.error_equals, name)

    def next_interval(self):
        """
        Return the time to wait before the next attempt, capped by
        MaxDelaySeconds, and then apply the backoff to the interval and
        consume an attempt.
        """
        interval = self.interval
        if self.max_delay is not None:
            interval = min(interval, self.max_delay)
        self.interval = self.interval * self.backoff_rate
        self.remaining_attempts -= 1
        return interval


def with_retry(executor):
    """
    When a state reports an error, the interpreter scans through the Retriers
    and, when the Error Name appears in the value of a Retrier's ErrorEquals
    field, implements the retry policy described in that Retrier. The whole
    state is executed again, not resumed. Only the first matching Retrier is
    used, if it has no attempts remaining the error falls through to the
    Catchers.

    When a state has both Retry and Catch fields, the interpreter uses any
    appropriate Retriers first and only applies a matching Catcher transition
    if the retry policy fails to resolve the error. The state's output is then
    the Error Output, {"Error": <name>, "Cause": <message>}, combined with the
    state's raw input and the next state is the Catcher's Next.

    If no Catcher matches, the original error is raised to the caller.
    """
    @functools.wraps(executor)
    async def execute_with_retry(state, variables, simulator_context):
        retriers = [Retrier(r) for r in state.get("Retry", [])]
        context = variables["states"]["context"]

        while True:
            try:
                return await executor(state, variables, simulator_context)
            except Exception as e:
                name = error_name(e)
                retrier = next((r for r in retriers if r.matches(name)), None)
                if retrier and retrier.remaining_attempts > 0:
                    interval = retrier.next_interval()
                    logger.info(
                        "State {} failed with {}, retrying in {}s".format(
                            context["State"]["Name"], name, interval
                        )
                    )
                    await timestamps.wait(interval, simulator_context)
                    context["State"]["RetryCount"] = context["State"].get("RetryCount", 0) + 1
                    continue

                for catcher in state.get("Catch", []):
                    if matches_error(catcher.get("ErrorEquals", []), name):
                        logger.info(
                            "State {} failed with {}, caught and moving to {}".format(
                                context["State"]["Name"], name, catcher.get("Next")
                            )
                        )
                        data_flow = get_state_data_flow(state, simulator_context)
                        output = data_flow.error_output(catcher, error_output(e), variables)
                        return output, catcher.get("Next")

                raise

    return execute_with_retry

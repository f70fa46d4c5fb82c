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
# Run with:
# python3 -m asl_simulator.simulator definition.json [input.json]
# LOG_LEVEL=DEBUG python3 -m asl_simulator.simulator definition.json [input.json]
#
"""
This is the main entry point to the ASL Simulator. load() takes a state
machine definition, the resources its Task states use and an options dict
and returns a StateMachine, which may be executed any number of times.

sm = load(definition, resources, {"simulate_wait": False})
output = await sm.execute({"x": 1})

Every execution gets its own variables and Context Object, so concurrent
executions of the same StateMachine are independent of each other.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import asyncio, copy, os, time, uuid, opentracing

from asl_simulator.arn import execution_arn, state_machine_arn
from asl_simulator.asl_exceptions import ValidationError, error_name
from asl_simulator.data_flow import JSONPATH, get_data_flow
from asl_simulator.logger import bind_execution, init_logging, unbind_execution
from asl_simulator.metrics import create_execution_metrics, metrics_namespace
from asl_simulator.state_engine import execute_state_machine
from asl_simulator.task_dispatcher import TaskDispatcher
from asl_simulator.timestamps import now_isoformat
from asl_simulator.validator import StateLint

try:  # Attempt to use ujson if available https://pypi.org/project/ujson/
    import ujson as json
except ImportError:  # Fall back to standard library json
    import json

DEFAULT_OPTIONS = {
    "validate_definition": True,
    "simulate_wait": False,
    "execution_name": None,
    "state_machine_name": "StateMachine",
    "query_language": None,
    "metrics": None,
    "token_generator": None,
}


class SimulatorContext(object):
    """
    Holds everything shared by an execution and all of its Parallel branches
    and Map iterations: the resources, the options and the TaskDispatcher.
    """
    def __init__(self, resources, options, query_language=JSONPATH, token_generator=None):
        self.resources = resources
        self.options = options
        self.query_language = query_language
        self.token_generator = token_generator
        self.task_dispatcher = TaskDispatcher(self)

        namespace = metrics_namespace(options)
        self.execution_metrics = (
            create_execution_metrics(namespace) if namespace is not None else {}
        )

    def new_token(self):
        """
        Task tokens and message IDs come from the token_generator option if one
        was given, so tests may supply predictable values.
        """
        if self.token_generator:
            return self.token_generator()
        return str(uuid.uuid4())


class StateMachine(object):
    def __init__(self, definition, resources=None, options=None):
        """
        :param definition: The ASL state machine definition
        :type definition: dict
        :param resources: The resources used by the state machine's Task states
        :type resources: list
        :param options: Overrides for DEFAULT_OPTIONS
        :type options: dict
        """
        self.logger = init_logging(log_name="asl_simulator")
        self.definition = definition
        self.resources = resources if resources is not None else []
        self.options = dict(DEFAULT_OPTIONS, **(options or {}))

        self.name = self.options["state_machine_name"] or "StateMachine"
        self.arn = state_machine_arn(self.name)

        query_language = (
            self.options["query_language"] or definition.get("QueryLanguage") or JSONPATH
        )
        get_data_flow(query_language)  # Raises Runtime if not a known QueryLanguage

        self.simulator_context = SimulatorContext(
            self.resources,
            self.options,
            query_language,
            self.options["token_generator"],
        )

    def create_variables(self, input):
        """
        The Context Object is described in the AWS documentation:
        https://docs.aws.amazon.com/step-functions/latest/dg/input-output-contextobject.html
        """
        name = self.options["execution_name"] or str(uuid.uuid4())
        start_time = now_isoformat()
        context = {
            "Execution": {
                "Id": execution_arn(self.name, name),
                "Input": copy.deepcopy(input),
                "Name": name,
                "RoleArn": "arn:aws:iam::123456789012:role/service-role/" + self.name,
                "StartTime": start_time,
            },
            "State": {
                "EnteredTime": start_time,
                "Name": self.definition.get("StartAt"),
                "RetryCount": 0,
            },
            "StateMachine": {"Id": self.arn, "Name": self.name},
            "Task": {},
        }
        return {"states": {"input": input, "context": context}}

    async def execute(self, input=None):
        """
        Run a new execution of the state machine with the given input and
        return its output. If the execution fails the error is raised, its
        name attribute (or class name for non-ASL errors) is the Error Name.
        """
        input = {} if input is None else input
        variables = self.create_variables(input)
        execution = variables["states"]["context"]["Execution"]
        labels = {"StateMachineArn": self.arn}
        metrics = self.simulator_context.execution_metrics

        bind_execution(execution_name=execution["Name"])
        with opentracing.tracer.start_active_span(
            operation_name="StartExecution",
            child_of=opentracing.tracer.active_span,
            tags={
                "component": "simulator",
                "execution_arn": execution["Id"],
            }
        ) as scope:
            self.logger.info("Starting execution {}".format(execution["Id"]))
            if metrics:
                metrics["ExecutionsStarted"].inc(labels)
            start = time.time()
            try:
                output = await execute_state_machine(
                    self.definition, variables, self.simulator_context
                )
            except Exception as e:
                scope.span.set_tag("error", True)
                scope.span.log_kv({"event": error_name(e), "message": str(e)})
                self.logger.info(
                    "Execution {} failed with {}: {}".format(execution["Id"], error_name(e), e)
                )
                if metrics:
                    metrics["ExecutionsFailed"].inc(labels)
                raise
            finally:
                if metrics:
                    metrics["ExecutionTime"].observe(labels, (time.time() - start) * 1000)
                unbind_execution("execution_name")

            self.logger.info("Execution {} succeeded".format(execution["Id"]))
            if metrics:
                metrics["ExecutionsSucceeded"].inc(labels)
            return output

    def execute_sync(self, input=None):
        """
        Convenience for callers that aren't running an asyncio event loop.
        """
        return asyncio.run(self.execute(input))


def load(definition, resources=None, options=None):
    """
    Create a StateMachine from a definition, which may be a dict or a JSON
    string. Unless the validate_definition option is False the definition is
    checked first and any problems are raised as a ValidationError.
    """
    if isinstance(definition, str):
        try:
            definition = json.loads(definition)
        except ValueError as e:
            raise ValidationError("Definition is not valid JSON: {}".format(e)) from e

    validate = (options or {}).get("validate_definition", DEFAULT_OPTIONS["validate_definition"])
    if validate:
        problems = StateLint().validate(definition)
        if problems:
            raise ValidationError("\n".join(problems))
    elif not isinstance(definition, dict):
        raise ValidationError("State machine definition must be a JSON object")

    return StateMachine(definition, resources, options)


def load_options(configuration_file=None):
    """
    Read options from an optional JSON configuration file and then override
    them with any ASL_* environment variables that are set.

    :param configuration_file: Path to a JSON options file
    :type configuration_file: str
    :raises IOError: If configuration file does not exist, or is not readable
    :raises ValueError: If configuration file does not contain valid JSON
    """
    logger = init_logging(log_name="asl_simulator")

    options = {}
    if configuration_file:
        try:
            with open(configuration_file, "r") as fp:
                options = json.load(fp)
        except IOError as e:
            logger.error("Unable to read configuration file: {}".format(configuration_file))
            raise
        except ValueError as e:
            logger.error("Configuration file does not contain valid JSON")
            raise

    def as_bool(value):
        return str(value).lower() == "true"

    # Override options if a field is set as an environment variable.
    if "ASL_SIMULATE_WAIT" in os.environ:
        options["simulate_wait"] = as_bool(os.environ["ASL_SIMULATE_WAIT"])
    if "ASL_VALIDATE_DEFINITION" in os.environ:
        options["validate_definition"] = as_bool(os.environ["ASL_VALIDATE_DEFINITION"])
    options["execution_name"] = os.environ.get(
        "ASL_EXECUTION_NAME", options.get("execution_name")
    )
    options["state_machine_name"] = os.environ.get(
        "ASL_STATE_MACHINE_NAME", options.get("state_machine_name", "StateMachine")
    )
    options["query_language"] = os.environ.get(
        "ASL_QUERY_LANGUAGE", options.get("query_language")
    )
    return options


def read_json(filename):
    with open(filename, "r") as fp:
        return json.load(fp)


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python3 -m asl_simulator.simulator definition.json [input.json]")
        sys.exit(1)

    state_machine = load(read_json(sys.argv[1]), options=load_options())
    input = read_json(sys.argv[2]) if len(sys.argv) > 2 else {}
    print(json.dumps(state_machine.execute_sync(input)))

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
The StateEngine is the core of the simulator. execute_state_machine() runs a
state machine (or a Parallel branch or Map iteration, which are themselves
state machines) from the state named in the Context Object until a terminal
state is reached.

Each state Type has an executor, named asl_state_<Type>, which performs the
state's action between the input and output processing of the state's
DataFlow, returning an (output, next_state_name) tuple. next_state_name is
None when the state is a terminal state.

https://states-language.net/spec.html
https://docs.aws.amazon.com/step-functions/latest/dg/concepts-amazon-states-language.html
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import asyncio, copy

from asl_simulator import timestamps
from asl_simulator.asl_exceptions import Fail, Runtime
from asl_simulator.choice import run_choice, run_jsonata_choice
from asl_simulator.data_flow import JSONATA, context_object, get_state_data_flow
from asl_simulator.error_handling import with_retry
from asl_simulator.jsonata_expressions import evaluate_jsonata
from asl_simulator.logger import init_logging

logger = init_logging(log_name="asl_simulator")

WAIT_FOR_TASK_TOKEN = ".waitForTaskToken"


def next_state(state):
    """
    A state's transition is the value of its Next field unless it is a terminal
    state, which is indicated by "End": true.
    """
    return None if state.get("End") else state.get("Next")


def child_variables(variables, input, start_at):
    """
    Parallel branches and Map iterations are independent executions, so each
    gets its own copy of the variables with its input and start state set.
    """
    child = copy.deepcopy(variables)
    child["states"]["input"] = input
    child["states"]["context"]["State"] = {"Name": start_at, "RetryCount": 0}
    return child


async def asl_state_Pass(state, variables, simulator_context):
    """
    https://states-language.net/spec.html#pass-state

    The Pass State (identified by "Type":"Pass") by default passes its input
    to its output, performing no work. A Pass State MAY have a field named
    "Result". If present, its value is treated as the output of a virtual
    task, and placed as prescribed by the "ResultPath" field, if any, to be
    passed on to the next state. If "Result" is not provided, the output is
    the (effective) input.
    """
    data_flow = get_state_data_flow(state, simulator_context)
    state_input = data_flow.state_input(state, variables)
    effective_input = data_flow.effective_input(
        state, state_input, variables, simulator_context.token_generator
    )
    result = state["Result"] if "Result" in state else effective_input
    output = data_flow.state_output(state, state_input, variables, result)
    return output, next_state(state)


async def asl_state_Succeed(state, variables, simulator_context):
    """
    https://states-language.net/spec.html#succeed-state

    The Succeed State (identified by "Type":"Succeed") terminates a state
    machine successfully.
    """
    data_flow = get_state_data_flow(state, simulator_context)
    state_input = data_flow.state_input(state, variables)
    return data_flow.state_output(state, state_input, variables), None


async def asl_state_Fail(state, variables, simulator_context):
    """
    https://states-language.net/spec.html#fail-state

    The Fail State (identified by "Type":"Fail") terminates the machine and
    marks it as a failure. The Error and Cause may be given directly or, for
    JSONPath states, via ErrorPath and CausePath.
    """
    data_flow = get_state_data_flow(state, simulator_context)
    state_input = data_flow.state_input(state, variables)
    error, cause = data_flow.fail_error(state, state_input, variables)
    raise Fail(error, cause)


async def asl_state_Choice(state, variables, simulator_context):
    data_flow = get_state_data_flow(state, simulator_context)
    state_input = data_flow.state_input(state, variables)
    if data_flow.query_language == JSONATA:
        next, rule = run_jsonata_choice(state, variables)
    else:
        next, rule = run_choice(state, state_input, context_object(variables)), None
    output = data_flow.choice_output(state, state_input, rule, variables)
    return output, next


async def asl_state_Wait(state, variables, simulator_context):
    """
    https://states-language.net/spec.html#wait-state

    A Wait state (identified by "Type":"Wait") causes the interpreter to delay
    the machine from continuing for a specified time. The time can be
    specified as a wait duration, specified in seconds, or an absolute expiry
    time, specified as an ISO-8601 extended offset date-time format string.
    The delay is only real when the simulate_wait option is set.
    """
    data_flow = get_state_data_flow(state, simulator_context)
    state_input = data_flow.state_input(state, variables)
    seconds = data_flow.wait_time(state, state_input, variables)
    await timestamps.wait(seconds, simulator_context)
    output = data_flow.state_output(state, state_input, variables)
    return output, next_state(state)


async def asl_state_Task(state, variables, simulator_context):
    """
    https://states-language.net/spec.html#task-state

    The Task State (identified by "Type":"Task") causes the interpreter to
    execute the work identified by the state's "Resource" field.

    For the .waitForTaskToken pattern a task token is generated before the
    effective input is evaluated, so it may be passed to the resource via
    $$.Task.Token or states.context.Task.Token
    """
    data_flow = get_state_data_flow(state, simulator_context)
    resource_arn = state.get("Resource")
    if not isinstance(resource_arn, str):
        raise Runtime("Task state has no Resource")

    state_input = data_flow.state_input(state, variables)
    if resource_arn.endswith(WAIT_FOR_TASK_TOKEN):
        context_object(variables)["Task"] = {"Token": simulator_context.new_token()}

    effective_input = data_flow.effective_input(
        state, state_input, variables, simulator_context.token_generator
    )
    result = await simulator_context.task_dispatcher.execute_task(
        resource_arn, effective_input, variables
    )
    result = data_flow.task_result(resource_arn, result)
    effective_result = data_flow.effective_result(
        state, result, variables, simulator_context.token_generator
    )
    output = data_flow.state_output(state, state_input, variables, effective_result)
    return output, next_state(state)


async def asl_state_Parallel(state, variables, simulator_context):
    """
    https://states-language.net/spec.html#parallel-state

    The Parallel State (identified by "Type":"Parallel") causes parallel
    execution of "branches". Each branch receives the effective input and the
    result is an array with one element for each branch, in the order the
    branches are declared, containing the output of that branch.

    If any branch fails the Parallel State fails with that branch's error. The
    other branches are left to run to completion and their results discarded.
    """
    data_flow = get_state_data_flow(state, simulator_context)
    state_input = data_flow.state_input(state, variables)
    effective_input = data_flow.effective_input(
        state, state_input, variables, simulator_context.token_generator
    )

    branches = state.get("Branches", [])
    result = await asyncio.gather(*[
        execute_state_machine(
            branch,
            child_variables(variables, copy.deepcopy(effective_input), branch.get("StartAt")),
            simulator_context
        )
        for branch in branches
    ])

    effective_result = data_flow.effective_result(
        state, list(result), variables, simulator_context.token_generator
    )
    output = data_flow.state_output(state, state_input, variables, effective_result)
    return output, next_state(state)


async def asl_state_Map(state, variables, simulator_context):
    """
    https://states-language.net/spec.html#map-state

    The Map State (identified by "Type":"Map") causes the interpreter to
    process all the elements of an array, potentially in parallel, with the
    processing of each element independent of the others. The ItemProcessor
    (or the older Iterator) field is the state machine run for each element,
    with the element's index and value available from the Context Object as
    Map.Item.Index and Map.Item.Value

    MaxConcurrency, if present and greater than zero, is the upper bound on
    how many iterations may run concurrently. The result is an array with the
    output of each iteration in the order of the input items.
    """
    data_flow = get_state_data_flow(state, simulator_context)
    state_input = data_flow.state_input(state, variables)
    items = data_flow.items(state, state_input, variables)

    processor = state.get("ItemProcessor", state.get("Iterator"))
    if not isinstance(processor, dict):
        raise Runtime("Map state has no ItemProcessor")

    max_concurrency = evaluate_jsonata(state.get("MaxConcurrency", 0), variables)
    semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def run_iteration(index, item):
        iteration_variables = child_variables(
            variables, copy.deepcopy(state_input), processor.get("StartAt")
        )
        context_object(iteration_variables)["Map"] = {
            "Item": {"Index": index, "Value": copy.deepcopy(item)}
        }
        iteration_variables["states"]["input"] = data_flow.item_input(
            state, item, state_input, iteration_variables, simulator_context.token_generator
        )
        if semaphore:
            async with semaphore:
                return await execute_state_machine(
                    processor, iteration_variables, simulator_context
                )
        return await execute_state_machine(processor, iteration_variables, simulator_context)

    result = await asyncio.gather(*[
        run_iteration(index, item) for index, item in enumerate(items)
    ])

    effective_result = data_flow.effective_result(
        state, list(result), variables, simulator_context.token_generator
    )
    output = data_flow.state_output(state, state_input, variables, effective_result)
    return output, next_state(state)


"""
Task, Parallel and Map states may report errors that are handled by their
Retry and Catch fields. Errors from the other state types always propagate.
"""
EXECUTORS = {
    "Pass": asl_state_Pass,
    "Succeed": asl_state_Succeed,
    "Fail": asl_state_Fail,
    "Choice": asl_state_Choice,
    "Wait": asl_state_Wait,
    "Task": with_retry(asl_state_Task),
    "Parallel": with_retry(asl_state_Parallel),
    "Map": with_retry(asl_state_Map),
}


async def execute_state_machine(definition, variables, simulator_context):
    """
    Run the states of definition, starting with the state named by the
    Context Object's State.Name, until a terminal state is reached, and
    return that state's output. The variables are updated as the execution
    moves from state to state.
    """
    states = definition.get("States", {})
    context = context_object(variables)

    while True:
        name = context["State"]["Name"]
        state = states.get(name)
        if not isinstance(state, dict):
            raise Runtime("State {} not found in the state machine".format(name))

        context["State"]["EnteredTime"] = timestamps.now_isoformat()
        context["State"]["RetryCount"] = 0

        state_type = state.get("Type")
        executor = EXECUTORS.get(state_type)
        if not executor:
            raise Runtime("Unrecognised state Type {}".format(state_type))

        logger.debug("Executing {} state {}".format(state_type, name))
        output, next = await executor(state, variables, simulator_context)
        if not next:
            return output

        variables["states"]["input"] = output
        context["State"]["Name"] = next

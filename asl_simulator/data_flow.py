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
States pass data to each other in one of two query languages, selected by the
QueryLanguage field of the state machine or of an individual state.
https://docs.aws.amazon.com/step-functions/latest/dg/transforming-data.html

JSONPath states shape their data with InputPath, Parameters, ResultSelector,
ResultPath and OutputPath. JSONata states use Arguments, Output and Assign,
whose values may contain {% %} expressions evaluated against the execution's
variables.

The executors in state_engine are written once against the DataFlow interface
and the strategy for a state is chosen by get_data_flow() when it is executed.

Every method takes the execution variables, a dict of the form
{"states": {"input": <raw input>, "context": <Context Object>}, ...} where the
remaining keys are the variables created by Assign.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

from asl_simulator.asl_exceptions import PathMatchFailure, Runtime
from asl_simulator.jsonata_expressions import evaluate_jsonata
from asl_simulator.logger import init_logging
from asl_simulator.state_engine_paths import (
    apply_path,
    apply_resultpath,
    evaluate_payload_template,
)
from asl_simulator.timestamps import seconds_until

JSONPATH = "JSONPath"
JSONATA = "JSONata"

# Marks states such as Choice and Wait whose action doesn't produce a result.
NO_RESULT = object()


def raw_input(variables):
    return variables["states"]["input"]


def context_object(variables):
    return variables["states"]["context"]


def wait_seconds(seconds, timestamp, source):
    """
    Convert a Wait state's duration or absolute expiry time to a number of
    seconds to wait. Timestamps in the past mean no wait at all.
    """
    if seconds is not None:
        if not isinstance(seconds, (int, float)) or isinstance(seconds, bool) or seconds < 0:
            raise Runtime(
                "Wait state {} must be a non-negative number, got {}".format(source, seconds)
            )
        return seconds
    try:
        return seconds_until(timestamp)
    except (ValueError, AttributeError, TypeError, IndexError):
        raise Runtime(
            "Wait state {} must be an RFC3339 timestamp, got {}".format(source, timestamp)
        )


class DataFlow(object):
    query_language = None

    def __init__(self):
        self.logger = init_logging(log_name="asl_simulator")

    def state_input(self, state, variables):
        """The state's input, selected from its raw input."""
        raise NotImplementedError

    def effective_input(self, state, state_input, variables, token_generator=None):
        """The input given to the state's action, e.g. a Task's payload."""
        raise NotImplementedError

    def items(self, state, state_input, variables):
        """The array a Map state iterates over."""
        raise NotImplementedError

    def item_input(self, state, item, state_input, item_variables, token_generator=None):
        """The input of a single Map iteration."""
        raise NotImplementedError

    def effective_result(self, state, result, variables, token_generator=None):
        """Reshape the raw result of the state's action."""
        raise NotImplementedError

    def task_result(self, resource_arn, result):
        return result

    def state_output(self, state, state_input, variables, result=NO_RESULT):
        """
        The state's output, computed from its raw input and the (effective)
        result of its action.
        """
        raise NotImplementedError

    def choice_output(self, state, state_input, rule, variables):
        raise NotImplementedError

    def error_output(self, catcher, error_output, variables):
        """The state's output when one of its Catchers matched the error."""
        raise NotImplementedError

    def wait_time(self, state, state_input, variables):
        """Number of seconds a Wait state should wait."""
        raise NotImplementedError

    def fail_error(self, state, state_input, variables):
        """The (Error, Cause) tuple raised by a Fail state."""
        raise NotImplementedError


class JSONPathDataFlow(DataFlow):
    """
    https://states-language.net/spec.html#filters

    The raw input is filtered by InputPath, reshaped by Parameters into the
    effective input, the action's result is reshaped by ResultSelector and
    placed into the raw input at ResultPath, which is finally filtered by
    OutputPath to give the state's output.
    """
    query_language = JSONPATH

    def state_input(self, state, variables):
        return apply_path(
            raw_input(variables), context_object(variables), state.get("InputPath", "$")
        )

    def effective_input(self, state, state_input, variables, token_generator=None):
        return evaluate_payload_template(
            state_input, context_object(variables), state.get("Parameters"), token_generator
        )

    def items(self, state, state_input, variables):
        items = apply_path(state_input, context_object(variables), state.get("ItemsPath", "$"))
        if not isinstance(items, list):
            raise Runtime(
                "Map state ItemsPath {} must select an array".format(state.get("ItemsPath", "$"))
            )
        return items

    def item_input(self, state, item, state_input, item_variables, token_generator=None):
        """
        ItemSelector (or Parameters in the older style of Map state) is
        evaluated against the Map state's input, with the current item
        available from the Context Object as $$.Map.Item.Value
        """
        template = state.get("ItemSelector", state.get("Parameters"))
        if template == None:
            return item
        return evaluate_payload_template(
            state_input, context_object(item_variables), template, token_generator
        )

    def effective_result(self, state, result, variables, token_generator=None):
        return evaluate_payload_template(
            result, context_object(variables), state.get("ResultSelector"), token_generator
        )

    def state_output(self, state, state_input, variables, result=NO_RESULT):
        if result is NO_RESULT:
            output = state_input
        else:
            output = apply_resultpath(
                raw_input(variables), result, state.get("ResultPath", "$")
            )
        return apply_path(output, context_object(variables), state.get("OutputPath", "$"))

    def choice_output(self, state, state_input, rule, variables):
        return self.state_output(state, state_input, variables)

    def error_output(self, catcher, error_output, variables):
        return apply_resultpath(
            raw_input(variables), error_output, catcher.get("ResultPath", "$")
        )

    def wait_time(self, state, state_input, variables):
        context = context_object(variables)
        if "Seconds" in state:
            return wait_seconds(state["Seconds"], None, "Seconds")
        if "SecondsPath" in state:
            return wait_seconds(
                self._resolve(state_input, context, state["SecondsPath"]), None, "SecondsPath"
            )
        if "Timestamp" in state:
            return wait_seconds(None, state["Timestamp"], "Timestamp")
        if "TimestampPath" in state:
            return wait_seconds(
                None, self._resolve(state_input, context, state["TimestampPath"]), "TimestampPath"
            )
        raise Runtime(
            "Wait state must contain one of Seconds, SecondsPath, Timestamp or TimestampPath"
        )

    def fail_error(self, state, state_input, variables):
        context = context_object(variables)
        error = state.get("Error")
        if error == None and "ErrorPath" in state:
            error = self._resolve(state_input, context, state["ErrorPath"])
        cause = state.get("Cause")
        if cause == None and "CausePath" in state:
            cause = self._resolve(state_input, context, state["CausePath"])
        return error, cause

    def _resolve(self, input, context, path):
        try:
            return apply_path(input, context, path)
        except PathMatchFailure as e:
            raise Runtime(e.message)


class JSONataDataFlow(DataFlow):
    """
    https://docs.aws.amazon.com/step-functions/latest/dg/transforming-data.html

    The state's input is its raw input, available to expressions as
    states.input. Arguments gives the action its input, the action's result
    is available to Output and Assign as states.result and Output gives the
    state's output, which defaults to the result and then to the input.
    Assign stores variables that are visible to all subsequent states.
    """
    query_language = JSONATA

    def state_input(self, state, variables):
        return raw_input(variables)

    def effective_input(self, state, state_input, variables, token_generator=None):
        if "Arguments" in state:
            return evaluate_jsonata(state["Arguments"], variables)
        return state_input

    def items(self, state, state_input, variables):
        items = evaluate_jsonata(state["Items"], variables) if "Items" in state else state_input
        if not isinstance(items, list):
            raise Runtime("Map state Items must evaluate to an array, got {}".format(items))
        return items

    def item_input(self, state, item, state_input, item_variables, token_generator=None):
        if "ItemSelector" in state:
            return evaluate_jsonata(state["ItemSelector"], item_variables)
        return item

    def effective_result(self, state, result, variables, token_generator=None):
        variables["states"]["result"] = result
        return result

    def task_result(self, resource_arn, result):
        """
        A Task whose Resource is a Lambda function ARN exposes the function's
        return value as states.result.Payload, as lambda:invoke does.
        """
        if resource_arn.startswith("arn:aws:lambda:"):
            return {"Payload": result}
        return result

    def state_output(self, state, state_input, variables, result=NO_RESULT):
        default = state_input if result is NO_RESULT else result
        try:
            return self._assign_and_output(state, default, variables)
        finally:
            variables["states"].pop("result", None)

    def choice_output(self, state, state_input, rule, variables):
        return self._assign_and_output(rule if rule else state, state_input, variables)

    def error_output(self, catcher, error_output, variables):
        """
        The Error Output is available to the Catcher's Output and Assign as
        states.errorOutput. Without an Output the Error Output is placed into
        the raw input at the Catcher's ResultPath, replacing it by default.
        """
        variables["states"]["errorOutput"] = error_output
        try:
            if "Output" in catcher:
                default = error_output
            else:
                default = apply_resultpath(
                    raw_input(variables), error_output, catcher.get("ResultPath", "$")
                )
            return self._assign_and_output(catcher, default, variables)
        finally:
            variables["states"].pop("errorOutput", None)

    def wait_time(self, state, state_input, variables):
        if "Seconds" in state:
            return wait_seconds(evaluate_jsonata(state["Seconds"], variables), None, "Seconds")
        if "Timestamp" in state:
            return wait_seconds(None, evaluate_jsonata(state["Timestamp"], variables), "Timestamp")
        raise Runtime("Wait state must contain one of Seconds or Timestamp")

    def fail_error(self, state, state_input, variables):
        return (
            evaluate_jsonata(state.get("Error"), variables),
            evaluate_jsonata(state.get("Cause"), variables),
        )

    def _assign_and_output(self, fields, default, variables):
        """
        Assign and Output are both evaluated against the variables as they were
        before the state's assignments, then the assignments are applied.
        """
        assignments = evaluate_jsonata(fields.get("Assign", {}), variables)
        if "Output" in fields:
            output = evaluate_jsonata(fields["Output"], variables)
        else:
            output = default

        if not isinstance(assignments, dict):
            raise Runtime("Assign must be an object, got {}".format(assignments))
        for name, value in assignments.items():
            if name == "states":
                self.logger.warning(
                    "Assign cannot overwrite the reserved states variable, skipping"
                )
                continue
            variables[name] = value
        return output


DATA_FLOWS = {
    JSONPATH: JSONPathDataFlow(),
    JSONATA: JSONataDataFlow(),
}


def get_data_flow(query_language):
    data_flow = DATA_FLOWS.get(query_language)
    if not data_flow:
        raise Runtime("Unsupported QueryLanguage {}".format(query_language))
    return data_flow


def get_state_data_flow(state, simulator_context):
    """
    A state's own QueryLanguage overrides the state machine's, which is held
    by the simulator context.
    """
    return get_data_flow(state.get("QueryLanguage") or simulator_context.query_language)

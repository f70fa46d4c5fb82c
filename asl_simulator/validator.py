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
Checks a state machine definition for the structural and semantic problems
that would otherwise only be discovered part way through an execution.

Based on the semantic checks of https://github.com/awslabs/statelint
https://github.com/awslabs/statelint/blob/master/lib/statelint/state_node.rb
validate() returns a list of problem strings, which is empty if the
definition is valid.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import re

from asl_simulator.asl_exceptions import ERROR_WILDCARD

STATE_TYPES = ["Pass", "Succeed", "Fail", "Choice", "Wait", "Task", "Parallel", "Map"]
QUERY_LANGUAGES = ["JSONPath", "JSONata"]
PAYLOAD_TEMPLATE_FIELDS = ["Parameters", "ItemSelector", "ResultSelector"]

INTRINSIC_INVOCATION = re.compile(
    r"^States\.(Format|Array|ArrayPartition|ArrayContains|ArrayRange|ArrayGetItem|"
    r"ArrayLength|ArrayUnique|Base64Encode|Base64Decode|Hash|JsonMerge|JsonToString|"
    r"StringToJson|MathRandom|MathAdd|StringSplit)\s*\(.+\)$",
    re.DOTALL
)
UUID_INVOCATION = re.compile(r"^States\.UUID\s*\(\s*\)$")


def is_path(value):
    return isinstance(value, str) and value.startswith("$")


def is_intrinsic_invocation(value):
    return isinstance(value, str) and bool(
        INTRINSIC_INVOCATION.match(value) or UUID_INVOCATION.match(value)
    )


class StateLint(object):
    def validate(self, definition):
        problems = []
        # We keep track of all the state names and complain about dupes
        self.all_state_names = {}
        if not isinstance(definition, dict):
            problems.append("State machine definition must be a JSON object")
            return problems

        query_language = definition.get("QueryLanguage", "JSONPath")
        if query_language not in QUERY_LANGUAGES:
            problems.append(
                f'QueryLanguage "{query_language}" at State Machine is not one of ' +
                f'{", ".join(QUERY_LANGUAGES)}'
            )
            query_language = "JSONPath"

        self.check_machine(definition, "State Machine", query_language, problems)
        return problems

    def check_machine(self, machine, path, query_language, problems):
        """
        Check a top level state machine, Parallel branch or Map ItemProcessor.
        Every Next, Default and Catcher Next must name a state in the same
        States object, and every state must be the target of a transition.
        """
        states = machine.get("States")
        if not isinstance(states, dict) or not states:
            problems.append(f"No States field found in {path}")
            return

        incoming = set()
        start_at = machine.get("StartAt")
        if not isinstance(start_at, str):
            problems.append(f"No StartAt field found in {path}")
        elif start_at not in states:
            problems.append(
                f'StartAt value "{start_at}" not found in States field at {path}'
            )
        else:
            incoming.add(start_at)

        terminal_found = False
        for name, state in states.items():
            state_path = f"{path}.States.{name}"
            if name in self.all_state_names:
                problems.append(
                    f'State "{name}", defined at {path}.States, ' +
                    f'is also defined at {self.all_state_names[name]}'
                )
            else:
                self.all_state_names[name] = f"{path}.States"

            if not isinstance(state, dict):
                problems.append(f"{state_path} must be a JSON object")
                continue

            if state.get("Type") in ("Succeed", "Fail") or state.get("End") == True:
                terminal_found = True

            for target, field_path in self.transitions(state, state_path):
                if target in states:
                    incoming.add(target)
                else:
                    problems.append(
                        f'No state found named "{target}", referenced at {field_path}'
                    )

            self.check_state(state, state_path, query_language, problems)

        if not terminal_found:
            problems.append(f"No terminal state found in machine at {path}.States")

        for name in states:
            if name not in incoming:
                problems.append(f"No transition found to state {path}.States.{name}")

    def transitions(self, state, path):
        """
        Yield (target, field_path) tuples for every transition out of the state.
        """
        for field in ["Next", "Default"]:
            if isinstance(state.get(field), str):
                yield state[field], f"{path}.{field}"
        for i, choice in enumerate(state.get("Choices") or []):
            if isinstance(choice, dict) and isinstance(choice.get("Next"), str):
                yield choice["Next"], f"{path}.Choices[{i}].Next"
        for i, catcher in enumerate(state.get("Catch") or []):
            if isinstance(catcher, dict) and isinstance(catcher.get("Next"), str):
                yield catcher["Next"], f"{path}.Catch[{i}].Next"

    def check_state(self, state, path, query_language, problems):
        state_type = state.get("Type")
        if state_type not in STATE_TYPES:
            problems.append(f'Type "{state_type}" of {path} is not a valid state Type')
            return

        query_language = state.get("QueryLanguage", query_language)
        if query_language not in QUERY_LANGUAGES:
            problems.append(
                f'QueryLanguage "{query_language}" at {path} is not one of ' +
                f'{", ".join(QUERY_LANGUAGES)}'
            )

        if state_type not in ("Succeed", "Fail", "Choice"):
            if state.get("End") != True and not isinstance(state.get("Next"), str):
                problems.append(f"{path} must have a Next field or End: true")

        if state_type == "Task" and not isinstance(state.get("Resource"), str):
            problems.append(f"{path} must have a Resource field")

        if state_type == "Choice":
            choices = state.get("Choices")
            if not isinstance(choices, list) or not choices:
                problems.append(f"{path} must have a non-empty Choices field")
            else:
                self.probe_choice_state(choices, path + ".Choices", problems)

        if query_language == "JSONPath":
            for field_name in PAYLOAD_TEMPLATE_FIELDS:
                if field_name in state:
                    self.probe_payload_template(state[field_name], path, problems, field_name)

        self.check_States_ALL(state.get("Retry"), path + ".Retry", problems)
        self.check_States_ALL(state.get("Catch"), path + ".Catch", problems)

        if state_type == "Parallel":
            branches = state.get("Branches")
            if not isinstance(branches, list) or not branches:
                problems.append(f"{path} must have a non-empty Branches field")
            else:
                for i, branch in enumerate(branches):
                    if isinstance(branch, dict):
                        self.check_machine(
                            branch, f"{path}.Branches[{i}]", query_language, problems
                        )
                    else:
                        problems.append(f"{path}.Branches[{i}] must be a JSON object")

        if state_type == "Map":
            field = "ItemProcessor" if "ItemProcessor" in state else "Iterator"
            processor = state.get(field)
            if isinstance(processor, dict):
                self.check_machine(processor, f"{path}.{field}", query_language, problems)
            else:
                problems.append(f"{path} must have an ItemProcessor field")

    def probe_choice_state(self, node, path, problems):
        if isinstance(node, dict):
            variable = node.get("Variable")
            if variable and not is_path(variable):
                problems.append(
                    f'Field "Variable" of Choice state choice at "{path}" ' +
                    f'is not a JSONPath'
                )

            for op in ["And", "Or", "Not"]:
                if op in node:
                    self.probe_choice_state(node[op], path + "." + op, problems)

        elif isinstance(node, list):
            for i, element in enumerate(node):
                self.probe_choice_state(element, f"{path}[{i}]", problems)

    def probe_payload_template(self, node, path, problems, field_name):
        # Search through Payload Templates for object nodes and check field semantics
        if isinstance(node, dict):
            for name, val in node.items():
                if name.endswith(".$"):
                    if not is_intrinsic_invocation(val) and not is_path(val):
                        problems.append(
                            f'Field "{name}" of {field_name} at "{path}" is ' +
                            f'not a JSONPath nor intrinsic function expression'
                        )
                else:
                    self.probe_payload_template(val, f"{path}.{name}", problems, field_name)
        elif isinstance(node, list):
            for i, element in enumerate(node):
                self.probe_payload_template(element, f"{path}[{i}]", problems, field_name)

    def check_States_ALL(self, node, path, problems):
        if not isinstance(node, list):
            return

        for i, element in enumerate(node):
            if isinstance(element, dict):
                ee = element.get("ErrorEquals")
                if not isinstance(ee, list) or not ee:
                    problems.append(f"{path}[{i}] must have a non-empty ErrorEquals field")
                elif ERROR_WILDCARD in ee:
                    if i != len(node) - 1 or len(ee) != 1:
                        problems.append(
                            f"{path}[{i}]: States.ALL can only appear " +
                            f"in the last element, and by itself"
                        )

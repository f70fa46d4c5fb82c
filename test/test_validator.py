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
# PYTHONPATH=.. python3 test_validator.py
#

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import copy, unittest

from asl_simulator.asl_exceptions import ValidationError
from asl_simulator.simulator import load
from asl_simulator.validator import StateLint

VALID = {
    "StartAt": "Start",
    "States": {
        "Start": {
            "Type": "Task",
            "Resource": "arn:aws:lambda:local:123456789012:function:work",
            "Parameters": {"id.$": "$.id", "name.$": "States.Format('n-{}', $.id)"},
            "Retry": [
                {"ErrorEquals": ["CustomError"]},
                {"ErrorEquals": ["States.ALL"]}
            ],
            "Catch": [{"ErrorEquals": ["States.ALL"], "Next": "Failed"}],
            "Next": "Decide"
        },
        "Decide": {
            "Type": "Choice",
            "Choices": [
                {"Variable": "$.ok", "BooleanEquals": True, "Next": "Fan"},
                {"Not": {"Variable": "$.ok", "IsPresent": True}, "Next": "Failed"}
            ],
            "Default": "Failed"
        },
        "Fan": {
            "Type": "Parallel",
            "Branches": [
                {"StartAt": "Left", "States": {"Left": {"Type": "Pass", "End": True}}},
                {"StartAt": "Right", "States": {"Right": {"Type": "Succeed"}}}
            ],
            "Next": "Each"
        },
        "Each": {
            "Type": "Map",
            "ItemProcessor": {
                "StartAt": "Item",
                "States": {"Item": {"Type": "Wait", "Seconds": 1, "End": True}}
            },
            "End": True
        },
        "Failed": {"Type": "Fail", "Error": "Oops"}
    }
}


def validate(definition):
    return StateLint().validate(definition)


class TestStateLint(unittest.TestCase):

    def setUp(self):
        self.definition = copy.deepcopy(VALID)
        self.states = self.definition["States"]

    def test_valid(self):
        self.assertEqual(validate(self.definition), [])

    def test_not_an_object(self):
        self.assertEqual(validate([]), ["State machine definition must be a JSON object"])

    def test_start_at(self):
        del self.definition["StartAt"]
        self.assertIn("No StartAt field found in State Machine", validate(self.definition))

        self.definition["StartAt"] = "Nope"
        self.assertIn(
            'StartAt value "Nope" not found in States field at State Machine',
            validate(self.definition)
        )

    def test_missing_transition_target(self):
        self.states["Fan"]["Next"] = "Missing"
        problems = validate(self.definition)
        self.assertIn(
            'No state found named "Missing", referenced at State Machine.States.Fan.Next',
            problems
        )
        # Each is no longer the target of any transition
        self.assertIn("No transition found to state State Machine.States.Each", problems)

    def test_missing_catcher_target(self):
        self.states["Start"]["Catch"][0]["Next"] = "Elsewhere"
        self.assertIn(
            'No state found named "Elsewhere", referenced at State Machine.States.Start.Catch[0].Next',
            validate(self.definition)
        )

    def test_branch_cannot_reach_outer_states(self):
        self.states["Fan"]["Branches"][0]["States"]["Left"] = {"Type": "Pass", "Next": "Each"}
        self.assertIn(
            'No state found named "Each", referenced at ' +
            'State Machine.States.Fan.Branches[0].States.Left.Next',
            validate(self.definition)
        )

    def test_unreachable_state(self):
        self.states["Orphan"] = {"Type": "Succeed"}
        self.assertEqual(
            validate(self.definition),
            ["No transition found to state State Machine.States.Orphan"]
        )

    def test_no_terminal_state(self):
        problems = validate({
            "StartAt": "A",
            "States": {
                "A": {"Type": "Pass", "Next": "B"},
                "B": {"Type": "Pass", "Next": "A"}
            }
        })
        self.assertEqual(problems, ["No terminal state found in machine at State Machine.States"])

    def test_duplicate_state_names(self):
        self.states["Each"]["ItemProcessor"]["States"] = {"Left": {"Type": "Pass", "End": True}}
        self.states["Each"]["ItemProcessor"]["StartAt"] = "Left"
        problems = validate(self.definition)
        self.assertIn(
            'State "Left", defined at State Machine.States.Each.ItemProcessor.States, ' +
            'is also defined at State Machine.States.Fan.Branches[0].States',
            problems
        )

    def test_invalid_type(self):
        self.states["Fan"]["Type"] = "Parallelish"
        self.assertIn(
            'Type "Parallelish" of State Machine.States.Fan is not a valid state Type',
            validate(self.definition)
        )

    def test_missing_next(self):
        del self.states["Each"]["End"]
        self.assertIn(
            "State Machine.States.Each must have a Next field or End: true",
            validate(self.definition)
        )

    def test_states_all_must_be_last_and_alone(self):
        self.states["Start"]["Retry"].reverse()
        self.assertIn(
            "State Machine.States.Start.Retry[0]: States.ALL can only appear " +
            "in the last element, and by itself",
            validate(self.definition)
        )

        self.states["Start"]["Catch"][0]["ErrorEquals"] = ["States.ALL", "CustomError"]
        self.assertIn(
            "State Machine.States.Start.Catch[0]: States.ALL can only appear " +
            "in the last element, and by itself",
            validate(self.definition)
        )

    def test_payload_template_values(self):
        self.states["Start"]["Parameters"]["nested"] = {"bad.$": "not a path"}
        self.assertIn(
            'Field "bad.$" of Parameters at "State Machine.States.Start.nested" is ' +
            'not a JSONPath nor intrinsic function expression',
            validate(self.definition)
        )

    def test_choice_variable_must_be_a_path(self):
        self.states["Decide"]["Choices"][1]["Not"]["Variable"] = "ok"
        self.assertIn(
            'Field "Variable" of Choice state choice at ' +
            '"State Machine.States.Decide.Choices[1].Not" is not a JSONPath',
            validate(self.definition)
        )

    def test_query_language(self):
        self.definition["QueryLanguage"] = "XPath"
        self.assertIn(
            'QueryLanguage "XPath" at State Machine is not one of JSONPath, JSONata',
            validate(self.definition)
        )

    def test_jsonata_states_have_no_payload_templates(self):
        self.definition["QueryLanguage"] = "JSONata"
        del self.states["Start"]["Parameters"]
        self.states["Start"]["Arguments"] = {"id.$": "{% $states.input.id %}"}
        self.assertEqual(validate(self.definition), [])


class TestLoadValidation(unittest.TestCase):

    def test_load_raises_validation_error(self):
        definition = copy.deepcopy(VALID)
        definition["States"]["Orphan"] = {"Type": "Succeed"}
        with self.assertRaises(ValidationError) as cm:
            load(definition)
        self.assertEqual(cm.exception.name, "ValidationError")
        self.assertIn("Orphan", cm.exception.message)

    def test_validation_can_be_disabled(self):
        definition = copy.deepcopy(VALID)
        definition["States"]["Orphan"] = {"Type": "Succeed"}
        load(definition, options={"validate_definition": False})


if __name__ == "__main__":
    unittest.main()

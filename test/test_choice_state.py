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
# PYTHONPATH=.. python3 test_choice_state.py
# PYTHONPATH=.. LOG_LEVEL=DEBUG python3 test_choice_state.py
#
"""
Tests the Choice Rule evaluation described in
https://states-language.net/spec.html#choice-state

The rules are mostly evaluated directly, the last few tests run complete state
machines that branch to a state that records which way the Choice went.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import unittest

from asl_simulator.asl_exceptions import NoChoiceMatched, Runtime
from asl_simulator.choice import evaluate_choice_rule, run_choice, string_matches
from asl_simulator.simulator import load


def rule(field, value, variable="$.value"):
    return {"Variable": variable, field: value, "Next": "Matched"}


class TestChoiceRules(unittest.TestCase):

    def check(self, field, value, matches, misses):
        for input_value in matches:
            self.assertTrue(
                evaluate_choice_rule(rule(field, value), {"value": input_value}),
                "{} {} should match {}".format(field, value, input_value)
            )
        for input_value in misses:
            self.assertFalse(
                evaluate_choice_rule(rule(field, value), {"value": input_value}),
                "{} {} should not match {}".format(field, value, input_value)
            )

    def test_string_comparisons(self):
        self.check("StringEquals", "Hello", ["Hello"], ["hello", "Hello!", 5])
        self.check("StringLessThan", "b", ["a", "B"], ["b", "c"])
        self.check("StringLessThanEquals", "b", ["a", "b"], ["c"])
        self.check("StringGreaterThan", "b", ["c"], ["b", "a"])
        self.check("StringGreaterThanEquals", "b", ["b", "c"], ["a"])

    def test_case_insensitive_string_equals(self):
        self.check("CaseInsensitiveStringEquals", "HeLLo", ["hello", "HELLO"], ["help"])

    def test_numeric_comparisons(self):
        self.check("NumericEquals", 5, [5, 5.0], [4, "5", True])
        self.check("NumericLessThan", 5, [4, 4.99, -1], [5, 6])
        self.check("NumericLessThanEquals", 5, [5, 4], [5.01])
        self.check("NumericGreaterThan", 5, [6], [5, 4])
        self.check("NumericGreaterThanEquals", 5, [5, 6], [4])

    def test_boolean_equals(self):
        self.check("BooleanEquals", True, [True], [False, 1, "true"])
        self.check("BooleanEquals", False, [False], [True, 0])

    def test_timestamp_comparisons(self):
        instant = "2024-01-01T12:00:00Z"
        self.check("TimestampEquals", instant,
                   ["2024-01-01T12:00:00Z", "2024-01-01T13:00:00+01:00"],
                   ["2024-01-01T12:00:01Z", "not a timestamp"])
        self.check("TimestampLessThan", instant, ["2023-12-31T23:59:59Z"], [instant])
        self.check("TimestampLessThanEquals", instant, [instant], ["2024-01-02T00:00:00Z"])
        self.check("TimestampGreaterThan", instant, ["2024-01-01T12:00:00.5Z"], [instant])
        self.check("TimestampGreaterThanEquals", instant, [instant], ["2020-01-01T00:00:00Z"])

    def test_path_comparisons(self):
        input = {"value": 3, "limit": 5, "name": "abc", "other": "abc"}
        self.assertTrue(evaluate_choice_rule(rule("NumericLessThanPath", "$.limit"), input))
        self.assertFalse(evaluate_choice_rule(rule("NumericGreaterThanPath", "$.limit"), input))
        self.assertTrue(evaluate_choice_rule(
            rule("StringEqualsPath", "$.other", variable="$.name"), input
        ))
        # A path operand that doesn't match means the comparison is false
        self.assertFalse(evaluate_choice_rule(rule("NumericEqualsPath", "$.missing"), input))

    def test_context_object_variable(self):
        context = {"Execution": {"Name": "nightly"}}
        self.assertTrue(evaluate_choice_rule(
            rule("StringEquals", "nightly", variable="$$.Execution.Name"), {}, context
        ))

    def test_type_tests(self):
        input = {"value": None, "number": 1.5, "string": "s", "flag": False,
                 "time": "2024-01-01T00:00:00Z"}
        self.assertTrue(evaluate_choice_rule(rule("IsNull", True), input))
        self.assertTrue(evaluate_choice_rule(rule("IsPresent", True), input))
        self.assertTrue(evaluate_choice_rule(rule("IsPresent", False, "$.missing"), input))
        self.assertTrue(evaluate_choice_rule(rule("IsNumeric", True, "$.number"), input))
        self.assertTrue(evaluate_choice_rule(rule("IsNumeric", False, "$.flag"), input))
        self.assertTrue(evaluate_choice_rule(rule("IsString", True, "$.string"), input))
        self.assertTrue(evaluate_choice_rule(rule("IsBoolean", True, "$.flag"), input))
        self.assertTrue(evaluate_choice_rule(rule("IsTimestamp", True, "$.time"), input))
        self.assertTrue(evaluate_choice_rule(rule("IsTimestamp", False, "$.string"), input))

    def test_string_matches(self):
        self.assertTrue(string_matches("log-2024.txt", "log-*.txt"))
        self.assertTrue(string_matches("anything", "*"))
        self.assertTrue(string_matches("a*b", "a\\*b"))
        self.assertFalse(string_matches("axb", "a\\*b"))
        self.assertFalse(string_matches("log.txt.bak", "*.txt"))
        self.assertFalse(string_matches("abab", "ab*ba"))

    def test_and_or_not(self):
        input = {"value": 7}
        between = {"And": [
            {"Variable": "$.value", "NumericGreaterThan": 5},
            {"Variable": "$.value", "NumericLessThan": 10},
        ]}
        self.assertTrue(evaluate_choice_rule(between, input))
        self.assertFalse(evaluate_choice_rule({"Not": between}, input))
        either = {"Or": [
            {"Variable": "$.value", "NumericEquals": 1},
            {"Variable": "$.value", "StringEquals": "7"},
        ]}
        self.assertFalse(evaluate_choice_rule(either, input))

    def test_first_data_test_field_is_used(self):
        # StringEquals comes before NumericEquals, 1 isn't a string so no match
        both = {"Variable": "$.v", "StringEquals": "a", "NumericEquals": 1}
        self.assertFalse(evaluate_choice_rule(both, {"v": 1}))
        self.assertTrue(evaluate_choice_rule({"Variable": "$.v", "NumericEquals": 1}, {"v": 1}))

    def test_not_is_used_before_and(self):
        false_rule = {"Variable": "$.value", "NumericEquals": 1}
        combined = {"Not": false_rule, "And": [false_rule]}
        self.assertTrue(evaluate_choice_rule(combined, {"value": 7}))
        self.assertFalse(evaluate_choice_rule({"And": [false_rule]}, {"value": 7}))

    def test_rule_without_data_test(self):
        with self.assertRaises(Runtime):
            evaluate_choice_rule({"Variable": "$.value", "Next": "X"}, {"value": 1})

    def test_first_matching_rule_wins(self):
        state = {
            "Type": "Choice",
            "Choices": [
                {"Variable": "$.value", "NumericGreaterThan": 1, "Next": "First"},
                {"Variable": "$.value", "NumericGreaterThan": 2, "Next": "Second"},
            ],
            "Default": "Default"
        }
        for i in range(3):  # Evaluation is deterministic
            self.assertEqual(run_choice(state, {"value": 3}), "First")
        self.assertEqual(run_choice(state, {"value": 0}), "Default")

    def test_no_choice_matched(self):
        state = {
            "Type": "Choice",
            "Choices": [{"Variable": "$.value", "NumericEquals": 1, "Next": "One"}]
        }
        with self.assertRaises(NoChoiceMatched):
            run_choice(state, {"value": 2})


class TestChoiceStateMachines(unittest.TestCase):

    def test_hello_choice(self):
        sm = load({
            "StartAt": "Greeting",
            "States": {
                "Greeting": {
                    "Type": "Choice",
                    "Choices": [
                        {"Variable": "$.v", "StringEquals": "Hello!", "Next": "A"}
                    ],
                    "Default": "B"
                },
                "A": {"Type": "Pass", "Result": "A", "End": True},
                "B": {"Type": "Pass", "Result": "B", "End": True}
            }
        })
        self.assertEqual(sm.execute_sync({"v": "Hello!"}), "A")
        self.assertEqual(sm.execute_sync({"v": "Bye"}), "B")

    def test_jsonata_choice(self):
        sm = load({
            "QueryLanguage": "JSONata",
            "StartAt": "Size",
            "States": {
                "Size": {
                    "Type": "Choice",
                    "Choices": [
                        {
                            "Condition": "{% $states.input.n > 10 %}",
                            "Output": {"size": "big"},
                            "Next": "Done"
                        }
                    ],
                    "Default": "Done"
                },
                "Done": {"Type": "Succeed"}
            }
        })
        self.assertEqual(sm.execute_sync({"n": 20}), {"size": "big"})
        self.assertEqual(sm.execute_sync({"n": 2}), {"n": 2})

    def test_no_choice_matched_fails_execution(self):
        sm = load({
            "StartAt": "Greeting",
            "States": {
                "Greeting": {
                    "Type": "Choice",
                    "Choices": [
                        {"Variable": "$.v", "StringEquals": "Hello!", "Next": "A"}
                    ]
                },
                "A": {"Type": "Succeed"}
            }
        })
        with self.assertRaises(NoChoiceMatched) as cm:
            sm.execute_sync({"v": "Bye"})
        self.assertEqual(cm.exception.name, "States.NoChoiceMatched")


if __name__ == "__main__":
    unittest.main()

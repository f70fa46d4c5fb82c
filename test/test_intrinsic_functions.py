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
# PYTHONPATH=.. python3 test_intrinsic_functions.py
# PYTHONPATH=.. LOG_LEVEL=DEBUG python3 test_intrinsic_functions.py
#
"""
Tests the Intrinsic Functions described in
https://states-language.net/#intrinsic-functions
https://docs.aws.amazon.com/step-functions/latest/dg/amazon-states-language-intrinsic-functions.html

Most of the examples are those used in the AWS documentation. The last test
runs a state machine with a Parameters field that nests Intrinsic Functions.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import base64, hashlib, unittest

from asl_simulator.asl_exceptions import IntrinsicFailure
from asl_simulator.intrinsic_functions import evaluate_intrinsic_function, split_arguments
from asl_simulator.simulator import load

INPUT = {
    "name": "World",
    "list": [1, 2, 3],
    "duplicates": [1, 2, 3, 3, 3, 3, 3, 3, 4],
    "object": {"a": 1, "b": [1, 2]},
    "json": "{\"number\": 20}",
}

CONTEXT = {"Execution": {"Name": "execution-1"}}


def evaluate(intrinsic, token_generator=None):
    return evaluate_intrinsic_function(intrinsic, INPUT, CONTEXT, token_generator)


class TestIntrinsicFunctions(unittest.TestCase):

    def test_split_arguments(self):
        self.assertEqual(
            split_arguments("'a, b', States.Array(1, 2), $.x"),
            ["'a, b'", "States.Array(1, 2)", "$.x"]
        )
        self.assertEqual(split_arguments(""), [])

    def test_format(self):
        self.assertEqual(evaluate("States.Format('Hello, {}!', $.name)"), "Hello, World!")
        self.assertEqual(
            evaluate("States.Format( 'Hello, {}!' ,   $.name )"), "Hello, World!"
        )
        self.assertEqual(evaluate("States.Format('{}', $$.Execution.Name)"), "execution-1")
        # Non-string values are serialised as JSON
        self.assertEqual(evaluate("States.Format('list={}', $.list)"), "list=[1,2,3]")

    def test_format_escapes(self):
        self.assertEqual(evaluate(r"States.Format('It\'s {}', 'ok')"), "It's ok")
        self.assertEqual(evaluate(r"States.Format('\{{}\}', 'x')"), "{x}")

    def test_format_argument_count(self):
        with self.assertRaises(IntrinsicFailure):
            evaluate("States.Format('{} and {}', 'one')")
        with self.assertRaises(IntrinsicFailure):
            evaluate("States.Format('{}', 'one', 'two')")

    def test_json_conversion(self):
        self.assertEqual(evaluate("States.StringToJson($.json)"), {"number": 20})
        self.assertEqual(evaluate("States.JsonToString($.object)"), '{"a":1,"b":[1,2]}')
        with self.assertRaises(IntrinsicFailure):
            evaluate("States.StringToJson('not json')")

    def test_array(self):
        self.assertEqual(
            evaluate("States.Array('Foo', 2020, $.name, null, true, 1.5)"),
            ["Foo", 2020, "World", None, True, 1.5]
        )

    def test_array_functions(self):
        self.assertEqual(
            evaluate("States.ArrayPartition(States.Array(1, 2, 3, 4, 5, 6, 7), 4)"),
            [[1, 2, 3, 4], [5, 6, 7]]
        )
        self.assertEqual(evaluate("States.ArrayContains($.list, 2)"), True)
        self.assertEqual(evaluate("States.ArrayContains($.list, 5)"), False)
        self.assertEqual(evaluate("States.ArrayRange(1, 9, 2)"), [1, 3, 5, 7, 9])
        self.assertEqual(evaluate("States.ArrayRange(5, 1, -2)"), [5, 3, 1])
        self.assertEqual(evaluate("States.ArrayGetItem($.duplicates, 8)"), 4)
        self.assertEqual(evaluate("States.ArrayLength($.list)"), 3)
        self.assertEqual(evaluate("States.ArrayUnique($.duplicates)"), [1, 2, 3, 4])

    def test_array_failures(self):
        with self.assertRaises(IntrinsicFailure):
            evaluate("States.ArrayRange(1, 2000, 1)")
        with self.assertRaises(IntrinsicFailure):
            evaluate("States.ArrayGetItem($.list, 3)")
        with self.assertRaises(IntrinsicFailure):
            evaluate("States.ArrayLength($.missing)")

    def test_base64(self):
        encoded = base64.b64encode(b"Data to encode").decode("utf-8")
        self.assertEqual(evaluate("States.Base64Encode('Data to encode')"), encoded)
        self.assertEqual(
            evaluate("States.Base64Decode('{}')".format(encoded)), "Data to encode"
        )
        with self.assertRaises(IntrinsicFailure):
            evaluate("States.Base64Decode('%%%')")

    def test_hash(self):
        self.assertEqual(
            evaluate("States.Hash('input data', 'SHA-1')"),
            hashlib.sha1(b"input data").hexdigest()
        )
        self.assertEqual(
            evaluate("States.Hash($.name, 'MD5')"),
            hashlib.md5(b"World").hexdigest()
        )
        with self.assertRaises(IntrinsicFailure):
            evaluate("States.Hash('input data', 'CRC32')")

    def test_json_merge(self):
        self.assertEqual(
            evaluate("States.JsonMerge($.object, States.StringToJson($.json), false)"),
            {"a": 1, "b": [1, 2], "number": 20}
        )
        with self.assertRaises(IntrinsicFailure):
            evaluate("States.JsonMerge($.object, $.object, true)")

    def test_math(self):
        self.assertEqual(evaluate("States.MathAdd(111, -1)"), 110)
        value = evaluate("States.MathRandom(1, 999)")
        self.assertTrue(1 <= value < 999)
        self.assertEqual(
            evaluate("States.MathRandom(1, 999, 1234)"),
            evaluate("States.MathRandom(1, 999, 1234)")
        )
        with self.assertRaises(IntrinsicFailure):
            evaluate("States.MathAdd(1, 'two')")

    def test_string_split(self):
        self.assertEqual(evaluate("States.StringSplit('1,2,3', ',')"), ["1", "2", "3"])
        self.assertEqual(
            evaluate("States.StringSplit('This.is+a,test=string', '.+,=')"),
            ["This", "is", "a", "test", "string"]
        )

    def test_uuid(self):
        self.assertEqual(evaluate("States.UUID()", lambda: "token-1"), "token-1")
        self.assertEqual(len(evaluate("States.UUID()")), 36)

    def test_unknown_function(self):
        with self.assertRaises(IntrinsicFailure):
            evaluate("States.Nope(1)")
        with self.assertRaises(IntrinsicFailure):
            evaluate("NotAnIntrinsic")

    def test_intrinsic_functions_in_state_machine(self):
        sm = load({
            "StartAt": "Describe",
            "States": {
                "Describe": {
                    "Type": "Pass",
                    "Parameters": {
                        "summary.$": "States.Format('{} has {} items', $.name, States.ArrayLength($.list))",
                        "chunks.$": "States.ArrayPartition($.list, 2)",
                        "id.$": "States.UUID()",
                    },
                    "End": True
                }
            }
        }, options={"token_generator": lambda: "fixed-uuid"})
        output = sm.execute_sync(INPUT)
        self.assertEqual(output, {
            "summary": "World has 3 items",
            "chunks": [[1, 2], [3]],
            "id": "fixed-uuid",
        })


if __name__ == "__main__":
    unittest.main()

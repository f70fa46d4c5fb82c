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
https://docs.aws.amazon.com/step-functions/latest/dg/transforming-data.html

When a state uses the JSONata query language, any string field value of the
form "{% <expression> %}" is a JSONata expression https://jsonata.org/ which
is evaluated against the execution's variables. The reserved states variable
holds states.input, states.context and, where relevant, states.result and
states.errorOutput, alongside any variables created by Assign.

Each top-level variable is bound both as a field of the document the
expression is evaluated against and as a JSONata $variable, so states.input
and $states.input resolve to the same value.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import jsonata  # pip3 install jsonata-python

from asl_simulator.asl_exceptions import QueryEvaluationError


def is_jsonata_expression(value):
    return (
        isinstance(value, str) and
        value.startswith("{%") and
        value.endswith("%}") and
        len(value) >= 4
    )


def evaluate_jsonata_string(value, variables):
    if not is_jsonata_expression(value):
        return value

    source = value[2:-2].strip()
    try:
        expression = jsonata.Jsonata(source)
        for name, binding in variables.items():
            expression.assign(name, binding)
        return expression.evaluate(variables)
    except Exception as e:
        raise QueryEvaluationError(
            "JSONata expression {} failed with {}".format(value, e)
        ) from e


def evaluate_jsonata(value, variables):
    """
    Recursively evaluate every JSONata expression string in value, which may be
    a string, an object or an array. The value is never modified in place, a
    new structure is returned, so a definition can be executed many times.
    """
    if isinstance(value, str):
        return evaluate_jsonata_string(value, variables)
    elif isinstance(value, dict):
        return {k: evaluate_jsonata(v, variables) for k, v in value.items()}
    elif isinstance(value, list):
        return [evaluate_jsonata(item, variables) for item in value]
    return value

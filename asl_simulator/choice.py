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
https://states-language.net/spec.html#choice-state
https://docs.aws.amazon.com/step-functions/latest/dg/amazon-states-language-choice-state.html

A Choice state (identified by "Type":"Choice") adds branching logic to a state
machine. A Choice state MUST have a Choices field whose value is a non-empty
array. Each element of the array is called a Choice Rule.

The interpreter attempts pattern-matches against the Choice Rules in array
order and transitions to the state specified in the Next field on the first
Choice Rule where there is a match. Choice states MAY have a Default field,
which will execute if none of the Choice Rules match. The interpreter will
raise a run-time States.NoChoiceMatched error if a Choice state fails to match
a Choice Rule and no Default transition was specified.

A Choice Rule is expected to contain exactly one operator. If a rule contains
more than one the first found in RULE_ORDER below is the only one honoured.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import operator, re

from asl_simulator.asl_exceptions import NoChoiceMatched, PathMatchFailure, Runtime
from asl_simulator.jsonata_expressions import evaluate_jsonata
from asl_simulator.state_engine_paths import apply_path
from asl_simulator.timestamps import parse_rfc3339_datetime

TIMESTAMP_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})$"
)

COMPARISON_OPERATORS = [
    ("Equals", operator.eq),
    ("LessThan", operator.lt),
    ("LessThanEquals", operator.le),
    ("GreaterThan", operator.gt),
    ("GreaterThanEquals", operator.ge),
]

COMPARISON_TYPES = ["String", "Numeric", "Boolean", "Timestamp"]

"""
Map each data-test field name e.g. NumericLessThanPath to a tuple of
(type, operator, operand_is_path). Booleans only support equality.
"""
COMPARISONS = {}
for op_name, op in COMPARISON_OPERATORS:
    for suffix, is_path in (("", False), ("Path", True)):
        for comparison_type in COMPARISON_TYPES:
            if comparison_type == "Boolean" and op_name != "Equals":
                continue
            field = comparison_type + op_name + suffix
            COMPARISONS[field] = (comparison_type, op, is_path)

RULE_ORDER = (
    ["Not", "Or", "And"] +
    list(COMPARISONS) +
    [
        "CaseInsensitiveStringEquals",
        "IsNull",
        "IsPresent",
        "IsNumeric",
        "IsString",
        "IsBoolean",
        "IsTimestamp",
        "StringMatches",
    ]
)

_MISSING = object()


def isnumber(x):
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def istimestamp(x):
    return isinstance(x, str) and TIMESTAMP_PATTERN.match(x) is not None


def matches_type(comparison_type, value):
    if comparison_type == "String":
        return isinstance(value, str)
    elif comparison_type == "Numeric":
        return isnumber(value)
    elif comparison_type == "Boolean":
        return isinstance(value, bool)
    else:
        return istimestamp(value)


def resolve(input, context, path):
    """
    Return the value at path, or _MISSING if the path doesn't match anything
    so that IsPresent can tell a null value apart from an absent one.
    """
    try:
        return apply_path(input, context, path)
    except PathMatchFailure:
        return _MISSING


def string_matches(value, pattern):
    """
    StringMatches is a glob where * matches any sequence of characters and \\*
    is a literal asterisk. The literal segments between the wildcards must all
    appear in order, without overlapping, and the pattern is anchored to both
    ends of the string.
    """
    segments = [
        segment.replace("\\*", "*")
        for segment in re.split(r"(?<!\\)\*", pattern)
    ]
    if len(segments) == 1:
        return value == segments[0]

    first, last = segments[0], segments[-1]
    if not value.startswith(first):
        return False
    position = len(first)
    for segment in segments[1:-1]:
        index = value.find(segment, position)
        if index < 0:
            return False
        position = index + len(segment)
    return len(value) - len(last) >= position and value.endswith(last)


def evaluate_choice_rule(rule, input, context=None):
    """
    Evaluate a single (possibly nested) Choice Rule against the state's input,
    returning True or False. Paths beginning with $$ address the Context Object.
    """
    field = next((name for name in RULE_ORDER if name in rule), None)
    if field is None:
        raise Runtime("Choice Rule {} does not contain a data-test expression".format(rule))
    value = rule[field]

    if field == "Not":
        return not evaluate_choice_rule(value, input, context)
    if field == "Or":
        return any(evaluate_choice_rule(r, input, context) for r in value)
    if field == "And":
        return all(evaluate_choice_rule(r, input, context) for r in value)

    variable = resolve(input, context, rule.get("Variable"))

    if field in COMPARISONS:
        comparison_type, op, is_path = COMPARISONS[field]
        if is_path:
            value = resolve(input, context, value)
        if not (matches_type(comparison_type, variable) and
                matches_type(comparison_type, value)):
            return False
        if comparison_type == "Timestamp":
            """
            Different rfc3339 representations can refer to the same instant,
            e.g. Zulu time or local time plus offset, so compare instants.
            """
            try:
                variable = parse_rfc3339_datetime(variable)
                value = parse_rfc3339_datetime(value)
            except ValueError:
                return False
        return op(variable, value)

    if field == "CaseInsensitiveStringEquals":
        # Not covered in the ASL spec but useful and trivial to handle.
        return (isinstance(variable, str) and isinstance(value, str) and
                variable.lower() == value.lower())
    if field == "IsPresent":
        return (variable is not _MISSING) == value
    if field == "IsNull":
        return (variable is None) == value
    if field == "IsNumeric":
        return isnumber(variable) == value
    if field == "IsString":
        return isinstance(variable, str) == value
    if field == "IsBoolean":
        return isinstance(variable, bool) == value
    if field == "IsTimestamp":
        return istimestamp(variable) == value

    # StringMatches
    return (isinstance(variable, str) and isinstance(value, str) and
            string_matches(variable, value))


def run_choice(state, input, context=None):
    """
    Return the name of the next state for a JSONPath Choice state, which is
    the Next of the first Choice Rule that matches, else the Default.
    """
    for choice in state.get("Choices", []):
        if evaluate_choice_rule(choice, input, context):
            return choice.get("Next")

    if state.get("Default"):
        return state["Default"]

    raise NoChoiceMatched()


def run_jsonata_choice(state, variables):
    """
    In JSONata Choice states each Choice Rule has a Condition expression. The
    first rule whose Condition is true wins and its Assign and Output fields
    (if any) are returned so the data flow can apply them, e.g.
    return ("NextState", {"Condition": ..., "Next": ..., "Output": ...})
    The rule is None when the Default is taken.
    """
    for choice in state.get("Choices", []):
        if evaluate_jsonata(choice.get("Condition"), variables):
            return choice.get("Next"), choice

    if state.get("Default"):
        return state["Default"], None

    raise NoChoiceMatched()

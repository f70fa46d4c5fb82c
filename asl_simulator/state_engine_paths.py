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
https://states-language.net/spec.html#filters

A state may want to process only a subset of its input data, and may want that
data structured differently from the way it appears in the input. Similarly, it
may want to control the format and content of the data that it passes on as
output.

Fields named "InputPath", "Parameters", "ResultSelector", "ResultPath" and
"OutputPath" exist to support this when a state uses the JSONPath query
language. The functions here are the primitives the JSONPath data flow is
built from.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import copy, re

"""
ASL paths use JSONPath.
https://goessner.net/articles/JsonPath/
http://www.ultimate.com/phil/python/#jsonpath
Note jsponpath_rw doesn't seem to correctly support many of the test cases
from the goessner link above.
"""
from jsonpath import jsonpath  # pip3 install jsonpath

from asl_simulator import intrinsic_functions
from asl_simulator.asl_exceptions import (
    ParameterPathFailure,
    PathMatchFailure,
    ResultPathMatchFailure,
)


def normalise_path(path):
    """
    Definitions commonly index arrays as $.a.[1], which isn't valid for every
    JSONPath implementation, so normalise that to $.a[1]
    """
    return path.replace(".[", "[")


def apply_jsonpath(input, path="$"):
    """
    Performs the InputPath and OutputPath logic described in the ASL spec.
    https://states-language.net/spec.html#filters
    This is mostly just calling jsonpath() and applying the specified defaults.

    If InputPath or OutputPath is null the state behaves as if it received an
    empty JSON object. A path that fails to match raises PathMatchFailure, as
    AWS Step Functions fails executions in this case.
    """
    if path == None:
        return {}
    if path == "$":
        return input
    if input == None:
        input = {}

    path = normalise_path(path)
    result = jsonpath(input, path)

    if result == False:
        raise PathMatchFailure(
            "Invalid path '{}' applied to input '{}'".format(path, input)
        )

    """
    The following is a little subtle. Unfortunately the JSONPath specification
    is vague on a few points and Python jsonpath returns a list of matches,
    but for most scenarios if a single item matches it is more intuitive to
    have that item returned rather than a list that contains that item, which
    is how the Java Jayway implementation used by AWS behaves. The exception
    is where the path contains an array slice or wildcard operator because
    then we intuitively expect to return an array even if only a single item
    is matched.
    """
    if len(result) == 1:
        path_returns_list = re.search(r"\[.*:.*\]|\*", path)
        if not path_returns_list:
            return result[0]

    return result


def apply_path(input, context, path="$"):
    """
    https://states-language.net/spec.html#path

    A Path is a string, beginning with "$", used to identify components with a
    JSON text. The syntax is that of JSONPath.

    When a Path begins with "$$", two dollar signs, this signals that it is
    intended to identify content within the Context Object. The first dollar
    sign is stripped, and the remaining text, which begins with a dollar sign,
    is interpreted as the JSONPath applying to the Context Object.
    """
    if path == None or not isinstance(path, str):
        return {}
    if not path.startswith("$"):
        raise ParameterPathFailure("{} must be a JSONPath".format(path))
    if path.startswith("$$"):  # Use Context object, not input
        return apply_jsonpath(context, path[1:])
    else:
        return apply_jsonpath(input, path)


def apply_resultpath(input, result, path="$"):
    """
    Performs the ResultPath logic described in the ASL spec.
    https://states-language.net/spec.html#filters

    The value of "ResultPath" MUST be a Reference Path, which specifies the raw
    input's combination with or replacement by the state's result.

    If the value of ResultPath is null, that means that the state's own raw
    output is discarded and its raw input becomes its result. If it is "$"
    (the default) or an empty string the result replaces the input entirely.

    Otherwise the result is placed at the path relative to the raw input. If
    the input has a field which matches the ResultPath value, then in the
    output, that field is discarded and overwritten by the result. Otherwise,
    a new field is created, along with any missing intermediate objects. The
    raw input is deep copied first so the caller's data is never modified.
    """
    def update_path(target, keys, default):
        if len(keys) == 0:
            return default
        key = keys.pop(0)
        if isinstance(target, list):
            try:
                i = int(key)
                target[i] = update_path(target[i], keys, default)
            except (ValueError, IndexError) as e:
                raise ResultPathMatchFailure(
                    "Cannot apply ResultPath {}: {}".format(path, e)
                )
        elif isinstance(target, dict):
            try:  # Test if key is (incorrectly) an int.
                int(key)
                raise ResultPathMatchFailure(
                    "Object index {} is not a valid key string".format(key)
                )
            except ValueError:
                target[key] = update_path(target.get(key, {}), keys, default)
        else:
            raise ResultPathMatchFailure(
                "Cannot use key {} to index a primitive type".format(key)
            )
        return target

    if path == None:
        return input
    if path == "" or path == "$":
        return result
    if not isinstance(path, str) or not path.startswith("$"):
        raise ResultPathMatchFailure("{} must be a Reference Path".format(path))
    if path.startswith("$$"):
        """
        The value of "ResultPath" MUST NOT begin with "$$"; i.e. it may not be
        used to insert content into the Context Object.
        """
        raise ResultPathMatchFailure(
            "The value of \"ResultPath\" MUST NOT begin with \"$$\""
        )

    target = {} if input == None else copy.deepcopy(input)
    matches = re.findall(r"[^$.[\]'\"]+", path)  # Split the reference path
    return update_path(target, matches, result)


def evaluate_payload_template(input, context, template, token_generator=None):
    """
    https://states-language.net/spec.html#payload-template

    A state machine interpreter dispatches data as input to tasks to do useful
    work, and receives output back from them. It is frequently desired to
    reshape input data to meet the format expectations of tasks, and similarly
    to reshape the output coming back. A JSON object structure called a Payload
    Template is provided for this purpose.

    The value of "Parameters" (and of "ItemSelector" in a Map state) MUST be a
    Payload Template whose input is the result of applying the InputPath to
    the raw input. The value of "ResultSelector" MUST be a Payload Template,
    whose input is the result, and whose payload replaces and becomes the
    effective result.

    If any field within the Payload Template (however deeply nested) has a name
    ending with the characters ".$", its value is transformed and the field is
    renamed to strip the ".$" suffix.

    If the field value begins with only one "$", the value MUST be a Path. In
    this case, the Path is applied to the Payload Template's input and is the
    new field value.

    If the field value begins with "$$", the first dollar sign is stripped and
    the remainder MUST be a Path. In this case, the Path is applied to the
    Context Object and is the new field value.

    If the field value does not begin with "$", it MUST be an Intrinsic Function.
    The interpreter invokes the Intrinsic Function and the result is the new value.

    If the path is legal but cannot be applied successfully, the interpreter
    fails the machine execution with an Error Name of "States.ParameterPathFailure".
    If the Intrinsic Function fails during evaluation, the interpreter fails the
    machine execution with an Error Name of "States.IntrinsicFailure".
    """

    def evaluate(k, v):
        """
        Evaluate and expand fields whose name ends with ".$" as described above
        """
        if not (isinstance(k, str) and k.endswith(".$")):
            return k, v

        k = k[:-2]  # strip ".$" from end
        if not isinstance(v, str):
            raise ParameterPathFailure(
                "The value of field {}.$ must be a Path or Intrinsic Function".format(k)
            )
        if v == "$":  # It's a path representing the root node
            v = copy.deepcopy(input)  # avoid aliasing the input
        elif v.startswith("$"):  # It's a path
            try:
                v = apply_path(input, context, v)
            except PathMatchFailure as e:
                raise ParameterPathFailure(e.message)
        else:  # It's an Intrinsic Function
            v = intrinsic_functions.evaluate_intrinsic_function(
                v, input, context, token_generator
            )
        return k, v

    def clone(template):
        """
        Recursively crawl the source JSON template creating a clone of its
        structure but evaluating and expanding fields whose name ends with ".$"
        """
        if isinstance(template, list):
            return [clone(item) for item in template]
        elif isinstance(template, dict):
            target = {}
            for k, v in template.items():
                if isinstance(v, (dict, list)):
                    target[k] = clone(v)
                else:
                    k, v = evaluate(k, v)
                    target[k] = v
            return target
        return template

    if template == None:
        return input
    else:
        return clone(template)

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
ASL Appendix B: List of Intrinsic Functions:
https://states-language.net/#appendix-b
https://docs.aws.amazon.com/step-functions/latest/dg/amazon-states-language-intrinsic-functions.html

Intrinsic Functions are invoked from the values of Payload Template fields
whose names end in ".$" and which don't begin with "$", for example
"greeting.$": "States.Format('Hello, {}!', $.name)"
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import hashlib, random, re, uuid

from asl_simulator import state_engine_paths
from asl_simulator.asl_exceptions import ASLError, IntrinsicFailure

try:  # Attempt to use ujson if available https://pypi.org/project/ujson/
    import ujson as json
except ImportError:  # Fall back to standard library json
    import json

"""
Attempt to use pybase64 libbase64 based codec if available
pip3 install pybase64
https://github.com/mayeut/pybase64
"""
try:
    import pybase64 as base64
except ImportError:  # Fall back to standard library base64
    import base64

INTRINSIC_PATTERN = re.compile(r"^\s*States\.(\w+)\s*\((.*)\)\s*$", re.DOTALL)

# Used when States.MathRandom isn't given a seed.
_random = random.Random()


def to_json_string(value):
    return json.dumps(value, separators=(",", ":"))


def split_arguments(raw_args):
    """
    Split the raw argument string of an Intrinsic Function into the individual
    argument strings. Arguments are separated by commas, but string literals
    delimited by apostrophes and nested Intrinsic Functions may contain commas
    too, so track whether we are inside a string or a parenthesised call.
    A backslash escapes the following character inside a string.
    """
    args = []
    current = []
    in_string = False
    escaped = False
    depth = 0
    for c in raw_args:
        if escaped:
            escaped = False
        elif c == "\\" and in_string:
            escaped = True
        elif c == "'":
            in_string = not in_string
        elif not in_string:
            if c == "(":
                depth += 1
            elif c == ")":
                depth -= 1
            elif c == "," and depth == 0:
                args.append("".join(current).strip())
                current = []
                continue
        current.append(c)

    if in_string or depth != 0:
        raise IntrinsicFailure(
            "Intrinsic Function arguments {} are unbalanced.".format(raw_args)
        )

    last = "".join(current).strip()
    if last or args:
        args.append(last)
    return args


def unquote(arg):
    """
    Strip the enclosing apostrophes from a string literal and resolve its
    escape sequences, e.g. 'It\\'s' becomes It's
    Escaped braces are left for States.Format to resolve, as it must tell
    them apart from its {} placeholders.
    """
    return re.sub(r"\\([^{}])", r"\1", arg[1:-1], flags=re.DOTALL)


class IntrinsicFunctions(object):
    """
    Evaluates Intrinsic Functions against a Payload Template's input and the
    Context Object. Paths passed as arguments are resolved against those, and
    States.UUID uses the token generator so that tests can be deterministic.
    """

    def __init__(self, input, context, token_generator=None):
        self.input = input
        self.context = context
        self.token_generator = token_generator

    def evaluate(self, intrinsic):
        match = INTRINSIC_PATTERN.match(intrinsic) if isinstance(intrinsic, str) else None
        if not match:
            raise IntrinsicFailure(
                "{} is not a valid Intrinsic Function.".format(intrinsic)
            )
        name, raw_args = match.groups()
        args = [self.evaluate_argument(name, arg) for arg in split_arguments(raw_args)]

        """
        The "asl_intrinsic_" prefix mitigates the risk of the supplied name
        executing an arbitrary method, so disable semgrep warning.
        """
        # nosemgrep
        return getattr(
            self, "asl_intrinsic_" + name, self.asl_intrinsic_Default
        )(name, args)

    def evaluate_argument(self, name, arg):
        """
        Intrinsic Function arguments may be strings enclosed by apostrophe (')
        characters, numbers, null, Paths, or nested Intrinsic Functions. The
        ASL spec doesn't explicitly include booleans, however as States.Array
        returns a JSON array containing the values of its arguments, the
        implication is that arguments could be any JSON primitive.
        """
        if arg.startswith("'") and arg.endswith("'") and len(arg) > 1:
            return unquote(arg)
        elif arg.startswith("$"):
            try:
                return state_engine_paths.apply_path(self.input, self.context, arg)
            except ASLError as e:
                raise IntrinsicFailure(
                    "States.{} failed to resolve argument {}: {}".format(name, arg, e.message)
                )
        elif arg.startswith("States."):
            return self.evaluate(arg)
        elif arg == "null":
            return None
        elif arg == "true":
            return True
        elif arg == "false":
            return False

        try:
            return int(arg)
        except ValueError:
            try:
                return float(arg)
            except ValueError:
                raise IntrinsicFailure(
                    "Intrinsic Function States.{}, invalid argument {}.".format(name, arg)
                )

    def asl_intrinsic_Default(self, name, args):
        raise IntrinsicFailure(
            "Intrinsic Function States.{} is not supported.".format(name)
        )

    def asl_intrinsic_Format(self, name, args):
        """
        The first argument is a string containing {} placeholders which are
        replaced in order by the remaining arguments. Literal braces and
        backslashes may be escaped with a backslash.
        """
        if len(args) < 1 or not isinstance(args[0], str):
            raise IntrinsicFailure(
                "States.Format failed, requires a template string argument."
            )
        values = args[1:]
        pieces = re.split(r"(\\.|\{\})", args[0])
        result = []
        for piece in pieces:
            if piece == "{}":
                if not values:
                    raise IntrinsicFailure(
                        "States.Format failed, too few arguments for template."
                    )
                value = values.pop(0)
                result.append(value if isinstance(value, str) else to_json_string(value))
            elif piece.startswith("\\") and len(piece) == 2:
                result.append(piece[1])
            else:
                result.append(piece)
        if values:
            raise IntrinsicFailure(
                "States.Format failed, too many arguments for template."
            )
        return "".join(result)

    def asl_intrinsic_StringToJson(self, name, args):
        if len(args) != 1 or not isinstance(args[0], str):
            raise IntrinsicFailure(
                "States.StringToJson failed, requires a single string argument."
            )
        try:
            return json.loads(args[0])
        except ValueError as e:
            raise IntrinsicFailure(
                "States.StringToJson failed with {}.".format(e)
            )

    def asl_intrinsic_JsonToString(self, name, args):
        if len(args) != 1:
            raise IntrinsicFailure(
                "States.JsonToString failed, requires a single argument."
            )
        try:
            return to_json_string(args[0])
        except (TypeError, OverflowError) as e:
            raise IntrinsicFailure(
                "States.JsonToString failed with {}.".format(e)
            )

    def asl_intrinsic_Array(self, name, args):
        return args

    def asl_intrinsic_ArrayPartition(self, name, args):
        if len(args) != 2 or not isinstance(args[0], list):
            raise IntrinsicFailure(
                "States.ArrayPartition failed, requires an array and a chunk size."
            )
        array, size = args
        if not is_integer(size) or size <= 0:
            raise IntrinsicFailure(
                "States.ArrayPartition failed, chunk size must be a positive integer."
            )
        return [array[i:i + size] for i in range(0, len(array), size)]

    def asl_intrinsic_ArrayContains(self, name, args):
        if len(args) != 2 or not isinstance(args[0], list):
            raise IntrinsicFailure(
                "States.ArrayContains failed, requires an array and a value."
            )
        return args[1] in args[0]

    def asl_intrinsic_ArrayRange(self, name, args):
        if len(args) != 3 or not all(is_integer(arg) for arg in args):
            raise IntrinsicFailure(
                "States.ArrayRange failed, requires three integer arguments."
            )
        start, end, step = args
        if step == 0:
            raise IntrinsicFailure(
                "States.ArrayRange failed, the step cannot be zero."
            )
        # The range is inclusive of end, Python's range() is exclusive.
        array = list(range(start, end + (1 if step > 0 else -1), step))
        if len(array) > 1000:
            raise IntrinsicFailure(
                "States.ArrayRange failed with > 1000 items in range."
            )
        return array

    def asl_intrinsic_ArrayGetItem(self, name, args):
        if len(args) != 2 or not isinstance(args[0], list):
            raise IntrinsicFailure(
                "States.ArrayGetItem failed, requires an array and an index."
            )
        array, index = args
        if not is_integer(index) or index < 0 or index >= len(array):
            raise IntrinsicFailure(
                "States.ArrayGetItem failed, index {} is out of bounds.".format(index)
            )
        return array[index]

    def asl_intrinsic_ArrayLength(self, name, args):
        if len(args) != 1 or not isinstance(args[0], list):
            raise IntrinsicFailure(
                "States.ArrayLength failed, requires a single array argument."
            )
        return len(args[0])

    def asl_intrinsic_ArrayUnique(self, name, args):
        if len(args) != 1 or not isinstance(args[0], list):
            raise IntrinsicFailure(
                "States.ArrayUnique failed, requires a single array argument."
            )
        # Items may be unhashable objects, so preserve order with a linear scan.
        unique = []
        for item in args[0]:
            if item not in unique:
                unique.append(item)
        return unique

    def asl_intrinsic_Base64Encode(self, name, args):
        if len(args) != 1 or not isinstance(args[0], str):
            raise IntrinsicFailure(
                "States.Base64Encode failed, requires a single string argument."
            )
        return base64.b64encode(args[0].encode("utf-8")).decode("utf-8")

    def asl_intrinsic_Base64Decode(self, name, args):
        if len(args) != 1 or not isinstance(args[0], str):
            raise IntrinsicFailure(
                "States.Base64Decode failed, requires a single string argument."
            )
        try:
            return base64.b64decode(args[0].encode("utf-8"), validate=True).decode("utf-8")
        except ValueError as e:  # binascii.Error and UnicodeDecodeError
            raise IntrinsicFailure(
                "States.Base64Decode failed with {}.".format(e)
            )

    def asl_intrinsic_Hash(self, name, args):
        algorithms = {
            "MD5": hashlib.md5,
            "SHA-1": hashlib.sha1,
            "SHA-256": hashlib.sha256,
            "SHA-384": hashlib.sha384,
            "SHA-512": hashlib.sha512,
        }
        if len(args) != 2 or not isinstance(args[0], str):
            raise IntrinsicFailure(
                "States.Hash failed, requires a string and an algorithm name."
            )
        data, algorithm = args
        if algorithm not in algorithms:
            raise IntrinsicFailure(
                "States.Hash failed, invalid algorithm {}.".format(algorithm)
            )
        return algorithms[algorithm](data.encode("utf-8")).hexdigest()

    def asl_intrinsic_JsonMerge(self, name, args):
        if len(args) != 3 or not isinstance(args[0], dict) or not isinstance(args[1], dict):
            raise IntrinsicFailure(
                "States.JsonMerge failed, requires two objects and a deep merge flag."
            )
        if args[2] is not False:
            raise IntrinsicFailure(
                "States.JsonMerge failed, only the shallow merging mode is supported."
            )
        return {**args[0], **args[1]}

    def asl_intrinsic_MathRandom(self, name, args):
        """
        Returns a random integer between start (inclusive) and end (exclusive).
        The optional third argument seeds a private generator, so a seeded call
        is repeatable and doesn't disturb the global random module.
        """
        if len(args) not in (2, 3) or not is_integer(args[0]) or not is_integer(args[1]):
            raise IntrinsicFailure(
                "States.MathRandom failed, requires integer start and end arguments."
            )
        generator = random.Random(args[2]) if len(args) == 3 else _random
        try:
            return generator.randrange(args[0], args[1])
        except ValueError as e:
            raise IntrinsicFailure(
                "States.MathRandom failed with {}.".format(e)
            )

    def asl_intrinsic_MathAdd(self, name, args):
        if len(args) != 2 or not is_integer(args[0]) or not is_integer(args[1]):
            raise IntrinsicFailure(
                "States.MathAdd failed, requires two integer arguments."
            )
        return args[0] + args[1]

    def asl_intrinsic_StringSplit(self, name, args):
        """
        Each character of the second argument is a delimiter, so we can't simply
        use Python's split() and use a regex character class instead.
        """
        if (len(args) != 2 or not isinstance(args[0], str) or
                not isinstance(args[1], str) or args[1] == ""):
            raise IntrinsicFailure(
                "States.StringSplit failed, requires a string and delimiter characters."
            )
        return re.split("[" + re.escape(args[1]) + "]", args[0])

    def asl_intrinsic_UUID(self, name, args):
        if len(args) != 0:
            raise IntrinsicFailure(
                "States.UUID failed, this intrinsic takes no arguments."
            )
        if self.token_generator:
            return self.token_generator()
        return str(uuid.uuid4())


def is_integer(value):
    # bool is a subclass of int but true and false aren't valid counts
    return isinstance(value, int) and not isinstance(value, bool)


def evaluate_intrinsic_function(intrinsic, input, context, token_generator=None):
    return IntrinsicFunctions(input, context, token_generator).evaluate(intrinsic)

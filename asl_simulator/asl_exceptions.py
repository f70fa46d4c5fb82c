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
Defines the exceptions relating to ASL itself as defined in
https://states-language.net/spec.html#appendix-a plus the simulator specific
ValidationError and SimulatorError.

Each exception carries a "name", which is the Error Name that Retriers and
Catchers match in their ErrorEquals field, and a message, which becomes the
Cause of the Error Output.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

ERROR_WILDCARD = "States.ALL"


class ASLError(Exception):
    name = "States.Runtime"

    def __init__(self, message=""):
        super().__init__(message)
        self.message = message

    def to_error_output(self):
        """
        When a state reports an error and it matches a Catcher the state's
        Result is a JSON object called the Error Output, which has a field
        named Error containing the Error Name and a field named Cause
        containing human-readable text about the error.
        """
        return {"Error": self.name, "Cause": self.message}


class ValidationError(ASLError):
    """The definition failed validation, raised by load() and never caught."""
    name = "ValidationError"


class SimulatorError(ASLError):
    """
    The definition uses something this simulator doesn't implement. This
    signals a gap in the simulator rather than a failure of the state machine.
    """
    name = "SimulatorError"


class Runtime(ASLError):
    name = "States.Runtime"


class Fail(Runtime):
    """Raised by a Fail state, the Error and Cause are declared by the state."""

    def __init__(self, error=None, cause=None):
        super().__init__(cause if cause is not None else "State machine failed")
        self.name = error if error is not None else "Failed"


class Timeout(Runtime):
    name = "States.Timeout"

    def __init__(self, message=(
        "A Task State either ran longer than the \"TimeoutSeconds\" value, or "
        "failed to heartbeat for a time longer than the \"HeartbeatSeconds\" "
        "value."
    )):
        super().__init__(message)


class TaskFailed(Runtime):
    name = "States.TaskFailed"


class ResultPathMatchFailure(Runtime):
    name = "States.ResultPathMatchFailure"


class ParameterPathFailure(Runtime):
    name = "States.ParameterPathFailure"


class IntrinsicFailure(Runtime):
    name = "States.IntrinsicFailure"


class QueryEvaluationError(Runtime):
    """A JSONata expression failed to evaluate."""
    name = "States.QueryEvaluationError"


class BranchFailed(Runtime):
    name = "States.BranchFailed"

    def __init__(self, message="A branch of a Parallel State failed."):
        super().__init__(message)


class NoChoiceMatched(Runtime):
    name = "States.NoChoiceMatched"

    def __init__(self, message=(
        "A Choice State failed to find a match for the condition field "
        "extracted from its input."
    )):
        super().__init__(message)


# Not defined in the ASL spec but used in the Choice state path handling.
class PathMatchFailure(Runtime):
    name = "States.Runtime"


def error_name(e):
    """
    Return the Error Name used to match Retriers and Catchers. Errors raised
    by the simulator carry their ASL name, any other exception (for example a
    custom exception raised by a Lambda resource) is known by its class name.
    """
    if isinstance(e, ASLError):
        return e.name
    return type(e).__name__


def error_output(e):
    if isinstance(e, ASLError):
        return e.to_error_output()
    return {"Error": error_name(e), "Cause": str(e)}

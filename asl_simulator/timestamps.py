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
Time related helpers. The simulator doesn't promise wall-clock accurate
timers, a Wait state or a Retry backoff only actually suspends the execution
when the simulate_wait option is set, otherwise it is a logical no-op that
preserves the sequencing of the state machine.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import asyncio
from datetime import datetime, timezone, timedelta


def parse_rfc3339_datetime(rfc3339):
    """
    Parse an RFC3339 (https://www.ietf.org/rfc/rfc3339.txt) format string into
    a datetime object which is essentially the inverse operation to
    datetime.now(timezone.utc).astimezone().isoformat()
    Raises ValueError if the string is not a valid timestamp.
    """
    rfc3339 = rfc3339.strip()  # Remove any leading/trailing whitespace
    if rfc3339[-1:] in ("Z", "z"):
        date = rfc3339[:-1]
        offset = "+00:00"
    else:
        date = rfc3339[:-6]
        offset = rfc3339[-6:]

    if len(offset) != 6 or offset[0] not in "+-" or offset[3] != ":":
        raise ValueError("{} has no valid UTC offset".format(rfc3339))

    if "." not in date:
        date = date + ".0"
    else:  # strptime %f only accepts up to microsecond precision
        seconds, fraction = date.split(".", 1)
        date = seconds + "." + fraction[:6]
    raw_datetime = datetime.strptime(date, "%Y-%m-%dT%H:%M:%S.%f")
    delta = timedelta(hours=int(offset[1:3]), minutes=int(offset[4:6]))
    if offset[0] == "-":
        delta = -delta
    return raw_datetime.replace(tzinfo=timezone(delta))


def now_isoformat():
    """
    The current time in the format used for the Context Object's StartTime
    and EnteredTime fields e.g. 2019-08-08T10:55:25.325Z
    """
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + "{:03d}Z".format(
        now.microsecond // 1000
    )


def seconds_until(rfc3339):
    """
    Seconds from now until the supplied timestamp, zero if it is in the past.
    """
    target = parse_rfc3339_datetime(rfc3339)
    return max((target - datetime.now(timezone.utc)).total_seconds(), 0)


async def wait(seconds, simulator_context):
    if simulator_context.options.get("simulate_wait") and seconds > 0:
        await asyncio.sleep(seconds)

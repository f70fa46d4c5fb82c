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
AWS resources are identified by Amazon Resource Names (ARNs) specified here:
http://docs.aws.amazon.com/general/latest/gr/aws-arns-and-namespaces.html
The simulator doesn't talk to AWS, so ARNs are only used to pick out the
service and the name of the resource a Task refers to and to give executions
plausible looking identifiers.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

# Region and account used for the identifiers the simulator creates itself.
SIMULATOR_REGION = "local"
SIMULATOR_ACCOUNT = "123456789012"


def create_arn(
    resource="",
    partition="aws",
    service="",
    region="",
    account="",
    resource_type=None,
):
    """
    Create an ARN string from its component parts.
    """
    if resource_type:
        resource = resource_type + ":" + resource
    return "arn:{}:{}:{}:{}:{}".format(
        partition, service, region, account, resource
    )


def parse_arn(arn):
    """
    Parse an ARN into a dictionary comprising the component parts of the ARN.
    Raises ValueError if the string doesn't have the six mandatory elements.
    """
    elements = arn.split(":", 5) if isinstance(arn, str) else []
    if len(elements) != 6 or elements[0] != "arn":
        raise ValueError("{} is not a valid ARN".format(arn))

    result = {
        "partition": elements[1],
        "service": elements[2],
        "region": elements[3],
        "account": elements[4],
        "resource": elements[5],
        "resource_type": None,
    }
    if "/" in result["resource"]:
        result["resource_type"], result["resource"] = result["resource"].split("/", 1)
    elif ":" in result["resource"]:
        result["resource_type"], result["resource"] = result["resource"].split(":", 1)
    return result


def resource_name(name_or_arn):
    """
    Resources may be referenced by plain name or by ARN, e.g. the FunctionName
    of a lambda:invoke Task may be "my-function" or
    arn:aws:lambda:eu-west-2:123456789012:function:my-function:$LATEST
    In the ARN case the name is the resource with any version/alias removed.
    """
    if not isinstance(name_or_arn, str) or not name_or_arn.startswith("arn:"):
        return name_or_arn
    resource = parse_arn(name_or_arn)["resource"]
    return resource.split(":", 1)[0]


def state_machine_arn(name):
    return create_arn(
        service="states",
        region=SIMULATOR_REGION,
        account=SIMULATOR_ACCOUNT,
        resource_type="stateMachine",
        resource=name,
    )


def execution_arn(state_machine_name, execution_name):
    return create_arn(
        service="states",
        region=SIMULATOR_REGION,
        account=SIMULATOR_ACCOUNT,
        resource_type="execution",
        resource=state_machine_name + ":" + execution_name,
    )

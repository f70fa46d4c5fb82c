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

from setuptools import setup, find_packages

setup(
    name="asl_simulator",
    version="1.0.0",
    description="A local simulator for the Amazon States Language (ASL).",
    long_description="A local simulator for the Amazon States Language (ASL). It executes AWS Step Functions state machine definitions, in either the JSONPath or JSONata query language, against local stand-ins for Lambda, S3, SNS, SQS and Step Functions resources, so state machines can be unit tested without deploying them.",
    packages=find_packages(exclude=["test", "test.*"]),
    install_requires=["structlog",
                      "ujson>=5.2",
                      "jsonpath",
                      "jsonata-python",
                      "opentracing>=2.2",
                      "aioprometheus"]
)

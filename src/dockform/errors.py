# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Exceptions raised while parsing, resolving and validating documents.

Every error carries a message naming the offending token, so a failure
can be reproduced from the message alone.
"""


class DockformError(Exception):
    """Base class for all dockform errors."""
    pass


class ParseError(DockformError):
    """Raised when a build script or manifest cannot be parsed."""
    pass


class InstructionSyntaxError(ParseError):
    """Malformed build-script line (bad continuation, bad JSON array, bad quoting)."""
    pass


class UnknownInstructionError(ParseError):
    """Build-script keyword outside the known instruction set."""
    pass


class InvalidArgumentError(ParseError):
    """An argument is present but unusable, e.g. a non-numeric port."""
    pass


class MissingArgumentError(ParseError):
    """A required argument is absent, e.g. HEALTHCHECK without CMD."""
    pass


class ManifestSyntaxError(ParseError):
    """Malformed manifest YAML or a field of the wrong shape."""
    pass


class CircularDependencyError(DockformError):
    """The service dependency graph contains a cycle."""
    pass


class RequirementError(DockformError):
    """A resolved document does not satisfy a caller-supplied requirement."""
    pass


class MissingEnvironmentVariableError(RequirementError):
    pass


class MissingVolumeError(RequirementError):
    pass


class InvalidResourceLimitError(DockformError):
    """Malformed resource limit such as a memory size of "12.5G"."""
    pass

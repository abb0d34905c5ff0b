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
Checks a resolved manifest against caller-supplied requirements.
"""
import logging
from typing import Iterable, Mapping

from ..errors import MissingEnvironmentVariableError, MissingVolumeError
from ..MODELS.orchestration_config import ManifestDocument
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = logging.getLogger(__name__)


class RequirementsValidator:
    """
    Stateless checks; each raises on the first violation it finds.
    """
    @staticmethod
    def validate_required_env_vars(document: ManifestDocument, names: Iterable[str]) -> None:
        """
        Requires every service's inline environment to define each name.

        :raises MissingEnvironmentVariableError: Naming the service and variable.
        """
        names = list(names)
        for service_name, service in document.services.items():
            environment = service.environment or {}
            for name in names:
                if name not in environment:
                    raise MissingEnvironmentVariableError(
                        f"Service '{service_name}' is missing required environment variable: {name}"
                    )

    @staticmethod
    def validate_required_volumes(document: ManifestDocument, names: Iterable[str]) -> None:
        """
        Requires every service to mount each named volume.

        A named volume matches on its own name, a bind mount on its target.

        :raises MissingVolumeError: Naming the service and volume.
        """
        names = list(names)
        for service_name, service in document.services.items():
            volumes = service.volumes or []
            for name in names:
                if not any(volume.matches(name) for volume in volumes):
                    raise MissingVolumeError(
                        f"Service '{service_name}' is missing required volume: {name}"
                    )

    @staticmethod
    def resolve_env_file_path(path: str, variables: Mapping[str, str]) -> str:
        """
        Substitutes variables in an env_file path, strictly.

        Unlike ordinary substitution, a ``${NAME}`` without a default must
        be defined, since reading the wrong file silently is worse than
        failing.

        :param path: The env_file entry as written in the manifest.
        :param variables: Variables available for the path.
        :return: The substituted path.
        :raises MissingEnvironmentVariableError: If a referenced variable is undefined.
        """
        for name in EnvironmentInterpolator.required_names(path):
            if name not in variables:
                raise MissingEnvironmentVariableError(
                    f"Environment variable {name} referenced in env_file path '{path}' is not defined"
                )
        resolved = EnvironmentInterpolator.interpolate(path, variables)
        logger.debug("Resolved env_file path %s -> %s", path, resolved)
        return resolved

    @staticmethod
    def validate_resource_limits(document: ManifestDocument) -> None:
        """
        :raises InvalidResourceLimitError: If a service has a malformed memory size.
        """
        for service in document.services.values():
            if service.resource_requirements is not None:
                service.resource_requirements.to_runtime_limits()

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
Managers for handling environment variables and .env file resolution.
"""
import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from pydantic import ValidationError

from ..errors import ManifestSyntaxError
from ..MODELS.orchestration_config import ManifestDocument
from ..MODELS.service_definition import ServiceSpec, VolumeDefinition
from ..PARSERS.env_parser import EnvParser
from ..PARSERS.surface_syntax import parse_short_volume
from ..UTILS.string_interpolation import EnvironmentInterpolator, substitute_tree
from ..VALIDATORS.requirements import RequirementsValidator

logger = logging.getLogger(__name__)


class EnvironmentManager:
    """
    Manages the merging and resolution of environment variables from multiple sources.

    Precedence, lowest first: the base variables (normally the process
    environment), shared env files, a service's own env_file entries,
    and finally the service's inline ``environment``. The manager never
    reads the process environment or the filesystem itself; callers pass
    variables in and supply ``env_file_reader`` for env_file contents.
    """
    def __init__(self, env_file_reader: Optional[Callable[[str], str]] = None):
        """
        Initializes the environment manager.

        :param env_file_reader: Returns the contents of an env_file path.
        """
        self.env_file_reader = env_file_reader
        self.parser = EnvParser()

    def get_merged_environment(self,
                               base_env: Mapping[str, str],
                               shared_env_contents: Iterable[str] = ()) -> Dict[str, str]:
        """
        Merges the base variables with the contents of shared env files.

        :param base_env: The lowest-precedence variables.
        :param shared_env_contents: Env file contents; later ones override earlier ones.
        :return: A dictionary containing the merged environment variables.
        """
        merged_env = dict(base_env)
        for content in shared_env_contents:
            merged_env.update(self.parser.parse(content))
        return merged_env

    def service_variables(self,
                          base_vars: Mapping[str, str],
                          service: Any) -> Dict[str, str]:
        """
        Builds the variables one service's fields are substituted with.

        Each env_file path is itself resolved against ``base_vars`` before
        it is read. Inline environment values are interpolated once
        against every layer, inline values included, so the returned map
        agrees with the service's substituted ``environment``.

        :param base_vars: System and shared variables.
        :param service: A ServiceSpec, or a mapping with ``env_file`` and
            ``environment`` keys in canonical form.
        :return: The layered variables.
        :raises MissingEnvironmentVariableError: If an env_file path
            references an undefined variable.
        """
        if isinstance(service, ServiceSpec):
            env_files = service.env_file or []
            inline_env = service.environment or {}
        else:
            env_files = service.get('env_file') or []
            inline_env = service.get('environment') or {}

        merged = dict(base_vars)
        for env_file in env_files:
            path = RequirementsValidator.resolve_env_file_path(env_file, base_vars)
            if self.env_file_reader is None:
                logger.warning("No env_file reader configured; skipping %s", path)
                continue
            merged.update(self.parser.parse(self.env_file_reader(path)))

        layered = dict(merged)
        layered.update(inline_env)
        for key, value in inline_env.items():
            merged[key] = EnvironmentInterpolator.interpolate(value, layered)
        return merged

    def resolve_service(self,
                        service: ServiceSpec,
                        base_vars: Mapping[str, str]) -> Dict[str, str]:
        """
        Substitutes variable references in every string field of a service,
        in place, using that service's layered variables.

        Named volumes are re-classified after substitution, so
        ``${DATA_DIR}:/data`` becomes a bind mount once DATA_DIR is a path.

        :param service: The service to resolve; it is modified.
        :param base_vars: System and shared variables.
        :return: The variables that were used.
        """
        service_vars = self.service_variables(base_vars, service)
        data = substitute_tree(service.model_dump(exclude_none=True), service_vars)
        if 'volumes' in data:
            data['volumes'] = [
                parse_short_volume(v['name']) if v.get('type') == 'volume' else v
                for v in data['volumes']
            ]

        try:
            resolved = ServiceSpec.model_validate(data)
        except ValidationError as e:
            raise ManifestSyntaxError(f"Invalid service after substitution: {e}") from e

        for field in type(service).model_fields:
            setattr(service, field, getattr(resolved, field))
        return service_vars

    def resolve_manifest(self,
                         document: ManifestDocument,
                         base_vars: Mapping[str, str]) -> Dict[str, Dict[str, str]]:
        """
        Resolves every service in the document in place, then checks the
        resulting resource limits.

        ``version`` and top-level volume bodies are substituted with
        ``base_vars``. Top-level definitions that only stood in for a
        service's still unresolved volume reference are replaced by the
        volumes the resolved services actually reference.

        :return: The variables used for each service, keyed by service name.
        """
        referenced = {
            volume.volume_name
            for service in document.services.values()
            for volume in service.named_volumes()
        }

        used = {}
        for name, service in document.services.items():
            logger.debug("Resolving environment for service %s", name)
            used[name] = self.resolve_service(service, base_vars)

        document.version = EnvironmentInterpolator.interpolate(document.version, base_vars)
        volumes = {}
        for name, definition in document.volumes.items():
            if name in referenced and definition.render() is None:
                continue
            body = substitute_tree(
                definition.model_dump(exclude={'type', 'name'}, exclude_none=True), base_vars
            )
            volumes[name] = VolumeDefinition.model_validate({'name': name, **body})
        document.volumes = volumes
        document.add_referenced_volumes()

        RequirementsValidator.validate_resource_limits(document)
        return used

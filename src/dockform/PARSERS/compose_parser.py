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
Parsers for Docker Compose YAML files.
"""
import logging
import re
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from ..errors import ManifestSyntaxError
from ..MANAGERS.environment_manager import EnvironmentManager
from ..MODELS.orchestration_config import ManifestDocument
from ..MODELS.service_definition import ServiceSpec, VolumeDefinition
from ..UTILS.string_interpolation import EnvironmentInterpolator, substitute_tree
from ..VALIDATORS.requirements import RequirementsValidator
from .surface_syntax import normalize_service, normalize_volume_definition

logger = logging.getLogger(__name__)


class ManifestLoader(yaml.SafeLoader):
    """
    SafeLoader without YAML 1.1 base-60 numbers or implicit timestamps, so
    an unquoted port mapping such as ``22:22`` or a date stays a string.
    """
    pass


_REPLACED_TAGS = (
    'tag:yaml.org,2002:int',
    'tag:yaml.org,2002:float',
    'tag:yaml.org,2002:timestamp',
)

ManifestLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag not in _REPLACED_TAGS]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
ManifestLoader.add_implicit_resolver(
    'tag:yaml.org,2002:int',
    re.compile(r'''^(?:[-+]?0b[0-1_]+
                |[-+]?0[0-7_]+
                |[-+]?(?:0|[1-9][0-9_]*)
                |[-+]?0x[0-9a-fA-F_]+)$''', re.X),
    list('-+0123456789'),
)
ManifestLoader.add_implicit_resolver(
    'tag:yaml.org,2002:float',
    re.compile(r'''^(?:[-+]?(?:[0-9][0-9_]*)\.[0-9_]*(?:[eE][-+][0-9]+)?
                |\.[0-9][0-9_]*(?:[eE][-+][0-9]+)?
                |[-+]?\.(?:inf|Inf|INF)
                |\.(?:nan|NaN|NAN))$''', re.X),
    list('-+0123456789.'),
)


class Interpolation(str, Enum):
    """
    When variable references are substituted while parsing.

    TEXT substitutes the raw manifest text once before YAML parsing.
    SERVICE substitutes each service's fields with that service's own
    layered variables (base, then its env_file entries, then its inline
    environment). NONE leaves references in place for a later
    :meth:`EnvironmentManager.resolve_manifest`.
    """
    TEXT = "text"
    SERVICE = "service"
    NONE = "none"


class ComposeParser:
    """
    Parser for docker-compose.yml files.
    """
    def __init__(self,
                 variables: Optional[Mapping[str, str]] = None,
                 interpolate: Interpolation = Interpolation.TEXT,
                 env_file_reader: Optional[Callable[[str], str]] = None):
        """
        Initializes the parser with an optional variable context for interpolation.

        :param variables: Variables used for substitution. The process
            environment is never consulted implicitly.
        :param interpolate: When and how substitution happens.
        :param env_file_reader: Returns the contents of an env_file path;
            only used with :attr:`Interpolation.SERVICE`.
        """
        self.variables = dict(variables or {})
        self.interpolate = Interpolation(interpolate)
        self.environment = EnvironmentManager(env_file_reader=env_file_reader)

    def parse_file(self, compose_path: str) -> ManifestDocument:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :return: Parsed configuration.
        """
        with open(compose_path, 'r', encoding='utf-8') as f:
            content = f.read()
        return self.parse(content)

    def parse(self, content: str) -> ManifestDocument:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :return: Parsed configuration.
        :raises ManifestSyntaxError: If the YAML is malformed or a field has
            the wrong shape.
        :raises InvalidResourceLimitError: If a resolved memory size is malformed.
        """
        if self.interpolate is Interpolation.TEXT:
            content = EnvironmentInterpolator.interpolate(content, self.variables)

        try:
            data = yaml.load(content, Loader=ManifestLoader)
        except (yaml.YAMLError, ValueError) as e:
            # explicit tags such as "!!int abc" fail with ValueError
            raise ManifestSyntaxError(f"Invalid manifest YAML: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ManifestSyntaxError(
                f"Manifest root must be a mapping, got {type(data).__name__}"
            )

        raw_services = data.get('services') or {}
        if not isinstance(raw_services, dict):
            raise ManifestSyntaxError("'services' must be a mapping of service names")

        services = {}
        for name, spec in raw_services.items():
            services[str(name)] = self._parse_service(str(name), spec)

        document = ManifestDocument(
            version=self._version(data.get('version')),
            services=services,
            volumes=self._parse_volumes(data.get('volumes')),
        )
        document.add_referenced_volumes()

        if self.interpolate is not Interpolation.NONE:
            RequirementsValidator.validate_resource_limits(document)
        logger.debug("Parsed manifest with %d service(s)", len(services))
        return document

    def _version(self, value: Any) -> str:
        if value is None:
            return ""
        if self.interpolate is Interpolation.SERVICE and isinstance(value, str):
            return EnvironmentInterpolator.interpolate(value, self.variables)
        return str(value)

    def _parse_service(self, name: str, spec: Any) -> ServiceSpec:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ServiceSpec instance.
        """
        if self.interpolate is Interpolation.SERVICE and isinstance(spec, dict):
            service_vars = self.environment.service_variables(
                self.variables,
                normalize_service(name, {
                    'env_file': spec.get('env_file'),
                    'environment': spec.get('environment'),
                }),
            )
            spec = substitute_tree(spec, service_vars)

        try:
            return ServiceSpec.model_validate(normalize_service(name, spec))
        except ValidationError as e:
            raise ManifestSyntaxError(f"Invalid service '{name}': {e}") from e

    def _parse_volumes(self, raw: Any) -> Dict[str, VolumeDefinition]:
        """
        Collects the top-level volume definitions.
        """
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ManifestSyntaxError("'volumes' must be a mapping of volume names")

        volumes: Dict[str, VolumeDefinition] = {}
        for name, body in raw.items():
            if self.interpolate is Interpolation.SERVICE:
                body = substitute_tree(body, self.variables)
            volumes[str(name)] = VolumeDefinition.model_validate(
                normalize_volume_definition(str(name), body)
            )
        return volumes

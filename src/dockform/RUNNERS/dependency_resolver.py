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
Dependency resolution for services to determine startup and shutdown order.
"""
import logging
from typing import Dict, List, Mapping, Union

from ..errors import CircularDependencyError
from ..MODELS.orchestration_config import ManifestDocument
from ..MODELS.service_definition import ServiceSpec

logger = logging.getLogger(__name__)


class DependencyResolver:
    """
    Resolves the startup and shutdown order of services based on their dependencies.
    """
    def resolve_order(self, config: Union[ManifestDocument, Mapping[str, ServiceSpec]]) -> List[str]:
        """
        Determines the correct order to start services using topological sort.

        Every service appears after all of its dependencies. Dependencies
        that name no defined service are ignored.

        :param config: The manifest, or a mapping of service name to spec.
        :return: Service names in the order they should be started.
        :raises CircularDependencyError: If a circular dependency is detected.
        """
        services = config.services if isinstance(config, ManifestDocument) else config
        dependencies: Dict[str, List[str]] = {
            name: list(svc.depends_on or []) for name, svc in services.items()
        }

        ordered = []
        visited = set()
        visiting = set()

        for root in services:
            if root in visited:
                continue
            # Each frame is a service and the dependencies it has yet to visit
            visiting.add(root)
            stack = [(root, iter(dependencies[root]))]
            while stack:
                name, pending = stack[-1]
                dep = next(pending, None)
                if dep is None:
                    stack.pop()
                    visiting.remove(name)
                    visited.add(name)
                    ordered.append(name)
                elif dep not in services:
                    logger.debug("Service %s depends on undefined service %s", name, dep)
                elif dep in visiting:
                    raise CircularDependencyError(f"Circular dependency detected involving {dep}")
                elif dep not in visited:
                    visiting.add(dep)
                    stack.append((dep, iter(dependencies[dep])))

        return ordered

    def resolve_shutdown_order(self, config: Union[ManifestDocument, Mapping[str, ServiceSpec]]) -> List[str]:
        """
        Determines the order to stop services: dependents before their dependencies.

        :param config: The manifest, or a mapping of service name to spec.
        :return: Service names in the order they should be stopped.
        """
        return list(reversed(self.resolve_order(config)))

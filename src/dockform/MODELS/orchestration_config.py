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
Models for overall orchestration configuration.
"""
from typing import Any, Dict

import yaml
from pydantic import BaseModel, Field

from .service_definition import ServiceSpec, VolumeDefinition

UNCOLLECTED_VOLUME_PREFIXES = ('.', '/', '~', '$')


class ManifestDocument(BaseModel):
    """
    Complete configuration for a multi-service stack.
    Equivalent to a parsed docker-compose.yml file.
    """
    version: str = ""
    services: Dict[str, ServiceSpec] = Field(default_factory=dict)
    volumes: Dict[str, VolumeDefinition] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """
        Renders the document in manifest form.

        :return: A plain mapping suitable for YAML serialization.
        """
        data: Dict[str, Any] = {}
        if self.version:
            data["version"] = self.version
        data["services"] = {name: svc.to_dict() for name, svc in self.services.items()}
        if self.volumes:
            data["volumes"] = {name: vol.render() for name, vol in self.volumes.items()}
        return data

    def to_yaml(self) -> str:
        """
        Serializes the document back to manifest YAML.
        """
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)

    def add_referenced_volumes(self) -> None:
        """
        Adds an empty top-level definition for every named volume a service
        references but the top level does not declare. The first reference
        wins. Names that are still unresolved references, or that look like
        paths, are skipped.
        """
        for service in self.services.values():
            for volume in service.named_volumes():
                name = volume.volume_name
                if not name or name in self.volumes or name.startswith(UNCOLLECTED_VOLUME_PREFIXES):
                    continue
                self.volumes[name] = VolumeDefinition(name=name)

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
Models for defining services, including volume mounts, health checks and resource requirements.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..UTILS.resource_limits import cpus_to_nano_cpus, parse_memory_string


class NamedVolume(BaseModel):
    """
    A runtime-managed volume, kept in its short form ``name:target[:ro]``.
    """
    type: Literal["volume"] = "volume"
    name: str

    def _parts(self) -> List[str]:
        return self.name.split(':')

    @property
    def volume_name(self) -> str:
        """The volume's own name, i.e. the text before the first colon."""
        return self._parts()[0]

    @property
    def target(self) -> Optional[str]:
        parts = self._parts()
        return parts[1] if len(parts) > 1 else None

    @property
    def read_only(self) -> bool:
        parts = self._parts()
        return len(parts) > 2 and parts[2] == "ro"

    def matches(self, name: str) -> bool:
        return self.volume_name == name

    def render(self) -> str:
        return self.name


class BindMount(BaseModel):
    """
    Defines a mapping between a host path and a service path.
    """
    type: Literal["bind"] = "bind"
    source: str
    target: str
    read_only: bool = False

    def matches(self, name: str) -> bool:
        return self.target == name

    def render(self) -> str:
        if self.read_only:
            return f"{self.source}:{self.target}:ro"
        return f"{self.source}:{self.target}"


class VolumeDefinition(BaseModel):
    """
    A volume declared in the manifest's top-level ``volumes`` section.
    """
    type: Literal["definition"] = "definition"
    name: str = ""
    driver: Optional[str] = None
    driver_opts: Optional[Dict[str, str]] = None

    def matches(self, name: str) -> bool:
        return self.name == name

    def render(self) -> Optional[Dict[str, Any]]:
        """
        Renders the definition body; an empty body renders as ``None``.
        """
        body: Dict[str, Any] = {}
        if self.driver is not None:
            body["driver"] = self.driver
        if self.driver_opts is not None:
            body["driver_opts"] = dict(self.driver_opts)
        return body or None


ServiceVolume = Annotated[Union[NamedVolume, BindMount], Field(discriminator="type")]

VolumeMount = Annotated[
    Union[NamedVolume, BindMount, VolumeDefinition],
    Field(discriminator="type"),
]


class BuildConfig(BaseModel):
    context: str
    dockerfile: Optional[str] = None


class HealthCheck(BaseModel):
    """
    Defines a command to run to check the health of a service.
    Durations are kept as written (e.g. "30s").
    """
    test: List[str] = Field(default_factory=list)
    interval: Optional[str] = None
    timeout: Optional[str] = None
    start_period: Optional[str] = None
    start_interval: Optional[str] = None
    retries: Optional[int] = None
    disable: bool = False


class ResourceRequirements(BaseModel):
    """
    CPU and memory constraints for a service. Memory sizes use the
    ``<int><K|M|G>`` notation understood by :func:`parse_memory_string`.
    """
    cpu_limit: Optional[float] = None
    memory_limit: Optional[str] = None
    memory_swap: Optional[str] = None
    memory_reservation: Optional[str] = None
    cpu_shares: Optional[int] = None
    cpuset_cpus: Optional[str] = None

    def to_runtime_limits(self) -> Dict[str, Any]:
        """
        Converts the requirements into byte counts and nano-CPUs.

        :return: Only the limits that are set.
        :raises InvalidResourceLimitError: If a memory size is malformed.
        """
        limits: Dict[str, Any] = {}
        if self.memory_limit is not None:
            limits["memory"] = parse_memory_string(self.memory_limit)
        if self.memory_swap is not None:
            limits["memory_swap"] = parse_memory_string(self.memory_swap)
        if self.memory_reservation is not None:
            limits["memory_reservation"] = parse_memory_string(self.memory_reservation)
        if self.cpu_shares is not None:
            limits["cpu_shares"] = self.cpu_shares
        if self.cpuset_cpus is not None:
            limits["cpuset_cpus"] = self.cpuset_cpus
        if self.cpu_limit is not None:
            limits["nano_cpus"] = cpus_to_nano_cpus(self.cpu_limit)
        return limits


class ServiceSpec(BaseModel):
    """
    The full definition of a single service, translated from Docker Compose.
    Every field is optional; ``None`` means the manifest did not set it.
    """
    image: Optional[str] = None
    build: Optional[BuildConfig] = None
    command: Optional[List[str]] = None
    environment: Optional[Dict[str, str]] = None
    env_file: Optional[List[str]] = None
    volumes: Optional[List[ServiceVolume]] = None
    depends_on: Optional[List[str]] = None
    ports: Optional[List[str]] = None
    networks: Optional[List[str]] = None
    resource_requirements: Optional[ResourceRequirements] = None
    healthcheck: Optional[HealthCheck] = None
    restart: Optional[str] = None
    user: Optional[str] = None
    labels: Optional[Dict[str, str]] = None
    platform: Optional[str] = None

    def named_volumes(self) -> List[NamedVolume]:
        return [v for v in self.volumes or [] if isinstance(v, NamedVolume)]

    def to_dict(self) -> Dict[str, Any]:
        """
        Renders the service in manifest form. Volumes always use the short
        ``source:target[:ro]`` string, whatever syntax they were read from.
        """
        data = self.model_dump(exclude_none=True, exclude={"volumes", "healthcheck"})
        if self.volumes is not None:
            data["volumes"] = [v.render() for v in self.volumes]
        if self.healthcheck is not None:
            health = self.healthcheck.model_dump(exclude_none=True)
            if not health.get("disable"):
                health.pop("disable", None)
            data["healthcheck"] = health

        # Keep the manifest's conventional key order
        order = list(type(self).model_fields)
        return {key: data[key] for key in order if key in data}

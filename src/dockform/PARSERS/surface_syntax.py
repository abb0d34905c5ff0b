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
Normalization of the alternative surface syntaxes a compose file allows.

Compose lets many fields be written several ways: ``command`` as a string
or a list, ``environment`` as a mapping or a ``KEY=VALUE`` list, volumes in
short or long form, and so on. The functions here rewrite one raw service
body (as loaded from YAML) into a single canonical mapping that validates
directly into :class:`ServiceSpec`. Nothing else in the package looks at
the raw shapes.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from ..errors import InvalidArgumentError, ManifestSyntaxError

logger = logging.getLogger(__name__)

BIND_SOURCE_PREFIXES = ('/', './', '../', '~')

SCALAR_FIELDS = ("image", "restart", "user", "platform")

# compose key -> ResourceRequirements field
SERVICE_RESOURCE_KEYS = {
    "cpus": "cpu_limit",
    "mem_limit": "memory_limit",
    "memswap_limit": "memory_swap",
    "mem_reservation": "memory_reservation",
    "cpu_shares": "cpu_shares",
    "cpuset": "cpuset_cpus",
}

_DIGITS = re.compile(r"-?[0-9]+")

_BOOLEAN_WORDS = {
    "true": True, "yes": True, "on": True,
    "false": False, "no": False, "off": False,
}

RESOURCE_FIELDS = (
    "cpu_limit",
    "memory_limit",
    "memory_swap",
    "memory_reservation",
    "cpu_shares",
    "cpuset_cpus",
)


def to_scalar_string(value: Any, where: str) -> str:
    """
    Stringifies a YAML scalar; booleans use YAML spelling.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ManifestSyntaxError(f"{where} must be a scalar, got {type(value).__name__}")


def _to_int(value: Any, where: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and _DIGITS.fullmatch(value.strip()):
        return int(value)
    raise ManifestSyntaxError(f"{where} must be an integer, got {value!r}")


def _to_bool(value: Any, where: str) -> bool:
    """
    Accepts a YAML boolean, or one of its spellings left as a string by
    field-level substitution.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _BOOLEAN_WORDS:
        return _BOOLEAN_WORDS[value.strip().lower()]
    raise ManifestSyntaxError(f"{where} must be a boolean, got {value!r}")


def _to_float(value: Any, where: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
    raise ManifestSyntaxError(f"{where} must be a number, got {value!r}")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def normalize_string_list(value: Any, where: str) -> List[str]:
    """
    Accepts a single string or a list of scalars.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [to_scalar_string(item, f"{where}[{i}]") for i, item in enumerate(value)]
    raise ManifestSyntaxError(f"{where} must be a string or a list of strings")


def normalize_command(value: Any, where: str) -> List[str]:
    """
    ``command: "a b"`` becomes ``["a b"]``; a list is kept as strings.
    """
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [to_scalar_string(item, f"{where}[{i}]") for i, item in enumerate(value)]
    raise ManifestSyntaxError(f"{where} must be a string or a list of strings")


def normalize_environment(value: Any, where: str) -> Dict[str, str]:
    """
    Normalizes the mapping and ``KEY=VALUE`` list forms to one mapping.

    Mapping values are taken as YAML delivered them (``null`` is empty)
    and unquoted if fully wrapped in double quotes. List entries are split
    on the first ``=``, trimmed, then unquoted. Entries without ``=`` are
    skipped.
    """
    if value is None:
        return {}
    if isinstance(value, dict):
        env = {}
        for key, raw in value.items():
            text = "" if raw is None else to_scalar_string(raw, f"{where}.{key}")
            env[str(key)] = _unquote(text)
        return env
    if isinstance(value, list):
        env = {}
        for i, item in enumerate(value):
            if not isinstance(item, str):
                raise ManifestSyntaxError(f"{where}[{i}] must be a KEY=VALUE string")
            key, sep, raw = item.partition('=')
            if not sep:
                logger.debug("%s: entry without '=' skipped: %s", where, item)
                continue
            env[key.strip()] = _unquote(raw.strip())
        return env
    raise ManifestSyntaxError(f"{where} must be a mapping or a list of KEY=VALUE strings")


def _is_bind_source(source: str) -> bool:
    return source.startswith(BIND_SOURCE_PREFIXES)


def parse_short_volume(text: str) -> Dict[str, Any]:
    """
    Classifies a ``source:target[:mode]`` string as a bind or named volume.

    Sources that look like filesystem paths become bind mounts; anything
    else is a named volume kept verbatim.
    """
    parts = text.split(':')
    if len(parts) == 2 and _is_bind_source(parts[0]):
        return {"type": "bind", "source": parts[0], "target": parts[1], "read_only": False}
    if len(parts) == 3 and parts[2] in ("ro", "rw") and _is_bind_source(parts[0]):
        return {
            "type": "bind",
            "source": parts[0],
            "target": parts[1],
            "read_only": parts[2] == "ro",
        }
    return {"type": "volume", "name": text}


def normalize_volume(value: Any, where: str) -> Dict[str, Any]:
    """
    Normalizes a service volume in short (string) or long (mapping) form.
    """
    if isinstance(value, str):
        return parse_short_volume(value)
    if not isinstance(value, dict):
        raise ManifestSyntaxError(f"{where} must be a string or a mapping")

    volume_type = value.get("type")
    if volume_type not in (None, "volume", "bind"):
        raise InvalidArgumentError(f"Invalid volume type: {volume_type}")

    source = value.get("source")
    target = value.get("target")
    if source is None or target is None:
        raise ManifestSyntaxError(f"{where} needs both source and target")
    source = to_scalar_string(source, f"{where}.source")
    target = to_scalar_string(target, f"{where}.target")
    read_only = False
    if value.get("read_only") is not None:
        read_only = _to_bool(value["read_only"], f"{where}.read_only")

    if volume_type == "bind":
        return {"type": "bind", "source": source, "target": target, "read_only": read_only}
    name = f"{source}:{target}:ro" if read_only else f"{source}:{target}"
    return {"type": "volume", "name": name}


def normalize_volume_definition(name: str, body: Any) -> Dict[str, Any]:
    """
    Normalizes a top-level volume body: empty, or ``{driver, driver_opts}``.
    """
    definition: Dict[str, Any] = {"type": "definition", "name": name}
    if body is None:
        return definition
    if not isinstance(body, dict):
        raise ManifestSyntaxError(f"volumes.{name} must be a mapping or empty")
    if body.get("driver") is not None:
        definition["driver"] = to_scalar_string(body["driver"], f"volumes.{name}.driver")
    opts = body.get("driver_opts")
    if opts is not None:
        if not isinstance(opts, dict):
            raise ManifestSyntaxError(f"volumes.{name}.driver_opts must be a mapping")
        definition["driver_opts"] = {
            str(k): to_scalar_string(v, f"volumes.{name}.driver_opts.{k}") for k, v in opts.items()
        }
    return definition


def normalize_names(value: Any, where: str) -> List[str]:
    """
    Accepts a list of names or a mapping keyed by name (``depends_on``,
    ``networks``).
    """
    if value is None:
        return []
    if isinstance(value, dict):
        return [str(k) for k in value]
    return normalize_string_list(value, where)


def normalize_ports(value: Any, where: str) -> List[str]:
    """
    Keeps short port strings; long-form mappings become ``host:container/proto``.
    """
    if not isinstance(value, list):
        raise ManifestSyntaxError(f"{where} must be a list")
    ports = []
    for i, item in enumerate(value):
        if isinstance(item, dict):
            if "target" not in item:
                raise ManifestSyntaxError(f"{where}[{i}] needs a target")
            port = to_scalar_string(item["target"], f"{where}[{i}].target")
            if item.get("published") is not None:
                port = f"{to_scalar_string(item['published'], f'{where}[{i}].published')}:{port}"
                if item.get("host_ip"):
                    port = f"{item['host_ip']}:{port}"
            if item.get("protocol"):
                port = f"{port}/{item['protocol']}"
            ports.append(port)
        else:
            ports.append(to_scalar_string(item, f"{where}[{i}]"))
    return ports


def normalize_labels(value: Any, where: str) -> Dict[str, str]:
    if isinstance(value, list):
        labels = {}
        for i, item in enumerate(value):
            key, _, raw = to_scalar_string(item, f"{where}[{i}]").partition('=')
            labels[key.strip()] = raw.strip()
        return labels
    if isinstance(value, dict):
        return {
            str(k): "" if v is None else to_scalar_string(v, f"{where}.{k}") for k, v in value.items()
        }
    raise ManifestSyntaxError(f"{where} must be a mapping or a list of key=value strings")


def normalize_build(value: Any, where: str) -> Dict[str, Any]:
    if isinstance(value, str):
        return {"context": value}
    if not isinstance(value, dict):
        raise ManifestSyntaxError(f"{where} must be a path or a mapping")
    build = {"context": to_scalar_string(value.get("context", "."), f"{where}.context")}
    if value.get("dockerfile") is not None:
        build["dockerfile"] = to_scalar_string(value["dockerfile"], f"{where}.dockerfile")
    return build


def normalize_healthcheck(value: Any, where: str) -> Dict[str, Any]:
    """
    A string ``test`` is shorthand for ``["CMD-SHELL", test]``.
    """
    if not isinstance(value, dict):
        raise ManifestSyntaxError(f"{where} must be a mapping")
    test = value.get("test")
    if isinstance(test, str):
        test = ["CMD-SHELL", test]
    else:
        test = normalize_string_list(test, f"{where}.test")

    health: Dict[str, Any] = {"test": test}
    for key in ("interval", "timeout", "start_period", "start_interval"):
        if value.get(key) is not None:
            health[key] = to_scalar_string(value[key], f"{where}.{key}")
    if value.get("retries") is not None:
        health["retries"] = _to_int(value["retries"], f"{where}.retries")
    if value.get("disable") is not None:
        health["disable"] = _to_bool(value["disable"], f"{where}.disable")
    return health


def _convert_resource(field: str, value: Any, where: str) -> Any:
    if field == "cpu_limit":
        return _to_float(value, where)
    if field == "cpu_shares":
        return _to_int(value, where)
    return to_scalar_string(value, where)


def normalize_resources(spec: Dict[str, Any], where: str) -> Optional[Dict[str, Any]]:
    """
    Gathers resource limits from ``deploy.resources``, the service-level
    compose keys and the canonical ``resource_requirements`` mapping, in
    increasing order of precedence.
    """
    resources: Dict[str, Any] = {}

    deploy = spec.get("deploy")
    if isinstance(deploy, dict) and isinstance(deploy.get("resources"), dict):
        limits = deploy["resources"].get("limits")
        reservations = deploy["resources"].get("reservations")
        limits = limits if isinstance(limits, dict) else {}
        reservations = reservations if isinstance(reservations, dict) else {}
        if limits.get("cpus") is not None:
            resources["cpu_limit"] = _to_float(limits["cpus"], f"{where}.deploy.resources.limits.cpus")
        if limits.get("memory") is not None:
            resources["memory_limit"] = to_scalar_string(
                limits["memory"], f"{where}.deploy.resources.limits.memory"
            )
        if reservations.get("memory") is not None:
            resources["memory_reservation"] = to_scalar_string(
                reservations["memory"], f"{where}.deploy.resources.reservations.memory"
            )

    for key, field in SERVICE_RESOURCE_KEYS.items():
        if spec.get(key) is not None:
            resources[field] = _convert_resource(field, spec[key], f"{where}.{key}")

    explicit = spec.get("resource_requirements")
    if explicit is not None:
        if not isinstance(explicit, dict):
            raise ManifestSyntaxError(f"{where}.resource_requirements must be a mapping")
        for field in RESOURCE_FIELDS:
            if explicit.get(field) is not None:
                resources[field] = _convert_resource(
                    field, explicit[field], f"{where}.resource_requirements.{field}"
                )

    return resources or None


def normalize_service(name: str, spec: Any) -> Dict[str, Any]:
    """
    Rewrites one raw service body into the canonical ServiceSpec shape.

    :param name: The service name, used in error messages.
    :param spec: The service body as loaded from YAML.
    :return: A mapping with only canonical keys.
    :raises ManifestSyntaxError: If a field has an unsupported shape.
    :raises InvalidArgumentError: If a long-form volume has an unknown type.
    """
    if spec is None:
        return {}
    if not isinstance(spec, dict):
        raise ManifestSyntaxError(f"Service '{name}' must be a mapping, got {type(spec).__name__}")

    where = f"services.{name}"
    normalized: Dict[str, Any] = {}

    for key in SCALAR_FIELDS:
        if spec.get(key) is not None:
            normalized[key] = to_scalar_string(spec[key], f"{where}.{key}")
    if spec.get("build") is not None:
        normalized["build"] = normalize_build(spec["build"], f"{where}.build")
    if spec.get("command") is not None:
        normalized["command"] = normalize_command(spec["command"], f"{where}.command")
    if "environment" in spec:
        normalized["environment"] = normalize_environment(spec["environment"], f"{where}.environment")
    if spec.get("env_file") is not None:
        normalized["env_file"] = normalize_string_list(spec["env_file"], f"{where}.env_file")
    if spec.get("volumes") is not None:
        if not isinstance(spec["volumes"], list):
            raise ManifestSyntaxError(f"{where}.volumes must be a list")
        normalized["volumes"] = [
            normalize_volume(v, f"{where}.volumes[{i}]") for i, v in enumerate(spec["volumes"])
        ]
    if "depends_on" in spec:
        normalized["depends_on"] = normalize_names(spec["depends_on"], f"{where}.depends_on")
    if spec.get("ports") is not None:
        normalized["ports"] = normalize_ports(spec["ports"], f"{where}.ports")
    if "networks" in spec:
        normalized["networks"] = normalize_names(spec["networks"], f"{where}.networks")
    if spec.get("labels") is not None:
        normalized["labels"] = normalize_labels(spec["labels"], f"{where}.labels")
    if spec.get("healthcheck") is not None:
        normalized["healthcheck"] = normalize_healthcheck(spec["healthcheck"], f"{where}.healthcheck")

    resources = normalize_resources(spec, where)
    if resources is not None:
        normalized["resource_requirements"] = resources

    ignored = sorted(
        str(key) for key in set(spec) - set(normalized) - {"deploy", *SERVICE_RESOURCE_KEYS}
    )
    if ignored:
        logger.debug("%s: ignoring unsupported keys %s", where, ", ".join(ignored))
    return normalized

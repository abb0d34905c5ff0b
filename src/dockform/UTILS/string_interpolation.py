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
Utilities for string interpolation using environment variables.
"""
import re
from typing import Any, List, Mapping

# ${VAR:-default}, ${VAR} and $VAR, substituted in that order, each pass
# over the previous pass's output
_DEFAULT_PATTERN = re.compile(r'\$\{([^{}:]+):-([^{}]*)\}')
_BRACED_PATTERN = re.compile(r'\$\{([^{}]+)\}')
_BARE_PATTERN = re.compile(r'\$([a-zA-Z_][a-zA-Z0-9_]*)')

# ${VAR} references that carry no :- fallback
_REQUIRED_PATTERN = re.compile(r'\$\{([^{}:]+)\}')


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings.
    Supports ${VAR}, ${VAR:-default} and $VAR.
    """
    @staticmethod
    def interpolate(template: str, context: Mapping[str, str]) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        Never fails: a missing variable becomes an empty string, and
        ``${VAR:-default}`` falls back to ``default`` when VAR is missing or
        empty. The three forms are replaced in three passes, so a
        ``$VAR`` left by an earlier pass (``${X:-$HOME}``) is expanded by
        the last one.

        :param template: The string containing ${VAR} or $VAR placeholders.
        :param context: The environment variables context.
        :return: The interpolated string.
        """
        def replace_default(match):
            value = context.get(match.group(1))
            return value if value else match.group(2)

        def replace(match):
            """
            Internal replacement function for re.sub.
            """
            return context.get(match.group(1), '')

        result = _DEFAULT_PATTERN.sub(replace_default, template)
        result = _BRACED_PATTERN.sub(replace, result)
        return _BARE_PATTERN.sub(replace, result)

    @staticmethod
    def required_names(template: str) -> List[str]:
        """
        Lists the ``${VAR}`` names in the template that have no default.

        :param template: The string to scan.
        :return: Variable names in order of appearance.
        """
        return _REQUIRED_PATTERN.findall(template)


def substitute(text: str, variables: Mapping[str, str]) -> str:
    """Module-level shorthand for :meth:`EnvironmentInterpolator.interpolate`."""
    return EnvironmentInterpolator.interpolate(text, variables)


def substitute_tree(value: Any, variables: Mapping[str, str]) -> Any:
    """
    Substitutes every string inside nested dicts and lists.

    Mapping keys and non-string scalars are left as they are.

    :param value: A structure as loaded from YAML or dumped from a model.
    :param variables: Variables to substitute.
    :return: A new structure with every string interpolated.
    """
    if isinstance(value, str):
        return substitute(value, variables)
    if isinstance(value, dict):
        return {key: substitute_tree(item, variables) for key, item in value.items()}
    if isinstance(value, list):
        return [substitute_tree(item, variables) for item in value]
    return value

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
Parsers for .env files.
"""
import logging
import re
from typing import Dict

logger = logging.getLogger(__name__)

_VALID_KEY = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


class EnvParser:
    """
    Parser for .env files.

    Lines that are not ``KEY=VALUE`` with a valid identifier key are
    skipped rather than rejected.
    """
    @staticmethod
    def parse_file(env_path: str) -> Dict[str, str]:
        """
        Parses an .env file from a path.

        Args:
            env_path (str): Path to the .env file.

        Returns:
            Dict[str, str]: Dictionary of environment variables.
        """
        with open(env_path, 'r', encoding='utf-8') as f:
            content = f.read()
        return EnvParser.parse(content)

    @staticmethod
    def parse(content: str) -> Dict[str, str]:
        """
        Parses environment variables from a string.

        Values are trimmed and surrounding double quotes removed.
        """
        env = {}
        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            key, sep, value = line.partition('=')
            key = key.strip()
            if not sep or not _VALID_KEY.match(key):
                logger.debug("Skipping env line: %s", line)
                continue

            env[key] = value.strip().strip('"')

        return env


def parse_env_file(content: str) -> Dict[str, str]:
    """Module-level shorthand for :meth:`EnvParser.parse`."""
    return EnvParser.parse(content)

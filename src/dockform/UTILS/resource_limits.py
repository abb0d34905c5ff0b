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
Parsing of resource limit strings such as "512M" or "1G".
"""
import re

from ..errors import InvalidResourceLimitError

MEMORY_UNITS = {
    "K": 1024,
    "M": 1024 * 1024,
    "G": 1024 * 1024 * 1024,
}

_MAGNITUDE = re.compile(r'[0-9]+')

NANO_CPUS_PER_CPU = 1_000_000_000


def parse_memory_string(memory: str) -> int:
    """
    Converts a memory size into bytes.

    The last character is the unit (K, M or G, any case) and everything
    before it must be a whole decimal number.

    :param memory: Size such as "512M".
    :return: Size in bytes.
    :raises InvalidResourceLimitError: On a fractional or non-numeric
        magnitude, or an unknown unit.
    """
    magnitude, unit = memory[:-1], memory[-1:]
    if not _MAGNITUDE.fullmatch(magnitude):
        raise InvalidResourceLimitError(f"Invalid memory value: {memory}")

    multiplier = MEMORY_UNITS.get(unit.upper())
    if multiplier is None:
        raise InvalidResourceLimitError(f"Invalid memory unit: {unit}")
    return int(magnitude) * multiplier


def cpus_to_nano_cpus(cpus: float) -> int:
    """Converts a fractional CPU count (e.g. 0.5) to the runtime's nano-CPU units."""
    return int(cpus * NANO_CPUS_PER_CPU)

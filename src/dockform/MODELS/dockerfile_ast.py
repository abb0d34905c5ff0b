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
Models for the Dockerfile Abstract Syntax Tree.

Each build-script directive has its own model, tagged by a ``type`` literal
so that a list of instructions validates as a discriminated union. Every
instruction knows how to render itself back to a single Dockerfile line.
"""
import json
import re
import shlex
from typing import Annotated, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# Characters str.splitlines() treats as line breaks that json.dumps leaves raw
_RAW_LINE_BREAKS = re.compile("[\x85\u2028\u2029]")


def _exec_form(argv: List[str]) -> str:
    text = json.dumps(argv, ensure_ascii=False)
    return _RAW_LINE_BREAKS.sub(lambda m: f"\\u{ord(m.group()):04x}", text)


def _shell_form(tokens: List[str]) -> str:
    """
    Shell-quotes tokens, falling back to exec form when a token could not
    survive on a single line or would be read back as a flag.
    """
    if tokens[0].startswith("--") or not all(token.isprintable() for token in tokens):
        return _exec_form(tokens)
    return shlex.join(tokens)


def _quote_label_part(text: str, always: bool = False) -> str:
    if not always and text and not any(c.isspace() or c in '="\\' for c in text):
        return text
    escaped = text.replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'


class BaseInstruction(BaseModel):
    """
    Common base for all build-script instructions.
    """
    model_config = ConfigDict(frozen=True)

    keyword: ClassVar[str] = ""

    def render(self) -> str:
        """
        Renders the instruction as one line of build-script text.
        """
        raise NotImplementedError


class AddInstruction(BaseInstruction):
    type: Literal["add"] = "add"
    keyword: ClassVar[str] = "ADD"
    sources: List[str]
    dest: str
    owner: Optional[str] = None

    def render(self) -> str:
        chown = f"--chown={self.owner} " if self.owner is not None else ""
        return f"ADD {chown}{_shell_form(self.sources + [self.dest])}"


class ArgInstruction(BaseInstruction):
    type: Literal["arg"] = "arg"
    keyword: ClassVar[str] = "ARG"
    name: str
    default: Optional[str] = None

    def render(self) -> str:
        if self.default is None:
            return f"ARG {self.name}"
        return f"ARG {self.name}={self.default}"


class CmdInstruction(BaseInstruction):
    type: Literal["cmd"] = "cmd"
    keyword: ClassVar[str] = "CMD"
    argv: List[str]

    def render(self) -> str:
        return f"CMD {_exec_form(self.argv)}"


class CopyInstruction(BaseInstruction):
    type: Literal["copy"] = "copy"
    keyword: ClassVar[str] = "COPY"
    source: str
    dest: str
    owner: Optional[str] = None

    def render(self) -> str:
        chown = f"--chown={self.owner} " if self.owner is not None else ""
        return f"COPY {chown}{self.source} {self.dest}"


class EntrypointInstruction(BaseInstruction):
    type: Literal["entrypoint"] = "entrypoint"
    keyword: ClassVar[str] = "ENTRYPOINT"
    argv: List[str]

    def render(self) -> str:
        return f"ENTRYPOINT {_exec_form(self.argv)}"


class EnvInstruction(BaseInstruction):
    type: Literal["env"] = "env"
    keyword: ClassVar[str] = "ENV"
    key: str
    value: str

    def render(self) -> str:
        return f"ENV {self.key}={self.value}"


class ExposeInstruction(BaseInstruction):
    type: Literal["expose"] = "expose"
    keyword: ClassVar[str] = "EXPOSE"
    port: int = Field(ge=0, le=65535)
    protocol: Optional[str] = None

    def render(self) -> str:
        if self.protocol is None:
            return f"EXPOSE {self.port}"
        return f"EXPOSE {self.port}/{self.protocol}"


class HealthcheckInstruction(BaseInstruction):
    """
    A container health probe. Durations are kept verbatim (e.g. ``30s``).
    """
    type: Literal["healthcheck"] = "healthcheck"
    keyword: ClassVar[str] = "HEALTHCHECK"
    argv: List[str]
    interval: Optional[str] = None
    timeout: Optional[str] = None
    start_period: Optional[str] = None
    retries: Optional[int] = Field(default=None, ge=0)

    def render(self) -> str:
        options = []
        if self.interval is not None:
            options.append(f"--interval={self.interval}")
        if self.timeout is not None:
            options.append(f"--timeout={self.timeout}")
        if self.start_period is not None:
            options.append(f"--start-period={self.start_period}")
        if self.retries is not None:
            options.append(f"--retries={self.retries}")
        options.append("CMD")
        options.append(_shell_form(self.argv))
        return "HEALTHCHECK " + " ".join(options)


class LabelInstruction(BaseInstruction):
    type: Literal["label"] = "label"
    keyword: ClassVar[str] = "LABEL"
    labels: Dict[str, str]

    def render(self) -> str:
        pairs = [
            f"{_quote_label_part(key)}={_quote_label_part(value, always=True)}"
            for key, value in self.labels.items()
        ]
        return "LABEL " + " ".join(pairs)


class MaintainerInstruction(BaseInstruction):
    type: Literal["maintainer"] = "maintainer"
    keyword: ClassVar[str] = "MAINTAINER"
    name: str

    def render(self) -> str:
        return f"MAINTAINER {self.name}"


class RunInstruction(BaseInstruction):
    type: Literal["run"] = "run"
    keyword: ClassVar[str] = "RUN"
    shell_command: str

    def render(self) -> str:
        return f"RUN {self.shell_command}"


class ShellInstruction(BaseInstruction):
    type: Literal["shell"] = "shell"
    keyword: ClassVar[str] = "SHELL"
    argv: List[str]

    def render(self) -> str:
        return f"SHELL {_exec_form(self.argv)}"


class StopSignalInstruction(BaseInstruction):
    type: Literal["stopsignal"] = "stopsignal"
    keyword: ClassVar[str] = "STOPSIGNAL"
    signal: str

    def render(self) -> str:
        return f"STOPSIGNAL {self.signal}"


class UserInstruction(BaseInstruction):
    type: Literal["user"] = "user"
    keyword: ClassVar[str] = "USER"
    user: str
    group: Optional[str] = None

    def render(self) -> str:
        if self.group is None:
            return f"USER {self.user}"
        return f"USER {self.user}:{self.group}"


class VolumeInstruction(BaseInstruction):
    type: Literal["volume"] = "volume"
    keyword: ClassVar[str] = "VOLUME"
    paths: List[str]

    def render(self) -> str:
        return f"VOLUME {_exec_form(self.paths)}"


class WorkdirInstruction(BaseInstruction):
    type: Literal["workdir"] = "workdir"
    keyword: ClassVar[str] = "WORKDIR"
    path: str

    def render(self) -> str:
        return f"WORKDIR {self.path}"


# Everything an ONBUILD trigger may wrap; triggers never nest.
TriggerInstruction = Annotated[
    Union[
        AddInstruction,
        ArgInstruction,
        CmdInstruction,
        CopyInstruction,
        EntrypointInstruction,
        EnvInstruction,
        ExposeInstruction,
        HealthcheckInstruction,
        LabelInstruction,
        MaintainerInstruction,
        RunInstruction,
        ShellInstruction,
        StopSignalInstruction,
        UserInstruction,
        VolumeInstruction,
        WorkdirInstruction,
    ],
    Field(discriminator="type"),
]


class OnbuildInstruction(BaseInstruction):
    type: Literal["onbuild"] = "onbuild"
    keyword: ClassVar[str] = "ONBUILD"
    inner: TriggerInstruction

    def render(self) -> str:
        return f"ONBUILD {self.inner.render()}"


Instruction = Annotated[
    Union[
        AddInstruction,
        ArgInstruction,
        CmdInstruction,
        CopyInstruction,
        EntrypointInstruction,
        EnvInstruction,
        ExposeInstruction,
        HealthcheckInstruction,
        LabelInstruction,
        MaintainerInstruction,
        OnbuildInstruction,
        RunInstruction,
        ShellInstruction,
        StopSignalInstruction,
        UserInstruction,
        VolumeInstruction,
        WorkdirInstruction,
    ],
    Field(discriminator="type"),
]


class BuildDocument(BaseModel):
    """
    Represents the complete Abstract Syntax Tree of a Dockerfile.

    ``base_image`` is empty when the script has no FROM line.
    """
    model_config = ConfigDict(frozen=True)

    base_image: str = ""
    instructions: List[Instruction] = Field(default_factory=list)

    def render(self) -> str:
        """
        Renders the document back to build-script text, one line per instruction.

        :return: Text that parses back into an equal document.
        """
        lines = []
        if self.base_image:
            lines.append(f"FROM {self.base_image}")
        lines.extend(inst.render() for inst in self.instructions)
        return "".join(f"{line}\n" for line in lines)

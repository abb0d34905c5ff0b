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
Parsers for Dockerfiles, extracting instructions and arguments.
"""
import json
import logging
import re
import shlex
from typing import Dict, Iterator, List, Optional, Tuple

from ..errors import (
    InstructionSyntaxError,
    InvalidArgumentError,
    MissingArgumentError,
    UnknownInstructionError,
)
from ..MODELS.dockerfile_ast import (
    AddInstruction,
    ArgInstruction,
    BaseInstruction,
    BuildDocument,
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
)

logger = logging.getLogger(__name__)

_PORT_PATTERN = re.compile(r'[0-9]+')
_CHOWN_PREFIX = "--chown="


class DockerfileParser:
    """
    Parser for Dockerfile instructions.

    Parsing is all-or-nothing: the first malformed line raises and no
    partial document is returned.
    """
    HEALTHCHECK_DURATION_FLAGS = {
        "--interval": "interval",
        "--timeout": "timeout",
        "--start-period": "start_period",
    }

    def __init__(self):
        self._handlers = {
            "ADD": self._parse_add,
            "ARG": self._parse_arg,
            "CMD": self._parse_cmd,
            "COPY": self._parse_copy,
            "ENTRYPOINT": self._parse_entrypoint,
            "ENV": self._parse_env,
            "EXPOSE": self._parse_expose,
            "HEALTHCHECK": self._parse_healthcheck,
            "LABEL": self._parse_label,
            "MAINTAINER": lambda args: [MaintainerInstruction(name=args)],
            "ONBUILD": self._parse_onbuild,
            "RUN": lambda args: [RunInstruction(shell_command=args)],
            "SHELL": self._parse_shell,
            "STOPSIGNAL": lambda args: [StopSignalInstruction(signal=args)],
            "USER": self._parse_user,
            "VOLUME": self._parse_volume,
            "WORKDIR": lambda args: [WorkdirInstruction(path=args)],
        }

    def parse_file(self, dockerfile_path: str) -> BuildDocument:
        """
        Parses a Dockerfile from a file path.

        Args:
            dockerfile_path (str): Path to the Dockerfile.

        Returns:
            BuildDocument: The parsed document.
        """
        with open(dockerfile_path, 'r', encoding='utf-8') as f:
            content = f.read()
        return self.parse(content)

    def parse(self, content: str) -> BuildDocument:
        """
        Parses a Dockerfile from a string content.

        Args:
            content (str): Content of the Dockerfile.

        Returns:
            BuildDocument: Base image plus the ordered instructions.

        Raises:
            ParseError: On the first invalid line.
        """
        base_image = ""
        instructions: List[BaseInstruction] = []

        for line in self._logical_lines(content):
            keyword, args = self._split_line(line)
            if keyword == "FROM":
                base_image = args
                continue
            instructions.extend(self._dispatch(keyword, args))

        if not base_image:
            logger.debug("Build script has no FROM instruction")
        logger.debug("Parsed %d instructions", len(instructions))
        return BuildDocument(base_image=base_image, instructions=instructions)

    def _logical_lines(self, content: str) -> Iterator[str]:
        """
        Yields logical lines, skipping comments and joining continuations.
        """
        pending: List[str] = []
        for raw_line in content.splitlines():
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue

            # An odd run of trailing backslashes ends in an unescaped one
            trailing = len(line) - len(line.rstrip('\\'))
            if trailing % 2 == 1:
                pending.append(line[:-1])
                pending.append(' ')
                continue

            if pending:
                pending.append(line)
                yield ''.join(pending)
                pending = []
            else:
                yield line

        if pending:
            yield ''.join(pending).strip()

    def _split_line(self, line: str) -> Tuple[str, str]:
        parts = line.split(None, 1)
        if len(parts) != 2:
            raise InstructionSyntaxError("Invalid command syntax")
        return parts[0].upper(), parts[1].strip()

    def _dispatch(self, keyword: str, args: str) -> List[BaseInstruction]:
        handler = self._handlers.get(keyword)
        if handler is None:
            raise UnknownInstructionError(f"Unknown command: {keyword}")
        return handler(args)

    def _argv(self, args: str) -> List[str]:
        """
        Splits exec-form (JSON array) or shell-form arguments into words.
        """
        if args.startswith('['):
            try:
                value = json.loads(args)
            except json.JSONDecodeError as e:
                raise InstructionSyntaxError(f"Invalid JSON array: {e}") from e
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise InstructionSyntaxError(f"Invalid JSON array: expected strings in {args}")
            return value
        return self._shell_split(args)

    def _shell_split(self, text: str) -> List[str]:
        try:
            return shlex.split(text)
        except ValueError as e:
            raise InstructionSyntaxError(f"Invalid shell syntax: {e} in {text}") from e

    def _split_chown(self, args: str) -> Tuple[Optional[str], str]:
        if not args.startswith(_CHOWN_PREFIX):
            return None, args
        parts = args.split(None, 1)
        owner = parts[0][len(_CHOWN_PREFIX):]
        rest = parts[1].strip() if len(parts) == 2 else ""
        return owner, rest

    def _parse_add(self, args: str) -> List[BaseInstruction]:
        owner, rest = self._split_chown(args)
        tokens = self._argv(rest) if rest else []
        if len(tokens) < 2:
            raise MissingArgumentError("ADD requires at least one source and destination")
        return [AddInstruction(sources=tokens[:-1], dest=tokens[-1], owner=owner)]

    def _parse_arg(self, args: str) -> List[BaseInstruction]:
        name, sep, default = args.partition('=')
        return [ArgInstruction(name=name.strip(), default=default.strip() if sep else None)]

    def _parse_cmd(self, args: str) -> List[BaseInstruction]:
        return [CmdInstruction(argv=self._argv(args))]

    def _parse_copy(self, args: str) -> List[BaseInstruction]:
        owner, rest = self._split_chown(args)
        tokens = rest.split()
        if len(tokens) < 2:
            raise MissingArgumentError("COPY requires source and destination")
        if len(tokens) > 2:
            logger.warning("COPY keeps its first two arguments, ignoring: %s", " ".join(tokens[2:]))
        return [CopyInstruction(source=tokens[0], dest=tokens[1], owner=owner)]

    def _parse_entrypoint(self, args: str) -> List[BaseInstruction]:
        return [EntrypointInstruction(argv=self._argv(args))]

    def _parse_env(self, args: str) -> List[BaseInstruction]:
        key, sep, value = args.partition('=')
        if not sep or any(c.isspace() for c in key.strip()):
            # Legacy "ENV KEY value" form; the value may itself contain '='
            parts = args.split(None, 1)
            if len(parts) != 2:
                raise MissingArgumentError(f"ENV requires a key and a value: {args}")
            key, value = parts
        key = key.strip()
        if not key:
            raise MissingArgumentError(f"ENV requires a key and a value: {args}")
        return [EnvInstruction(key=key, value=value.strip())]

    def _parse_expose(self, args: str) -> List[BaseInstruction]:
        instructions: List[BaseInstruction] = []
        for port_spec in args.split():
            port_text, sep, protocol = port_spec.partition('/')
            port_text = port_text.strip()
            if not _PORT_PATTERN.fullmatch(port_text) or int(port_text) > 65535:
                raise InvalidArgumentError(f"Invalid port number: {port_text}")
            instructions.append(ExposeInstruction(
                port=int(port_text),
                protocol=protocol.strip() if sep else None,
            ))
        return instructions

    def _parse_healthcheck(self, args: str) -> List[BaseInstruction]:
        if args == "NONE":
            return []

        tokens = list(re.finditer(r'\S+', args))
        options: Dict[str, Optional[str]] = {}
        retries: Optional[int] = None
        probe: Optional[str] = None
        index = 0

        while index < len(tokens):
            token = tokens[index].group(0)
            if token == "CMD":
                probe = args[tokens[index].end():].strip()
                break
            index += 1
            if not token.startswith("--"):
                continue

            flag, sep, value = token.partition('=')
            if not sep:
                value = tokens[index].group(0) if index < len(tokens) else None
                if value is not None:
                    index += 1

            if flag in self.HEALTHCHECK_DURATION_FLAGS:
                if value is None:
                    raise MissingArgumentError(f"Missing value for {flag} flag")
                options[self.HEALTHCHECK_DURATION_FLAGS[flag]] = value
            elif flag == "--retries":
                if value is None or not _PORT_PATTERN.fullmatch(value):
                    raise InvalidArgumentError("Invalid value for --retries flag")
                retries = int(value)
            else:
                raise InvalidArgumentError(f"Invalid HEALTHCHECK flag: {flag}")

        if probe is None:
            raise MissingArgumentError("HEALTHCHECK must include CMD")

        argv = self._argv(probe) if probe else []
        if not argv:
            logger.debug("HEALTHCHECK with an empty probe ignored")
            return []
        return [HealthcheckInstruction(argv=argv, retries=retries, **options)]

    def _parse_label(self, args: str) -> List[BaseInstruction]:
        labels = self._scan_labels(args)
        if not labels:
            raise MissingArgumentError(f"LABEL requires at least one key=value pair: {args}")
        return [LabelInstruction(labels=labels)]

    def _scan_labels(self, args: str) -> Dict[str, str]:
        """
        Scans ``key=value`` pairs. Values may hold ``=`` and whitespace
        inside double quotes, where backslash escapes the next character.
        """
        labels: Dict[str, str] = {}
        key: Optional[str] = None
        buf: List[str] = []
        in_quotes = False
        escaped = False

        for ch in args:
            if in_quotes:
                if escaped:
                    buf.append(ch)
                    escaped = False
                elif ch == '\\':
                    escaped = True
                elif ch == '"':
                    in_quotes = False
                else:
                    buf.append(ch)
            elif ch == '"':
                in_quotes = True
            elif ch == '=' and key is None:
                key = ''.join(buf)
                buf = []
            elif ch.isspace():
                if key is not None:
                    labels[key] = ''.join(buf)
                elif buf:
                    logger.debug("LABEL token without '=' ignored: %s", ''.join(buf))
                key = None
                buf = []
            else:
                buf.append(ch)

        if in_quotes:
            raise InstructionSyntaxError(f"Unterminated quote in LABEL: {args}")
        if key is not None:
            labels[key] = ''.join(buf)
        return labels

    def _parse_onbuild(self, args: str) -> List[BaseInstruction]:
        keyword, inner_args = self._split_line(args)
        if keyword == "ONBUILD":
            raise InvalidArgumentError("Chaining ONBUILD via `ONBUILD ONBUILD` isn't allowed")
        if keyword == "FROM":
            raise InstructionSyntaxError("Invalid ONBUILD command")

        inner = self._dispatch(keyword, inner_args)
        if len(inner) != 1:
            raise InstructionSyntaxError("Invalid ONBUILD command")
        return [OnbuildInstruction(inner=inner[0])]

    def _parse_shell(self, args: str) -> List[BaseInstruction]:
        return [ShellInstruction(argv=self._argv(args))]

    def _parse_user(self, args: str) -> List[BaseInstruction]:
        user, sep, group = args.partition(':')
        return [UserInstruction(user=user, group=group if sep else None)]

    def _parse_volume(self, args: str) -> List[BaseInstruction]:
        return [VolumeInstruction(paths=self._argv(args))]

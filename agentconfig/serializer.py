from pathlib import Path
from typing import IO, Any, Dict, Union

import yaml
from pydantic import ValidationError

from agentconfig.exceptions import ConfigFormatError
from agentconfig.model import Configuration


class ConfigSerializer:
    """Converts configuration trees to and from YAML documents.

    Only fields that were explicitly set are written, in declaration order,
    and list sections keep their element order, so a load followed by a dump
    reproduces the same tree.
    """

    def loads(self, text: Union[str, bytes], source: str = "<string>") -> Configuration:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigFormatError(
                f"Invalid YAML in {source}: {e}", path=source, cause=e
            )
        return self._to_configuration(data, source)

    def load_stream(self, stream: IO, source: str = "<stream>") -> Configuration:
        """Read a document from a caller-owned stream without closing it"""
        return self.loads(stream.read(), source)

    def load_file(self, path: Union[str, Path]) -> Configuration:
        path = Path(path)
        with path.open("rb") as f:
            return self.loads(f.read(), str(path))

    def to_dict(self, config: Configuration) -> Dict[str, Any]:
        return config.model_dump(by_alias=True, exclude_unset=True)

    def dumps(self, config: Configuration) -> str:
        return yaml.safe_dump(
            self.to_dict(config),
            sort_keys=False,
            default_flow_style=False,
            allow_unicode=True,
        )

    def dump_file(self, path: Union[str, Path], config: Configuration):
        content = self.dumps(config)
        with Path(path).open("w", encoding="utf-8") as f:
            f.write(content)

    def _to_configuration(self, data: Any, source: str) -> Configuration:
        if data is None:
            raise ConfigFormatError(f"No configuration content in {source}", path=source)
        if not isinstance(data, dict):
            raise ConfigFormatError(
                f"Configuration in {source} must be a mapping, "
                f"got {type(data).__name__}",
                path=source,
            )
        try:
            return Configuration.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise ConfigFormatError(
                f"Malformed configuration in {source} at {location}: {first['msg']}",
                location=location,
                path=source,
                cause=e,
            )

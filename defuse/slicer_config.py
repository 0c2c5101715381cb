"""
Mutation rules for the def/use extractor.

Without looking into a callee's body we cannot know whether ``obj.f(x)``
changes ``obj`` or ``x``. The rules here name the functions that do, so the
extractor can record the receiver or arguments as redefined by the call.
Any call with no matching rule is assumed to mutate nothing.

The JSON shape matches the notebook slicer settings this analysis grew out of:

    {
      "functionConfigs": [
        {"functionName": "append", "mutatesInstance": true},
        {"functionName": "shuffle", "positionalArgumentsMutated": [0]},
        {"functionName": "multiply", "keywordArgumentsMutated": ["out"]}
      ]
    }
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


class SlicerConfigError(ValueError):
    """Raised when a mutation rule file or dict is malformed."""


@dataclass(frozen=True)
class FunctionConfig:
    """
    Mutation rule for every call to a function with this name.

    Matching is by bare name only: ``a.append(x)`` and ``append(x)`` both
    match ``function_name="append"``. ``mutates_instance`` only applies to
    attribute calls, where the receiver is the part before the dot.
    """

    function_name: str
    mutates_instance: bool = False
    positional_arguments_mutated: tuple[int, ...] = ()
    keyword_arguments_mutated: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "functionName": self.function_name,
            "mutatesInstance": self.mutates_instance,
            "positionalArgumentsMutated": list(self.positional_arguments_mutated),
            "keywordArgumentsMutated": list(self.keyword_arguments_mutated),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FunctionConfig":
        if not isinstance(data, dict):
            raise SlicerConfigError(f"Function config must be an object, got {data!r}")

        name = data.get("functionName")
        if not isinstance(name, str) or not name:
            raise SlicerConfigError(f"Function config without a functionName: {data!r}")

        positions = data.get("positionalArgumentsMutated", [])
        if not isinstance(positions, list) or not all(
            isinstance(p, int) and not isinstance(p, bool) and p >= 0
            for p in positions
        ):
            raise SlicerConfigError(
                f"positionalArgumentsMutated for '{name}' must be a list of "
                f"non-negative integers"
            )

        keywords = data.get("keywordArgumentsMutated", [])
        if not isinstance(keywords, list) or not all(isinstance(k, str) for k in keywords):
            raise SlicerConfigError(
                f"keywordArgumentsMutated for '{name}' must be a list of strings"
            )

        return cls(
            function_name=name,
            mutates_instance=bool(data.get("mutatesInstance", False)),
            positional_arguments_mutated=tuple(positions),
            keyword_arguments_mutated=tuple(keywords),
        )


# Container methods that change their receiver in place
_INSTANCE_MUTATORS = (
    "append",
    "extend",
    "insert",
    "remove",
    "pop",
    "clear",
    "sort",
    "reverse",
    "update",
    "add",
    "discard",
    "setdefault",
    "popitem",
    "fit",
)


@dataclass
class SlicerConfig:
    """Collection of mutation rules, looked up by callee name."""

    function_configs: list[FunctionConfig] = field(default_factory=list)

    def configs_for(self, function_name: str) -> list[FunctionConfig]:
        """Get every rule whose name matches the callee."""
        return [c for c in self.function_configs if c.function_name == function_name]

    def to_dict(self) -> dict:
        return {"functionConfigs": [c.to_dict() for c in self.function_configs]}

    @classmethod
    def from_dict(cls, data: dict) -> "SlicerConfig":
        if not isinstance(data, dict):
            raise SlicerConfigError("Slicer config must be a JSON object")
        configs = data.get("functionConfigs", [])
        if not isinstance(configs, list):
            raise SlicerConfigError("functionConfigs must be a list")
        return cls(function_configs=[FunctionConfig.from_dict(c) for c in configs])

    @classmethod
    def from_json_file(cls, path: str | Path) -> "SlicerConfig":
        """
        Load rules from a JSON file.

        Raises:
            SlicerConfigError: If the file can't be read or isn't a valid config
        """
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise SlicerConfigError(f"Could not read slicer config {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise SlicerConfigError(f"Invalid JSON in slicer config {path}: {e}") from e

        config = cls.from_dict(data)
        logger.debug(f"Loaded {len(config.function_configs)} mutation rules from {path}")
        return config

    @classmethod
    def default(cls) -> "SlicerConfig":
        """Rules for the common in-place mutators of built-in containers."""
        configs = [FunctionConfig(name, mutates_instance=True) for name in _INSTANCE_MUTATORS]
        configs.append(FunctionConfig("shuffle", positional_arguments_mutated=(0,)))
        return cls(function_configs=configs)

    def merged_with(self, other: "SlicerConfig") -> "SlicerConfig":
        """Get a config holding this config's rules followed by ``other``'s."""
        return SlicerConfig(function_configs=self.function_configs + other.function_configs)

"""
Transformation Configuration Store.

Holds the knobs of the epilogue transformation (guard shape, naming of
generated identifiers, opaque constructs, failure policy) and loads project
defaults from the ``[tool.unwind_guard]`` table of the nearest
``pyproject.toml``.
"""

import keyword
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from unwind_guard.enums import FailurePolicy, GuardStyle

if sys.version_info >= (3, 11):
  import tomllib
else:
  import tomli as tomllib


class TransformConfig(BaseModel):
  """
  Configuration container for the transformation core and the engine.
  """

  guard_style: GuardStyle = Field(GuardStyle.EXIT_STACK, description="Shape of the emitted guard.")
  guard_factory: str = Field(
    "contextlib.ExitStack",
    description="Dotted path of the ExitStack-compatible factory used by the exit_stack style.",
  )
  async_guard_factory: str = Field(
    "contextlib.AsyncExitStack",
    description="Dotted path of the AsyncExitStack-compatible factory guarding coroutine functions.",
  )
  name_prefix: str = Field("_unwind_", description="Prefix of every generated identifier.")
  max_name_attempts: int = Field(100, ge=1, description="Candidates tried per generated identifier.")
  dynamic_code_callables: List[str] = Field(
    default_factory=lambda: ["eval", "exec", "compile"],
    description="Callables whose string arguments are code the resolver cannot see into.",
  )
  introspection_callables: List[str] = Field(
    default_factory=lambda: ["locals", "vars", "dir"],
    description="Callables that expose the local namespace when called without arguments.",
  )
  failure_policy: FailurePolicy = Field(FailurePolicy.ABORT, description="Engine behaviour on failure.")
  inject_imports: bool = Field(True, description="Insert the guard factory import when missing.")

  @field_validator("name_prefix")
  @classmethod
  def validate_prefix(cls, v: str) -> str:
    """
    Ensures generated names are valid identifiers that escape class-private mangling.

    Args:
        v (str): The requested prefix.

    Returns:
        str: The prefix unchanged.

    Raises:
        ValueError: If the prefix cannot start an identifier or starts with ``__``.
    """
    if not (v + "x").isidentifier() or keyword.iskeyword(v):
      raise ValueError(f"Invalid identifier prefix: '{v}'")
    if v.startswith("__"):
      raise ValueError(f"Prefix '{v}' would be name-mangled inside class bodies")
    return v

  @field_validator("guard_factory", "async_guard_factory")
  @classmethod
  def validate_factory(cls, v: str) -> str:
    parts = v.split(".")
    if len(parts) < 2 or not all(p.isidentifier() for p in parts):
      raise ValueError(f"Guard factory must be a dotted 'module.attr' path, got '{v}'")
    return v

  @property
  def guard_module(self) -> str:
    """
    Module part of ``guard_factory``.

    Returns:
        str: E.g. ``contextlib``.
    """
    return self.module_for(False)

  def factory_for(self, is_async: bool = False) -> str:
    """
    Guard factory of the exit_stack style for a sync or coroutine function.

    Args:
        is_async (bool): Whether the guarded function is ``async def``.

    Returns:
        str: Dotted factory path.
    """
    return self.async_guard_factory if is_async else self.guard_factory

  def module_for(self, is_async: bool = False) -> str:
    """Module part of `factory_for`."""
    return self.factory_for(is_async).rsplit(".", 1)[0]

  @classmethod
  def load(cls, search_path: Optional[Path] = None, **overrides: Any) -> "TransformConfig":
    """
    Loads configuration from pyproject.toml and applies explicit overrides.

    Overrides whose value is None are ignored so CLI-style callers can pass
    unset options through.

    Args:
        search_path (Optional[Path]): Directory to start searching for TOML config.
        **overrides: Field values taking precedence over the file.

    Returns:
        TransformConfig: The fully resolved configuration object.
    """
    start_dir = search_path or Path.cwd()
    toml_config, _ = _load_toml_settings(start_dir)
    explicit = {k: v for k, v in overrides.items() if v is not None}
    return cls(**{**toml_config, **explicit})


def _load_toml_settings(start_path: Path) -> Tuple[Dict[str, Any], Optional[Path]]:
  """
  Recursively searches parents for 'pyproject.toml' and extracts config.

  Args:
      start_path (Path): Directory to start search from.

  Returns:
      Tuple[Dict, Optional[Path]]: The config dict and the directory definition was found in.
  """
  current = start_path.resolve()

  for parent in [current, *current.parents]:
    toml_path = parent / "pyproject.toml"
    if toml_path.exists() and toml_path.is_file():
      with open(toml_path, "rb") as f:
        data = tomllib.load(f)

      tool_section = data.get("tool", {})
      return tool_section.get("unwind_guard", {}), parent

  return {}, None

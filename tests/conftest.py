"""
Pytest Configuration and Fixtures.

Includes:
- Syspath patching for local imports.
- A recording console so tests can assert on log output.
- Helpers that compile generated source and execute it.
"""

import asyncio
import sys
import textwrap
from pathlib import Path
from typing import Any, Dict

import pytest
from rich.console import Console

# Add src to path so we can import 'unwind_guard' without installing it
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from unwind_guard.config import TransformConfig  # noqa: E402
from unwind_guard.utils.console import reset_console, set_console  # noqa: E402


@pytest.fixture
def config() -> TransformConfig:
  """Default configuration, independent of any pyproject.toml on disk."""
  return TransformConfig()


@pytest.fixture
def recorded_console():
  """
  Routes package logging into an in-memory console for the duration of a test.

  Yields:
      Console: The recording console; read it with ``export_text()``.
  """
  rec = Console(record=True, width=200, force_terminal=False)
  set_console(rec)
  yield rec
  reset_console()


def run_source(code: str, namespace: Dict[str, Any] = None) -> Dict[str, Any]:
  """
  Compiles and executes generated module source.

  Args:
      code: Module source text.
      namespace: Globals to pre-populate (e.g. an epilogue recorder).

  Returns:
      Dict: The resulting module namespace.
  """
  ns = dict(namespace or {})
  exec(compile(textwrap.dedent(code), "<generated>", "exec"), ns)
  return ns


class Recorder:
  """Counts epilogue executions."""

  def __init__(self) -> None:
    self.calls = 0

  def hit(self) -> None:
    self.calls += 1

  async def ahit(self) -> None:
    await asyncio.sleep(0)
    self.hit()


@pytest.fixture
def recorder() -> Recorder:
  return Recorder()

"""
Transformation Trace Logger.

Records the step-by-step execution of an engine run:
1. Lifecycle Phases (Parsing, Transforming, Import injection).
2. AST Mutations (function source before and after).
3. Analysis warnings and failures.

The output is a structured list of event dictionaries suitable for JSON
serialization. Each engine run owns its own logger.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TraceEventType(str, Enum):
  PHASE_START = "phase_start"
  PHASE_END = "phase_end"
  AST_MUTATION = "ast_mutation"
  ANALYSIS_WARNING = "analysis_warning"
  IMPORT_ACTION = "import_action"
  FAILURE = "failure"


@dataclass
class TraceEvent:
  id: str
  type: TraceEventType
  timestamp: float
  description: str
  parent_id: Optional[str] = None
  metadata: Dict[str, Any] = field(default_factory=dict)


class TraceLogger:
  """
  Records engine events, nested under the currently open phase.
  """

  def __init__(self) -> None:
    self._events: List[TraceEvent] = []
    self._active_phases: List[str] = []  # Stack of phase IDs

  def start_phase(self, name: str, description: str = "") -> str:
    """Starts a nested phase (e.g., 'Transforming Account.withdraw'). Returns Phase ID."""
    phase_id = str(uuid.uuid4())
    parent = self._active_phases[-1] if self._active_phases else None

    event = TraceEvent(
      id=phase_id,
      type=TraceEventType.PHASE_START,
      timestamp=time.time(),
      description=name,
      parent_id=parent,
      metadata={"detail": description},
    )
    self._events.append(event)
    self._active_phases.append(phase_id)
    return phase_id

  def end_phase(self) -> None:
    """Ends the current active phase."""
    if not self._active_phases:
      return

    phase_id = self._active_phases.pop()
    event = TraceEvent(
      id=str(uuid.uuid4()),
      type=TraceEventType.PHASE_END,
      timestamp=time.time(),
      description="End Phase",
      parent_id=phase_id,
    )
    self._events.append(event)

  def log_mutation(self, qualname: str, before: str, after: str) -> None:
    """Logs a transformed function."""
    self._log_simple(TraceEventType.AST_MUTATION, f"Transformed {qualname}", {"before": before, "after": after})

  def log_warning(self, message: str) -> None:
    self._log_simple(TraceEventType.ANALYSIS_WARNING, message, {"level": "warning"})

  def log_import(self, module: str) -> None:
    self._log_simple(TraceEventType.IMPORT_ACTION, f"Injected import {module}", {"module": module})

  def log_failure(self, qualname: str, error: Exception) -> None:
    self._log_simple(
      TraceEventType.FAILURE,
      f"Failed {qualname}",
      {"error": type(error).__name__, "message": str(error)},
    )

  def _log_simple(self, evt_type: TraceEventType, desc: str, meta: Dict[str, Any]) -> None:
    parent = self._active_phases[-1] if self._active_phases else None
    self._events.append(
      TraceEvent(
        id=str(uuid.uuid4()), type=evt_type, timestamp=time.time(), description=desc, parent_id=parent, metadata=meta
      )
    )

  @property
  def events(self) -> List[TraceEvent]:
    return list(self._events)

  def export(self) -> List[Dict[str, Any]]:
    """Returns list of dicts for JSON serialization."""
    return [asdict(e) for e in self._events]

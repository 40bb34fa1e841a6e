"""
Tests for the Tracing System.
"""

from unwind_guard.core.tracer import TraceEventType, TraceLogger
from unwind_guard.errors import UnsupportedSignatureShape


def test_phase_nesting():
  logger = TraceLogger()

  p1 = logger.start_phase("Parent")
  logger.start_phase("Child")
  logger.end_phase()  # End Child
  logger.end_phase()  # End Parent

  events = logger.export()

  # 4 events: Start P, Start C, End C, End P
  assert len(events) == 4
  assert events[0]["type"] == TraceEventType.PHASE_START
  assert events[1]["parent_id"] == p1
  assert events[2]["type"] == TraceEventType.PHASE_END


def test_end_phase_without_start_is_noop():
  logger = TraceLogger()
  logger.end_phase()
  assert logger.events == []


def test_mutation_and_failure_events():
  logger = TraceLogger()
  phase = logger.start_phase("Transforming f")
  logger.log_mutation("f", "def f(): pass", "def f(): ...")
  logger.log_failure("g", UnsupportedSignatureShape("generator functions", function="g"))
  logger.end_phase()

  events = logger.export()
  mutation, failure = events[1], events[2]

  assert mutation["type"] == TraceEventType.AST_MUTATION
  assert mutation["parent_id"] == phase
  assert mutation["metadata"]["before"] == "def f(): pass"
  assert failure["type"] == TraceEventType.FAILURE
  assert failure["metadata"]["error"] == "UnsupportedSignatureShape"
  assert failure["metadata"]["message"] == "g: unsupported signature: generator functions"


def test_warning_and_import_events():
  logger = TraceLogger()
  logger.log_warning("2:4: 'self': locals() exposes local variable names")
  logger.log_import("contextlib")

  events = logger.export()
  assert events[0]["type"] == TraceEventType.ANALYSIS_WARNING
  assert events[1]["metadata"]["module"] == "contextlib"
  assert events[1]["parent_id"] is None

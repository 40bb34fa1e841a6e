"""
Tests for Receiver Identifier Resolution.

Verifies that occurrences of the receiver name are classified following
Python's scoping rules:
1.  **Nested functions and lambdas**: parameters and local bindings shadow;
    defaults, annotations and decorators belong to the enclosing scope.
2.  **Classes**: class bodies that bind the name shadow it; methods see past
    the class frame.
3.  **Comprehensions**: targets shadow; the first iterable and walrus targets
    belong to the enclosing scope.
4.  **Declarations and imports**: ``global``, ``nonlocal`` and imports.
5.  **Opaque constructs**: reported as ambiguous, with positions.
"""

import textwrap

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider

from unwind_guard.analysis.resolver import ReceiverResolver, resolve_receiver
from unwind_guard.analysis.scope_report import ScopeReport
from unwind_guard.config import TransformConfig
from unwind_guard.core.rewriter.body import rewrite_body


def parse_method(code: str) -> cst.FunctionDef:
  return cst.parse_statement(textwrap.dedent(code).strip() + "\n")


def rename(code: str, receiver: str = "self") -> str:
  """
  Helper: resolves the receiver of a method and renames rewritten occurrences to ``R``.

  Returns:
      str: The source of the rewritten body.
  """
  node = parse_method(code)
  resolution = resolve_receiver(node.body, receiver)
  assert resolution.is_resolved, resolution.ambiguous
  body = rewrite_body(node.body, resolution, "R")
  return cst.Module(body=[node.with_changes(body=body)]).code


def test_plain_references_rewritten():
  out = rename(
    """
    def f(self, x):
        self.total += x
        return self.compute(self, x=self)
    """
  )
  assert "R.total += x" in out
  assert "return R.compute(R, x=R)" in out
  assert "self" not in out.split("\n", 1)[1]


def test_attribute_and_keyword_names_are_unrelated():
  """
  Scenario: 'self' appears as an attribute name and a keyword name.
  Expect: only the variable reference is renamed.
  """
  out = rename(
    """
    def f(self):
        return other.self + call(self=1) + self.x
    """
  )
  assert "other.self" in out
  assert "call(self=1)" in out
  assert "R.x" in out


def test_nested_function_parameter_shadows():
  out = rename(
    """
    def f(self):
        def helper(self):
            return self.inner
        return helper(self)
    """
  )
  assert "return self.inner" in out
  assert "return helper(R)" in out


def test_nested_function_local_assignment_shadows():
  out = rename(
    """
    def f(self):
        def helper():
            self = make()
            return self
        return self
    """
  )
  assert "self = make()" in out
  assert "        return self" in out
  assert "    return R" in out


def test_nested_function_free_reference_rewritten():
  out = rename(
    """
    def f(self):
        def helper():
            return self.value
        return helper()
    """
  )
  assert "return R.value" in out


def test_defaults_and_decorators_belong_to_enclosing_scope():
  """
  Scenario: nested def with default and decorator using 'self' and a parameter named 'self'.
  Expect: default and decorator rewritten, body left alone.
  """
  out = rename(
    """
    def f(self):
        @self.register
        def helper(self, limit=self.limit):
            return self
        return helper
    """
  )
  assert "@R.register" in out
  assert "limit=R.limit" in out
  assert "return self\n" in out


def test_lambda_parameter_shadows():
  out = rename(
    """
    def f(self):
        a = lambda self: self.x
        b = lambda: self.y
        c = lambda x=self: x
        return a, b, c
    """
  )
  assert "lambda self: self.x" in out
  assert "lambda: R.y" in out
  assert "lambda x=R: x" in out


def test_nested_class_method_shadows_scenario_c():
  """
  Scenario C: a nested class whose __del__(self) is declared inside the method.
  Expect: the inner 'self' is shadowed; outer references are rewritten.
  """
  node = parse_method(
    """
    def run(self):
        class Local:
            def __del__(self):
                self.closed = True
        keep = Local()
        return self.value
    """
  )
  resolution = resolve_receiver(node.body, "self")

  assert len(resolution.shadowed) == 2  # parameter + attribute base
  assert len(resolution.rewrite) == 1
  code = cst.Module(body=[node.with_changes(body=rewrite_body(node.body, resolution, "R"))]).code
  assert "def __del__(self):" in code
  assert "self.closed = True" in code
  assert "return R.value" in code


def test_class_body_binding_shadows():
  out = rename(
    """
    def f(self):
        class K:
            self = 1
            other = self
        return self
    """
  )
  assert "        self = 1" in out
  assert "other = self" in out
  assert "    return R" in out


def test_class_frame_is_transparent_for_methods():
  """
  Scenario: class body binds 'self'; a method of it reads 'self' freely.
  Expect: the method's free 'self' resolves to the enclosing function's receiver.
  """
  out = rename(
    """
    def f(self):
        class K:
            self = 1
            def m():
                return self
        return K
    """
  )
  assert "        self = 1" in out
  assert "            return R" in out


def test_class_bases_evaluated_outside():
  out = rename(
    """
    def f(self):
        class K(self.base, metaclass=self.meta):
            self = 2
        return K
    """
  )
  assert "class K(R.base, metaclass=R.meta):" in out
  assert "self = 2" in out


def test_comprehension_target_shadows():
  out = rename(
    """
    def f(self, items):
        a = [self for self in items]
        b = [self.g(x) for x in self.items]
        c = {self: v for self, v in items}
        return a, b, c
    """
  )
  assert "[self for self in items]" in out
  assert "[R.g(x) for x in R.items]" in out
  assert "{self: v for self, v in items}" in out


def test_first_iterable_evaluated_outside():
  """
  Scenario: comprehension rebinds 'self' but its first iterable reads 'self'.
  Expect: the first iterable is rewritten.
  """
  out = rename(
    """
    def f(self):
        return [self for self in self.children]
    """
  )
  assert "[self for self in R.children]" in out


def test_nested_comprehension_iterables_inside_scope():
  out = rename(
    """
    def f(self):
        return [y for self in rows for y in self]
    """
  )
  assert "[y for self in rows for y in self]" in out


def test_walrus_in_comprehension_binds_enclosing_function():
  """
  Scenario: a walrus target named 'self' inside a comprehension.
  Expect: it rebinds the enclosing function's variable and is rewritten.
  """
  out = rename(
    """
    def f(self, xs):
        found = [(self := x) for x in xs]
        return self
    """
  )
  assert "[(R := x) for x in xs]" in out
  assert "return R" in out


def test_global_declaration_shadows():
  out = rename(
    """
    def f(self):
        def g():
            global self
            self = 1
        return self
    """
  )
  assert "global self" in out
  assert "        self = 1" in out
  assert "    return R" in out


def test_nonlocal_declaration_follows_enclosing():
  out = rename(
    """
    def f(self):
        def g():
            nonlocal self
            self = 1
        g()
        return self
    """
  )
  assert "nonlocal R" in out
  assert "        R = 1" in out


def test_nonlocal_other_name_keeps_state():
  out = rename(
    """
    def f(self):
        def g(self):
            nonlocal counter
            return self
        return g
    """
  )
  assert "        return self" in out


def test_import_binding_receiver_is_aliased():
  out = rename(
    """
    def f(self):
        import self
        from pkg import self
        import os.path
        return self
    """
  )
  assert "import self as R" in out
  assert "from pkg import self as R" in out
  assert "import os.path" in out
  assert "return R" in out


def test_import_from_module_name_unrelated():
  out = rename(
    """
    def f(self):
        from self import thing
        return self
    """
  )
  assert "from self import thing" in out


def test_match_keyword_name_unrelated():
  out = rename(
    """
    def f(self, value):
        match value:
            case Point(self=other):
                return other
        return self
    """
  )
  assert "Point(self=other)" in out
  assert "    return R" in out


def test_custom_receiver_name():
  out = rename(
    """
    def make(cls, n):
        return cls(n)
    """,
    receiver="cls",
  )
  assert "return R(n)" in out


def test_name_nodes_partition():
  """
  Every receiver-named reference is in exactly one of rewrite or shadowed.
  """
  node = parse_method(
    """
    def f(self):
        g = lambda self: self
        h = [self for self in self.items]
        return self, g, h
    """
  )
  resolution = resolve_receiver(node.body, "self")

  assert not (resolution.rewrite & resolution.shadowed)
  assert len(resolution.rewrite) + len(resolution.shadowed) == 6
  assert len(resolution.rewrite) == 2
  assert resolution.visited == 10


class _ReferenceNames(cst.CSTVisitor):
  """Collects every Name that is a variable reference, ignoring scopes entirely."""

  def __init__(self) -> None:
    self.names = []

  def visit_Name(self, node: cst.Name) -> None:
    self.names.append(node)

  def visit_Attribute(self, node: cst.Attribute) -> bool:
    node.value.visit(self)
    return False

  def visit_Arg(self, node: cst.Arg) -> bool:
    node.value.visit(self)
    return False

  def visit_ImportFrom(self, node: cst.ImportFrom) -> bool:
    for alias in node.names:
      alias.visit(self)
    return False

  def visit_ImportAlias(self, node: cst.ImportAlias) -> bool:
    if node.asname is not None:
      node.asname.visit(self)
    elif isinstance(node.name, cst.Name):
      node.name.visit(self)
    return False


class _RecordingResolver(ReceiverResolver):
  def __init__(self, receiver: str) -> None:
    super().__init__(receiver)
    self.seen = []

  def _classify(self, node, shadowed=None):
    self.seen.append(node)
    super()._classify(node, shadowed)


def test_every_reference_classified_exactly_once():
  """
  Across imports, keywords, attributes, decorators, nested defs, classes,
  lambdas, comprehensions and walrus targets, each reference is classified
  once and receiver occurrences split cleanly between rewrite and shadowed.
  """
  node = parse_method(
    """
    def f(self, items):
        import os.path
        from pkg.sub import thing as alias, other
        total = self.count + len(items)
        call(key=self, other=total)
        @wrap(self)
        def helper(self, n=self.limit):
            return self.value + n
        class Local(Base, metaclass=Meta):
            attr = self
        g = lambda self: self
        h = [self.x for self in items if self]
        if (found := total) > 0:
            pass
        return os.path.join(alias, other, helper, Local, g, h, found)
    """
  )
  references = _ReferenceNames()
  node.body.visit(references)

  resolver = _RecordingResolver("self")
  resolution = resolver.resolve(node.body)

  assert len(references.names) == 40
  assert resolution.visited == 40
  assert len(set(resolver.seen)) == len(resolver.seen)
  assert set(resolver.seen) == set(references.names)

  receiver_names = {n for n in references.names if n.value == "self"}
  assert not (resolution.rewrite & resolution.shadowed)
  assert resolution.rewrite | resolution.shadowed == receiver_names
  assert len(resolution.rewrite) == 5
  assert len(resolution.shadowed) == 7


def _resolve_with_positions(code: str, config: TransformConfig = None):
  module = cst.parse_module(textwrap.dedent(code).strip() + "\n")
  wrapper = MetadataWrapper(module, unsafe_skip_copy=True)
  positions = wrapper.resolve(PositionProvider)
  report = ScopeReport()
  node = module.body[0]
  resolver = ReceiverResolver("self", config=config, positions=positions, report=report)
  return resolver.resolve(node.body), report


def test_eval_with_receiver_is_ambiguous():
  resolution, report = _resolve_with_positions(
    """
    def f(self):
        return eval("self.x")
    """
  )
  assert not resolution.is_resolved
  assert report.has_issues
  issue = report.issues[0]
  assert issue.line == 2
  assert issue.column == 11
  assert "eval()" in issue.reason


def test_eval_without_receiver_token_is_fine():
  resolution, _ = _resolve_with_positions(
    """
    def f(self):
        return eval("selfish + 1"), exec(code)
    """
  )
  assert resolution.is_resolved


def test_introspection_without_args_is_ambiguous():
  resolution, report = _resolve_with_positions(
    """
    def f(self):
        names = locals()
        attrs = vars(self)
        return names
    """
  )
  assert len(resolution.ambiguous) == 1
  assert "locals()" in report.issues[0].render()


def test_self_documenting_fstring_is_ambiguous():
  resolution, report = _resolve_with_positions(
    """
    def f(self):
        return f"{self.x=}"
    """
  )
  assert not resolution.is_resolved
  assert "f-string" in report.issues[0].reason


def test_plain_fstring_is_rewritten():
  out = rename(
    """
    def f(self):
        return f"{self.x} {self!r}"
    """
  )
  assert 'f"{R.x} {R!r}"' in out


def test_opaque_construct_in_shadowed_scope_is_fine():
  """
  Scenario: eval() referencing 'self' inside a nested function that has its own 'self'.
  Expect: nothing ambiguous, since the enclosing receiver cannot be reached.
  """
  resolution, _ = _resolve_with_positions(
    """
    def f(self):
        def g(self):
            return eval("self")
        return g
    """
  )
  assert resolution.is_resolved


def test_dotted_import_of_receiver_is_ambiguous():
  resolution, _ = _resolve_with_positions(
    """
    def f(self):
        import self.sub
        return self
    """
  )
  assert not resolution.is_resolved


def test_configurable_opaque_callables():
  config = TransformConfig(dynamic_code_callables=["run_code"], introspection_callables=[])
  resolution, _ = _resolve_with_positions(
    """
    def f(self):
        run_code("self.x")
        return locals()
    """,
    config=config,
  )
  assert len(resolution.ambiguous) == 1

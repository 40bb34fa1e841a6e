"""
Tests for Binding Collection.

Verifies:
1.  **Targets**: Which names an assignment target binds.
2.  **Scope Bindings**: Local, global and nonlocal names of a single scope,
    stopping at nested scope boundaries.
3.  **Identifiers**: The full identifier pool used by the name allocator.
4.  **Generators**: ``yield`` detection limited to the function's own scope.
"""

import libcst as cst
import pytest

from unwind_guard.analysis.bindings import (
  collect_identifiers,
  collect_scope_bindings,
  import_binding,
  is_generator_body,
  parameter_names,
  target_names,
)


def func(code: str) -> cst.FunctionDef:
  return cst.parse_statement(code.strip() + "\n")


@pytest.mark.parametrize(
  "expr, expected",
  [
    ("a", ["a"]),
    ("a, b", ["a", "b"]),
    ("[a, (b, *c)]", ["a", "b", "c"]),
    ("self.x", []),
    ("x[0]", []),
  ],
)
def test_target_names(expr, expected):
  assert target_names(cst.parse_expression(expr)) == expected


def test_import_binding_variants():
  plain = cst.parse_statement("import a.b.c").body[0].names[0]
  aliased = cst.parse_statement("import a.b as c").body[0].names[0]
  from_import = cst.parse_statement("from m import x").body[0].names[0]

  assert import_binding(plain) == "a"
  assert import_binding(aliased) == "c"
  assert import_binding(from_import) == "x"


def test_scope_bindings_statements():
  """
  Scenario: every binding form of a function body.
  Expect: all bound names collected once.
  """
  node = func(
    """
def f(p, *args, k, **kw):
    a = 1
    b: int = 2
    c += 1
    for d in x: pass
    with open(x) as e: pass
    try: pass
    except Exception as g: pass
    import h
    from m import i
    del j
    if (k2 := 3): pass
    def inner(): pass
    class Inner: pass
"""
  )
  bindings = collect_scope_bindings(node.body, node.params)

  assert {"a", "b", "c", "d", "e", "g", "h", "i", "j", "k2", "inner", "Inner"} <= bindings.bound
  assert {"p", "args", "k", "kw"} <= bindings.bound


def test_scope_bindings_stop_at_nested_scopes():
  """
  Scenario: names assigned inside nested def/lambda/class bodies.
  Expect: they do not bind in the outer scope.
  """
  node = func(
    """
def f():
    def inner():
        hidden = 1
    class K:
        attr = 2
    fn = lambda arg: arg
"""
  )
  bindings = collect_scope_bindings(node.body)

  assert "hidden" not in bindings.bound
  assert "attr" not in bindings.bound
  assert "arg" not in bindings.bound
  assert {"inner", "K", "fn"} <= bindings.bound


def test_comprehension_walrus_binds_outside():
  node = func(
    """
def f(xs):
    return [(y := x) for x in xs]
"""
  )
  bindings = collect_scope_bindings(node.body)
  assert "y" in bindings.bound


def test_global_and_nonlocal_declarations():
  node = func(
    """
def f():
    global self
    nonlocal other
    self = 1
    other = 2
"""
  )
  bindings = collect_scope_bindings(node.body)

  assert "self" in bindings.globals
  assert "other" in bindings.nonlocals
  assert not bindings.binds_locally("self")
  assert not bindings.binds_locally("other")


def test_match_captures():
  node = func(
    """
def f(v):
    match v:
        case [first, *rest]: pass
        case {"k": val, **others}: pass
        case Point(x=px) as whole: pass
"""
  )
  bindings = collect_scope_bindings(node.body)
  assert {"first", "rest", "val", "others", "px", "whole"} <= bindings.bound


def test_parameter_names_all_groups():
  node = func("def f(a, /, b, *c, d, **e): pass")
  assert parameter_names(node.params) == ["a", "b", "c", "d", "e"]


def test_parameter_names_bare_star():
  node = func("def f(a, *, d): pass")
  assert parameter_names(node.params) == ["a", "d"]


def test_collect_identifiers_everywhere():
  node = func(
    """
@decorate
def f(a: Ann = default) -> Ret:
    return helper(a).attr
"""
  )
  names = collect_identifiers(node)
  assert {"decorate", "f", "a", "Ann", "default", "Ret", "helper", "attr"} <= names


def test_collect_identifiers_many_trees():
  names = collect_identifiers(cst.parse_statement("x = 1"), cst.parse_statement("y = z"))
  assert names == {"x", "y", "z"}


def test_generator_detection():
  assert is_generator_body(func("def f():\n    yield 1\n").body)
  assert is_generator_body(func("def f():\n    x = yield from g()\n").body)


def test_generator_detection_ignores_nested_scopes():
  """
  Scenario: yield only inside a nested function.
  Expect: the outer function is not a generator.
  """
  node = func(
    """
def f():
    def g():
        yield 1
    return g
"""
  )
  assert not is_generator_body(node.body)

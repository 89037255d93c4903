"""
Sandboxed evaluator for custom_script rules.

A custom_script is a single Python-syntax expression evaluated against one
resource. The expression is parsed with ``ast`` and interpreted node by node;
it is never passed to ``eval``/``exec`` and has no access to builtins,
modules, the filesystem or the network.

Language:
  - Names: ``resource`` (the resource as plain data) and a fixed set of
    functions: len, str, int, float, bool, abs, min, max, any, all
  - Constants: strings, ints, floats, bools, None
  - List and tuple literals
  - Attribute access and subscripts on mappings (missing keys yield None),
    integer subscripts on lists and strings (out of range yields None)
  - Boolean ops: and, or, not
  - Comparisons: == != < <= > >= in not in is is not
  - Arithmetic: + - * / // % and unary -/+
  - Conditional expressions: ``a if cond else b``
  - Whitelisted methods: str.lower/upper/strip/startswith/endswith/split,
    dict.get/keys/values/items

A leading ``return`` and trailing ``;`` are tolerated so function-body style
snippets such as ``return resource.is_encrypted;`` keep working.

Limits (all violations raise a ScriptError subclass):
  - step budget: every interpreted node costs one step
  - wall-clock deadline checked on every step
  - sequence cap: no string, list or mapping larger than the cap may be
    built, and resource data is copied in only if its collections fit;
    integers are capped in bit length
"""

import ast
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .exceptions import ScriptExecutionError, ScriptTimeoutError, UnsafeScriptError

ROOT_NAME = "resource"
MAX_SCRIPT_LENGTH = 4096
MAX_INT_BITS = 4096

ALLOWED_BOOL_OPS = (ast.And, ast.Or)
ALLOWED_UNARY_OPS = (ast.Not, ast.USub, ast.UAdd)
ALLOWED_BIN_OPS = (ast.Add, ast.Sub, ast.Mult, ast.Div, ast.FloorDiv, ast.Mod)
ALLOWED_CMP_OPS = (
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.In,
    ast.NotIn,
    ast.Is,
    ast.IsNot,
)

SAFE_SCALAR_TYPES = (str, int, float, bool, type(None))

STRING_METHODS = frozenset({"lower", "upper", "strip", "startswith", "endswith", "split"})
MAPPING_METHODS = frozenset({"get", "keys", "values", "items"})


def _to_int(value: Any) -> int:
    if isinstance(value, str) and len(value) > 64:
        raise ScriptExecutionError("int() argument too long")
    return int(value)


SAFE_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "len": len,
    "str": str,
    "int": _to_int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "any": any,
    "all": all,
}


@dataclass(frozen=True)
class CompiledScript:
    """A validated script ready for repeated evaluation."""

    source: str
    tree: ast.Expression


class _ScriptValidator(ast.NodeVisitor):
    """Rejects any syntax outside the sandboxed expression language."""

    def __init__(self, max_sequence_length: int):
        self.max_sequence_length = max_sequence_length

    def visit(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Load):
            return None
        if isinstance(node, ast.Expression):
            return self.visit(node.body)
        return super().visit(node)

    def generic_visit(self, node: ast.AST) -> Any:
        raise UnsafeScriptError(f"Disallowed syntax: {type(node).__name__}")

    def visit_Constant(self, node: ast.Constant) -> Any:
        if not isinstance(node.value, SAFE_SCALAR_TYPES):
            raise UnsafeScriptError(f"Disallowed constant type: {type(node.value).__name__}")
        if isinstance(node.value, str) and len(node.value) > self.max_sequence_length:
            raise UnsafeScriptError("String constant too long")

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id != ROOT_NAME:
            raise UnsafeScriptError(f"Unknown name: {node.id}")

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        if node.attr.startswith("_"):
            raise UnsafeScriptError("Private attributes are not allowed")
        self.visit(node.value)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        if isinstance(node.slice, ast.Slice):
            raise UnsafeScriptError("Slices are not allowed")
        self.visit(node.value)
        self.visit(node.slice)

    def visit_Call(self, node: ast.Call) -> Any:
        if node.keywords:
            raise UnsafeScriptError("Keyword arguments are not allowed")
        if any(isinstance(arg, ast.Starred) for arg in node.args):
            raise UnsafeScriptError("Argument unpacking is not allowed")

        func = node.func
        if isinstance(func, ast.Name):
            if func.id not in SAFE_FUNCTIONS:
                raise UnsafeScriptError(f"Function not allowed: {func.id}")
        elif isinstance(func, ast.Attribute):
            if func.attr not in STRING_METHODS and func.attr not in MAPPING_METHODS:
                raise UnsafeScriptError(f"Method not allowed: {func.attr}")
            self.visit(func.value)
        else:
            raise UnsafeScriptError("Only named functions and whitelisted methods may be called")

        for arg in node.args:
            self.visit(arg)

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if not isinstance(node.op, ALLOWED_BOOL_OPS):
            raise UnsafeScriptError("Disallowed boolean operator")
        for value in node.values:
            self.visit(value)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        if not isinstance(node.op, ALLOWED_UNARY_OPS):
            raise UnsafeScriptError("Disallowed unary operator")
        self.visit(node.operand)

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        if not isinstance(node.op, ALLOWED_BIN_OPS):
            raise UnsafeScriptError(f"Disallowed binary operator: {type(node.op).__name__}")
        self.visit(node.left)
        self.visit(node.right)

    def visit_Compare(self, node: ast.Compare) -> Any:
        for op in node.ops:
            if not isinstance(op, ALLOWED_CMP_OPS):
                raise UnsafeScriptError("Disallowed comparison operator")
        self.visit(node.left)
        for comparator in node.comparators:
            self.visit(comparator)

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        self.visit(node.test)
        self.visit(node.body)
        self.visit(node.orelse)

    def visit_List(self, node: ast.List) -> Any:
        for elt in node.elts:
            if isinstance(elt, ast.Starred):
                raise UnsafeScriptError("Unpacking is not allowed")
            self.visit(elt)

    visit_Tuple = visit_List


class _Interpreter:
    """Evaluates one validated tree under step, time and size budgets."""

    def __init__(self, deadline: float, max_steps: int, max_sequence_length: int):
        self.deadline = deadline
        self.max_steps = max_steps
        self.max_sequence_length = max_sequence_length
        self.steps = 0

    def _tick(self) -> None:
        self.steps += 1
        if self.steps > self.max_steps:
            raise ScriptTimeoutError(f"Script exceeded step budget of {self.max_steps}")
        if time.monotonic() >= self.deadline:
            raise ScriptTimeoutError("Script exceeded time limit")

    def _check_size(self, value: Any) -> Any:
        if isinstance(value, (str, list, tuple, dict)) and len(value) > self.max_sequence_length:
            raise ScriptExecutionError("Script value exceeds size limit")
        if isinstance(value, int) and not isinstance(value, bool) and value.bit_length() > MAX_INT_BITS:
            raise ScriptExecutionError("Script integer exceeds size limit")
        if isinstance(value, float) and not math.isfinite(value):
            raise ScriptExecutionError("Script produced a non-finite number")
        return value

    def eval(self, node: ast.AST, scope: Dict[str, Any]) -> Any:
        self._tick()

        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            return scope[node.id]

        if isinstance(node, ast.Attribute):
            return self._lookup(self.eval(node.value, scope), node.attr)

        if isinstance(node, ast.Subscript):
            return self._lookup(self.eval(node.value, scope), self.eval(node.slice, scope))

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for value in node.values:
                    result = self.eval(value, scope)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self.eval(value, scope)
                if result:
                    return result
            return result

        if isinstance(node, ast.UnaryOp):
            operand = self.eval(node.operand, scope)
            if isinstance(node.op, ast.Not):
                return not operand
            self._require_number(operand)
            return -operand if isinstance(node.op, ast.USub) else +operand

        if isinstance(node, ast.BinOp):
            return self._binop(node.op, self.eval(node.left, scope), self.eval(node.right, scope))

        if isinstance(node, ast.Compare):
            return self._compare(node, scope)

        if isinstance(node, ast.IfExp):
            branch = node.body if self.eval(node.test, scope) else node.orelse
            return self.eval(branch, scope)

        if isinstance(node, (ast.List, ast.Tuple)):
            items = [self.eval(elt, scope) for elt in node.elts]
            return self._check_size(items if isinstance(node, ast.List) else tuple(items))

        if isinstance(node, ast.Call):
            return self._call(node, scope)

        raise UnsafeScriptError(f"Unhandled syntax: {type(node).__name__}")

    def _lookup(self, container: Any, key: Any) -> Any:
        if isinstance(container, dict):
            if not isinstance(key, SAFE_SCALAR_TYPES):
                raise ScriptExecutionError("Mapping keys must be scalars")
            return container.get(key)
        if isinstance(container, (list, tuple, str)):
            if not isinstance(key, int) or isinstance(key, bool):
                raise ScriptExecutionError(f"Indices must be integers, not {type(key).__name__}")
            if -len(container) <= key < len(container):
                return container[key]
            return None
        if container is None:
            raise ScriptExecutionError(f"Cannot read {key!r} of None")
        raise ScriptExecutionError(f"Cannot read {key!r} of {type(container).__name__}")

    def _require_number(self, value: Any) -> None:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ScriptExecutionError(f"Expected a number, got {type(value).__name__}")

    def _binop(self, op: ast.operator, left: Any, right: Any) -> Any:
        if isinstance(op, ast.Mult):
            # Bound repetition before it allocates
            for seq, count in ((left, right), (right, left)):
                if isinstance(seq, (str, list, tuple)) and isinstance(count, int):
                    if len(seq) * max(count, 0) > self.max_sequence_length:
                        raise ScriptExecutionError("Script value exceeds size limit")
        try:
            if isinstance(op, ast.Add):
                result = left + right
            elif isinstance(op, ast.Sub):
                result = left - right
            elif isinstance(op, ast.Mult):
                result = left * right
            elif isinstance(op, ast.Div):
                result = left / right
            elif isinstance(op, ast.FloorDiv):
                result = left // right
            else:
                if isinstance(left, str):
                    raise ScriptExecutionError("String formatting is not allowed")
                result = left % right
        except (TypeError, ZeroDivisionError, OverflowError) as e:
            raise ScriptExecutionError(str(e)) from e
        return self._check_size(result)

    def _compare(self, node: ast.Compare, scope: Dict[str, Any]) -> bool:
        left = self.eval(node.left, scope)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.eval(comparator, scope)
            try:
                if isinstance(op, ast.Eq):
                    ok = left == right
                elif isinstance(op, ast.NotEq):
                    ok = left != right
                elif isinstance(op, ast.Lt):
                    ok = left < right
                elif isinstance(op, ast.LtE):
                    ok = left <= right
                elif isinstance(op, ast.Gt):
                    ok = left > right
                elif isinstance(op, ast.GtE):
                    ok = left >= right
                elif isinstance(op, ast.In):
                    ok = left in right
                elif isinstance(op, ast.NotIn):
                    ok = left not in right
                elif isinstance(op, ast.Is):
                    ok = left is right
                else:
                    ok = left is not right
            except TypeError as e:
                raise ScriptExecutionError(str(e)) from e
            if not ok:
                return False
            left = right
        return True

    def _call(self, node: ast.Call, scope: Dict[str, Any]) -> Any:
        args = [self.eval(arg, scope) for arg in node.args]
        func = node.func

        if isinstance(func, ast.Name):
            target = SAFE_FUNCTIONS[func.id]
        else:
            owner = self.eval(func.value, scope)
            if isinstance(owner, str) and func.attr in STRING_METHODS:
                target = getattr(owner, func.attr)
            elif isinstance(owner, dict) and func.attr in MAPPING_METHODS:
                target = getattr(owner, func.attr)
            else:
                raise ScriptExecutionError(f"{type(owner).__name__} has no method {func.attr}")

        try:
            result = target(*args)
        except (TypeError, ValueError, AttributeError) as e:
            raise ScriptExecutionError(str(e)) from e

        # Materialize dict views so they can be indexed and measured
        if isinstance(result, (type({}.keys()), type({}.values()), type({}.items()))):
            result = list(result)
        return self._check_size(result)


class ScriptSandbox:
    """
    Compiles and runs custom_script expressions under resource limits.

    Usage:
        sandbox = ScriptSandbox(timeout_ms=50, max_steps=10000, max_sequence_length=10000)
        compiled = sandbox.compile("resource.tags.get('Owner') is not None")
        passed = sandbox.run(compiled, resource.as_script_data())
    """

    def __init__(self, timeout_ms: int = 50, max_steps: int = 10000, max_sequence_length: int = 10000):
        self.timeout_ms = timeout_ms
        self.max_steps = max_steps
        self.max_sequence_length = max_sequence_length

    @staticmethod
    def normalize(script: str) -> str:
        source = script.strip()
        if source.startswith("return ") or source.startswith("return\n"):
            source = source[len("return") :].strip()
        while source.endswith(";"):
            source = source[:-1].rstrip()
        return source

    def compile(self, script: str) -> CompiledScript:
        """
        Parse and validate a script.

        Raises:
            UnsafeScriptError: Syntax error or syntax outside the language.
        """
        if not isinstance(script, str) or not script.strip():
            raise UnsafeScriptError("Script must be a non-empty string")
        if len(script) > MAX_SCRIPT_LENGTH:
            raise UnsafeScriptError(f"Script longer than {MAX_SCRIPT_LENGTH} characters")

        source = self.normalize(script)
        try:
            tree = ast.parse(source, mode="eval")
        except SyntaxError as e:
            raise UnsafeScriptError(f"Invalid syntax: {e.msg}") from e
        except (RecursionError, MemoryError) as e:
            raise UnsafeScriptError("Script nesting too deep") from e

        try:
            _ScriptValidator(self.max_sequence_length).visit(tree)
        except RecursionError as e:
            raise UnsafeScriptError("Script nesting too deep") from e
        return CompiledScript(source=source, tree=tree)

    def run(self, compiled: CompiledScript, resource_data: Dict[str, Any], timeout_ms: Optional[int] = None) -> bool:
        """
        Evaluate a compiled script against one resource.

        Returns:
            Truthiness of the expression result.

        Raises:
            ScriptTimeoutError: Step or time budget exhausted.
            ScriptExecutionError: Runtime failure inside the script.
        """
        budget_ms = timeout_ms if timeout_ms is not None else self.timeout_ms
        interpreter = _Interpreter(
            deadline=time.monotonic() + budget_ms / 1000.0,
            max_steps=self.max_steps,
            max_sequence_length=self.max_sequence_length,
        )
        scope = {ROOT_NAME: _freeze(resource_data, self.max_sequence_length)}
        try:
            return bool(interpreter.eval(compiled.tree.body, scope))
        except RecursionError as e:
            raise ScriptExecutionError("Script nesting too deep") from e


def _freeze(value: Any, max_sequence_length: int, depth: int = 0) -> Any:
    """
    Deep-copy resource data into plain dicts, lists and scalars.

    The script never sees the caller's objects, so it cannot mutate shared
    state through whitelisted methods.
    """
    if depth > 32:
        raise ScriptExecutionError("Resource data nested too deeply")
    if isinstance(value, dict):
        if len(value) > max_sequence_length:
            raise ScriptExecutionError("Resource mapping exceeds size limit")
        return {str(k): _freeze(v, max_sequence_length, depth + 1) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        if len(value) > max_sequence_length:
            raise ScriptExecutionError("Resource list exceeds size limit")
        return [_freeze(v, max_sequence_length, depth + 1) for v in value]
    if isinstance(value, SAFE_SCALAR_TYPES):
        return value
    return str(value)


__all__: List[str] = ["CompiledScript", "ScriptSandbox"]

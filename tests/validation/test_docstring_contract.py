"""AST-level docstring contracts for the package, its tests and examples."""

from __future__ import annotations

import ast
import unittest
from collections.abc import Iterator
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
SCAN_ROOTS = ("src", "examples", "tests")
IMPLICIT_PARAMETERS = frozenset({"self", "cls"})
NESTED_SCOPES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)

CallableNode = ast.FunctionDef | ast.AsyncFunctionDef


def _parsed_modules() -> Iterator[tuple[Path, ast.Module]]:
    """Yield every scanned module with its repository-relative path.

    Returns:
        Iterator over ``(path, module AST)`` pairs.
    """
    for root_name in SCAN_ROOTS:
        root = REPO_ROOT / root_name
        if not root.is_dir():
            continue
        for path in sorted(root.rglob("*.py")):
            yield path.relative_to(REPO_ROOT), ast.parse(path.read_text(encoding="utf-8"))


def _documented_callables(tree: ast.Module) -> Iterator[tuple[str, CallableNode]]:
    """Yield module-level functions and class methods with qualified names.

    Args:
        tree: Parsed module.

    Returns:
        Iterator over ``(qualified name, callable node)`` pairs.
    """
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            yield node.name, node
        elif isinstance(node, ast.ClassDef):
            for member in node.body:
                if isinstance(member, (ast.FunctionDef, ast.AsyncFunctionDef)):
                    yield f"{node.name}.{member.name}", member


def _sections(docstring: str) -> set[str]:
    """Collect Google-style section headers of a docstring.

    Args:
        docstring: Cleaned docstring text.

    Returns:
        Header names without the trailing colon.
    """
    return {
        line.strip()[:-1]
        for line in docstring.splitlines()
        if line.strip().endswith(":") and line.strip()[:-1].isalpha()
    }


def _takes_arguments(node: CallableNode) -> bool:
    """Return whether a callable has parameters beyond ``self``/``cls``.

    Args:
        node: Callable to inspect.

    Returns:
        ``True`` when an explicit parameter exists.
    """
    arguments = node.args
    names = [arg.arg for arg in (*arguments.posonlyargs, *arguments.args, *arguments.kwonlyargs)]
    names.extend(arg.arg for arg in (arguments.vararg, arguments.kwarg) if arg is not None)
    return any(name not in IMPLICIT_PARAMETERS for name in names)


def _returns_value(node: CallableNode) -> bool:
    """Return whether the return annotation promises a value.

    Args:
        node: Callable to inspect.

    Returns:
        ``True`` for an annotation other than ``None``.
    """
    annotation = node.returns
    if annotation is None:
        return False
    if isinstance(annotation, ast.Constant):
        return annotation.value is not None
    return not (isinstance(annotation, ast.Name) and annotation.id == "None")


def _raises_directly(node: CallableNode) -> bool:
    """Return whether the callable body raises a new exception itself.

    Nested functions, classes and lambdas are skipped; bare re-raises do not
    count.

    Args:
        node: Callable to inspect.

    Returns:
        ``True`` if a ``raise <exception>`` statement belongs to ``node``.
    """
    pending: list[ast.AST] = list(node.body)
    while pending:
        current = pending.pop()
        if isinstance(current, ast.Raise) and current.exc is not None:
            return True
        pending.extend(
            child for child in ast.iter_child_nodes(current) if not isinstance(child, NESTED_SCOPES)
        )
    return False


class DocstringContractTests(unittest.TestCase):
    """Validate module and callable docstrings across the repository."""

    def test_modules_have_summary_docstrings(self) -> None:
        """Require a docstring at the top of every non-empty module."""
        missing = [
            str(path)
            for path, tree in _parsed_modules()
            if tree.body and not (ast.get_docstring(tree) or "").strip()
        ]
        self.assertEqual(missing, [], "modules without docstring")

    def test_classes_have_docstrings(self) -> None:
        """Require a docstring on every module-level class."""
        missing = [
            f"{path}:{node.lineno} {node.name}"
            for path, tree in _parsed_modules()
            for node in tree.body
            if isinstance(node, ast.ClassDef) and ast.get_docstring(node) is None
        ]
        self.assertEqual(missing, [], "classes without docstring")

    def test_callable_sections_follow_signatures(self) -> None:
        """Require Args, Returns and Raises sections where the code needs them."""
        violations: list[str] = []
        for path, tree in _parsed_modules():
            for name, node in _documented_callables(tree):
                where = f"{path}:{node.lineno} `{name}`"
                docstring = ast.get_docstring(node)
                if docstring is None:
                    violations.append(f"{where} has no docstring")
                    continue
                sections = _sections(docstring)
                if _takes_arguments(node) and "Args" not in sections:
                    violations.append(f"{where} lacks Args")
                if _returns_value(node) and "Returns" not in sections:
                    violations.append(f"{where} lacks Returns")
                if _raises_directly(node) and "Raises" not in sections:
                    violations.append(f"{where} lacks Raises")

        if violations:
            formatted = "\n".join(f"- {item}" for item in violations)
            self.fail(f"Docstring contract violations:\n{formatted}")

    def test_raise_detection_ignores_nested_scopes(self) -> None:
        """Attribute raises to the enclosing callable only."""
        tree = ast.parse(
            "def outer():\n"
            "    def inner():\n"
            "        raise ValueError('x')\n"
            "    try:\n"
            "        inner()\n"
            "    except ValueError:\n"
            "        raise\n"
            "def direct():\n"
            "    if True:\n"
            "        raise KeyError('y')\n"
        )
        outer, direct = tree.body
        self.assertFalse(_raises_directly(outer))
        self.assertTrue(_raises_directly(direct))


if __name__ == "__main__":
    unittest.main()

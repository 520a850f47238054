# discovery.py
# Finds runnable entry points in a scripts directory.
#
# A runnable entry point is a public top-level coroutine function taking
# `page`, `context` and `stagehand` parameters:
#
#   async def main(page: Page, context: BrowserContext, stagehand: Stagehand) -> None
#
# Annotations are optional, but when present they must name the expected
# driver types. Parsing is static (ast); no script code is executed.

import ast
from pathlib import Path

from flyspace import display
from flyspace.models import ExportDetails

ENTRY_PARAMETERS: dict[str, frozenset[str]] = {
    "page": frozenset({"Page", "StagehandPage"}),
    "context": frozenset({"BrowserContext", "StagehandContext"}),
    "stagehand": frozenset({"Stagehand"}),
}


def _annotation_name(node: ast.expr) -> str | None:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value.rsplit(".", 1)[-1]
    return None


def is_entry_point(node: ast.AST) -> bool:
    if not isinstance(node, ast.AsyncFunctionDef):
        return False

    arguments = node.args
    params = {arg.arg: arg for arg in (*arguments.posonlyargs, *arguments.args, *arguments.kwonlyargs)}
    for name, allowed_types in ENTRY_PARAMETERS.items():
        param = params.get(name)
        if param is None:
            return False
        if param.annotation is not None and _annotation_name(param.annotation) not in allowed_types:
            return False
    return True


def _declared_all(tree: ast.Module) -> list[str] | None:
    for node in tree.body:
        if not isinstance(node, ast.Assign):
            continue
        if not any(isinstance(target, ast.Name) and target.id == "__all__" for target in node.targets):
            continue
        if isinstance(node.value, (ast.List, ast.Tuple)):
            return [
                element.value
                for element in node.value.elts
                if isinstance(element, ast.Constant) and isinstance(element.value, str)
            ]
    return None


def collect_exports(tree: ast.Module) -> ExportDetails:
    """Public top-level names of a module, and which of them are entry points."""
    names: list[str] = []
    entry_points: set[str] = set()

    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            names.append(node.name)
            if is_entry_point(node):
                entry_points.add(node.name)
        elif isinstance(node, ast.Assign):
            names.extend(target.id for target in node.targets if isinstance(target, ast.Name))
        elif isinstance(node, ast.AnnAssign) and isinstance(node.target, ast.Name):
            names.append(node.target.id)

    declared = _declared_all(tree)
    if declared is not None:
        exports = [name for name in declared if name in names]
    else:
        exports = list(dict.fromkeys(name for name in names if not name.startswith("_")))

    return ExportDetails(
        matching_exports=[name for name in exports if name in entry_points],
        all_exports=exports,
    )


def find_matching_exports(directory: str | Path) -> dict[str, ExportDetails]:
    """
    Scan `directory` (non-recursive) for Python scripts with entry points.

    Files that fail to parse are skipped; files without entry points are
    left out of the result.
    """
    found: dict[str, ExportDetails] = {}
    for path in sorted(Path(directory).resolve().glob("*.py")):
        if not path.is_file():
            continue
        try:
            tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
        except (OSError, SyntaxError, UnicodeDecodeError) as exc:
            display.script_skipped(str(path), str(exc))
            continue

        details = collect_exports(tree)
        if details.matching_exports:
            found[str(path)] = details
    return found

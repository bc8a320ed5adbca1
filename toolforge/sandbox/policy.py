"""Static policy check for tenant program text before it is compiled."""

import ast
import re
import sys
from typing import Iterable, List, Optional, Set

# Standard library modules tenant handlers may import
SAFE_MODULES: Set[str] = {
    "base64", "collections", "dataclasses", "datetime", "decimal", "enum",
    "functools", "hashlib", "hmac", "itertools", "json", "math", "re",
    "statistics", "string", "textwrap", "time", "typing", "uuid", "zoneinfo",
}

# Distribution name -> import name for client libraries handlers commonly declare
DEPENDENCY_MODULES = {
    "slack-sdk": "slack_sdk",
    "slack_sdk": "slack_sdk",
    "pygithub": "github",
    "google-api-python-client": "googleapiclient",
    "google-auth": "google",
    "httpx": "httpx",
    "aiohttp": "aiohttp",
    "requests": "requests",
}

BANNED_NAMES = {
    "eval", "exec", "compile", "open", "__import__", "globals", "locals", "vars",
    "getattr", "setattr", "delattr", "breakpoint", "input", "memoryview",
}

# Attributes that reach processes, sockets or local files through an allowed module
BANNED_ATTRIBUTES = {
    "subprocess", "system", "popen", "urlopen", "urlretrieve", "open_connection",
    "open_unix_connection", "start_server", "start_unix_server", "FileHandler",
    "Popen", "fork", "execv", "execve", "execvp", "kill",
}
BANNED_ATTRIBUTE_PREFIXES = ("create_subprocess_", "spawn")

_REQUIREMENT_NAME =re.compile(r"^\s*([A-Za-z0-9_.\-]+)")


def dependency_module(dependency: str) -> Optional[str]:
    """Map a declared dependency (pip requirement string) to its import name."""
    match = _REQUIREMENT_NAME.match(dependency or "")
    if not match:
        return None
    name = match.group(1).lower()
    return DEPENDENCY_MODULES.get(name, name.replace("-", "_"))


def allowed_modules(dependencies: Iterable[str]) -> Set[str]:
    """
    Safe stdlib modules plus the import names of the tenant's declared dependencies.

    A dependency naming a standard library module outside SAFE_MODULES
    (os, asyncio, socket, ...) never widens the set.
    """
    allowed = set(SAFE_MODULES)
    for dependency in dependencies:
        module = dependency_module(dependency)
        if module and module not in sys.stdlib_module_names:
            allowed.add(module)
    return allowed


class _PolicyVisitor(ast.NodeVisitor):

    def __init__(self, allowed: Set[str]):
        self.allowed = allowed
        self.violations: List[str] = []

    def _check_module(self, module: Optional[str], lineno: int) -> None:
        base = (module or "").split(".", 1)[0]
        if base not in self.allowed:
            self.violations.append(f"line {lineno}: import of '{module}' is not allowed")

    def visit_Import(self, node: ast.Import):
        for alias in node.names:
            self._check_module(alias.name, node.lineno)

    def visit_ImportFrom(self, node: ast.ImportFrom):
        if node.level:
            self.violations.append(f"line {node.lineno}: relative imports are not allowed")
            return
        self._check_module(node.module, node.lineno)
        for alias in node.names:
            if alias.name in BANNED_ATTRIBUTES or alias.name.startswith(BANNED_ATTRIBUTE_PREFIXES):
                self.violations.append(f"line {node.lineno}: import of '{alias.name}' is not allowed")

    def visit_Name(self, node: ast.Name):
        if node.id in BANNED_NAMES or node.id.startswith("__"):
            self.violations.append(f"line {node.lineno}: use of '{node.id}' is not allowed")

    def visit_Attribute(self, node: ast.Attribute):
        if node.attr.startswith("__"):
            self.violations.append(f"line {node.lineno}: dunder attribute '{node.attr}' is not allowed")
        elif node.attr in BANNED_ATTRIBUTES or node.attr.startswith(BANNED_ATTRIBUTE_PREFIXES):
            self.violations.append(f"line {node.lineno}: attribute '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_Global(self, node: ast.Global):
        self.violations.append(f"line {node.lineno}: global statements are not allowed")


def check_program(source: str, allowed: Optional[Set[str]] = None) -> List[str]:
    """
    Return policy violations for program text; an empty list means it passes.

    Args:
        source: Python source text
        allowed: Importable top-level modules (defaults to SAFE_MODULES)
    """
    try:
        tree = ast.parse(source)
    except SyntaxError as e:
        return [f"syntax error at line {e.lineno}: {e.msg}"]

    visitor = _PolicyVisitor(allowed if allowed is not None else set(SAFE_MODULES))
    visitor.visit(tree)
    return visitor.violations

"""Sandbox worker process.

Runs as `python -I worker.py` with a minimal environment. Reads one JSON job
from stdin, applies resource limits, executes the compiled tenant program
with restricted builtins and an import allowlist, invokes one handler and
writes one JSON reply to stdout. Only the standard library is imported here.
"""

import asyncio
import base64
import builtins
import json
import marshal
import resource
import sys
import traceback

SAFE_BUILTIN_NAMES = [
    "abs", "all", "any", "ascii", "bin", "bool", "bytearray", "bytes", "callable",
    "chr", "dict", "divmod", "enumerate", "filter", "float", "format", "frozenset",
    "hasattr", "hash", "hex", "int", "isinstance", "issubclass", "iter", "len",
    "list", "map", "max", "min", "next", "object", "oct", "ord", "pow", "print",
    "property", "range", "repr", "reversed", "round", "set", "slice", "sorted",
    "staticmethod", "classmethod", "str", "sum", "super", "tuple", "type", "zip",
    "aiter", "anext",
    "ArithmeticError", "AssertionError", "AttributeError", "ConnectionError",
    "Exception", "IndexError", "KeyError", "LookupError", "NotImplementedError",
    "OSError", "RuntimeError", "StopAsyncIteration", "StopIteration",
    "TimeoutError", "TypeError", "ValueError", "ZeroDivisionError",
    "True", "False", "None", "NotImplemented", "__build_class__",
]


def apply_limits(memory_limit_mb, cpu_seconds):
    if cpu_seconds:
        resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds))
    if memory_limit_mb:
        limit = memory_limit_mb * 1024 * 1024
        resource.setrlimit(resource.RLIMIT_AS, (limit, limit))


def restricted_builtins(allowed_modules):
    allowed = set(allowed_modules)

    def guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
        if level != 0 or name.split(".", 1)[0] not in allowed:
            raise ImportError(f"import of '{name}' is not allowed in the sandbox")
        return builtins.__import__(name, globals, locals, fromlist, level)

    safe = {name: getattr(builtins, name) for name in SAFE_BUILTIN_NAMES if hasattr(builtins, name)}
    safe["__import__"] = guarded_import
    return safe


def run_job(job):
    code = marshal.loads(base64.b64decode(job["code"]))
    namespace = {
        "__builtins__": restricted_builtins(job.get("allowed_modules", [])),
        "__name__": "tenant_program",
    }
    exec(code, namespace)

    handler = namespace.get(job["handler"])
    if not callable(handler):
        return {"ok": False, "kind": "handler_not_found", "error": f"handler {job['handler']} is not defined"}

    load_credentials = namespace.get("load_credentials")
    credentials = job.get("credentials") or {}
    if callable(load_credentials):
        credentials = load_credentials(credentials)

    result = asyncio.run(handler(job.get("arguments") or {}, credentials))
    return {"ok": True, "result": result}


def main():
    reply_stream = sys.stdout
    # Handler prints must not corrupt the reply channel
    sys.stdout = sys.stderr

    try:
        job = json.loads(sys.stdin.read())
        apply_limits(job.get("memory_limit_mb"), job.get("cpu_seconds"))
        reply = run_job(job)
    except MemoryError:
        reply = {"ok": False, "kind": "invocation_error", "error": "memory limit exceeded"}
    except Exception as e:
        traceback.print_exc(file=sys.stderr)
        reply = {"ok": False, "kind": "invocation_error", "error": f"{type(e).__name__}: {e}"}

    reply_stream.write(json.dumps(reply, default=str))
    reply_stream.flush()


if __name__ == "__main__":
    main()

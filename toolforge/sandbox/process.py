"""Launch the sandbox worker for one handler invocation."""

import asyncio
import base64
import json
import logging
import marshal
import sys
import tempfile
from pathlib import Path
from types import CodeType
from typing import Any, Dict, Iterable, Optional

from toolforge.infra.config import config
from toolforge.infra.error_handler import HandlerNotFound, InvocationError
from toolforge.infra.timeout import SANDBOX_EXECUTION_TIMEOUT

logger = logging.getLogger(__name__)

WORKER_PATH = Path(__file__).with_name("worker.py")

# Child processes get no host secrets
SANDBOX_ENV = {
    "PATH": "/usr/local/bin:/usr/bin:/bin",
    "LANG": "C.UTF-8",
    "PYTHONIOENCODING": "utf-8",
}


class SandboxProcess:
    """Runs compiled tenant programs in a short-lived isolated interpreter."""

    def __init__(
        self,
        timeout: float = SANDBOX_EXECUTION_TIMEOUT,
        memory_limit_mb: int = config.SANDBOX_MEMORY_LIMIT_MB,
        cpu_seconds: int = config.SANDBOX_CPU_SECONDS,
        python_executable: Optional[str] = None,
    ):
        self.timeout = timeout
        self.memory_limit_mb = memory_limit_mb
        self.cpu_seconds = cpu_seconds
        self.python_executable = python_executable or sys.executable

    def _job(
        self,
        code: CodeType,
        tool_name: str,
        handler_name: str,
        arguments: Dict[str, Any],
        credentials: Dict[str, str],
        allowed_modules: Iterable[str],
    ) -> bytes:
        job = {
            "code": base64.b64encode(marshal.dumps(code)).decode("ascii"),
            "tool": tool_name,
            "handler": handler_name,
            "arguments": arguments,
            "credentials": credentials,
            "allowed_modules": sorted(allowed_modules),
            "memory_limit_mb": self.memory_limit_mb,
            "cpu_seconds": self.cpu_seconds,
        }
        return json.dumps(job, default=str).encode("utf-8")

    async def invoke(
        self,
        code: CodeType,
        tool_name: str,
        handler_name: str,
        arguments: Dict[str, Any],
        credentials: Dict[str, str],
        allowed_modules: Iterable[str],
    ) -> Any:
        """
        Invoke one handler of a compiled program in a fresh worker process.

        Returns:
            The handler's JSON-serializable result

        Raises:
            HandlerNotFound: Handler is not defined by the program
            InvocationError: Handler raised, timed out, or the worker crashed
        """
        payload = self._job(code, tool_name, handler_name, arguments, credentials, allowed_modules)

        process = await asyncio.create_subprocess_exec(
            self.python_executable, "-I", str(WORKER_PATH),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=SANDBOX_ENV,
            cwd=tempfile.gettempdir(),
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(payload), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"Sandbox timed out after {self.timeout}s running {tool_name}")
            raise InvocationError(f"Tool {tool_name} timed out after {self.timeout}s")

        if stderr:
            logger.debug(f"Sandbox stderr for {tool_name}: {stderr.decode('utf-8', 'replace')[-2000:]}")

        try:
            reply = json.loads(stdout.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.error(f"Sandbox worker for {tool_name} exited with code {process.returncode} and no reply")
            raise InvocationError(
                f"Tool {tool_name} crashed (exit code {process.returncode})"
            )

        if reply.get("ok"):
            return reply.get("result")
        if reply.get("kind") == "handler_not_found":
            raise HandlerNotFound(tool_name, handler_name)
        raise InvocationError(reply.get("error") or f"Tool {tool_name} failed")

"""Local CLI backend: runs an installed model CLI (claude, codex, gemini) per call.

The CLI is a single exclusive process per command, so its identity is the
command rather than the configured backend id. API-key variables are removed
from the child environment so the CLI uses its own login.
"""

import asyncio
import json
import logging
import os
import time

from config.config_loader import ModelConfig
from concord.providers.base import Backend, ProviderError

logger = logging.getLogger(__name__)

_STRIPPED_ENV = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GOOGLE_GENERATIVE_AI_API_KEY",
    "GEMINI_API_KEY",
    "XAI_API_KEY",
)


def cli_environment() -> dict[str, str]:
    env = dict(os.environ)
    for key in _STRIPPED_ENV:
        env.pop(key, None)
    return env


def _parse_json_object(raw: str) -> dict | None:
    trimmed = raw.strip()
    if not trimmed:
        return None
    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        first, last = trimmed.find("{"), trimmed.rfind("}")
        if first < 0 or last <= first:
            return None
        try:
            parsed = json.loads(trimmed[first:last + 1])
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None


def _parse_codex(stdout: str) -> str:
    """Last ``agent_message`` from codex's JSONL event stream."""
    last_message = ""
    for line in stdout.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            continue
        item = payload.get("item") or {}
        if payload.get("type") == "item.completed" and item.get("type") == "agent_message":
            if isinstance(item.get("text"), str):
                last_message = item["text"].strip()
    return last_message or stdout.strip()


def parse_cli_output(command: str, stdout: str) -> str:
    """Extract the reply text from a CLI's stdout, falling back to the raw text."""
    tool = os.path.basename(command).lower()
    if tool.startswith("codex"):
        return _parse_codex(stdout)
    key = "result" if tool.startswith("claude") else "response" if tool.startswith("gemini") else None
    if key:
        parsed = _parse_json_object(stdout)
        if parsed and isinstance(parsed.get(key), str):
            return parsed[key].strip()
    return stdout.strip()


class SubprocessCLIBackend(Backend):
    """Runs ``command args...`` with the prompt on stdin.

    A cancelled call (the invoker's deadline, or a debate STOP) terminates the
    child, then kills it if it has not exited within ``kill_grace_sec``.
    """

    def __init__(self, config: ModelConfig, kill_grace_sec: float = 1.5) -> None:
        if not config.command:
            raise ProviderError(config.name, "command is required for a CLI backend")
        self._config = config
        self._kill_grace_sec = kill_grace_sec

    def name(self) -> str:
        return self._config.name

    def identity(self) -> str:
        return f"cli:{self._config.command}"

    def model_string(self) -> str:
        return self._config.model

    def _argv(self) -> list[str]:
        return [self._config.command, *(a.replace("{model}", self._config.model) for a in self._config.args)]

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._kill_grace_sec)
        except TimeoutError:
            logger.warning("%s did not exit within %.1fs of SIGTERM, killing", self._config.command, self._kill_grace_sec)
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()

    async def call(self, prompt: str, system_prompt: str | None = None) -> str:
        stdin_text = f"{system_prompt}\n\n---\n\n{prompt}" if system_prompt else prompt
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._argv(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=cli_environment(),
            )
        except FileNotFoundError as exc:
            raise ProviderError(self._config.name, f"CLI executable not found: {self._config.command}") from exc

        try:
            stdout, stderr = await proc.communicate(stdin_text.encode("utf-8"))
        finally:
            if proc.returncode is None:
                await self._terminate(proc)

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[:500]
            raise ProviderError(self._config.name, f"{self._config.command} exited with {proc.returncode}: {detail}")

        text = parse_cli_output(self._config.command, stdout.decode("utf-8", errors="replace"))
        logger.debug("%s: %.2fs, %d chars", self._config.command, time.monotonic() - start, len(text))
        return text

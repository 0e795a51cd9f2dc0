"""Capability adapters: turn a routed request into a concrete action.

Each adapter exposes ``handle(request, conversation_id=None)`` and returns a
JSON-serialisable payload dict with at least ``type`` and ``success``.
Collaborator failures that leave the adapter unable to produce any result
raise :class:`DispatchError`; the dispatcher turns those into failed
outcomes.

Payload types:

- ``command`` / ``ai_generated_command``: a command extracted from the
  request or synthesised by the reasoning service, and its output.
- ``background_task``: a command started in the task registry.
- ``project``: a scaffolded project.
- ``open``: a path opened in the editor.
- ``code_generation``: source text written by the reasoning service.
- ``conversation``: a grounded conversational reply.
"""

from __future__ import annotations

import json
import logging
import shlex
import sys
from pathlib import Path
from typing import Any

from aide.orchestrator.extraction import (
    extract_command,
    extract_path,
    split_background,
    strip_fences,
)

log = logging.getLogger(__name__)


class DispatchError(RuntimeError):
    """An adapter could not produce a result for the request."""


def _shell_name() -> str:
    return "PowerShell" if sys.platform == "win32" else "POSIX shell"


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ExecutionAdapter:
    """Runs the command a request asks for.

    A literal command is extracted from the request when possible; otherwise
    the reasoning service is asked for one.  Requests that ask for
    background running go through the task registry instead of waiting.

    Args:
        executor: Shell collaborator (:class:`~aide.execution.shell.ShellExecutor`).
        reasoning: Reasoning collaborator used to synthesise commands.
        registry: Background task registry.
    """

    def __init__(self, executor: Any, reasoning: Any, registry: Any) -> None:
        self._executor = executor
        self._reasoning = reasoning
        self._registry = registry

    async def _synthesise(self, request: str) -> str:
        prompt = (
            f'The user wants to do this on their machine: "{request}"\n\n'
            f"What is the single {_shell_name()} command that does it? "
            "Reply with the command only, no explanation."
        )
        completion = await self._reasoning.complete(prompt)
        if not completion.success:
            raise DispatchError(f"Could not work out a command for this request: {completion.error}")
        command = strip_fences(completion.text)
        if not command:
            raise DispatchError("Could not work out a command for this request.")
        log.info("Synthesised command for request: %s", command)
        return command

    async def handle(self, request: str, conversation_id: str | None = None) -> dict[str, Any]:
        text, background = split_background(request)
        command = extract_command(text)
        kind = "command"
        if command is None:
            command = await self._synthesise(text or request)
            kind = "ai_generated_command"

        if background:
            task_id = await self._registry.start(command)
            snapshot = self._registry.status(task_id)
            if snapshot is None:
                # Retired and evicted before the first read (retention 0).
                state, error = "unknown", "Task finished before its status could be read."
            else:
                state = snapshot.state.value
                error = snapshot.error if snapshot.state.value == "failed" else None
            return {
                "type": "background_task",
                "source": kind,
                "task_id": task_id,
                "command": command,
                "state": state,
                "success": snapshot is not None and state != "failed",
                "error": error,
            }

        result = await self._executor.run(command)
        return {
            "type": kind,
            "command": command,
            "output": result.output,
            "error": result.error or None,
            "exit_code": result.exit_code,
            "success": result.success,
        }


# ---------------------------------------------------------------------------
# Coding
# ---------------------------------------------------------------------------

_CREATE_WORDS = ("create", "new", "scaffold", "أنشئ", "انشئ", "اعمل", "جديد")
_PROJECT_WORDS = ("project", "مشروع")
_OPEN_WORDS = ("open", "افتح")
_PYTHON_WORDS = ("python", "بايثون")

_GITIGNORE = "node_modules/\n__pycache__/\n.env\n*.log\n"

_CODE_SYSTEM_PROMPT = (
    "You are an expert programmer. Reply with the requested code in a single "
    "fenced block followed by brief usage notes."
)


def _has_any(text: str, words: tuple[str, ...]) -> bool:
    folded = text.casefold()
    return any(word in folded for word in words)


class CodingAdapter:
    """Project scaffolding, opening files, and code generation.

    Args:
        executor: Shell collaborator used for file writes and the editor.
        reasoning: Reasoning collaborator used for code generation.
        memory: Memory store; scaffolded projects are registered there.
        editor_command: Executable that opens files and folders.
        projects_root: Where projects go when the request names no path.
    """

    def __init__(
        self,
        executor: Any,
        reasoning: Any,
        memory: Any,
        editor_command: str = "cursor",
        projects_root: str = "~/Projects",
    ) -> None:
        self._executor = executor
        self._reasoning = reasoning
        self._memory = memory
        self.editor_command = editor_command
        self.projects_root = projects_root

    async def handle(self, request: str, conversation_id: str | None = None) -> dict[str, Any]:
        if _has_any(request, _CREATE_WORDS) and _has_any(request, _PROJECT_WORDS):
            return await self.create_project(request)

        if _has_any(request, _OPEN_WORDS):
            path = extract_path(request)
            if path:
                return await self.open_path(path)
            log.debug("Open intent without a path; generating code instead.")

        return await self.generate_code(request)

    async def open_path(self, path: str) -> dict[str, Any]:
        path = str(Path(path).expanduser())
        result = await self._executor.run(
            f"{self.editor_command} {shlex.quote(path)}", timeout=10
        )
        if not result.success:
            log.warning("Editor could not open %s: %s", path, result.error)
        return {
            "type": "open",
            "path": path,
            "success": result.success,
            "error": result.error or None,
        }

    async def create_project(self, request: str) -> dict[str, Any]:
        """Scaffold a node or python project and register it in memory."""
        target = extract_path(request)
        root = Path(target) if target else Path(self.projects_root) / "new-project"
        path = str(root.expanduser())
        name = Path(path).name or "new-project"
        kind = "python" if _has_any(request, _PYTHON_WORDS) else "node"

        try:
            existing = await self._executor.list_directory(path)
        except FileNotFoundError:
            existing = []
        if existing:
            log.warning("Not scaffolding into non-empty directory %s", path)
            return {
                "type": "project",
                "name": name,
                "path": path,
                "kind": kind,
                "files": [],
                "opened": False,
                "success": False,
                "error": f"{path} already exists and is not empty.",
            }

        files: dict[str, str] = {}
        if kind == "python":
            files["main.py"] = (
                "# Entry point\n\n\ndef main():\n    print(\"Hello, World!\")\n\n\n"
                "if __name__ == \"__main__\":\n    main()\n"
            )
            files["requirements.txt"] = "# Add your dependencies here\n"
        else:
            package = {
                "name": name,
                "version": "1.0.0",
                "description": "",
                "main": "index.js",
                "scripts": {"start": "node index.js", "dev": "node --watch index.js"},
            }
            files["package.json"] = json.dumps(package, indent=2) + "\n"
            files["index.js"] = "// Entry point\nconsole.log(\"Hello, World!\");\n"
        files["README.md"] = f"# {name}\n\nA new {kind} project\n"
        files[".gitignore"] = _GITIGNORE

        await self._executor.create_directory(path)
        for filename, content in files.items():
            await self._executor.write_file(Path(path) / filename, content)
        log.info("Scaffolded %s project at %s", kind, path)

        opened = (await self.open_path(path))["success"]

        try:
            await self._memory.create_project(
                name, path, description=f"{kind} project", tech_stack=[kind]
            )
        except Exception as exc:
            log.warning("Could not register project %s in memory: %s", name, exc)

        return {
            "type": "project",
            "name": name,
            "path": path,
            "kind": kind,
            "files": sorted(files),
            "opened": opened,
            "success": True,
            "error": None,
        }

    async def generate_code(self, request: str) -> dict[str, Any]:
        completion = await self._reasoning.complete(
            f'The user wants: "{request}"\n\nWrite the code for it.',
            system_prompt=_CODE_SYSTEM_PROMPT,
        )
        return {
            "type": "code_generation",
            "code": completion.text,
            "success": completion.success,
            "error": completion.error,
        }


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

_CONVERSATION_SYSTEM_PROMPT = """You are a personal assistant who knows the user and their projects.

{context}

---

Answer the user's request helpfully and concisely."""


class ConversationAdapter:
    """Answers from the reasoning service, grounded in assembled context.

    Args:
        reasoning: Reasoning collaborator.
        assembler: :class:`~aide.memory.context.ContextAssembler`.
    """

    def __init__(self, reasoning: Any, assembler: Any) -> None:
        self._reasoning = reasoning
        self._assembler = assembler

    async def handle(self, request: str, conversation_id: str | None = None) -> dict[str, Any]:
        bundle = await self._assembler.build(conversation_id, request)
        grounding = self._assembler.render(bundle)
        completion = await self._reasoning.complete(
            request,
            system_prompt=_CONVERSATION_SYSTEM_PROMPT.format(context=grounding),
        )
        return {
            "type": "conversation",
            "response": completion.text,
            "success": completion.success,
            "error": completion.error,
        }

"""Entry point for `python -m aide`: an interactive console session."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

_HELP = """Commands:
  /status            agent status
  /status <task id>  background task status
  /tasks             list background tasks
  /history           current conversation
  /new               start a new conversation
  /quit              exit
Prefix a message with @execution, @coding or @conversation to force a domain."""


async def _handle_command(agent, line: str) -> bool:
    """Run a console ``/command``.  Returns ``False`` when the session should end."""
    name, _, arg = line[1:].partition(" ")
    arg = arg.strip()

    if name in ("quit", "exit"):
        return False
    if name == "help":
        print(_HELP)
    elif name == "status" and arg:
        task = agent.task_status(arg)
        print(json.dumps(task.to_dict(), indent=2, ensure_ascii=False) if task else f"No task {arg}")
    elif name == "status":
        print(json.dumps(await agent.status(), indent=2, ensure_ascii=False, default=str))
    elif name == "tasks":
        tasks = agent.list_tasks()
        if not tasks:
            print("No background tasks.")
        for task in tasks:
            print(f"{task.id}  {task.state.value:<9}  {task.name}")
    elif name == "history":
        for message in await agent.get_conversation_history():
            print(f"[{message.timestamp:%H:%M}] {message.role}: {message.content}")
    elif name == "new":
        print(f"New conversation: {await agent.start_new_conversation()}")
    else:
        print(f"Unknown command /{name}.  Type /help.")
    return True


async def _console(settings) -> None:
    from aide.orchestrator.agent import PersonalAgent

    agent = PersonalAgent.from_settings(settings)
    await agent.initialize()
    print("Aide is ready.  Type /help for commands.")

    loop = asyncio.get_running_loop()
    try:
        while True:
            try:
                line = (await loop.run_in_executor(None, input, "> ")).strip()
            except EOFError:
                break
            if not line:
                continue
            if line.startswith("/"):
                if not await _handle_command(agent, line):
                    break
                continue

            forced = None
            if line.startswith("@"):
                forced, _, line = line[1:].partition(" ")
            response = await agent.chat(line, forced_domain=forced)
            print(response.message)
            if response.suggestions:
                print(f"({' / '.join(response.suggestions)})")
    finally:
        await agent.close()


def main() -> None:
    # Load .env from canonical locations before anything else.
    load_dotenv("config/.env")
    load_dotenv()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    log = logging.getLogger("aide")

    from aide.config import get_settings, has_config

    if not has_config():
        log.error(
            "No configuration found: set OPENROUTER_API_KEY in the environment, "
            "config/.env or .env, then restart."
        )
        sys.exit(1)

    try:
        settings = get_settings()
    except Exception as e:
        log.error("Configuration error: %s", e)
        sys.exit(1)

    log.info("Starting Aide (model: %s)...", settings.REASONING_MODEL)
    try:
        asyncio.run(_console(settings))
    except KeyboardInterrupt:
        log.info("Interrupted.")


if __name__ == "__main__":
    main()

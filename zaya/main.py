"""Zaya console entry point.

Runs one chat session in the terminal against the configured completion
service. Conversations are restored from the history store on start and
dumped back on exit.
"""

import asyncio
import logging

from zaya.bot.progress import run_with_progress
from zaya.config import settings
from zaya.llm.models import friendly
from zaya.llm.orchestrator import Orchestrator
from zaya.store import HistoryStore

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)

CONSOLE_SESSION_ID = 0


async def _typing() -> None:
    print("...", flush=True)


async def _reply(orchestrator: Orchestrator, text: str, force_keep_history: bool) -> None:
    reply = await run_with_progress(
        orchestrator.get_reply(CONSOLE_SESSION_ID, text, force_keep_history),
        _typing,
    )
    if reply is None:
        print("(no reply, see the logs)")
        return
    print(reply.text)
    if not reply.at_end:
        print("(reply cut off; send 'continue' for more)")


async def _chat(orchestrator: Orchestrator) -> None:
    if not orchestrator.has_session(CONSOLE_SESSION_ID):
        orchestrator.start_session(
            CONSOLE_SESSION_ID, settings.default_prompt, settings.default_max_history
        )
        await _reply(orchestrator, settings.welcome_message, force_keep_history=True)

    while True:
        try:
            text = (await asyncio.to_thread(input, "> ")).strip()
        except EOFError:
            return
        if not text:
            continue
        if text in ("/quit", "/exit"):
            return
        if text == "/restart":
            orchestrator.start_session(
                CONSOLE_SESSION_ID, settings.default_prompt, settings.default_max_history
            )
            print("History cleared.")
            continue
        if text == "/model":
            print(f"Using the {friendly(orchestrator.selector.active)} model.")
            continue

        await _reply(orchestrator, text, force_keep_history=text == "continue")


async def run() -> None:
    store = HistoryStore()
    orchestrator = Orchestrator.from_settings(settings)
    orchestrator.import_messages(await store.load_messages(), await store.load_max_history())
    orchestrator.registry.start_sweeper()

    try:
        await _chat(orchestrator)
    finally:
        for session_id, buffer in orchestrator.registry.snapshot_all():
            await store.set_max_history(session_id, buffer.max_count)
        await store.save_messages(orchestrator.export_messages())
        await orchestrator.close()


def main() -> None:
    """Start an interactive console chat."""
    logger.info("Starting Zaya with model %s...", settings.completion_model)
    asyncio.run(run())


if __name__ == "__main__":
    main()

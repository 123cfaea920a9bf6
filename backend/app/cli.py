"""Terminal chat front-end for the relay.

Usage:
    gemini-chat --url http://localhost:8000

Type a message and press Enter; the reply streams in as it is generated.
`/clear` drops the conversation, `/quit` (or Ctrl-D) exits, and Ctrl-C while
a reply is streaming cancels that turn.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
import sys
import threading
from typing import TextIO

from app.client import ChatClient, ConversationState, ConversationStatus
from app.config import settings


class StreamPrinter:
    """on_update callback that echoes only the newly appended part of the reply."""

    def __init__(self, out: TextIO = sys.stdout):
        self._out = out
        self._printed = 0

    def __call__(self, state: ConversationState) -> None:
        if state.status is not ConversationStatus.STREAMING:
            self._printed = 0
            return
        delta = state.streaming_content[self._printed:]
        if delta:
            self._out.write(delta)
            self._out.flush()
            self._printed = len(state.streaming_content)


def report_turn(client: ChatClient, reply, out: TextIO = sys.stdout) -> None:
    """Print whatever the finished turn left behind."""
    if reply is not None:
        out.write("\n" if reply.content else "(empty reply)\n")
    elif not client.state.connected and client.state.messages:
        out.write(f"\n{client.state.messages[-1].content}\n[disconnected]\n")
    else:
        out.write("\n[cancelled]\n")
    out.flush()


@contextlib.contextmanager
def cancel_on_interrupt(client: ChatClient):
    """Route Ctrl-C to client.cancel() for the duration of a turn."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, client.cancel)
    except (NotImplementedError, RuntimeError):
        # Windows event loops have no signal handlers; Ctrl-C then exits.
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def read_line(prompt: str) -> str:
    """input() on a daemon thread, so an interrupted prompt never blocks exit."""
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str] = loop.create_future()

    def deliver(result: str | None, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def worker() -> None:
        try:
            outcome = (input(prompt), None)
        except (EOFError, OSError, ValueError) as e:
            outcome = (None, e)
        # The loop is closed if the REPL exited while this read was pending.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(deliver, *outcome)

    threading.Thread(target=worker, name="stdin-reader", daemon=True).start()
    return await future


async def run_repl(url: str, history_window: int) -> None:
    async with ChatClient(
        url, history_window=history_window, on_update=StreamPrinter()
    ) as client:
        while True:
            try:
                line = await read_line("you> ")
            except EOFError:
                break
            command = line.strip()
            if command == "/quit":
                break
            if command == "/clear":
                await client.clear()
                print("(conversation cleared)")
                continue
            if not command:
                continue

            sys.stdout.write("assistant> ")
            sys.stdout.flush()
            with cancel_on_interrupt(client):
                reply = await client.send(line)
            report_turn(client, reply)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Chat with Gemini through the streaming relay")
    parser.add_argument("--url", default="http://localhost:8000", help="Relay base URL")
    parser.add_argument(
        "--history",
        type=int,
        default=settings.history_window,
        help="Number of prior messages sent with each turn",
    )
    args = parser.parse_args(argv)

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run_repl(args.url, args.history))


if __name__ == "__main__":
    main()

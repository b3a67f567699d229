import asyncio
import logging
import sys
from typing import IO, Optional, Set, TextIO, Union

from .dispatcher import ProtocolDispatcher
from .formatting import dumps_line

logger = logging.getLogger(__name__)


class LineTransport:
    """
    Newline-delimited JSON over a pair of streams.

    Input is read as raw bytes so that a line which is not valid UTF-8 gets a
    parse error instead of stopping the read loop. Each line is handled in its
    own task, so a slow query does not hold up the lines after it. Responses
    are written in the order they complete. Nothing but response envelopes is
    ever written to ``stdout``.
    """

    def __init__(
        self,
        dispatcher: ProtocolDispatcher,
        stdin: Optional[IO] = None,
        stdout: Optional[TextIO] = None,
    ):
        self.dispatcher = dispatcher
        self.stdin = stdin or getattr(sys.stdin, "buffer", sys.stdin)
        self.stdout = stdout or sys.stdout
        self._pending: Set[asyncio.Task] = set()

    async def run(self) -> None:
        """Read until EOF, then wait for in-flight lines to finish."""
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, self.stdin.readline)
            if not line:
                break
            task = asyncio.create_task(self._process(_strip_newline(line)))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        logger.info("Input closed")
        if self._pending:
            logger.info(f"Waiting for {len(self._pending)} in-flight request(s)")
            await asyncio.gather(*self._pending)

    async def _process(self, line: Union[str, bytes]) -> None:
        logger.debug(f"Received: {line[:200]!r}")
        try:
            response = await self.dispatcher.handle_line(line)
        except Exception:
            logger.exception(f"Unhandled error for input line: {line[:200]!r}")
            return
        if response is None:
            return
        payload = dumps_line(response)
        logger.debug(f"Sending: {payload[:200]}")
        self.stdout.write(payload + "\n")
        self.stdout.flush()


def _strip_newline(line: Union[str, bytes]) -> Union[str, bytes]:
    if isinstance(line, bytes):
        return line.rstrip(b"\r\n")
    return line.rstrip("\r\n")

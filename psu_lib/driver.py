"""Request/response discipline over a shared transport."""

import logging
import threading
from typing import Optional

from psu_lib import protocol
from psu_lib.errors import ResponseTimeout, SerialIOError
from psu_lib.framing import decode_line, encode_frame
from psu_lib.transport import Transport

logger = logging.getLogger(__name__)


class CommandDriver:
    """Sends commands and collects query replies, one exchange at a time.

    The poller thread, the waveform thread and direct calls all share the
    same driver. Each exchange holds the lock from flush through reply, and
    input is flushed before every send so a reply left unread by an earlier
    exchange is never taken as this command's answer.
    """

    def __init__(
        self,
        transport: Transport,
        response_timeout_s: float = protocol.RESPONSE_TIMEOUT_S,
    ) -> None:
        self._transport = transport
        self._response_timeout_s = response_timeout_s
        self._lock = threading.Lock()

    @property
    def transport(self) -> Transport:
        return self._transport

    def exchange(self, command: str) -> Optional[str]:
        """Send a command and, for queries, read exactly one reply line.

        Args:
            command: Command text without terminator

        Returns:
            Reply text for queries, None for set commands

        Raises:
            SerialIOError: If the command could not be written
            ResponseTimeout: If a query got no reply at all
        """
        with self._lock:
            try:
                self._transport.flush_input()
            except SerialIOError as e:
                logger.warning(f"Input flush failed before {command!r}: {e}")

            self._transport.write_bytes(encode_frame(command))
            logger.debug(f"TX: {command}")

            if not protocol.is_query(command):
                return None

            reply = decode_line(self._transport, self._response_timeout_s)
            if reply is None:
                raise ResponseTimeout(
                    f"No reply to {command!r} within {self._response_timeout_s}s"
                )

            logger.debug(f"RX: {reply}")
            return reply

    def execute(self, command: str) -> Optional[str]:
        """Send a command, returning the reply or None.

        Write failures and query timeouts are logged and reported as None so
        a single failed exchange never takes down the caller.
        """
        try:
            return self.exchange(command)
        except SerialIOError as e:
            logger.error(f"Write error for {command!r}: {e}")
        except ResponseTimeout as e:
            logger.warning(str(e))
        return None

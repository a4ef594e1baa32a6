# mrlink/nucleus/connection.py
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from mrlink.nucleus.errors import TransportError

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

ConnectingHandler = Callable[[], Awaitable[None]]
OpenHandler = Callable[[], Awaitable[None]]
MessageHandler = Callable[[Union[str, bytes]], Awaitable[None]]
CloseHandler = Callable[[Optional[str]], Awaitable[None]]
ErrorHandler = Callable[[BaseException], Awaitable[None]]


class BaseTransport(ABC):
    """
    A duplex, message-oriented connection with no protocol knowledge.

    The owner assigns the ``on_*`` coroutines before calling ``open``.
    ``on_connecting`` fires before every connection attempt, including
    reconnects.
    ``on_message`` is awaited for each frame in arrival order.
    """

    def __init__(self):
        self.on_connecting: Optional[ConnectingHandler] = None
        self.on_open: Optional[OpenHandler] = None
        self.on_message: Optional[MessageHandler] = None
        self.on_close: Optional[CloseHandler] = None
        self.on_error: Optional[ErrorHandler] = None

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    @abstractmethod
    async def open(self) -> None:
        pass

    @abstractmethod
    async def send(self, raw: str) -> None:
        """Sends one frame. Raises ``TransportError`` when the transport is not open."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    async def _fire_connecting(self) -> None:
        if self.on_connecting:
            await self.on_connecting()

    async def _fire_open(self) -> None:
        if self.on_open:
            await self.on_open()

    async def _fire_message(self, raw: Union[str, bytes]) -> None:
        if self.on_message:
            await self.on_message(raw)

    async def _fire_close(self, reason: Optional[str]) -> None:
        if self.on_close:
            await self.on_close(reason)

    async def _fire_error(self, error: BaseException) -> None:
        if self.on_error:
            await self.on_error(error)


class WebSocketTransport(BaseTransport):
    """
    Keeps a websocket open to the remote process, reconnecting after a delay
    when it drops, until ``close`` is called.
    """

    def __init__(self, url: str, open_timeout: float = 10.0, reconnect: bool = True, reconnect_delay: float = 10.0):
        super().__init__()
        self.url = url
        self._open_timeout = open_timeout
        self._reconnect = reconnect
        self._reconnect_delay = reconnect_delay
        self._websocket: Optional["ClientConnection"] = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._websocket is not None

    async def open(self) -> None:
        """Starts the background connection loop. Returns immediately."""
        if self._task and not self._task.done():
            logger.debug("[Transport] Connection loop already running.")
            return
        self._closing = False
        self._task = asyncio.create_task(self._connection_loop())

    async def send(self, raw: str) -> None:
        websocket = self._websocket
        if websocket is None:
            raise TransportError(f"Cannot send, no open connection to {self.url}.")
        try:
            await websocket.send(raw)
        except ConnectionClosed as e:
            raise TransportError(f"Connection to {self.url} closed while sending: {e}") from e

    async def close(self) -> None:
        self._closing = True
        if self._websocket is not None:
            await self._websocket.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _connection_loop(self) -> None:
        """
        Connects, pumps frames to ``on_message`` and, on a drop, waits and
        tries again while reconnection is enabled.
        """
        while not self._closing:
            reason: Optional[str] = None
            try:
                await self._fire_connecting()
                async with websockets.connect(self.url, open_timeout=self._open_timeout, max_size=None) as websocket:
                    self._websocket = websocket
                    logger.info(f"[Transport] Connection to {self.url} established.")
                    await self._fire_open()
                    async for message in websocket:
                        await self._fire_message(message)
                    reason = "closed by peer"
            except asyncio.CancelledError:
                reason = "cancelled"
                raise
            except ConnectionClosed as e:
                reason = f"code {e.rcvd.code if e.rcvd else 'none'}"
                logger.warning(f"[Transport] Connection to {self.url} lost ({reason}).")
            except (WebSocketException, OSError, asyncio.TimeoutError) as e:
                reason = type(e).__name__
                logger.warning(f"[Transport] Could not connect to {self.url}: {reason}: {e}")
                await self._fire_error(e)
            except Exception as e:
                reason = type(e).__name__
                logger.error(f"[Transport] Unexpected error on {self.url}: {e}", exc_info=True)
                await self._fire_error(e)
            finally:
                if self._websocket is not None:
                    self._websocket = None
                    await self._fire_close(reason)

            if not self._reconnect or self._closing:
                break
            logger.info(f"[Transport] Reconnecting to {self.url} in {self._reconnect_delay} seconds.")
            await asyncio.sleep(self._reconnect_delay)
        logger.info(f"[Transport] Connection loop for {self.url} has terminated.")

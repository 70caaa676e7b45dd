"""Session driver: routes decoded requests to the service."""

import asyncio
from collections.abc import Awaitable
from enum import Enum

from ..ports import LoggerPort
from .errors import CacheProgError, FramingError
from .models import Command, Request, Response
from .protocol import RequestReader, ResponseWriter
from .service import CacheService

EXIT_OK = 0
EXIT_FRAMING_ERROR = 1


class SessionState(str, Enum):
    OPEN = "open"
    DRAINING = "draining"
    TERMINATED = "terminated"


class Dispatcher:
    """Drives one protocol session from handshake to termination.

    Requests are read in order, but each get and put is handled in its own
    task and answered as soon as its outcome is known, so responses may be
    written in any order. A dispatcher serves a single session; ``state``
    reports where it is and ``run`` refuses to start once it has left OPEN.
    """

    def __init__(
        self,
        service: CacheService,
        reader: RequestReader,
        writer: ResponseWriter,
        logger: LoggerPort,
        close_grace: float = 60.0,
    ):
        self.service = service
        self.reader = reader
        self.writer = writer
        self.logger = logger
        self.close_grace = close_grace
        self.state = SessionState.OPEN
        self._tasks: dict[int, tuple[Request, asyncio.Task]] = {}

    async def run(self) -> int:
        """Serve until close, end of input, or a framing error. Returns an exit status."""
        if self.state is not SessionState.OPEN:
            raise RuntimeError(f"session is {self.state.value}")
        await self.writer.send_handshake()
        self.logger.info("Session open")

        while True:
            try:
                request = await self.reader.next_request()
            except FramingError as e:
                await self._abort(e)
                return EXIT_FRAMING_ERROR

            if request is None:
                self.logger.info("Input closed without close request")
                await self._shutdown(None)
                return EXIT_OK

            if request.command == Command.CLOSE:
                await self._shutdown(request)
                return EXIT_OK

            self._dispatch(request)

    def _dispatch(self, request: Request) -> None:
        if request.command == Command.GET:
            handler = self._handle_get(request)
        elif request.command == Command.PUT:
            handler = self._handle_put(request)
        else:
            handler = self._reply(Response.error_for(request.id, f"unknown command {request.command!r}"))

        task = asyncio.create_task(self._guarded(request, handler))
        self._tasks[request.id] = (request, task)
        task.add_done_callback(lambda _, request_id=request.id: self._tasks.pop(request_id, None))

    async def _guarded(self, request: Request, handler: Awaitable[None]) -> None:
        try:
            await handler
        except Exception as e:
            self.logger.error("Request handler failed", id=request.id, command=request.command, error=repr(e))
            await self._reply(Response.error_for(request.id, f"internal error: {e}"))

    async def _handle_get(self, request: Request) -> None:
        try:
            staged = await self.service.get(request.action_key)
        except CacheProgError as e:
            await self._reply(Response.error_for(request.id, str(e)))
            return
        if staged is None:
            await self._reply(Response.miss_for(request.id))
        else:
            await self._reply(Response.from_staged(request.id, staged))

    async def _handle_put(self, request: Request) -> None:
        try:
            staged = await self.service.put(request.action_key, request.object_key, request.body)
        except (CacheProgError, OSError) as e:
            self.logger.warning("Put failed", id=request.id, error=str(e))
            await self._reply(Response.error_for(request.id, str(e)))
            return
        await self._reply(Response.from_staged(request.id, staged))

    async def _reply(self, response: Response) -> None:
        await self.writer.send(response)

    async def _shutdown(self, close_request: Request | None) -> None:
        self.state = SessionState.DRAINING
        self.logger.info("Session draining", outstanding=len(self._tasks))

        gets = []
        puts = []
        for request, task in list(self._tasks.values()):
            if request.command == Command.GET:
                task.cancel()
                gets.append((request, task))
            else:
                puts.append(task)

        if gets:
            await asyncio.gather(*(task for _, task in gets), return_exceptions=True)
            for request, _ in gets:
                await self.writer.send(Response.miss_for(request.id))
        if puts:
            await asyncio.gather(*puts, return_exceptions=True)

        await self.service.drain(self.close_grace)
        await self.service.aclose()

        if close_request is not None:
            await self.writer.send(Response(id=close_request.id))
        self.writer.close()
        self.state = SessionState.TERMINATED
        self.logger.info("Session closed")

    async def _abort(self, error: FramingError) -> None:
        self.writer.close()
        self.state = SessionState.TERMINATED
        self.logger.error("Framing error, terminating session", error=str(error))
        tasks = [task for _, task in self._tasks.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.service.aclose()

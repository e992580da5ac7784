import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("veriqueue.resync")


class PollingTask:
    """
    Relance `tick` à intervalle fixe jusqu'à ce qu'il renvoie False ou que la
    tâche soit annulée. Doit être créée dans une boucle asyncio en cours.
    """

    def __init__(self, tick: Callable[[], Awaitable[bool]], interval: float,
                 *, immediate: bool = False, name: Optional[str] = None) -> None:
        self.interval = float(interval)
        self._tick = tick
        self._immediate = immediate
        self._task = asyncio.get_running_loop().create_task(self._run(), name=name)

    async def _run(self) -> None:
        if not self._immediate:
            await asyncio.sleep(self.interval)
        while True:
            if not await self._tick():
                return
            await asyncio.sleep(self.interval)

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()

    def is_current(self) -> bool:
        return asyncio.current_task() is self._task

    async def wait(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

"""Step sequencing engine shared by all scale drivers.

A driver describes its setup sequence as numbered steps. The machine calls
``on_next_step(0)``, ``on_next_step(1)``, ... until a step returns False. A
step that starts an operation whose answer arrives later as a notification
calls ``stop()``; the notification handler then calls ``resume()`` to carry
on with the next step.

Steps and notification handlers of one driver never run concurrently: both
hold ``StepMachine.lock`` while they execute.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

_LOGGER = logging.getLogger(__name__)

StepCallback = Callable[[int], Awaitable[bool]]


class StepMachine:
    """Resumable, integer-indexed step sequence.

    ``step_nr`` is the number of the next step to run. It only advances
    after a step returned True, so while step N waits for a notification,
    ``step_nr == N + 1``.
    """

    def __init__(
            self,
            on_next_step: StepCallback,
            *,
            on_sequence_end: Callable[[], None] | None = None,
            on_error: Callable[[Exception], None] | None = None,
            name: str = "driver",
    ):
        """Initialize the machine.

        Args:
            on_next_step: Coroutine running one step, returns False to finish
            on_sequence_end: Called when a step returned False
            on_error: Called when a step raised
            name: Label used in log messages
        """
        self._on_next_step = on_next_step
        self._on_sequence_end = on_sequence_end
        self._on_error = on_error
        self.name = name

        self.lock = asyncio.Lock()
        self._step_nr = 0
        self._stopped = False
        self._task: asyncio.Task[None] | None = None

    @property
    def step_nr(self) -> int:
        return self._step_nr

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def running(self) -> bool:
        """Check if a stepping task is scheduled or executing."""
        return self._task is not None and not self._task.done()

    def reset(self) -> None:
        """Prepare for a new session: next step is 0."""
        self.cancel()
        self._step_nr = 0
        self._stopped = False

    def start(self) -> None:
        """Start stepping from the current step number."""
        self._stopped = False
        self._kick()

    def stop(self) -> None:
        """Pause after the current step until resume() is called."""
        self._stopped = True

    def resume(self, expected_step: int | None = None) -> bool:
        """Clear the stopped flag and continue with the next step.

        Args:
            expected_step: If given, only resume when this is the step that
                stopped the machine (``expected_step == step_nr - 1``).
                Completions referring to an older step are ignored.

        Returns:
            True if the machine resumed
        """
        if expected_step is not None and expected_step != self._step_nr - 1:
            _LOGGER.debug(
                "%s: ignoring resume for step %d (at step %d)",
                self.name, expected_step, self._step_nr - 1,
            )
            return False
        self._stopped = False
        self._kick()
        return True

    def jump_next_to_step(self, step_nr: int, expected_step: int | None = None) -> bool:
        """Make step_nr the next step to run.

        Args:
            step_nr: Step to run next
            expected_step: Same stale guard as resume()

        Returns:
            True if the jump was applied
        """
        if expected_step is not None and expected_step != self._step_nr - 1:
            _LOGGER.debug(
                "%s: ignoring jump to %d from step %d (at step %d)",
                self.name, step_nr, expected_step, self._step_nr - 1,
            )
            return False
        _LOGGER.debug("%s: next step is %d", self.name, step_nr)
        self._step_nr = step_nr
        return True

    def jump_back_one_step(self) -> None:
        """Run the previous step again on the next resume."""
        self._step_nr = max(0, self._step_nr - 1)
        _LOGGER.debug("%s: stepping back, next step is %d", self.name, self._step_nr)

    def cancel(self) -> None:
        """Stop stepping and cancel a pending stepping task."""
        self._stopped = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def wait_idle(self) -> None:
        """Wait until no stepping task is running.

        Returns immediately when called from the stepping task itself.
        """
        while True:
            task = self._task
            if task is None or task.done() or task is asyncio.current_task():
                return
            await asyncio.wait({task})

    def _kick(self) -> None:
        # A running task re-checks the stopped flag after each step
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"{self.name}-steps"
        )

    async def _run(self) -> None:
        async with self.lock:
            while not self._stopped:
                step_nr = self._step_nr
                _LOGGER.debug("%s: step %d", self.name, step_nr)
                try:
                    proceed = await self._on_next_step(step_nr)
                except Exception as e:
                    _LOGGER.exception("%s: step %d failed", self.name, step_nr)
                    self._stopped = True
                    if self._on_error is not None:
                        self._on_error(e)
                    return

                if not proceed:
                    _LOGGER.debug("%s: step sequence finished at step %d", self.name, step_nr)
                    if self._on_sequence_end is not None:
                        self._on_sequence_end()
                    return

                self._step_nr += 1


class IdleWatchdog:
    """Disconnects a session that has been quiet for too long.

    reset() (re)arms the timer; when it expires, on_expire runs once. A new
    reset() after expiry arms it again.
    """

    def __init__(
            self,
            timeout: float,
            on_expire: Callable[[], Awaitable[None]],
            name: str = "driver",
    ):
        self.timeout = timeout
        self._on_expire = on_expire
        self.name = name
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self.last_activity: float | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def reset(self) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self.last_activity = loop.time()
        self._handle = loop.call_later(self.timeout, self._expire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _expire(self) -> None:
        self._handle = None
        _LOGGER.info("%s: no activity for %.1fs, disconnecting", self.name, self.timeout)
        task = asyncio.get_running_loop().create_task(
            self._on_expire(), name=f"{self.name}-idle-disconnect"
        )
        self._tasks.add(task)
        task.add_done_callback(self._expired)

    def _expired(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            _LOGGER.error(
                "%s: idle disconnect failed: %s", self.name, error, exc_info=error
            )

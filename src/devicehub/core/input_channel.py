"""Single-slot request/response handshake between setup and the user."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence

from devicehub.core.notifier import Notifier
from devicehub.exceptions import CancelledByUser, ContractViolationError
from devicehub.models.events import SetupInputReceived, SetupInputRequired
from devicehub.models.setup import PendingPrompt
from devicehub.utils.logging import get_logger

logger = get_logger(__name__)


class InputChannel:
    """Holds at most one outstanding prompt and the future that answers it."""

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self._prompt: PendingPrompt | None = None
        self._future: asyncio.Future | None = None

    @property
    def pending_prompt(self) -> PendingPrompt | None:
        return self._prompt

    @property
    def has_pending(self) -> bool:
        return self._future is not None and not self._future.done()

    def request_input(self, message: str, choices: Sequence[str] | None = None) -> asyncio.Future:
        """Publish a prompt and return a future settled by ``provide_input``.

        Raises:
            ContractViolationError: If a prompt is already pending.
            ValueError: If ``choices`` is given but empty.
        """
        if self.has_pending:
            raise ContractViolationError(
                f"Cannot ask {message!r}: prompt {self._prompt.message!r} is still pending"
            )
        if choices is not None:
            choices = tuple(choices)
            if not choices:
                raise ValueError("choices must not be empty")

        future = asyncio.get_running_loop().create_future()
        self._prompt = PendingPrompt(message=message, choices=choices)
        self._future = future
        future.add_done_callback(self._release)
        logger.info("setup_input_required", message=message, choices=choices)
        self._notifier.emit(SetupInputRequired(message=message, choices=choices))
        return future

    def provide_input(self, value: bool | str | None) -> bool:
        """Answer the pending prompt.

        For a confirmation a truthy value confirms. For a choice a truthy
        value is the selected option. A falsy value cancels either kind.

        Returns:
            False, after logging an error, if no prompt was pending.

        Raises:
            pydantic.ValidationError: If ``value`` is not a bool, str or None.
                The prompt stays pending.
        """
        future, prompt = self._future, self._prompt
        if future is None or future.done():
            logger.error("setup_input_without_request", input=value)
            return False

        received = SetupInputReceived(input=value)
        self._future = None
        self._prompt = None
        self._notifier.emit(received)

        if not value:
            logger.info("setup_input_cancelled", message=prompt.message)
            future.set_exception(CancelledByUser())
        elif prompt.is_confirmation:
            future.set_result(True)
        else:
            if value not in prompt.choices:
                logger.warning("setup_input_not_in_choices", input=value, choices=prompt.choices)
            future.set_result(value)
        return True

    def cancel_pending(self) -> bool:
        """Abandon the pending prompt, cancelling whoever awaits it."""
        future = self._future
        if future is None or future.done():
            return False
        logger.info("setup_input_abandoned", message=self._prompt.message if self._prompt else None)
        self._future = None
        self._prompt = None
        future.cancel()
        return True

    def _release(self, future: asyncio.Future) -> None:
        if self._future is future:
            self._future = None
            self._prompt = None


class SetupPrompter:
    """Capability object handed to setup procedures: ``confirm`` and ``choose``."""

    def __init__(
        self,
        channel: InputChannel,
        on_waiting: Callable[[PendingPrompt | None], None] | None = None,
    ) -> None:
        self._channel = channel
        self._on_waiting = on_waiting

    async def confirm(self, message: str) -> bool:
        """Ask a yes/no question. Declining returns False."""
        try:
            return bool(await self._ask(message, None))
        except CancelledByUser:
            return False

    async def choose(self, message: str, choices: Sequence[str]) -> str:
        """Ask the user to pick one of ``choices``.

        Raises:
            CancelledByUser: If the user dismissed the prompt.
        """
        return await self._ask(message, tuple(choices))

    async def _ask(self, message: str, choices: tuple[str, ...] | None):
        future = self._channel.request_input(message, choices)
        if self._on_waiting is not None:
            self._on_waiting(self._channel.pending_prompt)
        try:
            return await future
        finally:
            if self._on_waiting is not None:
                self._on_waiting(None)

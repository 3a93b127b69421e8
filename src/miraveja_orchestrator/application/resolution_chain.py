"""Application layer - Runtime cycle detection during recursive starts."""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Tuple

from miraveja_orchestrator.domain import CircularDependencyError


class ResolutionChain:
    """Tracks the names currently being started by one flow of control.

    Uses a context variable so each asyncio task sees its own chain. When a
    name appears twice on the chain a circular dependency is detected, instead
    of the start waiting forever on its own in-flight signal.

    Attributes:
        _chain: Context variable holding the current chain as a tuple.
    """

    def __init__(self) -> None:
        """Initialize the chain with an empty per-context stack."""
        self._chain: ContextVar[Tuple[str, ...]] = ContextVar(f"resolution_chain_{id(self)}", default=())

    def current(self) -> Tuple[str, ...]:
        return self._chain.get()

    def check(self, name: str) -> None:
        """Raise if ``name`` is already being started in this flow.

        Raises:
            CircularDependencyError: With the cycle from the first occurrence to ``name``.
        """
        chain = self._chain.get()
        if name in chain:
            cycle = list(chain[chain.index(name) :]) + [name]
            raise CircularDependencyError(cycle)

    @contextmanager
    def enter(self, name: str) -> Iterator[None]:
        """Push ``name`` for the duration of the block.

        Raises:
            CircularDependencyError: If ``name`` is already on the chain.
        """
        self.check(name)
        token = self._chain.set(self._chain.get() + (name,))
        try:
            yield
        finally:
            self._chain.reset(token)

    def detach(self) -> None:
        """Start a fresh chain in the current context.

        Background tasks inherit the context of the code that created them; a
        task that begins an independent start calls this first.
        """
        self._chain.set(())

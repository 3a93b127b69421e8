"""Unit tests for ResolutionChain."""

import asyncio

import pytest

from miraveja_orchestrator.application.resolution_chain import ResolutionChain
from miraveja_orchestrator.domain import CircularDependencyError


class TestResolutionChain:
    """Test cases for ResolutionChain class."""

    def test_initially_empty(self):
        """Test that a new chain is empty."""
        chain = ResolutionChain()
        assert chain.current() == ()

    def test_enter_pushes_and_pops(self):
        """Test that names are pushed for the duration of the block."""
        chain = ResolutionChain()
        with chain.enter("a"):
            with chain.enter("b"):
                assert chain.current() == ("a", "b")
            assert chain.current() == ("a",)
        assert chain.current() == ()

    def test_enter_detects_cycle(self):
        """Test that re-entering a name on the chain raises."""
        chain = ResolutionChain()
        with chain.enter("a"):
            with chain.enter("b"):
                with pytest.raises(CircularDependencyError) as exc_info:
                    with chain.enter("a"):
                        pass

        assert exc_info.value.cycle == ["a", "b", "a"]

    def test_chain_restored_after_error(self):
        """Test that the chain unwinds when the block raises."""
        chain = ResolutionChain()
        with pytest.raises(RuntimeError):
            with chain.enter("a"):
                raise RuntimeError("boom")
        assert chain.current() == ()

    def test_check_without_push(self):
        """Test that check does not modify the chain."""
        chain = ResolutionChain()
        chain.check("a")
        assert chain.current() == ()

    @pytest.mark.asyncio
    async def test_tasks_have_independent_chains(self):
        """Test that concurrent tasks do not see each other's chain."""
        chain = ResolutionChain()
        seen = {}

        async def resolve(name):
            with chain.enter(name):
                await asyncio.sleep(0)
                seen[name] = chain.current()

        await asyncio.gather(resolve("a"), resolve("b"))

        assert seen == {"a": ("a",), "b": ("b",)}

    @pytest.mark.asyncio
    async def test_detach_starts_fresh_chain_in_task(self):
        """Test that a detached task no longer sees its creator's chain."""
        chain = ResolutionChain()

        async def background():
            chain.detach()
            return chain.current()

        with chain.enter("a"):
            result = await asyncio.create_task(background())
            assert chain.current() == ("a",)

        assert result == ()

"""
What happens after R halts mid-command.

Recovery runs exactly once per detected halt and always ends in a terminal
outcome: the process exits (abort), the call fails with the session closed
(fail), the call fails with a fresh session in place (restart, reinstate),
or a caller-supplied handler decides (call, call_ground).
"""
from __future__ import annotations

import inspect
import sys
from typing import Any, Awaitable, Callable

from rpipe.rpipe_datatypes import (
    Exchange, ReinstateFailed, SlaveHalted, UnknownSessionAlias
)
from rpipe.rpipe_engine import ProtocolEngine
from rpipe.rpipe_session import Session, SessionRegistry
from rpipe.rpipe_settings import HaltPolicy, OpenOptions, Settings

Opener = Callable[[OpenOptions, Any, bool], Awaitable[Session]]


class HaltRecovery:
    """Applies a halted session's at_r_halt policy."""

    def __init__(self, registry: SessionRegistry, engine: ProtocolEngine,
                 opener: Opener, settings: Settings, stderr=None):
        self.registry = registry
        self.engine = engine
        self.opener = opener
        self.settings = settings
        self._stderr = stderr

    @property
    def stderr(self):
        return self._stderr or sys.stderr

    def _say(self, message: str) -> None:
        print(message, file=self.stderr)

    async def recover(self, session: Session, exchange: Exchange) -> Exchange:
        alias = session.alias
        policy = session.halt_policy
        self.settings.verbose(1, "slave halted on", alias, "policy", policy.kind)
        try:
            self.registry.remove(alias)
        except UnknownSessionAlias:
            pass
        session.transcript.close()

        match policy.kind:
            case HaltPolicy.ABORT:
                self._say("at_r_halt(abort): R session halted by slave")
                await session.streams.aclose()
                raise SystemExit(1)
            case HaltPolicy.FAIL:
                session.history = None
                await session.streams.aclose()
                raise self._halted("at_r_halt(fail): failure due to execution halted by slave on r_session",
                                   session, exchange, recovered=False)
            case HaltPolicy.RESTART:
                await session.streams.aclose()
                await self._restart(session)
                self._say(f"at_r_halt(restart): restarting r_session: {alias}")
                raise self._halted("at_r_halt(restart): session restarted after halt",
                                   session, exchange, recovered=True)
            case HaltPolicy.REINSTATE:
                await session.streams.aclose()
                await self._reinstate(session)
                self._say(f"at_r_halt(reinstate): reinstating r_session: {alias}")
                raise self._halted("at_r_halt(reinstate): session reinstated after halt",
                                   session, exchange, recovered=True)
            case HaltPolicy.INVOKE | HaltPolicy.INVOKE_GROUND:
                try:
                    if policy.kind == HaltPolicy.INVOKE:
                        outcome = policy.handler(alias, session.streams)
                    else:
                        outcome = policy.handler()
                    if inspect.isawaitable(outcome):
                        outcome = await outcome
                finally:
                    await session.streams.aclose()
                exchange.outcome = outcome
                return exchange
        raise AssertionError(f"unhandled halt policy {policy!r}")

    @staticmethod
    def _halted(message: str, session: Session, exchange: Exchange, recovered: bool) -> SlaveHalted:
        return SlaveHalted(message, session.alias, policy=session.halt_policy.kind,
                           recovered=recovered, output=exchange.output, error=exchange.error)

    async def _restart(self, session: Session) -> Session:
        fresh = await self.opener(session.options, session.alias, True)
        async with fresh.lock:
            # Discard the startup banner.
            await self.engine.read_output_channel(fresh, [])
        return fresh

    async def _reinstate(self, session: Session) -> Session:
        history = session.history
        if history is None:
            raise ReinstateFailed("at_r_halt(reinstate): cannot locate history for", session.alias)
        fresh = await self.opener(session.options, session.alias, True)
        async with fresh.lock:
            await self.engine.read_output_channel(fresh, [])
            for command in reversed(history):
                replay = await self.engine.exchange(fresh, command)
                if replay.halted:
                    self.registry.remove(fresh.alias)
                    fresh.transcript.close()
                    await fresh.streams.aclose()
                    raise ReinstateFailed(
                        f"at_r_halt(reinstate): slave halted again while replaying {command!r}",
                        session.alias)
        return fresh

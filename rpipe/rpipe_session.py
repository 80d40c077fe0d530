"""
Open R sessions and the registry that orders them.

The registry is the only shared state between sessions. Its head is the
default session: sessions are inserted at the head unless opened with
`assert_="z"`, which places them at the tail.
"""
from __future__ import annotations

import asyncio
import threading
from typing import Any, Iterator, List, Optional, Set, Tuple

from rpipe.rpipe_datatypes import GeneratedAlias, SessionOpenError, UnknownSessionAlias
from rpipe.rpipe_process import SlaveStreams
from rpipe.rpipe_settings import OpenOptions, HaltPolicy
from rpipe.rpipe_transcript import Transcript


class Session:
    """One running R slave and everything needed to talk to it or respawn it."""

    def __init__(self, alias: Any, streams: SlaveStreams, options: OpenOptions,
                 interactive: bool, transcript: Transcript,
                 version: Optional[Tuple[int, int, int]] = None):
        self.alias = alias
        self.streams = streams
        self.options = options
        self.interactive = interactive
        self.transcript = transcript
        self.version = version
        # Most recent first; None when history recording is off.
        self.history: Optional[List[str]] = [] if options.history else None
        self.lock = asyncio.Lock()

    @property
    def halt_policy(self) -> HaltPolicy:
        return self.options.at_r_halt

    def record_history(self, command: str) -> None:
        if self.history is not None:
            self.history.insert(0, command)

    def data(self, key: str) -> Any:
        """Session data by name: copy_to, copy_this, at_r_halt, interactive, version, opts."""
        table = {
            "copy_to": self.transcript,
            "copy_this": self.transcript.what,
            "at_r_halt": self.halt_policy,
            "interactive": self.interactive,
            "version": self.version,
            "opts": self.options,
        }
        if key not in table:
            raise KeyError(key)
        return table[key]

    def __repr__(self) -> str:
        return f"<Session {self.alias} interactive={self.interactive} policy={self.halt_policy.kind}>"


class SessionRegistry:
    """Ordered set of open sessions keyed by alias."""

    def __init__(self):
        self._sessions: List[Session] = []
        self._reserved: Set[Any] = set()
        self._lock = threading.RLock()

    def reserve(self, alias: Any = None) -> Any:
        """Claims an alias before the slow spawn; generates one when alias is None."""
        with self._lock:
            if alias is None:
                index = 1
                while self._taken(GeneratedAlias(index)):
                    index += 1
                alias = GeneratedAlias(index)
            elif self._taken(alias):
                raise SessionOpenError("Session already exists for alias", alias)
            self._reserved.add(alias)
            return alias

    def release(self, alias: Any) -> None:
        with self._lock:
            self._reserved.discard(alias)

    def _taken(self, alias: Any) -> bool:
        return alias in self._reserved or any(s.alias == alias for s in self._sessions)

    def add(self, session: Session, at_tail: bool = False) -> None:
        with self._lock:
            if any(s.alias == session.alias for s in self._sessions):
                raise SessionOpenError("Session already exists for alias", session.alias)
            self._reserved.discard(session.alias)
            if at_tail:
                self._sessions.append(session)
            else:
                self._sessions.insert(0, session)

    def get(self, alias: Any) -> Session:
        with self._lock:
            for s in self._sessions:
                if s.alias == alias:
                    return s
        raise UnknownSessionAlias("no open r session at", alias)

    def default(self) -> Session:
        with self._lock:
            if not self._sessions:
                raise UnknownSessionAlias("no default open r session was found")
            return self._sessions[0]

    def resolve(self, alias: Any = None) -> Session:
        return self.default() if alias is None else self.get(alias)

    def remove(self, alias: Any) -> Session:
        with self._lock:
            for i, s in enumerate(self._sessions):
                if s.alias == alias:
                    return self._sessions.pop(i)
        raise UnknownSessionAlias("no open r session could be found to close at", alias)

    def pop_all(self) -> List[Session]:
        with self._lock:
            sessions, self._sessions = self._sessions, []
            return sessions

    def aliases(self) -> List[Any]:
        with self._lock:
            return [s.alias for s in self._sessions]

    def __contains__(self, alias: Any) -> bool:
        with self._lock:
            return any(s.alias == alias for s in self._sessions)

    def __iter__(self) -> Iterator[Session]:
        with self._lock:
            return iter(list(self._sessions))

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

"""
Pattern mining over the command log.

Two batch passes, both pure functions of the commands they are given:

1. Sequence patterns: overlapping runs of 2 and 3 consecutive semantic types
   within one session, counted across all sessions.
2. Time-slot patterns: (hour of day, semantic type) co-occurrence over a
   trailing window of days.

``PatternMiner.mine`` stores the result, replacing the previous run. It skips
the work when no command has been appended since and no counted command has
left the time window.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..models import Command, Pattern, PatternType
from ..persistence.base import DatabaseBackend, rank_patterns

logger = logging.getLogger(__name__)

SEQUENCE_TYPES: Dict[int, PatternType] = {
    2: PatternType.SEQUENCE_2,
    3: PatternType.SEQUENCE_3,
}
MINED_TYPES = (PatternType.SEQUENCE_2, PatternType.SEQUENCE_3, PatternType.TIME_SLOT)
MINING_CURSOR = "patterns"

Key = Tuple[str, ...]


def _by_session(commands: Iterable[Command]) -> Dict[str, List[Command]]:
    sessions: Dict[str, List[Command]] = defaultdict(list)
    for command in commands:
        sessions[command.session_id].append(command)
    for session_commands in sessions.values():
        session_commands.sort(key=lambda c: (c.sequence, c.position or 0))
    return sessions


def count_sequences(
    commands: Iterable[Command], n: int
) -> Tuple[Counter, Dict[Key, datetime]]:
    """Count every n-window of semantic types; windows never span sessions."""
    counts: Counter = Counter()
    last_seen: Dict[Key, datetime] = {}
    for session_commands in _by_session(commands).values():
        for start in range(len(session_commands) - n + 1):
            window = session_commands[start:start + n]
            key = tuple(c.semantic_type.value for c in window)
            counts[key] += 1
            end_time = window[-1].start_time
            if key not in last_seen or end_time > last_seen[key]:
                last_seen[key] = end_time
    return counts, last_seen


def sequence_patterns(commands: Sequence[Command], min_frequency: int = 3) -> List[Pattern]:
    patterns = []
    for n, pattern_type in SEQUENCE_TYPES.items():
        counts, last_seen = count_sequences(commands, n)
        patterns.extend(
            Pattern(pattern_type=pattern_type, key=key, frequency=count, last_seen=last_seen[key])
            for key, count in counts.items()
            if count >= min_frequency
        )
    return rank_patterns(patterns)


def count_time_slots(
    commands: Iterable[Command], now: datetime, window_days: int = 30
) -> Tuple[Counter, Dict[Key, datetime]]:
    """Count (hour, type) pairs among commands started inside the window.

    The hour is the wall-clock hour the command was captured at.
    """
    cutoff = now - timedelta(days=window_days)
    counts: Counter = Counter()
    last_seen: Dict[Key, datetime] = {}
    for command in commands:
        if command.start_time < cutoff:
            continue
        key = (f"{command.start_time.hour:02d}", command.semantic_type.value)
        counts[key] += 1
        if key not in last_seen or command.start_time > last_seen[key]:
            last_seen[key] = command.start_time
    return counts, last_seen


def time_slot_expiry(
    commands: Iterable[Command], now: datetime, window_days: int = 30
) -> Optional[datetime]:
    """When the oldest command inside the window falls out of it, if any is inside."""
    cutoff = now - timedelta(days=window_days)
    counted = [c.start_time for c in commands if c.start_time >= cutoff]
    if not counted:
        return None
    return min(counted) + timedelta(days=window_days)


def time_slot_patterns(
    commands: Sequence[Command],
    now: datetime,
    window_days: int = 30,
    min_frequency: int = 5,
    top_k: int = 10,
) -> List[Pattern]:
    counts, last_seen = count_time_slots(commands, now, window_days)
    patterns = rank_patterns(
        [
            Pattern(
                pattern_type=PatternType.TIME_SLOT,
                key=key,
                frequency=count,
                last_seen=last_seen[key],
            )
            for key, count in counts.items()
            if count >= min_frequency
        ]
    )
    return patterns[:top_k]


class PatternMiner:
    """Recomputes and stores patterns from the full command log."""

    def __init__(
        self,
        db: DatabaseBackend,
        min_frequency: int = 3,
        time_slot_min_frequency: int = 5,
        time_window_days: int = 30,
        time_slot_top_k: int = 10,
    ) -> None:
        self.db = db
        self.min_frequency = min_frequency
        self.time_slot_min_frequency = time_slot_min_frequency
        self.time_window_days = time_window_days
        self.time_slot_top_k = time_slot_top_k

    def compute(self, commands: Sequence[Command], now: datetime) -> List[Pattern]:
        """All patterns for ``commands``; identical input gives identical output."""
        patterns = sequence_patterns(commands, self.min_frequency)
        patterns += time_slot_patterns(
            commands,
            now,
            window_days=self.time_window_days,
            min_frequency=self.time_slot_min_frequency,
            top_k=self.time_slot_top_k,
        )
        return rank_patterns(patterns)

    async def mine(self, now: Optional[datetime] = None, force: bool = False) -> List[Pattern]:
        """Mine and store patterns, replacing those from the previous run."""
        now = now or datetime.now().astimezone()
        state = await self.db.get_mining_cursor(MINING_CURSOR)
        if not force and state is not None:
            position, expires_at = state
            if expires_at is not None and now > expires_at:
                logger.debug(f"Time window moved past {expires_at.isoformat()}, mining again")
            elif not await self.db.scan_commands(since=position, limit=1):
                logger.debug(f"No commands since position {position}, keeping stored patterns")
                return await self.db.query_patterns()

        commands = await self.db.scan_commands()
        patterns = self.compute(commands, now)

        await self.db.replace_patterns(patterns, MINED_TYPES)
        position = max((c.position or 0 for c in commands), default=0)
        expires_at = time_slot_expiry(commands, now, self.time_window_days)
        await self.db.set_mining_cursor(MINING_CURSOR, position, expires_at)

        logger.info(f"Mined {len(patterns)} patterns from {len(commands)} commands")
        return patterns

    async def patterns(
        self, pattern_type: Optional[PatternType] = None, limit: Optional[int] = None
    ) -> List[Pattern]:
        return await self.db.query_patterns(pattern_type=pattern_type, limit=limit)

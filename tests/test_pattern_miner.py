"""
Tests for sequence and time-slot pattern mining.
"""

from datetime import datetime, timedelta, timezone

from termbrain.core.pattern_miner import (
    MINED_TYPES,
    PatternMiner,
    count_sequences,
    count_time_slots,
    sequence_patterns,
    time_slot_expiry,
    time_slot_patterns,
)
from termbrain.models import Command, PatternType, SemanticType

BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

T = SemanticType.TESTING
V = SemanticType.VERSION_CONTROL
B = SemanticType.BUILDING
N = SemanticType.NAVIGATION


def make_session(session_id, types, start=BASE_TIME, step=timedelta(minutes=1)):
    return [
        Command(
            id=f"{session_id}:{i}",
            session_id=session_id,
            sequence=i,
            text=f"{semantic_type.value} {i}",
            working_directory="/repo",
            semantic_type=semantic_type,
            start_time=start + step * i,
        )
        for i, semantic_type in enumerate(types, start=1)
    ]


class TestSequenceCounting:
    """Test n-gram counting."""

    def test_bigrams(self):
        counts, _ = count_sequences(make_session("s1", [T, V, T, V]), 2)
        assert counts[("testing", "version_control")] == 2
        assert counts[("version_control", "testing")] == 1

    def test_trigrams(self):
        counts, _ = count_sequences(make_session("s1", [T, V, T, V]), 3)
        assert counts == {
            ("testing", "version_control", "testing"): 1,
            ("version_control", "testing", "version_control"): 1,
        }

    def test_windows_do_not_span_sessions(self):
        commands = make_session("s1", [T]) + make_session("s2", [V])
        counts, _ = count_sequences(commands, 2)
        assert counts == {}

    def test_counts_across_sessions(self):
        commands = make_session("s1", [T, V]) + make_session("s2", [T, V])
        counts, _ = count_sequences(commands, 2)
        assert counts[("testing", "version_control")] == 2

    def test_session_order_not_input_order(self):
        commands = make_session("s1", [T, V, B])
        counts, _ = count_sequences(list(reversed(commands)), 2)
        assert set(counts) == {("testing", "version_control"), ("version_control", "building")}

    def test_last_seen_is_latest_window_end(self):
        commands = make_session("s1", [T, V, T, V])
        _, last_seen = count_sequences(commands, 2)
        assert last_seen[("testing", "version_control")] == commands[3].start_time

    def test_threshold(self):
        commands = make_session("s1", [T, V] * 3)
        patterns = sequence_patterns(commands, min_frequency=3)
        assert [(p.pattern_type, p.key, p.frequency) for p in patterns] == [
            (PatternType.SEQUENCE_2, ("testing", "version_control"), 3)
        ]


class TestTimeSlots:
    """Test hour/type co-occurrence."""

    def test_hour_is_capture_wall_clock(self):
        local = timezone(timedelta(hours=2))
        commands = make_session("s1", [T], start=datetime(2024, 5, 1, 7, 0, tzinfo=local))
        counts, _ = count_time_slots(commands, now=datetime(2024, 5, 2, tzinfo=timezone.utc))
        assert counts == {("07", "testing"): 1}

    def test_window_excludes_old_commands(self):
        old = make_session("s1", [T], start=BASE_TIME - timedelta(days=40))
        recent = make_session("s2", [T], start=BASE_TIME)
        counts, _ = count_time_slots(old + recent, now=BASE_TIME, window_days=30)
        assert sum(counts.values()) == 1

    def test_threshold_and_top_k(self):
        commands = []
        for day in range(6):
            start = BASE_TIME + timedelta(days=day)
            commands += make_session(f"t{day}", [T], start=start - timedelta(minutes=1))
            commands += make_session(f"v{day}", [V], start=start + timedelta(hours=5))
        commands += make_session("b", [B], start=BASE_TIME)

        now = BASE_TIME + timedelta(days=7)
        patterns = time_slot_patterns(commands, now, min_frequency=5, top_k=10)
        assert {p.key for p in patterns} == {("09", "testing"), ("14", "version_control")}

        limited = time_slot_patterns(commands, now, min_frequency=5, top_k=1)
        assert len(limited) == 1
        # equal frequency: most recently seen first
        assert limited[0].key == ("14", "version_control")


class TestPatternMiner:
    """Test mining against storage."""

    async def store(self, backend, commands):
        for command in commands:
            await backend.append_command(command)

    async def test_mine_stores_patterns(self, memory_backend):
        await self.store(memory_backend, make_session("s1", [T, V] * 3))
        miner = PatternMiner(memory_backend, min_frequency=3)

        mined = await miner.mine(now=BASE_TIME + timedelta(hours=1))
        stored = await miner.patterns()

        assert [p.key for p in mined] == [p.key for p in stored]
        assert ("testing", "version_control") in [p.key for p in stored]

    async def test_rerun_is_identical(self, memory_backend):
        await self.store(memory_backend, make_session("s1", [T, V, B] * 4))
        await self.store(memory_backend, make_session("s2", [N, T, V] * 3))
        miner = PatternMiner(memory_backend, min_frequency=2, time_slot_min_frequency=2)
        now = BASE_TIME + timedelta(hours=2)

        first = await miner.mine(now=now, force=True)
        first_rows = [(p.pattern_type, p.key, p.frequency, p.last_seen) for p in await miner.patterns()]
        second = await miner.mine(now=now, force=True)
        second_rows = [(p.pattern_type, p.key, p.frequency, p.last_seen) for p in await miner.patterns()]

        assert first_rows == second_rows
        assert [p.key for p in first] == [p.key for p in second]

    async def test_skips_when_nothing_new(self, memory_backend):
        await self.store(memory_backend, make_session("s1", [T, V] * 3))
        miner = PatternMiner(memory_backend, min_frequency=3)
        await miner.mine(now=BASE_TIME)

        await memory_backend.replace_patterns([], MINED_TYPES)
        assert await miner.mine(now=BASE_TIME) == []
        assert await miner.mine(now=BASE_TIME, force=True) != []

    async def test_new_commands_trigger_mining(self, memory_backend):
        miner = PatternMiner(memory_backend, min_frequency=3)
        assert await miner.mine(now=BASE_TIME) == []

        await self.store(memory_backend, make_session("s1", [T, V] * 3))
        mined = await miner.mine(now=BASE_TIME)
        assert [p.key for p in mined if p.pattern_type == PatternType.SEQUENCE_2] == [
            ("testing", "version_control")
        ]

    async def test_stale_patterns_replaced(self, memory_backend):
        await self.store(memory_backend, make_session("s1", [T, V] * 3))
        miner = PatternMiner(memory_backend, min_frequency=3)
        await miner.mine(now=BASE_TIME)

        miner.min_frequency = 10
        await miner.mine(now=BASE_TIME, force=True)
        assert await miner.patterns(pattern_type=PatternType.SEQUENCE_2) == []

    async def test_time_slots_expire_without_new_commands(self, memory_backend):
        await self.store(memory_backend, make_session("s1", [T] * 5))
        miner = PatternMiner(memory_backend, min_frequency=3, time_slot_min_frequency=5)

        mined = await miner.mine(now=BASE_TIME + timedelta(hours=1))
        assert [p.key for p in mined if p.pattern_type == PatternType.TIME_SLOT] == [
            ("09", "testing")
        ]

        later = await miner.mine(now=BASE_TIME + timedelta(days=40))
        assert [p for p in later if p.pattern_type == PatternType.TIME_SLOT] == []
        assert ("testing", "testing") in [p.key for p in later]
        assert await miner.patterns(pattern_type=PatternType.TIME_SLOT) == []

    def test_expiry_is_oldest_counted_command(self):
        commands = make_session("s1", [T, V], start=BASE_TIME)
        now = BASE_TIME + timedelta(days=1)
        assert time_slot_expiry(commands, now, window_days=30) == (
            commands[0].start_time + timedelta(days=30)
        )
        assert time_slot_expiry(commands, BASE_TIME + timedelta(days=60), window_days=30) is None

"""
Aircraft type normalization.

Maps free-text equipment strings ('B737-800 WL', '777-300ER', 'Boeing 767F')
onto canonical fleet-type codes through an ordered rule table of glob
patterns (AircraftTypeMapping). The first active rule by (priority, id)
that matches wins.

Cache model:
  - TypeNormalizer owns one MappingSnapshot at a time: the compiled active
    rule set plus a memo of raw string → result for that rule set.
  - invalidate_cache() bumps a generation counter and drops the snapshot
    in one step. A load that started under an older generation is never
    installed, so once invalidate_cache() returns, no later call sees the
    old rules.
  - Nothing is module-global: the application owns one TypeNormalizer and
    hands it to call sites.
"""

import asyncio
import logging
import re
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsync.models.master_data import AircraftTypeMapping
from fleetsync.services.normalization import is_blank, normalize_identifier, normalize_whitespace

logger = logging.getLogger(__name__)

UNKNOWN_TYPE = "Unknown"
CANONICAL_TYPES = ["B777", "B767", "B747", "B757", "B737", UNKNOWN_TYPE]

# Shipped rule table, restored by the reset endpoint and the seed script.
# (pattern, canonical_type, description, priority)
DEFAULT_TYPE_MAPPINGS: list[tuple[str, str, str, int]] = [
    ("*777*", "B777", "Boeing 777 family incl. 777F", 10),
    ("*77W*", "B777", "777-300ER ICAO shorthand", 10),
    ("*77L*", "B777", "777-200LR ICAO shorthand", 10),
    ("*767*", "B767", "Boeing 767 family incl. 767F", 20),
    ("*76F*", "B767", "767 freighter shorthand", 20),
    ("*747*", "B747", "Boeing 747 family", 30),
    ("*74F*", "B747", "747 freighter shorthand", 30),
    ("*757*", "B757", "Boeing 757 family", 40),
    ("*737*", "B737", "Boeing 737 family incl. MAX", 50),
    ("*73?*", "B737", "737 ICAO shorthand (738, 739, 73H)", 60),
]


def glob_to_regex(pattern: str) -> re.Pattern:
    """
    Compile a mapping glob.

    '*' → any run, '?' → one character, everything else literal.
    Case-insensitive, anchored at both ends.
    """
    parts = []
    for ch in normalize_whitespace(pattern):
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE)


@dataclass(frozen=True)
class MappingRule:
    id: int
    pattern: str
    canonical_type: str
    priority: int
    regex: re.Pattern

    @classmethod
    def from_row(cls, row: AircraftTypeMapping) -> "MappingRule":
        return cls(
            id=row.id,
            pattern=row.pattern,
            canonical_type=row.canonical_type,
            priority=row.priority,
            regex=glob_to_regex(row.pattern),
        )


@dataclass(frozen=True)
class NormalizedType:
    raw: str
    canonical: str
    used_fallback: bool
    matched_pattern: str | None = None
    mapping_id: int | None = None


class MappingSnapshot:
    """
    One immutable rule set and its lookup memo.

    normalize() is synchronous and side-effect free apart from the memo,
    which only ever caches what this rule set computes.
    """

    def __init__(self, rules: list[MappingRule], generation: int = 0):
        self.rules = tuple(sorted(rules, key=lambda r: (r.priority, r.id)))
        self.generation = generation
        self._memo: dict[str, NormalizedType] = {}

    def __len__(self) -> int:
        return len(self.rules)

    def normalize(self, raw: str | None) -> NormalizedType:
        if is_blank(raw):
            return NormalizedType(raw=raw or "", canonical=UNKNOWN_TYPE, used_fallback=True)

        key = normalize_identifier(raw)
        cached = self._memo.get(key)
        if cached is not None:
            return cached

        result = NormalizedType(raw=raw, canonical=key, used_fallback=True)
        for rule in self.rules:
            if rule.regex.match(key):
                result = NormalizedType(
                    raw=raw,
                    canonical=rule.canonical_type,
                    used_fallback=False,
                    matched_pattern=rule.pattern,
                    mapping_id=rule.id,
                )
                break
        self._memo[key] = result
        return result


async def load_active_mappings(db: AsyncSession) -> list[MappingRule]:
    """Load and compile all active mappings in evaluation order."""
    result = await db.execute(
        select(AircraftTypeMapping)
        .where(AircraftTypeMapping.is_active.is_(True))
        .order_by(AircraftTypeMapping.priority, AircraftTypeMapping.id)
    )
    return [MappingRule.from_row(row) for row in result.scalars().all()]


async def install_default_mappings(db: AsyncSession) -> list[AircraftTypeMapping]:
    """Replace the whole table with the shipped defaults (not committed)."""
    await db.execute(delete(AircraftTypeMapping))
    mappings = [
        AircraftTypeMapping(
            pattern=pattern,
            canonical_type=canonical,
            description=description,
            priority=priority,
            is_active=True,
        )
        for pattern, canonical, description, priority in DEFAULT_TYPE_MAPPINGS
    ]
    db.add_all(mappings)
    await db.flush()
    return mappings


class TypeNormalizer:
    """Process-wide owner of the mapping cache."""

    def __init__(
        self,
        loader: Callable[[AsyncSession], Awaitable[list[MappingRule]]] = load_active_mappings,
    ):
        self._loader = loader
        self._snapshot: MappingSnapshot | None = None
        self._generation = 0
        self._state_lock = threading.Lock()
        self._load_lock = asyncio.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def invalidate_cache(self) -> None:
        """Drop the whole rule set; the next lookup reloads it."""
        with self._state_lock:
            self._generation += 1
            self._snapshot = None
        logger.info("Aircraft type mapping cache invalidated (generation %d)", self._generation)

    async def snapshot(self, db: AsyncSession) -> MappingSnapshot:
        """Return the current rule set, loading it if needed."""
        current = self._snapshot
        if current is not None:
            return current

        async with self._load_lock:
            while True:
                current = self._snapshot
                if current is not None:
                    return current
                generation = self._generation
                rules = await self._loader(db)
                with self._state_lock:
                    if generation == self._generation:
                        snap = MappingSnapshot(rules, generation)
                        self._snapshot = snap
                        logger.debug(
                            "Loaded %d aircraft type mappings (generation %d)",
                            len(snap), generation,
                        )
                        return snap
                # Invalidated while loading: the rules just read may predate it

    async def normalize(self, db: AsyncSession, raw: str | None) -> NormalizedType:
        snap = await self.snapshot(db)
        return snap.normalize(raw)

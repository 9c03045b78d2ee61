"""
Associative Memory Store - bounded engram bank with reinforcement.

Each engram links a market signature to an observed outcome. The store:
- merges a repeated pattern/outcome near an existing signature (reinforcement)
- promotes saturated winning engrams to apex, which protects them from pruning
- ranks recall by distance scaled down for strong / apex engrams
- prunes by apex-first, then 0.7*strength + 0.3*recency when over capacity

Persistence is not done here; the store round-trips through to_records() /
from_records() and a repository in sentient_trader.state.persistence.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from dataclasses import dataclass, field, asdict
from itertools import zip_longest
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sentient_trader.core.config import MemoryConfig
from sentient_trader.core.types import Outcome, finite_or

logger = logging.getLogger(__name__)

APEX_PREFIX = "[APEX] "
APEX_TAGS = ("APEX_PROTOCOL", "IMMUTABLE")


def euclidean(a: Sequence[float], b: Sequence[float]) -> float:
    return math.sqrt(sum((x - y) ** 2 for x, y in zip_longest(a, b, fillvalue=0.0)))


def base_pattern(pattern: str) -> str:
    return pattern[len(APEX_PREFIX):] if pattern.startswith(APEX_PREFIX) else pattern


@dataclass
class Engram:
    """A persisted pattern -> outcome record."""
    pattern: str
    outcome: Outcome
    signature: List[float]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    strength: float = 0.5
    weight: float = 1.0
    experience: float = 10.0
    created_at: float = 0.0
    last_activated: float = 0.0
    concept_tags: List[str] = field(default_factory=list)
    market_condition: str = "STABLE"
    associations: List[str] = field(default_factory=list)
    is_apex: bool = False

    @property
    def success(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["outcome"] = self.outcome.value
        return d

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Engram":
        return Engram(
            id=str(d["id"]),
            pattern=str(d["pattern"]),
            outcome=Outcome(d["outcome"]),
            signature=[finite_or(v) for v in d.get("signature") or []],
            strength=min(1.0, max(0.0, finite_or(d.get("strength"), 0.5))),
            weight=finite_or(d.get("weight"), 1.0),
            experience=finite_or(d.get("experience"), 10.0),
            created_at=finite_or(d.get("created_at")),
            last_activated=finite_or(d.get("last_activated")),
            concept_tags=[str(t) for t in d.get("concept_tags") or []],
            market_condition=str(d.get("market_condition", "STABLE")),
            associations=[str(a) for a in d.get("associations") or []],
            is_apex=bool(d.get("is_apex", False)),
        )


@dataclass(frozen=True)
class Recollection:
    engram: Engram
    distance: float
    adjusted_distance: float


@dataclass(frozen=True)
class MemoryContext:
    recalled: List[Engram]
    intuition: Optional[float]  # % of recalled engrams that succeeded, None if nothing recalled
    apex_count: int
    concepts: List[str]

    @property
    def empty(self) -> bool:
        return not self.recalled

    def summary(self) -> str:
        if self.empty:
            return "Memory buffer empty: zero-shot inference."
        lines = [
            f"Concepts: {', '.join(self.concepts) or '-'}",
            f"Intuition: {self.intuition:.0f}% positive ({self.apex_count} apex)",
        ]
        for e in self.recalled:
            star = "* APEX * " if e.is_apex else ""
            lines.append(f"[ENGRAM] {star}pattern={e.pattern!r} outcome={e.outcome.value} strength={e.strength:.2f}")
        return "\n".join(lines)


@dataclass(frozen=True)
class StrategyStat:
    name: str
    win_rate: float
    count: int


@dataclass(frozen=True)
class MemoryStats:
    total: int
    win_rate: float  # percent
    apex: List[Engram]
    strong_patterns: List[str]
    top_strategies: List[StrategyStat]
    recent: List[Engram]
    evolution_level: int


class MemoryStore:
    """Bounded, ordered (newest first) collection of engrams."""

    def __init__(self, config: Optional[MemoryConfig] = None, clock: Callable[[], float] = time.time,
                 engrams: Optional[Iterable[Engram]] = None):
        self.config = config or MemoryConfig()
        self.clock = clock
        self._engrams: List[Engram] = list(engrams or [])
        if len(self._engrams) > self.config.capacity:
            self._prune()

    def __len__(self) -> int:
        return len(self._engrams)

    def __iter__(self):
        return iter(list(self._engrams))

    @property
    def engrams(self) -> List[Engram]:
        return list(self._engrams)

    # --- reinforcement ---

    def find_similar(self, engram: Engram) -> Optional[Engram]:
        base = base_pattern(engram.pattern)
        for m in self._engrams:
            if (base_pattern(m.pattern) == base
                    and m.outcome is engram.outcome
                    and euclidean(m.signature, engram.signature) < self.config.merge_distance):
                return m
        return None

    def reinforce(self, engram: Engram) -> Engram:
        """Merge into a matching engram or insert a new one. Returns the stored engram."""
        engram.signature = [finite_or(v) for v in engram.signature]
        now = self.clock()
        existing = self.find_similar(engram)
        if existing is not None:
            existing.strength = min(1.0, existing.strength + self.config.reinforce_step)
            existing.last_activated = now
            existing.experience += self.config.experience_step
            existing.weight = (existing.weight + engram.weight) / 2
            if existing.strength >= self.config.apex_threshold and existing.success:
                self._promote(existing)
            logger.debug(f"Reinforced engram {existing.id} strength={existing.strength:.2f}")
            return existing

        engram.strength = self.config.initial_strength
        engram.created_at = engram.created_at or now
        engram.last_activated = now
        engram.associations = []
        self._engrams.insert(0, engram)
        if len(self._engrams) > self.config.capacity:
            self._prune()
        return engram

    def _promote(self, e: Engram) -> None:
        if not e.is_apex:
            logger.info(f"Apex engram formed: {e.pattern}")
        e.is_apex = True
        if not e.pattern.startswith(APEX_PREFIX):
            e.pattern = APEX_PREFIX + e.pattern
        for tag in APEX_TAGS:
            if tag not in e.concept_tags:
                e.concept_tags.append(tag)

    def composite_scores(self) -> Dict[str, float]:
        """0.7*strength + 0.3*recency, recency min-max normalized on last_activated."""
        if not self._engrams:
            return {}
        stamps = [e.last_activated for e in self._engrams]
        lo, hi = min(stamps), max(stamps)
        span = hi - lo
        cfg = self.config
        return {
            e.id: cfg.strength_weight * e.strength
            + cfg.recency_weight * ((e.last_activated - lo) / span if span > 0 else 1.0)
            for e in self._engrams
        }

    def _prune(self) -> None:
        scores = self.composite_scores()
        ranked = sorted(self._engrams, key=lambda e: (not e.is_apex, -scores[e.id]))
        dropped = ranked[self.config.capacity:]
        keep = {id(e) for e in ranked[: self.config.capacity]}
        # survivors keep their newest-first position
        self._engrams = [e for e in self._engrams if id(e) in keep]
        if dropped:
            logger.debug(f"Pruned {len(dropped)} weak engrams")

    def inject_apex(self, pattern: str = "Intraday VWAP Convergence",
                    signature: Optional[List[float]] = None) -> Engram:
        """Seed a fully saturated apex engram (bootstraps an empty bank)."""
        now = self.clock()
        e = Engram(
            id=f"APEX-{uuid.uuid4().hex[:12]}",
            pattern=APEX_PREFIX + base_pattern(pattern),
            outcome=Outcome.SUCCESS,
            signature=list(signature or [80.0, 5.0, 2.5, 1.0]),
            strength=1.0,
            weight=2.0,
            experience=9999.0,
            created_at=now,
            last_activated=now,
            concept_tags=list(APEX_TAGS) + ["DAY_TRADE", "VWAP_REJECTION"],
            market_condition="VOLATILE",
            is_apex=True,
        )
        self._engrams.insert(0, e)
        if len(self._engrams) > self.config.capacity:
            self._prune()
        return e

    # --- recall ---

    def adjusted_distance(self, signature: Sequence[float], e: Engram) -> float:
        bonus = self.config.apex_bonus if e.is_apex else 0.0
        return euclidean(signature, e.signature) * (1.5 - e.strength - bonus)

    def recall(self, signature: Sequence[float], k: Optional[int] = None) -> List[Recollection]:
        k = self.config.recall_k if k is None else k
        if k <= 0 or not self._engrams:
            return []
        sig = [finite_or(v) for v in signature]
        scored = [
            Recollection(engram=e, distance=euclidean(sig, e.signature), adjusted_distance=self.adjusted_distance(sig, e))
            for e in self._engrams
        ]
        scored.sort(key=lambda r: r.adjusted_distance)
        recalled = scored[:k]
        now = self.clock()
        for r in recalled:
            r.engram.last_activated = now
        return recalled

    def get_context(self, signature: Sequence[float], k: Optional[int] = None) -> MemoryContext:
        recalled = [r.engram for r in self.recall(signature, k)]
        if not recalled:
            return MemoryContext(recalled=[], intuition=None, apex_count=0, concepts=[])
        wins = sum(1 for e in recalled if e.success)
        return MemoryContext(
            recalled=recalled,
            intuition=wins / len(recalled) * 100.0,
            apex_count=sum(1 for e in recalled if e.is_apex),
            concepts=extract_concepts(recalled),
        )

    # --- statistics ---

    def evolution_level(self) -> int:
        total_xp = sum(e.experience for e in self._engrams)
        density = sum(e.strength for e in self._engrams)
        return int(math.floor((total_xp + density * 100) / 250)) + 1

    def stats(self, recent_limit: Optional[int] = None) -> MemoryStats:
        limit = self.config.recent_limit if recent_limit is None else recent_limit
        total = len(self._engrams)
        wins = sum(1 for e in self._engrams if e.success)

        strong: List[str] = []
        for e in self._engrams:
            if e.strength > 0.7 and e.pattern not in strong:
                strong.append(e.pattern)

        by_name: Dict[str, List[int]] = {}
        for e in self._engrams:
            w_t = by_name.setdefault(e.pattern, [0, 0])
            w_t[1] += 1
            if e.success:
                w_t[0] += 1
        top = sorted(
            (StrategyStat(name=n, win_rate=w / t * 100.0, count=t) for n, (w, t) in by_name.items()),
            key=lambda s: s.count,
            reverse=True,
        )[:3]

        return MemoryStats(
            total=total,
            win_rate=(wins / total * 100.0) if total else 0.0,
            apex=[e for e in self._engrams if e.is_apex],
            strong_patterns=strong[:5],
            top_strategies=top,
            recent=self._engrams[:max(0, limit)],
            evolution_level=self.evolution_level(),
        )

    # --- persistence ---

    def to_records(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._engrams]

    @classmethod
    def from_records(cls, records: Any, config: Optional[MemoryConfig] = None,
                     clock: Callable[[], float] = time.time) -> "MemoryStore":
        """Rebuild from a flat list of engram dicts. Malformed entries are skipped."""
        if not isinstance(records, list):
            raise ValueError("engram blob must be a list")
        engrams: List[Engram] = []
        for idx, rec in enumerate(records):
            try:
                engrams.append(Engram.from_dict(rec))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed engram #{idx}: {e}")
        return cls(config=config, clock=clock, engrams=engrams)


def extract_concepts(engrams: Iterable[Engram]) -> List[str]:
    concepts: List[str] = []

    def add(c: str) -> None:
        if c not in concepts:
            concepts.append(c)

    for e in engrams:
        if e.is_apex:
            add("apex_protocol_active")
        if not e.success:
            add("risk_zone")
        if len(e.signature) > 2 and e.signature[2] > 2.0:
            add("high_volatility_scalp")
        if e.signature and e.signature[0] < 30:
            add("rsi_oversold")
        if e.strength > 0.8:
            add("master_pattern_confirmed")
    return concepts

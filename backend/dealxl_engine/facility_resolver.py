"""
Facility identity resolution.

The same building shows up under slightly different names across an operating
review, an asset valuation and a portfolio model ("Sunrise Health Center (SNF)"
vs "Sunrise Health Ctr"). The resolver links those names into one
FacilityRecord per building using a tunable name similarity:

    score = w_token * Jaccard(tokens) + w_edit * (1 - levenshtein / max_len)

A shared name prefix floors the score at the review threshold, so a
prefix-only match is never merged silently. Scores between the review and accept
thresholds still merge but are flagged for review.
"""

import re
from typing import Dict, List, Optional, Sequence, Set, Tuple

import structlog

from backend.config import get_settings
from backend.dealxl_engine.models import (
    FacilityClassification,
    FacilityMatch,
    FacilityRecord,
    FacilitySection,
    ValuationEntry,
    WarningLog,
)
from backend.dealxl_engine.statement_parser import strip_type_annotation

logger = structlog.get_logger(__name__)

STAGE = "facility_resolution"

NON_ALNUM = re.compile(r"[^a-z0-9]+")

# Spelling variants seen across deal workbooks
NAME_ABBREVIATIONS: Dict[str, str] = {
    "ctr": "center",
    "cntr": "center",
    "centre": "center",
    "hlth": "health",
    "mnr": "manor",
    "nsg": "nursing",
    "vlg": "village",
    "mtn": "mountain",
}


# =============================================================================
# Name Similarity
# =============================================================================

class NameSimilarity:
    """
    Scores how likely two facility names refer to the same building.

    Attributes:
        token_weight: Weight of the token-set Jaccard score.
        edit_weight: Weight of the normalized edit-distance score.
        prefix_length: Canonical prefix length that floors the score.
        prefix_floor: Minimum score for names sharing that prefix; defaults to
            the review threshold so such pairs are merged but flagged.
    """

    def __init__(
        self,
        token_weight: float = 0.5,
        edit_weight: float = 0.5,
        prefix_length: Optional[int] = None,
        prefix_floor: Optional[float] = None,
    ):
        settings = get_settings()
        self.token_weight = token_weight
        self.edit_weight = edit_weight
        self.prefix_length = prefix_length if prefix_length is not None else settings.facility_prefix_length
        self.prefix_floor = prefix_floor if prefix_floor is not None else settings.facility_review_threshold

    @staticmethod
    def canonicalize(name: str) -> str:
        """Lowercase, drop the '(SNF)' style annotation, collapse punctuation, expand abbreviations."""
        text = NON_ALNUM.sub(" ", strip_type_annotation(name or "").lower())
        return " ".join(NAME_ABBREVIATIONS.get(token, token) for token in text.split())

    def tokens(self, name: str) -> Set[str]:
        return set(self.canonicalize(name).split())

    def score(self, a: str, b: str) -> float:
        """Similarity in [0, 1]; identical canonical names score 1.0."""
        ca, cb = self.canonicalize(a), self.canonicalize(b)
        if not ca or not cb:
            return 0.0
        if ca == cb:
            return 1.0

        ta, tb = set(ca.split()), set(cb.split())
        jaccard = len(ta & tb) / len(ta | tb)

        max_len = max(len(ca), len(cb))
        edit = 1.0 - (self._levenshtein_distance(ca, cb) / max_len)

        total = self.token_weight + self.edit_weight
        score = (self.token_weight * jaccard + self.edit_weight * edit) / total if total else 0.0

        if ca[:self.prefix_length] == cb[:self.prefix_length]:
            score = max(score, self.prefix_floor)
        return min(score, 1.0)

    def _levenshtein_distance(self, s1: str, s2: str) -> int:
        """Calculate Levenshtein distance between two strings."""
        if len(s1) < len(s2):
            return self._levenshtein_distance(s2, s1)

        if len(s2) == 0:
            return len(s1)

        previous_row = range(len(s2) + 1)
        for i, c1 in enumerate(s1):
            current_row = [i + 1]
            for j, c2 in enumerate(s2):
                insertions = previous_row[j + 1] + 1
                deletions = current_row[j] + 1
                substitutions = previous_row[j] + (c1 != c2)
                current_row.append(min(insertions, deletions, substitutions))
            previous_row = current_row

        return previous_row[-1]


# =============================================================================
# Resolver
# =============================================================================

class FacilityResolver:
    """
    Links statement facilities and valuation entries into FacilityRecords.

    Example:
        resolver = FacilityResolver()
        records, matches = resolver.resolve(statement.facilities, entries.entries, warnings=log)
    """

    def __init__(
        self,
        similarity: Optional[NameSimilarity] = None,
        accept_threshold: Optional[float] = None,
        review_threshold: Optional[float] = None,
    ):
        settings = get_settings()
        self.similarity = similarity or NameSimilarity()
        self.accept_threshold = (
            accept_threshold if accept_threshold is not None else settings.facility_accept_threshold
        )
        self.review_threshold = (
            review_threshold if review_threshold is not None else settings.facility_review_threshold
        )

    def match(self, name: str, candidates: Sequence[str], kind: str = "") -> Optional[FacilityMatch]:
        """
        Best candidate for a name, or None below the review threshold.

        Ties keep the earliest candidate.
        """
        best: Optional[Tuple[float, str]] = None
        for candidate in candidates:
            score = self.similarity.score(name, candidate)
            if best is None or score > best[0]:
                best = (score, candidate)
        if best is None or best[0] < self.review_threshold:
            return None
        return self._make_match(name, best[1], best[0], kind)

    def _make_match(self, source: str, target: str, score: float, kind: str) -> FacilityMatch:
        accepted = score >= self.accept_threshold
        return FacilityMatch(
            source_name=source,
            target_name=target,
            score=round(score, 4),
            accepted=accepted,
            needs_review=not accepted,
            kind=kind,
        )

    def resolve(
        self,
        statements: Sequence[FacilitySection],
        entries: Sequence[ValuationEntry],
        warnings: Optional[WarningLog] = None,
    ) -> Tuple[List[FacilityRecord], List[FacilityMatch]]:
        """
        Merge statement facilities and valuation entries.

        Each entry links to at most one statement facility; pairs are assigned
        greedily from the highest score down. Unmatched entries become
        records of their own.

        Args:
            statements: Parsed statement facility sections.
            entries: Parsed valuation entries.
            warnings: Shared warnings channel.

        Returns:
            (records sorted by canonical name, matches made)
        """
        log = warnings if warnings is not None else WarningLog()

        records: Dict[str, FacilityRecord] = {}
        for section in statements:
            canonical = self.similarity.canonicalize(section.facility_name)
            if not canonical:
                continue
            existing = records.get(canonical)
            if existing is not None:
                if section.facility_name not in existing.aliases and section.facility_name != existing.name:
                    existing.aliases.append(section.facility_name)
                continue
            records[canonical] = FacilityRecord(
                canonical_name=canonical,
                name=section.facility_name,
                beds=section.census.beds or 0.0,
                statement=section,
            )

        statement_keys = list(records.keys())
        pairs: List[Tuple[float, int, int]] = []
        for ei, entry in enumerate(entries):
            for si, key in enumerate(statement_keys):
                score = self.similarity.score(entry.facility_name, records[key].name)
                if score >= self.review_threshold:
                    pairs.append((score, ei, si))
        pairs.sort(key=lambda p: (-p[0], p[1], p[2]))

        matches: List[FacilityMatch] = []
        claimed_entries: Set[int] = set()
        claimed_statements: Set[int] = set()
        for score, ei, si in pairs:
            if ei in claimed_entries or si in claimed_statements:
                continue
            claimed_entries.add(ei)
            claimed_statements.add(si)

            entry = entries[ei]
            record = records[statement_keys[si]]
            facility_match = self._make_match(entry.facility_name, record.name, score, kind="valuation_entry")
            matches.append(facility_match)
            self._attach_entry(record, entry, facility_match)

            if facility_match.needs_review:
                log.add(
                    STAGE,
                    f"Low-confidence facility match: '{entry.facility_name}' ~ '{record.name}' "
                    f"(score {facility_match.score:.2f})",
                    source=entry.facility_name,
                    target=record.name,
                    score=facility_match.score,
                )

        for ei, entry in enumerate(entries):
            if ei in claimed_entries:
                continue
            canonical = self.similarity.canonicalize(entry.facility_name)
            if not canonical:
                continue
            if canonical in records:
                # Same canonical name as a record created from an earlier entry
                if entry.facility_name != records[canonical].name:
                    records[canonical].aliases.append(entry.facility_name)
                continue
            record = FacilityRecord(canonical_name=canonical, name=entry.facility_name)
            self._attach_entry(record, entry, None)
            records[canonical] = record

        resolved = sorted(records.values(), key=lambda r: r.canonical_name)
        logger.info(
            "Facilities resolved",
            records=len(resolved),
            matched=len(matches),
            needs_review=sum(1 for m in matches if m.needs_review),
        )
        return resolved, matches

    @staticmethod
    def _attach_entry(record: FacilityRecord, entry: ValuationEntry, facility_match: Optional[FacilityMatch]) -> None:
        record.valuation_entry = entry
        record.property_type = entry.property_type
        record.city = record.city or entry.city
        record.state = record.state or entry.state
        if entry.facility_name != record.name and entry.facility_name not in record.aliases:
            record.aliases.append(entry.facility_name)
        if facility_match is not None:
            record.match_score = facility_match.score
            record.needs_review = facility_match.needs_review
        record.beds = FacilityResolver._first_positive(
            entry.beds,
            record.statement.census.beds if record.statement is not None else None,
        )

    @staticmethod
    def _first_positive(*values: Optional[float]) -> float:
        for value in values:
            if value and value > 0:
                return value
        return 0.0

    def apply_classifications(
        self,
        records: Sequence[FacilityRecord],
        classifications: Sequence[FacilityClassification],
    ) -> None:
        """Attach classifications by facility name and settle bed counts."""
        by_name = {c.facility_name: c for c in classifications}
        for record in records:
            classification = by_name.get(record.name)
            if classification is None:
                continue
            record.classification = classification
            record.property_type = classification.property_type
            record.beds = self._first_positive(
                classification.beds,
                record.valuation_entry.beds if record.valuation_entry is not None else None,
                record.statement.census.beds if record.statement is not None else None,
            )

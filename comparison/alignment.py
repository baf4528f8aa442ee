"""Greedy, threshold-gated pairing of pages and segments."""
from __future__ import annotations

import threading
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from comparison.models import NO_PAGE, DocumentPair, DocumentSegment, PageFingerprint, PagePair
from comparison.scoring import SimilarityScorer
from config.settings import settings
from utils.logging import logger

ScoreFn = Callable[[int, int], float]
VisualFn = Callable[[int, int], Optional[float]]  # None when the visual signal is unavailable
Match = Tuple[int, int, float]  # base index -> compare index, score


class MatchState(Enum):
    UNMATCHED = "unmatched"
    CANDIDATE = "candidate"
    MATCHED = "matched"
    UNMATCHED_FINAL = "unmatched_final"


class ComparisonCancelled(RuntimeError):
    """Raised between units when a run is cancelled or exceeds its deadline."""

    def __init__(self, message: str, partial: Optional[List[Match]] = None):
        super().__init__(message)
        self.partial: List[Match] = list(partial or [])


@dataclass
class GreedyMatchResult:
    matches: List[Match] = field(default_factory=list)
    unmatched_base: List[int] = field(default_factory=list)
    unmatched_compare: List[int] = field(default_factory=list)
    states: Dict[int, MatchState] = field(default_factory=dict)


def check_cancelled(
    cancel_event: Optional[threading.Event],
    deadline: Optional[float],
    partial: Optional[List[Match]] = None,
) -> None:
    """Raise ComparisonCancelled if the run was cancelled or the deadline passed."""
    if cancel_event is not None and cancel_event.is_set():
        raise ComparisonCancelled("Comparison cancelled", partial)
    if deadline is not None and time.monotonic() > deadline:
        raise ComparisonCancelled("Comparison exceeded its time budget", partial)


def _score_candidates(
    base_index: int,
    candidates: Sequence[int],
    score_fn: ScoreFn,
    executor: Optional[Executor],
) -> List[float]:
    if executor is None or len(candidates) < 2:
        return [score_fn(base_index, c) for c in candidates]
    # map() yields in submission order, so completion order never leaks into selection.
    return list(executor.map(lambda c: score_fn(base_index, c), candidates))


def greedy_match(
    base_items: Iterable[int],
    compare_items: Iterable[int],
    score_fn: ScoreFn,
    threshold: float,
    executor: Optional[Executor] = None,
    cancel_event: Optional[threading.Event] = None,
    deadline: Optional[float] = None,
) -> GreedyMatchResult:
    """
    First-come-first-served pairing in base order.

    For each base item, every still-unmatched compare item is scored and
    the best one is committed if it reaches ``threshold``. Ties go to the
    earliest compare item. This is not a globally optimal assignment.

    Candidate scores may be computed in parallel; the matched set is only
    touched by the calling thread once a base item's scores are all in.
    """
    base_order = list(base_items)
    compare_order = list(compare_items)
    result = GreedyMatchResult(states={b: MatchState.UNMATCHED for b in base_order})
    consumed: Set[int] = set()

    for base_index in base_order:
        check_cancelled(cancel_event, deadline, result.matches)

        candidates = [c for c in compare_order if c not in consumed]
        if not candidates:
            result.states[base_index] = MatchState.UNMATCHED_FINAL
            result.unmatched_base.append(base_index)
            continue

        result.states[base_index] = MatchState.CANDIDATE
        scores = _score_candidates(base_index, candidates, score_fn, executor)

        best_index = NO_PAGE
        best_score = -1.0
        for candidate, score in zip(candidates, scores):
            if score > best_score and score >= threshold:
                best_index = candidate
                best_score = score

        if best_index == NO_PAGE:
            result.states[base_index] = MatchState.UNMATCHED_FINAL
            result.unmatched_base.append(base_index)
            continue

        consumed.add(best_index)
        result.states[base_index] = MatchState.MATCHED
        result.matches.append((base_index, best_index, min(1.0, max(0.0, best_score))))
        logger.debug("Matched %d -> %d (%.3f)", base_index, best_index, best_score)

    result.unmatched_compare = [c for c in compare_order if c not in consumed]
    return result


def _page_pairs(
    matches: List[Match],
    unmatched_base: Iterable[int],
    unmatched_compare: Iterable[int],
) -> List[PagePair]:
    pairs = [PagePair(b, c, score, True) for b, c, score in matches]
    pairs.extend(PagePair(b, NO_PAGE, 0.0, False) for b in unmatched_base)
    pairs.extend(PagePair(NO_PAGE, c, 0.0, False) for c in unmatched_compare)
    return pairs


class PageMatcher:
    """
    Pair base pages with compare pages.

    Usage:
        matcher = PageMatcher(SimilarityScorer())
        pairs = matcher.match_pages(base_fingerprints, compare_fingerprints)
    """

    def __init__(
        self,
        scorer: Optional[SimilarityScorer] = None,
        threshold: Optional[float] = None,
        two_phase: Optional[bool] = None,
        visual_fn: Optional[VisualFn] = None,
        executor: Optional[Executor] = None,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ):
        self.scorer = scorer or SimilarityScorer()
        self.threshold = threshold if threshold is not None else settings.similarity_threshold
        self.two_phase = two_phase if two_phase is not None else settings.two_phase_matching
        self.visual_threshold = max(self.threshold, settings.visual_phase_threshold)
        self.visual_fn = visual_fn
        self.executor = executor
        self.cancel_event = cancel_event
        self.deadline = deadline

    def _visual(self, base: Sequence[PageFingerprint], compare: Sequence[PageFingerprint]) -> ScoreFn:
        if self.visual_fn is not None:
            visual_fn = self.visual_fn
            return lambda b, c: visual_fn(b, c) or 0.0
        return lambda b, c: self.scorer.visual_score(base[b], compare[c])

    def _full(self, base: Sequence[PageFingerprint], compare: Sequence[PageFingerprint]) -> ScoreFn:
        counts = (len(base), len(compare))

        def score(b: int, c: int) -> float:
            visual = self.visual_fn(b, c) if self.visual_fn is not None else None
            return self.scorer.score_pages(base[b], compare[c], visual=visual, page_counts=counts)

        return score

    def _has_visual_signal(self, base: Sequence[PageFingerprint], compare: Sequence[PageFingerprint]) -> bool:
        if self.visual_fn is not None:
            return True
        return any(fp.perceptual_hash for fp in base) and any(fp.perceptual_hash for fp in compare)

    def _match_subset(
        self,
        base: Sequence[PageFingerprint],
        compare: Sequence[PageFingerprint],
        base_items: List[int],
        compare_items: List[int],
        matches: List[Match],
    ) -> Tuple[List[int], List[int]]:
        """Match within the given index subsets, appending to ``matches``; returns leftovers."""
        if self.two_phase and self._has_visual_signal(base, compare):
            phase_one = self._greedy(
                base_items, compare_items, self._visual(base, compare), self.visual_threshold, matches
            )
            base_items = phase_one.unmatched_base
            compare_items = phase_one.unmatched_compare
            logger.debug("Visual phase resolved %d pairs", len(phase_one.matches))

        if not base_items or not compare_items:
            return base_items, compare_items

        full = self._greedy(base_items, compare_items, self._full(base, compare), self.threshold, matches)
        return full.unmatched_base, full.unmatched_compare

    def _greedy(
        self,
        base_items: List[int],
        compare_items: List[int],
        score_fn: ScoreFn,
        threshold: float,
        matches: List[Match],
    ) -> GreedyMatchResult:
        try:
            result = greedy_match(
                base_items,
                compare_items,
                score_fn,
                threshold,
                executor=self.executor,
                cancel_event=self.cancel_event,
                deadline=self.deadline,
            )
        except ComparisonCancelled as exc:
            raise ComparisonCancelled(str(exc), matches + exc.partial) from exc
        matches.extend(result.matches)
        return result

    def match_pages(
        self,
        base: Sequence[PageFingerprint],
        compare: Sequence[PageFingerprint],
        windows: Optional[Sequence[Tuple[Sequence[int], Sequence[int]]]] = None,
    ) -> List[PagePair]:
        """
        Pair pages; every page ends up in exactly one PagePair.

        Args:
            base: Base document fingerprints, in page order
            compare: Compare document fingerprints, in page order
            windows: Optional (base pages, compare pages) groups that are
                matched among themselves first, e.g. pages of matched segments

        Returns:
            Matched pairs in base order, then base-only pairs, then compare-only pairs
        """
        logger.info("Matching %d pages -> %d pages", len(base), len(compare))
        matches: List[Match] = []
        remaining_base = list(range(len(base)))
        remaining_compare = list(range(len(compare)))

        for base_window, compare_window in windows or ():
            window_base = [b for b in base_window if b in remaining_base]
            window_compare = [c for c in compare_window if c in remaining_compare]
            if not window_base or not window_compare:
                continue
            self._match_subset(base, compare, window_base, window_compare, matches)
            matched_base = {b for b, _, _ in matches}
            matched_compare = {c for _, c, _ in matches}
            remaining_base = [b for b in remaining_base if b not in matched_base]
            remaining_compare = [c for c in remaining_compare if c not in matched_compare]

        if remaining_base and remaining_compare:
            remaining_base, remaining_compare = self._match_subset(
                base, compare, remaining_base, remaining_compare, matches
            )

        matches.sort(key=lambda m: m[0])
        pairs = _page_pairs(matches, sorted(remaining_base), sorted(remaining_compare))
        logger.info(
            "Page matching: %d matched, %d base-only, %d compare-only",
            len(matches),
            len(remaining_base),
            len(remaining_compare),
        )
        return pairs


class SegmentMatcher:
    """Pair sub-document segments with the segment-level fusion score."""

    def __init__(
        self,
        scorer: Optional[SimilarityScorer] = None,
        threshold: Optional[float] = None,
        executor: Optional[Executor] = None,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ):
        self.scorer = scorer or SimilarityScorer()
        self.threshold = threshold if threshold is not None else settings.similarity_threshold
        self.executor = executor
        self.cancel_event = cancel_event
        self.deadline = deadline

    def match_segments(
        self,
        base: Sequence[DocumentSegment],
        compare: Sequence[DocumentSegment],
    ) -> List[DocumentPair]:
        logger.info("Matching %d segments -> %d segments", len(base), len(compare))
        result = greedy_match(
            range(len(base)),
            range(len(compare)),
            lambda b, c: self.scorer.score_segments(base[b], compare[c]),
            self.threshold,
            executor=self.executor,
            cancel_event=self.cancel_event,
            deadline=self.deadline,
        )

        pairs: List[DocumentPair] = []
        for b, c, score in result.matches:
            pairs.append(
                DocumentPair(
                    base[b].start_page, base[b].end_page,
                    compare[c].start_page, compare[c].end_page,
                    score, True,
                )
            )
        for b in result.unmatched_base:
            pairs.append(DocumentPair(base[b].start_page, base[b].end_page, NO_PAGE, NO_PAGE, 0.0, False))
        for c in result.unmatched_compare:
            pairs.append(DocumentPair(NO_PAGE, NO_PAGE, compare[c].start_page, compare[c].end_page, 0.0, False))
        return pairs


def pages_within(pairs: Iterable[DocumentPair]) -> List[Tuple[List[int], List[int]]]:
    """Page index windows (base pages, compare pages) for each matched segment pair."""
    return [
        (
            list(range(pair.base_start, pair.base_end + 1)),
            list(range(pair.compare_start, pair.compare_end + 1)),
        )
        for pair in pairs
        if pair.matched
    ]

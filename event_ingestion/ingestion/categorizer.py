"""
Two-stage event categorization.

1. A deterministic keyword heuristic over title, venue and description.
2. When the heuristic is inconclusive, a remote LLM classification. Any remote
   failure recovers to the heuristic's best guess, never to an error.

Results are cached per normalized event name so recurring occasions of the
same show are classified once per run.
"""

import logging
import re
from collections.abc import Awaitable, Callable

from event_ingestion.agents.llm.base_llm_client import BaseLLMClient
from event_ingestion.agents.output_models import CategorizationOutput
from event_ingestion.ingestion.errors import RunCancelledError
from event_ingestion.ingestion.normalization import normalize_text
from event_ingestion.schemas import (
    CategorizationResult,
    EventCategory,
    MAX_CATEGORIES,
    RawEvent,
    UNCATEGORIZED,
    rank_categories,
)

logger = logging.getLogger(__name__)

C = EventCategory

CATEGORY_KEYWORDS: dict[EventCategory, tuple[str, ...]] = {
    C.SCEN: (
        "teater", "musikal", "standup", "stand up", "konsert", "livemusik",
        "föreställning", "show", "opera", "revy", "dans", "komik", "turné",
    ),
    C.NATTLIV: ("klubb", "dj", "nattklubb", "fest", "afterwork", "party", "disco"),
    C.SPORT: (
        "match", "träning", "löpning", "lopp", "fotboll", "handboll", "hockey",
        "innebandy", "turnering", "tävling", "motion",
    ),
    C.UTSTALLNINGAR: ("utställning", "galleri", "vernissage", "konsthall", "museum"),
    C.KONST: ("konst", "konstnär", "målning", "skulptur", "konsthantverk", "installation"),
    C.FORELASNINGAR: (
        "föreläsning", "föredrag", "seminarium", "workshop", "kurs", "samtal", "talk",
    ),
    C.BARN_OCH_FAMILJ: (
        "barn", "familj", "sagostund", "barnteater", "lekland", "för de små", "skollov",
    ),
    C.MAT_OCH_DRYCK: (
        "mat", "middag", "vinprovning", "ölprovning", "provning", "brunch", "lunch",
        "matfestival", "restaurang", "meny",
    ),
    C.JUL: ("jul", "lucia", "advent", "tomte", "julbord", "julmarknad"),
    C.FILM_OCH_BIO: ("film", "bio", "biograf", "filmvisning", "filmfestival", "premiär"),
    C.DJUR_OCH_NATUR: (
        "natur", "vandring", "djur", "fågel", "skog", "friluft", "naturreservat",
    ),
    C.GUIDADE_VISNINGAR: ("guidad", "visning", "stadsvandring", "rundtur", "guide"),
    C.MARKNADER: ("marknad", "loppis", "antik", "torghandel", "mässa"),
}  # fmt: skip

FORBIDDEN_COMBINATIONS: list[tuple[EventCategory, EventCategory]] = [
    (C.NATTLIV, C.BARN_OCH_FAMILJ),
    (C.NATTLIV, C.JUL),
    (C.SPORT, C.FILM_OCH_BIO),
    (C.MAT_OCH_DRYCK, C.DJUR_OCH_NATUR),
    (C.GUIDADE_VISNINGAR, C.NATTLIV),
    (C.UTSTALLNINGAR, C.SPORT),
]

TITLE_WEIGHT = 0.35
TEXT_WEIGHT = 0.15
HINT_SCORE = 0.9
HEURISTIC_BASE = 0.3
CONFIDENT_SCORE = 0.7
REMOTE_MIN_SCORE = 0.5
DESCRIPTION_PROMPT_CHARS = 300

SYSTEM_PROMPT = (
    "Du är en expert på att kategorisera svenska evenemang. "
    "Analysera eventet och välj 1-3 kategorier som passar bäst."
)


SHORT_KEYWORD_LENGTH = 4


def _keyword_text(value: str | None) -> str:
    return normalize_text(re.sub(r"[^\w\s]", " ", value or ""))


def _contains_word(text: str, keyword: str) -> bool:
    """Word-prefix match so Swedish compounds hit; short keywords must match whole."""
    padded = f" {text} "
    if len(keyword) <= SHORT_KEYWORD_LENGTH:
        return f" {keyword} " in padded
    return f" {keyword}" in padded


def remove_forbidden_combinations(
    categories: list[EventCategory],
) -> list[EventCategory]:
    """Drop the lower-ranked member of a forbidden pair until no pair is left."""
    categories = list(categories)
    while True:
        pair = next(
            (p for p in FORBIDDEN_COMBINATIONS if p[0] in categories and p[1] in categories),
            None,
        )
        if pair is None:
            return categories
        dropped = max(pair, key=categories.index)
        categories.remove(dropped)
        logger.warning(
            f"Invalid category combination {pair[0].value} + {pair[1].value}, "
            f"removed '{dropped.value}'"
        )


def build_user_prompt(raw: RawEvent) -> str:
    description = (raw.description or "")[:DESCRIPTION_PROMPT_CHARS]
    allowed = "\n".join(f"- {c.value}" for c in EventCategory if c is not UNCATEGORIZED)
    return (
        "Kategorisera detta svenska evenemang. Välj 1-3 kategorier som passar bäst, "
        "sorterade efter relevans.\n\n"
        f"Titel: {raw.name}\n"
        f"Plats: {raw.display_venue}\n"
        f"Beskrivning: {description}\n\n"
        f"Tillgängliga kategorier (använd EXAKT dessa namn):\n{allowed}"
    )


class EventCategorizer:
    """
    Assigns 1-3 ranked categories with confidence scores to a raw record.

    Args:
        llm: Remote classifier used when the heuristic is inconclusive. None or
             an unavailable client disables the remote stage.
        temperature: Sampling temperature for the remote call
    """

    def __init__(self, llm: BaseLLMClient | None = None, temperature: float = 0.2):
        self.llm = llm
        self.temperature = temperature
        self._cache: dict[str, CategorizationResult] = {}

    @property
    def remote_enabled(self) -> bool:
        return self.llm is not None and self.llm.is_available

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------
    # Stage 1: heuristic
    # ------------------------------------------------------------------

    def heuristic_scores(
        self, raw: RawEvent, hints: list[str] | None = None
    ) -> dict[EventCategory, float]:
        """Keyword evidence per category. Title hits weigh more than body text."""
        title = _keyword_text(raw.name)
        body = _keyword_text(f"{raw.display_venue} {raw.description or ''}")
        scores: dict[EventCategory, float] = {}

        for category, keywords in CATEGORY_KEYWORDS.items():
            title_hits = sum(1 for kw in keywords if _contains_word(title, kw))
            body_hits = sum(1 for kw in keywords if _contains_word(body, kw))
            if title_hits or body_hits:
                score = HEURISTIC_BASE + TITLE_WEIGHT * title_hits + TEXT_WEIGHT * body_hits
                scores[category] = min(score, 1.0)

        for hint in [*raw.category_hints, *(hints or [])]:
            category = EventCategory.parse(hint)
            if category and category is not UNCATEGORIZED:
                scores[category] = max(scores.get(category, 0.0), HINT_SCORE)

        return scores

    def _heuristic_result(
        self, raw: RawEvent, hints: list[str] | None
    ) -> CategorizationResult:
        scores = self.heuristic_scores(raw, hints)
        if not scores:
            return CategorizationResult.uncategorized(method="heuristic")
        ranked = remove_forbidden_combinations(rank_categories(scores)[:MAX_CATEGORIES])
        return CategorizationResult.from_scores(
            {c: scores[c] for c in ranked}, method="heuristic"
        )

    # ------------------------------------------------------------------
    # Stage 2: remote
    # ------------------------------------------------------------------

    def parse_remote(self, output: CategorizationOutput) -> CategorizationResult:
        """
        Turn a model answer into a valid result.

        Unknown names are dropped, the list is cut to three, forbidden pairs
        repaired and categories scoring below 0.5 filtered. Missing scores
        default to 1.0, 0.8, 0.6 by position.

        Raises:
            ValueError: if no known category remains
        """
        categories: list[EventCategory] = []
        for name in output.categories:
            category = EventCategory.parse(name)
            if category and category not in categories:
                categories.append(category)
        if not categories:
            raise ValueError(f"No valid categories in response: {output.categories}")

        categories = remove_forbidden_combinations(categories[:MAX_CATEGORIES])
        if output.scores:
            raw_scores = {
                EventCategory.parse(name): value for name, value in output.scores.items()
            }
            scores = {c: raw_scores.get(c, 0.5) for c in categories}
        else:
            scores = {c: 1.0 - i * 0.2 for i, c in enumerate(categories)}

        kept = {c: s for c, s in scores.items() if s >= REMOTE_MIN_SCORE}
        if not kept:
            kept = {categories[0]: REMOTE_MIN_SCORE}
        return CategorizationResult.from_scores(kept, method="llm")

    async def _remote_result(self, raw: RawEvent) -> CategorizationResult:
        output = await self.llm.complete_structured(
            system_prompt=SYSTEM_PROMPT,
            user_prompt=build_user_prompt(raw),
            output_schema=CategorizationOutput,
            temperature=self.temperature,
        )
        return self.parse_remote(output)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def categorize(
        self,
        raw: RawEvent,
        hints: list[str] | None = None,
        guard: Callable[[Awaitable], Awaitable] | None = None,
    ) -> CategorizationResult:
        """
        Categorize one record. Never returns an empty list.

        Args:
            raw: The record to classify
            hints: Extra category names (e.g. the source's default category)
            guard: Wraps the remote call, used to race it against cancellation

        Raises:
            RunCancelledError: if `guard` observes cancellation
        """
        cache_key = normalize_text(raw.name)
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cached categories for '{raw.name}': {cached.categories}")
            return cached

        heuristic = self._heuristic_result(raw, hints)
        result = heuristic
        confident = (
            not heuristic.is_uncategorized
            and heuristic.scores[heuristic.primary] >= CONFIDENT_SCORE
        )

        if not confident and self.remote_enabled:
            call = self._remote_result(raw)
            try:
                result = await (guard(call) if guard else call)
            except RunCancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"Remote categorization failed for '{raw.name}', "
                    f"using heuristic result: {e}"
                )
                result = heuristic

        self._cache[cache_key] = result
        logger.info(
            f"Categorized '{raw.name}' as "
            f"{[c.value for c in result.categories]} ({result.method})"
        )
        return result

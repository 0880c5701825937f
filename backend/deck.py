"""Card pools and per-room deck management."""

import logging
import os
import random
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

import config

logger = logging.getLogger(__name__)

WILD_CARD = "__BLANK__"
NO_ANSWER = "(no answer)"

DEFAULT_ANSWERS = [
    "A disappointing birthday party",
    "Grandma's secret recipe",
    "An awkward high five",
    "Poor life choices",
    "Puppies!",
    "A frozen burrito",
    "The meaning of life",
    "A really cool hat",
    "Passive-aggressive Post-it notes",
    "Unexpected nudity",
    "Being on fire",
    "Dad's emotional baggage",
    "A micropig wearing a tiny raincoat",
    "The violation of our most basic human rights",
    "A salty surprise",
    "Full frontal nudity",
    "Getting naked and watching Nickelodeon",
    "My relationship status",
    "Dying alone and full of regrets",
    "A lifetime of regret",
    "A sad handjob",
    "An unpaid internship",
    "Forgetting the Alamo",
    "Spontaneous human combustion",
    "A bucket of fried chicken",
    "Overcompensation",
    "Stranger danger",
    "The inevitable heat death of the universe",
    "A middle-aged man on roller skates",
    "Wearing underwear inside-out to avoid doing laundry",
    "A group chat that never stops",
    "Reply-all",
    "The smell of a new car",
    "An emotionally unavailable houseplant",
    "Tax fraud",
    "Karaoke night gone wrong",
    "A haunted IKEA bookshelf",
    "Being rich",
    "Free samples",
    "Vigorous jazz hands",
    "Licking things to claim them as your own",
    "A balanced breakfast",
    "Self-checkout rage",
    "Interpretive dance",
    "Mom's new boyfriend",
    "An ironic mustache",
    "Pretending to care",
    "A 3 AM existential crisis",
    "The last slice of pizza",
    "Ghosting",
    "A suspiciously long hug",
    "Crying in the shower",
    "A horse with no legs",
    "Microwave popcorn at the office",
    "A ten-minute voicemail",
    "The cool aunt",
    "Unsolicited advice",
    "Running out of toilet paper",
    "An influencer's skincare routine",
    "Hot cheese",
]

DEFAULT_PROMPTS = [
    "What's Batman's guilty pleasure? ___",
    "What ruined the family reunion? ___",
    "In 2025, the hottest trend is ___",
    "The secret ingredient is ___",
    "What's worse than stubbing your toe? ___",
    "TSA guidelines now prohibit ___ on airplanes.",
    "What's the next Happy Meal toy? ___",
    "What ended my last relationship? ___",
    "I drink to forget ___",
    "What's my superpower? ___",
    "What's that smell? ___",
    "My therapist says I need to stop ___",
    "Coming soon to Netflix: ___, the musical.",
    "What gets better with age? ___",
    "The wedding was going great until ___",
    "What did I bring back from Mexico? ___",
    "Why can't I sleep at night? ___",
    "Step 1: ___. Step 2: Profit.",
    "What's the most emo? ___",
    "What's my anti-drug? ___",
]


def _read_cards(path: str) -> List[str]:
    with open(path, "r", encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


@dataclass(frozen=True)
class CardPool:
    """Canonical, read-only card lists shared by every room."""
    answers: tuple
    prompts: tuple

    @classmethod
    def load(cls, directory: Optional[str] = None) -> "CardPool":
        directory = directory if directory is not None else config.CARDS_DIR
        answers = list(DEFAULT_ANSWERS)
        prompts = list(DEFAULT_PROMPTS)
        try:
            white = os.path.join(directory, "white_cards.txt")
            black = os.path.join(directory, "black_cards.txt")
            if os.path.exists(white):
                answers = _read_cards(white) or answers
            if os.path.exists(black):
                prompts = _read_cards(black) or prompts
        except OSError:
            logger.exception("Failed to read card files from %s, using defaults", directory)
        answers = [c for c in answers if c not in (WILD_CARD, NO_ANSWER)]
        logger.info("Loaded %d white cards, %d black cards", len(answers), len(prompts))
        return cls(answers=tuple(answers), prompts=tuple(prompts))


class DeckManager:
    """Draw/discard piles for one room.

    Answer (white) cards are drawn excluding a caller-supplied set, normally
    the drawing player's current hand. Prompt (black) cards never repeat
    within a game until every prompt in the pool has been shown once.
    """

    def __init__(self, pool: CardPool, rng: Optional[random.Random] = None):
        self.pool = pool
        self._rng = rng or random.Random()
        self.answer_pile: List[str] = []
        self.answer_discard: List[str] = []
        self.prompt_pile: List[str] = []
        self.prompt_discard: List[str] = []
        self.used_prompts: Set[str] = set()
        self.reset()

    def reset(self):
        """Fresh shuffled piles for a new game."""
        self.answer_pile = self._shuffled(self.pool.answers)
        self.answer_discard = []
        self.prompt_pile = self._shuffled(self.pool.prompts)
        self.prompt_discard = []
        self.used_prompts = set()

    def _shuffled(self, cards: Iterable[str]) -> List[str]:
        pile = list(cards)
        self._rng.shuffle(pile)
        return pile

    @staticmethod
    def _take(pile: List[str], excluded: Set[str]) -> Optional[str]:
        """Remove and return the top-most card of `pile` not in `excluded`."""
        for i in range(len(pile) - 1, -1, -1):
            if pile[i] not in excluded:
                return pile.pop(i)
        return None

    # --- Answers ---

    def draw_answer(self, excluding: Iterable[str] = ()) -> Optional[str]:
        excluded = set(excluding)
        if not self.answer_pile:
            if self.answer_discard:
                self.answer_pile = self._shuffled(self.answer_discard)
                self.answer_discard = []
            else:
                self.answer_pile = self._shuffled(self.pool.answers)
        card = self._take(self.answer_pile, excluded)
        if card is None and self.answer_discard:
            self.answer_pile.extend(self.answer_discard)
            self.answer_discard = []
            self._rng.shuffle(self.answer_pile)
            card = self._take(self.answer_pile, excluded)
        return card

    def discard_answer(self, card: str):
        if card and card not in (WILD_CARD, NO_ANSWER):
            self.answer_discard.append(card)

    # --- Prompts ---

    def draw_prompt(self) -> Optional[str]:
        if len(self.used_prompts) >= len(set(self.pool.prompts)):
            self.used_prompts.clear()
        if not self.prompt_pile:
            if self.prompt_discard:
                self.prompt_pile = self._shuffled(self.prompt_discard)
                self.prompt_discard = []
            else:
                self.prompt_pile = self._shuffled(self.pool.prompts)
        card = self._take(self.prompt_pile, self.used_prompts)
        if card is None and self.prompt_discard:
            self.prompt_pile.extend(self.prompt_discard)
            self.prompt_discard = []
            self._rng.shuffle(self.prompt_pile)
            card = self._take(self.prompt_pile, self.used_prompts)
        if card is None:
            # Only already-shown prompts are left in the piles.
            self.used_prompts.clear()
            card = self._take(self.prompt_pile, self.used_prompts)
        if card is not None:
            self.used_prompts.add(card)
        return card

    def discard_prompt(self, card: Optional[str]):
        if card:
            self.prompt_discard.append(card)

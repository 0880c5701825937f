"""Per-room game state: players, submissions, phases and timer handles."""

import asyncio
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

import config
from deck import DeckManager, WILD_CARD
from errors import IllegalTransition

logger = logging.getLogger(__name__)


class LobbyState(str, Enum):
    IDLE = "idle"
    COUNTING_DOWN = "counting-down"
    STARTED = "started"


class RoundPhase(str, Enum):
    PRE_ROUND = "pre-round"
    SUBMIT = "submit"
    JUDGE = "judge"
    SCORED = "scored"
    ENDED = "ended"


LOBBY_TRANSITIONS = {
    LobbyState.IDLE: {LobbyState.COUNTING_DOWN},
    LobbyState.COUNTING_DOWN: {LobbyState.IDLE, LobbyState.STARTED},
    LobbyState.STARTED: {LobbyState.IDLE},
}

# Any phase may fall back to PRE_ROUND: abandoned rounds and resets.
PHASE_TRANSITIONS = {
    RoundPhase.PRE_ROUND: {RoundPhase.PRE_ROUND, RoundPhase.SUBMIT},
    RoundPhase.SUBMIT: {RoundPhase.PRE_ROUND, RoundPhase.JUDGE},
    RoundPhase.JUDGE: {RoundPhase.PRE_ROUND, RoundPhase.SCORED},
    RoundPhase.SCORED: {RoundPhase.PRE_ROUND, RoundPhase.ENDED},
    RoundPhase.ENDED: {RoundPhase.PRE_ROUND},
}


def cancel_task(task: Optional[asyncio.Task]):
    """Cancel a timer task unless it is the one currently running."""
    if task and not task.done() and task is not asyncio.current_task():
        task.cancel()


def new_player_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class Player:
    id: str
    name: str
    conn_id: Optional[str]
    ready: bool = False
    disconnected: bool = False
    reconnect_seconds: int = 0
    hand: List[str] = field(default_factory=list)
    revealed: Set[int] = field(default_factory=set)
    score: int = 0
    submitted: bool = False
    is_judge: bool = False
    grace_task: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)

    def remove_card(self, index: int) -> str:
        """Pop the card at `index`, shifting revealed-slot indices down."""
        card = self.hand.pop(index)
        self.revealed = {i if i < index else i - 1 for i in self.revealed if i != index}
        return card

    def reset_for_new_game(self):
        self.ready = False
        self.hand = []
        self.revealed = set()
        self.score = 0
        self.submitted = False
        self.is_judge = False

    def cancel_grace(self):
        cancel_task(self.grace_task)
        self.grace_task = None


@dataclass
class Submission:
    player_id: str
    name: str
    card: str
    auto: bool = False


class Room:
    def __init__(self, code: str, deck: DeckManager):
        self.code = code
        self.deck = deck
        self.players: Dict[str, Player] = {}  # player_id -> Player, insertion ordered
        self.pending: Dict[str, Player] = {}  # joined after the game started
        self.lobby_state = LobbyState.IDLE
        self.phase = RoundPhase.PRE_ROUND
        self.prompt_card: Optional[str] = None
        self.submissions: List[Submission] = []
        self.judge_index = -1  # seat of the current judge in join order
        self.round_number = 0
        self.round_task: Optional[asyncio.Task] = None
        self.time_remaining = 0
        self.countdown_task: Optional[asyncio.Task] = None
        self.countdown_value = 0
        self.winning_cards: List[dict] = []
        self.lock = asyncio.Lock()
        self.last_activity = time.time()

    @property
    def started(self) -> bool:
        return self.lobby_state is LobbyState.STARTED

    def touch(self):
        self.last_activity = time.time()

    def is_expired(self) -> bool:
        return time.time() - self.last_activity > config.ROOM_TTL_SECONDS

    def is_empty(self) -> bool:
        return not self.players and not self.pending

    # --- State machines ---

    def set_lobby_state(self, new_state: LobbyState):
        if new_state not in LOBBY_TRANSITIONS[self.lobby_state]:
            raise IllegalTransition(f"lobby {self.lobby_state.value} -> {new_state.value}")
        logger.debug("Room %s lobby %s -> %s", self.code, self.lobby_state.value, new_state.value)
        self.lobby_state = new_state

    def set_phase(self, new_phase: RoundPhase):
        if new_phase not in PHASE_TRANSITIONS[self.phase]:
            raise IllegalTransition(f"phase {self.phase.value} -> {new_phase.value}")
        logger.debug("Room %s phase %s -> %s", self.code, self.phase.value, new_phase.value)
        self.phase = new_phase

    # --- Timers ---

    def cancel_round_timer(self):
        cancel_task(self.round_task)
        self.round_task = None
        self.time_remaining = 0

    def cancel_countdown(self):
        cancel_task(self.countdown_task)
        self.countdown_task = None
        self.countdown_value = 0

    def cancel_game_timers(self):
        self.cancel_round_timer()
        self.cancel_countdown()

    def cancel_all_timers(self):
        self.cancel_game_timers()
        for player in list(self.players.values()) + list(self.pending.values()):
            player.cancel_grace()

    # --- Membership ---

    def active_players(self) -> List[Player]:
        """Players currently connected, in join order."""
        return [p for p in self.players.values() if not p.disconnected]

    def find_by_conn(self, conn_id: str) -> Optional[Player]:
        for player in self.players.values():
            if player.conn_id == conn_id:
                return player
        return None

    def find_pending_by_conn(self, conn_id: str) -> Optional[Player]:
        for player in self.pending.values():
            if player.conn_id == conn_id:
                return player
        return None

    def find_by_name(self, name: str, include_pending: bool = True) -> Optional[Player]:
        lowered = name.lower()
        candidates = list(self.players.values())
        if include_pending:
            candidates += list(self.pending.values())
        for player in candidates:
            if player.name.lower() == lowered:
                return player
        return None

    def remove_player(self, player: Player):
        """Drop a player for good, keeping the judge rotation pointed at the same seat."""
        order = list(self.players)
        if player.id in order and order.index(player.id) <= self.judge_index:
            self.judge_index = max(-1, self.judge_index - 1)
        self.players.pop(player.id, None)
        self.pending.pop(player.id, None)
        player.cancel_grace()

    def promote_pending(self) -> List[Player]:
        promoted = list(self.pending.values())
        for player in promoted:
            self.players[player.id] = player
        self.pending.clear()
        return promoted

    # --- Round bookkeeping ---

    def judge(self) -> Optional[Player]:
        for player in self.players.values():
            if player.is_judge:
                return player
        return None

    def rotate_judge(self) -> Optional[Player]:
        """Hand the role to the next connected player after the current seat, wrapping."""
        for player in self.players.values():
            player.is_judge = False
        seats = list(self.players.values())
        for step in range(1, len(seats) + 1):
            seat = (self.judge_index + step) % len(seats)
            if not seats[seat].disconnected:
                self.judge_index = seat
                seats[seat].is_judge = True
                return seats[seat]
        return None

    def waiting_submitters(self) -> List[Player]:
        return [p for p in self.active_players() if not p.is_judge and not p.submitted]

    def expected_submissions(self) -> int:
        return len([p for p in self.active_players() if not p.is_judge])

    def all_submitted(self) -> bool:
        return bool(self.submissions) and not self.waiting_submitters()

    def add_submission(self, submission: Submission):
        self.submissions.append(submission)
        random.shuffle(self.submissions)

    def withdraw_submission(self, player_id: str) -> Optional[Submission]:
        for i, submission in enumerate(self.submissions):
            if submission.player_id == player_id:
                return self.submissions.pop(i)
        return None

    def submission_for(self, player_id: str) -> Optional[Submission]:
        for submission in self.submissions:
            if submission.player_id == player_id:
                return submission
        return None

    def reset_for_new_game(self) -> List[Player]:
        """Back to an idle lobby, keeping every player. Returns promoted pending players.

        Grace timers of disconnected players keep running.
        """
        self.cancel_game_timers()
        promoted = self.promote_pending()
        for player in self.players.values():
            player.reset_for_new_game()
        self.deck.reset()
        self.prompt_card = None
        self.submissions = []
        self.judge_index = -1
        self.round_number = 0
        self.winning_cards = []
        self.set_phase(RoundPhase.PRE_ROUND)
        if self.lobby_state is not LobbyState.IDLE:
            self.set_lobby_state(LobbyState.IDLE)
        self.touch()
        return promoted

    # --- Snapshots ---

    def waiting_for(self) -> str:
        active = self.active_players()
        if len(active) < config.MIN_PLAYERS:
            need = config.MIN_PLAYERS - len(active)
            return f"Need {need} more player{'s' if need > 1 else ''} (min {config.MIN_PLAYERS})"
        not_ready = [p.name for p in active if not p.ready]
        if not_ready:
            return "Waiting for: " + ", ".join(not_ready)
        if self.countdown_value > 0:
            return f"Starting in {self.countdown_value}s..."
        return "All ready!"

    def lobby_snapshot(self) -> dict:
        active = self.active_players()
        return {
            "type": "lobby",
            "roomCode": self.code,
            "players": [
                {
                    "id": p.id,
                    "name": p.name,
                    "ready": p.ready,
                    "disconnected": p.disconnected,
                    "reconnectTime": p.reconnect_seconds,
                }
                for p in self.players.values()
            ],
            "activeCount": len(active),
            "readyCount": len([p for p in active if p.ready]),
            "countdown": self.countdown_value,
            "waitingFor": self.waiting_for(),
            "started": self.started,
        }

    def game_snapshot(self, player: Player, pending: bool = False) -> dict:
        """Full game state as seen by one socket. Only `player`'s own hand is included."""
        judge = self.judge()
        state = {
            "type": "game-state",
            "promptCard": self.prompt_card,
            "judgeName": judge.name if judge else "...",
            "judgeId": judge.id if judge else None,
            "submissions": [{"playerId": s.player_id, "card": s.card} for s in self.submissions],
            "allSubmitted": self.all_submitted(),
            "counts": {
                "submitted": len(self.submissions),
                "expected": self.expected_submissions(),
            },
            "players": [
                {
                    "id": p.id,
                    "name": p.name,
                    "score": p.score,
                    "isJudge": p.is_judge,
                    "submitted": p.submitted,
                    "disconnected": p.disconnected,
                }
                for p in self.players.values()
            ],
            "roundNumber": self.round_number,
            "timeRemaining": self.time_remaining,
            "phase": self.phase.value,
            "winningCards": list(self.winning_cards),
        }
        if pending:
            state.update({
                "isJudge": False,
                "hand": [],
                "submitted": True,
                "isPending": True,
                "willJoinNextRound": True,
            })
        else:
            state.update({
                "isJudge": player.is_judge,
                "hand": [
                    {"card": card, "revealed": i in player.revealed, "index": i,
                     "wild": card == WILD_CARD}
                    for i, card in enumerate(player.hand)
                ],
                "submitted": player.submitted,
                "isPending": False,
            })
        return state

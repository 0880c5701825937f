"""Round cycle: deal -> submit -> judge -> score -> next round or game over."""

import asyncio
import logging
import random

import config
from deck import NO_ANSWER, WILD_CARD
from errors import CapacityError, RuleViolation
from room import LobbyState, Player, Room, RoundPhase, Submission
from text_filter import clean_custom_text

logger = logging.getLogger(__name__)


class RoundEngine:
    def __init__(self, server):
        self.server = server

    # --- Game start / reset ---

    async def start_game(self, room: Room):
        room.set_lobby_state(LobbyState.STARTED)
        room.deck.reset()
        room.prompt_card = None
        room.submissions = []
        room.judge_index = -1
        room.round_number = 0
        room.winning_cards = []
        for player in room.players.values():
            player.reset_for_new_game()
        logger.info("Room %s: game started with %d players",
                    room.code, len(room.active_players()))
        await self.server.broadcast(room, {"type": "game-start"})
        await self.start_round(room)

    async def reset_to_lobby(self, room: Room, reason: str):
        promoted = room.reset_for_new_game()
        logger.info("Room %s back to lobby: %s (%d pending promoted)",
                    room.code, reason, len(promoted))
        await self.server.broadcast(room, {"type": "game-ended", "reason": reason})
        await self.server.broadcast_lobby(room)

    async def rematch(self, room: Room, conn_id: str):
        if not room.started:
            raise RuleViolation("no game to restart")
        if not room.find_by_conn(conn_id) and not room.find_pending_by_conn(conn_id):
            raise RuleViolation("not a room member")
        room.reset_for_new_game()
        logger.info("Room %s: rematch requested", room.code)
        await self.server.broadcast(room, {"type": "game-reset"})
        await self.server.broadcast_lobby(room)

    @staticmethod
    def ensure_player_floor(room: Room):
        active = len(room.active_players())
        if active < config.MIN_PLAYERS:
            raise CapacityError(f"{active} active players, need {config.MIN_PLAYERS}")

    # --- Deal ---

    def deal_hand(self, room: Room, player: Player):
        """Top the hand up to HAND_SIZE - 1 unique cards plus exactly one wild slot in front."""
        hand = [card for card in player.hand if card != WILD_CARD]
        target = config.HAND_SIZE - 1
        while len(hand) > target:
            room.deck.discard_answer(hand.pop())
        while len(hand) < target:
            card = room.deck.draw_answer(excluding=hand)
            if card is None:
                logger.warning("Room %s: answer deck exhausted while dealing to %s",
                               room.code, player.name)
                break
            hand.append(card)
        player.hand = [WILD_CARD] + hand
        player.revealed = set()

    async def start_round(self, room: Room):
        room.cancel_round_timer()
        room.set_phase(RoundPhase.PRE_ROUND)

        for player in room.promote_pending():
            player.reset_for_new_game()
            logger.info("Room %s: %s joins the game", room.code, player.name)
            await self.server.broadcast(room, {"type": "player-joined-game", "name": player.name})

        room.deck.discard_prompt(room.prompt_card)
        room.prompt_card = None
        room.submissions = []

        try:
            self.ensure_player_floor(room)
        except CapacityError as exc:
            logger.info("Room %s: %s", room.code, exc)
            await self.reset_to_lobby(room, "Not enough players")
            return

        judge = room.rotate_judge()
        for player in room.players.values():
            player.submitted = False
            player.revealed = set()
        for player in room.active_players():
            self.deal_hand(room, player)

        room.prompt_card = room.deck.draw_prompt()
        room.round_number += 1
        room.set_phase(RoundPhase.SUBMIT)
        self._start_phase_timer(room, config.SUBMIT_SECONDS)
        logger.info("Room %s: round %d, judge %s", room.code, room.round_number, judge.name)
        await self.server.broadcast_game_state(room)

    # --- Submit phase ---

    def _play_card(self, room: Room, player: Player, index: int, text: str, auto: bool = False):
        card = player.remove_card(index)
        replacement = room.deck.draw_answer(excluding=player.hand)
        if replacement:
            player.hand.append(replacement)
        room.deck.discard_answer(card)
        player.submitted = True
        room.add_submission(Submission(player_id=player.id, name=player.name, card=text, auto=auto))

    async def submit(self, room: Room, conn_id: str, card: str, custom_text: str = ""):
        if not room.started or room.phase is not RoundPhase.SUBMIT:
            raise RuleViolation("not accepting submissions")
        player = room.find_by_conn(conn_id)
        if not player:
            raise RuleViolation("not an active player")
        if player.is_judge:
            raise RuleViolation("judge cannot submit")
        if player.submitted:
            raise RuleViolation("already submitted")
        if card not in player.hand:
            raise RuleViolation("card not in hand")

        text = card
        if card == WILD_CARD:
            text = clean_custom_text(custom_text)
            if not text:
                raise RuleViolation("wild card needs text")

        self._play_card(room, player, player.hand.index(card), text)
        if not await self.check_all_submitted(room):
            await self.server.broadcast_game_state(room)

    async def check_all_submitted(self, room: Room) -> bool:
        """Move to judging early once every connected non-judge has played."""
        if room.phase is RoundPhase.SUBMIT and room.all_submitted():
            await self.advance_to_judge(room)
            return True
        return False

    async def on_submit_timeout(self, room: Room):
        for player in room.waiting_submitters():
            if not player.hand:
                continue
            index = next((i for i, c in enumerate(player.hand) if c != WILD_CARD), None)
            if index is None:
                player.submitted = True
                room.add_submission(Submission(player_id=player.id, name=player.name,
                                               card=NO_ANSWER, auto=True))
            else:
                self._play_card(room, player, index, player.hand[index], auto=True)
            logger.info("Room %s: auto-submitted for %s", room.code, player.name)
        await self.advance_to_judge(room)

    async def advance_to_judge(self, room: Room):
        room.cancel_round_timer()
        room.set_phase(RoundPhase.JUDGE)
        if not room.submissions:
            logger.info("Room %s: nothing submitted in round %d, dealing again",
                        room.code, room.round_number)
            await self.start_round(room)
            return
        self._start_phase_timer(room, config.JUDGE_SECONDS)
        await self.server.broadcast_game_state(room)

    # --- Judge phase ---

    async def pick(self, room: Room, conn_id: str, player_id: str):
        if not room.started or room.phase is not RoundPhase.JUDGE:
            raise RuleViolation("not judging")
        judge = room.find_by_conn(conn_id)
        if not judge or not judge.is_judge:
            raise RuleViolation("only the judge can pick")
        await self._award(room, player_id)

    async def on_judge_timeout(self, room: Room):
        if not room.submissions:
            await self.start_round(room)
            return
        submission = random.choice(room.submissions)
        logger.info("Room %s: judge timed out, picking at random", room.code)
        await self._award(room, submission.player_id)

    async def _award(self, room: Room, player_id: str):
        submission = room.submission_for(player_id)
        winner = room.players.get(player_id)
        if not submission or not winner:
            raise RuleViolation("no such submission")

        room.cancel_round_timer()
        room.set_phase(RoundPhase.SCORED)
        winner.score += 1
        room.winning_cards.append({
            "round": room.round_number,
            "prompt": room.prompt_card,
            "card": submission.card,
            "winner": winner.name,
        })
        logger.info("Room %s: %s wins round %d (%d points)",
                    room.code, winner.name, room.round_number, winner.score)
        await self.server.broadcast(room, {
            "type": "round-winner",
            "name": winner.name,
            "score": winner.score,
            "playerId": winner.id,
            "card": submission.card,
        })

        if winner.score >= config.WIN_POINTS:
            room.set_phase(RoundPhase.ENDED)
            logger.info("Room %s: %s wins the game", room.code, winner.name)
            await self.server.broadcast(room, {"type": "game-winner",
                                               "name": winner.name, "score": winner.score})
        else:
            room.round_task = asyncio.create_task(self._next_round_after_delay(room))
        await self.server.broadcast_game_state(room)

    # --- Membership changes ---

    async def handle_player_removed(self, room: Room, player: Player):
        """Repair round invariants after `player` left the room for good."""
        try:
            self.ensure_player_floor(room)
        except CapacityError as exc:
            logger.info("Room %s: %s", room.code, exc)
            await self.reset_to_lobby(room, "Not enough players")
            return

        in_round = room.phase in (RoundPhase.SUBMIT, RoundPhase.JUDGE)
        if in_round and player.is_judge:
            logger.info("Room %s: judge %s left, dealing a new round", room.code, player.name)
            await self.start_round(room)
            return

        room.withdraw_submission(player.id)
        if room.phase is RoundPhase.JUDGE and not room.submissions:
            await self.start_round(room)
            return
        if not await self.check_all_submitted(room):
            await self.server.broadcast_game_state(room)

    async def reveal_card(self, room: Room, conn_id: str, index: int):
        if not room.started:
            raise RuleViolation("game not started")
        player = room.find_by_conn(conn_id)
        if not player or player.is_judge:
            raise RuleViolation("cannot reveal")
        if not 0 <= index < len(player.hand) or index in player.revealed:
            raise RuleViolation("bad card index")
        player.revealed.add(index)
        await self.server.send(conn_id, room.game_snapshot(player))

    # --- Timers ---

    def _start_phase_timer(self, room: Room, seconds: int):
        room.cancel_round_timer()
        room.time_remaining = seconds
        room.round_task = asyncio.create_task(self._phase_timer(room, room.phase))

    async def _phase_timer(self, room: Room, phase: RoundPhase):
        try:
            while True:
                await asyncio.sleep(config.TICK_SECONDS)
                async with room.lock:
                    if room.round_task is not asyncio.current_task() or room.phase is not phase:
                        return
                    room.time_remaining -= 1
                    await self.server.broadcast(room, {"type": "round-timer",
                                                       "secondsRemaining": room.time_remaining,
                                                       "phase": phase.value})
                    if room.time_remaining <= 0:
                        room.round_task = None
                        if phase is RoundPhase.SUBMIT:
                            await self.on_submit_timeout(room)
                        else:
                            await self.on_judge_timeout(room)
                        return
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Round timer failed in room %s", room.code)

    async def _next_round_after_delay(self, room: Room):
        try:
            await asyncio.sleep(config.ROUND_RESULT_DELAY)
            async with room.lock:
                if room.round_task is not asyncio.current_task() or room.phase is not RoundPhase.SCORED:
                    return
                room.round_task = None
                await self.start_round(room)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Failed to start next round in room %s", room.code)

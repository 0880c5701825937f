"""
Unit tests for Blank Slate game state.
Tests: Room, Player, state-machine tables, snapshots, text filter, payload models, sessions.
"""
import sys
import os
import time

import pytest
from pydantic import ValidationError as PayloadError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from deck import CardPool, DeckManager, WILD_CARD
from errors import IllegalTransition
from room import Room, Player, Submission, LobbyState, RoundPhase
from game_server import GameServer
from messages import JoinRoomRequest, SubmitRequest, PickRequest, first_error_message
from sessions import SessionRegistry
from text_filter import clean_name, clean_custom_text, mask_profanity, contains_banned_word
import config


# --- Factory helpers ---

def make_pool():
    return CardPool(
        answers=tuple(f"Answer {i}" for i in range(40)),
        prompts=tuple(f"Prompt {i} ___" for i in range(5)),
    )


def make_room(code="TEST01"):
    return Room(code, DeckManager(make_pool()))


def make_room_with_players(names=("Alice", "Bob", "Charlie")):
    room = make_room()
    for i, name in enumerate(names):
        player = Player(id=f"p{i + 1}", name=name, conn_id=f"c{i + 1}")
        room.players[player.id] = player
    return room


# =====================================================================
# Room initialization
# =====================================================================

class TestRoomInit:
    def test_default_lobby_state_is_idle(self):
        room = make_room()
        assert room.lobby_state is LobbyState.IDLE
        assert room.started is False

    def test_default_phase_is_pre_round(self):
        assert make_room().phase is RoundPhase.PRE_ROUND

    def test_initial_counters(self):
        room = make_room()
        assert room.round_number == 0
        assert room.judge_index == -1
        assert room.submissions == []
        assert room.countdown_value == 0

    def test_empty_room(self):
        assert make_room().is_empty()


# =====================================================================
# Room expiry
# =====================================================================

class TestRoomExpiry:
    def test_fresh_room_not_expired(self):
        assert not make_room().is_expired()

    def test_expired_after_ttl(self):
        room = make_room()
        room.last_activity = time.time() - config.ROOM_TTL_SECONDS - 10
        assert room.is_expired()

    def test_touch_resets_expiry(self):
        room = make_room()
        room.last_activity = time.time() - config.ROOM_TTL_SECONDS - 10
        room.touch()
        assert not room.is_expired()


# =====================================================================
# State machines
# =====================================================================

class TestTransitions:
    def test_lobby_idle_to_counting_down(self):
        room = make_room()
        room.set_lobby_state(LobbyState.COUNTING_DOWN)
        assert room.lobby_state is LobbyState.COUNTING_DOWN

    def test_lobby_cannot_skip_countdown(self):
        room = make_room()
        with pytest.raises(IllegalTransition):
            room.set_lobby_state(LobbyState.STARTED)

    def test_started_property_follows_lobby_state(self):
        room = make_room()
        room.set_lobby_state(LobbyState.COUNTING_DOWN)
        room.set_lobby_state(LobbyState.STARTED)
        assert room.started is True

    def test_phase_cannot_jump_to_judge(self):
        room = make_room()
        with pytest.raises(IllegalTransition):
            room.set_phase(RoundPhase.JUDGE)

    def test_full_round_cycle(self):
        room = make_room()
        for phase in (RoundPhase.SUBMIT, RoundPhase.JUDGE, RoundPhase.SCORED,
                      RoundPhase.PRE_ROUND, RoundPhase.SUBMIT):
            room.set_phase(phase)
        assert room.phase is RoundPhase.SUBMIT

    def test_ended_only_after_scoring(self):
        room = make_room()
        room.set_phase(RoundPhase.SUBMIT)
        with pytest.raises(IllegalTransition):
            room.set_phase(RoundPhase.ENDED)


# =====================================================================
# Membership & judge rotation
# =====================================================================

class TestMembership:
    def test_active_players_skip_disconnected(self):
        room = make_room_with_players()
        room.players["p2"].disconnected = True
        assert [p.name for p in room.active_players()] == ["Alice", "Charlie"]

    def test_find_by_name_case_insensitive(self):
        room = make_room_with_players()
        assert room.find_by_name("aLiCe").id == "p1"

    def test_find_by_name_includes_pending(self):
        room = make_room_with_players()
        room.pending["p9"] = Player(id="p9", name="Dave", conn_id="c9")
        assert room.find_by_name("dave").id == "p9"
        assert room.find_by_name("dave", include_pending=False) is None

    def test_find_by_conn(self):
        room = make_room_with_players()
        assert room.find_by_conn("c2").name == "Bob"
        assert room.find_by_conn("nope") is None

    def test_rotation_wraps(self):
        room = make_room_with_players()
        judges = [room.rotate_judge().name for _ in range(4)]
        assert judges == ["Alice", "Bob", "Charlie", "Alice"]

    def test_exactly_one_judge(self):
        room = make_room_with_players()
        room.rotate_judge()
        room.rotate_judge()
        assert [p.name for p in room.players.values() if p.is_judge] == ["Bob"]

    def test_rotation_skips_disconnected(self):
        room = make_room_with_players()
        room.players["p2"].disconnected = True
        room.rotate_judge()
        assert room.rotate_judge().name == "Charlie"

    def test_remove_judge_hands_role_to_follower(self):
        room = make_room_with_players(("Alice", "Bob", "Charlie", "Dave"))
        room.rotate_judge()
        bob = room.rotate_judge()
        room.remove_player(bob)
        assert room.rotate_judge().name == "Charlie"

    def test_remove_player_before_judge_keeps_seat(self):
        room = make_room_with_players(("Alice", "Bob", "Charlie", "Dave"))
        room.rotate_judge()
        room.rotate_judge()  # Bob
        room.remove_player(room.players["p1"])
        assert room.rotate_judge().name == "Charlie"

    def test_removing_disconnected_player_does_not_repeat_judge(self):
        room = make_room_with_players(("Alice", "Bob", "Charlie", "Dave", "Eve"))
        bob = room.players["p2"]
        bob.disconnected = True
        judges = [room.rotate_judge().name for _ in range(3)]
        assert judges == ["Alice", "Charlie", "Dave"]
        room.remove_player(bob)
        assert room.rotate_judge().name == "Eve"

    def test_removing_disconnected_judge_hands_role_to_follower(self):
        room = make_room_with_players(("Alice", "Bob", "Charlie", "Dave"))
        room.rotate_judge()
        bob = room.rotate_judge()
        bob.disconnected = True
        room.remove_player(bob)
        assert room.rotate_judge().name == "Charlie"

    def test_promote_pending(self):
        room = make_room_with_players()
        room.pending["p9"] = Player(id="p9", name="Dave", conn_id="c9")
        promoted = room.promote_pending()
        assert [p.name for p in promoted] == ["Dave"]
        assert list(room.players)[-1] == "p9"
        assert room.pending == {}


# =====================================================================
# Submissions
# =====================================================================

class TestSubmissions:
    def test_all_submitted_requires_every_connected_non_judge(self):
        room = make_room_with_players()
        room.rotate_judge()
        room.players["p2"].submitted = True
        room.add_submission(Submission("p2", "Bob", "Answer 1"))
        assert not room.all_submitted()
        room.players["p3"].submitted = True
        room.add_submission(Submission("p3", "Charlie", "Answer 2"))
        assert room.all_submitted()

    def test_disconnected_player_not_awaited(self):
        room = make_room_with_players()
        room.rotate_judge()
        room.players["p3"].disconnected = True
        room.players["p2"].submitted = True
        room.add_submission(Submission("p2", "Bob", "Answer 1"))
        assert room.all_submitted()
        assert room.expected_submissions() == 1

    def test_no_submissions_never_all_submitted(self):
        room = make_room_with_players()
        room.rotate_judge()
        for p in room.players.values():
            p.disconnected = not p.is_judge
        assert not room.all_submitted()

    def test_withdraw_submission(self):
        room = make_room_with_players()
        room.add_submission(Submission("p2", "Bob", "Answer 1"))
        assert room.withdraw_submission("p2").card == "Answer 1"
        assert room.submissions == []
        assert room.withdraw_submission("p2") is None


# =====================================================================
# Player hand bookkeeping
# =====================================================================

class TestPlayerHand:
    def test_remove_card_shifts_revealed(self):
        player = Player(id="p1", name="Alice", conn_id="c1",
                        hand=[WILD_CARD, "A", "B", "C"], revealed={0, 1, 3})
        assert player.remove_card(1) == "A"
        assert player.hand == [WILD_CARD, "B", "C"]
        assert player.revealed == {0, 2}

    def test_reset_for_new_game(self):
        player = Player(id="p1", name="Alice", conn_id="c1", ready=True,
                        hand=["A"], score=4, submitted=True, is_judge=True)
        player.reset_for_new_game()
        assert (player.ready, player.hand, player.score, player.submitted, player.is_judge) == \
            (False, [], 0, False, False)


# =====================================================================
# Reset for new game
# =====================================================================

class TestResetForNewGame:
    def _started_room(self):
        room = make_room_with_players()
        room.set_lobby_state(LobbyState.COUNTING_DOWN)
        room.set_lobby_state(LobbyState.STARTED)
        room.set_phase(RoundPhase.SUBMIT)
        room.round_number = 4
        room.players["p1"].score = 3
        room.players["p1"].ready = True
        room.winning_cards = [{"round": 1}]
        return room

    def test_back_to_idle(self):
        room = self._started_room()
        room.reset_for_new_game()
        assert room.lobby_state is LobbyState.IDLE
        assert room.phase is RoundPhase.PRE_ROUND

    def test_scores_and_ready_cleared(self):
        room = self._started_room()
        room.reset_for_new_game()
        for p in room.players.values():
            assert p.score == 0
            assert p.ready is False

    def test_round_state_cleared(self):
        room = self._started_room()
        room.reset_for_new_game()
        assert room.round_number == 0
        assert room.winning_cards == []
        assert room.prompt_card is None

    def test_pending_promoted(self):
        room = self._started_room()
        room.pending["p9"] = Player(id="p9", name="Dave", conn_id="c9")
        promoted = room.reset_for_new_game()
        assert [p.id for p in promoted] == ["p9"]
        assert "p9" in room.players

    def test_grace_timer_survives_reset(self):
        room = self._started_room()
        grace = object()
        room.players["p2"].disconnected = True
        room.players["p2"].grace_task = grace
        room.reset_for_new_game()
        assert room.players["p2"].grace_task is grace
        assert room.players["p2"].disconnected is True


# =====================================================================
# Snapshots
# =====================================================================

class TestLobbySnapshot:
    def test_need_more_players(self):
        room = make_room_with_players(("Alice", "Bob"))
        assert room.lobby_snapshot()["waitingFor"] == "Need 1 more player (min 3)"

    def test_need_plural(self):
        room = make_room_with_players(("Alice",))
        assert room.waiting_for() == "Need 2 more players (min 3)"

    def test_waiting_for_not_ready(self):
        room = make_room_with_players()
        room.players["p1"].ready = True
        assert room.waiting_for() == "Waiting for: Bob, Charlie"

    def test_all_ready(self):
        room = make_room_with_players()
        for p in room.players.values():
            p.ready = True
        assert room.waiting_for() == "All ready!"
        room.countdown_value = 7
        assert room.waiting_for() == "Starting in 7s..."

    def test_snapshot_fields(self):
        room = make_room_with_players()
        room.players["p2"].disconnected = True
        room.players["p2"].reconnect_seconds = 42
        snap = room.lobby_snapshot()
        assert snap["type"] == "lobby"
        assert snap["roomCode"] == "TEST01"
        assert snap["activeCount"] == 2
        assert snap["started"] is False
        bob = next(p for p in snap["players"] if p["name"] == "Bob")
        assert bob["disconnected"] is True
        assert bob["reconnectTime"] == 42


class TestGameSnapshot:
    def test_only_own_hand(self):
        room = make_room_with_players()
        room.players["p1"].hand = [WILD_CARD, "Answer 1"]
        room.players["p2"].hand = [WILD_CARD, "Answer 2"]
        snap = room.game_snapshot(room.players["p1"])
        assert [c["card"] for c in snap["hand"]] == [WILD_CARD, "Answer 1"]
        assert "Answer 2" not in str(snap)

    def test_wild_slot_flagged(self):
        room = make_room_with_players()
        room.players["p1"].hand = [WILD_CARD, "Answer 1"]
        hand = room.game_snapshot(room.players["p1"])["hand"]
        assert hand[0]["wild"] is True
        assert hand[1]["wild"] is False

    def test_pending_view(self):
        room = make_room_with_players()
        dave = Player(id="p9", name="Dave", conn_id="c9")
        snap = room.game_snapshot(dave, pending=True)
        assert snap["isPending"] is True
        assert snap["willJoinNextRound"] is True
        assert snap["hand"] == []

    def test_counts(self):
        room = make_room_with_players()
        room.rotate_judge()
        room.add_submission(Submission("p2", "Bob", "Answer 1"))
        snap = room.game_snapshot(room.players["p1"])
        assert snap["counts"] == {"submitted": 1, "expected": 2}
        assert snap["judgeName"] == "Alice"
        assert snap["isJudge"] is True


# =====================================================================
# Text filter
# =====================================================================

class TestTextFilter:
    def test_html_stripped(self):
        assert clean_name("<b>Alice</b>") == "Alice"

    def test_name_truncated(self):
        assert len(clean_name("x" * 40)) == config.MAX_NAME_LENGTH

    def test_whitespace_collapsed(self):
        assert clean_name("  Big   Bob ") == "Big Bob"

    def test_profanity_masked_same_length(self):
        assert mask_profanity("what the shit") == "what the ****"

    def test_mask_case_insensitive(self):
        assert mask_profanity("Shit happens") == "**** happens"

    def test_allowed_words_untouched(self):
        assert mask_profanity("hell damn god") == "hell damn god"
        assert not contains_banned_word("hell")

    def test_custom_text_capped(self):
        assert len(clean_custom_text("a" * 500)) == config.MAX_CUSTOM_TEXT_LENGTH

    def test_control_chars_removed(self):
        assert clean_custom_text("hi\x00there") == "hithere"

    def test_banned_word_detection(self):
        assert contains_banned_word("total BULLSHIT")
        assert not contains_banned_word("shiitake mushrooms")

    def test_name_with_profanity_masked(self):
        assert clean_name("Shit Lord") == "**** Lord"


# =====================================================================
# Payload models
# =====================================================================

class TestJoinRoomRequest:
    def test_valid(self):
        req = JoinRoomRequest.model_validate({"code": " ab12cd ", "name": "Alice",
                                              "sessionToken": "tok"})
        assert req.code == "AB12CD"
        assert req.name == "Alice"
        assert req.session_token == "tok"

    def test_missing_name(self):
        with pytest.raises(PayloadError) as exc:
            JoinRoomRequest.model_validate({"code": "ABC"})
        assert first_error_message(exc.value) == "Name required"

    def test_missing_code(self):
        with pytest.raises(PayloadError) as exc:
            JoinRoomRequest.model_validate({"name": "Alice"})
        assert first_error_message(exc.value) == "Code required"

    def test_tag_only_name_rejected(self):
        with pytest.raises(PayloadError):
            JoinRoomRequest.model_validate({"code": "ABC", "name": "<i></i>"})

    def test_null_session_token(self):
        req = JoinRoomRequest.model_validate({"code": "ABC", "name": "Al", "sessionToken": None})
        assert req.session_token == ""


class TestActionRequests:
    def test_submit_custom_text_alias(self):
        req = SubmitRequest.model_validate({"card": WILD_CARD, "customText": "hello"})
        assert req.custom_text == "hello"

    def test_submit_requires_card(self):
        with pytest.raises(PayloadError):
            SubmitRequest.model_validate({})

    def test_pick_alias(self):
        assert PickRequest.model_validate({"playerId": "p2"}).player_id == "p2"


# =====================================================================
# Sessions & room codes
# =====================================================================

class TestSessionRegistry:
    def test_bind_and_get(self):
        reg = SessionRegistry()
        reg.bind("t1", "Alice", "ROOM", "p1", "c1")
        assert reg.get("t1").player_id == "p1"
        assert reg.get("") is None

    def test_drop_player(self):
        reg = SessionRegistry()
        reg.bind("t1", "Alice", "ROOM", "p1", "c1")
        reg.bind("t2", "Bob", "ROOM", "p2", "c2")
        reg.drop_player("ROOM", "p1")
        assert "t1" not in reg
        assert "t2" in reg

    def test_drop_room(self):
        reg = SessionRegistry()
        reg.bind("t1", "Alice", "ROOM", "p1", "c1")
        reg.bind("t2", "Bob", "OTHER", "p2", "c2")
        reg.drop_room("ROOM")
        assert len(reg) == 1

    def test_new_tokens_unique(self):
        assert SessionRegistry.new_token() != SessionRegistry.new_token()


class TestRoomCodes:
    def test_code_format(self):
        server = GameServer(make_pool())
        code = server.generate_room_code()
        assert len(code) == config.ROOM_CODE_LENGTH
        assert all(c in config.ROOM_CODE_CHARS for c in code)
        assert "0" not in code and "O" not in code

    def test_create_room_registers(self):
        server = GameServer(make_pool())
        room = server.create_room()
        assert server.rooms[room.code] is room

    def test_collision_exhaustion_raises(self, monkeypatch):
        server = GameServer(make_pool())
        server.rooms["AAAAAA"] = make_room("AAAAAA")
        monkeypatch.setattr("game_server.random.choices", lambda chars, k: list("AAAAAA"))
        with pytest.raises(RuntimeError):
            server.generate_room_code()

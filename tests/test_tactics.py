"""Tests for the tactics model, the assignment editor and the read-only board."""

import threading

import pytest

from conftest import FakeIdentityGateway, sample_accounts, utc
from errors import ConflictError, NotFoundError, ValidationError
from identity import SessionManager
from schemas import PitchBox, PitchPosition, Pointer, StartingSlot, Tactics
from tactics import (
    EMPTY_BOARD_MESSAGE,
    DraftRegistry,
    TacticsEditor,
    clamp,
    legacy_position,
    list_tactics,
    load_board,
    normalize_tactics,
    pitch_position,
)

PITCH = PitchBox(left=100, top=50, width=300, height=400)


def assert_disjoint(editor):
    starters = editor.starting_ids()
    assert len(starters) == len(set(starters))
    assert len(editor.tactics.substitutes) == len(set(editor.tactics.substitutes))
    assert not set(starters) & set(editor.tactics.substitutes)


class TestGeometry:
    """Pointer to percentage conversion."""

    def test_centre_of_pitch(self):
        position = pitch_position(Pointer(x=250, y=250), PITCH)
        assert position == PitchPosition(top=50, left=50)

    def test_pointer_left_of_pitch_clamps_to_zero(self):
        """Test that a drop 20px left of the pitch lands on the left edge."""
        position = pitch_position(Pointer(x=80, y=250), PITCH)
        assert position.left == 0

    def test_pointer_below_pitch_clamps_to_hundred(self):
        position = pitch_position(Pointer(x=250, y=900), PITCH)
        assert position.top == 100

    def test_clamp(self):
        assert clamp(-5) == 0
        assert clamp(105) == 100
        assert clamp(42.5) == 42.5

    def test_legacy_positions_stay_on_pitch(self):
        assert legacy_position(0) == PitchPosition(top=25, left=50)
        assert legacy_position(5) == PitchPosition(top=50, left=50)
        assert legacy_position(30).top == 100


class TestNormalize:
    """Stored documents of every vintage load into the current model."""

    def test_bare_id_starting_xi(self):
        """Test that legacy bare-id entries get synthesised positions."""
        tactics = normalize_tactics({"id": "t1", "matchId": "m2", "startingXI": ["p1", "p2"]})

        assert [s.player_id for s in tactics.starting_xi] == ["p1", "p2"]
        assert tactics.starting_xi[0].position == legacy_position(0)
        assert tactics.starting_xi[1].position == legacy_position(1)
        assert tactics.substitutes == []
        assert tactics.formation == "4-4-2"

    def test_missing_lists_default_empty(self):
        tactics = normalize_tactics({"matchId": "m2"})
        assert tactics.starting_xi == []
        assert tactics.substitutes == []
        assert tactics.general_notes == ""

    def test_out_of_range_position_is_clamped(self):
        tactics = normalize_tactics({
            "matchId": "m2",
            "startingXI": [{"playerId": "p1", "position": {"top": 140, "left": -3}}],
        })
        assert tactics.starting_xi[0].position == PitchPosition(top=100, left=0)

    def test_player_in_both_lists_stays_on_pitch(self):
        tactics = normalize_tactics({
            "matchId": "m2",
            "startingXI": [{"playerId": "p1", "position": {"top": 10, "left": 10}}, "p1"],
            "substitutes": ["p1", "p2", "p2"],
        })
        assert [s.player_id for s in tactics.starting_xi] == ["p1"]
        assert tactics.substitutes == ["p2"]

    def test_stored_shape_uses_starting_xi_key(self):
        tactics = Tactics(match_id="m2", starting_xi=[
            StartingSlot(player_id="p1", position=PitchPosition(top=10, left=20)),
        ])
        data = tactics.to_store()

        assert data["matchId"] == "m2"
        assert data["startingXI"] == [{"playerId": "p1", "position": {"top": 10, "left": 20}}]
        assert "id" not in data


class TestTacticsEditor:
    """Moving players between roster, pitch and bench."""

    def test_place_then_return_restores_roster(self, store):
        """Test that a placed player is back in the pool after returning to roster."""
        players = store.query("players")
        editor = TacticsEditor()
        before = [p["id"] for p in editor.available_roster(players)]

        editor.place_on_pitch("p3", Pointer(x=250, y=250), PITCH)
        assert "p3" not in [p["id"] for p in editor.available_roster(players)]

        editor.return_to_roster("p3")
        assert [p["id"] for p in editor.available_roster(players)] == before
        assert editor.starting_ids() == []

    def test_roster_sorted_by_number(self, store):
        editor = TacticsEditor()
        numbers = [p["number"] for p in editor.available_roster(store.query("players"))]
        assert numbers == sorted(numbers)

    def test_substitute_moved_to_pitch(self):
        editor = TacticsEditor()
        editor.move_to_substitutes("p1")
        editor.place_at("p1", PitchPosition(top=20, left=30))

        assert editor.starting_ids() == ["p1"]
        assert editor.tactics.substitutes == []

    def test_starter_moved_to_bench(self):
        editor = TacticsEditor()
        editor.place_at("p1", PitchPosition(top=20, left=30))
        editor.move_to_substitutes("p1")

        assert editor.starting_ids() == []
        assert editor.tactics.substitutes == ["p1"]

    def test_replacing_position_keeps_single_slot(self):
        editor = TacticsEditor()
        editor.place_at("p1", PitchPosition(top=20, left=30))
        editor.place_at("p1", PitchPosition(top=60, left=70))

        assert len(editor.tactics.starting_xi) == 1
        assert editor.tactics.starting_xi[0].position == PitchPosition(top=60, left=70)

    def test_lists_stay_disjoint_across_sequences(self):
        """Test that no sequence of moves puts a player in two places."""
        editor = TacticsEditor()
        moves = [
            ("pitch", "p1"), ("bench", "p2"), ("bench", "p1"), ("pitch", "p2"),
            ("bench", "p2"), ("bench", "p2"), ("pitch", "p3"), ("roster", "p3"),
            ("pitch", "p1"), ("unbench", "p2"), ("bench", "p3"), ("pitch", "p3"),
        ]
        for kind, player_id in moves:
            if kind == "pitch":
                editor.place_at(player_id, PitchPosition(top=50, left=50))
            elif kind == "bench":
                editor.move_to_substitutes(player_id)
            elif kind == "unbench":
                editor.remove_substitute(player_id)
            else:
                editor.return_to_roster(player_id)
            assert_disjoint(editor)

        assert editor.starting_ids() == ["p1", "p3"]
        assert editor.tactics.substitutes == []

    def test_add_substitute_control(self):
        editor = TacticsEditor()
        editor.add_selected_substitute()
        assert editor.tactics.substitutes == []

        editor.select_substitute("p4")
        editor.add_selected_substitute()
        assert editor.tactics.substitutes == ["p4"]
        assert editor.substitute_to_add == ""

    def test_open_unknown_tactics(self, store):
        with pytest.raises(NotFoundError):
            TacticsEditor.open(store, "missing")

    def test_open_legacy_document(self, store):
        store.add("tactics", {"id": "t-old", "matchId": "m2", "startingXI": ["p1"], "substitutes": ["p1", "p2"]})
        editor = TacticsEditor.open(store, "t-old")

        assert editor.starting_ids() == ["p1"]
        assert editor.tactics.substitutes == ["p2"]

    def test_state_lists_remaining_roster(self, store):
        editor = TacticsEditor()
        editor.place_at("p1", PitchPosition(top=50, left=50))
        editor.move_to_substitutes("p2")
        state = editor.state(store.query("players"))

        assert [p["id"] for p in state["roster"]] == ["p4", "p3"]
        assert state["startingXI"][0]["playerId"] == "p1"
        assert state["substituteToAdd"] == ""


class TestSave:
    """Persisting a draft."""

    def test_requires_match(self, store):
        with pytest.raises(ValidationError):
            TacticsEditor().save(store)

    def test_requires_formation(self, store):
        editor = TacticsEditor()
        editor.update_details(match_id="m2", formation="  ")
        with pytest.raises(ValidationError):
            editor.save(store)

    def test_create_then_update(self, store):
        editor = TacticsEditor()
        editor.update_details(match_id="m2", formation="4-3-3", general_notes="Press high")
        editor.place_at("p1", PitchPosition(top=30, left=40))
        tactics_id = editor.save(store)

        editor.move_to_substitutes("p1")
        assert editor.save(store) == tactics_id

        saved = store.get("tactics", tactics_id)
        assert saved["formation"] == "4-3-3"
        assert saved["generalNotes"] == "Press high"
        assert saved["startingXI"] == []
        assert saved["substitutes"] == ["p1"]
        assert len(store.query("tactics")) == 1

    def test_second_document_for_match_conflicts(self, store):
        """Test that a match can only have one tactics document."""
        first = TacticsEditor()
        first.update_details(match_id="m2")
        first.save(store)

        second = TacticsEditor()
        second.update_details(match_id="m2")
        with pytest.raises(ConflictError):
            second.save(store)
        assert len(store.query("tactics")) == 1


class TestDraftRegistry:
    """Drafts belong to the session that opened them."""

    @pytest.fixture
    def sessions(self, store):
        return SessionManager(FakeIdentityGateway(sample_accounts()), store)

    def test_other_session_cannot_read_draft(self, sessions):
        drafts = DraftRegistry(sessions)
        coach = sessions.sign_in("coach@ffc.test", "secret")
        other = sessions.sign_in("admin@ffc.test", "secret")
        draft_id = drafts.open(coach, TacticsEditor())

        assert isinstance(drafts.get(coach, draft_id), TacticsEditor)
        with pytest.raises(NotFoundError):
            drafts.get(other, draft_id)

    def test_sign_out_drops_drafts(self, sessions):
        drafts = DraftRegistry(sessions)
        coach = sessions.sign_in("coach@ffc.test", "secret")
        draft_id = drafts.open(coach, TacticsEditor())
        sessions.sign_out(coach.token)

        with pytest.raises(NotFoundError):
            drafts.get(coach, draft_id)

    def test_close(self, sessions):
        drafts = DraftRegistry(sessions)
        coach = sessions.sign_in("coach@ffc.test", "secret")
        draft_id = drafts.open(coach, TacticsEditor())
        drafts.close(coach, draft_id)

        with pytest.raises(NotFoundError):
            drafts.close(coach, draft_id)


class TestBoard:
    """Read-only projection for the next match."""

    def test_no_upcoming_match(self, empty_store):
        assert load_board(empty_store) == {"status": "empty", "message": EMPTY_BOARD_MESSAGE}

    def test_no_tactics_for_next_match(self, store):
        board = load_board(store)
        assert board["status"] == "empty"
        assert board["message"] == EMPTY_BOARD_MESSAGE

    def test_tactics_for_later_match_are_not_shown(self, store):
        store.add("tactics", {"matchId": "m3", "formation": "4-4-2", "startingXI": [], "substitutes": []})
        assert load_board(store)["status"] == "empty"

    def test_projection(self, store):
        """Test that starters and bench are listed by shirt number."""
        store.add("tactics", {
            "matchId": "m2",
            "formation": "3-5-2",
            "generalNotes": "Stay compact",
            "startingXI": [
                {"playerId": "p1", "position": {"top": 20, "left": 50}},
                {"playerId": "p2", "position": {"top": 60, "left": 30}},
                {"playerId": "gone", "position": {"top": 60, "left": 60}},
            ],
            "substitutes": ["p3", "p4"],
        })
        board = load_board(store)

        assert board["status"] == "ready"
        assert board["match"]["opponent"] == "United"
        assert board["formation"] == "3-5-2"
        assert board["generalNotes"] == "Stay compact"
        assert [p["number"] for p in board["startingXI"]] == [4, 9]
        assert [p["number"] for p in board["substitutes"]] == [1, 7]
        assert board["pitch"][0] == {
            "player": {"id": "p1", "name": "Alice Archer", "number": 9, "position": "Forward", "imageUrl": ""},
            "position": {"top": 20, "left": 50},
        }
        assert len(board["pitch"]) == 2

    def test_legacy_document_renders(self, store):
        store.add("tactics", {"matchId": "m2", "startingXI": ["p1", "p2"]})
        board = load_board(store)

        assert board["status"] == "ready"
        assert board["formation"] == "4-4-2"
        assert [m["position"] for m in board["pitch"]] == [
            legacy_position(0).model_dump(), legacy_position(1).model_dump(),
        ]


class TestListTactics:
    def test_labels_and_order(self, store):
        store.add("tactics", {"id": "ta", "matchId": "m2"})
        store.add("tactics", {"id": "tb", "matchId": "m3"})
        store.add("tactics", {"id": "tc", "matchId": "deleted"})
        items = list_tactics(store)

        assert [i["id"] for i in items] == ["tb", "ta", "tc"]
        assert items[0]["matchInfo"] == "vs City"
        assert items[0]["matchDate"] == utc(2030, 6, 1, 15).isoformat()
        assert items[2]["matchInfo"] == "Match not found"


class TestConcurrentEdits:
    """Two requests working on the same draft at once."""

    def _widen_removal(self, monkeypatch):
        # Both callers meet between removal and append unless the editor serialises them
        barrier = threading.Barrier(2, timeout=0.5)
        remove = TacticsEditor._remove_everywhere

        def remove_then_wait(editor, player_id):
            remove(editor, player_id)
            try:
                barrier.wait()
            except threading.BrokenBarrierError:
                pass

        monkeypatch.setattr(TacticsEditor, "_remove_everywhere", remove_then_wait)

    def _run(self, *targets):
        threads = [threading.Thread(target=target) for target in targets]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    def test_parallel_placements_keep_one_slot(self, monkeypatch):
        """Test that a double-submitted drop leaves the player on the pitch once."""
        self._widen_removal(monkeypatch)
        editor = TacticsEditor()

        self._run(
            lambda: editor.place_at("p1", PitchPosition(top=20, left=50)),
            lambda: editor.place_at("p1", PitchPosition(top=60, left=50)),
        )

        assert editor.starting_ids() == ["p1"]
        assert_disjoint(editor)

    def test_parallel_placement_and_return(self, monkeypatch):
        self._widen_removal(monkeypatch)
        editor = TacticsEditor()
        editor.move_to_substitutes("p1")

        self._run(
            lambda: editor.place_at("p1", PitchPosition(top=20, left=50)),
            lambda: editor.place_at("p2", PitchPosition(top=40, left=50)),
        )

        assert sorted(editor.starting_ids()) == ["p1", "p2"]
        assert editor.tactics.substitutes == []
        assert_disjoint(editor)

    def test_edit_holds_draft_lock(self, store):
        sessions = SessionManager(FakeIdentityGateway(sample_accounts()), store)
        drafts = DraftRegistry(sessions)
        coach = sessions.sign_in("coach@ffc.test", "secret")
        draft_id = drafts.open(coach, TacticsEditor())
        acquired = []

        with drafts.edit(coach, draft_id) as editor:
            other = threading.Thread(target=lambda: acquired.append(editor.lock.acquire(blocking=False)))
            other.start()
            other.join()

        assert acquired == [False]
        assert editor.lock.acquire(blocking=False)
        editor.lock.release()

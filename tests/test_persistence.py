import orjson
import pytest

from feudengine.core.deck import QuestionDeck
from feudengine.core.fsm import GameState, StealPhase
from feudengine.core.persistence import (
    GAME_STATE_KEY,
    GameSnapshotAdapter,
    JsonFileStore,
    MemoryStore,
    SnapshotStore,
)
from feudengine.core.schemas import GamePhase
from feudengine.utils.rng import build_rng


class BrokenStore:
    def get(self, key):
        raise OSError("disk on fire")

    def set(self, key, value):
        raise OSError("quota exceeded")

    def remove(self, key):
        raise OSError("read-only")


def _envelope(payload, *, version=1):
    return orjson.dumps({"version": version, "timestamp": 1700000000.5, "payload": payload}).decode()


def _steal_state(bedtime) -> GameState:
    state = GameState()
    state.start_game("Owls", "Foxes")
    state.set_next_question(bedtime)
    state.reveal_answer(0)
    for _ in range(3):
        state.register_strike()
    return state


def test_round_trip_restores_state_and_deck(store, bedtime):
    adapter = GameSnapshotAdapter(store)
    state = _steal_state(bedtime)
    deck = QuestionDeck([bedtime], rng=build_rng(seed=1))
    deck.draw()

    assert adapter.save(state, deck)
    loaded_state, deck_record = adapter.load()

    assert loaded_state.teams == state.teams
    assert loaded_state.phase_state == StealPhase(original_team=0)
    assert loaded_state.active_team_index == 1
    assert loaded_state.current_question == state.current_question
    assert loaded_state.round == state.round
    assert deck_record.order == deck.order
    assert deck_record.index == 1


def test_empty_store_loads_nothing(store):
    assert GameSnapshotAdapter(store).load() is None


def test_version_mismatch_discards_snapshot(store, bedtime):
    GameSnapshotAdapter(store).save(_steal_state(bedtime))
    assert GameSnapshotAdapter(store, version=2).load() is None


@pytest.mark.parametrize(
    "raw",
    [
        "not json at all",
        "[1, 2, 3]",
        '{"version": "1", "timestamp": 1.0, "payload": {}}',
        '{"version": 1, "payload": {}}',
    ],
)
def test_corrupt_snapshots_load_as_nothing(raw):
    store = MemoryStore({GAME_STATE_KEY: raw})
    assert GameSnapshotAdapter(store).load() is None


def test_fields_are_sanitized_independently():
    payload = {
        "state": {
            "teams": [{"name": "Owls", "color": "#000", "score": -5}, {"name": 42, "score": 12.9}],
            "active_team_index": 1,
            "phase": "steal",
            "current_question": {
                "question": "Name a fruit",
                "answers": [{"text": "Apple", "points": 30}, {"points": 5}, {"text": "Pear", "points": "lots"}],
            },
            "round": {"strikes": 9, "revealed": [True], "round_pot": 30},
            "round_winner": 5,
            "history": [{"question": "Old", "awarded_points": 10, "winning_team": 0}, "garbage"],
            "voice_enabled": "yes",
        },
        "deck": {"order": "nope", "index": 2},
    }
    store = MemoryStore({GAME_STATE_KEY: _envelope(payload)})
    state, deck_record = GameSnapshotAdapter(store).load()

    assert [team.score for team in state.teams] == [0, 12]
    assert state.teams[1].name == "Team B"
    assert [answer.text for answer in state.current_question.answers] == ["Apple", "Pear"]
    assert state.current_question.answers[1].points == 0
    assert state.round.strikes == 3
    assert state.round.revealed == [True, False]
    assert state.round_winner is None
    assert state.steal_original_team_index == 0
    assert len(state.history) == 1
    assert state.voice_enabled is True
    assert deck_record.order == []


def test_restored_steal_never_belongs_to_the_stealing_team(bedtime):
    payload = {
        "state": {
            "teams": [{"name": "Owls"}, {"name": "Foxes"}],
            "active_team_index": 0,
            "phase": "steal",
            "steal_original_team_index": 0,
            "current_question": bedtime.model_dump(mode="json"),
            "round": {"strikes": 3, "revealed": [True, False, False, False, False], "round_pot": 40},
        }
    }
    store = MemoryStore({GAME_STATE_KEY: _envelope(payload)})
    state, _ = GameSnapshotAdapter(store).load()

    assert state.active_team_index == 0
    assert state.steal_original_team_index == 1
    assert state.resolve_steal(None)
    assert [team.score for team in state.teams] == [0, 40]


def test_question_without_round_is_dropped(bedtime):
    payload = {"state": {"phase": "playing", "current_question": bedtime.model_dump(mode="json")}}
    store = MemoryStore({GAME_STATE_KEY: _envelope(payload)})
    state, _ = GameSnapshotAdapter(store).load()
    assert state.current_question is None
    assert state.round is None
    assert state.phase is GamePhase.PLAYING


def test_storage_failures_are_swallowed(bedtime):
    adapter = GameSnapshotAdapter(BrokenStore())
    assert adapter.load() is None
    assert adapter.save(_steal_state(bedtime)) is False
    adapter.clear()


def test_clear_removes_snapshot(store, bedtime):
    adapter = GameSnapshotAdapter(store)
    adapter.save(_steal_state(bedtime))
    adapter.clear()
    assert adapter.load() is None


def test_json_file_store(tmp_path):
    files = JsonFileStore(tmp_path / "state")
    snapshots = SnapshotStore(files, key="feud:test", version=3)
    assert snapshots.read() is None

    assert snapshots.write({"hello": "world"})
    assert files.path_for("feud:test").name == "feud_test.json"
    assert snapshots.read() == {"hello": "world"}

    snapshots.clear()
    assert snapshots.read() is None
    snapshots.clear()


def test_engine_resumes_saved_game(make_engine, store, bedtime):
    engine = make_engine()
    engine.start_game("Owls", "Foxes")
    engine.set_next_question(bedtime)
    engine.reveal_answer_by_index(1)
    engine.register_strike()
    engine.draw_next_question()

    resumed = make_engine(seed=99)
    assert [team.name for team in resumed.teams] == ["Owls", "Foxes"]
    assert resumed.current_question == bedtime
    assert resumed.round.revealed[1]
    assert resumed.round.strikes == 1
    assert resumed.deck.order == engine.deck.order
    assert resumed.deck.index == engine.deck.index

    resumed.reset_persistent_state()
    assert GAME_STATE_KEY not in store.data
    assert resumed.phase is GamePhase.SETUP

    fresh = make_engine()
    assert fresh.phase is GamePhase.SETUP
    assert fresh.current_question is None

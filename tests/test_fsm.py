import pytest

from feudengine.core.fsm import (
    GameState,
    PlayingPhase,
    ResultsPhase,
    SetupPhase,
    StealPhase,
    StealResolvedPhase,
)
from feudengine.core.schemas import GamePhase


@pytest.fixture
def playing(bedtime) -> GameState:
    state = GameState()
    state.start_game("Owls", "Foxes")
    assert state.set_next_question(bedtime)
    return state


def _strike_out(state: GameState) -> None:
    for _ in range(state.strike_limit):
        assert state.register_strike()


def test_start_game_resets_everything(bedtime):
    state = GameState()
    state.start_game("  ", "Foxes")
    assert [team.name for team in state.teams] == ["Team A", "Foxes"]
    assert all(team.score == 0 for team in state.teams)
    assert isinstance(state.phase_state, SetupPhase)
    assert state.history == []


def test_reveal_adds_to_pot_without_changing_team(playing):
    assert playing.reveal_answer(0)
    assert playing.round.round_pot == 40
    assert playing.active_team_index == 0
    assert not playing.reveal_answer(0)
    assert not playing.reveal_answer(99)


def test_full_reveal_finalizes_to_active_team(playing, bedtime):
    for index in range(len(bedtime.answers)):
        playing.reveal_answer(index)

    assert playing.teams[0].score == 100
    assert playing.round.round_pot == 0
    assert playing.round_winner == 0
    assert playing.round_ended
    assert playing.phase is GamePhase.PLAYING
    assert len(playing.history) == 1
    assert playing.history[0].winning_team == 0
    assert playing.history[0].awarded_points == 100
    assert not playing.accepts_answers()


@pytest.mark.parametrize("starting_team", [0, 1])
def test_third_strike_opens_steal_for_other_team(playing, starting_team):
    playing.active_team_index = starting_team
    playing.reveal_answer(1)
    _strike_out(playing)

    assert isinstance(playing.phase_state, StealPhase)
    assert playing.active_team_index == 1 - starting_team
    assert playing.steal_original_team_index == starting_team
    assert playing.round.strikes == 3
    assert playing.round.round_pot == 30
    assert not playing.register_strike()


def test_successful_steal_banks_pot_to_stealing_team(playing):
    playing.reveal_answer(0)
    playing.reveal_answer(1)
    _strike_out(playing)

    assert playing.resolve_steal(2)
    assert playing.teams[1].score == 70
    assert playing.teams[0].score == 0
    assert playing.round_winner == 1
    assert playing.round.all_revealed
    assert isinstance(playing.phase_state, StealResolvedPhase)
    assert playing.phase is GamePhase.STEAL
    assert playing.steal_original_team_index is None
    assert not playing.resolve_steal(3)


def test_failed_steal_banks_pot_to_original_team(playing):
    playing.reveal_answer(0)
    _strike_out(playing)

    assert playing.resolve_steal(None)
    assert playing.teams[0].score == 40
    assert playing.teams[1].score == 0
    assert playing.round_winner == 0
    assert playing.history[-1].winning_team == 0


def test_steal_naming_revealed_answer_is_a_miss(playing):
    playing.reveal_answer(0)
    _strike_out(playing)
    playing.resolve_steal(0)
    assert playing.teams[0].score == 40


def test_steal_with_empty_pot_ends_round(playing):
    _strike_out(playing)
    assert playing.round_ended
    playing.resolve_steal(None)
    assert playing.round_winner is None
    assert playing.history[-1].awarded_points == 0


def test_end_round_advance_flips_team_and_clears_round(playing):
    playing.reveal_answer(0)
    _strike_out(playing)
    playing.resolve_steal(None)

    assert playing.end_round_advance()
    assert playing.active_team_index == 0
    assert isinstance(playing.phase_state, PlayingPhase)
    assert playing.current_question is None
    assert playing.round is None
    assert playing.round_winner is None


def test_bank_round_to_team(playing):
    playing.reveal_answer(1)
    assert playing.bank_round_to_team(1)
    assert playing.teams[1].score == 30
    assert playing.round.round_pot == 0
    assert not playing.bank_round_to_team(2)


def test_end_game_is_terminal(playing, bedtime):
    assert playing.end_game()
    assert isinstance(playing.phase_state, ResultsPhase)
    assert playing.current_question is None
    assert not playing.set_next_question(bedtime)
    assert not playing.end_round_advance()
    assert not playing.end_game()


def test_history_is_trimmed(bedtime):
    state = GameState(history_limit=2)
    state.start_game("A", "B")
    for _ in range(3):
        state.set_next_question(bedtime)
        for index in range(len(bedtime.answers)):
            state.reveal_answer(index)
    assert len(state.history) == 2


def test_invalid_construction():
    with pytest.raises(ValueError):
        GameState(strike_limit=0)


def test_record_round_trip(playing):
    playing.reveal_answer(0)
    _strike_out(playing)
    playing.toggle_voice(False)

    restored = GameState.from_record(playing.to_record())
    assert isinstance(restored.phase_state, StealPhase)
    assert restored.steal_original_team_index == 0
    assert restored.active_team_index == 1
    assert restored.round == playing.round
    assert restored.current_question == playing.current_question
    assert restored.voice_enabled is False

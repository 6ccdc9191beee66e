import asyncio

import pytest

from feudengine.core.packs import PackLibrary, QuestionPack
from feudengine.core.schemas import GamePhase, ValidationResponse


@pytest.fixture
def engine(make_engine, bedtime):
    engine = make_engine()
    engine.start_game("Owls", "Foxes")
    engine.set_next_question(bedtime)
    return engine


def submit(engine, text):
    return asyncio.run(engine.submit_answer(text))


def steal(engine, text):
    return asyncio.run(engine.submit_steal(text))


def test_start_game_puts_first_question_on_board(make_engine):
    engine = make_engine()
    assert engine.start_game("Owls", "")
    assert engine.phase is GamePhase.PLAYING
    assert engine.current_question is not None
    assert [team.name for team in engine.teams] == ["Owls", "Team B"]
    assert engine.question_counts()[0] == engine.question_counts()[1] - 1


def test_bedtime_scenario(engine):
    first = submit(engine, "watch tv")
    assert first.matched and first.index == 0
    assert first.confidence == 1.0
    assert first.points == 40
    assert engine.round.round_pot == 40

    submit(engine, "Read")
    assert engine.round.round_pot == 70

    for guess in ("zzz", "qqq", "jjj"):
        miss = submit(engine, guess)
        assert not miss.matched

    assert engine.phase is GamePhase.STEAL
    assert engine.active_team_index == 1
    assert engine.steal_original_team_index == 0
    assert engine.round.round_pot == 70

    result = steal(engine, "check phone")
    assert result.matched
    assert result.matched_answer == "Check phone"
    assert engine.teams[1].score == 70
    assert engine.teams[0].score == 0
    assert all(engine.round.revealed)
    assert engine.round_winner == 1
    assert engine.round_ended


def test_repeating_revealed_answer_is_a_strike(engine):
    submit(engine, "watch tv")
    repeat = submit(engine, "Watch TV!")
    assert not repeat.matched
    assert engine.round.strikes == 1
    assert engine.round.round_pot == 40


def test_empty_guess_is_a_strike_and_forfeits_steal(engine):
    submit(engine, "read")
    submit(engine, "   ")
    assert engine.round.strikes == 1
    submit(engine, "")
    submit(engine, "?!")
    assert engine.phase is GamePhase.STEAL

    steal(engine, "")
    assert engine.teams[0].score == 30
    assert engine.round_winner == 0


def test_wrong_phase_submissions_are_no_ops(engine):
    result = steal(engine, "read")
    assert not result.matched
    assert engine.round.strikes == 0
    assert not any(engine.round.revealed)


def test_submission_after_round_finalized_is_ignored(engine, bedtime):
    for answer in bedtime.answers:
        submit(engine, answer.text)
    assert engine.round_ended
    result = submit(engine, "zzz")
    assert not result.matched
    assert engine.round.strikes == 0


def test_semantic_match_reveals_canonical_answer(make_engine, scripted_validator, bedtime):
    validator = scripted_validator(ValidationResponse(matched=True, matched_answer="WATCH TV", confidence=0.9))
    engine = make_engine(validator=validator)
    engine.start_game("A", "B")
    engine.set_next_question(bedtime)

    result = submit(engine, "the telly")
    assert result.matched
    assert result.index == 0
    assert result.confidence == 0.9
    assert result.source == "validator"
    assert engine.round.revealed[0]
    assert validator.requests[0].player_answer == "the telly"


def test_validator_timeout_counts_as_strike(make_engine, scripted_validator, bedtime):
    from feudengine.config.settings import EngineConfig

    validator = scripted_validator(ValidationResponse(matched=True, matched_answer="Read"))
    validator.delay = 1.0
    engine = make_engine(validator=validator, config=EngineConfig(validator_timeout=0.01))
    engine.start_game("A", "B")
    engine.set_next_question(bedtime)

    result = submit(engine, "novel")
    assert not result.matched
    assert result.timed_out
    assert engine.round.strikes == 1


def test_second_submission_while_pending_is_busy(make_engine, scripted_validator, bedtime):
    validator = scripted_validator(ValidationResponse(matched=False))
    engine = make_engine(validator=validator)
    engine.start_game("A", "B")
    engine.set_next_question(bedtime)

    async def scenario():
        validator.release = asyncio.Event()
        first = asyncio.create_task(engine.submit_answer("the telly"))
        await asyncio.sleep(0)
        assert engine.submission_pending
        second = await engine.submit_answer("read")
        validator.release.set()
        return await first, second

    first, second = asyncio.run(scenario())
    assert second.busy and not second.matched
    assert not first.matched
    assert engine.round.strikes == 1
    assert not engine.round.revealed[1]


def test_late_verdict_for_old_round_is_discarded(make_engine, scripted_validator, bedtime):
    validator = scripted_validator(ValidationResponse(matched=True, matched_answer="Read", confidence=0.95))
    engine = make_engine(validator=validator)
    engine.start_game("A", "B")
    engine.set_next_question(bedtime)

    async def scenario():
        validator.release = asyncio.Event()
        pending = asyncio.create_task(engine.submit_answer("a novel"))
        await asyncio.sleep(0)
        engine.end_round_advance()
        engine.set_next_question(bedtime)
        validator.release.set()
        return await pending

    result = asyncio.run(scenario())
    assert not result.matched
    assert engine.active_team_index == 1
    assert engine.round.strikes == 0
    assert not any(engine.round.revealed)


def _engine_in_steal(make_engine, bedtime, validator, **kwargs):
    engine = make_engine(validator=validator, **kwargs)
    engine.start_game("Owls", "Foxes")
    engine.set_next_question(bedtime)
    submit(engine, "read")
    for _ in range(3):
        submit(engine, "")
    assert engine.phase is GamePhase.STEAL
    return engine


def test_semantic_steal_hit_banks_to_stealing_team(make_engine, scripted_validator, bedtime):
    validator = scripted_validator(ValidationResponse(matched=True, matched_answer="check phone", confidence=0.92))
    engine = _engine_in_steal(make_engine, bedtime, validator)

    result = steal(engine, "scrolling instagram")
    assert result.matched
    assert result.index == 2
    assert result.source == "validator"
    assert [team.score for team in engine.teams] == [0, 30]
    assert engine.round_winner == 1
    assert all(engine.round.revealed)
    assert len(validator.requests) == 1


def test_steal_timeout_forfeits_to_original_team(make_engine, scripted_validator, bedtime):
    from feudengine.config.settings import EngineConfig

    validator = scripted_validator(ValidationResponse(matched=True, matched_answer="Eat"))
    validator.delay = 1.0
    engine = _engine_in_steal(make_engine, bedtime, validator, config=EngineConfig(validator_timeout=0.01))

    result = steal(engine, "midnight snack")
    assert not result.matched
    assert result.timed_out
    assert [team.score for team in engine.teams] == [30, 0]
    assert engine.round_winner == 0
    assert engine.round_ended


def test_steal_validator_error_forfeits_to_original_team(make_engine, scripted_validator, validator_error, bedtime):
    engine = _engine_in_steal(make_engine, bedtime, scripted_validator(validator_error))

    result = steal(engine, "midnight snack")
    assert not result.matched
    assert [team.score for team in engine.teams] == [30, 0]
    assert engine.round_winner == 0


@pytest.mark.parametrize("host_action", ["end_round_advance", "end_game"])
def test_late_steal_verdict_after_host_moves_on_is_discarded(make_engine, scripted_validator, bedtime, host_action):
    validator = scripted_validator(ValidationResponse(matched=True, matched_answer="Eat", confidence=0.95))
    engine = _engine_in_steal(make_engine, bedtime, validator)

    async def scenario():
        validator.release = asyncio.Event()
        pending = asyncio.create_task(engine.submit_steal("midnight snack"))
        await asyncio.sleep(0)
        assert engine.submission_pending
        getattr(engine, host_action)()
        validator.release.set()
        return await pending

    result = asyncio.run(scenario())
    assert not result.matched
    assert [team.score for team in engine.teams] == [0, 0]
    assert engine.phase is not GamePhase.STEAL
    assert not engine.submission_pending


def test_host_overrides(engine):
    assert engine.reveal_answer_by_index(4)
    assert engine.round.round_pot == 4
    assert engine.register_strike()
    assert engine.round.strikes == 1
    assert engine.bank_round_to_team(1)
    assert engine.teams[1].score == 4
    assert engine.round.round_pot == 0


def test_next_round_alternates_turn_and_draws(engine):
    question = engine.next_round()
    assert question is not None
    assert engine.current_question == question
    assert engine.active_team_index == 1
    assert engine.phase is GamePhase.PLAYING


def test_next_round_with_empty_pack_ends_game(make_engine, store):
    library = PackLibrary(store)
    engine = make_engine(packs=library)
    engine.start_game("A", "B")
    library.create_pack("Empty")

    assert engine.question_counts() == (0, 0)
    assert engine.next_round() is None
    assert engine.phase is GamePhase.RESULTS


def test_active_pack_change_rebuilds_deck(make_engine, store, bedtime):
    library = PackLibrary(store)
    engine = make_engine(packs=library)
    pack = library.save_pack(QuestionPack(id="", name="Bedtime", questions=(bedtime,)))

    assert library.active_pack.id == pack.id
    assert engine.question_counts() == (1, 1)
    assert engine.draw_next_question() == bedtime


def test_end_game_clear_history_and_voice(engine, bedtime):
    for answer in bedtime.answers:
        submit(engine, answer.text)
    assert len(engine.history) == 1
    engine.clear_history()
    assert engine.history == []
    engine.toggle_voice(False)
    assert engine.voice_enabled is False
    assert engine.end_game()
    assert engine.phase is GamePhase.RESULTS
    assert engine.current_question is None


def test_subscribers_see_each_transition(engine):
    seen = []
    unsubscribe = engine.subscribe(lambda state: seen.append(state.phase))
    engine.register_strike()
    engine.end_game()
    unsubscribe()
    engine.start_game("A", "B")
    assert seen == [GamePhase.PLAYING, GamePhase.RESULTS]

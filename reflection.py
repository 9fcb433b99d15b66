from __future__ import annotations

import random

from phase_formats import PHASE_CONFIG, PHASE_ORDER, GameState, Phase

REFLECTION_PROMPTS: dict[Phase, tuple[str, ...]] = {
    Phase.PREPARATION: (
        "What resources did you find most helpful during the preparation phase?",
        "How do you typically gather information before starting a creative project?",
        "What surprised you about the quotes in the Preparation phase?",
    ),
    Phase.INCUBATION: (
        "How do you give your mind space to incubate ideas?",
        "Do you find stepping away from a problem helps you solve it?",
        "What activities help you let ideas simmer subconsciously?",
    ),
    Phase.ILLUMINATION: (
        "Can you recall a 'Eureka!' moment in your own life?",
        "What conditions seem to trigger your best insights?",
        "How do you recognize when you've had a breakthrough?",
    ),
    Phase.VERIFICATION: (
        "How do you typically test and refine your ideas?",
        "What role does feedback play in your creative process?",
        "How do you know when an idea is ready to share?",
    ),
}

GENERAL_PROMPTS: tuple[str, ...] = (
    "Which phase of creativity do you find most challenging?",
    "How might understanding these phases help your future creative work?",
    "What new insight did you gain about the creative process today?",
    "How can you apply these phases to a current project?",
    "Which quote resonated with you the most and why?",
)


def most_challenging_phase(phase_misses: dict[str, int], rng: random.Random) -> Phase:
    counts = {phase: int(phase_misses.get(phase.value, 0)) for phase in PHASE_ORDER}
    worst = max(counts.values(), default=0)
    if worst <= 0:
        return rng.choice(PHASE_ORDER)
    leaders = [phase for phase in PHASE_ORDER if counts[phase] == worst]
    return leaders[0] if len(leaders) == 1 else rng.choice(leaders)


def build_reflection(
    player_name: str,
    game_state: GameState,
    phase_misses: dict[str, int],
    rng: random.Random | None = None,
) -> dict:
    rng = rng or random.Random()
    phase = most_challenging_phase(phase_misses, rng)
    return {
        "player_name": player_name,
        "score": game_state.score,
        "base_score": game_state.base_score,
        "time_bonus": game_state.time_bonus,
        "wrong_attempts": game_state.wrong_attempts,
        "elapsed_time": game_state.elapsed_time,
        "challenging_phase": phase.value,
        "challenging_phase_title": PHASE_CONFIG[phase]["title"],
        "phase_misses": {p.value: int(phase_misses.get(p.value, 0)) for p in PHASE_ORDER},
        "phase_prompt": rng.choice(REFLECTION_PROMPTS[phase]),
        "general_prompt": rng.choice(GENERAL_PROMPTS),
    }

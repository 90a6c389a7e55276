"""
Session State Definition for the Step-by-Step Tutor

This module defines the TypedDicts that make up one tutoring session.
Only the SessionController (session.py) mutates a SessionState; everything
else reads snapshots produced by `snapshot()`.
"""

import copy
from typing import TypedDict, List, Dict, Optional, Literal


Language = Literal["English", "Telugu"]
SUPPORTED_LANGUAGES: tuple[str, ...] = ("English", "Telugu")

# Heuristic completion signal: the model is asked to state the final answer
FINAL_ANSWER_MARKER = "final answer"


class Problem(TypedDict):
    statement: str
    image: Optional[str]  # data URI, e.g. data:image/jpeg;base64,...


class ExplanationStep(TypedDict):
    index: int  # 0-based, dense
    content: str


class SessionState(TypedDict):
    """
    The state object owned by one SessionController.

    `pending` is the single-flight gate: it is True while exactly one call to
    the explanation service is outstanding. `finished` never goes back to
    False within a problem.
    """

    session_id: str
    profile_id: str

    # --- Intake ---
    problem: Optional[Problem]
    explanation_started: bool

    # --- Step-by-step flow ---
    steps: List[ExplanationStep]
    current_step: str  # cursor sent as context with the next request
    finished: bool
    pending: bool

    # --- Full solutions, keyed by language ---
    full_solutions: Dict[str, str]


def new_session_state(session_id: str, profile_id: str) -> SessionState:
    return {
        "session_id": session_id,
        "profile_id": profile_id,
        "problem": None,
        "explanation_started": False,
        "steps": [],
        "current_step": "",
        "finished": False,
        "pending": False,
        "full_solutions": {},
    }


def is_final_answer(content: str) -> bool:
    """Case-insensitive substring match for the final-answer marker."""
    return FINAL_ANSWER_MARKER in content.lower()


def snapshot(state: SessionState) -> dict:
    """JSON-serializable copy of the state with `is_final` filled in per step."""
    data = copy.deepcopy(dict(state))
    data["steps"] = [
        {**step, "is_final": is_final_answer(step["content"])}
        for step in data["steps"]
    ]
    return data

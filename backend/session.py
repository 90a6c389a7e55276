"""
Session Controller for the Step-by-Step Tutor

Sequences every student intent into one linear interaction per problem:

    start_problem -> begin_step_by_step -> next_step* (re_explain_last_step*)
                  \\-> request_full_solution(language)   (cached per language)

Two rules hold at all times:
- Single-flight: at most one call to the explanation service is outstanding.
  An intent that arrives while `pending` is True is skipped, never queued.
- `finished` only ever moves from False to True within a problem.

A failed call leaves the state exactly as it was (apart from `pending`) and
queues a notification, so the student can simply retry the same intent.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Awaitable, Callable, List, Literal, Optional

from explainer import (
    ExplanationClient,
    ExplanationRequest,
    ExplanationServiceError,
    SolutionRequest,
    TeluguSolutionRequest,
)
from profiles import Profile
from state import (
    SUPPORTED_LANGUAGES,
    SessionState,
    is_final_answer,
    new_session_state,
    snapshot,
)

logger = logging.getLogger(__name__)

# Cursor value sent with the very first explanation request
START_OF_PROBLEM = "Start of problem"

INTRODUCE_PROBLEM = "Explain the problem statement and what is given and what we need to find."
EXPLAIN_NEXT_STEP = "Explain the next step."
RE_EXPLAIN_SIMPLER = (
    "I did not understand. Please re-explain this step more slowly using simpler examples "
    "from Indian teaching style, daily life metaphors, and common objects."
)

GENERIC_ERROR = "There was a problem communicating with the AI tutor. Please try again."


@dataclass
class IntentResult:
    """Outcome of one intent: ok (with text), skipped (with reason) or error."""
    status: Literal["ok", "skipped", "error"]
    text: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Notification:
    """A transient, user-visible message (a toast in the UI)."""
    title: str
    description: str
    variant: Literal["default", "destructive"] = "destructive"


def _skipped(reason: str) -> IntentResult:
    return IntentResult(status="skipped", reason=reason)


class SessionController:
    """Owns one SessionState; every mutation goes through the methods below."""

    def __init__(self, profile: Profile, client: ExplanationClient, session_id: Optional[str] = None):
        self.profile = profile
        self.client = client
        self.state: SessionState = new_session_state(session_id or str(uuid.uuid4()), profile.id)
        self._notifications: List[Notification] = []
        # Awaited right before each outgoing service call (the HTTP layer
        # charges the session's rate limit here). Exceptions propagate.
        self.before_call: Optional[Callable[[], Awaitable[None]]] = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self.state["session_id"]

    @property
    def pending(self) -> bool:
        return self.state["pending"]

    @property
    def finished(self) -> bool:
        return self.state["finished"]

    @property
    def steps(self) -> list:
        return self.state["steps"]

    def snapshot(self) -> dict:
        return snapshot(self.state)

    def drain_notifications(self) -> List[Notification]:
        notifications, self._notifications = self._notifications, []
        return notifications

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def start_problem(self, statement: str, image: Optional[str] = None) -> IntentResult:
        """Begin a new problem. Resets everything downstream; makes no call."""
        statement = (statement or "").strip()
        if not statement and not image:
            return _skipped("empty problem")
        if self.pending:
            return _skipped("request in flight")

        self.state["problem"] = {"statement": statement, "image": image}
        self.state["explanation_started"] = False
        self.state["steps"] = []
        self.state["current_step"] = ""
        self.state["finished"] = False
        self.state["full_solutions"] = {}
        logger.info(
            f"[Session] {self.session_id}: new problem "
            f"(text={len(statement)} chars, image={'yes' if image else 'no'})"
        )
        return IntentResult(status="ok")

    async def begin_step_by_step(self) -> IntentResult:
        if self.state["problem"] is None:
            return _skipped("no problem started")
        if self.pending:
            return _skipped("request in flight")
        if self.state["explanation_started"]:
            return _skipped("explanation already started")

        request = self._explanation_request(START_OF_PROBLEM, INTRODUCE_PROBLEM)
        content, failure = await self._request(
            "Error starting explanation",
            lambda: self.client.generate_explanation(request),
        )
        if failure:
            return failure

        self.state["explanation_started"] = True
        self._append_step(content)
        return IntentResult(status="ok", text=content)

    async def next_step(self) -> IntentResult:
        if self.finished:
            return _skipped("problem already solved")
        if self.pending:
            return _skipped("request in flight")
        if not self.steps:
            return _skipped("explanation not started")

        request = self._explanation_request(self.steps[-1]["content"], EXPLAIN_NEXT_STEP)
        content, failure = await self._request(
            "Error getting next step",
            lambda: self.client.generate_explanation(request),
        )
        if failure:
            return failure

        self._append_step(content)
        return IntentResult(status="ok", text=content)

    async def re_explain_last_step(self) -> IntentResult:
        """Replace the last step with a simpler retelling; the step count is unchanged."""
        if not self.steps:
            return _skipped("explanation not started")
        if self.pending:
            return _skipped("request in flight")
        if self.finished:
            return _skipped("problem already solved")

        request = self._explanation_request(self.steps[-1]["content"], RE_EXPLAIN_SIMPLER)
        content, failure = await self._request(
            "Error re-generating explanation",
            lambda: self.client.generate_explanation(request),
        )
        if failure:
            return failure

        self.steps[-1]["content"] = content
        self.state["current_step"] = content
        if is_final_answer(content):
            self.state["finished"] = True
        logger.info(f"[Session] {self.session_id}: re-explained step {self.steps[-1]['index']}")
        return IntentResult(status="ok", text=content)

    async def request_full_solution(self, language: str) -> IntentResult:
        """Fetch the full solution in `language`; later requests are served from cache."""
        if language not in SUPPORTED_LANGUAGES:
            raise ValueError(f"Unsupported language '{language}', expected one of {SUPPORTED_LANGUAGES}")
        if self.state["problem"] is None:
            return _skipped("no problem started")

        cached = self.state["full_solutions"].get(language)
        if cached is not None:
            return IntentResult(status="ok", text=cached, reason="cached")
        if self.pending:
            return _skipped("request in flight")

        problem = self.state["problem"]
        if language == "Telugu":
            telugu_request = TeluguSolutionRequest(
                problem_statement=problem["statement"],
                photo_data_uri=problem["image"],
                student_profile=self.profile.prompt_description(),
                is_refetch=False,
            )
            call = lambda: self.client.generate_telugu_solution(telugu_request)
        else:
            solution_request = SolutionRequest(
                problem_statement=problem["statement"],
                photo_data_uri=problem["image"],
                student_profile=self.profile.prompt_description(),
                language=language,
            )
            call = lambda: self.client.generate_solution(solution_request)

        solution, failure = await self._request(f"Error generating {language} answer", call)
        if failure:
            return failure

        self.state["full_solutions"][language] = solution
        logger.info(f"[Session] {self.session_id}: cached {language} solution ({len(solution)} chars)")
        return IntentResult(status="ok", text=solution)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _explanation_request(self, current_step: str, preference: str) -> ExplanationRequest:
        problem = self.state["problem"]
        return ExplanationRequest(
            problem_statement=problem["statement"],
            photo_data_uri=problem["image"],
            student_profile=self.profile.prompt_description(),
            student_name=self.profile.name,
            current_step=current_step,
            explanation_preference=preference,
        )

    def _append_step(self, content: str) -> None:
        index = len(self.steps)
        self.steps.append({"index": index, "content": content})
        self.state["current_step"] = content
        if is_final_answer(content):
            self.state["finished"] = True
        logger.info(
            f"[Session] {self.session_id}: step {index} added (finished={self.finished})"
        )

    @contextmanager
    def _single_flight(self):
        self.state["pending"] = True
        try:
            yield
        finally:
            self.state["pending"] = False

    async def _request(self, title: str, call: Callable[[], Awaitable[str]]):
        """Issue one service call under the pending gate; returns (text, failure)."""
        with self._single_flight():
            if self.before_call is not None:
                await self.before_call()
            try:
                return await call(), None
            except ExplanationServiceError as e:
                logger.error(f"[Session] {self.session_id}: {title}: {e}")
                self._notifications.append(Notification(title=title, description=GENERIC_ERROR))
                return None, IntentResult(status="error", error=str(e))

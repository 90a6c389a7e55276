"""
Explanation Service Client

Thin, side-effect-free wrapper around the Gemini completion service. Three
request shapes are supported:
- step explanation (current step + explanation preference)
- full solution in a requested language
- full solution in conversational Telugu, optionally as a simpler retelling

This client never retries and never caches; the session controller owns
those policies. Any failure, including an empty answer, is raised as
ExplanationServiceError.
"""

import logging
from typing import Literal, Optional, Type

from pydantic import BaseModel, Field
from langchain_core.messages import BaseMessage, HumanMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from config import settings
from prompts import (
    STEP_EXPLANATION,
    FULL_SOLUTION,
    TELUGU_SOLUTION,
    PHOTO_INSTRUCTIONS,
    REFETCH_INSTRUCTIONS,
    PromptVariant,
    get_prompt,
)

logger = logging.getLogger(__name__)


class ExplanationServiceError(Exception):
    """The completion service call failed or returned nothing usable."""


# ============================================================================
# REQUEST SHAPES
# ============================================================================

class ExplanationRequest(BaseModel):
    problem_statement: str
    photo_data_uri: Optional[str] = None
    student_profile: str = Field(..., description="'{name}, {class}, {description}'")
    student_name: str = "the student"
    current_step: str = Field(..., description="Content of the step the student is on")
    explanation_preference: str


class SolutionRequest(BaseModel):
    problem_statement: str
    photo_data_uri: Optional[str] = None
    student_profile: str
    language: Literal["English", "Telugu"]


class TeluguSolutionRequest(BaseModel):
    problem_statement: str
    photo_data_uri: Optional[str] = None
    student_profile: str
    is_refetch: bool = False


# ============================================================================
# STRUCTURED OUTPUT SCHEMAS
# ============================================================================

class ExplanationOutput(BaseModel):
    """Structured output for one stage of the step-by-step explanation."""
    explanation: str = Field(
        description="The step-by-step explanation in English and Telugu, tailored to the student profile."
    )


class SolutionOutput(BaseModel):
    """Structured output for a complete solution."""
    solution: str = Field(description="The complete, detailed step-by-step mathematical solution.")


# ============================================================================
# CLIENT
# ============================================================================

class ExplanationClient:
    """Async client for the three tutoring request shapes."""

    def __init__(
        self,
        llm=None,
        vision_llm=None,
        explanation_variant: Optional[str] = None,
        solution_variant: Optional[str] = None,
        telugu_variant: Optional[str] = None,
    ):
        self._llm = llm
        # A single injected model handles photos too
        self._vision_llm = vision_llm or llm
        self.explanation_variant = explanation_variant or settings.explanation_prompt_variant
        self.solution_variant = solution_variant or settings.solution_prompt_variant
        self.telugu_variant = telugu_variant or settings.telugu_prompt_variant

    def _model(self, with_photo: bool):
        if with_photo:
            if self._vision_llm is None:
                self._vision_llm = ChatGoogleGenerativeAI(
                    model=settings.vision_model,
                    google_api_key=settings.google_api_key,
                    temperature=settings.temperature
                )
            return self._vision_llm
        if self._llm is None:
            self._llm = ChatGoogleGenerativeAI(
                model=settings.text_model,
                google_api_key=settings.google_api_key,
                temperature=settings.temperature
            )
        return self._llm

    async def generate_explanation(self, request: ExplanationRequest) -> str:
        prompt = get_prompt(STEP_EXPLANATION, self.explanation_variant)
        output = await self._invoke(
            prompt,
            {
                "problem_statement": request.problem_statement,
                "current_step": request.current_step,
                "explanation_preference": request.explanation_preference,
                "student_profile": request.student_profile,
                "student_name": request.student_name,
            },
            request.photo_data_uri,
            ExplanationOutput,
        )
        return output.explanation

    async def generate_solution(self, request: SolutionRequest) -> str:
        prompt = get_prompt(FULL_SOLUTION, self.solution_variant)
        output = await self._invoke(
            prompt,
            {
                "problem_statement": request.problem_statement,
                "student_profile": request.student_profile,
                "language": request.language,
                "photo_instructions": PHOTO_INSTRUCTIONS if request.photo_data_uri else "",
            },
            request.photo_data_uri,
            SolutionOutput,
        )
        return output.solution

    async def generate_telugu_solution(self, request: TeluguSolutionRequest) -> str:
        prompt = get_prompt(TELUGU_SOLUTION, self.telugu_variant)
        output = await self._invoke(
            prompt,
            {
                "problem_statement": request.problem_statement,
                "student_profile": request.student_profile,
                "refetch_instructions": REFETCH_INSTRUCTIONS if request.is_refetch else "",
                "photo_instructions": PHOTO_INSTRUCTIONS if request.photo_data_uri else "",
            },
            request.photo_data_uri,
            SolutionOutput,
        )
        return output.solution

    def build_messages(
        self, prompt: PromptVariant, variables: dict, photo_data_uri: Optional[str]
    ) -> list[BaseMessage]:
        """Format the template; a photo is attached to the final human turn."""
        messages = prompt.template.format_messages(**variables)
        if photo_data_uri:
            text = messages[-1].content
            messages[-1] = HumanMessage(
                content=[
                    {"type": "text", "text": text},
                    {"type": "image_url", "image_url": {"url": photo_data_uri}},
                ]
            )
        return messages

    async def _invoke(
        self,
        prompt: PromptVariant,
        variables: dict,
        photo_data_uri: Optional[str],
        schema: Type[BaseModel],
    ):
        messages = self.build_messages(prompt, variables, photo_data_uri)
        logger.info(
            f"[Explainer] {prompt.mode}/{prompt.name} v{prompt.version} "
            f"(photo={'yes' if photo_data_uri else 'no'})"
        )

        try:
            chain = self._model(bool(photo_data_uri)).with_structured_output(schema)
            result = await chain.ainvoke(messages)
        except Exception as e:
            logger.error(f"[Explainer] {prompt.mode} call failed: {e}", exc_info=True)
            raise ExplanationServiceError(f"{prompt.mode} request failed: {e}") from e

        if not isinstance(result, schema):
            raise ExplanationServiceError(f"{prompt.mode} returned no structured output")
        text = next(iter(result.model_dump().values()), "")
        if not text or not text.strip():
            raise ExplanationServiceError(f"{prompt.mode} returned an empty answer")
        return result

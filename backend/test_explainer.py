"""
Tests for the explanation service client and the prompt registry.
"""

import pytest

from conftest import FakeChatModel
from explainer import (
    ExplanationClient,
    ExplanationOutput,
    ExplanationRequest,
    ExplanationServiceError,
    SolutionOutput,
    SolutionRequest,
    TeluguSolutionRequest,
)
from prompts import (
    FULL_SOLUTION,
    PHOTO_INSTRUCTIONS,
    REFETCH_INSTRUCTIONS,
    STEP_EXPLANATION,
    TELUGU_SOLUTION,
    get_prompt,
    list_variants,
)

PROFILE_TEXT = "Deepak, 9th Class, IIT Foundation track, focus: Mathematics first, then Science. Slow learner."
PHOTO = "data:image/jpeg;base64,/9j/4AAQSkZJRg=="


def explanation_request(**overrides):
    fields = {
        "problem_statement": "Find x if 2x+5=15",
        "student_profile": PROFILE_TEXT,
        "student_name": "Deepak",
        "current_step": "Start of problem",
        "explanation_preference": "Explain the next step.",
    }
    fields.update(overrides)
    return ExplanationRequest(**fields)


# ----------------------------------------------------------------------------
# prompt registry
# ----------------------------------------------------------------------------

def test_registry_lists_variants_per_mode():
    assert list_variants(STEP_EXPLANATION) == ["bilingual", "english"]
    assert list_variants(FULL_SOLUTION) == ["default"]
    assert list_variants(TELUGU_SOLUTION) == ["tanglish"]


def test_unknown_variant_names_the_alternatives():
    with pytest.raises(KeyError) as excinfo:
        get_prompt(STEP_EXPLANATION, "pirate")
    assert "bilingual" in str(excinfo.value)


async def test_unknown_configured_variant_fails_the_call():
    llm = FakeChatModel()
    client = ExplanationClient(llm=llm, explanation_variant="pirate")
    with pytest.raises(KeyError):
        await client.generate_explanation(explanation_request())
    assert llm.received == []


# ----------------------------------------------------------------------------
# step explanation
# ----------------------------------------------------------------------------

async def test_explanation_returns_structured_text():
    llm = FakeChatModel(text="Given: 2x+5=15")
    client = ExplanationClient(llm=llm, explanation_variant="bilingual")

    text = await client.generate_explanation(explanation_request())

    assert text == "Given: 2x+5=15"
    assert llm.schemas == [ExplanationOutput]
    system, human = llm.received[0]
    assert "Deepak" in system.content
    assert "Telugu" in system.content
    assert "Problem Statement: Find x if 2x+5=15" in human.content
    assert "Current Step: Start of problem" in human.content
    assert "Explanation Preference: Explain the next step." in human.content
    assert PROFILE_TEXT in human.content


async def test_english_variant_is_selectable():
    llm = FakeChatModel()
    client = ExplanationClient(llm=llm, explanation_variant="english")

    await client.generate_explanation(explanation_request())

    system = llm.received[0][0]
    assert "Telugu" not in system.content


async def test_photo_is_attached_to_last_human_turn():
    text_llm, vision_llm = FakeChatModel(), FakeChatModel(text="from photo")
    client = ExplanationClient(llm=text_llm, vision_llm=vision_llm)

    text = await client.generate_explanation(explanation_request(photo_data_uri=PHOTO))

    assert text == "from photo"
    assert text_llm.received == []
    human = vision_llm.received[0][-1]
    assert human.content[0]["type"] == "text"
    assert "Find x if 2x+5=15" in human.content[0]["text"]
    assert human.content[1] == {"type": "image_url", "image_url": {"url": PHOTO}}


# ----------------------------------------------------------------------------
# full solutions
# ----------------------------------------------------------------------------

async def test_solution_in_requested_language():
    llm = FakeChatModel(text="Final Answer: x = 5")
    client = ExplanationClient(llm=llm)

    text = await client.generate_solution(SolutionRequest(
        problem_statement="2x+5=15", student_profile=PROFILE_TEXT, language="English"
    ))

    assert text == "Final Answer: x = 5"
    assert llm.schemas == [SolutionOutput]
    system, human = llm.received[0]
    assert "ONLY in the specified language (English)" in system.content
    assert "solution in English now" in human.content
    assert PHOTO_INSTRUCTIONS not in human.content


async def test_solution_with_photo_mentions_image():
    llm = FakeChatModel()
    client = ExplanationClient(llm=llm)

    await client.generate_solution(SolutionRequest(
        problem_statement="solve the 19th question", photo_data_uri=PHOTO,
        student_profile=PROFILE_TEXT, language="Telugu"
    ))

    human = llm.received[0][-1]
    assert PHOTO_INSTRUCTIONS in human.content[0]["text"]


@pytest.mark.parametrize("is_refetch", [False, True])
async def test_telugu_solution_refetch_flag(is_refetch):
    llm = FakeChatModel(text="x విలువ 5")
    client = ExplanationClient(llm=llm)

    text = await client.generate_telugu_solution(TeluguSolutionRequest(
        problem_statement="2x+5=15", student_profile=PROFILE_TEXT, is_refetch=is_refetch
    ))

    assert text == "x విలువ 5"
    system = llm.received[0][0]
    assert (REFETCH_INSTRUCTIONS in system.content) is is_refetch
    assert "Tanglish" in system.content


def test_language_is_validated():
    with pytest.raises(ValueError):
        SolutionRequest(problem_statement="2x=4", student_profile=PROFILE_TEXT, language="French")


# ----------------------------------------------------------------------------
# failures
# ----------------------------------------------------------------------------

async def test_transport_errors_become_service_errors():
    cause = ConnectionError("503 Service Unavailable")
    client = ExplanationClient(llm=FakeChatModel(error=cause))

    with pytest.raises(ExplanationServiceError) as excinfo:
        await client.generate_explanation(explanation_request())

    assert excinfo.value.__cause__ is cause


async def test_empty_answer_is_an_error():
    client = ExplanationClient(llm=FakeChatModel(text="   "))
    with pytest.raises(ExplanationServiceError):
        await client.generate_explanation(explanation_request())


async def test_malformed_answer_is_an_error():
    client = ExplanationClient(llm=FakeChatModel(raw={"explanation": "not parsed"}))
    with pytest.raises(ExplanationServiceError):
        await client.generate_explanation(explanation_request())

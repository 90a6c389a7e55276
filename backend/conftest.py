"""
Shared fixtures: fakes for the explanation service, the chat model and Redis.
"""

import asyncio
import base64
import io
import os
import sys
from typing import Optional

import pytest
from PIL import Image

sys.path.insert(0, os.path.dirname(__file__))

from profiles import get_profile
from session import SessionController


class FakeExplanationClient:
    """
    Stands in for ExplanationClient. Queued items are returned in order;
    an Exception instance in the queue is raised instead. Setting `gate`
    holds every call until the event is set.
    """

    def __init__(self, explanations=None, solutions=None):
        self.explanations = list(explanations or [])
        self.solutions = dict(solutions or {})
        self.calls = []
        self.gate: Optional[asyncio.Event] = None

    async def _respond(self, kind, request, item):
        self.calls.append((kind, request))
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(item, Exception):
            raise item
        return item

    async def generate_explanation(self, request):
        item = self.explanations.pop(0) if self.explanations else f"Explanation {len(self.calls) + 1}"
        return await self._respond("explanation", request, item)

    async def generate_solution(self, request):
        item = self.solutions.get(request.language, f"{request.language} solution")
        return await self._respond("solution", request, item)

    async def generate_telugu_solution(self, request):
        item = self.solutions.get("Telugu", "Telugu solution")
        return await self._respond("telugu_solution", request, item)


class FakeStructuredModel:
    def __init__(self, owner, schema):
        self.owner = owner
        self.schema = schema

    async def ainvoke(self, messages):
        self.owner.received.append(messages)
        if self.owner.error is not None:
            raise self.owner.error
        if self.owner.raw is not None:
            return self.owner.raw
        field = next(iter(self.schema.model_fields))
        return self.schema(**{field: self.owner.text})


class FakeChatModel:
    """Minimal chat model exposing with_structured_output(...).ainvoke(...)."""

    def __init__(self, text="Final Answer: x = 5", error=None, raw=None):
        self.text = text
        self.error = error
        self.raw = raw
        self.schemas = []
        self.received = []

    def with_structured_output(self, schema):
        self.schemas.append(schema)
        return FakeStructuredModel(self, schema)


class FakePipeline:
    def __init__(self, store):
        self.store = store
        self.ops = []

    def get(self, key):
        self.ops.append(("get", key, None))

    def set(self, key, value, ex=None):
        self.ops.append(("set", key, value))

    async def execute(self):
        results = []
        for op, key, value in self.ops:
            if op == "get":
                results.append(self.store.get(key))
            else:
                self.store[key] = value
                results.append(True)
        self.ops = []
        return results


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.closed = False

    def pipeline(self):
        return FakePipeline(self.store)

    async def ping(self):
        return True

    async def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    async def aclose(self):
        self.closed = True


def make_data_uri(size=(200, 100), color=(255, 0, 0), fmt="PNG") -> str:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    mime = "image/png" if fmt == "PNG" else "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(buffer.getvalue()).decode('ascii')}"


@pytest.fixture
def fake_client():
    return FakeExplanationClient()


@pytest.fixture
def controller(fake_client):
    return SessionController(get_profile("deepak"), fake_client, session_id="test-session")


@pytest.fixture
def png_data_uri():
    return make_data_uri()

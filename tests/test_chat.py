import asyncio

import pytest

from sphere_harvey.chat import (
    EMPTY_FILES_MESSAGE,
    NO_RESPONSE_MESSAGE,
    UNREADABLE_FILE_MESSAGE,
    ChatOrchestrator,
    ChatSession,
    SessionBusyError,
    SessionNotFoundError,
    SessionRegistry,
)
from sphere_harvey.clients import ChatResponse, HarveyClientError
from sphere_harvey.context import PricingContext
from sphere_harvey.models import ContextInput, PresetContextEntry, PromptPreset
from sphere_harvey.stream import ResolutionEvent

from .conftest import FakeAssistant


@pytest.fixture
def session(storage):
    return ChatSession(context=PricingContext(storage))


async def test_detected_url_is_tracked_before_payload_is_built(session, assistant):
    orchestrator = ChatOrchestrator(assistant)

    reply = await orchestrator.ask(session, "How much is https://Zoom.us/pricing?")

    detected = session.context.items[0]
    assert detected.origin == "detected"
    assert detected.url == "https://zoom.us/pricing"
    request = assistant.requests[0]
    assert request.urls == [{"id": detected.id, "url": "https://zoom.us/pricing"}]
    assert request.question == "How much is https://Zoom.us/pricing?"
    assert reply.content == "Here is the answer."
    assert [message.role for message in session.messages] == ["user", "assistant"]
    assert session.state == "idle"
    assert session.question == ""


async def test_request_carries_unique_yaml_values(session, assistant):
    session.context.add(
        [
            ContextInput(kind="yaml", value="saasName: A", label="a.yaml", origin="user"),
            ContextInput(kind="yaml", value="saasName: B", label="b.yaml", origin="preset"),
        ]
    )

    await ChatOrchestrator(assistant).ask(session, "Compare them")
    await session.context.flush()

    assert assistant.requests[0].yamls == ["saasName: A", "saasName: B"]
    assert assistant.requests[0].to_payload()["pricing_yamls"] == ["saasName: A", "saasName: B"]


async def test_blank_question_is_rejected(session, assistant):
    with pytest.raises(ValueError):
        await ChatOrchestrator(assistant).ask(session, "   ")
    assert session.messages == []
    assert assistant.requests == []


async def test_failed_cycle_appends_error_and_stalls_pending_urls(session):
    assistant = FakeAssistant(error=HarveyClientError("upstream timeout"))
    session.add_url("https://a.com/pricing")

    reply = await ChatOrchestrator(assistant).ask(session, "What does it cost?")

    assert reply.role == "assistant"
    assert reply.content == "Error: upstream timeout"
    assert session.context.items[0].transform == "stalled"
    assert session.state == "idle"


async def test_agent_urls_are_added_after_answer(session):
    response = ChatResponse(
        answer="Done",
        plan={"actions": [{"pricing_url": "https://slack.com/pricing"}]},
        result={"source": "https://zoom.us/pricing"},
    )
    assistant = FakeAssistant(response=response)

    reply = await ChatOrchestrator(assistant).ask(session, "Compare https://zoom.us/pricing with Slack")

    assert reply.metadata == {"plan": response.plan, "result": response.result}
    origins = [(item.origin, item.url, item.transform) for item in session.context]
    assert origins == [
        ("detected", "https://zoom.us/pricing", "pending"),
        ("agent", "https://slack.com/pricing", "not-started"),
    ]


async def test_missing_answer_uses_placeholder(session):
    assistant = FakeAssistant(response=ChatResponse(answer=None))

    reply = await ChatOrchestrator(assistant).ask(session, "Hello")

    assert reply.content == NO_RESPONSE_MESSAGE
    assert reply.metadata is None


async def test_second_question_while_in_flight_is_rejected(session):
    release = asyncio.Event()

    class SlowAssistant(FakeAssistant):
        async def chat(self, request):
            await release.wait()
            return await super().chat(request)

    orchestrator = ChatOrchestrator(SlowAssistant())
    first = asyncio.create_task(orchestrator.ask(session, "First"))
    await asyncio.sleep(0)

    assert session.is_submit_disabled
    with pytest.raises(SessionBusyError):
        await orchestrator.ask(session, "Second")
    with pytest.raises(SessionBusyError):
        session.new_conversation()

    release.set()
    await first
    assert len(session.messages) == 2


def test_available_detected_ignores_tracked_urls(session):
    session.add_url("https://a.com/")
    session.question = "see https://a.com/ and https://b.com/."

    assert session.available_detected() == ["https://b.com/"]


async def test_attach_files_skips_empty_documents(session, storage):
    added = session.attach_files([("a.yaml", "saasName: A"), ("empty.yaml", "  ")])
    await session.context.flush()

    assert [item.label for item in added] == ["a.yaml"]
    assert session.messages[-1].content == EMPTY_FILES_MESSAGE
    assert storage.uploads == [(f"{added[0].id}.yaml", "saasName: A")]


async def test_attach_paths_reads_files(session, tmp_path):
    path = tmp_path / "zoom.yaml"
    path.write_text("saasName: Zoom\n", encoding="utf-8")

    added = await session.attach_paths([path])
    await session.context.flush()

    assert added[0].label == "zoom.yaml"
    assert added[0].value == "saasName: Zoom"


async def test_attach_paths_reports_unreadable_files(session, tmp_path):
    added = await session.attach_paths([tmp_path / "missing.yaml"])

    assert added == []
    assert session.messages[-1].content == UNREADABLE_FILE_MESSAGE


async def test_apply_preset_sets_question_and_context(session):
    preset = PromptPreset(
        question="Which plan fits a team of 10?",
        context=[PresetContextEntry(kind="yaml", label="Zoom", value="saasName: Zoom")],
    )

    added = session.apply_preset(preset)
    await session.context.flush()

    assert session.question == preset.question
    assert [item.origin for item in added] == ["preset"]


async def test_new_conversation_keeps_stored_yaml(session, assistant, storage):
    session.attach_files([("a.yaml", "saasName: A")])
    await ChatOrchestrator(assistant).ask(session, "Hi")

    session.new_conversation()
    await session.context.flush()

    assert session.messages == []
    assert len(session.context) == 0
    assert storage.deletes == []


async def test_registry_routes_resolution_events(storage):
    updates = []
    registry = SessionRegistry(storage_factory=lambda: storage, on_context_update=lambda s, i: updates.append((s.id, i)))
    first = registry.create()
    second = registry.create()
    item = first.add_url("https://a.com/")

    resolved = registry.apply_resolution(ResolutionEvent(id=item.id, yaml_content="saasName: A"))

    assert [entry.id for entry in resolved] == [item.id]
    assert updates == [(first.id, resolved[0])]
    assert len(second.context) == 0
    assert registry.apply_resolution(ResolutionEvent(id="unknown", yaml_content="x")) == []


async def test_registry_discard_clears_context(storage):
    registry = SessionRegistry(storage_factory=lambda: storage)
    session = registry.create()
    added = session.attach_files([("a.yaml", "saasName: A")])

    registry.discard(session.id)
    await registry.flush()
    await session.context.flush()

    assert len(registry) == 0
    assert storage.deletes == [f"{added[0].id}.yaml"]
    with pytest.raises(SessionNotFoundError):
        registry.get(session.id)

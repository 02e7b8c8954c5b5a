import asyncio
import base64
import json
from types import SimpleNamespace

import pytest

from backend.app.errors import MalformedExtractionOutput
from backend.app.llm import (
    LlmClarificationSummarizer,
    LlmExtractionService,
    build_extraction_messages,
    create_chat_llm,
)
from backend.app.services.capabilities import (
    MODE_CREATING,
    MODE_EDITING,
    Attachment,
    ExtractionRequest,
)


class FakeChatModel:
    def __init__(self, content):
        self.content = content
        self.invocations: list = []

    async def ainvoke(self, messages):
        self.invocations.append(messages)
        return SimpleNamespace(content=self.content)


def _request(**overrides) -> ExtractionRequest:
    values = dict(text="50 pcs pipe OD 10in", mode=MODE_CREATING, project_name="Gulf line")
    values.update(overrides)
    return ExtractionRequest(**values)


def test_creating_prompt_has_no_current_items():
    system, human = build_extraction_messages(_request())

    assert "MODE: CREATING NEW LIST" in system.content
    assert "Extract all line items from scratch." in system.content
    assert 'language: "en"' in system.content
    text = human.content[0]["text"]
    assert '"""50 pcs pipe OD 10in"""' in text
    assert "Project Name Context: Gulf line" in text
    assert "CURRENT LINE ITEMS" not in text


def test_editing_prompt_embeds_current_items():
    items = [{"item_id": "a", "line": 1, "description": "Pipe"}]
    system, human = build_extraction_messages(
        _request(mode=MODE_EDITING, current_items=items, project_name=None, language="es")
    )

    assert "MODE: EDITING EXISTING LIST" in system.content
    assert "Preserve existing IDs for unchanged items." in system.content
    assert 'language: "es"' in system.content
    text = human.content[0]["text"]
    assert "Project Name Context: N/A" in text
    assert "[CURRENT LINE ITEMS DATA - APPLY CHANGES TO THIS LIST]" in text
    assert json.dumps(items, indent=2) in text


def test_attachments_become_content_blocks():
    attachments = [
        Attachment("drawing.png", "image/png", b"\x89PNG"),
        Attachment("datasheet.pdf", "application/pdf", b"%PDF"),
        Attachment("bom.csv", "text/csv", b"od,wt\n10,0.5"),
    ]
    _, human = build_extraction_messages(_request(attachments=attachments))

    image, pdf, csv = human.content[1:]
    assert image == {
        "type": "image",
        "source_type": "base64",
        "data": base64.b64encode(b"\x89PNG").decode("ascii"),
        "mime_type": "image/png",
    }
    assert pdf["type"] == "file"
    assert pdf["mime_type"] == "application/pdf"
    assert pdf["filename"] == "datasheet.pdf"
    assert csv == {"type": "text", "text": "[ATTACHED FILE bom.csv]:\nod,wt\n10,0.5"}


def test_extraction_parses_fenced_json():
    llm = FakeChatModel('```json\n{"project_name": "P1", "line_items": []}\n```')
    service = LlmExtractionService(llm)

    payload = asyncio.run(service.extract(_request()))

    assert payload == {"project_name": "P1", "line_items": []}
    assert len(llm.invocations) == 1


def test_extraction_accepts_content_blocks():
    llm = FakeChatModel([{"type": "text", "text": '{"line_items": [{"description": "Pipe"}]}'}])
    payload = asyncio.run(LlmExtractionService(llm).extract(_request()))
    assert payload["line_items"][0]["description"] == "Pipe"


@pytest.mark.parametrize("content", ["", "no json here", "[1, 2]", "{broken"])
def test_extraction_rejects_non_objects(content):
    service = LlmExtractionService(FakeChatModel(content))
    with pytest.raises(MalformedExtractionOutput):
        asyncio.run(service.extract(_request()))


def test_summarizer_sends_state_and_action():
    llm = FakeChatModel("  I've added the new specs.  ")
    summarizer = LlmClarificationSummarizer(llm)
    summary = {"item_count": 1, "items_sample": ["50 pcs Pipe"]}

    message = asyncio.run(summarizer.summarize(summary, "add pipe", "fr"))

    assert message == "I've added the new specs."
    system, human = llm.invocations[0]
    assert 'confirmation message in "fr"' in system.content
    assert human.content == (
        'Updated RFQ State: {"item_count":1,"items_sample":["50 pcs Pipe"]}\n\nUser Action: add pipe'
    )


def test_summarizer_rejects_empty_reply():
    with pytest.raises(ValueError):
        asyncio.run(LlmClarificationSummarizer(FakeChatModel("   ")).summarize({}, "x", "en"))


def test_create_chat_llm_validates_provider():
    with pytest.raises(ValueError):
        create_chat_llm(provider="unknown", model="m", temperature=0.0, top_p=1.0)
    with pytest.raises(ValueError):
        create_chat_llm(provider="openai", model="gpt-4o-mini", temperature=0.0, top_p=1.0, api_key=None)

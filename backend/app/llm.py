import base64
import json
import logging
from textwrap import dedent
from typing import Any, Dict, List

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.prompts import PromptTemplate

from backend.app.error_messages import malformed_extraction_message
from backend.app.errors import MalformedExtractionOutput
from backend.app.services.capabilities import Attachment, ExtractionRequest
from backend.app.utils import message_text, parse_json_object

logger = logging.getLogger("crontal.llm")

_TEXT_MIME_TYPES = {"text/plain", "text/csv", "application/json", "text/markdown"}


def create_chat_llm(
    provider: str,
    model: str,
    temperature: float,
    top_p: float,
    api_key: str | None = None,
    base_url: str | None = None,
    timeout: float | None = None,
    json_mode: bool = False,
):
    provider = provider.lower()
    if provider == "openai":
        if not api_key:
            raise ValueError("OPENAI_API_KEY is missing, please set it as an environment variable.")
        from langchain_openai import ChatOpenAI
        model_kwargs = {"response_format": {"type": "json_object"}} if json_mode else {}
        return ChatOpenAI(
            model=model,
            temperature=temperature,
            top_p=top_p,
            api_key=api_key,
            timeout=timeout,
            model_kwargs=model_kwargs,
        )
    elif provider == "ollama":
        from langchain_ollama import ChatOllama
        return ChatOllama(
            model=model,
            temperature=temperature,
            top_p=top_p,
            base_url=base_url,
            format="json" if json_mode else None,
        )
    elif provider == "google":
        if not api_key:
            raise ValueError("GOOGLE_API_KEY is missing, please set it as an environment variable.")
        from langchain_google_genai import ChatGoogleGenerativeAI
        kwargs: Dict[str, Any] = {"response_mime_type": "application/json"} if json_mode else {}
        return ChatGoogleGenerativeAI(
            model=model,
            temperature=temperature,
            top_p=top_p,
            google_api_key=api_key,
            timeout=timeout,
            **kwargs,
        )
    else:
        raise ValueError(f"Unsupported MODEL_PROVIDER: {provider}")


# ---------- Extraction ----------
EXTRACTION_PROMPT = PromptTemplate(
    input_variables=["mode", "tasks", "language"],
    template=dedent(
        """\
        You are Crontal's expert procurement AI. Your role is to extract or modify structured RFQ data.

        MODE: {mode}

        YOUR TASKS:
        1. Analyze the text input and any files.
        2. {tasks}

        3. DIMENSION HANDLING:
           - You MUST split dimensions into:
             * OD (Outer Diameter)
             * WT (Wall Thickness)
             * Length
           - Normalize units to: 'mm', 'm', 'in', 'ft', 'pcs'.

        4. COMMERCIAL TERMS:
           - Extract Destination, Incoterm, Payment Terms if mentioned.

        OUTPUT FORMAT:
        - Return ONLY valid JSON with this shape:
          {{"project_name": string|null,
            "commercial": {{"destination": string|null, "incoterm": string|null,
                            "payment_terms": string|null, "other_requirements": string|null}},
            "line_items": [{{"item_id": string, "description": string, "product_type": string|null,
                             "material_grade": string|null,
                             "size": {{"od_val": number|null, "od_unit": string|null,
                                       "wt_val": number|null, "wt_unit": string|null,
                                       "len_val": number|null, "len_unit": string|null}},
                             "quantity": number|null, "uom": string|null}}]}}
        - If inferring text, use language: "{language}".
        """
    ),
)

CREATE_TASKS = "Extract all line items from scratch."
EDIT_TASKS = dedent(
    """\
    The user wants to MODIFY the "Current Line Items" provided.
           - IF user says "Delete line X" or "Remove item X": Exclude it from the returned list.
           - IF user says "Change quantity/grade/size...": Update the specific item.
           - IF user provides new specs: Append them as new items.
           - ALWAYS return the COMPLETE, valid list of items after applying changes.
           - Preserve existing IDs for unchanged items."""
)


def _attachment_block(attachment: Attachment) -> Dict[str, Any]:
    mime_type = (attachment.mime_type or "application/octet-stream").lower()
    if mime_type in _TEXT_MIME_TYPES:
        text = attachment.data.decode("utf-8", errors="replace")
        return {"type": "text", "text": f"[ATTACHED FILE {attachment.filename}]:\n{text}"}
    data = base64.b64encode(attachment.data).decode("ascii")
    if mime_type.startswith("image/"):
        return {"type": "image", "source_type": "base64", "data": data, "mime_type": mime_type}
    return {
        "type": "file",
        "source_type": "base64",
        "data": data,
        "mime_type": mime_type,
        "filename": attachment.filename,
    }


def build_extraction_messages(request: ExtractionRequest) -> List[Any]:
    system = EXTRACTION_PROMPT.format(
        mode="EDITING EXISTING LIST" if request.is_editing else "CREATING NEW LIST",
        tasks=EDIT_TASKS if request.is_editing else CREATE_TASKS,
        language=request.language,
    )
    prompt_text = (
        f'USER REQUEST:\n"""{request.text}"""\n\n'
        f"Project Name Context: {request.project_name or 'N/A'}\n"
    )
    if request.is_editing:
        prompt_text += (
            "\n\n[CURRENT LINE ITEMS DATA - APPLY CHANGES TO THIS LIST]:\n"
            f"{json.dumps(request.current_items, indent=2, ensure_ascii=False)}\n"
        )
    content: List[Dict[str, Any]] = [{"type": "text", "text": prompt_text}]
    content.extend(_attachment_block(att) for att in request.attachments)
    return [SystemMessage(content=system), HumanMessage(content=content)]


class LlmExtractionService:
    """Structured extraction backed by a LangChain chat model."""

    def __init__(self, llm, debug: bool = False):
        self.llm = llm
        self.debug = debug

    async def extract(self, request: ExtractionRequest) -> Dict[str, Any]:
        messages = build_extraction_messages(request)
        response = await self.llm.ainvoke(messages)
        text = message_text(getattr(response, "content", response))
        if self.debug:
            logger.debug("Extraction raw output: %s", text)
        try:
            return parse_json_object(text)
        except ValueError as exc:
            raise MalformedExtractionOutput(malformed_extraction_message([str(exc)])) from exc


# ---------- Clarification ----------
CLARIFY_PROMPT = PromptTemplate(
    input_variables=["language"],
    template=dedent(
        """\
        You are Crontal's RFQ assistant.
        Goal: Confirm the user's action (edit/delete/add) and summarize the current state of the RFQ.
        Input Context: The table has ALREADY been updated by the parsing engine.
        Your job is just to generate a polite confirmation message in "{language}".
        Example: "I've removed line 3 as requested." or "I've added the new specs."
        Keep it short.
        """
    ),
)


class LlmClarificationSummarizer:
    def __init__(self, llm):
        self.llm = llm

    async def summarize(self, summary: Dict[str, Any], user_message: str, lang: str) -> str:
        state = json.dumps(summary, separators=(",", ":"), ensure_ascii=False)
        messages = [
            SystemMessage(content=CLARIFY_PROMPT.format(language=lang)),
            HumanMessage(content=f"Updated RFQ State: {state}\n\nUser Action: {user_message}"),
        ]
        response = await self.llm.ainvoke(messages)
        text = message_text(getattr(response, "content", response)).strip()
        if not text:
            raise ValueError("Summarizer returned an empty message")
        return text

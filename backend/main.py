# main.py
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv
from fastapi import Body, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

BASE_DIR = Path(__file__).resolve().parent

# .env before reading any settings
load_dotenv(BASE_DIR / ".env")

from backend.app.errors import ServiceError, UnknownRfq  # noqa: E402
from backend.app.services.capabilities import Attachment  # noqa: E402
from backend.app.services.rfq_service import (  # noqa: E402
    RfqServiceContext,
    clarify,
    get_rfq,
    list_quotes,
    parse_rfq,
    submit_quote,
)
from backend.store import create_stores  # noqa: E402


# ---------- Logging ----------
logger = logging.getLogger("crontal")
if not logger.handlers:
    logging.basicConfig(level=logging.INFO)

# ---------- ENV ----------
DEBUG = os.getenv("DEBUG", "0") == "1"
MODEL_PROVIDER   = os.getenv("MODEL_PROVIDER", "openai").lower()
MODEL_EXTRACT    = os.getenv("MODEL_EXTRACT", "gpt-4o-mini")
MODEL_CLARIFY    = os.getenv("MODEL_CLARIFY", MODEL_EXTRACT)
OPENAI_API_KEY   = (os.getenv("OPENAI_API_KEY") or "").strip() or None
GOOGLE_API_KEY   = (os.getenv("GOOGLE_API_KEY") or "").strip() or None
OLLAMA_BASE_URL  = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
EXTRACTION_TIMEOUT = max(1.0, float(os.getenv("EXTRACTION_TIMEOUT", "60")))
CLARIFY_TIMEOUT    = max(1.0, float(os.getenv("CLARIFY_TIMEOUT", "20")))
DEFAULT_LANG     = (os.getenv("DEFAULT_LANG", "en") or "en").strip()
SKIP_LLM_SETUP   = os.getenv("SKIP_LLM_SETUP", "0") == "1"
RFQ_DB_URL       = (os.getenv("RFQ_DB_URL") or "").strip() or None

_origins_env = os.getenv("FRONTEND_ORIGINS", "")
ALLOWED_ORIGINS = [origin.strip() for origin in _origins_env.split(",") if origin.strip()] or ["*"]

logger.info(
    "Flags: MODEL_PROVIDER=%s EXTRACTION_TIMEOUT=%.0fs CLARIFY_TIMEOUT=%.0fs SKIP_LLM_SETUP=%s",
    MODEL_PROVIDER,
    EXTRACTION_TIMEOUT,
    CLARIFY_TIMEOUT,
    SKIP_LLM_SETUP,
)

# ---------- LLMs ----------
extractor = summarizer = None

if not SKIP_LLM_SETUP:
    from backend.app.llm import (
        LlmClarificationSummarizer,
        LlmExtractionService,
        create_chat_llm,
    )

    _api_key = GOOGLE_API_KEY if MODEL_PROVIDER == "google" else OPENAI_API_KEY
    llm_extract = create_chat_llm(
        provider=MODEL_PROVIDER,
        model=MODEL_EXTRACT,
        temperature=0.0,
        top_p=0.8,
        api_key=_api_key,
        base_url=OLLAMA_BASE_URL,
        timeout=EXTRACTION_TIMEOUT,
        json_mode=True,
    )
    llm_clarify = create_chat_llm(
        provider=MODEL_PROVIDER,
        model=MODEL_CLARIFY,
        temperature=0.3,
        top_p=0.9,
        api_key=_api_key,
        base_url=OLLAMA_BASE_URL,
        timeout=CLARIFY_TIMEOUT,
    )
    extractor = LlmExtractionService(llm_extract, debug=DEBUG)
    summarizer = LlmClarificationSummarizer(llm_clarify)


# ---------- Service context (stores built on first use / startup) ----------
SERVICE_CONTEXT: RfqServiceContext | None = None


def _build_service_context() -> RfqServiceContext:
    rfq_store, quote_store = create_stores(RFQ_DB_URL)
    return RfqServiceContext(
        extractor=extractor,
        summarizer=summarizer,
        rfq_store=rfq_store,
        quote_store=quote_store,
        logger=logging.getLogger("crontal.rfq"),
        extraction_timeout=EXTRACTION_TIMEOUT,
        clarify_timeout=CLARIFY_TIMEOUT,
        default_language=DEFAULT_LANG,
        skip_llm_setup=SKIP_LLM_SETUP,
        debug=DEBUG,
    )


def _get_service_context() -> RfqServiceContext:
    global SERVICE_CONTEXT
    if SERVICE_CONTEXT is None:
        SERVICE_CONTEXT = _build_service_context()
    return SERVICE_CONTEXT


def _close_service_context() -> None:
    global SERVICE_CONTEXT
    if SERVICE_CONTEXT is None:
        return
    SERVICE_CONTEXT.rfq_store.close()
    SERVICE_CONTEXT.quote_store.close()
    SERVICE_CONTEXT = None


def _error_response(exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


# ---------- FastAPI ----------


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    _get_service_context()
    logger.info("Startup: MODEL_PROVIDER=%s EXTRACT=%s CLARIFY=%s", MODEL_PROVIDER, MODEL_EXTRACT, MODEL_CLARIFY)
    logger.info("Startup: store=%s ALLOWED_ORIGINS=%s", "sql" if RFQ_DB_URL else "memory", ALLOWED_ORIGINS)
    yield
    _close_service_context()


app = FastAPI(title="Crontal RFQ Backend", lifespan=_lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Root (Health)
@app.get("/")
def root():
    return {"ok": True, "service": "crontal-backend", "health": "/api/health", "docs": "/docs"}


@app.get("/api/health")
def api_health():
    return {"ok": True, "time": datetime.now(timezone.utc).isoformat()}


# ---- API: Parse / Edit RFQ ----
@app.post("/api/buyer/parse")
async def api_buyer_parse(
    text: str = Form(""),
    projectName: Optional[str] = Form(None),
    currentLineItems: Optional[str] = Form(None),
    lang: Optional[str] = Form(None),
    rfqId: Optional[str] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
):
    attachments = []
    for upload in files or []:
        attachments.append(
            Attachment(
                filename=upload.filename or "upload",
                mime_type=upload.content_type or "application/octet-stream",
                data=await upload.read(),
            )
        )
    try:
        return await parse_rfq(
            text=text,
            project_name=projectName,
            current_line_items=currentLineItems,
            lang=lang,
            files=attachments,
            rfq_id=rfqId,
            ctx=_get_service_context(),
        )
    except ServiceError as exc:
        logger.error("Parse Error: %s", exc.message)
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Parse Error")
        return JSONResponse(status_code=500, content={"error": str(exc)})


# ---- API: Clarify (never fails) ----
@app.post("/api/buyer/clarify")
async def api_buyer_clarify(request: Request):
    try:
        payload = await request.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    return await clarify(
        rfq=payload.get("rfq"),
        user_message=payload.get("userMessage"),
        lang=payload.get("lang"),
        ctx=_get_service_context(),
    )


# ---- API: RFQ lookup ----
@app.get("/api/rfq/{rfq_id}")
def api_get_rfq(rfq_id: str):
    try:
        return get_rfq(rfq_id=rfq_id, ctx=_get_service_context())
    except UnknownRfq as exc:
        return _error_response(exc)


# ---- API: Quotes ----
@app.post("/api/rfqs/{rfq_id}/quotes")
def api_submit_quote(rfq_id: str, payload: Any = Body(None)):
    return submit_quote(
        rfq_id=rfq_id,
        payload={} if payload is None else payload,
        ctx=_get_service_context(),
    )


@app.get("/api/rfqs/{rfq_id}/quotes")
def api_list_quotes(rfq_id: str):
    return list_quotes(rfq_id=rfq_id, ctx=_get_service_context())


# ---------- Local start ----------
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "3000"))
    uvicorn.run("backend.main:app", host="0.0.0.0", port=port, reload=False)

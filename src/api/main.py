from contextlib import asynccontextmanager
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from mentorchat.chat import ChatService
from mentorchat.config import settings
from mentorchat.schemas import Chat, ChatRequest, UIMessage, new_id
import logging

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests may install their own service before startup
    owned = getattr(app.state, "chat_service", None) is None
    if owned:
        try:
            app.state.chat_service = ChatService.from_settings(settings)
        except Exception as e:
            logger.error(f"Startup error: {e}")
            raise
    yield
    if owned:
        await app.state.chat_service.aclose()
        app.state.chat_service = None
        logger.info("🛑 Hosted clients closed")


app = FastAPI(title="Mentor Chat", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Chat-Id"],
)


def _service(request: Request) -> ChatService:
    service = getattr(request.app.state, "chat_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Chat service is not ready")
    return service


def _require_user(user_id: str | None) -> str:
    if not user_id:
        raise HTTPException(status_code=401, detail="Sign in to see saved chats")
    return user_id


@app.get("/health")
def health(request: Request):
    return {
        "ok": getattr(request.app.state, "chat_service", None) is not None,
        "llm_provider": settings.llm_provider,
        "vector_store": settings.vector_store,
    }


@app.post("/chat")
async def chat(req: ChatRequest, request: Request, x_user_id: str | None = Header(default=None)):
    service = _service(request)
    chat_id = req.chat_id or new_id()
    stream = service.submit_user_message(chat_id, req.content, user_id=x_user_id)

    # Pull the first delta here so rewrite/search/auth failures become a 500
    # instead of a truncated stream
    try:
        first = await stream.__anext__()
    except StopAsyncIteration:
        first = None
    except RuntimeError as e:
        logger.error(f"Chat turn failed for {chat_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    async def body():
        try:
            if first is None:
                return
            yield first
            async for delta in stream:
                yield delta
        finally:
            # releases the chat lock and the model stream on client disconnect
            await stream.aclose()

    return StreamingResponse(body(), media_type="text/plain; charset=utf-8", headers={"X-Chat-Id": chat_id})


@app.get("/chats", response_model=list[Chat])
def list_chats(request: Request, x_user_id: str | None = Header(default=None)):
    service = _service(request)
    user_id = _require_user(x_user_id)
    if service.repository is None:
        return []
    return service.repository.get_chats(user_id)


@app.get("/chats/{chat_id}", response_model=Chat)
def get_chat(chat_id: str, request: Request, x_user_id: str | None = Header(default=None)):
    service = _service(request)
    user_id = _require_user(x_user_id)
    chat = service.repository.get_chat(chat_id, user_id) if service.repository else None
    if chat is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat


@app.get("/chats/{chat_id}/messages", response_model=list[UIMessage])
def get_chat_messages(chat_id: str, request: Request, x_user_id: str | None = Header(default=None)):
    service = _service(request)
    user_id = _require_user(x_user_id)
    messages = service.get_ui_state(chat_id, user_id)
    if messages is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return messages


@app.delete("/chats/{chat_id}")
def remove_chat(chat_id: str, request: Request, x_user_id: str | None = Header(default=None)):
    service = _service(request)
    user_id = _require_user(x_user_id)
    if service.repository is None or not service.repository.remove_chat(chat_id, user_id):
        raise HTTPException(status_code=404, detail="Chat not found")
    return {"ok": True}


@app.delete("/chats")
def clear_chats(request: Request, x_user_id: str | None = Header(default=None)):
    service = _service(request)
    user_id = _require_user(x_user_id)
    removed = service.repository.clear_chats(user_id) if service.repository else 0
    return {"ok": True, "removed": removed}

from pydantic import BaseModel
from dotenv import load_dotenv
import os

load_dotenv()


def _optional_int(name: str) -> int | None:
    value = os.getenv(name)
    return int(value) if value else None


class Settings(BaseModel):
    llm_provider: str = os.getenv("LLM_PROVIDER", "openai")
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")
    openai_embedding_model: str = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-ada-002")

    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.1")

    # "openai" (hosted) or "local" (sentence-transformers)
    embedding_provider: str = os.getenv("EMBEDDING_PROVIDER", "openai")
    local_embedding_model: str = os.getenv("LOCAL_EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2")

    # "supabase" (hosted) or "faiss" (local index in index_dir)
    vector_store: str = os.getenv("VECTOR_STORE", "supabase")
    supabase_url: str | None = os.getenv("SUPABASE_URL")
    supabase_service_role_key: str | None = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    supabase_table: str = os.getenv("SUPABASE_TABLE", "documents")
    supabase_query_name: str = os.getenv("SUPABASE_QUERY_NAME", "match_documents")

    docs_dir: str = os.getenv("DOCS_DIR", "./data")
    index_dir: str = os.getenv("INDEX_DIR", "./data/index")
    chats_dir: str = os.getenv("CHATS_DIR", "./data/chats")

    top_k: int = int(os.getenv("TOP_K", "4"))
    max_context_chars: int | None = _optional_int("MAX_CONTEXT_CHARS")
    chunk_size: int = int(os.getenv("CHUNK_SIZE", "1200"))
    chunk_overlap: int = int(os.getenv("CHUNK_OVERLAP", "200"))

    support_email: str = os.getenv("SUPPORT_EMAIL", "help@aplentify.com")
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "60"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()

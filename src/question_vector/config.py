from typing import List, Literal, Optional

from pydantic import AnyHttpUrl, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Inference model
    model_runtime: Literal["llama_cpp", "ollama"] = "llama_cpp"
    model_path: str = "models/nomic-embed-text-v1.5.f16.gguf"
    model_thread_count: int = 4
    model_context_size: int = 2048
    model_batch_size: int = 512
    embedding_dimension: int = 768
    embedding_probe_text: str = "test connection"

    ollama_base_url: AnyHttpUrl = "http://localhost:11434"
    ollama_model: str = "nomic-embed-text"
    ollama_timeout: float = 30.0

    # Inference limits
    inference_queue_depth: int = 64
    inference_enqueue_timeout: float = 5.0
    inference_item_timeout: Optional[float] = 30.0
    model_dispose_grace_period: float = 10.0

    # Search store
    opensearch_node: AnyHttpUrl = "https://localhost:9200"
    opensearch_username: str = "admin"
    opensearch_password: SecretStr = SecretStr("admin")
    opensearch_verify_certs: bool = False
    opensearch_request_timeout: float = 30.0
    opensearch_max_retries: int = 3
    store_operation_timeout: Optional[float] = None

    # Vector index
    index_name: str = "math-questions"
    index_similarity_metric: Literal["cosine", "l2"] = "cosine"
    index_metadata_fields: str = "difficulty,topic"
    index_refresh: Literal["false", "true", "wait_for"] = "false"

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        protected_namespaces=(),
    )

    @property
    def metadata_field_names(self) -> List[str]:
        """Parse the comma-separated metadata field list, e.g. "difficulty,topic"."""
        return [
            part.strip()
            for part in self.index_metadata_fields.split(",")
            if part.strip()
        ]


settings = Settings()

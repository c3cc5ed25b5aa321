"""Configuration management for codevec."""

import json
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

CONFIG_DIR_NAME = ".codevec"
CONFIG_FILE_NAME = "config.json"

# AST node kinds extracted as chunks when a language does not list its own.
DEFAULT_CHUNK_ON: Dict[str, List[str]] = {
    "go": [
        "function_declaration",
        "method_declaration",
        "type_declaration",
        "const_declaration",
        "var_declaration",
    ],
    "rust": [
        "function_item",
        "impl_item",
        "struct_item",
        "enum_item",
        "trait_item",
        "mod_item",
        "const_item",
        "type_item",
        "static_item",
        "macro_definition",
    ],
    "python": [
        "function_definition",
        "class_definition",
        "decorated_definition",
    ],
}


class LanguageConfig(BaseModel):
    """Per-language chunking configuration."""

    extensions: List[str] = Field(description="File extensions mapped to this language")
    grammar: Optional[str] = Field(
        default=None,
        description="tree-sitter-language-pack grammar name (defaults to the language name)",
    )
    chunk_on: Optional[List[str]] = Field(
        default=None, description="AST node kinds extracted as chunks"
    )

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        """Remove dots from file extensions."""
        return [ext.lstrip(".").lower() for ext in v]


def default_languages() -> Dict[str, LanguageConfig]:
    return {
        "go": LanguageConfig(extensions=["go"]),
        "rust": LanguageConfig(extensions=["rs"]),
        "python": LanguageConfig(extensions=["py"]),
    }


class EmbeddingConfig(BaseModel):
    """Configuration for the embedding provider."""

    provider: Literal["hash", "voyage-ai", "sentence-transformers"] = Field(
        default="sentence-transformers",
        description="Embedding provider: local model, VoyageAI API, or offline feature hashing",
    )
    dimension: int = Field(
        default=384, gt=0, description="Vector dimension shared by the whole store"
    )
    model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Model name for the local sentence-transformers provider",
    )


class VoyageAIConfig(BaseModel):
    """Configuration for VoyageAI embedding service.

    API documentation: https://docs.voyageai.com/
    """

    # API key is read from the VOYAGE_API_KEY environment variable
    api_endpoint: str = Field(
        default="https://api.voyageai.com/v1/embeddings",
        description="VoyageAI API endpoint URL",
    )
    model: str = Field(default="voyage-code-3", description="VoyageAI model name")
    timeout: int = Field(default=30, description="Request timeout in seconds")
    batch_size: int = Field(
        default=128,
        description="Maximum number of texts to send in a single batch request",
    )
    max_retries: int = Field(
        default=3, description="Maximum number of retries for failed requests"
    )
    retry_delay: float = Field(
        default=1.0, description="Initial delay between retries in seconds"
    )
    exponential_backoff: bool = Field(
        default=True, description="Use exponential backoff for retries"
    )


class HNSWConfig(BaseModel):
    """HNSW graph parameters for the vector index."""

    m: int = Field(
        default=16,
        description="Connections per layer (higher = more accurate, larger index)",
    )
    ef_construction: int = Field(
        default=200,
        description="Candidate list size while building (higher = better quality, slower inserts)",
    )
    ef_search: int = Field(
        default=64,
        description="Candidate list size while querying (higher = more accurate, slower)",
    )
    min_capacity: int = Field(
        default=1024, gt=0, description="Minimum number of slots allocated in the index"
    )


class Config(BaseModel):
    """Main configuration for codevec."""

    codebase_dir: Path = Field(default=Path("."), description="Directory to index")
    store_dir: Optional[Path] = Field(
        default=None,
        description="Where index.hnsw and metadata.json live (default: <codebase_dir>/.codevec/index)",
    )
    languages: Dict[str, LanguageConfig] = Field(default_factory=default_languages)
    exclude_dirs: List[str] = Field(
        default=[
            "node_modules",
            "venv",
            "__pycache__",
            "dist",
            "build",
            "target",
            "vendor",
        ],
        description="Directories to exclude from indexing",
    )
    max_file_size: int = Field(
        default=1048576, description="Maximum file size to index in bytes"
    )

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    voyage_ai: VoyageAIConfig = Field(default_factory=VoyageAIConfig)
    hnsw: HNSWConfig = Field(default_factory=HNSWConfig)

    @field_validator("codebase_dir", "store_dir", mode="before")
    @classmethod
    def convert_path(cls, v: Any) -> Any:
        """Convert string paths to Path objects."""
        if v is None or isinstance(v, Path):
            return v
        if isinstance(v, str):
            return Path(v)
        raise ValueError(f"Expected str or Path, got {type(v)}")

    @model_validator(mode="after")
    def resolve_chunk_on(self) -> "Config":
        """Fill in built-in chunk_on defaults and reject languages without any."""
        for name, language in self.languages.items():
            if language.chunk_on is None:
                defaults = DEFAULT_CHUNK_ON.get(name)
                if not defaults:
                    raise ValueError(
                        f"language '{name}' has no chunk_on and no built-in defaults; "
                        "add chunk_on to the config to specify which AST node kinds to extract"
                    )
                language.chunk_on = list(defaults)
            if language.grammar is None:
                language.grammar = name
        return self

    def resolved_store_dir(self) -> Path:
        if self.store_dir is not None:
            return self.store_dir
        return self.codebase_dir / CONFIG_DIR_NAME / "index"

    def language_for_extension(self, ext: str) -> Optional[str]:
        """Map a file extension (with or without dot) to a configured language name."""
        ext = ext.lstrip(".").lower()
        for name in sorted(self.languages):
            if ext in self.languages[name].extensions:
                return name
        return None

    def language_names(self) -> List[str]:
        """Names of all configured languages, sorted for stable output."""
        return sorted(self.languages)


class ConfigManager:
    """Manages configuration loading and saving."""

    DEFAULT_CONFIG_PATH = Path(CONFIG_DIR_NAME) / CONFIG_FILE_NAME

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._config: Optional[Config] = None

    @property
    def project_root(self) -> Path:
        """Directory containing the .codevec/ folder."""
        return self.config_path.parent.parent

    def load(self) -> Config:
        """Load configuration from file, or defaults rooted at the project when absent."""
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = json.load(f)

                for key in ("codebase_dir", "store_dir"):
                    if data.get(key) is not None:
                        data[key] = str(self._resolve_relative_path(data[key]))

                self._config = Config(**data)
            except Exception as e:
                raise ValueError(f"Failed to load config from {self.config_path}: {e}")
        else:
            self._config = Config(codebase_dir=self.project_root.resolve())

        return self._config

    def save(self, config: Optional[Config] = None) -> None:
        """Save configuration to file with paths relative to the project root."""
        if config is None:
            config = self._config

        if config is None:
            raise ValueError("No configuration to save")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.model_dump(mode="json")
        config_dict["codebase_dir"] = self._make_relative_to_config(config.codebase_dir)
        if config.store_dir is not None:
            config_dict["store_dir"] = self._make_relative_to_config(config.store_dir)

        with open(self.config_path, "w") as f:
            json.dump(config_dict, f, indent=2, sort_keys=True)
        self._config = config

    def get_config(self) -> Config:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            self.load()
        if self._config is None:
            raise RuntimeError("Failed to load configuration")
        return self._config

    def create_default_config(self, codebase_dir: Path = Path(".")) -> Config:
        """Create and save a default configuration for the given directory."""
        config = Config(codebase_dir=codebase_dir)
        self._config = config
        self.save()
        return config

    @staticmethod
    def find_config_path(start_dir: Optional[Path] = None) -> Optional[Path]:
        """Find .codevec/config.json by walking up the directory tree.

        Args:
            start_dir: Directory to start searching from (default: current directory)

        Returns:
            Path to config.json if found, None otherwise
        """
        current = (start_dir or Path.cwd()).resolve()

        for path in [current] + list(current.parents):
            config_path = path / CONFIG_DIR_NAME / CONFIG_FILE_NAME
            if config_path.exists():
                return config_path

        return None

    @classmethod
    def create_with_backtrack(cls, start_dir: Optional[Path] = None) -> "ConfigManager":
        """Create ConfigManager by finding config through directory backtracking.

        Falls back to <start_dir>/.codevec/config.json when nothing is found.
        """
        config_path = cls.find_config_path(start_dir)
        if config_path is None:
            start = (start_dir or Path.cwd()).resolve()
            config_path = start / CONFIG_DIR_NAME / CONFIG_FILE_NAME
        return cls(config_path)

    def _make_relative_to_config(self, path: Path) -> str:
        """Convert an absolute path to a path relative to the project root."""
        if not path.is_absolute():
            return path.as_posix()

        try:
            relative_path = path.resolve().relative_to(self.project_root.resolve())
            return relative_path.as_posix() if str(relative_path) != "." else "."
        except ValueError:
            # Outside the project: keep absolute
            return str(path.resolve())

    def _resolve_relative_path(self, path_str: str) -> Path:
        """Resolve a potentially relative path from config to an absolute path."""
        path = Path(path_str)
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()

"""
cuepoint.config - YAML config loading, model presets, validation.

Handles loading cuepoint.yaml from a project directory, applying embedding
model presets, and validating all tunable pipeline parameters.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from cuepoint.exceptions import ChunkingConfigInvalid, ConfigError
from cuepoint.retry import RetryPolicy

CONFIG_FILENAME = "cuepoint.yaml"


class AudioOptions(BaseModel):
    """Audio extraction and splitting parameters."""

    codec: str = "wav"
    sample_rate: int = Field(default=16000, gt=0)
    channels: int = Field(default=1, ge=1)
    max_segment_mb: float = Field(default=25.0, gt=0.0)
    timeout_seconds: float = Field(default=600.0, gt=0.0)

    @field_validator("codec")
    @classmethod
    def validate_codec(cls, v: str) -> str:
        valid = {"wav", "mp3"}
        if v not in valid:
            raise ValueError(f"codec must be one of: {valid}")
        return v


class TranscriptionOptions(BaseModel):
    """Transcription collaborator settings."""

    backend: str = "api"
    model: str = "whisper-1"
    language: str | None = None
    prompt: str | None = None
    timeout_seconds: float = Field(default=1800.0, gt=0.0)

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        valid = {"api", "faster", "mlx"}
        if v not in valid:
            raise ValueError(f"transcription backend must be one of: {valid}")
        return v


class ChunkOptions(BaseModel):
    """Word-count bounds for transcript chunks.

    Constructing an instance with a non-positive size, a negative overlap,
    ``min_words > target_words``, ``target_words > max_words`` or
    ``overlap_words >= min_words`` raises ChunkingConfigInvalid immediately.
    """

    target_words: int = 750
    min_words: int = 500
    max_words: int = 1000
    overlap_words: int = 100

    @model_validator(mode="after")
    def validate_bounds(self) -> ChunkOptions:
        bounds = {
            "min_words": self.min_words,
            "target_words": self.target_words,
            "max_words": self.max_words,
            "overlap_words": self.overlap_words,
        }
        if min(self.min_words, self.target_words, self.max_words) <= 0:
            raise ChunkingConfigInvalid("Chunk sizes must be positive", bounds)
        if self.overlap_words < 0:
            raise ChunkingConfigInvalid("overlap_words must not be negative", bounds)
        if not self.min_words <= self.target_words <= self.max_words:
            raise ChunkingConfigInvalid(
                "Chunk sizes must satisfy min_words <= target_words <= max_words", bounds
            )
        if self.overlap_words >= self.min_words:
            raise ChunkingConfigInvalid("overlap_words must be smaller than min_words", bounds)
        return self


class EmbeddingOptions(BaseModel):
    """Embedding model and batching parameters."""

    model: str = "text-embedding-ada-002"
    dimensions: int = Field(default=1536, gt=0)
    batch_size: int = Field(default=100, gt=0)
    batch_delay_seconds: float = Field(default=1.0, ge=0.0)
    cost_per_1k_tokens: float = Field(default=0.0001, ge=0.0)
    chars_per_token: int = Field(default=4, gt=0)
    timeout_seconds: float = Field(default=600.0, gt=0.0)


class PipelineOptions(BaseModel):
    """Orchestrator-level settings."""

    output_dir: Path = Path("output")
    cache_dir: Path | None = Path(".cuepoint/cache")
    max_concurrent_videos: int = Field(default=2, ge=1)
    stage_attempts: int = Field(default=2, ge=1)


class CuepointConfig(BaseModel):
    """Resolved configuration for a Cuepoint project."""

    project_name: str = "untitled"

    audio: AudioOptions = Field(default_factory=AudioOptions)
    transcription: TranscriptionOptions = Field(default_factory=TranscriptionOptions)
    chunking: ChunkOptions = Field(default_factory=ChunkOptions)
    embedding: EmbeddingOptions = Field(default_factory=EmbeddingOptions)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    pipeline: PipelineOptions = Field(default_factory=PipelineOptions)

    config_path: Path | None = None


MODEL_PRESETS: dict[str, dict[str, Any]] = {
    "text-embedding-ada-002": {"dimensions": 1536, "cost_per_1k_tokens": 0.0001},
    "text-embedding-3-small": {"dimensions": 1536, "cost_per_1k_tokens": 0.00002},
    "text-embedding-3-large": {"dimensions": 3072, "cost_per_1k_tokens": 0.00013},
}


def load_model_preset(model: str) -> dict[str, Any]:
    """Return dimension and cost defaults for a known embedding model.

    Unknown models get an empty preset, so their dimensions and cost must be
    set explicitly in cuepoint.yaml.
    """
    return dict(MODEL_PRESETS.get(model, {}))


def merge_config(project_config: dict[str, Any], defaults: dict[str, Any]) -> dict[str, Any]:
    """Merge project config over defaults. Nested sections merge key by key."""
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in defaults.items()}
    for key, value in project_config.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update({k: v for k, v in value.items() if v is not None})
        elif value is not None:
            merged[key] = value
    return merged


def load_config(project_dir: Path) -> CuepointConfig:
    """Load and validate configuration from a project directory.

    Raises:
        FileNotFoundError: If the project has no cuepoint.yaml
        ConfigError: If the file is not valid YAML or fails validation
        ChunkingConfigInvalid: If the chunk size bounds are inconsistent
    """
    config_file = project_dir / CONFIG_FILENAME
    if not config_file.exists():
        raise FileNotFoundError(f"No {CONFIG_FILENAME} found in {project_dir}")

    try:
        with open(config_file) as f:
            raw_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e
    if not isinstance(raw_config, dict):
        raise ConfigError(f"{config_file} must contain a mapping")

    model = (raw_config.get("embedding") or {}).get("model", EmbeddingOptions().model)
    defaults = {"embedding": load_model_preset(model)}

    merged = merge_config(raw_config, defaults)
    merged["config_path"] = config_file

    try:
        return CuepointConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_file}: {e}") from e


def create_default_config(project_name: str, model: str = "text-embedding-ada-002") -> dict[str, Any]:
    """Create a default config dict for a new project."""
    embedding = {"model": model, "batch_size": 100, "batch_delay_seconds": 1.0}
    embedding.update(load_model_preset(model))
    return {
        "project_name": project_name,
        "audio": {"codec": "wav", "sample_rate": 16000, "channels": 1, "max_segment_mb": 25},
        "transcription": {"backend": "api", "model": "whisper-1"},
        "chunking": {
            "target_words": 750,
            "min_words": 500,
            "max_words": 1000,
            "overlap_words": 100,
        },
        "embedding": embedding,
        "pipeline": {"output_dir": "output", "cache_dir": ".cuepoint/cache"},
    }


def write_config(config: dict[str, Any], path: Path) -> None:
    """Write configuration to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)

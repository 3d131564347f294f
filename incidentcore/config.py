"""Configuration management for the duplicate detection engine."""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError


class ScoringWeights(BaseModel):
    """Weights of the composite similarity score. Must sum to 1.0."""

    type: float = Field(default=0.30, ge=0.0, le=1.0)
    time: float = Field(default=0.20, ge=0.0, le=1.0)
    location: float = Field(default=0.20, ge=0.0, le=1.0)
    perpetrator: float = Field(default=0.10, ge=0.0, le=1.0)
    casualties: float = Field(default=0.10, ge=0.0, le=1.0)
    description: float = Field(default=0.10, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def weights_sum_to_one(self):
        total = sum(self.model_dump().values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Scoring weights must sum to 1.0, got {total:.3f}")
        return self


class ScoringConfig(BaseModel):
    """Similarity scorer operating point."""

    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    time_window_hours: float = Field(default=24.0, gt=0)
    location_radius_m: float = Field(default=5000.0, gt=0)
    location_name_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    cross_language_penalty: float = Field(default=0.7, ge=0.0, le=1.0)


class ClassifierConfig(BaseModel):
    """Duplicate classifier thresholds."""

    duplicate_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    similarity_match_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    strong_match_description_min: float = Field(default=0.4, ge=0.0, le=1.0)
    description_min: float = Field(default=0.5, ge=0.0, le=1.0)
    exact_match_radius_m: float = Field(default=100.0, gt=0)


class RetrievalConfig(BaseModel):
    """Candidate retrieval and corpus bucketing."""

    sync_window_hours: float = Field(default=12.0, gt=0)
    candidate_limit: int = Field(default=5, ge=1)
    bucket_components: List[str] = Field(
        default_factory=lambda: ["type", "day", "perpetrator", "coordinates", "description"]
    )
    coordinate_precision: int = Field(default=4, ge=0, le=8)
    description_prefix_length: int = Field(default=200, ge=1)

    @field_validator("bucket_components")
    @classmethod
    def known_components(cls, v: List[str]) -> List[str]:
        known = {"type", "day", "perpetrator", "coordinates", "description"}
        unknown = [c for c in v if c not in known]
        if unknown:
            raise ValueError(f"Unknown bucket components: {unknown}")
        if "type" not in v:
            raise ValueError("Bucket components must include 'type'")
        return v


class ConsolidationConfig(BaseModel):
    """Offline consolidation run defaults and safety gates."""

    dry_run: bool = True
    min_corpus_size: int = Field(default=10, ge=0)
    max_deletions_per_run: int = Field(default=100, ge=0)
    max_workers: int = Field(default=1, ge=1)
    apply_retries: int = Field(default=3, ge=1)


class CreationConfig(BaseModel):
    """Synchronous duplicate check on record creation."""

    check_duplicates: bool = True
    merge_duplicates: bool = True
    auto_merge_similarity_matches: bool = True
    max_merge_retries: int = Field(default=3, ge=1)
    location_radius_m: float = Field(default=100.0, gt=0)


class LoggingConfig(BaseModel):
    format: str = "text"
    level: str = "INFO"
    file: Optional[str] = None


class DedupConfig(BaseModel):
    """Complete configuration model."""

    database_path: str = "incidents.db"
    audit_db_path: str = "deduplication_audit.db"
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    consolidation: ConsolidationConfig = Field(default_factory=ConsolidationConfig)
    creation: CreationConfig = Field(default_factory=CreationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def sync_scoring(self) -> ScoringConfig:
        """Scoring config for the creation-time check (tight location radius)."""
        return self.scoring.model_copy(
            update={"location_radius_m": self.creation.location_radius_m}
        )


class ConfigManager:
    """Manages configuration loading and validation."""

    DEFAULT_CONFIG: Dict[str, Any] = DedupConfig().model_dump()

    ENV_OVERRIDES = {
        "INCIDENT_DB_PATH": ("database_path",),
        "INCIDENT_AUDIT_DB_PATH": ("audit_db_path",),
        "DEDUP_SIMILARITY_THRESHOLD": ("classifier", "duplicate_threshold"),
        "DEDUP_DRY_RUN": ("consolidation", "dry_run"),
        "DEDUP_MAX_DELETIONS": ("consolidation", "max_deletions_per_run"),
        "DEDUP_MIN_CORPUS_SIZE": ("consolidation", "min_corpus_size"),
        "DEDUP_MERGE_DUPLICATES": ("creation", "merge_duplicates"),
        "LOG_LEVEL": ("logging", "level"),
    }

    def __init__(
        self,
        config_path: Optional[str] = None,
        env_file: Optional[str] = None,
        load_env: bool = True,
    ):
        """Initialize config manager.

        Args:
            config_path: Path to a JSON config file. If None, uses defaults + env vars
            env_file: Optional .env file to load before reading the environment
            load_env: Whether to read a .env file at all
        """
        self.config_path = Path(config_path) if config_path else None
        self.env_file = env_file
        self.load_env = load_env
        self._config: Optional[DedupConfig] = None

    def load(self) -> DedupConfig:
        """Load configuration from defaults, file and environment."""
        if self._config:
            return self._config

        if self.env_file:
            load_dotenv(self.env_file)
        elif self.load_env:
            load_dotenv()

        config_dict = json.loads(json.dumps(self.DEFAULT_CONFIG))

        if self.config_path:
            if not self.config_path.exists():
                raise ConfigurationError(f"Config file not found: {self.config_path}")
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    file_config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in {self.config_path}: {e}", cause=e)
            config_dict = self._deep_merge(config_dict, file_config)

        config_dict = self._apply_env_overrides(config_dict)

        try:
            self._config = DedupConfig(**config_dict)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}", cause=e)
        return self._config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides."""
        for env_key, path in self.ENV_OVERRIDES.items():
            raw = os.getenv(env_key)
            if raw is None or raw == "":
                continue

            target = config
            for part in path[:-1]:
                target = target.setdefault(part, {})

            leaf = path[-1]
            if leaf == "dry_run" or leaf == "merge_duplicates":
                target[leaf] = raw.lower() in ("true", "1", "yes")
            else:
                # pydantic coerces numeric strings on validation
                target[leaf] = raw

        return config

    def save_template(self, path: str):
        """Write the default configuration to a JSON file."""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.DEFAULT_CONFIG, f, indent=2)

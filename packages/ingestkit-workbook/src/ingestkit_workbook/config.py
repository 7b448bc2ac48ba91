"""Configuration model for the ingestkit-workbook pipeline.

Provides ``WorkbookProcessorConfig`` with all tunable parameters and sensible
defaults.  Supports loading overrides from YAML or JSON files via the
``from_file()`` classmethod.  A single instance is built by the caller and
passed explicitly to every component.
"""

from __future__ import annotations

import json
import pathlib

from pydantic import BaseModel, Field


class WorkbookProcessorConfig(BaseModel):
    """All tunable parameters with sensible defaults.

    Override individual values via constructor kwargs or load a complete
    config from a file with ``WorkbookProcessorConfig.from_file(path)``.
    """

    # --- Identity ---
    parser_version: str = "ingestkit_workbook:1.0.0"
    tenant_id: str | None = None

    # --- Chunking ---
    chunk_size: int = Field(default=2000, ge=1)
    manifest_version: int = 1

    # --- Grid padding (room for later row/column insertion) ---
    row_padding: int = 50
    min_row_count: int = 200
    column_padding: int = 10
    min_column_count: int = 30

    # --- Grid defaults ---
    default_row_height: int = 25
    default_column_width: int = 100
    source_default_row_height: float = 15.0
    source_default_column_width: float = 10.0
    column_width_px_per_char: int = 7

    # --- Source limits ---
    max_file_size_mb: int = 50
    spool_max_memory_mb: int = 16

    # --- Assets ---
    extract_assets: bool = True
    main_sheet_patterns: list[str] = [
        "Desglose",
        "03 Desglose",
        "Desglose f",
        "03 Desglose f",
    ]
    asset_format: str = "WEBP"
    asset_quality: int = Field(default=85, ge=1, le=100)
    asset_max_dimension: int = Field(default=2048, ge=1)
    asset_upload_concurrency: int = Field(default=3, ge=1)
    write_main_sheet_data: bool = True

    # --- Chunk proxy ---
    chunk_cache_control: str = "public, max-age=31536000, immutable"
    allowed_key_prefixes: list[str] = []

    # --- Progress reporting ---
    progress_rows_scale: int = 50_000

    # --- Backend resilience ---
    backend_timeout_seconds: float = 30.0
    backend_max_retries: int = 2
    backend_backoff_base: float = 1.0

    # --- Logging / PII safety ---
    log_sample_data: bool = False

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @classmethod
    def from_file(cls, path: str) -> WorkbookProcessorConfig:
        """Load configuration from a YAML or JSON file.

        File format is detected by extension: ``.yaml`` / ``.yml`` for YAML,
        ``.json`` for JSON.  Any keys present in the file override the
        corresponding defaults; keys not present retain their defaults.

        Args:
            path: Filesystem path to the configuration file.

        Returns:
            A fully-populated ``WorkbookProcessorConfig`` instance.

        Raises:
            FileNotFoundError: If *path* does not exist.
            ValueError: If the file extension is not recognized.
            ImportError: If a YAML file is provided but ``pyyaml`` is not
                installed.
        """
        file_path = pathlib.Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        suffix = file_path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            try:
                import yaml  # type: ignore[import-untyped]
            except ImportError as exc:
                raise ImportError(
                    "pyyaml is required to load YAML config files. "
                    "Install it with: pip install 'ingestkit-workbook[yaml]'"
                ) from exc
            with open(file_path) as fh:
                data = yaml.safe_load(fh)
        elif suffix == ".json":
            with open(file_path) as fh:
                data = json.load(fh)
        else:
            raise ValueError(
                f"Unsupported config file extension '{suffix}'. "
                "Use .yaml, .yml, or .json."
            )

        if data is None:
            data = {}

        return cls(**data)

"""Configuration management for matching thresholds, fusion weights, and runtime limits."""
from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Mapping, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_WEIGHT_TOLERANCE = 1e-6

_WEIGHT_GROUPS = {
    "page fusion": ("visual_weight", "text_weight", "font_weight", "position_weight"),
    "text similarity": ("jaccard_weight", "levenshtein_weight", "cosine_weight", "dice_weight"),
    "segment fusion": (
        "segment_text_weight",
        "segment_content_type_weight",
        "segment_layout_weight",
        "segment_image_count_weight",
        "segment_title_weight",
    ),
}


class Settings(BaseSettings):
    # Matching
    similarity_threshold: float = Field(
        default=0.5,
        description="Minimum fused similarity for two pages/segments to be paired (0.0-1.0]",
    )
    two_phase_matching: bool = Field(
        default=False,
        description="Resolve near-identical visual matches first, then re-score the remainder with full fusion",
    )
    visual_phase_threshold: float = Field(
        default=0.95,
        description="Visual-only score needed to commit a pair in the first phase of two-phase matching",
    )
    visual_metric: str = Field(
        default="hash",
        description="Visual signal used for page fusion: 'hash' (perceptual hash) or 'ssim'",
    )

    # Page-level fusion
    visual_weight: float = Field(default=0.65, description="Weight of the visual signal in page fusion")
    text_weight: float = Field(default=0.35, description="Weight of text similarity in page fusion")
    font_weight: float = Field(default=0.0, description="Weight of font-usage similarity in page fusion")
    position_weight: float = Field(
        default=0.0,
        description="Weight of relative page position in page fusion",
    )

    # Text similarity sub-weights
    jaccard_weight: float = Field(default=0.3, description="Jaccard word-set weight")
    levenshtein_weight: float = Field(default=0.2, description="Normalized edit-distance weight")
    cosine_weight: float = Field(default=0.3, description="Term-frequency cosine weight")
    dice_weight: float = Field(default=0.2, description="Dice word-overlap weight")

    # Segment-level fusion
    segment_text_weight: float = Field(default=0.4, description="Segment full-text similarity weight")
    segment_content_type_weight: float = Field(default=0.2, description="Content-type match weight")
    segment_layout_weight: float = Field(default=0.2, description="First-page layout similarity weight")
    segment_image_count_weight: float = Field(default=0.1, description="Image-count similarity weight")
    segment_title_weight: float = Field(default=0.1, description="Title similarity weight")

    # Segmentation
    segmentation_enabled: bool = Field(
        default=False,
        description="Split documents into sub-document segments and match those before pages",
    )
    min_segment_pages: int = Field(default=3, description="Minimum number of pages in a segment")
    title_font_size_threshold: float = Field(
        default=14.0,
        description="Runs with a font size above this are title candidates",
    )
    title_min_length: int = Field(default=5, description="Title candidates must be longer than this")
    title_max_length: int = Field(default=100, description="Title candidates must be shorter than this")
    title_region_ratio: float = Field(
        default=0.3,
        description="Fraction of page height (from the top) searched for titles",
    )
    keyword_font_size_threshold: float = Field(
        default=12.0,
        description="Runs above this font size (or bold) contribute segment keywords",
    )
    max_segment_keywords: int = Field(default=50, description="Maximum keywords kept per segment")

    # Visual comparison
    ssim_window_size: int = Field(default=8, description="SSIM window edge length in pixels")
    hash_grid_size: int = Field(default=8, description="Perceptual hash grid size (bits per side)")
    hash_method: str = Field(default="dhash", description="Perceptual hash method: 'dhash' or 'ahash'")
    render_dpi: int = Field(default=72, description="DPI used when rendering pages for visual comparison")

    # Difference extraction tolerances
    dimension_tolerance: float = Field(
        default=0.5,
        description="Page/image size delta (points) above which dimensions differ",
    )
    position_tolerance: float = Field(
        default=1.0,
        description="Image position delta (points) above which positions differ",
    )
    font_size_tolerance: float = Field(
        default=0.1,
        description="Font size delta (points) above which run styles differ",
    )

    # Runtime
    num_workers: int = Field(default=4, description="Parallel workers for fingerprinting, scoring and extraction")
    comparison_timeout_seconds: float = Field(
        default=300.0,
        description="Wall-clock budget for one comparison run",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level used by the CLI unless --verbose is given")
    log_file: Optional[str] = Field(default=None, description="Optional file that receives a copy of the log")

    model_config = SettingsConfigDict(
        env_prefix="PAGEMATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        validate_settings(self)
        return self


def check_weights(group: str, weights: Mapping[str, float], required: Iterable[str]) -> None:
    """Raise ValueError unless ``weights`` has every required key, no negatives, and sums to 1."""
    missing = [name for name in required if name not in weights]
    if missing:
        raise ValueError(f"Missing {group} weights: {missing}")
    if any(v < 0 for v in weights.values()):
        raise ValueError(f"{group} weights must be non-negative: {dict(weights)}")
    total = sum(weights.values())
    if abs(total - 1.0) > _WEIGHT_TOLERANCE:
        raise ValueError(f"{group} weights must sum to 1.0 (got {total:.6f})")


def validate_settings(cfg: Settings) -> None:
    """Raise ValueError if the configuration cannot produce meaningful scores."""
    for group, names in _WEIGHT_GROUPS.items():
        check_weights(group, {name: getattr(cfg, name) for name in names}, names)

    for name in ("similarity_threshold", "visual_phase_threshold"):
        value = getattr(cfg, name)
        if not 0.0 < value <= 1.0:
            raise ValueError(f"{name} must be in (0, 1], got {value}")

    for name in ("ssim_window_size", "hash_grid_size", "num_workers", "min_segment_pages", "render_dpi"):
        if getattr(cfg, name) <= 0:
            raise ValueError(f"{name} must be positive, got {getattr(cfg, name)}")

    if cfg.comparison_timeout_seconds <= 0:
        raise ValueError("comparison_timeout_seconds must be positive")
    if cfg.title_min_length >= cfg.title_max_length:
        raise ValueError("title_min_length must be smaller than title_max_length")
    if not 0.0 < cfg.title_region_ratio <= 1.0:
        raise ValueError("title_region_ratio must be in (0, 1]")
    if cfg.hash_method not in ("dhash", "ahash"):
        raise ValueError(f"Unknown hash_method: {cfg.hash_method}")
    if cfg.visual_metric not in ("hash", "ssim"):
        raise ValueError(f"Unknown visual_metric: {cfg.visual_metric}")


def get_settings() -> Settings:
    """Return a cached settings instance."""
    return _get_settings()


@lru_cache()
def _get_settings() -> Settings:
    return Settings()


settings = get_settings()

"""Pipeline stages for health document parsing.

Stages:
1. stage_render - PDF / image to page images
2. stage_language - Language detection from filenames and text
3. stage_prompt - Localized extraction prompts
4. stage_extract - Per-page vision extraction for one strategy
5. stage_merge - Page merge and strategy reconciliation

`batch.process_batch` bounds concurrent backend calls. The orchestrator
(`medparse.pipeline.orchestrator.HealthDataPipeline`) runs the stages
end to end; it is imported from its module directly.
"""

from .batch import process_batch
from .stage_language import (
    LanguageDetectionResult,
    detect_language_from_filename,
    detect_language_from_text,
    get_multi_language_ocr_codes,
)
from .stage_merge import merge_pages, reconcile, to_record
from .stage_prompt import PromptBundle, build_adaptive_prompt, build_prompt
from .stage_render import DocumentRasterizer, compute_content_hash, sniff_mime

__all__ = [
    # Batch
    "process_batch",
    # Render
    "DocumentRasterizer",
    "compute_content_hash",
    "sniff_mime",
    # Language
    "LanguageDetectionResult",
    "detect_language_from_filename",
    "detect_language_from_text",
    "get_multi_language_ocr_codes",
    # Prompt
    "PromptBundle",
    "build_adaptive_prompt",
    "build_prompt",
    # Merge
    "merge_pages",
    "reconcile",
    "to_record",
]

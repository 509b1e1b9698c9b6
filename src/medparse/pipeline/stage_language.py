"""Language Detection Stage - Pick the document language for OCR and prompts.

Two independent detectors:
1. Filename hints (e.g. `wyniki_pl.pdf`, `befund_deutsch.pdf`)
2. Keyword scoring over extracted text

Neither detector translates or normalizes anything; they only choose
OCR language codes and the prompt bundle.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"
DEFAULT_CONFIDENCE = 0.1

# Keyword weights for content scoring
MEDICAL_TERM_WEIGHT = 2
REFERENCE_KEYWORD_WEIGHT = 3


@dataclass(frozen=True)
class LanguageConfig:
    """OCR codes and vocabulary for one language."""

    ocr_codes: tuple[str, ...]
    date_formats: tuple[str, ...]
    reference_keywords: tuple[str, ...]
    medical_terms: tuple[str, ...]

    @property
    def dictionary_size(self) -> int:
        return len(self.reference_keywords) + len(self.medical_terms)


LANGUAGE_CONFIGS: dict[str, LanguageConfig] = {
    "en": LanguageConfig(
        ocr_codes=("eng",),
        date_formats=("YYYY-MM-DD", "MM/DD/YYYY", "DD/MM/YYYY"),
        reference_keywords=("reference", "normal", "range", "ref", "normal range"),
        medical_terms=(
            "blood", "glucose", "cholesterol", "hemoglobin", "creatinine",
            "test", "result", "lab", "laboratory",
        ),
    ),
    "pl": LanguageConfig(
        ocr_codes=("pol",),
        date_formats=("DD.MM.YYYY", "DD-MM-YYYY", "YYYY-MM-DD"),
        reference_keywords=("norma", "zakres", "ref", "odniesienie", "wartości referencyjne"),
        medical_terms=(
            "krew", "glukoza", "cholesterol", "hemoglobina", "kreatynina",
            "badanie", "wynik", "laboratorium",
        ),
    ),
    "de": LanguageConfig(
        ocr_codes=("deu",),
        date_formats=("DD.MM.YYYY", "DD/MM/YYYY", "YYYY-MM-DD"),
        reference_keywords=("referenz", "normal", "bereich", "ref", "normbereich"),
        medical_terms=(
            "blut", "glukose", "cholesterin", "hämoglobin", "kreatinin",
            "test", "ergebnis", "labor",
        ),
    ),
    "fr": LanguageConfig(
        ocr_codes=("fra",),
        date_formats=("DD/MM/YYYY", "DD.MM.YYYY", "YYYY-MM-DD"),
        reference_keywords=("référence", "normal", "gamme", "réf", "valeurs de référence"),
        medical_terms=(
            "sang", "glucose", "cholestérol", "hémoglobine", "créatinine",
            "test", "résultat", "laboratoire",
        ),
    ),
    "es": LanguageConfig(
        ocr_codes=("spa",),
        date_formats=("DD/MM/YYYY", "DD-MM-YYYY", "YYYY-MM-DD"),
        reference_keywords=("referencia", "normal", "rango", "ref", "valores de referencia"),
        medical_terms=(
            "sangre", "glucosa", "colesterol", "hemoglobina", "creatinina",
            "prueba", "resultado", "laboratorio",
        ),
    ),
    "it": LanguageConfig(
        ocr_codes=("ita",),
        date_formats=("DD/MM/YYYY", "DD.MM.YYYY", "YYYY-MM-DD"),
        reference_keywords=("riferimento", "normale", "intervallo", "rif", "valori di riferimento"),
        medical_terms=(
            "sangue", "glucosio", "colesterolo", "emoglobina", "creatinina",
            "test", "risultato", "laboratorio",
        ),
    ),
    "ru": LanguageConfig(
        ocr_codes=("rus",),
        date_formats=("DD.MM.YYYY", "DD/MM/YYYY", "YYYY-MM-DD"),
        reference_keywords=("референс", "норма", "диапазон", "реф", "референсные значения"),
        medical_terms=(
            "кровь", "глюкоза", "холестерин", "гемоглобин", "креатинин",
            "тест", "результат", "лаборатория",
        ),
    ),
    "ko": LanguageConfig(
        ocr_codes=("kor",),
        date_formats=("YYYY-MM-DD", "YYYY.MM.DD", "YYYY/MM/DD"),
        reference_keywords=("참고치", "정상", "범위", "참고", "참고기준치"),
        medical_terms=("혈액", "혈당", "콜레스테롤", "헤모글로빈", "크레아티닌", "검사", "결과", "임상"),
    ),
    "ja": LanguageConfig(
        ocr_codes=("jpn",),
        date_formats=("YYYY-MM-DD", "YYYY/MM/DD", "YYYY.MM.DD"),
        reference_keywords=("基準値", "正常", "範囲", "参考", "基準範囲"),
        medical_terms=("血液", "血糖", "コレステロール", "ヘモグロビン", "クレアチニン", "検査", "結果", "臨床"),
    ),
    "zh": LanguageConfig(
        ocr_codes=("chi_sim", "chi_tra"),
        date_formats=("YYYY-MM-DD", "YYYY/MM/DD", "YYYY.MM.DD"),
        reference_keywords=("参考值", "正常", "范围", "参考", "参考范围"),
        medical_terms=("血液", "血糖", "胆固醇", "血红蛋白", "肌酐", "检查", "结果", "临床"),
    ),
}

# Checked in order; first match wins
FILENAME_HINTS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("pl", ("_pl", "_pol", "polska")),
    ("de", ("_de", "_deu", "deutsch")),
    ("fr", ("_fr", "_fra", "french")),
    ("es", ("_es", "_spa", "spanish")),
    ("it", ("_it", "_ita", "italian")),
    ("ru", ("_ru", "_rus", "russian")),
    ("ko", ("_ko", "_kor", "korean")),
    ("ja", ("_ja", "_jpn", "japanese")),
    ("zh", ("_zh", "_chi", "chinese")),
)


@dataclass
class LanguageDetectionResult:
    """Outcome of content-based detection plus the language's side data."""

    primary_language: str
    confidence: float
    ocr_languages: list[str] = field(default_factory=list)
    date_formats: list[str] = field(default_factory=list)
    reference_keywords: list[str] = field(default_factory=list)
    medical_terms: list[str] = field(default_factory=list)


def get_language_config(language: str) -> LanguageConfig:
    """Config for a language, falling back to the default language."""
    return LANGUAGE_CONFIGS.get(language, LANGUAGE_CONFIGS[DEFAULT_LANGUAGE])


def supported_languages() -> list[str]:
    return list(LANGUAGE_CONFIGS)


def detect_language_from_filename(filename: str) -> Optional[str]:
    """Detect a language hint embedded in a filename or URL.

    Args:
        filename: File name, path or URL.

    Returns:
        Language code, or None when no hint is present.
    """
    lower = filename.lower()
    for language, tokens in FILENAME_HINTS:
        if any(token in lower for token in tokens):
            return language
    return None


def score_languages(text: str) -> dict[str, float]:
    """Weighted keyword hits per language, normalized by dictionary size."""
    normalized = text.lower()
    scores = {}
    for language, config in LANGUAGE_CONFIGS.items():
        score = 0
        for term in config.medical_terms:
            if term.lower() in normalized:
                score += MEDICAL_TERM_WEIGHT
        for keyword in config.reference_keywords:
            if keyword.lower() in normalized:
                score += REFERENCE_KEYWORD_WEIGHT
        scores[language] = score / config.dictionary_size
    return scores


def detect_language_from_text(text: str) -> LanguageDetectionResult:
    """Detect the document language from keyword matches.

    Args:
        text: Extracted page or document text.

    Returns:
        Best scoring language with its score as confidence, or the default
        language with low confidence when nothing matches.
    """
    scores = score_languages(text or "")

    # Ties resolve to the language listed first
    best_language, best_score = DEFAULT_LANGUAGE, 0.0
    for language, score in scores.items():
        if score > best_score:
            best_language, best_score = language, score

    if best_score > 0:
        primary_language, confidence = best_language, best_score
    else:
        primary_language, confidence = DEFAULT_LANGUAGE, DEFAULT_CONFIDENCE

    config = LANGUAGE_CONFIGS[primary_language]
    logger.debug("Detected language %s (confidence %.3f)", primary_language, confidence)

    return LanguageDetectionResult(
        primary_language=primary_language,
        confidence=confidence,
        ocr_languages=list(config.ocr_codes),
        date_formats=list(config.date_formats),
        reference_keywords=list(config.reference_keywords),
        medical_terms=list(config.medical_terms),
    )


def get_multi_language_ocr_codes(languages: Iterable[str]) -> list[str]:
    """Union of OCR codes for several languages, always including English.

    Unknown language codes are ignored.
    """
    codes: dict[str, None] = {}
    for language in languages:
        config = LANGUAGE_CONFIGS.get(language)
        if config:
            codes.update(dict.fromkeys(config.ocr_codes))
    codes.update(dict.fromkeys(LANGUAGE_CONFIGS[DEFAULT_LANGUAGE].ocr_codes))
    return list(codes)


def resolve_ocr_languages(filename: str, defaults: Iterable[str]) -> list[str]:
    """OCR codes for a document: filename hint if any, else the defaults."""
    language = detect_language_from_filename(filename)
    if language:
        codes = get_multi_language_ocr_codes([language])
        logger.info("OCR languages from filename: %s", ", ".join(codes))
        return codes

    codes = list(defaults)
    logger.info("OCR languages (default multi-language): %s", ", ".join(codes))
    return codes

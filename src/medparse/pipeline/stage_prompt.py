"""Prompt Stage - Localized instructions for vision parsers.

Every bundle asks for the same JSON shape:

    {"name": ..., "date": ...,
     "test_result": {<test name>: {"value", "unit", "reference", "category"}}}

The user prompt may contain a `{context}` placeholder; callers replace it
with page text before sending the prompt to a backend.
"""

from dataclasses import dataclass

from .stage_language import DEFAULT_LANGUAGE, detect_language_from_text

CONTEXT_PLACEHOLDER = "{context}"


@dataclass(frozen=True)
class PromptTemplates:
    """Prompt text for one language."""

    system: str
    json_instructions: str
    instructions: str
    context_prefix: str
    image_prefix: str


LANGUAGE_PROMPTS: dict[str, PromptTemplates] = {
    "en": PromptTemplates(
        system="You are a medical data analyst. Extract test results from medical documents and return them as JSON.",
        json_instructions="""The JSON must follow this exact structure:
{
  "name": "patient name or empty string",
  "date": "date in any format or empty string",
  "test_result": {
    "test_name_1": {"value": "result_value", "unit": "unit", "reference": "reference_range", "category": "test_category"},
    "test_name_2": {"value": "result_value", "unit": "unit", "reference": "reference_range", "category": "test_category"}
  }
}""",
        instructions="""Instructions:
- Extract ALL medical test results, regardless of test name format
- Keep original test names in their native language
- Include value, unit, reference range, and test category when available
- For dates, preserve the original format
- Only include actual test results, not reference information
- Return valid JSON only, no other text""",
        context_prefix="Medical document content:",
        image_prefix="Please analyze the provided medical document image.",
    ),
    "pl": PromptTemplates(
        system="Jesteś analitykiem danych medycznych. Wyciągnij wyniki badań z dokumentów medycznych i zwróć je jako JSON.",
        json_instructions="""JSON musi mieć dokładnie tę strukturę:
{
  "name": "imię i nazwisko pacjenta lub pusty ciąg",
  "date": "data w dowolnym formacie lub pusty ciąg",
  "test_result": {
    "nazwa_badania_1": {"value": "wynik", "unit": "jednostka", "reference": "zakres_referencyjny", "category": "kategoria_badania"},
    "nazwa_badania_2": {"value": "wynik", "unit": "jednostka", "reference": "zakres_referencyjny", "category": "kategoria_badania"}
  }
}""",
        instructions="""Instrukcje:
- Wyciągnij WSZYSTKIE wyniki badań medycznych, niezależnie od formatu nazw
- Zachowaj oryginalne nazwy badań w ich rodzimym języku
- Dołącz wartość, jednostkę, zakres referencyjny i kategorię badania gdy dostępne
- Dla dat, zachowaj oryginalny format
- Dołącz tylko rzeczywiste wyniki badań, nie informacje referencyjne
- Zwróć tylko prawidłowy JSON, bez dodatkowego tekstu""",
        context_prefix="Zawartość dokumentu medycznego:",
        image_prefix="Proszę przeanalizować dostarczony obraz dokumentu medycznego.",
    ),
    "de": PromptTemplates(
        system="Sie sind ein medizinischer Datenanalyst. Extrahieren Sie Testergebnisse aus medizinischen Dokumenten und geben Sie sie als JSON zurück.",
        json_instructions="""Das JSON muss genau diese Struktur haben:
{
  "name": "Patientenname oder leerer String",
  "date": "Datum in beliebigem Format oder leerer String",
  "test_result": {
    "test_name_1": {"value": "ergebnis_wert", "unit": "einheit", "reference": "referenz_bereich", "category": "test_kategorie"},
    "test_name_2": {"value": "ergebnis_wert", "unit": "einheit", "reference": "referenz_bereich", "category": "test_kategorie"}
  }
}""",
        instructions="""Anweisungen:
- Extrahieren Sie ALLE medizinischen Testergebnisse, unabhängig vom Format der Testnamen
- Behalten Sie die ursprünglichen Testnamen in ihrer Muttersprache bei
- Fügen Sie Wert, Einheit, Referenzbereich und Testkategorie hinzu, wenn verfügbar
- Behalten Sie bei Datumsangaben das ursprüngliche Format bei
- Fügen Sie nur tatsächliche Testergebnisse ein, keine Referenzinformationen
- Geben Sie nur gültiges JSON zurück, keinen anderen Text""",
        context_prefix="Inhalt des medizinischen Dokuments:",
        image_prefix="Bitte analysieren Sie das bereitgestellte Bild des medizinischen Dokuments.",
    ),
    "fr": PromptTemplates(
        system="Vous êtes un analyste de données médicales. Extrayez les résultats de tests des documents médicaux et renvoyez-les au format JSON.",
        json_instructions="""Le JSON doit avoir exactement cette structure:
{
  "name": "nom du patient ou chaîne vide",
  "date": "date dans n'importe quel format ou chaîne vide",
  "test_result": {
    "nom_test_1": {"value": "valeur_résultat", "unit": "unité", "reference": "plage_référence", "category": "catégorie_test"},
    "nom_test_2": {"value": "valeur_résultat", "unit": "unité", "reference": "plage_référence", "category": "catégorie_test"}
  }
}""",
        instructions="""Instructions:
- Extrayez TOUS les résultats de tests médicaux, quel que soit le format des noms de tests
- Conservez les noms de tests originaux dans leur langue native
- Incluez la valeur, l'unité, la plage de référence et la catégorie de test quand disponible
- Pour les dates, conservez le format original
- N'incluez que les résultats de tests réels, pas les informations de référence
- Renvoyez uniquement du JSON valide, aucun autre texte""",
        context_prefix="Contenu du document médical:",
        image_prefix="Veuillez analyser l'image du document médical fournie.",
    ),
    "es": PromptTemplates(
        system="Eres un analista de datos médicos. Extrae los resultados de pruebas de documentos médicos y devuélvelos como JSON.",
        json_instructions="""El JSON debe tener exactamente esta estructura:
{
  "name": "nombre del paciente o cadena vacía",
  "date": "fecha en cualquier formato o cadena vacía",
  "test_result": {
    "nombre_prueba_1": {"value": "valor_resultado", "unit": "unidad", "reference": "rango_referencia", "category": "categoría_prueba"},
    "nombre_prueba_2": {"value": "valor_resultado", "unit": "unidad", "reference": "rango_referencia", "category": "categoría_prueba"}
  }
}""",
        instructions="""Instrucciones:
- Extrae TODOS los resultados de pruebas médicas, sin importar el formato de los nombres
- Mantén los nombres originales de las pruebas en su idioma nativo
- Incluye valor, unidad, rango de referencia y categoría de prueba cuando esté disponible
- Para fechas, conserva el formato original
- Solo incluye resultados de pruebas reales, no información de referencia
- Devuelve solo JSON válido, ningún otro texto""",
        context_prefix="Contenido del documento médico:",
        image_prefix="Por favor analiza la imagen del documento médico proporcionada.",
    ),
    "ko": PromptTemplates(
        system="당신은 의료 데이터 분석가입니다. 의료 문서에서 검사 결과를 추출하여 JSON으로 반환하세요.",
        json_instructions="""JSON은 정확히 다음 구조를 가져야 합니다:
{
  "name": "환자 이름 또는 빈 문자열",
  "date": "임의 형식의 날짜 또는 빈 문자열",
  "test_result": {
    "검사명_1": {"value": "결과값", "unit": "단위", "reference": "참고범위", "category": "검사분류"},
    "검사명_2": {"value": "결과값", "unit": "단위", "reference": "참고범위", "category": "검사분류"}
  }
}""",
        instructions="""지침:
- 검사명 형식에 관계없이 모든 의료 검사 결과를 추출하세요
- 검사명은 원본 언어 그대로 유지하세요
- 가능할 때 값, 단위, 참고범위, 검사분류를 포함하세요
- 날짜는 원본 형식을 유지하세요
- 실제 검사 결과만 포함하고 참고 정보는 제외하세요
- 다른 텍스트 없이 유효한 JSON만 반환하세요""",
        context_prefix="의료 문서 내용:",
        image_prefix="제공된 의료 문서 이미지를 분석해주세요.",
    ),
    "ru": PromptTemplates(
        system="Вы аналитик медицинских данных. Извлеките результаты анализов из медицинских документов и верните их в формате JSON.",
        json_instructions="""JSON должен иметь точно такую структуру:
{
  "name": "имя пациента или пустая строка",
  "date": "дата в любом формате или пустая строка",
  "test_result": {
    "название_теста_1": {"value": "значение_результата", "unit": "единица", "reference": "референсный_диапазон", "category": "категория_теста"},
    "название_теста_2": {"value": "значение_результата", "unit": "единица", "reference": "референсный_диапазон", "category": "категория_теста"}
  }
}""",
        instructions="""Инструкции:
- Извлеките ВСЕ результаты медицинских анализов, независимо от формата названий
- Сохраняйте оригинальные названия анализов на их родном языке
- Включайте значение, единицу измерения, референсный диапазон и категорию теста когда доступно
- Для дат сохраняйте оригинальный формат
- Включайте только фактические результаты анализов, не справочную информацию
- Возвращайте только валидный JSON, никакого другого текста""",
        context_prefix="Содержимое медицинского документа:",
        image_prefix="Пожалуйста, проанализируйте предоставленное изображение медицинского документа.",
    ),
}


@dataclass(frozen=True)
class PromptBundle:
    """System and user prompt for one vision call."""

    system_prompt: str
    user_prompt: str
    language: str
    confidence: float = 1.0

    def render_user_prompt(self, context: str = "") -> str:
        """Substitute page text for the `{context}` placeholder."""
        return self.user_prompt.replace(CONTEXT_PLACEHOLDER, context)


def supported_prompt_languages() -> list[str]:
    return list(LANGUAGE_PROMPTS)


def has_prompt_support(language: str) -> bool:
    """Check if a language has dedicated prompt templates."""
    return language in LANGUAGE_PROMPTS


def build_prompt(
    detected_language: str = DEFAULT_LANGUAGE,
    include_text: bool = True,
    include_image: bool = True,
    confidence: float = 1.0,
) -> PromptBundle:
    """Build prompts for the given language and modalities.

    Args:
        detected_language: Language code; languages without templates use English.
        include_text: Page text will be substituted into the prompt.
        include_image: A page image will be attached to the message.
        confidence: Detection confidence, carried through for logging.

    Returns:
        PromptBundle with the `{context}` placeholder left in place.
    """
    language = detected_language if has_prompt_support(detected_language) else DEFAULT_LANGUAGE
    templates = LANGUAGE_PROMPTS[language]

    system_prompt = "\n\n".join(
        [templates.system, templates.json_instructions, templates.instructions]
    )

    parts = []
    if include_text or not include_image:
        # With neither modality we still ask about the text
        parts.append(f"{templates.context_prefix}\n{CONTEXT_PLACEHOLDER}")
    if include_image:
        parts.append(templates.image_prefix)
    user_prompt = "\n\n".join(parts)

    return PromptBundle(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        language=language,
        confidence=confidence,
    )


def build_adaptive_prompt(
    text: str,
    include_text: bool = True,
    include_image: bool = True,
) -> PromptBundle:
    """Detect the language of `text` and build matching prompts."""
    detection = detect_language_from_text(text)
    return build_prompt(
        detected_language=detection.primary_language,
        include_text=include_text,
        include_image=include_image,
        confidence=detection.confidence,
    )

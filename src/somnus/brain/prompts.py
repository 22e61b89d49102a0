"""
Prompt templates for the dream interpreter, the title generator and the
weekly analysis. Two languages are supported: English ("en") and Turkish
(everything else).
"""

from typing import Dict

LANGUAGE_NAMES = {"en": "English", "tr": "Turkish"}


def normalize_language(language: str = None) -> str:
    return "en" if (language or "").lower().startswith("en") else "tr"


def language_name(language: str = None) -> str:
    return LANGUAGE_NAMES[normalize_language(language)]


INTERPRETATION_PROMPT = """\
Act as a psychological dream interpreter.
Tone: calm, honest, direct, non-mystical.
Avoid judgment, fear, or authoritative language.
Language: {language} (Must respond in {language}).
Instructions:
- Use suitable emojis throughout the text to match the mood.
- Don't just append them at the end, integrate naturally.
- Start directly with the interpretation.
Output: A single paragraph interpretation of the following dream. Do not use any titles or markdown headings.

Dream: "{text}"
"""

TITLE_PROMPT = """\
You are a dream title generator. Create a SHORT, poetic title (max 4-6 words) in {language} for this dream.

Rules:
- First letter of each major word should be capitalized
- Be creative but concise
- Capture the essence of the dream
- Include 1 relevant emoji at the end
- Return ONLY the title, nothing else

Dream: "{text}"
"""

WEEKLY_SECTIONS: Dict[str, tuple] = {
    "en": ("Recurring Themes", "Emotional Landscape", "Guidance for the Week Ahead"),
    "tr": ("Tekrarlayan Temalar", "Duygusal Manzara", "Gelecek Hafta İçin Rehberlik"),
}

WEEKLY_PROMPT = """\
You are analysing one person's dream journal for the current week.
Respond in {language} only.
Do not greet the reader, do not introduce yourself and do not add disclaimers.
Write exactly three sections, each starting with a markdown heading, in this order:
## {section_1}
## {section_2}
## {section_3}

Dreams of this week:
{blocks}
"""

DREAM_BLOCK = """\
---
Date: {date}
Title: {title}
Dream: {text}
Interpretation: {interpretation}
"""

WEEKLY_EMPTY = {
    "en": "You haven't recorded any dreams this week yet. Write down your next dream and come back for your weekly analysis.",
    "tr": "Bu hafta henüz bir rüya kaydetmedin. Bir sonraki rüyanı yaz ve haftalık analizin için geri gel.",
}

WEEKLY_FAILED = {
    "en": "The weekly analysis could not be generated right now. Please try again later.",
    "tr": "Haftalık analiz şu anda oluşturulamadı. Lütfen daha sonra tekrar dene.",
}


def interpretation_prompt(text: str, language: str = None) -> str:
    return INTERPRETATION_PROMPT.format(language=language_name(language), text=text)


def title_prompt(text: str, language: str = None) -> str:
    return TITLE_PROMPT.format(language=language_name(language), text=text)


def weekly_prompt(blocks: str, language: str = None) -> str:
    lang = normalize_language(language)
    section_1, section_2, section_3 = WEEKLY_SECTIONS[lang]
    return WEEKLY_PROMPT.format(
        language=LANGUAGE_NAMES[lang],
        section_1=section_1,
        section_2=section_2,
        section_3=section_3,
        blocks=blocks,
    )

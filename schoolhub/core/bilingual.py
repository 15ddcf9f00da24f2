from __future__ import annotations

from dataclasses import dataclass


SUPPORTED_LANGUAGES = ('en', 'ta')


@dataclass(frozen=True)
class BilingualText:
    en: str
    ta: str = ''

    @classmethod
    def from_value(cls, value) -> 'BilingualText':
        if value is None:
            return cls(en='')
        if isinstance(value, BilingualText):
            return value
        if isinstance(value, dict):
            return cls(en=str(value.get('en') or ''), ta=str(value.get('ta') or ''))
        return cls(en=str(getattr(value, 'en', '') or ''), ta=str(getattr(value, 'ta', '') or ''))

    def resolve(self, lang: str = 'en') -> str:
        return resolve_text(self, lang)

    def stripped(self) -> 'BilingualText':
        return BilingualText(en=(self.en or '').strip(), ta=(self.ta or '').strip())

    def as_dict(self) -> dict:
        return {'en': self.en, 'ta': self.ta}


def resolve_text(text: BilingualText | dict | None, lang: str = 'en') -> str:
    # Tamil falls back to English when blank; English never falls back.
    value = BilingualText.from_value(text)
    if (lang or 'en').lower() == 'ta' and (value.ta or '').strip():
        return value.ta
    return value.en

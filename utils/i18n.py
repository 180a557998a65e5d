import json
import os
import logging

logger = logging.getLogger(__name__)

DEFAULT_LANG = "ko"

class Translator:
    """
    Looks up UI strings in i18n/lang_<code>.json.
    The defaults passed to tr() are the Korean texts, so the default
    language needs no file of its own.
    """
    def __init__(self, lang_dir, default_lang=DEFAULT_LANG):
        self.lang_dir = lang_dir
        self.default_lang = default_lang
        self.current_lang = default_lang
        self.translations = {}
        self.load_translations()

    def _lang_file(self, lang):
        return os.path.join(self.lang_dir, f"lang_{lang}.json")

    def load_translations(self):
        lang_file = self._lang_file(self.current_lang)
        if not os.path.exists(lang_file):
            if self.current_lang != self.default_lang:
                logger.warning(f"No language file found: {lang_file}, using built-in texts")
            self.translations = {}
            return
        try:
            with open(lang_file, "r", encoding="utf-8") as f:
                self.translations = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load translations from {lang_file}: {e}")
            self.translations = {}

    def set_language(self, lang):
        if not lang or lang == self.current_lang:
            return
        self.current_lang = lang
        self.load_translations()

    def tr(self, key, default_text, **kwargs):
        val = self.translations.get(key, default_text)
        if kwargs:
            try:
                return val.format(**kwargs)
            except (KeyError, IndexError, ValueError):
                return default_text.format(**kwargs)
        return val

# Global instance
_translator = None

def init_translator(base_dir, lang=DEFAULT_LANG):
    global _translator
    _translator = Translator(os.path.join(base_dir, "i18n"))
    _translator.set_language(lang)
    return _translator

def reset_translator():
    global _translator
    _translator = None

def tr(key, default_text, **kwargs):
    if _translator:
        return _translator.tr(key, default_text, **kwargs)
    return default_text.format(**kwargs) if kwargs else default_text

def set_lang(lang):
    if _translator:
        _translator.set_language(lang)

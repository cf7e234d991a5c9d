"""Ordered rewrite rules for cleaning recognized student names.

Rules are plain data: a regex, its replacement and a scope. They are
loaded from YAML so schools can add local spellings without touching
code, and fall back to the built-in table below.

Scopes:
    all: every name.
    arabic: names written mostly in Arabic script.
    latin: names written mostly in Latin script.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from gradesheet_ocr.exceptions import ConfigurationError
from gradesheet_ocr.utils.arabic import DIACRITICS_RE, INVISIBLE_RE, TATWEEL, is_mostly_arabic
from gradesheet_ocr.utils.logger import get_logger

logger = get_logger(__name__)

SCOPES = ("all", "arabic", "latin")


@dataclass
class NameRule:
    """A single regex rewrite applied to names.

    Raises:
        ConfigurationError: If the scope is unknown or the pattern does
            not compile.
    """

    name: str
    pattern: str
    replacement: str = ""
    scope: str = "all"
    regex: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.scope not in SCOPES:
            raise ConfigurationError(
                f"Name rule '{self.name}' has unknown scope '{self.scope}'"
            )
        try:
            self.regex = re.compile(self.pattern)
        except re.error as exc:
            raise ConfigurationError(
                f"Name rule '{self.name}' has an invalid pattern: {exc}"
            ) from exc

    def applies_to(self, name: str) -> bool:
        """Whether this rule runs for ``name``, judged by its script."""
        if self.scope == "arabic":
            return is_mostly_arabic(name)
        if self.scope == "latin":
            return not is_mostly_arabic(name)
        return True

    def apply(self, name: str) -> str:
        return self.regex.sub(self.replacement, name)


def default_name_rules() -> list[NameRule]:
    """Built-in rule table, in application order."""
    return [
        NameRule("confusion_zain", "ز", "ر"),
        NameRule("confusion_thal", "ذ", "د"),
        NameRule("confusion_dad", "ض", "ص"),
        NameRule("confusion_zah", "ظ", "ط"),
        NameRule("confusion_ghain", "غ", "ع"),
        NameRule("confusion_qaf", "ق", "ف"),
        NameRule("invisible_marks", INVISIBLE_RE.pattern, ""),
        NameRule("tatweel", TATWEEL, ""),
        NameRule("diacritics", DIACRITICS_RE.pattern, ""),
        NameRule("pipe_as_lam", r"\|", "ل", "arabic"),
        NameRule("alef_variants", "[أإآٱ]", "ا", "arabic"),
        NameRule("yeh_variants", "[ىی]", "ي", "arabic"),
        NameRule("teh_marbuta", "ة", "ه", "arabic"),
        NameRule("latin_noise", r"[A-Za-z]+", " ", "arabic"),
        NameRule("digits", r"[0-9٠-٩۰-۹]+", " "),
        NameRule("punctuation", r"[.,;:!?()\[\]{}\"«»_/\\*#@،؛؟|]+", " "),
        NameRule("abd_prefix", r"عبد\s*ال", "عبدال", "arabic"),
        NameRule("ibn", r"(?<=\s)ابن(?=\s)", "بن", "arabic"),
        NameRule("spaces", r"\s+", " "),
    ]


def load_name_rules(path: Path | None) -> list[NameRule]:
    """Load the name rule table from YAML.

    The file holds a ``name_rules`` list of mappings with ``name``,
    ``pattern``, ``replacement`` and ``scope`` keys.

    Args:
        path: Rules file; the built-in table is used when it is missing
            or empty.

    Returns:
        Rules in application order.

    Raises:
        ConfigurationError: If an entry is malformed.
    """
    if path is not None and path.exists():
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        entries = data.get("name_rules") or []
        if entries:
            try:
                rules = [NameRule(**entry) for entry in entries]
            except TypeError as exc:
                raise ConfigurationError(f"Malformed name rule in {path}: {exc}") from exc
            logger.info("Loaded %d name rules from %s", len(rules), path)
            return rules
    logger.debug("Using default name rules")
    return default_name_rules()


def apply_name_rules(name: str, rules: list[NameRule]) -> str:
    """Run every applicable rule over ``name`` in table order.

    Script detection happens once on the input, so a rule that removes
    Latin noise cannot flip later rules to the Latin scope.
    """
    if not name:
        return ""
    result = name
    for rule in rules:
        if rule.applies_to(name):
            result = rule.apply(result)
    return result.strip()

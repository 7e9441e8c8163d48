"""Sensitive data sanitization for log entries.

This module masks sensitive values before they reach an appender:
- Values stored under sensitive field names (``password``, ``token``, ...)
- ``key: value`` / ``key=value`` pairs of sensitive fields inside free text
- Custom prioritized rules matched against field names and string values
- Well-known PII shapes (e-mail, JWT, bearer tokens, cards, SSN, API keys)

Sanitization is idempotent: sanitizing already sanitized data changes
nothing.
"""

import copy
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from re import Pattern
from typing import Any

from .config import SanitizationRuleConfig, SecurityConfig
from .entry import LogEntry, LoggingContext

_SEPARATORS = re.compile(r"[^a-z0-9]")

# camelCase, PascalCase, ACRONYMCase and digit runs
_FIELD_TOKENS = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|[0-9]+")

# key: value, key=value, "key": "value"
_KEY_VALUE = re.compile(
    r"""(?P<key>["']?[A-Za-z_][\w.-]*["']?)"""
    r"""(?P<sep>\s*[:=]\s*)"""
    r"""(?P<value>"[^"]*"|'[^']*'|[^\s,;&]+)"""
)

CIRCULAR_MARKER = "[Circular]"


@dataclass
class SanitizationRule:
    """A prioritized masking rule.

    ``pattern`` is searched in field names and string values. ``mask``
    turns a matched value into its masked form; when absent, the
    sanitizer's default mask is used.
    """

    name: str
    pattern: Pattern[str]
    mask: Callable[[str], str] | None = None
    priority: int = 0
    enabled: bool = True
    description: str = ""

    def matches(self, text: str) -> bool:
        return bool(self.pattern.search(text))

    @classmethod
    def from_config(cls, config: SanitizationRuleConfig) -> "SanitizationRule":
        replacement = config.replacement
        return cls(
            name=config.name,
            pattern=re.compile(config.pattern),
            mask=(lambda _value: replacement) if replacement is not None else None,
            priority=config.priority,
            enabled=config.enabled,
        )


@dataclass
class PIIPattern:
    """A PII shape recognized in free text and its replacement marker."""

    name: str
    pattern: Pattern[str]
    replacement: str
    description: str = ""


# More specific patterns come before general ones.
PII_PATTERNS = [
    PIIPattern(
        name="jwt",
        pattern=re.compile(r"eyJ[a-zA-Z0-9_-]*\.eyJ[a-zA-Z0-9_-]*\.[a-zA-Z0-9_-]*"),
        replacement="[JWT_TOKEN]",
        description="JWT tokens",
    ),
    PIIPattern(
        name="credit_card",
        pattern=re.compile(
            r"\b(?:4[0-9]{12}(?:[0-9]{3})?|"  # Visa
            r"5[1-5][0-9]{14}|"  # Mastercard
            r"3[47][0-9]{13}|"  # American Express
            r"3(?:0[0-5]|[68][0-9])[0-9]{11}|"  # Diners Club
            r"6(?:011|5[0-9]{2})[0-9]{12}|"  # Discover
            r"(?:2131|1800|35\d{3})\d{11})\b"  # JCB
        ),
        replacement="[CREDIT_CARD]",
        description="Credit card numbers",
    ),
    PIIPattern(
        name="ssn",
        pattern=re.compile(r"\b(?!000|666|9\d{2})\d{3}-(?!00)\d{2}-(?!0000)\d{4}\b"),
        replacement="[SSN]",
        description="Social Security Numbers",
    ),
    PIIPattern(
        name="email",
        pattern=re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        replacement="[EMAIL]",
        description="Email addresses",
    ),
    PIIPattern(
        name="api_key_prefix",
        pattern=re.compile(r"\b(sk|pk|api|key|token|pat|gho|ghs|ghp|ghu)[-_][a-zA-Z0-9]{20,}\b"),
        replacement="[API_KEY]",
        description="API keys with common prefixes",
    ),
    PIIPattern(
        name="bearer_token",
        pattern=re.compile(r"(?i)bearer\s+(?!\[TOKEN\])[a-zA-Z0-9_\-\.]+"),
        replacement="Bearer [TOKEN]",
        description="Bearer tokens",
    ),
]


def normalize_field_name(name: str) -> str:
    """Lowercase a field name and strip separators: ``API-Key`` -> ``apikey``."""
    return _SEPARATORS.sub("", name.lower())


def field_tokens(name: str) -> list[str]:
    """Split a field name into lowercase words: ``X-API-Key`` -> ``[x, api, key]``."""
    return [token.lower() for token in _FIELD_TOKENS.findall(name)]


class DataSanitizer:
    """
    Masks sensitive values in arbitrary nested data.

    Rule order: custom rules with a positive priority (highest first), then
    the built-in sensitive field list, then the remaining custom rules. The
    first rule matching a field name or string decides how it is masked.
    """

    def __init__(self, config: SecurityConfig | Mapping[str, Any] | None = None):
        if config is None:
            config = SecurityConfig()
        elif not isinstance(config, SecurityConfig):
            config = SecurityConfig.model_validate(config)
        self.config = config
        self._custom_rules: list[SanitizationRule] = [
            SanitizationRule.from_config(rule) for rule in config.custom_rules
        ]
        self._sort_rules()
        self._values_masked = 0

    def _sort_rules(self) -> None:
        self._custom_rules.sort(key=lambda rule: rule.priority, reverse=True)

    @property
    def custom_rules(self) -> list[SanitizationRule]:
        return list(self._custom_rules)

    def _sensitive_fields(self) -> set[str]:
        return {normalize_field_name(name) for name in self.config.sensitive_fields if name}

    def is_sensitive_field(self, name: str) -> bool:
        """
        Check whether a field name matches a configured sensitive name.

        The name is split into words and a sensitive name must equal one
        word or a run of adjacent words, so ``userPassword`` and
        ``X-API-Key`` match while ``tokens_used`` and ``business_name`` do not.
        """
        sensitive = self._sensitive_fields()
        tokens = field_tokens(str(name))
        for start in range(len(tokens)):
            joined = ""
            for token in tokens[start:]:
                joined += token
                if joined in sensitive:
                    return True
        return False

    def mask_value(self, value: Any) -> str:
        """
        Mask a single value.

        Partial masking keeps two characters on each side, so
        ``secret123`` becomes ``se***23``. Short values are fully masked.
        """
        mask = self.config.mask_char * 3
        text = value if isinstance(value, str) else str(value)
        if self.config.partial_mask and len(text) > 4:
            return f"{text[:2]}{mask}{text[-2:]}"
        return mask

    def _apply_rule(self, rule: SanitizationRule, text: str) -> str:
        if rule.mask is not None:
            return rule.pattern.sub(lambda match: rule.mask(match.group(0)), text)
        return rule.pattern.sub(lambda match: self.mask_value(match.group(0)), text)

    def _ordered_rules(self) -> tuple[list[SanitizationRule], list[SanitizationRule]]:
        enabled = [rule for rule in self._custom_rules if rule.enabled]
        return (
            [rule for rule in enabled if rule.priority > 0],
            [rule for rule in enabled if rule.priority <= 0],
        )

    def _mask_field(self, key: str, value: Any) -> tuple[bool, Any]:
        """Mask ``value`` if ``key`` matches a rule; returns (matched, value)."""
        before, after = self._ordered_rules()
        for rule in before:
            if rule.matches(key):
                return True, self._mask_with_rule(rule, value)
        if self.is_sensitive_field(key):
            return True, self.mask_value(value)
        for rule in after:
            if rule.matches(key):
                return True, self._mask_with_rule(rule, value)
        return False, value

    def _mask_with_rule(self, rule: SanitizationRule, value: Any) -> str:
        text = value if isinstance(value, str) else str(value)
        return rule.mask(text) if rule.mask is not None else self.mask_value(text)

    def _mask_key_values(self, text: str) -> str:
        def substitute(match: re.Match) -> str:
            key = match.group("key").strip("\"'")
            if not self.is_sensitive_field(key):
                return match.group(0)
            raw = match.group("value")
            quote = raw[0] if raw[:1] in ("'", '"') and raw[-1:] == raw[:1] and len(raw) > 1 else ""
            inner = raw[1:-1] if quote else raw
            return f"{match.group('key')}{match.group('sep')}{quote}{self.mask_value(inner)}{quote}"

        return _KEY_VALUE.sub(substitute, text)

    def sanitize_string(self, text: str) -> str:
        """Mask sensitive content inside free text."""
        before, after = self._ordered_rules()
        for rule in before:
            if rule.matches(text):
                return self._apply_rule(rule, text)
        masked = self._mask_key_values(text)
        if masked != text:
            return masked
        for rule in after:
            if rule.matches(text):
                return self._apply_rule(rule, text)
        return text

    def redact_pii(self, text: str) -> str:
        """Replace well-known PII shapes in free text with markers."""
        redacted = text
        for pii in PII_PATTERNS:
            redacted = pii.pattern.sub(pii.replacement, redacted)
        return redacted

    def sanitize(self, value: Any) -> Any:
        """
        Recursively sanitize ``value``.

        Mappings, lists, tuples, log entries and contexts are walked; other
        scalars pass through unless a string matches a rule. ``None``
        passes through unchanged. Returns new objects, never mutates.
        """
        if not self.config.enable_sanitization:
            return value
        return self._sanitize(value, set())

    def _sanitize(self, value: Any, seen: set[int]) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            return self.sanitize_string(value)
        if isinstance(value, LogEntry):
            return self.sanitize_entry(value)
        if isinstance(value, LoggingContext):
            return self.sanitize_context(value)
        if isinstance(value, Mapping | list | tuple):
            if id(value) in seen:
                return CIRCULAR_MARKER
            seen = seen | {id(value)}
            if isinstance(value, Mapping):
                result = {}
                for key, item in value.items():
                    matched, masked = self._mask_field(str(key), item)
                    if matched and item is not None:
                        self._values_masked += 1
                        result[key] = masked
                    else:
                        result[key] = self._sanitize(item, seen)
                return result
            items = [self._sanitize(item, seen) for item in value]
            return tuple(items) if isinstance(value, tuple) else items
        return value

    def sanitize_context(self, context: LoggingContext | None) -> LoggingContext | None:
        if context is None or not self.config.enable_sanitization:
            return context
        sanitized = context.clone()
        sanitized.additional_data = self._sanitize(context.additional_data, set())
        return sanitized

    def sanitize_entry(self, entry: LogEntry) -> LogEntry:
        """Sanitize the message, args, context and metadata of an entry."""
        if not self.config.enable_sanitization:
            return entry
        return entry.replace(
            message=self.sanitize_string(entry.message),
            args=tuple(self._sanitize(list(entry.args), set())),
            context=self.sanitize_context(entry.context),
            metadata=self._sanitize(entry.metadata, set()),
        )

    def add_custom_rule(
        self, rule: SanitizationRule | SanitizationRuleConfig | Mapping[str, Any]
    ) -> None:
        """Add a rule, replacing any existing rule with the same name."""
        if isinstance(rule, Mapping):
            rule = SanitizationRuleConfig.model_validate(rule)
        if isinstance(rule, SanitizationRuleConfig):
            rule = SanitizationRule.from_config(rule)
        self._custom_rules = [r for r in self._custom_rules if r.name != rule.name]
        self._custom_rules.append(rule)
        self._sort_rules()

    def remove_custom_rule(self, name: str) -> None:
        self._custom_rules = [rule for rule in self._custom_rules if rule.name != name]

    def update_config(self, partial: SecurityConfig | Mapping[str, Any]) -> None:
        """Merge ``partial`` into the security config."""
        if not isinstance(partial, SecurityConfig):
            partial = SecurityConfig.model_validate(partial)
        updates = partial.model_dump(exclude_unset=True)
        self.config = SecurityConfig.model_validate({**self.config.model_dump(), **updates})
        if "custom_rules" in updates:
            self._custom_rules = [SanitizationRule.from_config(rule) for rule in self.config.custom_rules]
            self._sort_rules()

    def test_sanitization(self, data: Any) -> dict[str, Any]:
        """Preview what sanitization does to ``data``."""
        original = copy.deepcopy(data)
        sanitized = self.sanitize(data)
        return {
            "original": original,
            "sanitized": sanitized,
            "changed": sanitized != original,
        }

    def get_statistics(self) -> dict[str, Any]:
        return {
            "enabled": self.config.enable_sanitization,
            "sensitive_fields_count": len(self.config.sensitive_fields),
            "custom_rules_count": len(self._custom_rules),
            "patterns_count": len(PII_PATTERNS),
            "mask_char": self.config.mask_char,
            "partial_mask": self.config.partial_mask,
            "values_masked": self._values_masked,
        }

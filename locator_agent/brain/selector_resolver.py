"""
Disambiguation Selector Resolver
=================================

Escalation path for labels the heuristics could not settle. Asks a
provider for a selector given the cleaned page markup, parses the answer
leniently, and validates every proposed selector against the live page.

Failed selectors accumulate across attempts and are fed back into the
next prompt so the provider is steered away from repeating them.
"""

import re
import json
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from playwright.async_api import Page

from ..core.html_cleaner import DEFAULT_MAX_CHARS, clean_html
from ..errors import ParseFailure, ProviderFailure, ValidationFailure

logger = logging.getLogger(__name__)

TASK_KIND = "selector_resolution"

SYSTEM_PROMPT = (
    "You are an expert at finding CSS selectors and XPath expressions for web elements. "
    "You analyze DOM structures and provide accurate selectors for web automation."
)
RETRY_SYSTEM_SUFFIX = " Your previous response was invalid - ensure strict JSON format."
ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert in web automation and CSS selector optimization. You analyze selector "
    "test results to recommend the most reliable selector for automation."
)


@dataclass
class SelectorResult:
    """Provider answer: primary selector, confidence and alternatives"""
    selector: str = ""
    confidence: float = 0.0
    fallbacks: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.selector

    def all_selectors(self) -> List[str]:
        return [s for s in [self.selector] + self.fallbacks if s]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectorResult":
        selector = data.get("selector")
        fallbacks = data.get("fallbacks")
        return cls(
            selector=selector if isinstance(selector, str) else "",
            confidence=_as_confidence(data.get("confidence")),
            fallbacks=[f for f in fallbacks if isinstance(f, str) and f] if isinstance(fallbacks, list) else [],
        )


def _as_confidence(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


# ==================== Prompts ====================

_TARGETS = {
    "input": "an input field",
    "button": "a clickable element",
    "any": "an element",
}

_PRIORITIES = {
    "input": """1. STABLE SEMANTIC SELECTORS: data-testid, data-*, id attributes
2. FORM STRUCTURE: input[name="..."], form-specific attributes
3. CONTEXTUAL SELECTORS: Find inputs near labels/text containing "{label}"
4. TYPE-SPECIFIC: input[type="..."] combined with structural selectors""",
    "button": """1. STABLE SEMANTIC SELECTORS: data-testid, data-*, id attributes
2. BUTTON STRUCTURE: button[type="..."], role-based attributes
3. CONTEXTUAL SELECTORS: Find clickable elements near text containing "{label}"
4. STRUCTURAL SELECTORS: nth-child, descendant selectors based on DOM structure""",
    "any": """1. STABLE SEMANTIC SELECTORS: data-testid, data-*, id, role attributes
2. STRUCTURAL SELECTORS: element type with position (nth-child, form input)
3. CONTEXTUAL SELECTORS: Find elements near content containing "{label}"
4. COMPOUND SELECTORS: Combine multiple stable attributes""",
}

_AVOID = {
    "input": """- DO NOT create selectors like [placeholder="{label}"] or [aria-label="{label}"]
- DO NOT rely on text content matching for the selector itself
- Instead, use the label to identify the CONTEXT where the input exists""",
    "button": """- DO NOT create selectors based on button text content like button:contains("{label}")
- DO NOT use text matching in selectors directly
- Instead, use the label to identify the CONTEXT where the clickable element exists""",
    "any": """- DO NOT create selectors that match text content directly
- DO NOT use label values in attribute selectors unless they are semantic IDs
- Instead, use the label to identify the CONTEXT and find structural selectors""",
}

_PROMPT_TEMPLATE = """You are a CSS selector expert. Find a selector for {target} related to "{label}".
{note}{failed}{candidates}

HTML CONTENT:
{html}

TASK:
Find the best CSS selector for {target} contextually related to "{label}". Prioritize in this order:
{priorities}

AVOID LABEL-BASED SELECTORS:
{avoid}

IMPORTANT RULES:
- NEVER use text content or label values directly in selectors
- DO NOT use JSS selectors (generated CSS class names like css-abc123)
- DO NOT use :contains() pseudo-class - it's NOT valid CSS and will fail
- DO NOT use :has() with text content - use attribute selectors instead
- Prefer data-testid, id, role, name attributes over classes
- Use structural selectors when semantic attributes aren't available
- ONLY use standard CSS selectors that work in querySelectorAll()
- The selector MUST exist in the provided HTML DOM

FORBIDDEN SELECTORS (WILL CAUSE ERRORS):
- div:contains("text") (not valid CSS)
- li:has(div:contains("text")) (not valid CSS)
- [text*="content"] (not valid CSS)
Use instead: [data-testid="..."], #id, .class, tag[attribute="value"]
For text-based matching, use: [aria-label*="text"], [title*="text"], or attribute selectors

YOU MUST RESPOND WITH ONLY THIS JSON FORMAT. NO HTML, NO TEXT, NO EXPLANATIONS:
{{
  "selector": "your-css-selector-here",
  "confidence": 0.8,
  "fallbacks": ["[data-testid='alternative']", "#alternative-id"]
}}

START YOUR RESPONSE WITH {{ AND END WITH }}. NOTHING ELSE."""


def build_prompt(
    label: str,
    element_type: str,
    html: str,
    step_note: Optional[str] = None,
    failed_selectors: Optional[List[str]] = None,
    candidates_context: Optional[str] = None,
) -> str:
    """Disambiguation prompt for an input, button or generic element"""
    kind = element_type if element_type in _TARGETS else "any"
    note = ""
    if step_note:
        note = (
            f'\n\nSTEP CONTEXT: "{step_note}"\n'
            "Use this context to choose the most appropriate element if multiple candidates exist."
        )
    failed = ""
    if failed_selectors:
        listed = "\n".join(f"- {s}" for s in failed_selectors)
        failed = (
            f"\n\nFAILED SELECTORS: These selectors were tried but FAILED to work:\n{listed}\n"
            "DO NOT return any of these failed selectors. Find DIFFERENT working alternatives."
        )
    candidates = f"\n\nHEURISTIC CANDIDATES:\n{candidates_context}" if candidates_context else ""

    return _PROMPT_TEMPLATE.format(
        target=_TARGETS[kind],
        label=label,
        note=note,
        failed=failed,
        candidates=candidates,
        html=html,
        priorities=_PRIORITIES[kind].format(label=label),
        avoid=_AVOID[kind].format(label=label),
    )


# ==================== Response Parsing ====================

_FENCED_JSON = re.compile(r"```json\n([\s\S]*?)\n```")
_FENCED_PLAIN = re.compile(r"```\n([\s\S]*?)\n```")
_QUOTE_FIXES = [
    (re.compile(r",\s*'([^']*)',"), r', "\1",'),
    (re.compile(r":\s*'([^']*)',"), r': "\1",'),
    (re.compile(r",\s*'([^']*)\"$"), r', "\1"'),
]


def extract_json_block(content: str) -> str:
    """Fenced block, or the span from the first '{' to the last '}'"""
    match = _FENCED_JSON.search(content) or _FENCED_PLAIN.search(content)
    if match:
        return match.group(1).strip()
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise ParseFailure("No JSON object found in response")
    return content[start:end + 1].strip()


def _truncate_after_object(json_string: str) -> str:
    """Drop lines after the one that closes the outermost object"""
    kept = []
    depth = 0
    for line in json_string.split("\n"):
        kept.append(line)
        closed = False
        for char in line:
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
            if depth == 0 and len(kept) > 1:
                closed = True
                break
        if closed:
            break
    return "\n".join(kept)


def _repair_quotes(json_string: str) -> str:
    fixed = json_string
    for pattern, replacement in _QUOTE_FIXES:
        fixed = pattern.sub(replacement, fixed)
    return fixed


def parse_ai_response(content: Any) -> SelectorResult:
    """
    Lenient parse of a provider answer into a SelectorResult.

    Accepts pre-parsed dicts, fenced code blocks and raw object spans, and
    repairs common single-quote defects. Anything unrecoverable yields the
    empty result.
    """
    if isinstance(content, dict):
        return SelectorResult.from_dict(content)
    if not isinstance(content, str):
        content = json.dumps(content) if content is not None else ""

    try:
        json_string = _truncate_after_object(extract_json_block(content))
        fixed = _repair_quotes(json_string)
        try:
            parsed = json.loads(fixed)
        except ValueError as e:
            raise ParseFailure(f"Invalid JSON after repair: {e}") from e
        if not isinstance(parsed, dict):
            raise ParseFailure(f"Expected a JSON object, got {type(parsed).__name__}")
        return SelectorResult.from_dict(parsed)
    except ParseFailure as e:
        logger.warning(f"[RESOLVER] Failed to parse provider response: {e}")
        logger.debug(f"[RESOLVER] Raw response: {content[:500]}")
        return SelectorResult()


# ==================== Live Validation ====================

_CONTAINS = re.compile(r"([^:\s,]*):contains\(['\"]([^'\"]+)['\"]\)")


def transform_selector(selector: str) -> str:
    """Rewrite non-standard :contains("x") into Playwright text selectors"""
    if not selector:
        return selector

    def _rewrite(match):
        element_part, text = match.group(1).strip(), match.group(2)
        if element_part:
            return f'{element_part}:has-text("{text}")'
        return f'text="{text}"'

    return _CONTAINS.sub(_rewrite, selector)


async def validate_selector(page: Page, selector: str) -> int:
    """
    Count live matches for a selector.

    Raises ValidationFailure on zero matches or evaluation errors.
    """
    try:
        count = await page.locator(transform_selector(selector)).first.count()
    except Exception as e:
        raise ValidationFailure(selector, f"invalid: {e}") from e
    if count <= 0:
        raise ValidationFailure(selector, "found 0 elements")
    return count


# ==================== Resolver ====================

class SelectorResolver:
    """
    Provider-backed selector disambiguation with live validation.

    The provider call itself is retried with a progressive delay before an
    attempt counts as failed; whole attempts are retried up to
    max_retries more times.
    """

    def __init__(
        self,
        gateway,
        max_html_chars: int = DEFAULT_MAX_CHARS,
        provider_call_attempts: int = 3,
        provider_backoff_s: float = 1.0,
        retry_delay_s: float = 0.5,
    ):
        self.gateway = gateway
        self.max_html_chars = max_html_chars
        self.provider_call_attempts = provider_call_attempts
        self.provider_backoff_s = provider_backoff_s
        self.retry_delay_s = retry_delay_s

    @classmethod
    def from_config(cls, gateway, config) -> "SelectorResolver":
        return cls(
            gateway,
            max_html_chars=config.max_html_chars,
            provider_call_attempts=config.provider_call_attempts,
            provider_backoff_s=config.provider_backoff_s,
            retry_delay_s=config.retry_delay_s,
        )

    async def _call_provider(self, prompt: str) -> str:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.provider_call_attempts + 1):
            system_prompt = SYSTEM_PROMPT + (RETRY_SYSTEM_SUFFIX if attempt > 1 else "")
            try:
                response = await self.gateway.execute(TASK_KIND, prompt, system_prompt)
                logger.debug(
                    f"[RESOLVER] Provider response from {response.provider}/{response.model} "
                    f"({response.tokens_used} tokens)"
                )
                if not response.content:
                    raise ProviderFailure("Empty response from provider")
                return response.content
            except ProviderFailure as e:
                last_error = e
                logger.warning(f"[RESOLVER] Provider call failed on attempt {attempt}: {e}")
                if attempt < self.provider_call_attempts:
                    await asyncio.sleep(self.provider_backoff_s * attempt)
        raise last_error

    async def find_selector(
        self,
        page: Page,
        label: str,
        element_type: str = "any",
        step_note: Optional[str] = None,
        failed_selectors: Optional[List[str]] = None,
        candidates_context: Optional[str] = None,
    ) -> SelectorResult:
        """One disambiguation round trip; the empty result on any failure"""
        logger.info(f"[RESOLVER] Looking for '{label}' (type: {element_type})")
        try:
            markup = await page.content()
        except Exception as e:
            logger.warning(f"[RESOLVER] Could not read page content: {e}")
            return SelectorResult()

        prompt = build_prompt(
            label,
            element_type,
            clean_html(markup, self.max_html_chars),
            step_note=step_note,
            failed_selectors=failed_selectors,
            candidates_context=candidates_context,
        )
        try:
            content = await self._call_provider(prompt)
        except ProviderFailure as e:
            logger.warning(f"[RESOLVER] Disambiguation failed: {e}")
            return SelectorResult()
        return parse_ai_response(content)

    async def find_selector_with_validation(
        self,
        page: Page,
        label: str,
        element_type: str = "any",
        step_note: Optional[str] = None,
        max_retries: int = 2,
        failed_selectors: Optional[List[str]] = None,
        candidates_context: Optional[str] = None,
    ) -> SelectorResult:
        """
        Ask, validate live, and retry with the failures fed back.

        failed_selectors is extended in place with every selector that
        validated to zero elements. Returns the first working selector
        (remaining working ones as fallbacks), or the empty result once
        all attempts are spent.
        """
        failed = failed_selectors if failed_selectors is not None else []

        for attempt in range(1, max_retries + 2):
            logger.info(f"[RESOLVER] Attempt {attempt}/{max_retries + 1} for '{label}'")
            result = await self.find_selector(
                page, label, element_type, step_note, list(failed), candidates_context
            )

            to_test = [s for s in result.all_selectors() if s not in failed]
            if result.is_empty:
                logger.info(f"[RESOLVER] Attempt {attempt}: no selector returned")
            elif not to_test:
                logger.info(f"[RESOLVER] Attempt {attempt}: all selectors already failed previously")
            else:
                working = []
                for selector in to_test:
                    try:
                        count = await validate_selector(page, selector)
                        working.append(selector)
                        logger.debug(f"[RESOLVER] Selector '{selector}' found {count} element(s)")
                    except ValidationFailure as e:
                        logger.debug(f"[RESOLVER] {e}")
                        failed.append(selector)

                if working:
                    logger.info(f"[RESOLVER] Found {len(working)} working selector(s) on attempt {attempt}")
                    return SelectorResult(
                        selector=working[0],
                        confidence=result.confidence,
                        fallbacks=working[1:],
                    )
                logger.info(f"[RESOLVER] All selectors failed on attempt {attempt} ({len(failed)} failed so far)")

            if attempt <= max_retries:
                await asyncio.sleep(self.retry_delay_s)

        logger.warning(f"[RESOLVER] All {max_retries + 1} attempts failed for '{label}'. Failed: {', '.join(map(str, failed))}")
        return SelectorResult()

    # ==================== Selector Preference ====================

    async def analyze_selector_preference(
        self,
        primary: Dict[str, Any],
        fallbacks: List[Dict[str, Any]],
        action_type: str,
        element_label: str,
    ) -> Dict[str, Any]:
        """
        Rank tested selectors.

        Each result dict carries selector, passed and optionally duration
        and error. Falls back to a rule-based ranking on any failure.
        """
        prompt = _analysis_prompt(primary, fallbacks, action_type, element_label)
        try:
            response = await self.gateway.execute(TASK_KIND, prompt, ANALYSIS_SYSTEM_PROMPT)
            parsed = json.loads(extract_json_block(response.content or ""))
            if not isinstance(parsed, dict):
                raise ParseFailure("Selector analysis is not a JSON object")
            return {
                "recommended_selector": parsed.get("recommendedSelector") or "",
                "ranking": parsed.get("ranking") or [],
            }
        except (ProviderFailure, ParseFailure, ValueError) as e:
            logger.warning(f"[RESOLVER] Selector analysis failed, using rules: {e}")
            return fallback_selector_analysis(primary, fallbacks)


def _analysis_prompt(primary: Dict[str, Any], fallbacks: List[Dict[str, Any]], action_type: str, label: str) -> str:
    def describe(result: Dict[str, Any]) -> str:
        return (
            f"- Test Result: {'PASSED' if result.get('passed') else 'FAILED'}\n"
            f"   - Duration: {result.get('duration') or 'N/A'}ms\n"
            f"   - Error: {result.get('error') or 'None'}"
        )

    fallback_lines = "\n".join(
        f"{i}. {f.get('selector')}\n   {describe(f)}" for i, f in enumerate(fallbacks, 1)
    )
    return f"""Analyze these CSS selector test results for {action_type} action on "{label}" element:

PRIMARY SELECTOR:
- Selector: {primary.get('selector')}
{describe(primary)}

FALLBACK SELECTORS:
{fallback_lines}

TASK:
Analyze these results and recommend the best selector based on:
1. Test success (passed/failed)
2. Performance (duration)
3. Selector reliability and maintainability
4. Semantic meaning and automation best practices

Consider factors like:
- data-* attributes are more stable than CSS classes
- Shorter selectors are often more reliable
- Semantic selectors are easier to maintain

RESPOND WITH VALID JSON ONLY:
{{
  "recommendedSelector": "best-selector-here",
  "ranking": [
    {{ "selector": "selector1", "score": 9.0, "notes": "why this score" }},
    {{ "selector": "selector2", "score": 7.5, "notes": "why this score" }}
  ]
}}"""


def fallback_selector_analysis(primary: Dict[str, Any], fallbacks: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Passed selectors only: data-* attributes first, then shortest"""
    passed = [r for r in [primary] + list(fallbacks) if r and r.get("passed")]
    if not passed:
        return {"recommended_selector": (primary or {}).get("selector", ""), "ranking": []}

    ranked = sorted(passed, key=lambda r: ("[data-" not in r["selector"], len(r["selector"])))
    return {
        "recommended_selector": ranked[0]["selector"],
        "ranking": [
            {
                "selector": r["selector"],
                "score": 10 - i,
                "notes": "Has data attribute" if "[data-" in r["selector"] else "CSS selector",
            }
            for i, r in enumerate(ranked)
        ],
    }

"""
Element Graph Builder

Turns a live page into a full snapshot of candidate elements in one
pass: attributes, visibility, accessible names, stability-ranked
locators, composite widgets and relational context (form, modal,
section heading, nearby text). Every build is a fresh snapshot
identified by a screen fingerprint.

The live build runs a single read-only script in the page. Markup can
also be turned into a graph through the DOM view rules in dom_view.py.
"""

import hashlib
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from playwright.async_api import Page

from .dom_view import (
    SoupDomView,
    accessible_name,
    class_list,
    closest,
    composite_details,
    detect_widget_type,
    find_composite_container,
    form_group,
    generate_stable_selectors,
    has_attr,
    in_active_tab,
    is_primary_button,
    modal_or_drawer,
    nearby_text,
    section_title,
    statically_clickable,
    statically_visible,
)
from ..errors import GraphBuildFailure

logger = logging.getLogger(__name__)


class Stability(Enum):
    """How likely a locator survives re-renders"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class InteractionType(Enum):
    """How an element is interacted with"""
    CLICK = "click"
    TYPE = "type"
    BOTH = "both"
    HIDDEN = "hidden"


# ==================== Data Model ====================

@dataclass(frozen=True, eq=False)
class Element:
    """One DOM node considered as an interaction candidate"""
    tag: str
    role: Optional[str] = None
    accessible_name: Optional[str] = None
    title: Optional[str] = None
    tooltip_title: Optional[str] = None
    label: Optional[str] = None
    placeholder: Optional[str] = None
    value: Optional[str] = None
    type: Optional[str] = None

    # Identifiers
    id: Optional[str] = None
    classes: List[str] = field(default_factory=list)
    data_test_id: Optional[str] = None
    data_unique: Optional[str] = None
    name: Optional[str] = None
    href: Optional[str] = None

    # Location & visibility
    bounding_box: Optional[Dict[str, float]] = None
    in_viewport: bool = True
    visible: bool = True
    z_index: int = 0

    # Interactivity
    enabled: bool = True
    focusable: bool = False
    clickable: bool = False
    content_editable: bool = False

    text: Optional[str] = None
    text_content: Optional[str] = None

    # Relational context
    form_group: Optional[str] = None
    section_title: Optional[str] = None
    nearby_text: List[str] = field(default_factory=list)
    parent_modal_or_drawer: Optional[str] = None
    is_in_active_tab: bool = True
    in_navigation: bool = False

    # State
    is_primary: bool = False
    is_submit: bool = False
    validation_state: Optional[str] = None  # valid, invalid, pending
    aria_current: Optional[str] = None

    candidate_selectors: List[str] = field(default_factory=list)
    stability: Stability = Stability.LOW
    widget_type: Optional[str] = None

    @property
    def is_hidden_input(self) -> bool:
        return self.tag == "input" and (self.type or "").lower() == "hidden"

    @property
    def interaction_type(self) -> InteractionType:
        if self.is_hidden_input:
            return InteractionType.HIDDEN
        editable = self.tag in ("input", "textarea") or self.content_editable or self.role == "textbox"
        if editable:
            return InteractionType.BOTH if self.clickable else InteractionType.TYPE
        return InteractionType.CLICK

    @property
    def signature(self) -> str:
        """Identity used for temporal proximity tracking"""
        return "|".join([
            self.tag,
            self.data_test_id or "",
            self.id or "",
            self.name or "",
            (self.accessible_name or "")[:20],
            self.form_group or "",
        ])

    def context_summary(self) -> str:
        """Section / form / modal / nearby text summary"""
        parts = []
        if self.section_title:
            parts.append(f"Section: {self.section_title}")
        if self.form_group:
            parts.append(f"Form: {self.form_group}")
        if self.parent_modal_or_drawer:
            parts.append(f"Modal: {self.parent_modal_or_drawer}")
        if self.nearby_text:
            parts.append(f"Nearby: {', '.join(self.nearby_text[:2])}")
        return " | ".join(parts)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Element":
        """Build from the camelCase record returned by the page script"""
        try:
            stability = Stability(data.get("stability") or "low")
        except ValueError:
            stability = Stability.LOW
        return cls(
            tag=(data.get("tag") or "").lower(),
            role=data.get("role") or None,
            accessible_name=data.get("accessibleName") or None,
            title=data.get("title") or None,
            tooltip_title=data.get("tooltipTitle") or None,
            label=data.get("label") or None,
            placeholder=data.get("placeholder") or None,
            value=data.get("value") or None,
            type=data.get("type") or None,
            id=data.get("id") or None,
            classes=list(data.get("classes") or []),
            data_test_id=data.get("dataTestId") or None,
            data_unique=data.get("dataUnique") or None,
            name=data.get("name") or None,
            href=data.get("href") or None,
            bounding_box=data.get("boundingBox"),
            in_viewport=bool(data.get("inViewport", True)),
            visible=bool(data.get("visible", True)),
            z_index=int(data.get("zIndex") or 0),
            enabled=bool(data.get("enabled", True)),
            focusable=bool(data.get("focusable", False)),
            clickable=bool(data.get("clickable", False)),
            content_editable=bool(data.get("contentEditable", False)),
            text=data.get("text") or None,
            text_content=data.get("textContent") or None,
            form_group=data.get("formGroup") or None,
            section_title=data.get("sectionTitle") or None,
            nearby_text=list(data.get("nearbyText") or []),
            parent_modal_or_drawer=data.get("parentModalOrDrawer") or None,
            is_in_active_tab=bool(data.get("isInActiveTab", True)),
            in_navigation=bool(data.get("inNavigation", False)),
            is_primary=bool(data.get("isPrimary", False)),
            is_submit=bool(data.get("isSubmit", False)),
            validation_state=data.get("validationState") or None,
            aria_current=data.get("ariaCurrent") or None,
            candidate_selectors=list(data.get("candidateSelectors") or []),
            stability=stability,
            widget_type=data.get("widgetType") or None,
        )


@dataclass(frozen=True, eq=False)
class ElementGraph:
    """Full element snapshot of one screen"""
    elements: List[Element]
    url: str
    title: str
    screen_fingerprint: str
    timestamp: float = field(default_factory=time.time)
    active_modal: Optional[str] = None
    active_forms: List[str] = field(default_factory=list)
    landmark_structure: List[str] = field(default_factory=list)
    build_time_ms: int = 0

    def visible_elements(self) -> List[Element]:
        return [e for e in self.elements if e.visible]


# ==================== Fingerprint ====================

def content_hash(elements: List[Element]) -> str:
    """Short hash over sorted short visible texts"""
    texts = sorted(
        text for text in (
            (e.text_content or e.accessible_name or e.placeholder or "").strip()
            for e in elements if e.visible
        )
        if 0 < len(text) < 50
    )
    digest_source = "|".join(texts)[:100]
    return hashlib.md5(digest_source.encode("utf-8")).hexdigest()[:10]


def screen_fingerprint(url: str, elements: List[Element], landmarks: List[str]) -> str:
    """URL + content hash + heading path"""
    main_heading = landmarks[0] if landmarks else ""
    heading_path = "|".join(landmarks[:3])
    return f"{url}:{content_hash(elements)}:{main_heading}:{heading_path}"


# ==================== In-page Extraction Script ====================

GRAPH_EXTRACTION_JS = r"""
(patterns) => {
    const GENERATED_CLASS = [/^jss\d+$/, /^css-[a-z0-9]+$/i, /^makeStyles-\w+-\d+$/,
                             /^[a-z]{3,}-[a-z0-9]{6,}$/i, /^[a-z]+_[a-z0-9]{5,}$/i];
    const GENERATED_ID = /^[a-z]+-[0-9a-f]{6,}$/i;
    const FORM_CONTROLS = ['input', 'textarea', 'select'];
    const INTERACTIVE_DESC = '[aria-haspopup], [role="button"], [role="combobox"], input, select, textarea';
    const text = (el) => (el && el.textContent ? el.textContent.replace(/\s+/g, ' ').trim() : '');

    function isVisible(el) {
        const s = window.getComputedStyle(el);
        return s.display !== 'none' && s.visibility !== 'hidden' && s.opacity !== '0' &&
               el.offsetWidth > 0 && el.offsetHeight > 0;
    }

    function inViewport(el) {
        const r = el.getBoundingClientRect();
        return r.bottom >= 0 && r.right >= 0 && r.top <= window.innerHeight && r.left <= window.innerWidth;
    }

    function isClickable(el) {
        const s = window.getComputedStyle(el);
        if (s.pointerEvents === 'none') return false;
        if (s.cursor === 'pointer') return true;
        const tag = el.tagName.toLowerCase();
        if (['button', 'a', 'select'].includes(tag)) return true;
        if (tag === 'input' && el.getAttribute('type') !== 'hidden') return true;
        if (el.hasAttribute('onclick') || el.getAttribute('role') === 'button') return true;
        return el.hasAttribute('aria-haspopup') || el.getAttribute('role') === 'combobox';
    }

    function accessibleName(el) {
        if (el.hasAttribute('aria-label')) return (el.getAttribute('aria-label') || '').trim();
        if (el.hasAttribute('aria-labelledby')) {
            const parts = (el.getAttribute('aria-labelledby') || '').split(/\s+/)
                .map(id => text(document.getElementById(id))).filter(Boolean);
            if (parts.length) return parts.join(' ');
        }
        const tag = el.tagName.toLowerCase();
        if (tag === 'input' || tag === 'textarea') {
            if (el.id) {
                const lbl = document.querySelector(`label[for="${CSS.escape(el.id)}"]`);
                if (lbl) return text(lbl);
            }
            const wrap = el.closest('label');
            if (wrap) return text(wrap).replace(el.value || '', '').trim();
        }
        if (tag === 'input' || tag === 'textarea' || tag === 'select') {
            let parent = el.parentElement;
            for (let depth = 0; parent && depth < 3; depth++) {
                const lbl = parent.querySelector('label');
                if (lbl && text(lbl)) return text(lbl);
                parent = parent.parentElement;
            }
            let sib = el.previousElementSibling;
            while (sib) {
                if (sib.tagName.toLowerCase() === 'label') return text(sib);
                sib = sib.previousElementSibling;
            }
        }
        if (tag === 'button') return text(el);
        if (el.title && el.title.trim()) return el.title.trim();
        const tip = el.closest('[data-tooltip-title], [title]');
        if (tip) {
            const t = tip.getAttribute('data-tooltip-title') || tip.title;
            if (t && t.trim()) return t.trim();
        }
        return text(el);
    }

    function formGroup(el) {
        const form = el.closest('form');
        if (form) return form.id || form.getAttribute('name') || form.getAttribute('data-testid') || 'unnamed-form';
        const fieldset = el.closest('fieldset');
        if (fieldset) return text(fieldset.querySelector('legend')) || 'unnamed-fieldset';
        return null;
    }

    function sectionTitle(el) {
        let current = el;
        while (current && current !== document.body) {
            let sib = current.previousElementSibling;
            while (sib) {
                if (/^h[1-6]$/i.test(sib.tagName)) return text(sib);
                const nested = sib.querySelectorAll('h1, h2, h3, h4, h5, h6');
                if (nested.length) return text(nested[nested.length - 1]);
                sib = sib.previousElementSibling;
            }
            current = current.parentElement;
        }
        const ref = el.getAttribute('aria-labelledby');
        const heading = ref ? document.getElementById(ref) : null;
        if (heading && /^h[1-6]$/i.test(heading.tagName)) return text(heading);
        return null;
    }

    function nearbyText(el) {
        const out = [];
        let prev = el.previousElementSibling, next = el.nextElementSibling;
        for (let i = 0; i < 2; i++) {
            if (prev && text(prev)) out.push(text(prev).substring(0, 50));
            if (next && text(next)) out.push(text(next).substring(0, 50));
            prev = prev ? prev.previousElementSibling : null;
            next = next ? next.nextElementSibling : null;
        }
        const parent = el.parentElement;
        if (parent) {
            const own = Array.from(parent.childNodes)
                .filter(n => n.nodeType === Node.TEXT_NODE)
                .map(n => (n.textContent || '').trim())
                .filter(t => t.length > 3).join(' ');
            if (own) out.push(own.substring(0, 50));
        }
        return out;
    }

    function modalOrDrawer(el) {
        const m = el.closest('[role="dialog"], [role="alertdialog"], .modal, .drawer, [data-modal], [data-drawer]');
        if (!m) return null;
        return m.id || m.getAttribute('aria-label') || (typeof m.className === 'string' ? m.className : '') || 'unnamed-modal';
    }

    function inActiveTab(el) {
        const panel = el.closest('[role="tabpanel"]');
        if (panel) return panel.getAttribute('aria-hidden') !== 'true';
        const tab = el.closest('.tab-content, .tab-pane, [data-tab-content]');
        if (tab) return window.getComputedStyle(tab).display !== 'none';
        return true;
    }

    function stableSelectors(el) {
        const selectors = [];
        let stability = 'low';
        const tag = el.tagName.toLowerCase();
        if (el.hasAttribute('data-testid')) { selectors.push(`[data-testid="${el.getAttribute('data-testid')}"]`); stability = 'high'; }
        if (el.hasAttribute('data-unique')) { selectors.push(`[data-unique="${el.getAttribute('data-unique')}"]`); stability = 'high'; }
        if (el.id && !GENERATED_ID.test(el.id)) { selectors.push(`#${el.id}`); stability = 'high'; }
        if (FORM_CONTROLS.includes(tag) && el.getAttribute('name')) { selectors.push(`${tag}[name="${el.getAttribute('name')}"]`); stability = 'high'; }
        const role = el.getAttribute('role');
        if (role && el.hasAttribute('aria-label')) {
            selectors.push(`[role="${role}"][aria-label="${el.getAttribute('aria-label')}"]`);
            if (stability === 'low') stability = 'medium';
        }
        if (tag === 'button') {
            const t = text(el);
            if (t && t.length < 30) { selectors.push(`button:has-text("${t}")`); if (stability === 'low') stability = 'medium'; }
        }
        if (tag === 'a') {
            const href = el.getAttribute('href');
            if (href && href.length < 100) {
                selectors.push(`a[href="${href}"]`);
                const base = href.split(/[?#]/)[0];
                if (base && base !== href) selectors.push(`a[href^="${base}"]`);
                if (stability === 'low') stability = 'medium';
            }
        }
        const cls = typeof el.className === 'string' ? el.className.split(/\s+/) : [];
        const semantic = cls.filter(c => c && c.length < 30 && !GENERATED_CLASS.some(p => p.test(c)));
        if (semantic.length) selectors.push('.' + semantic.join('.'));
        return { selectors, stability };
    }

    function identified(el) {
        return el.hasAttribute('data-unique') || el.hasAttribute('data-testid') || !!el.id ||
               el.hasAttribute('data-loading-state') || el.hasAttribute('title');
    }

    function compositeContainer(el) {
        const trigger = el.hasAttribute('aria-haspopup') || el.getAttribute('role') === 'combobox' ||
                        el.classList.contains('MuiSelect-select') || el.classList.contains('ant-select');
        if (trigger) {
            let current = el.parentElement;
            for (let level = 0; current && level < 3; level++) {
                if (identified(current) &&
                    (current.querySelector(INTERACTIVE_DESC) ||
                     current.querySelector('.MuiSelect-root, .ant-select, [aria-expanded], [aria-haspopup="listbox"]'))) {
                    return current;
                }
                current = current.parentElement;
            }
            const parent = el.parentElement;
            if (parent && (parent.hasAttribute('data-unique') || parent.hasAttribute('data-testid') || parent.id)) return parent;
        }
        if (identified(el) && (el.querySelector('input[type="hidden"]') || el.querySelector(INTERACTIVE_DESC) ||
                               el.querySelector('.MuiSelect-root, .ant-select, [aria-expanded]'))) {
            return el;
        }
        return null;
    }

    function widgetType(el) {
        if (el.hasAttribute('aria-haspopup') || el.querySelector('[aria-haspopup]') ||
            el.getAttribute('role') === 'combobox' || el.querySelector('[role="combobox"]') ||
            el.classList.contains('MuiSelect-root') || el.classList.contains('ant-select') ||
            el.querySelector('input[type="hidden"][name]')) return 'dropdown';
        if (el.getAttribute('type') === 'date' || el.querySelector('[type="date"]')) return 'date-picker';
        if (el.hasAttribute('aria-autocomplete') || el.classList.contains('autocomplete')) return 'autocomplete';
        if (el.querySelector('select[multiple]') || el.hasAttribute('aria-multiselectable')) return 'multi-select';
        if (el.tagName.toLowerCase() === 'input' || el.querySelector('input:not([type="hidden"])')) return 'simple-input';
        return null;
    }

    function validationState(el) {
        if (el.hasAttribute('aria-invalid')) return el.getAttribute('aria-invalid') === 'true' ? 'invalid' : 'valid';
        if (el instanceof HTMLInputElement && el.validity && !el.validity.valid) return 'invalid';
        const cls = (typeof el.className === 'string' ? el.className : '').toLowerCase();
        if (cls.includes('invalid') || cls.includes('error')) return 'invalid';
        if (cls.includes('valid') || cls.includes('success')) return 'valid';
        if (cls.includes('pending') || cls.includes('loading')) return 'pending';
        return null;
    }

    function isPrimary(el) {
        if (!(el instanceof HTMLButtonElement)) return false;
        const cls = (el.className || '').toLowerCase();
        return el.type === 'submit' || cls.includes('primary') || cls.includes('submit') || el.hasAttribute('data-primary');
    }

    function describe(source, el) {
        const rect = el.getBoundingClientRect();
        const { selectors, stability } = stableSelectors(el);
        let role = el.getAttribute('role') || null, type = el.getAttribute('type') || null;
        let value = typeof el.value === 'string' ? el.value : null, label = null;
        if (el.querySelector('[aria-haspopup="true"]')) { role = 'combobox'; type = 'select'; }
        const inner = el.querySelector('input[type="hidden"][name]') || el.querySelector('input, textarea, select');
        if (inner) {
            value = inner.value || value;
            if (inner.id) {
                const assoc = document.querySelector(`label[for="${CSS.escape(inner.id)}"]`);
                if (assoc && text(assoc)) label = text(assoc);
            }
        }
        const tip = el.closest('[data-tooltip-title], [title]');
        const t = text(el);
        return {
            tag: el.tagName.toLowerCase(),
            role, type, value,
            accessibleName: accessibleName(el) || null,
            title: el.title || null,
            tooltipTitle: tip ? (tip.getAttribute('data-tooltip-title') || tip.title || null) : null,
            label: label || el.getAttribute('aria-label') || null,
            placeholder: el.getAttribute('placeholder'),
            id: el.id || null,
            classes: typeof el.className === 'string' ? el.className.split(/\s+/).filter(Boolean) : [],
            dataTestId: el.getAttribute('data-testid'),
            dataUnique: el.getAttribute('data-unique'),
            name: el.getAttribute('name'),
            href: el.tagName.toLowerCase() === 'a' ? el.getAttribute('href') : null,
            boundingBox: { x: rect.x, y: rect.y, width: rect.width, height: rect.height },
            inViewport: inViewport(el),
            visible: isVisible(el),
            zIndex: parseInt(window.getComputedStyle(el).zIndex) || 0,
            enabled: !el.disabled && el.getAttribute('aria-disabled') !== 'true',
            focusable: el.tabIndex >= 0 || ['input', 'button', 'select', 'textarea', 'a'].includes(el.tagName.toLowerCase()),
            clickable: isClickable(el),
            contentEditable: !!el.isContentEditable,
            text: t || null,
            textContent: t || null,
            formGroup: formGroup(el),
            sectionTitle: sectionTitle(el),
            nearbyText: nearbyText(el),
            parentModalOrDrawer: modalOrDrawer(el),
            isInActiveTab: inActiveTab(source),
            inNavigation: !!el.closest(patterns.navigationContainers),
            isPrimary: isPrimary(source),
            isSubmit: source.getAttribute('type') === 'submit' ||
                      (source instanceof HTMLButtonElement && source.type === 'submit'),
            validationState: validationState(source),
            ariaCurrent: source.getAttribute('aria-current'),
            candidateSelectors: selectors,
            stability,
            widgetType: widgetType(el)
        };
    }

    const seen = new Set();
    const elements = [];
    const candidates = document.querySelectorAll(
        'input, button, select, textarea, a[href], ' +
        '[role="button"], [role="link"], [role="textbox"], [role="combobox"], [role="listbox"], ' +
        '[aria-haspopup], [aria-expanded], [data-testid], [data-unique], [id], ' +
        '[tabindex]:not([tabindex="-1"]), [onclick], .btn, .button, [contenteditable="true"], ' +
        'label, legend, .form-label'
    );
    for (const node of candidates) {
        if (!isVisible(node)) continue;
        const el = compositeContainer(node) || node;
        if (seen.has(el)) continue;
        seen.add(el);
        elements.push(describe(node, el));
    }

    for (const label of (patterns.buttonTexts || [])) {
        for (const button of document.querySelectorAll(patterns.interactiveButtonQuery)) {
            if (seen.has(button) || !isVisible(button) || !(button.textContent || '').includes(label)) continue;
            seen.add(button);
            elements.push(describe(button, button));
        }
    }

    const modal = document.querySelector(patterns.modalSelectors);
    return {
        elements,
        activeModal: modal ? (modal.id || modal.getAttribute('aria-label') || null) : null,
        activeForms: Array.from(document.querySelectorAll('form'))
            .map(f => f.id || f.getAttribute('name') || f.getAttribute('data-testid') || 'unnamed-form'),
        landmarkStructure: Array.from(document.querySelectorAll(patterns.landmarkQuery))
            .map(el => text(el) || el.tagName.toLowerCase()).filter(Boolean)
    };
}
"""

CANDIDATE_QUERY = (
    'input, button, select, textarea, a[href], '
    '[role="button"], [role="link"], [role="textbox"], [role="combobox"], [role="listbox"], '
    '[aria-haspopup], [aria-expanded], [data-testid], [data-unique], [id], '
    '[tabindex]:not([tabindex="-1"]), [onclick], .btn, .button, [contenteditable="true"], '
    'label, legend, .form-label'
)


# ==================== Builder ====================

class ElementGraphBuilder:
    """
    Builds element graphs from live pages or markup.

    Reads the page only; a page access error aborts the build with
    GraphBuildFailure and no partial graph.
    """

    def __init__(self, patterns: Optional[Dict[str, Any]] = None):
        from ..knowledge.selector_memory import DEFAULT_PATTERNS
        self.patterns = dict(DEFAULT_PATTERNS)
        if patterns:
            self.patterns.update(patterns)

    async def build(self, page: Page) -> ElementGraph:
        """Build a graph from a live Playwright page"""
        start = time.time()
        try:
            url = page.url
            title = await page.title()
            raw = await page.evaluate(GRAPH_EXTRACTION_JS, self.patterns)
        except Exception as e:
            raise GraphBuildFailure(f"Failed to read page: {e}") from e

        if not isinstance(raw, dict):
            logger.warning("[GRAPH] Extraction script returned no data, building from markup")
            try:
                markup = await page.content()
            except Exception as e:
                raise GraphBuildFailure(f"Failed to read page content: {e}") from e
            return self.build_from_markup(markup, url=url, title=title)

        try:
            elements = [Element.from_dict(item) for item in raw.get("elements") or []]
        except (TypeError, ValueError, AttributeError) as e:
            raise GraphBuildFailure(f"Malformed extraction result: {e}") from e

        landmarks = list(raw.get("landmarkStructure") or [])
        graph = ElementGraph(
            elements=elements,
            url=url,
            title=title or "",
            screen_fingerprint=screen_fingerprint(url, elements, landmarks),
            active_modal=raw.get("activeModal") or None,
            active_forms=list(raw.get("activeForms") or []),
            landmark_structure=landmarks,
            build_time_ms=int((time.time() - start) * 1000),
        )
        self._log_summary(graph)
        return graph

    def build_from_markup(self, markup: str, url: str = "", title: str = "") -> ElementGraph:
        """
        Build a graph from static markup.

        Layout facts are unknown here: every element counts as in
        viewport, and visibility comes from hidden/aria-hidden/inline
        style only.
        """
        start = time.time()
        view = SoupDomView(markup)
        body = view.body()
        elements: List[Element] = []
        seen = set()

        for node in view.query_all(body, CANDIDATE_QUERY):
            if not statically_visible(view, node):
                continue
            target = find_composite_container(view, node) or node
            if id(target) in seen:
                continue
            seen.add(id(target))
            elements.append(self._describe(view, node, target))

        for label in self.patterns.get("buttonTexts") or []:
            for button in view.query_all(body, self.patterns["interactiveButtonQuery"]):
                if id(button) in seen or not statically_visible(view, button):
                    continue
                if label not in view.text(button):
                    continue
                seen.add(id(button))
                elements.append(self._describe(view, button, button))

        modal = view.query_descendant(body, self.patterns["modalSelectors"])
        landmarks = [
            view.text(n) or view.tag_name(n)
            for n in view.query_all(body, self.patterns["landmarkQuery"])
        ]
        active_forms = [
            view.get_attribute(f, "id") or view.get_attribute(f, "name")
            or view.get_attribute(f, "data-testid") or "unnamed-form"
            for f in view.query_all(body, "form")
        ]
        if not title:
            title_node = view.query_descendant(view.root(), "title")
            title = view.text(title_node) if title_node is not None else ""

        graph = ElementGraph(
            elements=elements,
            url=url,
            title=title,
            screen_fingerprint=screen_fingerprint(url, elements, landmarks),
            active_modal=(view.get_attribute(modal, "id") or view.get_attribute(modal, "aria-label")) if modal is not None else None,
            active_forms=active_forms,
            landmark_structure=[l for l in landmarks if l],
            build_time_ms=int((time.time() - start) * 1000),
        )
        self._log_summary(graph)
        return graph

    def _describe(self, view: SoupDomView, source, node) -> Element:
        selectors, stability = generate_stable_selectors(view, node)
        role, type_, value, derived_label = composite_details(view, node)
        tag = view.tag_name(node)
        text = view.text(node) or None
        tooltip_host = closest(view, node, lambda n: has_attr(view, n, "data-tooltip-title") or has_attr(view, n, "title"))
        tooltip = None
        if tooltip_host is not None:
            tooltip = view.get_attribute(tooltip_host, "data-tooltip-title") or view.get_attribute(tooltip_host, "title")
        disabled = view.get_attribute(node, "disabled") is not None or view.get_attribute(node, "aria-disabled") == "true"
        source_type = (view.get_attribute(source, "type") or "").lower()

        return Element(
            tag=tag,
            role=role or view.get_attribute(node, "role"),
            accessible_name=accessible_name(view, node) or None,
            title=view.get_attribute(node, "title"),
            tooltip_title=tooltip,
            label=derived_label or view.get_attribute(node, "aria-label"),
            placeholder=view.get_attribute(node, "placeholder"),
            value=value or view.get_attribute(node, "value"),
            type=type_ or view.get_attribute(node, "type"),
            id=view.get_attribute(node, "id"),
            classes=class_list(view, node),
            data_test_id=view.get_attribute(node, "data-testid"),
            data_unique=view.get_attribute(node, "data-unique"),
            name=view.get_attribute(node, "name"),
            href=view.get_attribute(node, "href") if tag == "a" else None,
            visible=True,
            in_viewport=True,
            enabled=not disabled,
            focusable=tag in ("input", "button", "select", "textarea", "a")
            or (view.get_attribute(node, "tabindex") not in (None, "-1")),
            clickable=statically_clickable(view, node),
            content_editable=view.get_attribute(node, "contenteditable") == "true",
            text=text,
            text_content=text,
            form_group=form_group(view, node),
            section_title=section_title(view, node),
            nearby_text=nearby_text(view, node),
            parent_modal_or_drawer=modal_or_drawer(view, node),
            is_in_active_tab=in_active_tab(view, source),
            in_navigation=closest(view, node, lambda n: view.matches(n, self.patterns["navigationContainers"])) is not None,
            is_primary=is_primary_button(view, source),
            is_submit=source_type == "submit" or (view.tag_name(source) == "button" and source_type in ("", "submit")),
            validation_state=_validation_state(view, source),
            aria_current=view.get_attribute(source, "aria-current"),
            candidate_selectors=selectors,
            stability=Stability(stability),
            widget_type=detect_widget_type(view, node),
        )

    @staticmethod
    def _log_summary(graph: ElementGraph):
        inputs = sum(1 for e in graph.elements if e.tag == "input")
        buttons = sum(1 for e in graph.elements if e.tag == "button")
        links = sum(1 for e in graph.elements if e.tag == "a")
        logger.info(
            f"[GRAPH] Built {len(graph.elements)} elements in {graph.build_time_ms}ms "
            f"({inputs} inputs, {buttons} buttons, {links} links)"
        )
        logger.debug(f"[GRAPH] Screen fingerprint: {graph.screen_fingerprint}")


def _validation_state(view: SoupDomView, node) -> Optional[str]:
    invalid = view.get_attribute(node, "aria-invalid")
    if invalid is not None:
        return "invalid" if invalid == "true" else "valid"
    classes = (view.get_attribute(node, "class") or "").lower()
    if "invalid" in classes or "error" in classes:
        return "invalid"
    if "valid" in classes or "success" in classes:
        return "valid"
    if "pending" in classes or "loading" in classes:
        return "pending"
    return None


def build_graph_from_html(
    markup: str,
    url: str = "",
    title: str = "",
    patterns: Optional[Dict[str, Any]] = None,
) -> ElementGraph:
    """Element graph from static page markup"""
    return ElementGraphBuilder(patterns).build_from_markup(markup, url=url, title=title)

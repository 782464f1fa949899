"""
Read-only DOM View

Traversal logic for accessible names, composite widgets, relational
context and locator generation, written against a small read-only DOM
capability so it runs on parsed markup as well as in tests. The live
page builder runs the same rules inside the browser in a single
evaluation pass.
"""

import re
import logging
from typing import Any, Callable, List, Optional, Protocol, Tuple

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)


# ==================== Shared Patterns ====================

GENERATED_ID_PATTERN = re.compile(r"^[a-z]+-[0-9a-f]{6,}$", re.IGNORECASE)

GENERATED_CLASS_PATTERNS = [
    re.compile(r"^jss\d+$"),
    re.compile(r"^css-[a-z0-9]+$", re.IGNORECASE),
    re.compile(r"^makeStyles-\w+-\d+$"),
    re.compile(r"^[a-z]{3,}-[a-z0-9]{6,}$", re.IGNORECASE),
    re.compile(r"^[a-z]+_[a-z0-9]{5,}$", re.IGNORECASE),
]

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
FORM_CONTROL_TAGS = ("input", "textarea", "select")
INTERACTIVE_DESCENDANT_QUERY = '[aria-haspopup], [role="button"], [role="combobox"], input, select, textarea'
WIDGET_PATTERN_QUERY = '.MuiSelect-root, .ant-select, [aria-expanded], [aria-haspopup="listbox"]'
MODAL_CONTAINER_QUERY = '[role="dialog"], [role="alertdialog"], .modal, .drawer, [data-modal], [data-drawer]'
COMPOSITE_MAX_DEPTH = 3
ANCESTOR_LABEL_DEPTH = 3


def is_generated_id(value: str) -> bool:
    return bool(GENERATED_ID_PATTERN.match(value))


def is_semantic_class(cls: str) -> bool:
    """False for hashed/generated class names and overly long ones"""
    if not cls or len(cls) >= 30:
        return False
    return not any(p.match(cls) for p in GENERATED_CLASS_PATTERNS)


# ==================== DOM View Capability ====================

class DomView(Protocol):
    """Minimal read-only access to a document tree"""

    def get_parent(self, node: Any) -> Optional[Any]: ...

    def get_attribute(self, node: Any, name: str) -> Optional[str]: ...

    def query_descendant(self, node: Any, selector: str) -> Optional[Any]: ...

    def query_all(self, node: Any, selector: str) -> List[Any]: ...

    def matches(self, node: Any, selector: str) -> bool: ...

    def tag_name(self, node: Any) -> str: ...

    def text(self, node: Any) -> str: ...

    def previous_sibling(self, node: Any) -> Optional[Any]: ...

    def next_sibling(self, node: Any) -> Optional[Any]: ...

    def root(self) -> Any: ...


class SoupDomView:
    """DomView over markup parsed with BeautifulSoup"""

    def __init__(self, markup: str):
        self.soup = BeautifulSoup(markup or "", "lxml")

    def get_parent(self, node: Tag) -> Optional[Tag]:
        parent = node.parent
        if parent is None or isinstance(parent, BeautifulSoup):
            return None
        return parent

    def get_attribute(self, node: Tag, name: str) -> Optional[str]:
        value = node.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return " ".join(value)
        return str(value)

    def query_descendant(self, node: Tag, selector: str) -> Optional[Tag]:
        try:
            return node.select_one(selector)
        except Exception as e:
            logger.debug(f"[GRAPH] Unsupported selector {selector!r}: {e}")
            return None

    def query_all(self, node: Tag, selector: str) -> List[Tag]:
        try:
            return node.select(selector)
        except Exception as e:
            logger.debug(f"[GRAPH] Unsupported selector {selector!r}: {e}")
            return []

    def matches(self, node: Tag, selector: str) -> bool:
        try:
            return node.css.match(selector)
        except Exception as e:
            logger.debug(f"[GRAPH] Unsupported selector {selector!r}: {e}")
            return False

    def tag_name(self, node: Tag) -> str:
        return (node.name or "").lower()

    def text(self, node: Tag) -> str:
        return " ".join(node.get_text(" ", strip=True).split())

    def previous_sibling(self, node: Tag) -> Optional[Tag]:
        return node.find_previous_sibling(True)

    def next_sibling(self, node: Tag) -> Optional[Tag]:
        return node.find_next_sibling(True)

    def root(self) -> BeautifulSoup:
        return self.soup

    def body(self) -> Tag:
        return self.soup.body or self.soup


# ==================== Walk Helpers ====================

def ancestors(view: DomView, node: Any, max_depth: Optional[int] = None):
    """Yield parents of node, nearest first"""
    current = view.get_parent(node)
    depth = 0
    while current is not None and (max_depth is None or depth < max_depth):
        yield current
        current = view.get_parent(current)
        depth += 1


def closest(view: DomView, node: Any, predicate: Callable[[Any], bool]) -> Optional[Any]:
    """Node itself or the nearest ancestor satisfying predicate"""
    if predicate(node):
        return node
    for parent in ancestors(view, node):
        if predicate(parent):
            return parent
    return None


def has_attr(view: DomView, node: Any, name: str) -> bool:
    return view.get_attribute(node, name) is not None


def class_list(view: DomView, node: Any) -> List[str]:
    return [c for c in (view.get_attribute(node, "class") or "").split() if c]


def _has_identifying_attribute(view: DomView, node: Any) -> bool:
    return any(
        view.get_attribute(node, name)
        for name in ("data-unique", "data-testid", "id")
    ) or has_attr(view, node, "data-loading-state") or has_attr(view, node, "title")


# ==================== Accessible Name ====================

def ancestor_label(view: DomView, node: Any, max_depth: int = ANCESTOR_LABEL_DEPTH) -> Optional[str]:
    """First non-empty <label> inside the nearest max_depth ancestors"""
    for parent in ancestors(view, node, max_depth):
        label = view.query_descendant(parent, "label")
        if label is not None:
            text = view.text(label)
            if text:
                return text
    return None


def preceding_label(view: DomView, node: Any) -> Optional[str]:
    sibling = view.previous_sibling(node)
    while sibling is not None:
        if view.tag_name(sibling) == "label":
            return view.text(sibling)
        sibling = view.previous_sibling(sibling)
    return None


def accessible_name(view: DomView, node: Any) -> str:
    """
    Accessible name resolution chain.

    aria-label, aria-labelledby, label[for], wrapping label, ancestor
    label search, preceding label sibling, button text, title, tooltip
    ancestor, then text content.
    """
    aria_label = view.get_attribute(node, "aria-label")
    if aria_label is not None:
        return aria_label.strip()

    labelledby = view.get_attribute(node, "aria-labelledby")
    if labelledby:
        texts = []
        for ref in labelledby.split():
            target = view.query_descendant(view.root(), f'[id="{ref}"]')
            if target is not None and view.text(target):
                texts.append(view.text(target))
        if texts:
            return " ".join(texts)

    tag = view.tag_name(node)
    if tag in ("input", "textarea"):
        node_id = view.get_attribute(node, "id")
        if node_id:
            label = view.query_descendant(view.root(), f'label[for="{node_id}"]')
            if label is not None:
                return view.text(label)
        wrapping = closest(view, node, lambda n: view.tag_name(n) == "label")
        if wrapping is not None:
            value = view.get_attribute(node, "value") or ""
            text = view.text(wrapping)
            return (text.replace(value, "") if value else text).strip()

    if tag in FORM_CONTROL_TAGS:
        found = ancestor_label(view, node)
        if found:
            return found
        sibling_label = preceding_label(view, node)
        if sibling_label is not None:
            return sibling_label

    if tag == "button":
        return view.text(node)

    title = view.get_attribute(node, "title")
    if title and title.strip():
        return title.strip()

    tooltip = closest(
        view, node,
        lambda n: has_attr(view, n, "data-tooltip-title") or has_attr(view, n, "title")
    )
    if tooltip is not None:
        tip = view.get_attribute(tooltip, "data-tooltip-title") or view.get_attribute(tooltip, "title")
        if tip and tip.strip():
            return tip.strip()

    return view.text(node)


# ==================== Composite Widgets ====================

def find_composite_container(view: DomView, node: Any) -> Optional[Any]:
    """
    Find the container that represents a composite widget.

    From an aria-haspopup/combobox node, walk up to three ancestors looking
    for an identified container with an interactive descendant or a
    widget pattern. Falls back to an identified direct parent, and
    finally to the node itself when it is an identified container
    around a hidden input or interactive control.
    """
    classes = class_list(view, node)
    is_trigger = (
        has_attr(view, node, "aria-haspopup")
        or view.get_attribute(node, "role") == "combobox"
        or "MuiSelect-select" in classes
        or "ant-select" in classes
    )

    if is_trigger:
        for parent in ancestors(view, node, COMPOSITE_MAX_DEPTH):
            if _has_identifying_attribute(view, parent):
                if view.query_descendant(parent, INTERACTIVE_DESCENDANT_QUERY) is not None \
                        or view.query_descendant(parent, WIDGET_PATTERN_QUERY) is not None:
                    return parent

        parent = view.get_parent(node)
        if parent is not None and any(
            view.get_attribute(parent, name) for name in ("data-unique", "data-testid", "id")
        ):
            return parent

    if _has_identifying_attribute(view, node):
        if view.query_descendant(node, 'input[type="hidden"]') is not None \
                or view.query_descendant(node, INTERACTIVE_DESCENDANT_QUERY) is not None \
                or view.query_descendant(node, ".MuiSelect-root, .ant-select, [aria-expanded]") is not None:
            return node

    return None


def composite_details(view: DomView, container: Any) -> Tuple[Optional[str], Optional[str], Optional[str], Optional[str]]:
    """
    Derive (role, type, value, label) for a composite container.

    An inner aria-haspopup="true" trigger makes it a combobox/select;
    value and label come from a hidden named input, or from any
    descendant control, via label[for].
    """
    role = type_ = value = label = None

    if view.query_descendant(container, '[aria-haspopup="true"]') is not None:
        role, type_ = "combobox", "select"

    source = view.query_descendant(container, 'input[type="hidden"][name]')
    if source is None:
        source = view.query_descendant(container, "input, textarea, select")

    if source is not None:
        value = view.get_attribute(source, "value") or None
        source_id = view.get_attribute(source, "id")
        if source_id:
            assoc = view.query_descendant(view.root(), f'label[for="{source_id}"]')
            if assoc is not None and view.text(assoc):
                label = view.text(assoc)

    return role, type_, value, label


def detect_widget_type(view: DomView, node: Any) -> Optional[str]:
    """Classify composite widgets: dropdown, date-picker, autocomplete, multi-select, simple-input"""
    classes = class_list(view, node)
    role = view.get_attribute(node, "role")
    if (
        has_attr(view, node, "aria-haspopup")
        or view.query_descendant(node, "[aria-haspopup]") is not None
        or role == "combobox"
        or view.query_descendant(node, '[role="combobox"]') is not None
        or "MuiSelect-root" in classes or "ant-select" in classes
        or view.query_descendant(node, 'input[type="hidden"][name]') is not None
    ):
        return "dropdown"
    if view.get_attribute(node, "type") == "date" or view.query_descendant(node, '[type="date"]') is not None:
        return "date-picker"
    if has_attr(view, node, "aria-autocomplete") or "autocomplete" in classes:
        return "autocomplete"
    if view.query_descendant(node, "select[multiple]") is not None or has_attr(view, node, "aria-multiselectable"):
        return "multi-select"
    if view.tag_name(node) == "input" or view.query_descendant(node, 'input:not([type="hidden"])') is not None:
        return "simple-input"
    return None


# ==================== Relational Context ====================

def form_group(view: DomView, node: Any) -> Optional[str]:
    form = closest(view, node, lambda n: view.tag_name(n) == "form")
    if form is not None:
        return (
            view.get_attribute(form, "id")
            or view.get_attribute(form, "name")
            or view.get_attribute(form, "data-testid")
            or "unnamed-form"
        )
    fieldset = closest(view, node, lambda n: view.tag_name(n) == "fieldset")
    if fieldset is not None:
        legend = view.query_descendant(fieldset, "legend")
        return (view.text(legend) if legend is not None else "") or "unnamed-fieldset"
    return None


def section_title(view: DomView, node: Any) -> Optional[str]:
    """Nearest heading preceding the node, searched outward through its ancestors"""
    current = node
    while current is not None and view.tag_name(current) not in ("body", "html"):
        sibling = view.previous_sibling(current)
        while sibling is not None:
            if view.tag_name(sibling) in HEADING_TAGS:
                return view.text(sibling)
            nested = view.query_all(sibling, ", ".join(HEADING_TAGS))
            if nested:
                return view.text(nested[-1])
            sibling = view.previous_sibling(sibling)
        current = view.get_parent(current)

    labelledby = view.get_attribute(node, "aria-labelledby")
    if labelledby:
        target = view.query_descendant(view.root(), f'[id="{labelledby}"]')
        if target is not None and view.tag_name(target) in HEADING_TAGS:
            return view.text(target)
    return None


def nearby_text(view: DomView, node: Any, span: int = 2, limit: int = 50) -> List[str]:
    """Text of up to `span` siblings on each side, trimmed to `limit` chars"""
    found: List[str] = []
    prev = view.previous_sibling(node)
    nxt = view.next_sibling(node)
    for _ in range(span):
        if prev is not None and view.text(prev):
            found.append(view.text(prev)[:limit])
        if nxt is not None and view.text(nxt):
            found.append(view.text(nxt)[:limit])
        prev = view.previous_sibling(prev) if prev is not None else None
        nxt = view.next_sibling(nxt) if nxt is not None else None
    return found


def modal_or_drawer(view: DomView, node: Any) -> Optional[str]:
    modal = closest(view, node, lambda n: view.matches(n, MODAL_CONTAINER_QUERY))
    if modal is None:
        return None
    return (
        view.get_attribute(modal, "id")
        or view.get_attribute(modal, "aria-label")
        or view.get_attribute(modal, "class")
        or "unnamed-modal"
    )


def in_active_tab(view: DomView, node: Any) -> bool:
    panel = closest(view, node, lambda n: view.get_attribute(n, "role") == "tabpanel")
    if panel is not None:
        return view.get_attribute(panel, "aria-hidden") != "true"
    tab_content = closest(
        view, node,
        lambda n: bool({"tab-content", "tab-pane"} & set(class_list(view, n))) or has_attr(view, n, "data-tab-content")
    )
    if tab_content is not None:
        return not _inline_hidden(view, tab_content)
    return True


def _inline_hidden(view: DomView, node: Any) -> bool:
    style = (view.get_attribute(node, "style") or "").replace(" ", "").lower()
    return "display:none" in style or "visibility:hidden" in style


def statically_visible(view: DomView, node: Any) -> bool:
    """Visibility approximated from markup alone"""
    if view.tag_name(node) == "input" and (view.get_attribute(node, "type") or "").lower() == "hidden":
        return False
    for current in [node] + list(ancestors(view, node)):
        if has_attr(view, current, "hidden"):
            return False
        if view.get_attribute(current, "aria-hidden") == "true":
            return False
        if _inline_hidden(view, current):
            return False
    return True


def statically_clickable(view: DomView, node: Any) -> bool:
    style = (view.get_attribute(node, "style") or "").replace(" ", "").lower()
    if "pointer-events:none" in style:
        return False
    if "cursor:pointer" in style:
        return True
    tag = view.tag_name(node)
    if tag in ("button", "a", "select"):
        return True
    if tag == "input" and (view.get_attribute(node, "type") or "").lower() != "hidden":
        return True
    if has_attr(view, node, "onclick") or view.get_attribute(node, "role") == "button":
        return True
    return has_attr(view, node, "aria-haspopup") or view.get_attribute(node, "role") == "combobox"


def is_primary_button(view: DomView, node: Any) -> bool:
    if view.tag_name(node) != "button":
        return False
    classes = (view.get_attribute(node, "class") or "").lower()
    button_type = (view.get_attribute(node, "type") or "submit").lower()
    return (
        button_type == "submit"
        or "primary" in classes
        or "submit" in classes
        or has_attr(view, node, "data-primary")
    )


# ==================== Locator Generation ====================

def generate_stable_selectors(view: DomView, node: Any) -> Tuple[List[str], str]:
    """
    Stability-ranked locators for a node.

    Returns (selectors, stability) where stability is the best tier
    reached: high, medium or low.
    """
    selectors: List[str] = []
    stability = "low"
    tag = view.tag_name(node)

    test_id = view.get_attribute(node, "data-testid")
    if test_id is not None:
        selectors.append(f'[data-testid="{test_id}"]')
        stability = "high"

    unique = view.get_attribute(node, "data-unique")
    if unique is not None:
        selectors.append(f'[data-unique="{unique}"]')
        stability = "high"

    node_id = view.get_attribute(node, "id")
    if node_id and not is_generated_id(node_id):
        selectors.append(f"#{node_id}")
        stability = "high"

    name = view.get_attribute(node, "name")
    if tag in FORM_CONTROL_TAGS and name:
        selectors.append(f'{tag}[name="{name}"]')
        stability = "high"

    role = view.get_attribute(node, "role")
    aria_label = view.get_attribute(node, "aria-label")
    if role and aria_label is not None:
        selectors.append(f'[role="{role}"][aria-label="{aria_label}"]')
        if stability == "low":
            stability = "medium"

    if tag == "button":
        text = view.text(node)
        if text and len(text) < 30:
            selectors.append(f'button:has-text("{text}")')
            if stability == "low":
                stability = "medium"

    if tag == "a":
        href = view.get_attribute(node, "href")
        if href and len(href) < 100:
            selectors.append(f'a[href="{href}"]')
            base = re.split(r"[?#]", href)[0]
            if base and base != href:
                selectors.append(f'a[href^="{base}"]')
            if stability == "low":
                stability = "medium"

    semantic = [c for c in class_list(view, node) if is_semantic_class(c)]
    if semantic:
        selectors.append("." + ".".join(semantic))

    return selectors, stability

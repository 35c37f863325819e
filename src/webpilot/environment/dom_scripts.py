"""
Shared building blocks for the scripts evaluated inside the page.

Every script handed to ``page.evaluate`` is a single arrow function taking one
``config`` object. The helpers below are spliced into those functions so node
references, selectors and visibility rules are identical across the element
catalog, the modal detector and the action executor.
"""

# Attribute stamped on nodes that have no unique id/name selector. The value
# survives for the lifetime of the node, so a selector handed to the model can be
# re-resolved on a later pass.
REF_ATTRIBUTE = "data-webpilot-ref"

# Comprehensive list of interactive element selectors
INTERACTIVE_SELECTORS = [
    # Buttons
    'button',
    'input[type="button"]',
    'input[type="submit"]',
    'input[type="reset"]',
    'input[type="image"]',
    # Text inputs
    'input:not([type])',
    'input[type="text"]',
    'input[type="password"]',
    'input[type="email"]',
    'input[type="number"]',
    'input[type="tel"]',
    'input[type="url"]',
    'input[type="search"]',
    'input[type="date"]',
    # Other inputs
    'input[type="checkbox"]',
    'input[type="radio"]',
    'input[type="file"]',
    # Form elements
    'textarea',
    'select',
    '[contenteditable="true"]',
    # Links
    'a[href]',
    # ARIA roles
    '[role="button"]',
    '[role="link"]',
    '[role="menuitem"]',
    '[role="tab"]',
    '[role="checkbox"]',
    '[role="radio"]',
    '[role="switch"]',
    '[role="textbox"]',
    '[role="searchbox"]',
    '[role="combobox"]',
    '[role="option"]',
    # Event handlers
    '[onclick]',
    # Keyboard navigation
    '[tabindex]:not([tabindex="-1"])',
    # Common CSS classes
    '.btn',
    '.button',
    '.clickable',
]

# Used to find the activatable child of a non-interactive container
INTERACTIVE_DESCENDANT_SELECTOR = (
    'button, a[href], input, select, textarea, [role="button"], [role="link"], [onclick], [tabindex]'
)


DOM_HELPERS_JS = """
    const REF_ATTR = config.refAttribute;
    const INTERACTIVE_QUERY = (config.interactiveSelectors || []).join(',');

    function refOf(el) {
        let ref = el.getAttribute(REF_ATTR);
        if (!ref) {
            window.__webpilotNextRef = (window.__webpilotNextRef || 0) + 1;
            ref = String(window.__webpilotNextRef);
            el.setAttribute(REF_ATTR, ref);
        }
        return ref;
    }

    function byRef(ref) {
        if (!ref) return null;
        return document.querySelector(`[${REF_ATTR}="${ref}"]`);
    }

    function selectorFor(el) {
        if (el.id) {
            const idSelector = '#' + CSS.escape(el.id);
            try {
                if (document.querySelectorAll(idSelector).length === 1) return idSelector;
            } catch (e) {}
        }
        if (el.name && ['INPUT', 'SELECT', 'TEXTAREA'].includes(el.tagName)) {
            const nameSelector = `${el.tagName.toLowerCase()}[name="${CSS.escape(el.name)}"]`;
            try {
                if (document.querySelectorAll(nameSelector).length === 1) return nameSelector;
            } catch (e) {}
        }
        return `[${REF_ATTR}="${refOf(el)}"]`;
    }

    function isDisplayed(el) {
        if (!el || !el.isConnected) return false;
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0') {
            return false;
        }
        const rect = el.getBoundingClientRect();
        return rect.width > 0 && rect.height > 0;
    }

    function inViewport(rect, margin) {
        return !(rect.bottom < -margin || rect.top > window.innerHeight + margin ||
                 rect.right < -margin || rect.left > window.innerWidth + margin);
    }

    function textOf(el, maxLen) {
        let text = el.getAttribute('aria-label') ||
                   el.getAttribute('title') ||
                   el.getAttribute('alt') ||
                   el.getAttribute('placeholder') ||
                   '';
        if (!text) {
            text = el.innerText || el.textContent || el.value || '';
        }
        text = String(text).trim().replace(/\\s+/g, ' ');
        if (maxLen && text.length > maxLen) {
            text = text.substring(0, maxLen) + '...';
        }
        return text;
    }

    function zIndexOf(el) {
        let node = el;
        while (node && node.nodeType === 1) {
            const z = parseInt(window.getComputedStyle(node).zIndex, 10);
            if (!isNaN(z)) return z;
            node = node.parentElement;
        }
        return 0;
    }

    function rectOf(el) {
        const r = el.getBoundingClientRect();
        return {x: Math.round(r.left), y: Math.round(r.top),
                width: Math.round(r.width), height: Math.round(r.height)};
    }

    function isTextEntry(el) {
        if (!el) return false;
        if (el.isContentEditable) return true;
        if (el.tagName === 'TEXTAREA') return true;
        if (el.tagName !== 'INPUT') return false;
        const type = (el.getAttribute('type') || 'text').toLowerCase();
        return ['text', 'search', 'email', 'password', 'url', 'tel', 'number', 'date'].includes(type);
    }
"""


def build_script(body: str) -> str:
    """Wrap a script body into an (async) arrow function with the shared helpers in scope."""
    return "async (config) => {\n" + DOM_HELPERS_JS + body + "\n}"


def base_config(extra: dict = None) -> dict:
    config = {
        "refAttribute": REF_ATTRIBUTE,
        "interactiveSelectors": INTERACTIVE_SELECTORS,
    }
    if extra:
        config.update(extra)
    return config

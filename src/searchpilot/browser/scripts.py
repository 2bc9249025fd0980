"""In-page scripts passed to ``PageHandle.evaluate``. Each takes at most one argument."""

IS_INTERACTIVE = """
(selector) => {
  const el = document.querySelector(selector);
  return !!el && !el.hasAttribute('disabled') && el.getAttribute('aria-hidden') !== 'true';
}
"""

ANY_SELECTOR_PRESENT = """
(selectors) => selectors.some((s) => {
  try { return !!document.querySelector(s); } catch (e) { return false; }
})
"""

MAIN_HAS_INTERNAL_ERROR = """
() => {
  const main = document.querySelector('main');
  return !!main && (main.textContent || '').includes('internal error');
}
"""

CLEAR_INPUT = """
(selector) => {
  const el = document.querySelector(selector);
  if (el && 'value' in el) el.value = '';
  else if (el) el.textContent = '';
}
"""

# {text, tail, urls} from the first response selector that has content
ANSWER_SNAPSHOT = """
(selectors) => {
  for (const selector of selectors) {
    const elements = Array.from(document.querySelectorAll(selector));
    const texts = elements.map((el) => (el.innerText || '').trim()).filter((t) => t.length > 0);
    if (texts.length === 0) continue;
    const urls = [];
    for (const el of elements) {
      for (const a of el.querySelectorAll('a[href]')) {
        urls.push((a.getAttribute('href') || '').startsWith('#') ? '#' : a.href);
      }
    }
    return { text: texts.join('\\n\\n'), tail: texts[texts.length - 1], urls };
  }
  return { text: '', tail: '', urls: [] };
}
"""

BODY_TEXT_LENGTH = """
() => (document.body ? document.body.innerText.length : 0)
"""

# Top three largest text blocks from the first selector that yields any
LARGEST_TEXT_BLOCKS = """
(selectors) => {
  for (const selector of selectors) {
    const blocks = Array.from(document.querySelectorAll(selector))
      .map((el) => (el.innerText || '').trim())
      .filter((t) => t.length > 100);
    if (blocks.length > 0) {
      blocks.sort((a, b) => b.length - a.length);
      return blocks.slice(0, 3).join('\\n\\n');
    }
  }
  return null;
}
"""

READ_FIELD_VALUE = """
(selector) => {
  const el = document.querySelector(selector);
  return el ? (el.value ?? el.textContent ?? null) : null;
}
"""

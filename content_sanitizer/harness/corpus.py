"""
Versioned attack corpus for policy testing.

Cases span script, attribute and URL injection plus DOM clobbering, at every
severity, and include benign cases that must survive sanitization with their
visible text intact and no violations recorded.
"""

from typing import Tuple

from content_sanitizer.models import SecurityTestCase, Severity, TestCategory

CORPUS_VERSION = "2024.1"


def _case(name: str, payload: str, expected_blocked: bool, severity: Severity,
          category: TestCategory, description: str) -> SecurityTestCase:
    return SecurityTestCase(
        name=name,
        payload=payload,
        expected_blocked=expected_blocked,
        severity=severity,
        category=category,
        description=description,
    )


def generate_attack_corpus() -> Tuple[SecurityTestCase, ...]:
    return (
        # Script injection
        _case('Basic Script Tag', '<script>alert("xss")</script>', True,
              Severity.CRITICAL, TestCategory.SCRIPT_INJECTION,
              'Basic script tag injection'),
        _case('Script with Attributes', '<script type="text/javascript">alert("xss")</script>', True,
              Severity.CRITICAL, TestCategory.SCRIPT_INJECTION,
              'Script tag with type attribute'),
        _case('Encoded Script Tag', '&lt;script&gt;alert("xss")&lt;/script&gt;', False,
              Severity.LOW, TestCategory.SCRIPT_INJECTION,
              'HTML-encoded script tag stays inert text'),
        _case('Mixed Case Script', '<ScRiPt>alert("xss")</ScRiPt>', True,
              Severity.CRITICAL, TestCategory.SCRIPT_INJECTION,
              'Mixed case script tag'),
        _case('Nested Tags', '<scr<script>ipt>alert("xss")</scr</script>ipt>', True,
              Severity.HIGH, TestCategory.SCRIPT_INJECTION,
              'Split script tag that reassembles after naive removal'),
        _case('Unicode Bypass', '<script>alert(\u0022xss\u0022)</script>', True,
              Severity.CRITICAL, TestCategory.SCRIPT_INJECTION,
              'Script with unicode-escaped quotes'),
        _case('CSS Import', '<style>@import "javascript:alert(\'xss\')";</style>', True,
              Severity.MEDIUM, TestCategory.SCRIPT_INJECTION,
              'Stylesheet import of a script URL'),

        # Attribute injection
        _case('OnClick Event', '<div onclick="alert(\'xss\')">Click me</div>', True,
              Severity.HIGH, TestCategory.ATTRIBUTE_INJECTION,
              'Inline click handler'),
        _case('OnLoad Event', '<img src="x" onload="alert(\'xss\')" />', True,
              Severity.HIGH, TestCategory.ATTRIBUTE_INJECTION,
              'Image load handler'),
        _case('OnError Event', '<img src="invalid" onerror="alert(\'xss\')" />', True,
              Severity.HIGH, TestCategory.ATTRIBUTE_INJECTION,
              'Image error handler'),
        _case('CSS Expression', '<div style="background: expression(alert(\'xss\'))">Test</div>', True,
              Severity.MEDIUM, TestCategory.ATTRIBUTE_INJECTION,
              'Legacy CSS expression in a style attribute'),

        # URL injection
        _case('JavaScript URL', '<a href="javascript:alert(\'xss\')">Click</a>', True,
              Severity.HIGH, TestCategory.URL_INJECTION,
              'javascript: link target'),
        _case('Data URL', '<iframe src="data:text/html,<script>alert(\'xss\')</script>"></iframe>', True,
              Severity.CRITICAL, TestCategory.URL_INJECTION,
              'HTML data URL inside a frame'),
        _case('VBScript URL', '<a href="vbscript:msgbox(\'xss\')">Click</a>', True,
              Severity.MEDIUM, TestCategory.URL_INJECTION,
              'vbscript: link target'),

        # DOM clobbering
        _case('Form Element Clobbering', '<form><input name="attributes"></form>', True,
              Severity.MEDIUM, TestCategory.DOM_CLOBBERING,
              'Named form control shadowing a DOM property'),
        _case('ID Clobbering', '<div id="constructor">Clobber</div>', True,
              Severity.LOW, TestCategory.DOM_CLOBBERING,
              'Element id shadowing a prototype property'),

        # Benign
        _case('Safe HTML', '<p><strong>Bold</strong></p>', False,
              Severity.LOW, TestCategory.SCRIPT_INJECTION,
              'Plain formatting must pass through'),
        _case('Safe Formatting', '<p><strong>Bold text</strong> and <em>italic text</em></p>', False,
              Severity.LOW, TestCategory.SCRIPT_INJECTION,
              'Mixed formatting must pass through'),
        _case('Safe Link', '<a href="https://example.com">Safe link</a>', False,
              Severity.LOW, TestCategory.URL_INJECTION,
              'Plain https link text must survive'),
    )


__all__ = ['CORPUS_VERSION', 'generate_attack_corpus']

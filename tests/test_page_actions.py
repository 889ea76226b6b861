from framebridge.workflows.html_normalize import parse_document
from framebridge.workflows.page_actions import (
    apply_removals,
    looks_like_overlay,
    overlay_container,
    remove_matching,
    resolve_targets,
    selector_suffixes,
)

CONSENT_PAGE = """<html><body>
<div id="cmp-root" class="consent-wrapper">
  <div class="panel">
    <p class="copy">We use cookies.</p>
    <button class="accept">Accept all</button>
  </div>
</div>
<main><article><p class="copy">Real content</p></article></main>
</body></html>"""


def test_selector_suffixes():
    assert selector_suffixes("main > div.a > span") == ["main > div.a > span", "div.a > span", "span"]
    assert selector_suffixes("span") == ["span"]


def test_click_inside_consent_container_removes_whole_container():
    soup = parse_document(CONSENT_PAGE)
    removed = remove_matching(soup, "div.consent-wrapper > div.panel > button.accept")

    assert removed == 1
    assert soup.find(id="cmp-root") is None
    assert soup.find("article") is not None
    assert soup.find("p", string="Real content") is not None


def test_inline_fixed_high_z_box_is_an_overlay():
    soup = parse_document(
        '<html><body><div style="position: fixed; z-index: 100000; inset: 0">'
        '<span class="x">Subscribe!</span></div><p>keep</p></body></html>'
    )
    span = soup.find("span")
    assert looks_like_overlay(span.parent)
    assert overlay_container(span) is span.parent
    assert remove_matching(soup, "span.x") == 1
    assert soup.find("div") is None
    assert soup.find("p").get_text() == "keep"


def test_low_z_positioned_box_is_not_an_overlay():
    soup = parse_document('<html><body><div style="position:absolute;z-index:10"><b>x</b></div></body></html>')
    assert overlay_container(soup.find("b")) is None


def test_suffix_retry_requires_a_unique_match():
    soup = parse_document(
        "<html><body><section><span class='target'>a</span></section>"
        "<p class='n'>1</p><p class='n'>2</p></body></html>"
    )
    assert resolve_targets(soup, "main > div.gone > span.target") == [soup.find("span")]
    # Two candidates for the shortest suffix: nothing is removed.
    assert resolve_targets(soup, "div.gone > p.n") == []
    assert remove_matching(soup, "div.gone > p.n") == 0
    assert len(soup.find_all("p")) == 2


def test_exact_match_removes_every_hit():
    soup = parse_document("<html><body><ul><li class='ad'>x</li><li>y</li><li class='ad'>z</li></ul></body></html>")
    assert remove_matching(soup, "li.ad") == 2
    assert [li.get_text() for li in soup.find_all("li")] == ["y"]


def test_apply_removals_skips_frame_qualified_selectors():
    html = "<html><body><div class='promo'>x</div><p>y</p></body></html>"
    out, count = apply_removals(html, ["iframe#ad >>> div.promo", "div.promo"])
    assert count == 1
    assert "promo" not in out

    untouched, none = apply_removals(html, ["iframe#ad >>> div.promo", "div.missing"])
    assert none == 0
    assert untouched == html

from urllib.parse import parse_qs, urlsplit

import pytest

from framebridge.workflows.bridge import (
    BridgeController,
    MessageType,
    PageType,
    SelectedElement,
    assign_frame_paths,
    build_bridge_config,
    build_frame_url,
    iframe_local_selector,
    parse_message,
    qualify_selector,
    relay,
    render_bridge_script,
    script_json,
    split_qualified_selector,
)
from framebridge.workflows.fetch_gateway import AcquisitionMode
from framebridge.workflows.html_normalize import parse_document


def _element_select(selector_path, local="#buy", tag="button", **extra):
    info = SelectedElement(local_selector=local, tag_name=tag, frame_path=tuple(selector_path), text_content="Buy")
    wire = {"type": "element-select", "elementInfo": info.to_wire()}
    wire.update(extra)
    return wire


def test_loaded_and_error_types_follow_mode():
    assert MessageType.loaded_for(AcquisitionMode.DIRECT_FETCH) is MessageType.PROXY_LOADED
    assert MessageType.loaded_for(AcquisitionMode.HEADLESS_RENDER) is MessageType.PLAYWRIGHT_LOADED
    assert MessageType.error_for(AcquisitionMode.HEADLESS_RENDER) is MessageType.PLAYWRIGHT_ERROR


def test_qualified_selectors_split_back():
    qualified = qualify_selector(("iframe#outer", 'iframe[name="inner"]'), "ul.items > li")
    assert qualified == 'iframe#outer >>> iframe[name="inner"] >>> ul.items > li'
    assert split_qualified_selector(qualified) == (("iframe#outer", 'iframe[name="inner"]'), "ul.items > li")
    assert split_qualified_selector("div.card") == ((), "div.card")
    assert qualify_selector((), "div.card") == "div.card"


def test_iframe_labels_are_unique_per_document():
    soup = parse_document(
        '<iframe id="ad"></iframe><iframe id="dup"></iframe><iframe id="dup" name="checkout"></iframe>'
        '<iframe id="9bad"></iframe><iframe></iframe>'
    )
    iframes = soup.find_all("iframe")
    labels = [iframe_local_selector(f, iframes) for f in iframes]
    assert labels == [
        "iframe#ad",
        "iframe:nth-of-type(2)",
        'iframe[name="checkout"]',
        'iframe[id="9bad"]',
        "iframe:nth-of-type(5)",
    ]
    assert len(set(labels)) == len(labels)
    paths = assign_frame_paths(soup, ("iframe#outer",))
    assert paths["iframe#ad"] == ("iframe#outer", "iframe#ad")


def test_grandchild_selection_reaches_controller_with_full_path():
    controller = BridgeController()
    controller.handle({"type": "bridge-ready"})
    controller.set_mode("select")

    # Emitted by the grandchild, relayed unmodified by the child and the top frame.
    message = parse_message(_element_select(["iframe#outer", "iframe#inner"]))
    for _ in range(2):
        message = relay(message)
    commands = controller.handle(message.to_wire())

    assert commands == [{"type": "disable-selection"}]
    assert controller.selected.frame_path == ("iframe#outer", "iframe#inner")
    assert len(controller.selected.frame_path) == 2
    assert controller.selected.selector == "iframe#outer >>> iframe#inner >>> #buy"
    assert controller.mode is None


def test_parse_message_rejects_outside_catalog():
    assert parse_message({"type": "mystery"}) is None
    assert parse_message("element-select") is None
    assert parse_message({"type": "element-select", "hops": 99}, max_hops=16) is None
    assert parse_message({"type": "element-select", "hops": True}) is None
    assert parse_message({"type": "remove-element", "framePath": "iframe#a"}) is None
    msg = parse_message({"type": "remove-element", "framePath": ["iframe#a"], "selector": "p"})
    assert msg.frame_path == ("iframe#a",)
    assert not msg.is_upward


def test_relay_is_bounded_and_skips_one_shots():
    msg = parse_message({"type": "element-select", "hops": 2})
    assert relay(msg, max_hops=3).hops == 3
    assert relay(relay(msg, max_hops=3), max_hops=3) is None
    assert relay(parse_message({"type": "bridge-ready"})) is None


def test_controller_ignores_commands_until_bridge_ready():
    controller = BridgeController()
    assert controller.request_inspector_init() is None
    assert controller.request_children("html") is None
    assert controller.handle({"type": "bridge-ready"}) == [{"type": "disable-selection"}]
    assert controller.request_inspector_init() == {"type": "inspector:init"}


def test_remove_mode_sends_remove_then_disables():
    controller = BridgeController()
    controller.handle({"type": "bridge-ready"})
    assert controller.set_mode("remove") == {"type": "enable-selection", "mode": "remove"}

    commands = controller.handle(_element_select(["iframe#shop"], local="div.cookie > button"))
    assert commands[0] == {
        "type": "remove-element",
        "selector": "iframe#shop >>> div.cookie > button",
        "localSelector": "div.cookie > button",
        "framePath": ["iframe#shop"],
    }
    assert commands[1] == {"type": "disable-selection"}
    assert controller.removed_selectors == ["iframe#shop >>> div.cookie > button"]

    url = controller.frame_url("https://example.com/")
    query = parse_qs(urlsplit(url).query)
    assert query["url"] == ["https://example.com/"]
    assert query["remove"] == ["iframe#shop >>> div.cookie > button"]


def test_set_mode_rejects_unknown_modes():
    with pytest.raises(ValueError):
        BridgeController().set_mode("drag")


def test_load_errors_and_reload_reset_document_state():
    controller = BridgeController()
    controller.handle({"type": "bridge-ready"})
    controller.handle({"type": "playwright-error", "message": "Navigation failed", "status": 200})
    assert controller.loaded and controller.load_error == "Navigation failed"

    controller.handle(
        {
            "type": "inspector:children",
            "parentId": None,
            "nodes": [{"nodeId": "html", "parentId": None, "tag": "html", "selector": "html", "framePath": []}],
        }
    )
    assert [n.node_id for n in controller.children_of(None)] == ["html"]

    controller.set_mode("select")
    generation = controller.reload()
    assert generation == 1
    assert not controller.bridge_ready
    assert controller.load_error is None
    assert controller.nodes == {}
    assert controller.mode == "select"


def test_suggestions_and_page_type_cached():
    controller = BridgeController()
    controller.handle(
        {
            "type": "selector:suggestions",
            "nodeId": "html > body:nth-child(2)",
            "suggestions": [
                {"kind": "stable", "selector": "#main", "matches": 1, "score": 0.95},
                {"kind": "bogus", "selector": "x", "matches": 1, "score": 1},
            ],
        }
    )
    assert [s.selector for s in controller.suggestions] == ["#main"]

    controller.handle({"type": "page-type-detected", "pageType": {"isReact": True, "isSPA": True, "framework": "react"}})
    assert controller.page_type.framework == "react"
    assert controller.page_type.is_spa


def test_selected_element_wire_format():
    long_text = "x" * 300
    element = SelectedElement(local_selector="li.item", tag_name="li", text_content=long_text, is_list=True, list_item_count=3)
    wire = element.to_wire()
    assert len(wire["textContent"]) == 100
    assert wire["inIframe"] is False
    assert wire["listItemCount"] == 3
    assert SelectedElement.from_wire({"selector": "", "tagName": "li"}) is None
    assert SelectedElement.from_wire({"selector": "a", "tagName": "A", "framePath": [1]}) is None
    restored = SelectedElement.from_wire(wire)
    assert restored.selector == "li.item"

    rule = element.to_extraction_rule("name")
    assert rule == {"selector": "li.item", "field": "name", "attribute": "text", "multiple": True, "framePath": []}


def test_page_type_from_markup():
    nextjs = parse_document('<html><body><div id="__next"></div><script id="__NEXT_DATA__">{}</script></body></html>')
    page_type = PageType.from_markup(nextjs)
    assert page_type.framework == "nextjs"
    assert page_type.requires_headless
    static = PageType.from_markup(parse_document("<html><body><p>plain</p></body></html>"))
    assert static.framework == "unknown"
    assert static.is_ssr and not static.requires_headless


def test_bridge_script_embeds_config_safely():
    assert "</script>" not in script_json({"x": "</script><script>alert(1)</script>"})
    config = build_bridge_config(mode=AcquisitionMode.HEADLESS_RENDER, target_url="https://example.com/", depth=1)
    assert config["mode"] == "playwright"
    assert config["depth"] == 1
    markup = render_bridge_script(config)
    assert markup.startswith('<script id="framebridge-config">window.__FRAMEBRIDGE__=')
    assert "__framebridgeBridge" in markup


def test_build_frame_url_for_render_mode():
    url = build_frame_url(
        "https://example.com/a b",
        mode=AcquisitionMode.HEADLESS_RENDER,
        proxy_prefix="/proxy",
        render_prefix="/render",
        depth=2,
    )
    assert url.startswith("/render?url=https%3A%2F%2Fexample.com%2Fa%20b")
    assert parse_qs(urlsplit(url).query)["depth"] == ["2"]

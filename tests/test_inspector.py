from framebridge.workflows.html_normalize import parse_document
from framebridge.workflows.inspector import InspectorSnapshot, local_path

DOC = """<html><head><title>Shop</title><script>var x = 1;</script></head>
<body>
<nav><a href="/">Home</a><a>Plain</a></nav>
<ul class="items"><li>One</li><li>Two</li><li>Three</li></ul>
<iframe id="checkout" src="/pay"></iframe>
<form><input name="q"></form>
<h2>Heading</h2>
</body></html>"""


def test_init_expands_root_plus_two_levels():
    snapshot = InspectorSnapshot(parse_document(DOC))
    nodes = snapshot.init()

    root = nodes[0]
    assert root.node_id == "html"
    assert root.parent_id is None
    level_one = [n for n in nodes if n.parent_id == "html"]
    assert [n.tag for n in level_one] == ["head", "body"]
    body_id = "html > body:nth-child(2)"
    assert level_one[1].node_id == body_id
    level_two = [n.tag for n in nodes if n.parent_id == body_id]
    assert level_two == ["nav", "ul", "iframe", "form", "h2"]
    head_children = [n.tag for n in nodes if n.parent_id == "html > head:nth-child(1)"]
    assert head_children == ["title"]


def test_children_and_badges():
    snapshot = InspectorSnapshot(parse_document(DOC))
    nodes = {n.tag: n for n in snapshot.init()}

    ul = nodes["ul"]
    assert ul.has_children
    items = snapshot.children(ul.node_id)
    assert [n.text for n in items] == ["One", "Two", "Three"]
    assert all("list-item" in n.badges for n in items)

    links = snapshot.children(nodes["nav"].node_id)
    assert "link" in links[0].badges
    assert "link" not in links[1].badges

    assert "iframe" in nodes["iframe"].badges
    assert not nodes["iframe"].has_children
    assert "form" in nodes["form"].badges
    assert "heading" in nodes["h2"].badges
    assert snapshot.children("html > nope") == []


def test_node_ids_are_frame_qualified():
    snapshot = InspectorSnapshot(parse_document(DOC), ("iframe#checkout",))
    root = snapshot.init(depth=0)[0]
    assert root.node_id == "iframe#checkout >>> html"
    assert root.frame_path == ("iframe#checkout",)
    assert root.to_wire()["framePath"] == ["iframe#checkout"]


def test_init_resets_the_arena():
    snapshot = InspectorSnapshot(parse_document(DOC))
    nodes = {n.tag: n for n in snapshot.init()}
    li_id = snapshot.children(nodes["ul"].node_id)[0].node_id
    assert snapshot.element(li_id) is not None

    snapshot.init(depth=1)
    assert snapshot.element(li_id) is None
    assert snapshot.select(li_id) is None


def test_select_and_suggestions_for_node():
    soup = parse_document(DOC)
    snapshot = InspectorSnapshot(soup)
    nodes = {n.tag: n for n in snapshot.init()}
    li = snapshot.children(nodes["ul"].node_id)[1]

    selected = snapshot.select(li.node_id)
    assert selected.is_list and selected.list_item_count == 3
    assert selected.local_selector == "ul.items > li"
    assert [s.kind for s in snapshot.suggestions(li.node_id)] == ["stable", "scoped", "strict"]
    assert soup.select_one(li.node_id) is snapshot.element(li.node_id)


def test_children_are_capped():
    many = "<html><body><div>" + "".join(f"<span>{i}</span>" for i in range(10)) + "</div></body></html>"
    snapshot = InspectorSnapshot(parse_document(many), max_children=4)
    nodes = {n.tag: n for n in snapshot.init(depth=2)}
    assert len(snapshot.children(nodes["div"].node_id)) == 4


def test_local_path_resolves_to_element():
    soup = parse_document(DOC)
    h2 = soup.find("h2")
    path = local_path(h2)
    assert path.startswith("html > body:nth-child(2) > h2:nth-child(")
    assert soup.select_one(path) is h2

from siteforge.elements import Element, ElementFactory, ErrorElement, style_to_css, to_html, to_json
from siteforge.evaluator import evaluate
from siteforge.render import render_page, render_page_html, render_page_json, root_props


def _live():
    return evaluate(
        {
            "components": {
                "Hero": {
                    "label": "Hero",
                    "render": "({ title }) => React.createElement('h1', { className: 'hero' }, title)",
                },
                "Boom": {
                    "label": "Boom",
                    "render": "({ items }) => React.createElement('ul', null, items.map((i) => React.createElement('li', null, i)))",
                },
                "Card": {
                    "label": "Card",
                    "render": (
                        "({ title }) => React.createElement(Inner, { label: title })"
                    ),
                },
                "Nested": {
                    "label": "Nested",
                    "render": (
                        "({ name }) => { const Badge = ({ text }) => React.createElement('span', { className: 'badge' }, text); "
                        "return React.createElement('div', null, React.createElement(Badge, { text: name })); }"
                    ),
                },
            }
        }
    )


def test_every_entry_renders_in_order():
    doc = {"content": [{"type": "Hero", "props": {"title": "A"}}, {"type": "Hero", "props": {"title": "B"}}]}
    nodes = render_page(doc, _live())
    assert [n.children for n in nodes] == [["A"], ["B"]]


def test_failures_are_isolated():
    doc = {
        "content": [
            {"type": "Hero", "props": {"title": "Before"}},
            {"type": "Boom", "props": {}},
            {"type": "Ghost", "props": {}},
            "junk",
            {"type": "Hero", "props": {"title": "After"}},
        ]
    }
    nodes = render_page(doc, _live())
    assert len(nodes) == 5
    assert nodes[0] == Element("h1", {"className": "hero"}, ["Before"])
    assert isinstance(nodes[1], ErrorElement)
    assert nodes[1].message.startswith("Error rendering Boom: TypeError: Cannot read properties of undefined")
    assert nodes[2].message == "Error: Component Ghost not found"
    assert nodes[3].message == "Error: content entry 3 is not an object"
    assert nodes[4] == Element("h1", {"className": "hero"}, ["After"])


def test_missing_props_render_with_empty_mapping():
    nodes = render_page({"content": [{"type": "Hero"}]}, _live())
    assert nodes[0].type == "h1"


def test_function_components_are_expanded():
    nodes = render_page({"content": [{"type": "Nested", "props": {"name": "new"}}]}, _live())
    assert to_html(nodes[0]) == '<div><span class="badge">new</span></div>'


def test_unknown_name_in_render_is_caught():
    nodes = render_page({"content": [{"type": "Card", "props": {"title": "x"}}]}, _live())
    assert isinstance(nodes[0], ErrorElement)
    assert "Inner is not defined" in nodes[0].message


def test_html_escapes_text_and_attributes():
    react = ElementFactory()
    el = react.createElement(
        "a",
        {"href": '/x?a=1&b="2"', "onClick": lambda: None, "className": "btn", "hidden": False, "disabled": True},
        "<b>bold</b>",
    )
    assert to_html(el) == '<a href="/x?a=1&amp;b=&#34;2&#34;" class="btn" disabled>&lt;b&gt;bold&lt;/b&gt;</a>'


def test_void_elements_and_styles():
    react = ElementFactory()
    img = react.createElement("img", {"src": "a.png", "style": {"marginTop": 8, "opacity": 0.5, "zIndex": 0}})
    assert to_html(img) == '<img src="a.png" style="margin-top: 8px; opacity: 0.5; z-index: 0" />'
    assert style_to_css({"padding": "1rem", "color": None}) == "padding: 1rem"


def test_zero_is_rendered_as_text():
    react = ElementFactory()
    assert to_html(react.createElement("p", None, 0, False, None, "")) == "<p>0</p>"


def test_fragments_render_children_only():
    react = ElementFactory()
    el = react.createElement(react.Fragment, None, react.createElement("i", None, "a"), "b")
    assert to_html(el) == "<i>a</i>b"


def test_json_view_marks_errors():
    doc = {"content": [{"type": "Hero", "props": {"title": "A"}}, {"type": "Ghost"}], "root": {"props": {"title": "T"}}}
    out = render_page_json(doc, _live())
    assert out["root"] == {"title": "T"}
    assert out["content"][0] == {"type": "h1", "props": {"className": "hero"}, "children": ["A"]}
    assert out["content"][1] == {"error": True, "component": "Ghost", "message": "Error: Component Ghost not found"}
    assert out["errors"] == [{"index": 1, "component": "Ghost", "message": "Error: Component Ghost not found"}]
    assert to_json(ErrorElement.create("X", "m"))["error"] is True


def test_html_page_contains_sections_and_zones():
    doc = {
        "content": [{"type": "Hero", "props": {"title": "Welcome <friend>"}}, {"type": "Ghost"}],
        "root": {"props": {"title": "Acme & Co", "theme": "dark"}},
        "zones": {"sidebar": [{"type": "Hero", "props": {"title": "Side"}}]},
    }
    html = render_page_html(doc, _live())
    assert "<title>Acme &amp; Co</title>" in html
    assert 'data-theme="dark"' in html
    assert '<h1 class="hero">Welcome &lt;friend&gt;</h1>' in html
    assert 'class="siteforge-error"' in html
    assert "Error: Component Ghost not found" in html
    assert 'data-zone="sidebar"' in html
    assert '<h1 class="hero">Side</h1>' in html
    assert html.count('class="siteforge-section"') == 2


def test_root_props_accepts_flat_root():
    assert root_props({"root": {"title": "Flat"}}) == {"title": "Flat"}
    assert root_props({}) == {}

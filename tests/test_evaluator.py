import pytest

from siteforge.elements import Element, ErrorElement, default_render_env
from siteforge.errors import ConfigEvaluationError
from siteforge.evaluator import FallbackFunction, evaluate, locate, strip_export_prefix
from siteforge.js_runtime import Interpreter
from siteforge.normalizer import normalize
from siteforge.serializer import serialize


HERO_RENDER = "({ title }) => React.createElement('h1', { className: 'hero' }, title)"


def _config(**components):
    return {"components": components}


def test_strip_export_prefix():
    assert strip_export_prefix("export const config = { a: 1 };") == "{ a: 1 }"
    assert strip_export_prefix("  export let config={}; ;") == "{}"
    assert strip_export_prefix("{ b: 2 }") == "{ b: 2 }"


def test_round_trip_matches_direct_compile():
    cfg = normalize(_config(Hero={"label": "Hero", "fields": {"title": {"type": "text"}}, "render": HERO_RENDER}))
    live = evaluate(serialize(cfg))
    direct = Interpreter(default_render_env()).evaluate(HERO_RENDER)
    for props in ({"title": "Hi"}, {}, {"title": 3}):
        assert live["components"]["Hero"]["render"](props) == direct(props)
    assert live["components"]["Hero"]["render"]({"title": "Hi"}) == Element("h1", {"className": "hero"}, ["Hi"])


def test_data_is_untouched():
    cfg = _config(Hero={"label": "Hero", "fields": {"title": {"type": "text", "label": "Title"}}, "render": HERO_RENDER})
    live = evaluate(serialize(cfg))
    assert live["components"]["Hero"]["label"] == "Hero"
    assert live["components"]["Hero"]["fields"] == cfg["components"]["Hero"]["fields"]


def test_mapping_input_is_copied():
    cfg = _config(Hero={"label": "Hero", "render": HERO_RENDER})
    live = evaluate(cfg)
    assert cfg["components"]["Hero"]["render"] == HERO_RENDER
    assert callable(live["components"]["Hero"]["render"])


def test_get_item_summary_is_compiled():
    cfg = normalize(_config(List={"fields": {"items": {"type": "array", "arrayFields": {"title": {"type": "text"}}}}}))
    live = evaluate(serialize(cfg))
    summary = live["components"]["List"]["fields"]["items"]["getItemSummary"]
    assert summary({"title": "First"}, 0) == "First"
    assert summary({}, 4) == "Item 5"


def test_nested_array_summaries_are_compiled():
    cfg = _config(
        Menu={
            "render": "() => null",
            "fields": {
                "groups": {
                    "type": "array",
                    "arrayFields": {"links": {"type": "array", "getItemSummary": "(l) => l.href"}},
                    "getItemSummary": "(g) => g.name",
                }
            },
        }
    )
    live = evaluate(cfg)
    groups = live["components"]["Menu"]["fields"]["groups"]
    assert groups["getItemSummary"]({"name": "Docs"}) == "Docs"
    assert groups["arrayFields"]["links"]["getItemSummary"]({"href": "/a"}) == "/a"


def test_broken_render_becomes_fallback():
    live = evaluate(_config(Good={"render": "() => 'ok'"}, Bad={"render": "(() => "}))
    assert live["components"]["Good"]["render"]() == "ok"
    bad = live["components"]["Bad"]["render"]
    assert isinstance(bad, FallbackFunction)
    out = bad({})
    assert isinstance(out, ErrorElement)
    assert out.component == "Bad"
    assert out.message.startswith("Error in Bad render:")


def test_non_function_render_becomes_fallback():
    live = evaluate(_config(Num={"render": "42"}, Missing={"label": "Missing"}))
    assert "not a function expression" in live["components"]["Num"]["render"]().message
    assert "render is missing" in live["components"]["Missing"]["render"]().message


def test_broken_summary_returns_text():
    live = evaluate(_config(L={"render": "() => null", "fields": {"items": {"type": "array", "getItemSummary": "(item) =>"}}}))
    summary = live["components"]["L"]["fields"]["items"]["getItemSummary"]
    assert isinstance(summary, FallbackFunction)
    assert summary({}, 0).startswith("Error in L.items.getItemSummary:")


@pytest.mark.parametrize("summary", [7, None, {"a": 1}, ["x"]])
def test_non_function_summary_becomes_fallback(summary):
    live = evaluate(_config(L={"render": "() => null", "fields": {"items": {"type": "array", "getItemSummary": summary}}}))
    fn = live["components"]["L"]["fields"]["items"]["getItemSummary"]
    assert isinstance(fn, FallbackFunction)
    assert fn({}, 0) == "Error in L.items.getItemSummary: getItemSummary is not a function"


def test_non_function_summary_in_module_source():
    live = evaluate('{"components": {"L": {"render": () => null, "fields": {"items": {"getItemSummary": 42}}}}}')
    assert callable(live["components"]["L"]["fields"]["items"]["getItemSummary"])


def test_syntax_error_in_module_names_component():
    cfg = _config(
        Header={"label": "Header", "fields": {"logo": {"type": "text", "label": "Logo"}}, "render": "() => null"},
        Hero={"label": "Hero", "fields": {"title": {"type": "text", "label": "Title"}}, "render": "({ title }) => title +"},
    )
    with pytest.raises(ConfigEvaluationError) as info:
        evaluate(serialize(cfg))
    assert info.value.location == "Hero"
    assert "Hero" in str(info.value)


def test_syntax_error_in_summary_names_field():
    cfg = _config(
        List={
            "label": "List",
            "fields": {"items": {"type": "array", "label": "Items", "getItemSummary": "(item) => item.(", "arrayFields": {}}},
            "render": "() => null",
        }
    )
    with pytest.raises(ConfigEvaluationError) as info:
        evaluate(serialize(cfg))
    assert info.value.location == "List.items"


def test_syntax_error_location_ignores_layout():
    cfg = _config(
        Good={"label": "Good", "render": "() => null"},
        Bad={"label": "Bad", "fields": {"title": {"type": "text", "label": "Title"}}, "render": "() => ("},
    )
    with pytest.raises(ConfigEvaluationError) as info:
        evaluate(serialize(cfg, bare_keys=True))
    assert info.value.location == "Bad"

    one_line = '{components: {Good: {render: () => null}, Bad: {fields: {title: {type: "text"}}, render: () => (}}}'
    with pytest.raises(ConfigEvaluationError) as info:
        evaluate(one_line)
    assert info.value.location == "Bad"

    one_line = '{components: {L: {fields: {items: {type: "array", getItemSummary: (i) => i.(}}, render: () => null}}}'
    with pytest.raises(ConfigEvaluationError) as info:
        evaluate(one_line)
    assert info.value.location == "L.items"


def test_conditional_branch_is_not_a_field_name():
    source = "{components: {A: {render: () => null, fields: {t: q ? 'x' : (}}}}"
    with pytest.raises(ConfigEvaluationError) as info:
        evaluate(source)
    assert info.value.location == "A.t"


def test_runtime_error_in_literal_names_component():
    source = '{"components": {"A": {"label": "A", "render": () => 1}, "B": {"label": missingName, "render": () => 2}}}'
    with pytest.raises(ConfigEvaluationError) as info:
        evaluate(source)
    assert info.value.location == "B"
    assert "missingName is not defined" in str(info.value)


@pytest.mark.parametrize("source", ["", "export const config = ;", "[1, 2]", "{}"])
def test_fatal_shapes(source):
    with pytest.raises(ConfigEvaluationError):
        evaluate(source)


def test_locate_without_components():
    assert locate('{\n  "x": (', 9) == "config"
    assert locate("{}", -1) == "config"


def test_only_render_env_is_visible():
    live = evaluate(_config(Leak={"render": "() => typeof require + typeof process + typeof globalThis"}))
    assert live["components"]["Leak"]["render"]() == "undefinedundefinedundefined"


def test_custom_render_env():
    env = {"html": lambda tag, text: f"<{tag}>{text}</{tag}>"}
    live = evaluate(_config(T={"render": "({ t }) => html('b', t)"}), render_env=env)
    assert live["components"]["T"]["render"]({"t": "x"}) == "<b>x</b>"
    with pytest.raises(ConfigEvaluationError):
        evaluate('{"components": {"A": {"render": React}}}', render_env=env)


def test_step_budget_applies_per_call():
    live = evaluate(
        _config(Loop={"render": "({ n }) => Array.from({ length: n }).map((_, i) => i).length"}),
        step_budget=300,
    )
    render = live["components"]["Loop"]["render"]
    assert render({"n": 5}) == 5
    assert render({"n": 5}) == 5
    with pytest.raises(Exception, match="step budget"):
        render({"n": 500})

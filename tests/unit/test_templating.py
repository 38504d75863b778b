import pytest

from promptrun import templating
from promptrun.errors import UnresolvedVariableError


def test_render_substitutes_flat_and_prefixed_references():
    context = {"name": "Ada", "count": 3}
    assert templating.render("Hi {{name}}, {{ context.count }} left", context) == (
        "Hi Ada, 3 left"
    )


def test_render_descends_into_nested_mappings():
    context = {"user": {"profile": {"city": "Paris"}}}
    assert templating.render("{{user.profile.city}}", context) == "Paris"


def test_render_reports_every_missing_reference():
    with pytest.raises(UnresolvedVariableError) as exc_info:
        templating.render("{{a}} {{b}} {{present}}", {"present": 1})
    assert exc_info.value.names == ["a", "b"]
    assert str(exc_info.value) == "Unresolved template variables: a, b"


def test_render_non_strict_leaves_missing_references():
    assert templating.render("{{a}}-{{b}}", {"a": "x"}, strict=False) == "x-{{b}}"


def test_resolve_preserves_types_of_whole_references():
    context = {"items": [1, 2], "name": "box", "meta": {"ok": True}}
    body = {
        "items": "{{items}}",
        "label": "item {{name}}",
        "nested": ["{{meta}}", 7],
    }
    assert templating.resolve(body, context) == {
        "items": [1, 2],
        "label": "item box",
        "nested": [{"ok": True}, 7],
    }


def test_find_references():
    assert templating.find_references("{{a}} and {{ b.c }}") == ["a", "b.c"]

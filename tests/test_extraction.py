from temporal_graph.services.extraction import (
    Entity,
    classify_string,
    deduplicate_entities,
    extract_entities,
    format_number,
)


def _keys(entities):
    return [e.key for e in entities]


def test_flat_object_yields_fields_and_classified_values():
    payload = {
        "title": "Acme",
        "link": "https://acme.example/a",
        "date": "2024-01-05",
        "price": 10,
    }
    entities = extract_entities(payload)
    assert _keys(entities) == [
        "field:title",
        "text:acme",
        "field:link",
        "url:https://acme.example/a",
        "field:date",
        "date:2024-01-05",
        "field:price",
        "num:price:10",
    ]
    by_key = {e.key: e for e in entities}
    assert by_key["text:acme"].value == "Acme"
    assert by_key["text:acme"].type == "text"
    assert by_key["num:price:10"].type == "number"
    assert by_key["num:price:10"].value == "10"


def test_text_keys_are_case_folded_but_values_keep_case():
    entities = extract_entities({"a": "Hello World", "b": "hello world"})
    texts = [e for e in entities if e.type == "text"]
    assert len(texts) == 1
    assert texts[0].key == "text:hello world"
    assert texts[0].value == "Hello World"


def test_nested_paths_for_numbers():
    payload = {"items": [{"price": 3}, {"price": 4.5}], "meta": {"count": 2}}
    keys = _keys(extract_entities(payload))
    assert "num:items[0].price:3" in keys
    assert "num:items[1].price:4.5" in keys
    assert "num:meta.count:2" in keys
    # field vocabulary is deduplicated across depths
    assert keys.count("field:price") == 1
    assert "field:items" in keys
    assert "field:meta" in keys


def test_long_text_is_dropped_but_long_urls_are_kept():
    long_text = "x" * 101
    long_url = "https://example.com/" + "y" * 200
    keys = _keys(extract_entities({"body": long_text, "href": long_url}))
    assert keys == ["field:body", "field:href", f"url:{long_url}"]


def test_text_at_exactly_the_limit_is_kept():
    value = "z" * 100
    keys = _keys(extract_entities({"v": value}))
    assert f"text:{value}" in keys


def test_null_and_bool_values_only_emit_the_field():
    keys = _keys(extract_entities({"a": None, "b": True, "c": False}))
    assert keys == ["field:a", "field:b", "field:c"]


def test_empty_and_whitespace_strings_emit_nothing():
    keys = _keys(extract_entities({"a": "", "b": "   "}))
    assert keys == ["field:a", "field:b"]


def test_values_are_trimmed_before_classification():
    keys = _keys(extract_entities({"u": "  https://a.example  ", "t": "  Foo "}))
    assert "url:https://a.example" in keys
    assert "text:foo" in keys


def test_top_level_scalars():
    assert _keys(extract_entities("Standalone Text")) == ["text:standalone text"]
    # top-level strings are not length-limited
    long_value = "q" * 300
    assert _keys(extract_entities(long_value)) == [f"text:{long_value}"]
    assert extract_entities(42) == []
    assert extract_entities(True) == []
    assert extract_entities(None) == []
    assert extract_entities("   ") == []


def test_top_level_list_of_objects():
    entities = extract_entities([{"name": "A"}, {"name": "B"}])
    assert _keys(entities) == ["field:name", "text:a", "text:b"]


def test_bare_strings_in_lists_are_plain_text():
    # only strings that hang off a key are classified as url/date
    keys = _keys(extract_entities(["A", "https://x.example"]))
    assert keys == ["text:a", "text:https://x.example"]


def test_deterministic_order_and_duplicates_keep_first():
    payload = {"x": "Same", "y": "same", "z": "Other"}
    first = extract_entities(payload)
    second = extract_entities(payload)
    assert first == second
    text_entities = [e for e in first if e.type == "text"]
    assert [e.value for e in text_entities] == ["Same", "Other"]


def test_unknown_scalar_types_are_stringified():
    class Thing:
        def __str__(self):
            return "Custom Thing"

    keys = _keys(extract_entities({"obj": Thing()}))
    assert keys == ["field:obj", "text:custom thing"]


def test_classify_string_rules():
    assert classify_string("http://a.example")[0].type == "url"
    assert classify_string("2024-02-30 later")[0].type == "date"
    assert classify_string("2024/02/03")[0].type == "text"
    assert classify_string("") == []


def test_format_number():
    assert format_number(3) == "3"
    assert format_number(3.0) == "3"
    assert format_number(4.25) == "4.25"
    assert format_number(float("nan")) == "NaN"
    assert format_number(float("inf")) == "Infinity"


def test_deduplicate_entities_keeps_first():
    a = Entity(key="text:a", type="text", value="A")
    b = Entity(key="text:a", type="text", value="a")
    assert deduplicate_entities([a, b]) == [a]


def test_field_entities_match_distinct_key_names():
    payload = {"a": {"b": 1, "c": [{"a": "x"}, {"d": None}]}, "b": "y"}
    fields = {e.value for e in extract_entities(payload) if e.type == "field"}
    assert fields == {"a", "b", "c", "d"}


def test_deeply_nested_payloads_do_not_exhaust_the_stack():
    payload = "Bottom"
    for _ in range(5000):
        payload = [payload]
    assert _keys(extract_entities(payload)) == ["text:bottom"]

    nested = {"leaf": 7}
    for _ in range(5000):
        nested = {"n": nested}
    keys = _keys(extract_entities(nested))
    assert keys[0] == "field:n"
    assert keys[1] == "field:leaf"
    assert keys[2].startswith("num:n.n.") and keys[2].endswith(".leaf:7")


def test_nested_visit_order_matches_document_order():
    payload = {"a": {"b": 1, "c": [{"d": "X"}]}, "e": "Y"}
    assert _keys(extract_entities(payload)) == [
        "field:a", "field:b", "num:a.b:1", "field:c", "field:d", "text:x", "field:e", "text:y",
    ]

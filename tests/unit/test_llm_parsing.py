"""
Unit tests -- lenient parsing of LLM responses.
"""
import pytest

from src.llm.parsing import extract_sql, parse_json_object, strip_fences


def test_strip_fences():
    assert strip_fences("```json\n{\"a\": 1}\n```") == '{"a": 1}'
    assert strip_fences("  plain  ") == "plain"


@pytest.mark.parametrize("text,expected", [
    ('{"a": 1}', {"a": 1}),
    ('```json\n{"a": 1}\n```', {"a": 1}),
    ('Sure! Here it is: {"a": {"b": 2}} hope that helps', {"a": {"b": 2}}),
])
def test_parse_json_object(text, expected):
    assert parse_json_object(text) == expected


@pytest.mark.parametrize("text", [None, "", "no json here", "[1, 2]", "{broken: }"])
def test_parse_json_object_rejects(text):
    assert parse_json_object(text) is None


def test_extract_sql_from_fence():
    text = "Here you go:\n```sql\nSELECT Sales, Region;\n```\nAnything else?"
    assert extract_sql(text) == "SELECT Sales, Region"


def test_extract_sql_from_prose():
    assert extract_sql("The query is SELECT SUM(Sales) AS total_sales") == "SELECT SUM(Sales) AS total_sales"


def test_extract_sql_nothing():
    assert extract_sql("I cannot answer that") == ""
    assert extract_sql(None) == ""

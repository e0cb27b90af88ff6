from pathlib import Path
import sys
import textwrap

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.errors import ConfigError
from app.loader import load_config, parse_config
from app.tasks import Method
from app.values import Array, Boolean, EnvRef, Integer, Null, Object, Source, SourceRef, String, Template

EXAMPLE = Path(__file__).resolve().parents[1] / "config" / "config.yaml"


def config(body: str):
    return parse_config(textwrap.dedent(body))


def task_yaml(extra: str = "", name: str = "t") -> str:
    return (
        "  - type: http\n"
        f"    name: {name}\n"
        "    method: GET\n"
        "    url: http://localhost:3030/load\n"
        + textwrap.indent(textwrap.dedent(extra), "    ")
    )


def test_load_example_config():
    loaded = load_config(EXAMPLE)

    assert loaded.errors == ()
    assert loaded.names() == ["load_data"]

    task = loaded.get("load_data")
    assert task.method is Method.GET
    assert task.url == Template((EnvRef("SERVICE_PATH"), "/load"))
    assert task.timeout_seconds == 10.0
    assert task.success_status_codes == frozenset({200})
    assert task.headers == (
        ("X-Api-Key", EnvRef("YOUR_OWN_SERVICE_KEY")),
        ("X-Custom-Key", String("My Custom Key")),
        ("X-Last-Execute-Time", SourceRef(Source.LAST_EXECUTE_TIME)),
        ("X-Execute-Time", SourceRef(Source.EXECUTE_TIME)),
    )
    assert task.body == Object((
        ("field1", String("hello")),
        ("field2", Object((("field1_1", Integer(100)),))),
        ("field3", Array((Object((("field1", Boolean(False)),)), Boolean(True)))),
        ("field4", Null()),
        ("last_execute_time", SourceRef(Source.LAST_EXECUTE_TIME)),
        ("execute_time", SourceRef(Source.EXECUTE_TIME)),
    ))


def test_defaults():
    loaded = parse_config("tasks:\n" + task_yaml())

    task = loaded.get("t")
    assert task.headers == ()
    assert task.body is None
    assert task.timeout_seconds is None
    assert task.success_status_codes == frozenset({200})


def test_empty_status_codes_fall_back_to_200():
    loaded = parse_config("tasks:\n" + task_yaml("success_status_codes: []\n"))

    assert loaded.get("t").success_status_codes == frozenset({200})


@pytest.mark.parametrize("spelling,expected", [
    ("true", True), ("TRUE", True), ("True", True), ("false", False), ('"FaLsE"', False),
])
def test_boolean_spellings(spelling, expected):
    loaded = parse_config("tasks:\n" + task_yaml(f"""
    body:
      json:
        type: boolean
        value: {spelling}
    """))

    assert loaded.get("t").body == Boolean(expected)


@pytest.mark.parametrize("extra", [
    # unknown type tag
    """
    body:
      json:
        type: float
        value: 1.5
    """,
    # unknown source
    """
    headers:
      X-Time:
        type: source
        source: yesterday
    """,
    # integer carrying a string
    """
    body:
      json:
        type: integer
        value: "100"
    """,
    # objects are not header values
    """
    headers:
      X-Obj:
        type: object
        properties: {}
    """,
    # duplicate property names
    """
    body:
      json:
        type: object
        properties:
          a:
            type: "null"
          a:
            type: "null"
    """,
    # unterminated env reference
    """
    headers:
      X-Key:
        type: string
        value: env!(KEY
    """,
    # unknown body kind
    """
    body:
      xml:
        type: "null"
    """,
    # yes is not a boolean
    """
    body:
      json:
        type: boolean
        value: yes
    """,
    # unquoted null parses as a missing tag
    """
    body:
      json:
        type: null
    """,
    # missing items
    """
    body:
      json:
        type: array
    """,
])
def test_definition_errors_exclude_only_that_task(extra):
    loaded = parse_config("tasks:\n" + task_yaml(extra, name="bad") + task_yaml(name="good"))

    assert loaded.names() == ["good"]
    assert len(loaded.errors) == 1
    assert loaded.errors[0].task_name == "bad"


@pytest.mark.parametrize("field,value", [
    ("method", "get"),
    ("method", "TRACE"),
    ("url", "localhost/load"),
    ("type", "grpc"),
])
def test_invalid_task_fields(field, value):
    text = "tasks:\n" + task_yaml(name="bad").replace(
        {"method": "method: GET", "url": "url: http://localhost:3030/load", "type": "type: http"}[field],
        f"{field}: {value}",
    )

    loaded = parse_config(text)

    assert loaded.tasks == ()
    assert "bad" in str(loaded.errors[0])


def test_duplicate_task_names():
    loaded = parse_config("tasks:\n" + task_yaml(name="same") + task_yaml(name="same"))

    assert loaded.names() == ["same"]
    assert "duplicate task name" in str(loaded.errors[0])


def test_error_path_points_at_node():
    loaded = parse_config("tasks:\n" + task_yaml("""
    body:
      json:
        type: object
        properties:
          outer:
            type: array
            items:
              - type: string
                value: 5
    """, name="bad"))

    assert str(loaded.errors[0]).startswith("bad.body.json.properties.outer.items[0].value:")


@pytest.mark.parametrize("text", ["tasks: [", "- just a list", "tasks: 5"])
def test_config_errors(text):
    with pytest.raises(ConfigError):
        parse_config(text)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml")

"""Tests for refcrawl.dfns module."""

from refcrawl.document import CrawlResult, SpecDescriptor
from refcrawl.dfns import (
    check_spec_definitions,
    expected_css_dfns,
    expected_idl_dfn,
    expected_idl_dfns,
    has_missing_dfns,
    match_idl_dfn,
)


def _dfn(text, dfn_type, dfn_for=None, access="public"):
    return {"linkingText": [text], "type": dfn_type, "for": dfn_for or [], "access": access}


def _interface(name, members=(), **kwargs):
    return {"type": "interface", "name": name, "members": list(members), **kwargs}


class TestExpectedIdlDfn:
    def test_attribute(self):
        parent = _interface("Node")
        dfn = expected_idl_dfn({"type": "attribute", "name": "nodeType"}, parent)
        assert dfn == {"linkingText": ["nodeType"], "type": "attribute", "for": ["Node"]}

    def test_operation_serializes_arguments(self):
        parent = _interface("Node")
        desc = {
            "type": "operation",
            "name": "append",
            "arguments": [{"name": "nodes", "variadic": True}],
        }
        assert expected_idl_dfn(desc, parent)["linkingText"] == ["append(...nodes)"]
        assert expected_idl_dfn(desc, parent)["type"] == "method"

    def test_constructor(self):
        parent = _interface("Event")
        desc = {"type": "constructor", "arguments": [{"name": "type"}, {"name": "eventInitDict"}]}
        assert expected_idl_dfn(desc, parent)["linkingText"] == ["constructor(type, eventInitDict)"]

    def test_html_constructor_skipped(self):
        assert expected_idl_dfn({"type": "constructor", "arguments": []}, _interface("HTMLElement")) is None

    def test_stringifier(self):
        dfn = expected_idl_dfn({"type": "operation", "special": "stringifier"}, _interface("URL"))
        assert dfn["type"] == "dfn"
        assert "stringification behavior" in dfn["linkingText"]

    def test_unnamed_getter_and_default_tojson_skipped(self):
        parent = _interface("Storage")
        assert expected_idl_dfn({"type": "operation", "special": "getter", "name": ""}, parent) is None
        to_json = {"type": "operation", "name": "toJSON", "extAttrs": [{"name": "Default"}]}
        assert expected_idl_dfn(to_json, parent) is None

    def test_enum_value(self):
        enum = {"type": "enum", "name": "ScrollBehavior"}
        dfn = expected_idl_dfn({"type": "enum-value", "value": "smooth"}, enum)
        assert dfn["linkingText"] == ['"smooth"', "smooth"]
        assert dfn["for"] == ["ScrollBehavior"]

    def test_dictionary_field(self):
        dictionary = {"type": "dictionary", "name": "EventInit"}
        assert expected_idl_dfn({"type": "field", "name": "bubbles"}, dictionary)["type"] == "dict-member"

    def test_mixin_and_partial(self):
        mixin = {"type": "interface mixin", "name": "ParentNode"}
        assert expected_idl_dfn(mixin, mixin)["type"] == "interface"
        assert expected_idl_dfn({**mixin, "partial": True}, None) is None

    def test_includes_has_no_dfn(self):
        assert expected_idl_dfn({"type": "includes"}, None) is None


class TestExpectedIdlDfns:
    def test_names_and_members(self):
        idl = {
            "idlNames": {
                "Node": _interface("Node", [{"type": "attribute", "name": "nodeType"}]),
            },
            "idlExtendedNames": {
                "Window": [_interface("Window", [{"type": "attribute", "name": "foo"}], partial=True)],
            },
        }
        expected = expected_idl_dfns(idl)
        texts = [dfn["linkingText"][0] for dfn in expected]
        # Partial root has no dfn, its members do
        assert texts == ["Node", "nodeType", "foo"]
        assert all(dfn["access"] == "public" for dfn in expected)


class TestMatchIdlDfn:
    def test_overload_suffix_ignored(self):
        expected = {"linkingText": ["append(nodes)"], "type": "method", "for": ["Node"]}
        actual = _dfn("append(nodes)!overload-1", "method", ["Node"])
        assert match_idl_dfn(expected, actual)

    def test_skip_args(self):
        expected = {"linkingText": ["append(...nodes)"], "type": "method", "for": ["Node"]}
        actual = _dfn("append(node)", "method", ["Node"])
        assert not match_idl_dfn(expected, actual)
        assert match_idl_dfn(expected, actual, skip_args=True)

    def test_for_and_type(self):
        expected = {"linkingText": ["nodeType"], "type": "attribute", "for": ["Node"]}
        assert not match_idl_dfn(expected, _dfn("nodeType", "attribute", ["Element"]))
        assert match_idl_dfn(expected, _dfn("nodeType", "attribute", ["Element"]), skip_for=True)
        assert match_idl_dfn(expected, _dfn("nodeType", "dfn", ["Node"]), skip_type=True)


class TestExpectedCssDfns:
    def test_properties_descriptors_values(self):
        css = {
            "properties": {
                "color": {"name": "color"},
                "display": {"name": "display", "newValues": "grid"},
            },
            "descriptors": {"font-display": [{"name": "font-display", "for": "@font-face"}]},
            "valuespaces": {"<color>": {"value": "<rgb()>"}},
        }
        expected = expected_css_dfns(css)
        assert {"linkingText": ["color"], "type": "property", "for": []} in expected
        assert {"linkingText": ["font-display"], "type": "descriptor", "for": ["@font-face"]} in expected
        assert {"linkingText": ["<color>"], "value": "<rgb()>"} in expected
        assert len(expected) == 3


class TestCheckSpecDefinitions:
    def _result(self, shortname="dom", **kwargs):
        return CrawlResult(spec=SpecDescriptor(url="https://a.example/", shortname=shortname), **kwargs)

    def test_all_defined(self):
        result = self._result(
            idl={"idlNames": {"Node": _interface("Node", [{"type": "attribute", "name": "nodeType"}])}},
            css={"properties": {"color": {"name": "color"}}},
            dfns=[
                _dfn("Node", "interface"),
                _dfn("nodeType", "attribute", ["Node"]),
                _dfn("color", "property"),
            ],
        )
        report = check_spec_definitions(result)
        assert report == {"css": [], "idl": []}
        assert not has_missing_dfns(report)

    def test_missing_idl(self):
        result = self._result(idl={"idlNames": {"Node": _interface("Node")}}, dfns=[_dfn("Node", "dfn")])
        report = check_spec_definitions(result)
        assert len(report["idl"]) == 1
        missing = report["idl"][0]
        assert missing["expected"]["linkingText"] == ["Node"]
        # Found when ignoring the type
        assert missing["found"]["type"] == "dfn"
        assert has_missing_dfns(report)

    def test_near_miss_is_warning(self):
        parent = _interface("Node", [{"type": "operation", "name": "append", "arguments": [{"name": "nodes"}]}])
        result = self._result(
            idl={"idlNames": {"Node": parent}},
            dfns=[_dfn("Node", "interface"), _dfn("append()", "method", ["Node"])],
        )
        report = check_spec_definitions(result)
        assert report["idl"][0]["warning"] is True
        assert report["idl"][0]["for"]["linkingText"] == ["Node"]
        assert not has_missing_dfns(report)

    def test_css_function_alternate_text(self):
        result = self._result(
            css={"valuespaces": {"<rgb()>": {}}},
            dfns=[_dfn("rgb()", "function")],
        )
        assert check_spec_definitions(result)["css"] == []

    def test_obsolete_model(self):
        result = self._result(shortname="SVG2", idl={"idlNames": {"X": _interface("X")}})
        assert check_spec_definitions(result) == {"obsoleteDfnsModel": True}
        assert check_spec_definitions(result, include_obsolete=True)["idl"]

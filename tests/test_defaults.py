from openapi_decl.declarations.defaults import MAX_INT, is_unset, strip_unset


class TestIsUnset:
    def test_blank_values(self):
        assert is_unset("description", "")
        assert is_unset("description", None)
        assert is_unset("tags", [])
        assert is_unset("schema", {})

    def test_false_is_unset_except_explode(self):
        assert is_unset("required", False)
        assert not is_unset("explode", False)

    def test_numeric_sentinels(self):
        assert is_unset("max_length", MAX_INT)
        assert is_unset("min_length", 0)
        assert not is_unset("min_length", 3)
        assert not is_unset("maximum", 0)

    def test_opaque_payloads_kept(self):
        assert not is_unset("value", [])
        assert not is_unset("example", False)
        assert not is_unset("default_value", 0)
        assert is_unset("example", "")


class TestStripUnset:
    def test_strips_nested_defaults(self):
        values = {
            "name": "id",
            "description": "",
            "required": False,
            "schema": {"type": "integer", "max_length": MAX_INT, "pattern": ""},
            "examples": [],
        }
        assert strip_unset(values) == {"name": "id", "schema": {"type": "integer"}}

    def test_nested_element_left_empty_is_removed(self):
        assert strip_unset({"name": "id", "schema": {"format": ""}}) == {"name": "id"}

    def test_opaque_payload_not_inspected(self):
        values = {"name": "x-data", "value": {"empty": "", "flag": False}}
        assert strip_unset(values) == values

    def test_list_items(self):
        assert strip_unset({"refs": ["user", "", "create"]}) == {"refs": ["user", "create"]}

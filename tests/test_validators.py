"""
Tests for tool argument validation.
"""

import pytest

from mise.tools.validators import (
    ToolValidationError,
    clamp_number,
    parse_arguments,
    sanitize_ingredient_name,
    sanitize_search_query,
    validate_enum,
    validate_generate_recipe_params,
    validate_modify_recipe_params,
    validate_retrieve_cooked_recipes_params,
    validate_search_recipes_params,
)


class TestHelpers:
    def test_clamp_number(self):
        assert clamp_number("7.9", 1, 10) == 7
        assert clamp_number(-3, 1, 10) == 1
        assert clamp_number(99, 1, 10) == 10

    def test_clamp_rejects_non_numbers(self):
        with pytest.raises(ToolValidationError):
            clamp_number("soon", 1, 10)
        with pytest.raises(ToolValidationError):
            clamp_number(float("nan"), 1, 10)

    def test_validate_enum(self):
        assert validate_enum("easy", ("easy", "hard")) == "easy"
        with pytest.raises(ToolValidationError, match="Allowed: easy, hard"):
            validate_enum("extreme", ("easy", "hard"))

    def test_sanitize_ingredient_name_keeps_accents(self):
        assert sanitize_ingredient_name("  crème   fraîche!! ") == "crème fraîche"
        assert sanitize_ingredient_name("sun-dried tomato") == "sun-dried tomato"

    def test_sanitize_search_query_removes_filter_syntax(self):
        assert sanitize_search_query("pasta%,name_en.eq.x", 200) == "pasta name en eq x"

    def test_status_code(self):
        assert ToolValidationError.status_code == 400


class TestParseArguments:
    def test_json_string(self):
        assert parse_arguments('{"query": "pasta"}', "search_recipes") == {"query": "pasta"}

    def test_blank_string_is_empty_object(self):
        assert parse_arguments("  ", "search_recipes") == {}

    def test_malformed_json(self):
        with pytest.raises(ToolValidationError, match="Invalid JSON in search_recipes params"):
            parse_arguments("{not json", "search_recipes")

    def test_non_object(self):
        with pytest.raises(ToolValidationError, match="must be an object"):
            parse_arguments("[1, 2]", "search_recipes")


class TestSearchParams:
    def test_defaults(self):
        params = validate_search_recipes_params({"query": "pasta"})
        assert params.query == "pasta"
        assert params.limit == 10

    def test_clamping(self):
        params = validate_search_recipes_params({"query": "soup", "limit": 50, "max_time": 0})
        assert params.limit == 20
        assert params.max_time == 1

    def test_filter_without_query(self):
        assert validate_search_recipes_params({"cuisine": "Mexican"}).cuisine == "Mexican"

    def test_requires_query_or_filter(self):
        with pytest.raises(ToolValidationError, match="requires a query or at least one filter"):
            validate_search_recipes_params({"limit": 5})

    def test_invalid_difficulty(self):
        with pytest.raises(ToolValidationError):
            validate_search_recipes_params({"query": "pasta", "difficulty": "extreme"})


class TestGenerateParams:
    def test_ingredients_are_cleaned(self):
        params = validate_generate_recipe_params({"ingredients": ["  Chicken!! ", "", "rice", 5]})
        assert params.ingredients == ["Chicken", "rice"]

    def test_ingredient_count_is_capped(self):
        params = validate_generate_recipe_params({"ingredients": [f"item {i}" for i in range(30)]})
        assert len(params.ingredients) == 20

    def test_target_time_clamped(self):
        params = validate_generate_recipe_params({"ingredients": ["rice"], "target_time": 1})
        assert params.target_time == 5

    def test_useful_items_capped(self):
        params = validate_generate_recipe_params(
            {"ingredients": ["rice"], "useful_items": ["x" * 80] + [f"tool {i}" for i in range(15)]}
        )
        assert len(params.useful_items) == 10
        assert len(params.useful_items[0]) == 50

    def test_requires_ingredients(self):
        with pytest.raises(ToolValidationError, match="at least one ingredient"):
            validate_generate_recipe_params({"recipe_description": "soup"})

    def test_requires_valid_ingredient(self):
        with pytest.raises(ToolValidationError, match="at least one valid ingredient"):
            validate_generate_recipe_params({"ingredients": ["!!!", "???"]})


class TestRetrieveParams:
    def test_all_optional(self):
        params = validate_retrieve_cooked_recipes_params({})
        assert params.query is None
        assert params.timeframe is None

    def test_values(self):
        params = validate_retrieve_cooked_recipes_params({"query": "chili", "timeframe": "last week"})
        assert (params.query, params.timeframe) == ("chili", "last week")


class TestModifyRecipeParams:
    def test_valid(self):
        params = validate_modify_recipe_params({"modification_request": "  make it for 6 people "})
        assert params.modification_request == "make it for 6 people"

    def test_missing_request(self):
        with pytest.raises(ToolValidationError, match="non-empty modification_request"):
            validate_modify_recipe_params({})

    def test_blank_request(self):
        with pytest.raises(ToolValidationError, match="non-empty modification_request"):
            validate_modify_recipe_params({"modification_request": "   "})

    def test_non_string_request(self):
        with pytest.raises(ToolValidationError):
            validate_modify_recipe_params({"modification_request": 6})

"""Tests for product listing: filters, search and pagination."""

import pytest

from errors import ValidationError
from inventory import ProductQuery


@pytest.fixture
def catalog(add_product):
    return {
        "carrots": add_product(name="Carrots", category="Vegetables", price=2.5, description="Orange and crunchy"),
        "kale": add_product(name="Kale", category="vegetables", price=4.0, description="Leafy greens"),
        "milk": add_product(name="Whole Milk", category="Dairy", price=1.2, description="Fresh from the farm"),
        "cheese": add_product(name="Goat Cheese", category="Dairy", price=9.0, description="Aged three months"),
        "apples": add_product(name="Apples", category="Fruits", price=3.0, description="Crisp orange-free fruit"),
    }


def names(page):
    return [p.name for p in page.products]


def test_default_is_newest_first(inventory, catalog):
    page = inventory.list_products(ProductQuery())
    assert names(page) == ["Apples", "Goat Cheese", "Whole Milk", "Kale", "Carrots"]
    assert page.total_products == 5
    assert page.total_pages == 1


def test_category_is_case_insensitive_exact_match(inventory, catalog):
    page = inventory.list_products(ProductQuery(category="VEGETABLES"))
    assert sorted(names(page)) == ["Carrots", "Kale"]

    # exact match, not prefix
    assert inventory.list_products(ProductQuery(category="Veg")).total_products == 0


def test_category_is_not_a_regex(inventory, catalog):
    assert inventory.list_products(ProductQuery(category=".*")).total_products == 0


def test_price_range(inventory, catalog):
    page = inventory.list_products(ProductQuery(min_price=2.5, max_price=4.0))
    assert sorted(names(page)) == ["Apples", "Carrots", "Kale"]


def test_search_covers_name_description_and_category(inventory, catalog):
    assert sorted(names(inventory.list_products(ProductQuery(search="orange")))) == ["Apples", "Carrots"]
    assert names(inventory.list_products(ProductQuery(search="goat"))) == ["Goat Cheese"]
    assert sorted(names(inventory.list_products(ProductQuery(search="dairy")))) == ["Goat Cheese", "Whole Milk"]


def test_filters_combine_with_and(inventory, catalog):
    page = inventory.list_products(ProductQuery(category="dairy", max_price=5, search="milk"))
    assert names(page) == ["Whole Milk"]


def test_pagination(inventory, catalog):
    first = inventory.list_products(ProductQuery(page=1, limit=2))
    third = inventory.list_products(ProductQuery(page=3, limit=2))

    assert names(first) == ["Apples", "Goat Cheese"]
    assert names(third) == ["Carrots"]
    assert first.total_pages == third.total_pages == 3
    assert first.total_products == 5


def test_page_past_the_end_is_empty(inventory, catalog):
    page = inventory.list_products(ProductQuery(page=10, limit=2))
    assert page.products == []
    assert page.total_products == 5


def test_repeated_query_is_stable(inventory, catalog):
    query = ProductQuery(page=1, limit=3, search="a")
    assert inventory.list_products(query) == inventory.list_products(query)


def test_limit_is_capped():
    assert ProductQuery(limit=1000).limit == 100


@pytest.mark.parametrize("kwargs", [{"page": 0}, {"limit": 0}])
def test_invalid_paging(kwargs):
    with pytest.raises(ValidationError):
        ProductQuery(**kwargs)

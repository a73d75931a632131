"""
Integration Tests: checkout

POST /buy turns the cart into purchase records and charges the balance,
all or nothing.
"""

from unittest.mock import patch

import pytest

import db.functions
from db.models import Product
from store_helpers import bought_rows, cart_rows, fetch_user, set_balance


async def fill_cart(client, headers, *lines):
    for product_id, quantity in lines:
        response = await client.post("/cartItem", json={"productId": product_id, "quantity": quantity}, headers=headers)
        assert response.status_code == 200


class TestCheckout:

    @pytest.mark.asyncio
    async def test_successful_purchase(self, client, session, catalog, signed_up, auth_headers):
        """balance 100, cart 2 x 30 -> balance 40, empty cart, one purchase."""
        user_id = signed_up["user"]["id"]
        await set_balance(session, user_id, 100.0)
        await fill_cart(client, auth_headers, (catalog["products"]["macbook"], 2))

        response = await client.post("/buy", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"message": "Order successful!", "total": 60.0, "balance": 40.0}
        assert (await fetch_user(session, user_id)).balance == 40.0
        assert await cart_rows(session, user_id) == []
        bought = await bought_rows(session, user_id)
        assert len(bought) == 1
        assert bought[0].product_id == catalog["products"]["macbook"]
        assert bought[0].quantity == 2

    @pytest.mark.asyncio
    async def test_one_purchase_per_cart_line(self, client, session, catalog, signed_up, auth_headers):
        user_id = signed_up["user"]["id"]
        await set_balance(session, user_id, 500.0)
        await fill_cart(
            client, auth_headers,
            (catalog["products"]["macbook"], 1),
            (catalog["products"]["xps"], 2),
            (catalog["products"]["macbook"], 1),
        )

        response = await client.post("/buy", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["total"] == 151.0
        assert (await fetch_user(session, user_id)).balance == 349.0
        assert await cart_rows(session, user_id) == []
        assert sorted(b.quantity for b in await bought_rows(session, user_id)) == [1, 1, 2]

    @pytest.mark.asyncio
    async def test_purchases_show_up_on_the_user(self, client, catalog, auth_headers):
        await fill_cart(client, auth_headers, (catalog["products"]["macbook"], 1))
        await client.post("/buy", headers=auth_headers)

        response = await client.get("/validate", headers=auth_headers)

        user = response.json()["user"]
        assert user["cart"] == []
        assert [b["product"]["name"] for b in user["boughtProducts"]] == ["MacBook Pro"]
        assert user["boughtProducts"][0]["quantity"] == 1

    @pytest.mark.asyncio
    async def test_purchase_does_not_touch_stock(self, client, session, catalog, auth_headers):
        macbook_id = catalog["products"]["macbook"]
        await fill_cart(client, auth_headers, (macbook_id, 2))

        await client.post("/buy", headers=auth_headers)

        product = await session.get(Product, macbook_id, populate_existing=True)
        assert product.in_stock == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("balance", [60.0, 59.99])
    async def test_insufficient_funds_changes_nothing(self, client, session, catalog, signed_up, auth_headers, balance):
        """A total equal to or above the balance is refused."""
        user_id = signed_up["user"]["id"]
        await set_balance(session, user_id, balance)
        await fill_cart(client, auth_headers, (catalog["products"]["macbook"], 2))

        response = await client.post("/buy", headers=auth_headers)

        assert response.status_code == 400
        assert len(response.json()["errors"]) == 1
        assert (await fetch_user(session, user_id)).balance == balance
        assert len(await cart_rows(session, user_id)) == 1
        assert await bought_rows(session, user_id) == []

    @pytest.mark.asyncio
    async def test_failure_midway_rolls_back(self, client, session, catalog, signed_up, auth_headers):
        user_id = signed_up["user"]["id"]
        await fill_cart(
            client, auth_headers,
            (catalog["products"]["macbook"], 1),
            (catalog["products"]["xps"], 1),
        )

        calls = []
        original_bought_product = db.functions.BoughtProduct

        def failing_bought_product(**kwargs):
            calls.append(kwargs)
            if len(calls) == 2:
                raise RuntimeError("store went away")
            return original_bought_product(**kwargs)

        with patch("db.functions.BoughtProduct", side_effect=failing_bought_product):
            response = await client.post("/buy", headers=auth_headers)

        assert response.status_code == 400
        assert response.json() == {"errors": ["store went away"]}
        assert (await fetch_user(session, user_id)).balance == 100.0
        assert len(await cart_rows(session, user_id)) == 2
        assert await bought_rows(session, user_id) == []

    @pytest.mark.asyncio
    async def test_balance_spent_after_the_check(self, client, session, catalog, signed_up, auth_headers):
        """A concurrent charge lowers the balance between the funds check and our charge."""
        user_id = signed_up["user"]["id"]
        await fill_cart(client, auth_headers, (catalog["products"]["macbook"], 2))
        original_charge_balance = db.functions.charge_balance

        async def charge_after_concurrent_purchase(db_session, charged_user_id, total):
            await set_balance(session, charged_user_id, 50.0)
            return await original_charge_balance(db_session, charged_user_id, total)

        with patch("db.functions.charge_balance", new=charge_after_concurrent_purchase):
            response = await client.post("/buy", headers=auth_headers)

        assert response.status_code == 400
        assert response.json() == {"errors": ["Not enough balance: order total is 60.0, balance is 50.0"]}
        assert (await fetch_user(session, user_id)).balance == 50.0
        assert len(await cart_rows(session, user_id)) == 1
        assert await bought_rows(session, user_id) == []

    @pytest.mark.asyncio
    async def test_balance_is_kept_in_cents(self, client, session, catalog, signed_up, auth_headers):
        user_id = signed_up["user"]["id"]
        display = Product(name="Studio Display", price=60.1, in_stock=1, brand_id=catalog["brands"]["apple"])
        session.add(display)
        await session.commit()
        await fill_cart(client, auth_headers, (display.id, 1))

        response = await client.post("/buy", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["total"] == 60.1
        assert response.json()["balance"] == 39.9
        assert (await fetch_user(session, user_id)).balance == 39.9

    @pytest.mark.asyncio
    async def test_requires_token(self, client):
        response = await client.post("/buy")

        assert response.status_code == 401


def test_cart_total_rounds_to_cents():
    class Line:
        def __init__(self, price, quantity):
            self.product = type("P", (), {"price": price})()
            self.quantity = quantity

    assert db.functions.cart_total([Line(0.1, 1), Line(0.2, 1)]) == 0.3
    assert db.functions.cart_total([]) == 0
    assert db.functions.cart_total([Line(30.0, 2)]) == 60.0

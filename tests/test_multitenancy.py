"""
Tests for multitenancy features.
"""
from fastapi import status


class TestStoreResolution:
    """Test store resolution from domain/subdomain/path."""

    def test_get_store_by_custom_domain(self, client, acme):
        """Test store resolution by domain header."""
        store, _, _ = acme
        response = client.get("/stores/current", headers={"X-Store-Domain": "shop.acme.com"})
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["id"] == store.id
        assert data["url"] == "https://shop.acme.com"

    def test_get_store_by_subdomain(self, client, acme):
        """Test the label under the platform domain resolves the store."""
        response = client.get("/stores/current", headers={"X-Store-Domain": "Acme.DigitalDukandar.in:443"})
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["slug"] == "acme"

    def test_get_store_by_path_slug(self, client, make_store):
        """Test slug-addressed stores resolve from the forwarded storefront path."""
        store = make_store(slug="corner-shop")
        response = client.get(
            "/stores/current",
            headers={"X-Store-Domain": "digitaldukandar.in", "X-Store-Path": "/corner-shop/products"},
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["id"] == store.id

    def test_localhost_subdomain(self, client, acme):
        """Test development hosts under localhost."""
        response = client.get("/stores/current", headers={"X-Store-Domain": "acme.localhost:5173"})
        assert response.status_code == status.HTTP_200_OK

    def test_store_not_found(self, client):
        """Test 404 when store domain doesn't exist."""
        response = client.get("/stores/current", headers={"X-Store-Domain": "nonexistent.example.com"})
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert "Store not found" in response.json()["detail"]

    def test_platform_route_is_not_a_store(self, client, make_store):
        """Test reserved routes never resolve as slugs even when a store uses the name."""
        make_store(slug="admin")
        response = client.get(
            "/stores/current",
            headers={"X-Store-Domain": "digitaldukandar.in", "X-Store-Path": "/admin"},
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"] == "No store for this domain"

    def test_inactive_store_not_found(self, client, db, acme):
        """Test an inactive store is treated as absent."""
        store, _, _ = acme
        assert client.get("/stores/current", headers={"X-Store-Domain": "shop.acme.com"}).status_code == 200

        store.is_active = False
        db.commit()

        response = client.get("/stores/current", headers={"X-Store-Domain": "shop.acme.com"})
        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestStoreDomains:
    """Test creating stores and changing their identifiers."""

    def test_create_store(self, client):
        response = client.post("/stores/", json={"name": "Fresh Mart", "slug": "Fresh-Mart", "subdomain": "freshmart"})
        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["slug"] == "fresh-mart"
        assert data["url"].endswith("://freshmart.digitaldukandar.in")

    def test_create_store_reserved_subdomain(self, client):
        response = client.post("/stores/", json={"name": "Admin", "slug": "admin-shop", "subdomain": "admin"})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Subdomain is reserved"

    def test_create_store_reserved_slug(self, client):
        """A slug equal to a platform route could never be reached by path."""
        for slug in ("admin", "Checkout"):
            response = client.post("/stores/", json={"name": "Shop", "slug": slug})
            assert response.status_code == status.HTTP_400_BAD_REQUEST
            assert response.json()["detail"] == "Slug is reserved"

    def test_rename_to_reserved_slug(self, client, acme):
        store, _, _ = acme
        response = client.patch(f"/stores/{store.id}/domains", json={"slug": "orders"})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert client.get("/stores/current", headers={"X-Store-Domain": "shop.acme.com"}).json()["slug"] == "acme"

    def test_create_store_invalid_subdomain(self, client):
        response = client.post("/stores/", json={"name": "Bad", "slug": "bad", "subdomain": "-bad-"})
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_identifier_cannot_shadow_another_field(self, client, acme):
        """A new slug equal to an existing subdomain would make lookups ambiguous."""
        response = client.post("/stores/", json={"name": "Copy", "slug": "acme-2", "subdomain": "acme"})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        response = client.post("/stores/", json={"name": "Copy", "slug": "shop.acme.com"})
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_domain_change_takes_effect_immediately(self, client, acme):
        """Test the cached lookup is dropped when the custom domain moves."""
        store, _, _ = acme
        assert client.get("/stores/current", headers={"X-Store-Domain": "shop.acme.com"}).status_code == 200

        response = client.patch(f"/stores/{store.id}/domains", json={"custom_domain": "acme.shop"})
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["custom_domain"] == "acme.shop"

        assert client.get("/stores/current", headers={"X-Store-Domain": "shop.acme.com"}).status_code == 404
        assert client.get("/stores/current", headers={"X-Store-Domain": "acme.shop"}).status_code == 200

    def test_clear_custom_domain(self, client, acme):
        store, _, _ = acme
        response = client.patch(f"/stores/{store.id}/domains", json={"custom_domain": ""})
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["custom_domain"] is None

    def test_deactivate_store(self, client, acme):
        store, _, _ = acme
        assert client.get("/stores/current", headers={"X-Store-Domain": "acme.digitaldukandar.in"}).status_code == 200

        client.patch(f"/stores/{store.id}/domains", json={"is_active": False})

        assert client.get("/stores/current", headers={"X-Store-Domain": "acme.digitaldukandar.in"}).status_code == 404

    def test_empty_slug_rejected(self, client, acme):
        store, _, _ = acme
        response = client.patch(f"/stores/{store.id}/domains", json={"slug": ""})
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_update_unknown_store(self, client):
        assert client.patch("/stores/999/domains", json={"slug": "x"}).status_code == 404

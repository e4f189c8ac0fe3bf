"""Registry of the planner products that can be packaged and published."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from .errors import ConfigurationError

PRIMARY_PRODUCT_ID = "1"


@dataclass(frozen=True)
class Product:
    """A planner product built from its own upstream repository."""

    slug: str
    product_id: str
    name: str
    repository_owner: str
    repository_name: str
    kv_namespace: str | None = None

    @property
    def clone_url(self) -> str:
        return f"https://github.com/{self.repository_owner}/{self.repository_name}.git"

    def publish_prefix(self, tag: str) -> str:
        """Return the object-store prefix that receives ``tag`` for this product."""

        if self.product_id == PRIMARY_PRODUCT_ID:
            return f"versions/{tag}"
        return f"versions.{self.product_id}/{tag}"


PRODUCTS: Mapping[str, Product] = MappingProxyType(
    {
        "poe1": Product(
            slug="poe1",
            product_id="1",
            name="Path of Exile 1",
            repository_owner="PathOfBuildingCommunity",
            repository_name="PathOfBuilding",
        ),
        "poe2": Product(
            slug="poe2",
            product_id="2",
            name="Path of Exile 2",
            repository_owner="PathOfBuildingCommunity",
            repository_name="PathOfBuilding-PoE2",
            kv_namespace="poe2",
        ),
        "le": Product(
            slug="le",
            product_id="le",
            name="Last Epoch",
            repository_owner="Musholic",
            repository_name="LastEpochPlanner",
            kv_namespace="le",
        ),
    }
)


def kv_namespaces() -> frozenset[str]:
    """Return the secondary key-value namespaces used by non-primary products."""

    return frozenset(
        product.kv_namespace
        for product in PRODUCTS.values()
        if product.kv_namespace is not None
    )


def resolve_product(selector: str | None) -> Product:
    """Return the product named by ``selector`` (slug or product id).

    Raises:
        ConfigurationError: If the selector is missing or unrecognised.
    """

    if selector is None or not selector.strip():
        raise ConfigurationError("A product selector is required.")

    key = selector.strip().lower()
    product = PRODUCTS.get(key)
    if product is not None:
        return product
    for candidate in PRODUCTS.values():
        if candidate.product_id == key:
            return candidate

    known = ", ".join(sorted(PRODUCTS))
    raise ConfigurationError(f"Unknown product '{selector}'. Expected one of: {known}.")


__all__ = ["PRIMARY_PRODUCT_ID", "PRODUCTS", "Product", "kv_namespaces", "resolve_product"]

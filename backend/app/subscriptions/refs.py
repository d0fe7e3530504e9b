"""Typed references to Shopify resources and metaobjects."""
from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Type, TypeVar, Union

_GID_PREFIX = "gid://shopify/"

RefT = TypeVar("RefT", bound="Ref")


@dataclass(frozen=True)
class Ref:
    """Opaque reference to a stored entity.

    Two references are equal only when they point at the same kind of entity
    and carry the same global id, so a ``ProductRef`` never compares equal to
    a ``MagazineIssueRef`` even if the underlying strings match.
    """

    gid: str

    resource: ClassVar[str] = ""

    def __post_init__(self) -> None:
        if not isinstance(self.gid, str) or not self.gid:
            raise ValueError(f"{type(self).__name__} requires a non-empty gid")

    def __str__(self) -> str:
        return self.gid

    @property
    def legacy_id(self) -> str:
        """Trailing numeric (or opaque) part of the gid."""
        return self.gid.rsplit("/", 1)[-1]

    @classmethod
    def parse(cls: Type[RefT], value: Union[str, int, "Ref"]) -> RefT:
        """Build a reference from a gid, a bare legacy id, or another reference."""
        if isinstance(value, Ref):
            return cls(value.gid)
        text = "" if value is None else str(value).strip()
        if not text:
            raise ValueError(f"{cls.__name__} requires a non-empty gid")
        if text.startswith(_GID_PREFIX):
            return cls(text)
        return cls(f"{_GID_PREFIX}{cls.resource}/{text}")


@dataclass(frozen=True)
class ProductRef(Ref):
    resource: ClassVar[str] = "Product"


@dataclass(frozen=True)
class VariantRef(Ref):
    resource: ClassVar[str] = "ProductVariant"


@dataclass(frozen=True)
class CustomerRef(Ref):
    resource: ClassVar[str] = "Customer"


@dataclass(frozen=True)
class OrderRef(Ref):
    resource: ClassVar[str] = "Order"


@dataclass(frozen=True)
class MagazineIssueRef(Ref):
    resource: ClassVar[str] = "Metaobject"


@dataclass(frozen=True)
class EntitlementRef(Ref):
    resource: ClassVar[str] = "Metaobject"


@dataclass(frozen=True)
class SubscriptionRef(Ref):
    resource: ClassVar[str] = "Metaobject"


@dataclass(frozen=True)
class AlertRef(Ref):
    resource: ClassVar[str] = "Metaobject"


__all__ = [
    "AlertRef",
    "CustomerRef",
    "EntitlementRef",
    "MagazineIssueRef",
    "OrderRef",
    "ProductRef",
    "Ref",
    "SubscriptionRef",
    "VariantRef",
]

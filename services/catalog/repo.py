"""SQLAlchemy repository for the catalog store.

Products and their stock buckets live in two tables. A bucket is keyed by
(product, size, color); blank size/color mean "not set", so the bucket with
both blank is the product's base stock. Stock changes are single
conditional UPDATE statements, so concurrent decrements can never take a
bucket below zero.

Database connection parameters come from ``DATABASE_URL`` or the ``DB_*``
environment variables.
"""

import os
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
    update,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship

DB_HOST = os.getenv("DB_HOST", "catalog-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "catalog")
DB_USER = os.getenv("DB_USER", "catalog_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "catalog-pass")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)
engine = create_engine(DATABASE_URL, pool_pre_ping=True)


class Base(DeclarativeBase):
    pass


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    price_cents: Mapped[int] = mapped_column(Integer)
    sale_price_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    image: Mapped[str] = mapped_column(String(500), default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    variant_layout: Mapped[str] = mapped_column(String(16), default="none")
    buckets: Mapped[list["StockBucket"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        order_by=lambda: [StockBucket.sort_order, StockBucket.id],
    )


class StockBucket(Base):
    """Available quantity for one (product, size, color) bucket."""

    __tablename__ = "stock_buckets"
    __table_args__ = (
        UniqueConstraint("product_id", "size", "color", name="uq_stock_bucket"),
        CheckConstraint("quantity >= 0", name="ck_stock_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"))
    size: Mapped[str] = mapped_column(String(50), default="")
    color: Mapped[str] = mapped_column(String(50), default="")
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    product: Mapped[Product] = relationship(back_populates="buckets")


def init_db(bind=None) -> None:
    Base.metadata.create_all(bind or engine)


def _bucket_where(product_id: str, size: Optional[str], color: Optional[str]):
    return (
        StockBucket.product_id == product_id,
        StockBucket.size == (size or ""),
        StockBucket.color == (color or ""),
    )


def product_dict(p: Product) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "price_cents": p.price_cents,
        "sale_price_cents": p.sale_price_cents,
        "image": p.image or None,
        "is_active": p.is_active,
        "variant_layout": p.variant_layout,
        "buckets": [
            {"size": b.size or None, "color": b.color or None, "quantity": b.quantity}
            for b in p.buckets
        ],
    }


class CatalogRepo:
    """Repository class for catalog reads and stock changes.

    Args:
        bind: Engine to use; defaults to the module engine.
    """

    def __init__(self, bind=None):
        self.bind = bind or engine

    @contextmanager
    def session(self):
        with Session(self.bind) as s:
            yield s

    def get_product(self, product_id: str) -> Optional[dict]:
        with self.session() as s:
            p = s.get(Product, product_id)
            return product_dict(p) if p else None

    def bucket_quantity(self, product_id: str, size: Optional[str], color: Optional[str]) -> Optional[int]:
        with self.session() as s:
            return s.scalar(select(StockBucket.quantity).where(*_bucket_where(product_id, size, color)))

    def decrement(self, product_id: str, size: Optional[str], color: Optional[str],
                  quantity: int) -> tuple[bool, int]:
        """Guarded decrement: ``UPDATE ... SET quantity = quantity - n WHERE quantity >= n``.

        Returns:
            tuple[bool, int]: Whether the decrement was applied, and the
            bucket level afterwards (the untouched level when it was not).

        Raises:
            LookupError: The bucket does not exist.
        """
        with self.session() as s:
            res = s.execute(
                update(StockBucket)
                .where(*_bucket_where(product_id, size, color), StockBucket.quantity >= quantity)
                .values(quantity=StockBucket.quantity - quantity)
            )
            s.commit()
            applied = res.rowcount == 1
        current = self.bucket_quantity(product_id, size, color)
        if current is None:
            raise LookupError(product_id)
        return applied, current

    def increment(self, product_id: str, size: Optional[str], color: Optional[str], quantity: int) -> int:
        """Add units to a bucket and return its new level.

        Raises:
            LookupError: The bucket does not exist.
        """
        with self.session() as s:
            res = s.execute(
                update(StockBucket)
                .where(*_bucket_where(product_id, size, color))
                .values(quantity=StockBucket.quantity + quantity)
            )
            s.commit()
            if res.rowcount != 1:
                raise LookupError(product_id)
        return self.bucket_quantity(product_id, size, color)

    def upsert_product(self, product_id: str, data: dict) -> dict:
        """Create or replace a product and set the quantity of each listed bucket.

        Buckets not listed are removed; listed ones keep their row (and
        therefore their identity) when they already exist.
        """
        with self.session() as s:
            p = s.get(Product, product_id) or Product(id=product_id)
            for attr in ("name", "price_cents", "sale_price_cents", "is_active", "variant_layout"):
                setattr(p, attr, data[attr])
            p.image = data.get("image") or ""

            existing = {(b.size, b.color): b for b in p.buckets}
            keep = []
            for pos, item in enumerate(data["buckets"]):
                key = (item.get("size") or "", item.get("color") or "")
                bucket = existing.get(key) or StockBucket(size=key[0], color=key[1])
                bucket.quantity = item["quantity"]
                bucket.sort_order = pos
                keep.append(bucket)
            p.buckets = keep
            s.add(p)
            s.commit()
            s.refresh(p)
            return product_dict(p)

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from .models import Product, utcnow

class ProductRepository:

    @staticmethod
    async def create_product(db: AsyncSession, product: Product):
        db.add(product)
        await db.commit()
        await db.refresh(product)
        return product

    @staticmethod
    async def get_product_by_id(db: AsyncSession, product_id: int):
        result = await db.execute(select(Product).where(Product.id == product_id))
        return result.scalars().first()

    @staticmethod
    async def get_products_by_ids(db: AsyncSession, product_ids):
        result = await db.execute(select(Product).where(Product.id.in_(product_ids)))
        return {p.id: p for p in result.scalars().all()}

    @staticmethod
    async def reserve_stock(db: AsyncSession, product_id: int, quantity: int) -> bool:
        """Atomic conditional decrement. False when the row has fewer than `quantity` units left.

        Does not commit: the caller owns the transaction.
        """
        result = await db.execute(
            update(Product)
            .where(Product.id == product_id, Product.quantity_available >= quantity)
            .values(
                quantity_available=Product.quantity_available - quantity,
                updated_at=utcnow(),
            )
            .returning(Product.id)
        )
        return result.first() is not None

    @staticmethod
    async def restore_stock(db: AsyncSession, product_id: int, quantity: int) -> bool:
        """Atomic increment. Does not commit."""
        result = await db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(
                quantity_available=Product.quantity_available + quantity,
                updated_at=utcnow(),
            )
            .returning(Product.id)
        )
        return result.first() is not None

from sqlalchemy.ext.asyncio import AsyncSession
from .models import Product
from .repository import ProductRepository
from .schemas import ProductCreate

class ProductService:

    @staticmethod
    async def create_product(db: AsyncSession, data: ProductCreate):
        product = Product(
            name=data.name,
            category=data.category,
            unit_of_measure=data.unit_of_measure,
            price_per_unit=data.price_per_unit,
            quantity_available=data.quantity_available,
            status=data.status,
        )
        return await ProductRepository.create_product(db, product)

    @staticmethod
    async def get_product_by_id(db: AsyncSession, product_id: int):
        return await ProductRepository.get_product_by_id(db, product_id)

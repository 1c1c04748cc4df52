from sqlalchemy import Column, Integer, String, Float, Text
from shared.config.database import Base

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    image = Column(String, nullable=True) # public URL shown on the gateway's checkout page
    price = Column(Float, nullable=False) # live price; orders copy it at checkout
    stock = Column(Integer, nullable=False, default=0)

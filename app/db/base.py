from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All pharmacy tables (medicines, orders, invoices, revenue) inherit from this."""
    pass

from sqlmodel import Field, SQLModel


class Plan(SQLModel, table=True):
    __tablename__ = "plans"
    id: str = Field(primary_key=True)  # trial | monthly | quarterly | annual
    name: str
    price: float = 0.0
    currency: str = "BRL"
    duration_type: str = "months"  # days | months | years
    duration_value: int = 1
    analysis_limit: int = 0
    is_popular: bool = False
    is_active: bool = True

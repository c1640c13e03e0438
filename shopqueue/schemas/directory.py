from typing import List, Literal

from pydantic import BaseModel, Field

ProviderStatus = Literal["active", "busy", "rest"]


class Provider(BaseModel):
    id: int
    name: str
    title: str = ""
    status: ProviderStatus = "active"
    rating: float = 5.0
    schedule: List[int] = Field(
        default_factory=list,
        description="Working weekdays, 0=Monday. Empty means every day.",
    )

    def works_on(self, weekday: int) -> bool:
        return not self.schedule or weekday in self.schedule


class Service(BaseModel):
    id: int
    name: str
    price: float
    duration_minutes: int = 45


class DirectoryResponse(BaseModel):
    providers: List[Provider]
    services: List[Service]

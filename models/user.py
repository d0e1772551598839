# models/user.py
from typing import Literal

from pydantic import EmailStr, Field, field_validator

from models.common import Schema

UserRole = Literal["project_owner", "service_provider", "admin"]

Skill = Literal[
    "electrical", "plumbing", "carpentry", "masonry", "painting", "roofing",
    "landscaping", "general_contractor", "architect", "engineer", "supplier",
]


class UserLocation(Schema):
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    lat: float | None = None
    lng: float | None = None


class Company(Schema):
    name: str | None = None
    website: str | None = None
    description: str | None = None


class ServiceProviderProfile(Schema):
    skills: list[Skill] = []
    experience_years: int | None = Field(None, ge=0)
    experience_description: str | None = None
    hourly_rate: float | None = Field(None, ge=0)

    @field_validator("skills", mode="before")
    @classmethod
    def parse_skills(cls, value):
        # 表單只勾一個技能時會是單一字串
        if value is None or value == "":
            return []
        if isinstance(value, str):
            return [s.strip() for s in value.split(",") if s.strip()]
        return value


class UserCreate(Schema):
    email: EmailStr
    password: str = Field(min_length=6)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=1, max_length=50)
    # 自行註冊不能選 admin
    role: Literal["project_owner", "service_provider"]
    location: UserLocation | None = None
    company: Company | None = None
    service_provider: ServiceProviderProfile | None = None


class UserUpdate(Schema):
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    phone: str | None = Field(None, min_length=1, max_length=50)
    location: UserLocation | None = None
    company: Company | None = None
    service_provider: ServiceProviderProfile | None = None

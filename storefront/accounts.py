"""
Account profile.

A profile is the user's own contact fields plus their default address.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Address, User
from .schemas import CamelModel


class AddressFields(CamelModel):
    address_line1: str = ""
    address_line2: Optional[str] = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = "UK"


class ProfileResponse(CamelModel):
    name: Optional[str] = None
    nickname: Optional[str] = None
    email: str
    phone: Optional[str] = None
    location: Optional[str] = None
    preferences: Optional[str] = None
    favorite_styles: Optional[str] = None
    address: AddressFields


class ProfileUpdate(CamelModel):
    """Schema for updating a profile. Empty strings clear a field."""

    name: Optional[str] = None
    nickname: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    preferences: Optional[str] = None
    favorite_styles: Optional[str] = None
    address: Optional[AddressFields] = None


async def get_default_address(db: AsyncSession, user_id: int) -> Optional[Address]:
    result = await db.execute(
        select(Address)
        .where(Address.user_id == user_id, Address.is_default.is_(True))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_profile(db: AsyncSession, user: User) -> ProfileResponse:
    address = await get_default_address(db, user.id)
    fields = AddressFields()
    if address is not None:
        fields = AddressFields(
            address_line1=address.address_line1,
            address_line2=address.address_line2,
            city=address.city,
            state=address.state,
            zip_code=address.zip_code,
            country=address.country,
        )
    return ProfileResponse(
        name=user.name,
        nickname=user.nickname,
        email=user.email,
        phone=user.phone,
        location=user.location,
        preferences=user.preferences,
        favorite_styles=user.favorite_styles,
        address=fields,
    )


async def update_profile(db: AsyncSession, user: User, body: ProfileUpdate) -> ProfileResponse:
    """Overwrite the contact fields and upsert the default address.

    The address is only touched when address_line1 is provided.
    """
    user.name = body.name or None
    user.nickname = body.nickname or None
    user.phone = body.phone or None
    user.location = body.location or None
    user.preferences = body.preferences or None
    user.favorite_styles = body.favorite_styles or None

    if body.address is not None and body.address.address_line1:
        values = {
            "full_name": user.name or "",
            "phone": user.phone or "",
            "address_line1": body.address.address_line1,
            "address_line2": body.address.address_line2 or None,
            "city": body.address.city,
            "state": body.address.state,
            "zip_code": body.address.zip_code,
            "country": body.address.country or "UK",
        }
        address = await get_default_address(db, user.id)
        if address is None:
            db.add(Address(user_id=user.id, is_default=True, **values))
        else:
            for key, value in values.items():
                setattr(address, key, value)

    await db.flush()
    return await get_profile(db, user)

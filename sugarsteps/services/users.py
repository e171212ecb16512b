"""Registration, profile settings and the active session user."""

from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import Future
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from .entities import Level, Role, User
from .preferences import PreferenceStore
from .repository import UserRepository


LOGGER = logging.getLogger(__name__)

PHONE_PATTERN = r"^05\d{8}$"
MIN_AGE = 14
MAX_AGE = 120


class ProfileForm(BaseModel):
    """Optional profile fields as typed on the settings screen."""

    level: Optional[str] = None
    gender: Optional[str] = None
    phone_number: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    age: int = 0

    @field_validator("level", "gender", "phone_number", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        parsed = Level.parse(value)
        if parsed is None:
            raise ValueError(f"unknown level {value!r}")
        return parsed.display

    @field_validator("age", mode="before")
    @classmethod
    def _blank_age(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return 0
        return value

    @field_validator("age")
    @classmethod
    def _age_range(cls, value: int) -> int:
        # 0 stands for "not set".
        if value != 0 and not MIN_AGE <= value <= MAX_AGE:
            raise ValueError(f"age must be between {MIN_AGE} and {MAX_AGE}")
        return value


def _first_error(error: PydanticValidationError) -> ValidationError:
    details = error.errors()[0]
    location = details.get("loc") or ("profile",)
    field = str(location[0])
    return ValidationError(f"Invalid {field}: {details.get('msg')}", field=field)


def validate_profile(**fields: object) -> ProfileForm:
    try:
        return ProfileForm(**fields)
    except PydanticValidationError as error:
        raise _first_error(error) from error


def register_user(
    repository: UserRepository,
    preferences: PreferenceStore,
    username: str,
    role: Optional[str],
    accepted_terms: bool,
    *,
    timeout: Optional[float] = None,
) -> User:
    """Create the user, wait for its id and remember it as the session user."""

    username = (username or "").strip()
    if not username:
        raise ValidationError("Username is required", field="username")
    if not accepted_terms:
        raise ValidationError("The terms of use must be accepted", field="terms")
    parsed_role = Role.parse(role)
    if parsed_role is None:
        raise ValidationError("Choose a role: student or guide", field="role")

    user = User(username=username, role=parsed_role.value)
    user_id = repository.insert_and_await_id(user, timeout=timeout)
    LOGGER.info("Registered %s '%s' with id=%s", parsed_role.value, username, user_id)
    preferences.remember_user(user_id)
    return dataclasses.replace(user, id=user_id)


def active_user(
    repository: UserRepository,
    preferences: PreferenceStore,
    *,
    timeout: Optional[float] = 5.0,
) -> Optional[User]:
    user_id = preferences.load().user_id
    if user_id is None:
        return None
    return repository.get(int(user_id)).result(timeout=timeout)


def update_profile(
    repository: UserRepository,
    user: User,
    *,
    level: Optional[str] = None,
    gender: Optional[str] = None,
    phone_number: Optional[str] = None,
    age: Optional[object] = None,
) -> Optional["Future[None]"]:
    """Validate the settings form and submit an update if anything changed.

    Arguments left as ``None`` keep the stored value; an empty string clears
    it.
    """

    form = validate_profile(
        level=user.level if level is None else level,
        gender=user.gender if gender is None else gender,
        phone_number=user.phone_number if phone_number is None else phone_number,
        age=user.age if age is None else age,
    )
    updated = dataclasses.replace(
        user,
        level=form.level,
        gender=form.gender,
        phone_number=form.phone_number,
        age=form.age,
    )
    if updated == user:
        LOGGER.debug("Profile of user id=%s unchanged", user.id)
        return None
    return repository.update(updated)


def change_role(repository: UserRepository, user: User, role: str) -> Optional["Future[None]"]:
    parsed = Role.parse(role)
    if parsed is None:
        raise ValidationError(f"Unknown role: {role!r}", field="role")
    if Role.parse(user.role) is parsed:
        return None
    LOGGER.info("User id=%s switching role %s -> %s", user.id, user.role, parsed.value)
    return repository.update(dataclasses.replace(user, role=parsed.value))


__all__ = [
    "MAX_AGE",
    "MIN_AGE",
    "PHONE_PATTERN",
    "ProfileForm",
    "active_user",
    "change_role",
    "register_user",
    "update_profile",
    "validate_profile",
]

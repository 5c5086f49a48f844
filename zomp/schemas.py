from typing import Any, TypeVar

from fastapi import Request
from pydantic import BaseModel, Field, ValidationError

from zomp.errors import bad_request

# Request bodies keep their fields optional so that a missing field is
# reported by the handler with the documented 400 message rather than a
# generic validation failure.

ModelT = TypeVar("ModelT", bound=BaseModel)

INVALID_BODY = "invalid request body"


async def read_body(request: Request, model: type[ModelT]) -> ModelT | None:
    """
    Parse the JSON body of *request* as *model*, or None when it is empty.

    Guarded handlers call this from their body instead of declaring the
    model as a parameter, so the guard chain dependency has already
    accepted the caller before any input is decoded.
    """
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return model.model_validate_json(raw)
    except ValidationError:
        raise bad_request(INVALID_BODY)


# --- Account ---

class RegisterRequest(BaseModel):
    email: str | None = None
    username: str | None = None
    password: str | None = None


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class AccountUpdate(BaseModel):
    username: str | None = Field(None, max_length=100)
    email: str | None = Field(None, max_length=255)
    bio: str | None = None
    old_password: str | None = None
    new_password: str | None = None


class EmailRequest(BaseModel):
    email: str | None = None


class TokenRequest(BaseModel):
    id: str | None = None
    token: str | None = None


class PasswordResetRequest(TokenRequest):
    password: str | None = None


class SubscriptionRequest(BaseModel):
    subscription: str | None = None


# --- Comic / Story ---

class ResourceFields(BaseModel):
    title: str | None = Field(None, max_length=300)
    description: str | None = None
    content: str | None = None
    tags: list[str] | None = None


class ComicUpdate(BaseModel):
    comic: ResourceFields | None = None


class StoryUpdate(BaseModel):
    story: ResourceFields | None = None


class RateRequest(BaseModel):
    # Validated by the rating aggregator, which owns the error message.
    rating: Any = None


class CommentRequest(BaseModel):
    comment: str | None = None

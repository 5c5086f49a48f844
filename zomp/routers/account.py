import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from zomp import mailer
from zomp.database import get_db
from zomp.dependencies import end_session, start_session
from zomp.errors import ApiError, bad_request
from zomp.guards import GuardChain, GuardContext, authenticated, member_chain
from zomp.schemas import (
    AccountUpdate,
    EmailRequest,
    LoginRequest,
    PasswordResetRequest,
    RegisterRequest,
    SubscriptionRequest,
    TokenRequest,
    read_body,
)
from zomp.services import account_service, subscription_service
from zomp.sessions import SessionStoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/account", tags=["account"])

logged_in = GuardChain(authenticated)
member = member_chain()


@router.get("")
async def get_account(ctx: GuardContext = Depends(logged_in)):
    return {"data": await account_service.get_account(ctx.db, ctx.principal)}


@router.post("/register")
async def register(
    response: Response,
    data: RegisterRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    user = await account_service.register(db, data or RegisterRequest())
    await mailer.send_verify_email(user)
    try:
        await start_session(response, user)
    except SessionStoreError as exc:
        logger.warning("Registered %s but could not start a session: %s", user.id, exc)
        return {"message": "Registered Successfully, Unable to Login."}
    return {"message": "Registered Successfully!"}


@router.post("/login")
async def login(
    response: Response,
    data: LoginRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    data = data or LoginRequest()
    user = await account_service.authenticate(db, data.email, data.password)
    try:
        await start_session(response, user)
    except SessionStoreError as exc:
        logger.error("Could not start a session for %s: %s", user.id, exc)
        raise ApiError(500, "unable to establish session")
    return {"message": f"logged in {user.id}"}


@router.post("/logout")
async def logout(request: Request, response: Response):
    await end_session(request, response)
    return {"message": "Logged Out!"}


@router.put("")
async def update_account(request: Request, ctx: GuardContext = Depends(logged_in)):
    data = await read_body(request, AccountUpdate)
    if data is None:
        raise bad_request("Missing arguments")
    return {"data": await account_service.update_account(ctx.db, ctx.principal, data)}


@router.delete("")
async def delete_account(
    request: Request,
    response: Response,
    ctx: GuardContext = Depends(logged_in),
):
    await account_service.delete_account(ctx.db, ctx.principal)
    await end_session(request, response)
    return {"message": "Deleted Account"}


@router.post("/subscribe")
async def subscribe(request: Request, ctx: GuardContext = Depends(member)):
    data = await read_body(request, SubscriptionRequest)
    target = data.subscription if data else None
    await subscription_service.subscribe(ctx.db, ctx.principal, target)
    return {"message": "subscribed successfully"}


@router.post("/unsubscribe")
async def unsubscribe(request: Request, ctx: GuardContext = Depends(member)):
    data = await read_body(request, SubscriptionRequest)
    target = data.subscription if data else None
    await subscription_service.unsubscribe(ctx.db, ctx.principal, target)
    return {"message": "unsubscribed successfully"}


@router.post("/send-verify")
async def send_verify(data: EmailRequest | None = None, db: AsyncSession = Depends(get_db)):
    if data is None or not data.email:
        raise bad_request("Missing email")
    user = await account_service.find_by_email(db, data.email)
    # Same answer whether or not the address is registered.
    if user is not None and not user.verified:
        await mailer.send_verify_email(user)
    return {"message": "OK"}


@router.post("/verify")
async def verify(data: TokenRequest | None = None, db: AsyncSession = Depends(get_db)):
    await account_service.verify_email(db, data or TokenRequest())
    return {"message": "OK"}


@router.post("/forgot-password")
async def forgot_password(data: EmailRequest | None = None, db: AsyncSession = Depends(get_db)):
    if data is None or not data.email:
        raise bad_request("Missing email")
    user = await account_service.find_by_email(db, data.email)
    if user is None:
        raise bad_request("No user with specified email")
    await mailer.send_forgot_password_email(user)
    return {"message": "OK"}


@router.post("/reset-password-verify")
async def reset_password_verify(data: TokenRequest | None = None, db: AsyncSession = Depends(get_db)):
    await account_service.check_token(db, data or TokenRequest())
    return {"message": "OK"}


@router.post("/reset-password")
async def reset_password(
    data: PasswordResetRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    await account_service.reset_password(db, data or PasswordResetRequest())
    return {"message": "OK"}


@router.get("/{user_id}")
async def get_user(user_id: str, db: AsyncSession = Depends(get_db)):
    return {"data": await account_service.get_profile(db, user_id)}

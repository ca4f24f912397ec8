"""Auth router for account signup and login.

Endpoints:
    POST /api/signup - Create an account
    POST /api/login  - Verify credentials

Login only verifies the identity; the client then opens the chat WebSocket
and registers with the returned username.
"""
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from .schemas import LoginRequest, SignupRequest
from .service import AccountValidationError, UsernameTakenError, get_account_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])


@router.post("/signup")
async def signup(request: SignupRequest) -> JSONResponse:
    """Create a new account.

    Returns:
        201 on success, 400 with an error message if the username is taken
        or a field is invalid.
    """
    try:
        get_account_service().create_account(request)
    except UsernameTakenError:
        return JSONResponse({"error": "Username already exists"}, status_code=400)
    except AccountValidationError as e:
        return JSONResponse({"error": ", ".join(e.errors)}, status_code=400)

    return JSONResponse({"message": "User created successfully"}, status_code=201)


@router.post("/login")
async def login(request: LoginRequest) -> JSONResponse:
    """Verify a username/password pair.

    Returns:
        200 with the username and first name, or 401 if rejected.
    """
    user = get_account_service().verify_credentials(request.username, request.password)
    if user is None:
        logger.info(f"Rejected login for {request.username!r}")
        return JSONResponse({"error": "Invalid username or password"}, status_code=401)

    return JSONResponse({
        "message": "Login successful",
        "username": user.username,
        "firstname": user.firstname,
    })

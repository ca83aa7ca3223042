from fastapi import APIRouter, Depends, Query, Request, status

from app.core.dependencies import get_auth_service, get_current_identity, get_device_info
from app.models import OTPPurpose
from app.schemas import (
    AuthResponse,
    LoginRequest,
    LogoutAllResponse,
    OTPRequest,
    OTPRequestResponse,
    OTPStatusResponse,
    OTPVerifyRequest,
    OTPVerifyResponse,
    RefreshRequest,
    SignupRequest,
    TokenResponse,
    UserRead,
)
from app.services.auth_service import AuthenticatedIdentity, AuthResult, AuthService
from app.services.session_service import DeviceInfo
from app.stores import IdentityProfile

router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        user=UserRead.model_validate(result.user),
        tokens=TokenResponse(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_in=result.expires_in,
        ),
        session_id=result.session_id,
        session_expires_at=result.session_expires_at,
    )


@router.post("/request-otp", response_model=OTPRequestResponse)
def request_otp(
    payload: OTPRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
) -> OTPRequestResponse:
    result = service.request_code(
        contact=payload.contact,
        purpose=payload.purpose,
        ip=getattr(request.state, "ip", None),
        user_agent=getattr(request.state, "user_agent", None),
    )
    return OTPRequestResponse(
        contact=result.contact,
        purpose=result.purpose,
        expires_in=result.expires_in,
        retry_at=result.retry_at,
    )


@router.post("/resend-otp", response_model=OTPRequestResponse)
def resend_otp(
    payload: OTPRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
) -> OTPRequestResponse:
    result = service.resend_code(
        contact=payload.contact,
        purpose=payload.purpose,
        ip=getattr(request.state, "ip", None),
        user_agent=getattr(request.state, "user_agent", None),
    )
    return OTPRequestResponse(
        contact=result.contact,
        purpose=result.purpose,
        expires_in=result.expires_in,
        retry_at=result.retry_at,
    )


@router.post("/verify-otp", response_model=OTPVerifyResponse)
def verify_otp(payload: OTPVerifyRequest, service: AuthService = Depends(get_auth_service)) -> OTPVerifyResponse:
    verification = service.verify_code(contact=payload.contact, code=payload.code, purpose=payload.purpose)
    return OTPVerifyResponse(valid=verification.valid)


@router.get("/otp-status", response_model=OTPStatusResponse)
def otp_status(
    contact: str = Query(..., min_length=3, max_length=320),
    purpose: OTPPurpose = Query(default=OTPPurpose.LOGIN),
    service: AuthService = Depends(get_auth_service),
) -> OTPStatusResponse:
    status_ = service.code_status(contact=contact, purpose=purpose)
    return OTPStatusResponse(
        exists=status_.exists,
        expires_in=status_.expires_in,
        attempts_left=status_.attempts_left,
    )


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def signup(
    payload: SignupRequest,
    device: DeviceInfo = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    result = service.signup(
        contact=payload.contact,
        code=payload.code,
        profile=IdentityProfile(
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
        ),
        device=device,
    )
    return _auth_response(result)


@router.post("/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    device: DeviceInfo = Depends(get_device_info),
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    return _auth_response(service.login(contact=payload.contact, code=payload.code, device=device))


@router.post("/refresh", response_model=TokenResponse)
def refresh_tokens(payload: RefreshRequest, service: AuthService = Depends(get_auth_service)) -> TokenResponse:
    tokens = service.refresh_token(payload.refresh_token)
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.access_expires_in,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    service: AuthService = Depends(get_auth_service),
) -> None:
    service.logout(identity.session.session_id)


@router.post("/logout-all", response_model=LogoutAllResponse)
def logout_all(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    service: AuthService = Depends(get_auth_service),
) -> LogoutAllResponse:
    return LogoutAllResponse(count=service.logout_all(identity.user.id))


@router.get("/me", response_model=UserRead)
def read_profile(identity: AuthenticatedIdentity = Depends(get_current_identity)) -> UserRead:
    return UserRead.model_validate(identity.user)

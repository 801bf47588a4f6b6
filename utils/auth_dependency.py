from dataclasses import dataclass
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from utils.security import decode_access_token
import enum

security = HTTPBearer()


class Role(str, enum.Enum):
    EMPLOYEE = "employee"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: Role
    customer_id: Optional[int] = None
    customer_number: Optional[str] = None

    @property
    def is_employee(self) -> bool:
        return self.role == Role.EMPLOYEE


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def principal_from_claims(payload: dict) -> Principal:
    try:
        role = Role(payload.get("role"))
        user_id = int(payload.get("user_id"))
    except (TypeError, ValueError):
        raise _unauthorized()

    customer_id = payload.get("customer_id")
    customer_number = payload.get("customer_number")
    if role == Role.CUSTOMER and customer_id is None:
        raise _unauthorized("Customer token without customer reference")

    return Principal(
        user_id=user_id,
        role=role,
        customer_id=int(customer_id) if customer_id is not None else None,
        customer_number=str(customer_number) if customer_number is not None else None,
    )


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized()
    return principal_from_claims(payload)


async def get_current_employee(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != Role.EMPLOYEE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Employee access required"
        )
    return principal


async def get_current_customer(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != Role.CUSTOMER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Customer access required"
        )
    return principal


optional_security = HTTPBearer(auto_error=False)


async def get_principal_from_header_or_query(
    token: Optional[str] = None,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> Principal:
    """Bearer header, or a ?token= parameter for links opened directly in the browser"""
    raw_token = credentials.credentials if credentials else token
    if not raw_token:
        raise _unauthorized("Token required")
    payload = decode_access_token(raw_token)
    if payload is None:
        raise _unauthorized()
    return principal_from_claims(payload)

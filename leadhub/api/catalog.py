"""Product catalog and user administration endpoints."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from leadhub.api.deps import admin_actor, crm_service, current_actor
from leadhub.auth import Actor
from leadhub.crm.service import CRMService
from leadhub.storage.models import (
    Product,
    ProductCreate,
    ProductUpdate,
    User,
    UserCreate,
    UserUpdate,
)

products_router = APIRouter(prefix="/api/products", tags=["Products"])
users_router = APIRouter(
    prefix="/api/users",
    tags=["Users"],
    dependencies=[Depends(admin_actor)],
)


class ReorderRequest(BaseModel):
    """New catalog order; position in the list becomes the display order."""

    product_ids: list[int] = Field(..., min_length=1)


# ============================================================================
# Products
# ============================================================================


@products_router.get("", response_model=list[Product])
async def list_products(
    active_only: bool = False,
    actor: Actor = Depends(current_actor),  # noqa: ARG001
    service: CRMService = Depends(crm_service),
) -> list[Product]:
    return await service.list_products(active_only=active_only)


@products_router.post("", response_model=Product, status_code=201)
async def create_product(
    request: ProductCreate,
    actor: Actor = Depends(admin_actor),
    service: CRMService = Depends(crm_service),
) -> Product:
    return await service.create_product(request, actor)


# Declared before /{product_id} so "reorder" is not taken for an id
@products_router.post("/reorder", response_model=list[Product])
async def reorder_products(
    request: ReorderRequest,
    actor: Actor = Depends(admin_actor),
    service: CRMService = Depends(crm_service),
) -> list[Product]:
    """Reorder the catalog (``product.updated`` per moved product)."""
    return await service.reorder_products(request.product_ids, actor)


@products_router.get(
    "/{product_id}",
    response_model=Product,
    responses={404: {"description": "Product not found"}},
)
async def get_product(
    product_id: int,
    actor: Actor = Depends(current_actor),  # noqa: ARG001
    service: CRMService = Depends(crm_service),
) -> Product:
    return await service.get_product(product_id)


@products_router.put(
    "/{product_id}",
    response_model=Product,
    responses={404: {"description": "Product not found"}},
)
async def update_product(
    product_id: int,
    request: ProductUpdate,
    actor: Actor = Depends(admin_actor),
    service: CRMService = Depends(crm_service),
) -> Product:
    return await service.update_product(product_id, request, actor)


@products_router.delete(
    "/{product_id}",
    status_code=204,
    responses={404: {"description": "Product not found"}},
)
async def delete_product(
    product_id: int,
    actor: Actor = Depends(admin_actor),
    service: CRMService = Depends(crm_service),
) -> None:
    await service.delete_product(product_id, actor)


# ============================================================================
# Users
# ============================================================================


@users_router.get("", response_model=list[User])
async def list_users(service: CRMService = Depends(crm_service)) -> list[User]:
    return await service.list_users()


@users_router.post("", response_model=User, status_code=201)
async def create_user(
    request: UserCreate,
    actor: Actor = Depends(admin_actor),
    service: CRMService = Depends(crm_service),
) -> User:
    return await service.create_user(request, actor)


@users_router.get(
    "/{user_id}",
    response_model=User,
    responses={404: {"description": "User not found"}},
)
async def get_user(user_id: int, service: CRMService = Depends(crm_service)) -> User:
    return await service.get_user(user_id)


@users_router.put(
    "/{user_id}",
    response_model=User,
    responses={404: {"description": "User not found"}},
)
async def update_user(
    user_id: int,
    request: UserUpdate,
    actor: Actor = Depends(admin_actor),
    service: CRMService = Depends(crm_service),
) -> User:
    return await service.update_user(user_id, request, actor)

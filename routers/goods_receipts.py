from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ValidationError as PydanticValidationError
from typing import List, Optional
from datetime import date, datetime
from models.customer import Customer
from models.goods_receipt import GoodsReceipt, ReceiptStatus
from models.receipt_photo import ReceiptPhoto
from services.file_storage import LocalFileStorage
from services.goods_receipt_service import GoodsReceiptData, GoodsReceiptService, ReceiptFilters
from services.image_pipeline import UploadedImage
from utils.auth_dependency import Principal, get_current_employee, get_current_principal
from utils.dependencies import client_ip, get_goods_receipt_service, get_storage
from utils.errors import ValidationError

router = APIRouter(prefix="/api/goods-receipts", tags=["Goods Receipts"])


class GoodsReceiptResponse(BaseModel):
    id: int
    receipt_date: date
    receipt_time: str
    customer_id: int
    customer_number: Optional[str] = None
    company_name: Optional[str] = None
    carrier_name: str
    package_kind: str
    package_count: int
    condition: str
    pallet_exchange: bool
    supplier_order_ref: Optional[str] = None
    note: Optional[str] = None
    main_photo_url: Optional[str] = None
    status: str
    created_by_user_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReceiptPhotoResponse(BaseModel):
    id: int
    receipt_id: int
    file_url: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    is_main_photo: bool
    sort_order: int
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class CreateReceiptResponse(BaseModel):
    id: int
    main_photo_url: Optional[str] = None
    photo_count: int
    message: str


class StatusUpdate(BaseModel):
    status: ReceiptStatus


class ReceiptStats(BaseModel):
    total_deliveries: int
    deliveries_today: int
    received: int
    in_storage: int
    stored: int
    total_packages: int


def receipt_response(receipt: GoodsReceipt, customer: Optional[Customer], storage: LocalFileStorage) -> GoodsReceiptResponse:
    return GoodsReceiptResponse(
        id=receipt.id,
        receipt_date=receipt.receipt_date,
        receipt_time=receipt.receipt_time.strftime("%H:%M"),
        customer_id=receipt.customer_id,
        customer_number=customer.customer_number if customer else None,
        company_name=customer.company_name if customer else None,
        carrier_name=receipt.carrier_name,
        package_kind=receipt.package_kind.value,
        package_count=receipt.package_count,
        condition=receipt.condition.value,
        pallet_exchange=receipt.pallet_exchange,
        supplier_order_ref=receipt.supplier_order_ref,
        note=receipt.note,
        main_photo_url=storage.url(receipt.main_photo_path),
        status=receipt.status.value,
        created_by_user_id=receipt.created_by_user_id,
        created_at=receipt.created_at,
        updated_at=receipt.updated_at,
    )


def photo_response(photo: ReceiptPhoto, storage: LocalFileStorage) -> ReceiptPhotoResponse:
    return ReceiptPhotoResponse(
        id=photo.id,
        receipt_id=photo.receipt_id,
        file_url=storage.url(photo.file_path),
        file_name=photo.file_name,
        file_size=photo.file_size,
        is_main_photo=photo.is_main_photo,
        sort_order=photo.sort_order,
        description=photo.description,
        created_at=photo.created_at,
    )


def parse_receipt_form(**fields) -> GoodsReceiptData:
    """Empty form fields count as absent"""
    values = {key: value for key, value in fields.items() if value not in (None, "")}
    try:
        return GoodsReceiptData(**values)
    except PydanticValidationError as e:
        details = [
            {"field": ".".join(str(part) for part in error["loc"]), "error": error["msg"]}
            for error in e.errors()
        ]
        raise ValidationError("Invalid goods receipt data", details=details)


async def read_upload(upload: Optional[UploadFile]) -> Optional[UploadedImage]:
    # Browsers send an empty part when no file was chosen
    if upload is None or not upload.filename:
        return None
    content = await upload.read()
    return UploadedImage(filename=upload.filename, content=content, content_type=upload.content_type)


async def read_uploads(uploads: Optional[List[UploadFile]]) -> List[UploadedImage]:
    images = []
    for upload in uploads or []:
        image = await read_upload(upload)
        if image is not None:
            images.append(image)
    return images


@router.get("", response_model=List[GoodsReceiptResponse])
def list_goods_receipts(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status: Optional[ReceiptStatus] = None,
    customer_id: Optional[int] = None,
    principal: Principal = Depends(get_current_principal),
    service: GoodsReceiptService = Depends(get_goods_receipt_service),
    storage: LocalFileStorage = Depends(get_storage),
):
    filters = ReceiptFilters(date_from=date_from, date_to=date_to, status=status, customer_id=customer_id)
    rows = service.list_receipts(principal, filters)
    return [receipt_response(receipt, customer, storage) for receipt, customer in rows]


@router.get("/stats", response_model=ReceiptStats)
def goods_receipt_stats(
    principal: Principal = Depends(get_current_employee),
    service: GoodsReceiptService = Depends(get_goods_receipt_service),
):
    return service.stats()


@router.delete("/photos/{photo_id}")
def delete_receipt_photo(
    photo_id: int,
    request: Request,
    principal: Principal = Depends(get_current_employee),
    service: GoodsReceiptService = Depends(get_goods_receipt_service),
):
    service.delete_photo(photo_id, principal.user_id, ip_address=client_ip(request))
    return {"message": "Photo deleted"}


@router.patch("/photos/{photo_id}/main", response_model=ReceiptPhotoResponse)
def set_main_receipt_photo(
    photo_id: int,
    request: Request,
    principal: Principal = Depends(get_current_employee),
    service: GoodsReceiptService = Depends(get_goods_receipt_service),
    storage: LocalFileStorage = Depends(get_storage),
):
    photo = service.set_main_photo(photo_id, principal.user_id, ip_address=client_ip(request))
    return photo_response(photo, storage)


@router.get("/{receipt_id}", response_model=GoodsReceiptResponse)
def get_goods_receipt(
    receipt_id: int,
    principal: Principal = Depends(get_current_principal),
    service: GoodsReceiptService = Depends(get_goods_receipt_service),
    storage: LocalFileStorage = Depends(get_storage),
):
    receipt, customer = service.get_for_principal(receipt_id, principal)
    return receipt_response(receipt, customer, storage)


@router.post("", response_model=CreateReceiptResponse, status_code=status.HTTP_201_CREATED)
async def create_goods_receipt(
    request: Request,
    customer_id: str = Form(...),
    carrier_name: str = Form(...),
    package_kind: str = Form(...),
    package_count: str = Form(...),
    receipt_date: Optional[str] = Form(None),
    receipt_time: Optional[str] = Form(None),
    condition: Optional[str] = Form(None),
    pallet_exchange: Optional[str] = Form(None),
    supplier_order_ref: Optional[str] = Form(None),
    note: Optional[str] = Form(None),
    main_photo: Optional[UploadFile] = File(None),
    additional_photos: Optional[List[UploadFile]] = File(None),
    principal: Principal = Depends(get_current_employee),
    service: GoodsReceiptService = Depends(get_goods_receipt_service),
    storage: LocalFileStorage = Depends(get_storage),
):
    data = parse_receipt_form(
        customer_id=customer_id, carrier_name=carrier_name, package_kind=package_kind,
        package_count=package_count, receipt_date=receipt_date, receipt_time=receipt_time,
        condition=condition, pallet_exchange=pallet_exchange,
        supplier_order_ref=supplier_order_ref, note=note,
    )
    main_image = await read_upload(main_photo)
    additional_images = await read_uploads(additional_photos)

    result = await run_in_threadpool(
        service.create, data, principal.user_id, main_image, additional_images, client_ip(request)
    )
    return CreateReceiptResponse(
        id=result.receipt_id,
        main_photo_url=storage.url(result.main_photo_path),
        photo_count=result.photo_count,
        message="Goods receipt created",
    )


@router.put("/{receipt_id}", response_model=GoodsReceiptResponse)
async def update_goods_receipt(
    receipt_id: int,
    request: Request,
    customer_id: str = Form(...),
    carrier_name: str = Form(...),
    package_kind: str = Form(...),
    package_count: str = Form(...),
    receipt_date: Optional[str] = Form(None),
    receipt_time: Optional[str] = Form(None),
    condition: Optional[str] = Form(None),
    pallet_exchange: Optional[str] = Form(None),
    supplier_order_ref: Optional[str] = Form(None),
    note: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    main_photo: Optional[UploadFile] = File(None),
    principal: Principal = Depends(get_current_employee),
    service: GoodsReceiptService = Depends(get_goods_receipt_service),
    storage: LocalFileStorage = Depends(get_storage),
):
    data = parse_receipt_form(
        customer_id=customer_id, carrier_name=carrier_name, package_kind=package_kind,
        package_count=package_count, receipt_date=receipt_date, receipt_time=receipt_time,
        condition=condition, pallet_exchange=pallet_exchange,
        supplier_order_ref=supplier_order_ref, note=note, status=status,
    )
    main_image = await read_upload(main_photo)

    await run_in_threadpool(
        service.update, receipt_id, data, principal.user_id, main_image, client_ip(request)
    )
    receipt, customer = await run_in_threadpool(service.get_for_principal, receipt_id, principal)
    return receipt_response(receipt, customer, storage)


@router.patch("/{receipt_id}/status", response_model=GoodsReceiptResponse)
def update_goods_receipt_status(
    receipt_id: int,
    body: StatusUpdate,
    request: Request,
    principal: Principal = Depends(get_current_employee),
    service: GoodsReceiptService = Depends(get_goods_receipt_service),
    storage: LocalFileStorage = Depends(get_storage),
):
    service.update_status(receipt_id, body.status, principal.user_id, ip_address=client_ip(request))
    receipt, customer = service.get_for_principal(receipt_id, principal)
    return receipt_response(receipt, customer, storage)


@router.delete("/{receipt_id}")
def delete_goods_receipt(
    receipt_id: int,
    request: Request,
    principal: Principal = Depends(get_current_employee),
    service: GoodsReceiptService = Depends(get_goods_receipt_service),
):
    service.delete(receipt_id, principal.user_id, ip_address=client_ip(request))
    return {"message": "Goods receipt deleted"}


@router.get("/{receipt_id}/photos", response_model=List[ReceiptPhotoResponse])
def list_receipt_photos(
    receipt_id: int,
    principal: Principal = Depends(get_current_principal),
    service: GoodsReceiptService = Depends(get_goods_receipt_service),
    storage: LocalFileStorage = Depends(get_storage),
):
    return [photo_response(photo, storage) for photo in service.list_photos(receipt_id, principal)]


@router.post("/{receipt_id}/photos", response_model=List[ReceiptPhotoResponse], status_code=status.HTTP_201_CREATED)
async def upload_receipt_photos(
    receipt_id: int,
    request: Request,
    photos: List[UploadFile] = File(...),
    description: Optional[str] = Form(None),
    is_main_photo: bool = Form(False),
    principal: Principal = Depends(get_current_employee),
    service: GoodsReceiptService = Depends(get_goods_receipt_service),
    storage: LocalFileStorage = Depends(get_storage),
):
    images = await read_uploads(photos)
    saved = await run_in_threadpool(
        service.add_photos, receipt_id, images, principal.user_id, description, is_main_photo, client_ip(request)
    )
    return [photo_response(photo, storage) for photo in saved]

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from pydantic import BaseModel, Field, validator
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Dict, List, Optional, Sequence, Tuple
from config import settings
from models.customer import Customer
from models.goods_receipt import GoodsReceipt, PackageKind, ReceiptCondition, ReceiptStatus
from models.receipt_photo import ReceiptPhoto
from services.customer_scope import fulfillment_label_clause, is_fulfillment_customer
from services.document_service import DocumentService
from services.file_storage import LocalFileStorage
from services.image_pipeline import ImagePipeline, StoredImage, UploadedImage
from services.table_capability import TableCapability
from utils.auth_dependency import Principal
from utils.dates import add_months
from utils.errors import Conflict, CreateFailed, Forbidden, NotFound, StorageInconsistency, ValidationError
from utils.logger import DatabaseLogger
import logging

logger = logging.getLogger(__name__)

# The main photo lives on the receipt row and implicitly takes position 1
FIRST_ADDITIONAL_SORT_ORDER = 2


class GoodsReceiptData(BaseModel):
    receipt_date: Optional[date] = None
    receipt_time: Optional[time] = None
    customer_id: int
    carrier_name: str = Field(..., max_length=100)
    package_kind: PackageKind
    package_count: int = Field(..., ge=1)
    condition: ReceiptCondition = ReceiptCondition.OK
    pallet_exchange: bool = False
    supplier_order_ref: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = None
    status: Optional[ReceiptStatus] = None

    @validator('carrier_name')
    def validate_carrier_name(cls, v):
        v = ' '.join(v.split())
        if not v:
            raise ValueError('Carrier is required')
        return v

    @validator('receipt_time')
    def truncate_time(cls, v):
        # Receipts are recorded to the minute
        if v is not None:
            return v.replace(second=0, microsecond=0, tzinfo=None)
        return v

    @validator('supplier_order_ref', 'note')
    def blank_to_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v.strip() if v is not None else v


@dataclass
class ReceiptFilters:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    status: Optional[ReceiptStatus] = None
    customer_id: Optional[int] = None


@dataclass
class CreateResult:
    receipt_id: int
    main_photo_path: Optional[str]
    photo_count: int


class GoodsReceiptService:
    """Owns goods receipts and their photo sets on disk and in the database"""

    def __init__(
        self,
        db: Session,
        storage: LocalFileStorage,
        pipeline: ImagePipeline,
        photo_capability: TableCapability,
        documents: Optional[DocumentService] = None,
    ):
        self.db = db
        self.storage = storage
        self.pipeline = pipeline
        self.photo_capability = photo_capability
        self.documents = documents

    # ----- queries -----

    def get_receipt(self, receipt_id: int) -> GoodsReceipt:
        receipt = self.db.query(GoodsReceipt).filter(GoodsReceipt.id == receipt_id).first()
        if not receipt:
            raise NotFound("Goods receipt not found")
        return receipt

    def get_for_principal(self, receipt_id: int, principal: Principal) -> Tuple[GoodsReceipt, Optional[Customer]]:
        row = (
            self.db.query(GoodsReceipt, Customer)
            .outerjoin(Customer, Customer.id == GoodsReceipt.customer_id)
            .filter(GoodsReceipt.id == receipt_id)
            .first()
        )
        if not row:
            raise NotFound("Goods receipt not found")
        receipt, customer = row
        self._assert_can_view(principal, receipt, customer)
        return receipt, customer

    def list_receipts(self, principal: Principal, filters: ReceiptFilters) -> List[Tuple[GoodsReceipt, Optional[Customer]]]:
        query = self.db.query(GoodsReceipt, Customer).outerjoin(Customer, Customer.id == GoodsReceipt.customer_id)

        if principal.is_employee:
            if filters.customer_id is not None:
                query = query.filter(GoodsReceipt.customer_id == filters.customer_id)
        else:
            # Customers only ever see their own deliveries, whatever filter they send
            query = query.filter(
                GoodsReceipt.customer_id == principal.customer_id,
                fulfillment_label_clause(GoodsReceipt.customer_id),
            )
            if principal.customer_number is not None:
                query = query.filter(Customer.customer_number == principal.customer_number)

        if filters.date_from:
            query = query.filter(GoodsReceipt.receipt_date >= filters.date_from)
        if filters.date_to:
            query = query.filter(GoodsReceipt.receipt_date <= filters.date_to)
        if filters.status:
            query = query.filter(GoodsReceipt.status == filters.status)

        return query.order_by(
            GoodsReceipt.receipt_date.desc(),
            GoodsReceipt.receipt_time.desc(),
            GoodsReceipt.id.desc(),
        ).all()

    def list_photos(self, receipt_id: int, principal: Principal) -> List[ReceiptPhoto]:
        self.get_for_principal(receipt_id, principal)
        if not self.photo_capability.is_available(self.db):
            return []
        return (
            self.db.query(ReceiptPhoto)
            .filter(ReceiptPhoto.receipt_id == receipt_id)
            .order_by(ReceiptPhoto.is_main_photo.desc(), ReceiptPhoto.sort_order.asc(), ReceiptPhoto.created_at.asc())
            .all()
        )

    def stats(self, today: Optional[date] = None) -> Dict[str, int]:
        """Delivery statistics over the trailing month"""
        today = today or date.today()
        since = add_months(today, -1)

        def count_where(condition):
            return func.count(case((condition, 1)))

        row = self.db.query(
            func.count(GoodsReceipt.id),
            count_where(GoodsReceipt.receipt_date == today),
            count_where(GoodsReceipt.status == ReceiptStatus.RECEIVED),
            count_where(GoodsReceipt.status == ReceiptStatus.IN_STORAGE),
            count_where(GoodsReceipt.status == ReceiptStatus.STORED),
            func.coalesce(func.sum(GoodsReceipt.package_count), 0),
        ).filter(GoodsReceipt.receipt_date >= since).one()

        return {
            "total_deliveries": row[0] or 0,
            "deliveries_today": row[1] or 0,
            "received": row[2] or 0,
            "in_storage": row[3] or 0,
            "stored": row[4] or 0,
            "total_packages": int(row[5] or 0),
        }

    # ----- lifecycle -----

    def create(
        self,
        data: GoodsReceiptData,
        user_id: int,
        main_photo: Optional[UploadedImage] = None,
        additional_photos: Sequence[UploadedImage] = (),
        ip_address: Optional[str] = None,
    ) -> CreateResult:
        additional_photos = list(additional_photos)
        if len(additional_photos) > settings.max_additional_photos:
            raise ValidationError(f"At most {settings.max_additional_photos} additional photos are allowed")

        self._require_fulfillment_customer(data.customer_id)
        for upload in ([main_photo] if main_photo else []) + additional_photos:
            self.pipeline.validate(upload)

        if additional_photos and not self.photo_capability.is_available(self.db):
            logger.warning(
                f"Photo table missing - skipping {len(additional_photos)} additional photo(s) "
                f"for new goods receipt of customer {data.customer_id}"
            )
            additional_photos = []

        staged: List[str] = []
        try:
            stored_main = self._store(main_photo, staged) if main_photo else None
            # Order matters: sort positions follow submission order
            stored_additional = [self._store(upload, staged) for upload in additional_photos]

            now = datetime.now()
            receipt = GoodsReceipt(
                receipt_date=data.receipt_date or now.date(),
                receipt_time=data.receipt_time or now.time().replace(second=0, microsecond=0),
                customer_id=data.customer_id,
                carrier_name=data.carrier_name,
                package_kind=data.package_kind,
                package_count=data.package_count,
                condition=data.condition,
                pallet_exchange=data.pallet_exchange,
                supplier_order_ref=data.supplier_order_ref,
                note=data.note,
                main_photo_path=stored_main.name if stored_main else None,
                created_by_user_id=user_id,
                status=ReceiptStatus.RECEIVED,
            )
            self.db.add(receipt)
            self.db.commit()
            self.db.refresh(receipt)
        except Exception as e:
            self.db.rollback()
            self._discard(staged)
            logger.error(f"Goods receipt creation failed, removed {len(staged)} uploaded file(s): {e}")
            raise CreateFailed(f"Goods receipt could not be created: {e}") from e

        saved = self._persist_additional(receipt.id, stored_additional, user_id, FIRST_ADDITIONAL_SORT_ORDER)
        photo_count = (1 if stored_main else 0) + len(saved)

        logger.info(f"Goods receipt {receipt.id} created with {photo_count} photo(s)")
        DatabaseLogger.log_user_activity(
            self.db,
            user_id=user_id,
            action="create_goods_receipt",
            description=f"{data.package_count} x {data.package_kind.value} via {data.carrier_name}",
            entity_type="goods_receipt",
            entity_id=receipt.id,
            ip_address=ip_address,
        )
        return CreateResult(receipt_id=receipt.id, main_photo_path=receipt.main_photo_path, photo_count=photo_count)

    def update(
        self,
        receipt_id: int,
        data: GoodsReceiptData,
        user_id: int,
        replacement_main_photo: Optional[UploadedImage] = None,
        ip_address: Optional[str] = None,
    ) -> GoodsReceipt:
        receipt = self.get_receipt(receipt_id)
        if data.customer_id != receipt.customer_id:
            self._require_fulfillment_customer(data.customer_id)
        if replacement_main_photo:
            self.pipeline.validate(replacement_main_photo)

        previous_main = receipt.main_photo_path
        staged: List[str] = []
        try:
            new_main = self._store(replacement_main_photo, staged) if replacement_main_photo else None

            if data.receipt_date is not None:
                receipt.receipt_date = data.receipt_date
            if data.receipt_time is not None:
                receipt.receipt_time = data.receipt_time
            receipt.customer_id = data.customer_id
            receipt.carrier_name = data.carrier_name
            receipt.package_kind = data.package_kind
            receipt.package_count = data.package_count
            receipt.condition = data.condition
            receipt.pallet_exchange = data.pallet_exchange
            receipt.supplier_order_ref = data.supplier_order_ref
            receipt.note = data.note
            if data.status is not None:
                receipt.status = data.status
            if new_main:
                receipt.main_photo_path = new_main.name
            self._touch(receipt)

            self.db.commit()
            self.db.refresh(receipt)
        except Exception:
            self.db.rollback()
            self._discard(staged)
            raise

        if replacement_main_photo and previous_main and previous_main != receipt.main_photo_path:
            self.storage.delete(previous_main)

        DatabaseLogger.log_user_activity(
            self.db, user_id=user_id, action="update_goods_receipt",
            entity_type="goods_receipt", entity_id=receipt.id, ip_address=ip_address,
        )
        return receipt

    def update_status(self, receipt_id: int, status: ReceiptStatus, user_id: int,
                      ip_address: Optional[str] = None) -> GoodsReceipt:
        """Any status may follow any other; corrections such as reverting a mis-click are legitimate"""
        receipt = self.get_receipt(receipt_id)
        receipt.status = status
        self._touch(receipt)
        self.db.commit()
        self.db.refresh(receipt)

        logger.info(f"Goods receipt {receipt_id} status set to {status.value}")
        DatabaseLogger.log_user_activity(
            self.db, user_id=user_id, action="update_goods_receipt_status", description=status.value,
            entity_type="goods_receipt", entity_id=receipt.id, ip_address=ip_address,
        )
        return receipt

    def delete(self, receipt_id: int, user_id: int, ip_address: Optional[str] = None):
        receipt = self.get_receipt(receipt_id)
        files = [receipt.main_photo_path] if receipt.main_photo_path else []
        document_files: List[str] = []

        try:
            if self.documents is not None:
                document_files = self.documents.detach_for_receipt(receipt_id)
            if self.photo_capability.is_available(self.db):
                photos = self.db.query(ReceiptPhoto).filter(ReceiptPhoto.receipt_id == receipt_id).all()
                files.extend(photo.file_path for photo in photos)
                for photo in photos:
                    self.db.delete(photo)
            self.db.delete(receipt)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        # Rows are gone; remaining files are only orphans, so a failed unlink is logged, not raised
        for name in files:
            try:
                self.storage.delete(name)
            except OSError as e:
                logger.error(f"Could not delete photo file {name} of goods receipt {receipt_id}: {e}")
        if self.documents is not None:
            self.documents.discard_files(document_files)

        logger.info(
            f"Goods receipt {receipt_id} deleted with {len(files)} photo file(s) and {len(document_files)} document(s)"
        )
        DatabaseLogger.log_user_activity(
            self.db, user_id=user_id, action="delete_goods_receipt",
            entity_type="goods_receipt", entity_id=receipt_id, ip_address=ip_address,
        )

    # ----- additional photos -----

    def add_photos(
        self,
        receipt_id: int,
        uploads: Sequence[UploadedImage],
        user_id: int,
        description: Optional[str] = None,
        first_is_main: bool = False,
        ip_address: Optional[str] = None,
    ) -> List[ReceiptPhoto]:
        self.get_receipt(receipt_id)
        uploads = list(uploads)
        if not uploads:
            raise ValidationError("No photos uploaded")
        if len(uploads) > settings.max_additional_photos:
            raise ValidationError(f"At most {settings.max_additional_photos} photos per upload are allowed")
        for upload in uploads:
            self.pipeline.validate(upload)

        if not self.photo_capability.is_available(self.db):
            logger.warning(f"Photo table missing - skipping {len(uploads)} photo(s) for goods receipt {receipt_id}")
            return []

        staged: List[str] = []
        try:
            stored = [self._store(upload, staged) for upload in uploads]
            try:
                photos = self._insert_photos(receipt_id, stored, user_id, description, first_is_main)
            except IntegrityError:
                # Another upload took the same sort positions; read the maximum again
                self.db.rollback()
                logger.warning(f"Sort order collision on goods receipt {receipt_id}, retrying once")
                try:
                    photos = self._insert_photos(receipt_id, stored, user_id, description, first_is_main)
                except IntegrityError as e:
                    self.db.rollback()
                    raise Conflict("Photos were added to this goods receipt concurrently, please retry") from e
        except (ProgrammingError, OperationalError):
            self.db.rollback()
            self._discard(staged)
            self.photo_capability.invalidate()
            raise
        except Exception:
            self.db.rollback()
            self._discard(staged)
            raise

        for photo in photos:
            self.db.refresh(photo)
        logger.info(f"{len(photos)} photo(s) added to goods receipt {receipt_id}")
        DatabaseLogger.log_user_activity(
            self.db, user_id=user_id, action="upload_receipt_photos", description=f"{len(photos)} photo(s)",
            entity_type="goods_receipt", entity_id=receipt_id, ip_address=ip_address,
        )
        return photos

    def delete_photo(self, photo_id: int, user_id: int, ip_address: Optional[str] = None):
        photo = self._get_photo(photo_id)
        file_path = photo.file_path
        self.db.delete(photo)
        self.db.commit()
        self.storage.delete(file_path)

        DatabaseLogger.log_user_activity(
            self.db, user_id=user_id, action="delete_receipt_photo",
            entity_type="receipt_photo", entity_id=photo_id, ip_address=ip_address,
        )

    def set_main_photo(self, photo_id: int, user_id: int, ip_address: Optional[str] = None) -> ReceiptPhoto:
        photo = self._get_photo(photo_id)
        self._clear_main_flag(photo.receipt_id)
        photo.is_main_photo = True
        self.db.commit()
        self.db.refresh(photo)

        DatabaseLogger.log_user_activity(
            self.db, user_id=user_id, action="set_main_receipt_photo",
            entity_type="receipt_photo", entity_id=photo_id, ip_address=ip_address,
        )
        return photo

    # ----- helpers -----

    def _require_fulfillment_customer(self, customer_id: int):
        if not is_fulfillment_customer(self.db, customer_id):
            raise ValidationError(
                "Customer is not a fulfillment customer",
                details=[{"field": "customer_id", "error": "not a fulfillment customer"}],
            )

    def _assert_can_view(self, principal: Principal, receipt: GoodsReceipt, customer: Optional[Customer]):
        if principal.is_employee:
            return
        if receipt.customer_id != principal.customer_id:
            raise Forbidden("No access to this goods receipt")
        if principal.customer_number is not None:
            if customer is None or customer.customer_number != principal.customer_number:
                raise Forbidden("No access to this goods receipt")
        if not is_fulfillment_customer(self.db, receipt.customer_id):
            raise Forbidden("Customer is not a fulfillment customer")

    def _store(self, upload: UploadedImage, staged: List[str]) -> StoredImage:
        raw_name = self.pipeline.save_original(upload)
        staged.append(raw_name)
        stored = self.pipeline.finalize(raw_name, upload)
        if stored.name != raw_name:
            staged.append(stored.name)
        return stored

    def _discard(self, names: Sequence[str]):
        for name in names:
            try:
                self.storage.delete(name)
            except OSError as e:
                logger.error(f"Could not remove uploaded file {name}: {e}")

    def _photo_rows(self, receipt_id: int, stored: Sequence[StoredImage], user_id: int,
                    first_order: int, description: Optional[str] = None) -> List[ReceiptPhoto]:
        return [
            ReceiptPhoto(
                receipt_id=receipt_id,
                file_path=image.name,
                file_name=image.original_name,
                file_size=image.size,
                is_main_photo=False,
                sort_order=first_order + index,
                description=description,
                created_by_user_id=user_id,
            )
            for index, image in enumerate(stored)
        ]

    def _next_sort_order(self, receipt_id: int) -> int:
        highest = self.db.query(func.max(ReceiptPhoto.sort_order)).filter(
            ReceiptPhoto.receipt_id == receipt_id
        ).scalar()
        return max(highest or 0, FIRST_ADDITIONAL_SORT_ORDER - 1) + 1

    def _insert_photos(self, receipt_id: int, stored: Sequence[StoredImage], user_id: int,
                       description: Optional[str], first_is_main: bool) -> List[ReceiptPhoto]:
        next_order = self._next_sort_order(receipt_id)
        if first_is_main:
            self._clear_main_flag(receipt_id)
        photos = self._photo_rows(receipt_id, stored, user_id, next_order, description)
        if first_is_main:
            photos[0].is_main_photo = True
        self.db.add_all(photos)
        self.db.commit()
        return photos

    def _persist_additional(self, receipt_id: int, stored: Sequence[StoredImage], user_id: int,
                            first_order: int) -> List[ReceiptPhoto]:
        """Best effort: the receipt is already committed and stays whatever happens here"""
        if not stored:
            return []
        try:
            photos = self._photo_rows(receipt_id, stored, user_id, first_order)
            self.db.add_all(photos)
            self.db.commit()
            return photos
        except SQLAlchemyError as e:
            self.db.rollback()
            if isinstance(e, (ProgrammingError, OperationalError)):
                self.photo_capability.invalidate()
            self._discard([image.name for image in stored])
            logger.warning(f"Additional photos for goods receipt {receipt_id} were not saved: {e}")
            return []

    def _get_photo(self, photo_id: int) -> ReceiptPhoto:
        if not self.photo_capability.is_available(self.db):
            raise StorageInconsistency()
        photo = self.db.query(ReceiptPhoto).filter(ReceiptPhoto.id == photo_id).first()
        if not photo:
            raise NotFound("Photo not found")
        return photo

    def _clear_main_flag(self, receipt_id: int):
        self.db.query(ReceiptPhoto).filter(
            ReceiptPhoto.receipt_id == receipt_id,
            ReceiptPhoto.is_main_photo.is_(True),
        ).update({ReceiptPhoto.is_main_photo: False}, synchronize_session="fetch")

    @staticmethod
    def _touch(receipt: GoodsReceipt):
        now = datetime.utcnow()
        if receipt.updated_at is not None and now <= receipt.updated_at:
            now = receipt.updated_at + timedelta(microseconds=1)
        receipt.updated_at = now

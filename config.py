import os
from decimal import Decimal
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = os.getenv("DATABASE_URL", "")
    environment: str = "development"

    secret_key: str = os.getenv("SESSION_SECRET", "default-dev-secret-change-in-production")
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days, same as the portal frontend session

    # Connection pool
    db_pool_size: int = 10
    db_pool_timeout_seconds: int = 30
    db_statement_timeout_seconds: int = 60

    # Photo uploads
    upload_dir: str = "uploads/warenannahme"
    max_upload_bytes: int = 50 * 1024 * 1024  # 50MB per image
    max_additional_photos: int = 10
    image_max_dimension: int = 1920
    image_jpeg_quality: int = 85
    max_concurrent_compressions: int = 2

    # Delivery note documents
    document_dir: str = "uploads/documents"
    max_document_bytes: int = 20 * 1024 * 1024  # 20MB per PDF

    # ERP lookups
    fulfillment_label_id: int = 2
    pick_article_id: int = 5398
    default_pick_price: Decimal = Decimal("0.25")
    default_shipping_cost: Decimal = Decimal("50.00")

    cors_origins: list = ["http://localhost:3000"]

    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def max_request_bytes(self) -> int:
        """Largest accepted request body: main photo plus all additional photos"""
        return self.max_upload_bytes * (self.max_additional_photos + 1) + 1024 * 1024

    class Config:
        env_file = ".env"

settings = Settings()

# labeler/core/config.py
from pydantic import BaseModel
import os

from dotenv import load_dotenv

# Load .env if present
load_dotenv()


class Settings(BaseModel):
    app_name: str = os.getenv("APP_NAME", "Document Region Labeler")
    environment: str = os.getenv("ENV", "dev")
    log_level: str = os.getenv("LABELER_LOG_LEVEL", "INFO").upper()

    storage_root: str = os.getenv("LABELER_STORAGE_ROOT", "./data")

    # persisted artifact names
    fields_file: str = "fields.json"
    label_file_extension: str = ".labels.json"
    ocr_file_extension: str = ".ocr.json"
    fields_schema_url: str = "https://schema.cognitiveservices.azure.com/formrecognizer/2021-03-01/fields.json"
    labels_schema_url: str = "https://schema.cognitiveservices.azure.com/formrecognizer/2021-03-01/labels.json"

    # interaction
    snap_tolerance_px: float = float(os.getenv("LABELER_SNAP_TOLERANCE_PX", "10"))
    hit_tolerance_px: float = float(os.getenv("LABELER_HIT_TOLERANCE_PX", "2"))
    viewport_height: float = float(os.getenv("LABELER_VIEWPORT_HEIGHT", "900"))
    inline_label_menu_height: int = 180

    # rendering
    pdf_scale: float = float(os.getenv("LABELER_PDF_SCALE", "2.0"))
    thumbnail_width: int = 150

    @property
    def is_dev(self) -> bool:
        return self.environment.strip().lower() in {"dev", "development", "local"}


settings = Settings()

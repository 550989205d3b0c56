# production_engine/config.py
import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    """
    Very simple settings holder.
    Reads everything from environment variables if present,
    otherwise falls back to a local sqlite file and the plant defaults.
    """

    def __init__(self) -> None:
        self.database_url: str = os.getenv("DATABASE_URL", "sqlite:///./production.db")

        # Fixed location codes (codes, not ids; ids are created on demand)
        self.main_store_location_code: str = os.getenv("MAIN_STORE_LOCATION_CODE", "MAIN-STORE")
        self.finished_goods_location_code: str = os.getenv("FINISHED_GOODS_LOCATION_CODE", "FINISHED-GOODS")
        self.qa_location_code: str = os.getenv("QA_LOCATION_CODE", "QA-SECTION")
        self.scrap_yard_location_code: str = os.getenv("SCRAP_YARD_LOCATION_CODE", "SCRAP-YARD")

        # Cutting geometry defaults used by the scrap calculation
        self.steel_density_kg_per_mm3: float = float(os.getenv("STEEL_DENSITY_KG_PER_MM3", "0.00000785"))
        self.scrap_strip_min_mm: float = float(os.getenv("SCRAP_STRIP_MIN_MM", "10"))
        self.default_sheet_width_mm: float = float(os.getenv("DEFAULT_SHEET_WIDTH_MM", "1220"))
        self.default_sheet_length_mm: float = float(os.getenv("DEFAULT_SHEET_LENGTH_MM", "2440"))
        self.default_thickness_mm: float = float(os.getenv("DEFAULT_THICKNESS_MM", "3"))

        # Empty URL -> mirror procurement requests into the local table
        self.procurement_mirror_url: str = os.getenv("PROCUREMENT_MIRROR_URL", "")
        self.procurement_mirror_timeout: float = float(os.getenv("PROCUREMENT_MIRROR_TIMEOUT", "10"))

        self.seed_demo_data: bool = _env_bool("SEED_DEMO_DATA")


settings = Settings()

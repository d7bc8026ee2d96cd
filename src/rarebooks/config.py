from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./rarebooks.db"

    # Marketplace
    marketplace_base_url: str = "https://meshok.net"
    marketplace_init_url: str = "https://meshok.net/listing?a_o=8&good=13870"
    marketplace_lot_url: str = "https://meshok.net/api/command/lots/get-lot-by-id"
    marketplace_description_url: str = "https://meshok.net/api/command/lots/get-description"
    marketplace_list_url: str = "https://meshok.net/api/command/lots/get-items"
    marketplace_locale: str = "ru"
    marketplace_city_id: int = 32
    scraper_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    )
    scraper_request_timeout: int = 30

    # Session retry (anti-block heuristics tuned against meshok.net)
    session_max_attempts: int = 3
    session_retry_base_delay: float = 0.2   # seconds, doubled per attempt
    session_blocked_backoff_factor: int = 10  # x current delay after 403
    cookie_renew_every: int = 30             # gateway requests between forced cookie renewals
    list_page_size: int = 200

    # Images
    image_download_concurrency: int = 2
    image_download_attempts: int = 3
    image_retry_base_delay: float = 1.0
    image_request_timeout: int = 30
    use_local_files: bool = True
    local_archive_path: str = "./archives"

    # S3-compatible object storage (Yandex Object Storage)
    s3_endpoint_url: str = "https://storage.yandexcloud.net"
    s3_region: str = "ru-central1"
    s3_bucket: str = ""
    s3_access_key: str = ""
    s3_secret_key: str = ""

    @property
    def s3_enabled(self) -> bool:
        return bool(self.s3_bucket and self.s3_access_key and self.s3_secret_key)

    # Crawl policy
    high_value_categories: list[int] = [13870, 13871, 13872, 13873]
    value_gated_categories: list[int] = [13874, 13875, 13876]
    less_valuable_price_threshold: float = 1500
    lot_delay_seconds: float = 0.5

    # Scheduler
    update_interval_seconds: int = 3 * 24 * 3600
    run_on_start: bool = True

    # Log
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
